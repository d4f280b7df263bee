from datetime import datetime, time
from decimal import Decimal as D

import pytest

from ev_tariff_engine.errors import InvalidRateTable, InvalidRestriction, InvalidWindow, MissingRateTable
from ev_tariff_engine.pricing.session import price_snapshot
from ev_tariff_engine.tariffs.registry import (
    AddTimeRestriction,
    AddUserRestriction,
    RemoveTimeRestriction,
    RemoveUserRestriction,
    TariffRegistry,
    TariffSnapshot,
    UpdateRates,
)
from ev_tariff_engine.tariffs.types import ChargingSession, RateTable, TimeRestriction, UserRestriction


def _registry():
    reg = TariffRegistry()
    reg.register(
        TariffSnapshot(
            rate_table=RateTable(
                id="t1",
                currency="EUR",
                base_price=D("5"),
                price_per_kwh=D("10"),
                price_per_session=D("2"),
                tax_percentage=D("18"),
                status="active",
            )
        )
    )
    return reg


PEAK = TimeRestriction("friday", time(18), time(22), D("1.5"), id=1)


def test_register_starts_at_version_one():
    reg = _registry()

    snap = reg.snapshot("t1")
    assert snap.version == 1
    assert "t1" in reg
    assert reg.ids() == ["t1"]


def test_each_command_appends_a_version_and_keeps_old_ones():
    reg = _registry()

    v2 = reg.apply("t1", AddTimeRestriction(PEAK))
    v3 = reg.apply("t1", UpdateRates({"price_per_kwh": D("12")}))

    assert (v2.version, v3.version) == (2, 3)
    assert reg.snapshot("t1", 1).time_restrictions == ()
    assert reg.snapshot("t1", 2).time_restrictions == (PEAK,)
    assert reg.snapshot("t1", 2).rate_table.price_per_kwh == D("10")
    assert reg.snapshot("t1").rate_table.price_per_kwh == D("12")
    commands = [entry.command for entry in reg.versions("t1")]
    assert commands[0] is None
    assert isinstance(commands[1], AddTimeRestriction)
    assert isinstance(commands[2], UpdateRates)


def test_old_version_reprices_identically_after_edits():
    reg = _registry()
    reg.apply("t1", AddTimeRestriction(PEAK))
    session = ChargingSession(
        session_id="s1",
        rate_table_id="t1",
        customer_tier="regular",
        start_datetime=datetime(2024, 3, 1, 19, 0),
        end_datetime=datetime(2024, 3, 1, 20, 0),
        energy_kwh=D("5"),
    )
    before = price_snapshot(session, reg.snapshot("t1", 2))

    reg.apply("t1", UpdateRates({"price_per_kwh": D("20")}))

    again = price_snapshot(session, reg.snapshot("t1", 2))
    assert again == before
    assert again.total == D("96.76")
    assert again.rate_table_version == 2
    assert price_snapshot(session, reg.snapshot("t1")).rate_table_version == 3


def test_rejected_command_leaves_history_untouched():
    reg = _registry()

    with pytest.raises(InvalidWindow):
        reg.apply("t1", AddTimeRestriction(TimeRestriction("friday", time(22), time(2), D("0.5"))))

    assert len(reg.versions("t1")) == 1


def test_duplicate_time_rule_id_is_rejected():
    reg = _registry()
    reg.apply("t1", AddTimeRestriction(PEAK))

    with pytest.raises(InvalidRestriction):
        reg.apply("t1", AddTimeRestriction(TimeRestriction("monday", time(8), time(9), D("1.1"), id=1)))


def test_remove_time_restriction():
    reg = _registry()
    reg.apply("t1", AddTimeRestriction(PEAK))

    snap = reg.apply("t1", RemoveTimeRestriction("1"))

    assert snap.time_restrictions == ()
    with pytest.raises(InvalidRestriction):
        reg.apply("t1", RemoveTimeRestriction("1"))


def test_add_user_restriction_replaces_same_tier():
    reg = _registry()
    reg.apply("t1", AddUserRestriction(UserRestriction("premium", D("0.8"), id="p1")))

    snap = reg.apply("t1", AddUserRestriction(UserRestriction("premium", D("0.7"), id="p2")))

    assert [r.rule_id for r in snap.user_restrictions] == ["p2"]
    snap = reg.apply("t1", RemoveUserRestriction("p2"))
    assert snap.user_restrictions == ()


def test_update_rates_rejects_identity_fields_and_bad_values():
    reg = _registry()

    with pytest.raises(InvalidRateTable) as exc:
        reg.apply("t1", UpdateRates({"version": 9}))
    assert exc.value.field == "version"

    with pytest.raises(InvalidRateTable) as exc:
        reg.apply("t1", UpdateRates({"price_per_kwh": D("-1")}))
    assert exc.value.field == "price_per_kwh"

    assert len(reg.versions("t1")) == 1


def test_unknown_rate_table_or_version_is_missing():
    reg = _registry()

    with pytest.raises(MissingRateTable):
        reg.snapshot("nope")
    with pytest.raises(MissingRateTable):
        reg.snapshot("t1", 2)
    with pytest.raises(MissingRateTable):
        reg.apply("nope", RemoveTimeRestriction("1"))


def test_int_and_str_ids_name_the_same_table():
    reg = TariffRegistry()
    reg.register(TariffSnapshot(rate_table=RateTable(id=7, currency="EUR", status="active")))

    assert 7 in reg and "7" in reg
    assert reg.snapshot("7").rate_table.id == 7
    reg.apply("7", UpdateRates({"price_per_kwh": D("0.30")}))
    assert [e.snapshot.version for e in reg.versions(7)] == [1, 2]
    assert reg.ids() == ["7"]
