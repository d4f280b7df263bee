from datetime import datetime, time
from decimal import Decimal as D

import pytest

from ev_tariff_engine.errors import (
    ConfigurationError,
    InvalidSession,
    InvalidWindow,
    MissingRateTable,
)
from ev_tariff_engine.pricing.session import price_session
from ev_tariff_engine.tariffs.types import ChargingSession, RateTable, TimeRestriction, UserRestriction


def _rate_table(**overrides):
    fields = dict(
        id="t1",
        currency="EUR",
        base_price=D("5"),
        price_per_kwh=D("10"),
        price_per_minute=D("0"),
        price_per_session=D("2"),
        tax_percentage=D("18"),
        status="active",
    )
    fields.update(overrides)
    return RateTable(**fields)


def _session(start, end, kwh, tier="regular", session_id="s1", rate_table_id="t1"):
    return ChargingSession(
        session_id=session_id,
        rate_table_id=rate_table_id,
        customer_tier=tier,
        start_datetime=start,
        end_datetime=end,
        energy_kwh=D(str(kwh)),
    )


# 2024-03-01 is a Friday, 2024-03-04 a Monday.
FRI = (2024, 3, 1)
SAT = (2024, 3, 2)
MON = (2024, 3, 4)

FRIDAY_PEAK = TimeRestriction("friday", time(18), time(22), D("1.5"), id=1)


def test_example_a_flat_tariff():
    session = _session(datetime(*MON, 10, 0), datetime(*MON, 11, 0), 10)

    priced = price_session(session, _rate_table())

    assert priced.subtotal == D("107")
    assert priced.tax_amount == D("19.26")
    assert priced.total == D("126.26")
    assert len(priced.slices) == 1
    assert priced.multiplier_trace[0].time_rule_id is None
    assert priced.multiplier_trace[0].time_multiplier == D("1")


def test_example_b_session_inside_peak_window():
    session = _session(datetime(*FRI, 19, 0), datetime(*FRI, 20, 0), 5)

    priced = price_session(session, _rate_table(), [FRIDAY_PEAK])

    assert priced.energy_cost == D("75")
    assert priced.subtotal == D("82")
    assert priced.tax_amount == D("14.76")
    assert priced.total == D("96.76")
    trace = priced.multiplier_trace[0]
    assert trace.time_rule_id == "1"
    assert trace.time_multiplier == D("1.5")
    assert trace.day_of_week == "friday"


def test_example_c_straddling_boundary_matches_per_slice_formula():
    rt = _rate_table(price_per_minute=D("0.1"))
    session = _session(datetime(*FRI, 17, 0), datetime(*FRI, 19, 0), 8)

    priced = price_session(session, rt, [FRIDAY_PEAK])

    assert [(s.start.hour, s.end.hour) for s in priced.slices] == [(17, 18), (18, 19)]
    assert [s.energy_kwh for s in priced.slices] == [D("4"), D("4")]

    direct = D("0")
    for charge, trace in zip(priced.slices, priced.multiplier_trace):
        direct += (rt.price_per_kwh * charge.energy_kwh + rt.price_per_minute * charge.minutes) * (
            trace.time_multiplier * trace.tier_multiplier
        )
    assert priced.energy_cost + priced.time_cost == direct == D("115")
    assert priced.subtotal == D("122")
    assert priced.tax_amount == D("21.96")
    assert priced.total == D("143.96")


def test_session_crossing_midnight_uses_next_day_rules():
    night = TimeRestriction("saturday", time(0), time(6), D("0.5"), id="night")
    session = _session(datetime(*FRI, 23, 0), datetime(*SAT, 1, 0), 4)

    priced = price_session(session, _rate_table(), [night])

    assert [s.day_of_week for s in priced.slices] == ["friday", "saturday"]
    assert [t.time_rule_id for t in priced.multiplier_trace] == [None, "night"]
    assert priced.energy_cost == D("30")
    assert priced.subtotal == D("37")


def test_multi_day_session_is_split_per_calendar_day():
    session = _session(datetime(*MON, 12, 0), datetime(2024, 3, 6, 12, 0), 48)

    priced = price_session(session, _rate_table())

    assert [s.day_of_week for s in priced.slices] == ["monday", "tuesday", "wednesday"]
    assert [s.energy_kwh for s in priced.slices] == [D("12"), D("24"), D("12")]
    assert [s.minutes for s in priced.slices] == [D("720"), D("1440"), D("720")]


def test_zero_duration_session_keeps_all_energy_in_one_slice():
    start = datetime(*FRI, 19, 30)
    priced = price_session(_session(start, start, 3), _rate_table(), [FRIDAY_PEAK])

    assert len(priced.slices) == 1
    assert priced.slices[0].minutes == D("0")
    assert priced.slices[0].energy_kwh == D("3")
    assert priced.energy_cost == D("45")


def test_overlapping_windows_latest_start_wins():
    wide = TimeRestriction("friday", time(18), time(22), D("1.5"), id="a")
    inner = TimeRestriction("friday", time(19), time(21), D("2"), id="b")
    session = _session(datetime(*FRI, 18, 0), datetime(*FRI, 22, 0), 4)

    priced = price_session(session, _rate_table(), [wide, inner])

    assert [t.time_rule_id for t in priced.multiplier_trace] == ["a", "b", "a"]
    assert priced.energy_cost == D("70")


def test_overlap_with_same_start_prefers_earliest_end_then_last_listed():
    wide = TimeRestriction("friday", time(18), time(22), D("1.5"), id="wide")
    narrow = TimeRestriction("friday", time(18), time(20), D("2"), id="narrow")
    twin = TimeRestriction("friday", time(18), time(20), D("3"), id="twin")
    session = _session(datetime(*FRI, 18, 0), datetime(*FRI, 19, 0), 1)

    assert price_session(session, _rate_table(), [wide, narrow]).multiplier_trace[0].time_rule_id == "narrow"
    assert price_session(session, _rate_table(), [narrow, wide]).multiplier_trace[0].time_rule_id == "narrow"
    assert price_session(session, _rate_table(), [narrow, twin]).multiplier_trace[0].time_rule_id == "twin"


def test_tier_multiplier_applies_to_every_slice():
    premium = UserRestriction("premium", D("0.8"), id=9)
    session = _session(datetime(*MON, 10, 0), datetime(*MON, 11, 0), 10, tier="premium")

    priced = price_session(session, _rate_table(), user_restrictions=[premium])

    assert priced.energy_cost == D("80")
    assert priced.subtotal == D("87")
    assert priced.multiplier_trace[0].tier_rule_id == "9"
    assert priced.multiplier_trace[0].tier_multiplier == D("0.8")


def test_unconfigured_tier_defaults_to_one():
    premium = UserRestriction("premium", D("0.8"))
    session = _session(datetime(*MON, 10, 0), datetime(*MON, 11, 0), 10, tier="business")

    priced = price_session(session, _rate_table(), user_restrictions=[premium])

    assert priced.subtotal == D("107")
    assert priced.multiplier_trace[0].tier_rule_id is None


def test_time_and_tier_multipliers_combine():
    business = UserRestriction("business", D("1.2"))
    session = _session(datetime(*FRI, 19, 0), datetime(*FRI, 20, 0), 5, tier="business")

    priced = price_session(session, _rate_table(), [FRIDAY_PEAK], [business])

    assert priced.energy_cost == D("90")


def test_tax_is_rounded_half_up_once():
    rt = _rate_table(base_price=D("0.05"), price_per_kwh=D("0"), price_per_session=D("0"), tax_percentage=D("10"))
    start = datetime(*MON, 10, 0)

    priced = price_session(_session(start, start, 0), rt)

    assert priced.tax_amount == D("0.01")
    assert priced.total == D("0.06")


def test_end_before_start_is_invalid_session():
    session = _session(datetime(*MON, 11, 0), datetime(*MON, 10, 0), 1)

    with pytest.raises(InvalidSession) as exc:
        price_session(session, _rate_table())

    assert exc.value.field == "end_datetime"


def test_negative_energy_is_invalid_session():
    session = _session(datetime(*MON, 10, 0), datetime(*MON, 11, 0), -1)

    with pytest.raises(InvalidSession) as exc:
        price_session(session, _rate_table())

    assert exc.value.field == "energy_kwh"


def test_unknown_tier_is_invalid_session():
    session = _session(datetime(*MON, 10, 0), datetime(*MON, 11, 0), 1, tier="vip")

    with pytest.raises(InvalidSession):
        price_session(session, _rate_table())


@pytest.mark.parametrize("status", ["inactive", "draft"])
def test_non_active_rate_table_is_missing(status):
    session = _session(datetime(*MON, 10, 0), datetime(*MON, 11, 0), 1)

    with pytest.raises(MissingRateTable) as exc:
        price_session(session, _rate_table(status=status))

    assert isinstance(exc.value, ConfigurationError)
    assert exc.value.retryable is True


def test_absent_rate_table_is_missing():
    session = _session(datetime(*MON, 10, 0), datetime(*MON, 11, 0), 1)

    with pytest.raises(MissingRateTable):
        price_session(session, None)


def test_rate_table_for_another_id_is_missing():
    session = _session(datetime(*MON, 10, 0), datetime(*MON, 11, 0), 1, rate_table_id="other")

    with pytest.raises(MissingRateTable):
        price_session(session, _rate_table())


def test_window_wrapping_midnight_is_rejected():
    wrapping = TimeRestriction("friday", time(22), time(2), D("0.5"))
    session = _session(datetime(*FRI, 19, 0), datetime(*FRI, 20, 0), 5)

    with pytest.raises(InvalidWindow):
        price_session(session, _rate_table(), [wrapping])


def test_to_dict_renders_decimals_as_strings():
    session = _session(datetime(*FRI, 19, 0), datetime(*FRI, 20, 0), 5)

    data = price_session(session, _rate_table(), [FRIDAY_PEAK]).to_dict()

    assert data["total"] == "96.76"
    assert data["components"]["energy"] == "75.0"
    assert data["multiplier_trace"][0]["time_rule_id"] == "1"
    assert data["multiplier_trace"][0]["time_multiplier"] == "1.5"
