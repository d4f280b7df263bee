from datetime import datetime, time
from decimal import ROUND_HALF_UP
from decimal import Decimal as D

from ev_tariff_engine.pricing.session import price_session
from ev_tariff_engine.tariffs.types import ChargingSession, RateTable, TimeRestriction, UserRestriction

RATE_TABLE = RateTable(
    id="t1",
    currency="EUR",
    base_price=D("1.10"),
    price_per_kwh=D("0.37"),
    price_per_minute=D("0.013"),
    price_per_session=D("0.50"),
    tax_percentage=D("21"),
    status="active",
)

WINDOWS = [
    TimeRestriction("friday", time(18), time(22), D("1.5"), id="peak"),
    TimeRestriction("friday", time(20), time(21), D("2"), id="super-peak"),
    TimeRestriction("saturday", time(0), time(6), D("0.6"), id="night"),
]

TIERS = [UserRestriction("premium", D("0.85"), id="prem")]


def _session(kwh, start=datetime(2024, 3, 1, 17, 10), end=datetime(2024, 3, 2, 1, 20), tier="premium"):
    return ChargingSession(
        session_id="s1",
        rate_table_id="t1",
        customer_tier=tier,
        start_datetime=start,
        end_datetime=end,
        energy_kwh=D(kwh),
    )


def test_repricing_is_idempotent():
    a = price_session(_session("33.3"), RATE_TABLE, WINDOWS, TIERS)
    b = price_session(_session("33.3"), RATE_TABLE, WINDOWS, TIERS)

    assert a == b
    assert a.to_dict() == b.to_dict()


def test_slice_energy_adds_up_to_metered_energy():
    priced = price_session(_session("7"), RATE_TABLE, WINDOWS, TIERS)

    # 17:10-18:00, 18:00-20:00, 20:00-21:00, 21:00-22:00, 22:00-24:00, 00:00-01:20
    assert len(priced.slices) == 6
    assert abs(sum(s.energy_kwh for s in priced.slices) - D("7")) <= D("1e-12")
    assert sum(s.minutes for s in priced.slices) == D("490")


def test_more_energy_never_costs_less():
    totals = [
        price_session(_session(kwh), RATE_TABLE, WINDOWS, TIERS).total
        for kwh in ("0", "0.001", "1", "2.5", "10", "33.3", "80")
    ]

    assert totals == sorted(totals)


def test_longer_session_never_costs_less():
    start = datetime(2024, 3, 1, 17, 10)
    totals = [
        price_session(_session("10", start=start, end=datetime(2024, 3, 1, h, 0)), RATE_TABLE, WINDOWS, TIERS).total
        for h in (18, 19, 20, 21, 22, 23)
    ]

    assert totals == sorted(totals)


def _half_up(amount):
    return amount.quantize(D("0.01"), rounding=ROUND_HALF_UP)


def test_sub_cent_subtotal_total_matches_gross_formula():
    rt = RateTable(id="t1", currency="EUR", price_per_kwh=D("1"), tax_percentage=D("50"), status="active")
    session = _session("10.0049", end=datetime(2024, 3, 1, 18, 10), tier="regular")

    priced = price_session(session, rt)

    assert priced.unrounded_subtotal == D("10.0049")
    assert priced.total == D("15.01")
    assert priced.tax_amount == D("5.00")
    assert priced.subtotal == D("10.01")


def test_total_follows_gross_formula_without_restrictions():
    rt = RateTable(
        id="t1",
        currency="EUR",
        base_price=D("0.333"),
        price_per_kwh=D("0.287"),
        price_per_minute=D("0.0125"),
        price_per_session=D("0.5"),
        tax_percentage=D("19"),
        status="active",
    )
    start = datetime(2024, 3, 4, 9, 0)
    for minutes, kwh in ((1, "0.011"), (17, "3.3333"), (45, "7.005"), (61, "12.1249"), (200, "40.0001")):
        end = datetime(2024, 3, 4, 9 + minutes // 60, minutes % 60)
        priced = price_session(_session(kwh, start=start, end=end, tier="regular"), rt)

        raw = rt.base_price + rt.price_per_session + rt.price_per_kwh * D(kwh) + rt.price_per_minute * minutes
        assert priced.total == _half_up(raw * (1 + rt.tax_percentage / 100))
        assert priced.tax_amount == _half_up(raw * rt.tax_percentage / 100)
        assert priced.subtotal + priced.tax_amount == priced.total


def test_total_is_rounded_subtotal_plus_tax():
    priced = price_session(_session("12.345"), RATE_TABLE, WINDOWS, TIERS)

    assert priced.subtotal == priced.subtotal.quantize(D("0.01"))
    assert priced.tax_amount == priced.tax_amount.quantize(D("0.01"))
    assert priced.total == priced.subtotal + priced.tax_amount
    assert priced.total >= 0
    assert priced.unrounded_subtotal == (
        priced.base_price + priced.session_fee + priced.energy_cost + priced.time_cost
    )
