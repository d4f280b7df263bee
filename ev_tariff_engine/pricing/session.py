"""SessionPricer: prices one closed charging session against one tariff.

price_session() is pure. It reads nothing but its arguments, so pricing the
same session against the same tariff snapshot always gives the same
PricedSession, which makes re-billing idempotent and lets disputes be replayed
from the stored inputs.

Cost model, per slice (see slicing.py for how slices are formed):

    (price_per_kwh * slice_kwh + price_per_minute * slice_minutes)
        * time_multiplier * tier_multiplier

With raw = base_price + price_per_session + sum(slice costs):

    total    = round_half_up(raw * (1 + tax_percentage / 100))
    tax      = round_half_up(raw * tax_percentage / 100)
    subtotal = total - tax

so each customer-facing amount is rounded once, on the aggregate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Tuple

from ..errors import ComputationInvariantError, MissingRateTable
from ..tariffs.registry import TariffSnapshot
from ..tariffs.rules import TierRules, TimeWindowRules
from ..tariffs.types import ONE, ZERO, ChargingSession, RateTable, RateTableId, TimeRestriction, UserRestriction
from ..tariffs.validation import validate_rate_table, validate_session
from .slicing import split_session
from .units import round_money, tax_on

_LOGGER = logging.getLogger(__name__)

# Energy apportioning may lose digits beyond Decimal's 28-digit precision.
_ENERGY_TOLERANCE = Decimal("1e-12")


def _dec(value: Decimal) -> str:
    return format(value, "f")


@dataclass(frozen=True)
class MultiplierTraceEntry:
    """Which rules priced one slice; the audit record for disputes."""

    slice_index: int
    start: datetime
    end: datetime
    day_of_week: str
    time_rule_id: Optional[str]
    time_multiplier: Decimal
    tier_rule_id: Optional[str]
    tier_multiplier: Decimal

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MultiplierTraceEntry":
        return cls(
            slice_index=int(data["slice_index"]),
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
            day_of_week=data["day_of_week"],
            time_rule_id=data.get("time_rule_id"),
            time_multiplier=Decimal(data["time_multiplier"]),
            tier_rule_id=data.get("tier_rule_id"),
            tier_multiplier=Decimal(data["tier_multiplier"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slice_index": self.slice_index,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "day_of_week": self.day_of_week,
            "time_rule_id": self.time_rule_id,
            "time_multiplier": _dec(self.time_multiplier),
            "tier_rule_id": self.tier_rule_id,
            "tier_multiplier": _dec(self.tier_multiplier),
        }


@dataclass(frozen=True)
class SliceCharge:
    slice_index: int
    start: datetime
    end: datetime
    day_of_week: str
    minutes: Decimal
    energy_kwh: Decimal
    energy_cost: Decimal
    time_cost: Decimal

    @property
    def cost(self) -> Decimal:
        return self.energy_cost + self.time_cost

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SliceCharge":
        return cls(
            slice_index=int(data["slice_index"]),
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
            day_of_week=data["day_of_week"],
            minutes=Decimal(data["minutes"]),
            energy_kwh=Decimal(data["energy_kwh"]),
            energy_cost=Decimal(data["energy_cost"]),
            time_cost=Decimal(data["time_cost"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slice_index": self.slice_index,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "day_of_week": self.day_of_week,
            "minutes": _dec(self.minutes),
            "energy_kwh": _dec(self.energy_kwh),
            "energy_cost": _dec(self.energy_cost),
            "time_cost": _dec(self.time_cost),
            "cost": _dec(self.cost),
        }


@dataclass(frozen=True)
class PricedSession:
    session_id: str
    rate_table_id: RateTableId
    rate_table_version: int
    currency: str
    customer_tier: str
    base_price: Decimal
    energy_cost: Decimal
    time_cost: Decimal
    session_fee: Decimal
    unrounded_subtotal: Decimal
    subtotal: Decimal
    tax_percentage: Decimal
    tax_amount: Decimal
    total: Decimal
    slices: Tuple[SliceCharge, ...] = ()
    multiplier_trace: Tuple[MultiplierTraceEntry, ...] = ()

    @property
    def energy_kwh(self) -> Decimal:
        return sum((s.energy_kwh for s in self.slices), ZERO)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PricedSession":
        """Rebuild a stored PricedSession (the shape written by to_dict)."""
        components = data.get("components") or {}
        return cls(
            session_id=str(data["session_id"]),
            rate_table_id=data["rate_table_id"],
            rate_table_version=int(data.get("rate_table_version", 1)),
            currency=data["currency"],
            customer_tier=data.get("customer_tier", "regular"),
            base_price=Decimal(components.get("base", "0")),
            energy_cost=Decimal(components.get("energy", "0")),
            time_cost=Decimal(components.get("time", "0")),
            session_fee=Decimal(components.get("session_fee", "0")),
            unrounded_subtotal=Decimal(data.get("unrounded_subtotal", data["subtotal"])),
            subtotal=Decimal(data["subtotal"]),
            tax_percentage=Decimal(data.get("tax_percentage", "0")),
            tax_amount=Decimal(data["tax_amount"]),
            total=Decimal(data["total"]),
            slices=tuple(SliceCharge.from_dict(s) for s in data.get("slices") or []),
            multiplier_trace=tuple(MultiplierTraceEntry.from_dict(t) for t in data.get("multiplier_trace") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "rate_table_id": self.rate_table_id,
            "rate_table_version": self.rate_table_version,
            "currency": self.currency,
            "customer_tier": self.customer_tier,
            "components": {
                "base": _dec(self.base_price),
                "energy": _dec(self.energy_cost),
                "time": _dec(self.time_cost),
                "session_fee": _dec(self.session_fee),
            },
            "unrounded_subtotal": _dec(self.unrounded_subtotal),
            "subtotal": _dec(self.subtotal),
            "tax_percentage": _dec(self.tax_percentage),
            "tax_amount": _dec(self.tax_amount),
            "total": _dec(self.total),
            "slices": [s.to_dict() for s in self.slices],
            "multiplier_trace": [t.to_dict() for t in self.multiplier_trace],
        }


def _check_rate_table(session: ChargingSession, rate_table: Optional[RateTable]) -> RateTable:
    if rate_table is None:
        raise MissingRateTable(session.rate_table_id)
    validate_rate_table(rate_table)
    if str(rate_table.id) != str(session.rate_table_id):
        raise MissingRateTable(
            session.rate_table_id,
            f"session {session.session_id} was handed rate table {rate_table.id!r}",
        )
    if rate_table.status != "active":
        raise MissingRateTable(rate_table.id, f"status is {rate_table.status!r}, not active")
    return rate_table


def price_session(
    session: ChargingSession,
    rate_table: Optional[RateTable],
    time_restrictions: Iterable[TimeRestriction] = (),
    user_restrictions: Iterable[UserRestriction] = (),
) -> PricedSession:
    validate_session(session)
    rt = _check_rate_table(session, rate_table)

    time_rules = TimeWindowRules(time_restrictions)
    tier_rule, tier_multiplier = TierRules(user_restrictions).lookup(session.customer_tier)
    tier_rule_id = tier_rule.rule_id if tier_rule is not None else None

    charges = []
    trace = []
    for sl in split_session(session, time_rules):
        time_multiplier = sl.time_rule.multiplier if sl.time_rule is not None else ONE
        factor = time_multiplier * tier_multiplier
        minutes = sl.minutes
        charges.append(
            SliceCharge(
                slice_index=sl.index,
                start=sl.start,
                end=sl.end,
                day_of_week=sl.day_of_week,
                minutes=minutes,
                energy_kwh=sl.energy_kwh,
                energy_cost=rt.price_per_kwh * sl.energy_kwh * factor,
                time_cost=rt.price_per_minute * minutes * factor,
            )
        )
        trace.append(
            MultiplierTraceEntry(
                slice_index=sl.index,
                start=sl.start,
                end=sl.end,
                day_of_week=sl.day_of_week,
                time_rule_id=sl.time_rule.rule_id if sl.time_rule is not None else None,
                time_multiplier=time_multiplier,
                tier_rule_id=tier_rule_id,
                tier_multiplier=tier_multiplier,
            )
        )

    energy_cost = sum((c.energy_cost for c in charges), ZERO)
    time_cost = sum((c.time_cost for c in charges), ZERO)
    unrounded = rt.base_price + rt.price_per_session + energy_cost + time_cost
    total = round_money(unrounded * (ONE + rt.tax_percentage / Decimal(100)))
    tax_amount = tax_on(unrounded, rt.tax_percentage)
    subtotal = total - tax_amount

    priced = PricedSession(
        session_id=session.session_id,
        rate_table_id=rt.id,
        rate_table_version=rt.version,
        currency=rt.currency,
        customer_tier=session.customer_tier,
        base_price=rt.base_price,
        energy_cost=energy_cost,
        time_cost=time_cost,
        session_fee=rt.price_per_session,
        unrounded_subtotal=unrounded,
        subtotal=subtotal,
        tax_percentage=rt.tax_percentage,
        tax_amount=tax_amount,
        total=total,
        slices=tuple(charges),
        multiplier_trace=tuple(trace),
    )
    _check_invariants(session, priced)

    _LOGGER.debug(
        "Priced session %s on rate table %s v%d: %d slices, subtotal=%s, tax=%s, total=%s %s",
        priced.session_id,
        priced.rate_table_id,
        priced.rate_table_version,
        len(priced.slices),
        priced.subtotal,
        priced.tax_amount,
        priced.total,
        priced.currency,
    )
    return priced


def price_snapshot(session: ChargingSession, snapshot: Optional[TariffSnapshot]) -> PricedSession:
    """Price against a registry snapshot (rate table plus its rules)."""
    if snapshot is None:
        raise MissingRateTable(session.rate_table_id)
    return price_session(session, snapshot.rate_table, snapshot.time_restrictions, snapshot.user_restrictions)


def _check_invariants(session: ChargingSession, priced: PricedSession) -> None:
    for c in priced.slices:
        if c.energy_kwh < ZERO or c.energy_cost < ZERO or c.time_cost < ZERO:
            raise ComputationInvariantError(
                f"negative derived amount in slice {c.slice_index} of session {session.session_id}"
            )
    if priced.total < ZERO or priced.tax_amount < ZERO:
        raise ComputationInvariantError(f"negative total for session {session.session_id}")
    if abs(priced.energy_kwh - session.energy_kwh) > _ENERGY_TOLERANCE:
        raise ComputationInvariantError(
            f"slice energy {priced.energy_kwh} does not add up to {session.energy_kwh} "
            f"for session {session.session_id}"
        )
