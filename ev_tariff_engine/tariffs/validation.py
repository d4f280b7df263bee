"""Validation of tariff inputs.

Each validator raises the matching ValidationError subclass naming the first
offending field. They are called by the loader, by the registry when a command
is applied (authoring time) and again by the pricer, so objects constructed by
hand get the same checks as parsed ones.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Any, Type

from ..errors import (
    InvalidRateTable,
    InvalidRestriction,
    InvalidSession,
    InvalidWindow,
    ValidationError,
)
from .types import (
    RATE_TABLE_STATUSES,
    USER_TIERS,
    WEEKDAYS,
    ZERO,
    ChargingSession,
    RateTable,
    TimeRestriction,
    UserRestriction,
)

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_HUNDRED = Decimal("100")

_MONEY_FIELDS = ("base_price", "price_per_kwh", "price_per_minute", "price_per_session")


def _require_decimal(value: Any, field: str, error: Type[ValidationError]) -> Decimal:
    if not isinstance(value, Decimal) or not value.is_finite():
        raise error(field, f"expected a finite decimal, got {value!r}")
    return value


def validate_rate_table(rate_table: RateTable) -> None:
    if rate_table.id is None or rate_table.id == "":
        raise InvalidRateTable("id", "rate table id is required")
    if not isinstance(rate_table.currency, str) or not _CURRENCY_RE.match(rate_table.currency):
        raise InvalidRateTable("currency", f"expected an ISO 4217 code, got {rate_table.currency!r}")
    for field in _MONEY_FIELDS:
        value = _require_decimal(getattr(rate_table, field), field, InvalidRateTable)
        if value < ZERO:
            raise InvalidRateTable(field, f"must be >= 0, got {value}")
    tax = _require_decimal(rate_table.tax_percentage, "tax_percentage", InvalidRateTable)
    if tax < ZERO or tax > _HUNDRED:
        raise InvalidRateTable("tax_percentage", f"must be between 0 and 100, got {tax}")
    if rate_table.status not in RATE_TABLE_STATUSES:
        raise InvalidRateTable("status", f"must be one of {', '.join(RATE_TABLE_STATUSES)}, got {rate_table.status!r}")


def validate_time_restriction(restriction: TimeRestriction) -> None:
    if restriction.day_of_week not in WEEKDAYS:
        raise InvalidRestriction("day_of_week", f"unknown day {restriction.day_of_week!r}")
    if restriction.end_micros <= restriction.start_micros:
        # Windows crossing midnight must be authored as two restrictions.
        raise InvalidWindow(
            "end_time",
            f"window {restriction.rule_id} must end after it starts on the same day",
        )
    multiplier = _require_decimal(restriction.multiplier, "multiplier", InvalidRestriction)
    if multiplier <= ZERO:
        raise InvalidRestriction("multiplier", f"must be > 0, got {multiplier}")


def validate_user_restriction(restriction: UserRestriction) -> None:
    if restriction.user_type not in USER_TIERS:
        raise InvalidRestriction("user_type", f"must be one of {', '.join(USER_TIERS)}, got {restriction.user_type!r}")
    multiplier = _require_decimal(restriction.multiplier, "multiplier", InvalidRestriction)
    if multiplier <= ZERO:
        raise InvalidRestriction("multiplier", f"must be > 0, got {multiplier}")


def validate_session(session: ChargingSession) -> None:
    if not session.session_id:
        raise InvalidSession("session_id", "session id is required")
    if session.customer_tier not in USER_TIERS:
        raise InvalidSession("customer_tier", f"must be one of {', '.join(USER_TIERS)}, got {session.customer_tier!r}")
    start, end = session.start_datetime, session.end_datetime
    if (start.tzinfo is None) != (end.tzinfo is None):
        raise InvalidSession("end_datetime", "start and end must both be naive or both be timezone-aware")
    if end < start:
        raise InvalidSession("end_datetime", f"session ends ({end.isoformat()}) before it starts ({start.isoformat()})")
    energy = _require_decimal(session.energy_kwh, "energy_kwh", InvalidSession)
    if energy < ZERO:
        raise InvalidSession("energy_kwh", f"must be >= 0, got {energy}")
