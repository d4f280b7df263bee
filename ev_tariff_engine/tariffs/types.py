from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time
from decimal import Decimal
from typing import Optional, Union

RateTableId = Union[int, str]
RuleId = Union[int, str]

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
RATE_TABLE_STATUSES = ("active", "inactive", "draft")
USER_TIERS = ("regular", "premium", "business")

# time.max stands for 24:00, the exclusive end of a calendar day.
END_OF_DAY = time.max
MICROS_PER_DAY = 24 * 60 * 60 * 1_000_000

ZERO = Decimal("0")
ONE = Decimal("1")


def clock_micros(t: time) -> int:
    """Microseconds since midnight; END_OF_DAY maps to the full day."""
    if t == END_OF_DAY:
        return MICROS_PER_DAY
    return ((t.hour * 60 + t.minute) * 60 + t.second) * 1_000_000 + t.microsecond


def format_clock(t: time) -> str:
    if t == END_OF_DAY:
        return "24:00"
    if t.second or t.microsecond:
        return t.strftime("%H:%M:%S")
    return t.strftime("%H:%M")


@dataclass(frozen=True)
class RateTable:
    """One version of a tariff as authored in the operator console."""

    id: RateTableId
    currency: str
    base_price: Decimal = ZERO
    price_per_kwh: Decimal = ZERO
    price_per_minute: Decimal = ZERO
    price_per_session: Decimal = ZERO
    tax_percentage: Decimal = ZERO
    status: str = "draft"  # "active" | "inactive" | "draft"
    name: str = ""
    description: str = ""
    version: int = 1


@dataclass(frozen=True)
class TimeRestriction:
    day_of_week: str
    start_time: time
    end_time: time
    multiplier: Decimal
    id: Optional[RuleId] = None

    @property
    def rule_id(self) -> str:
        if self.id is not None:
            return str(self.id)
        return f"{self.day_of_week}@{format_clock(self.start_time)}-{format_clock(self.end_time)}"

    @property
    def start_micros(self) -> int:
        return clock_micros(self.start_time)

    @property
    def end_micros(self) -> int:
        return clock_micros(self.end_time)


@dataclass(frozen=True)
class UserRestriction:
    user_type: str  # "regular" | "premium" | "business"
    multiplier: Decimal
    id: Optional[RuleId] = None

    @property
    def rule_id(self) -> str:
        if self.id is not None:
            return str(self.id)
        return f"tier:{self.user_type}"


@dataclass(frozen=True)
class ChargingSession:
    """A closed charging session; datetimes are the charger's local wall clock."""

    session_id: str
    rate_table_id: RateTableId
    customer_tier: str
    start_datetime: datetime
    end_datetime: datetime
    energy_kwh: Decimal
