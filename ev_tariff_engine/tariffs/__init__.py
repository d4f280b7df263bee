from .loader import load_sessions, load_tariffs, parse_session, parse_tariff
from .registry import (
    AddTimeRestriction,
    AddUserRestriction,
    RemoveTimeRestriction,
    RemoveUserRestriction,
    TariffRegistry,
    TariffSnapshot,
    UpdateRates,
)
from .rules import TierRules, TimeWindowRules
from .types import ChargingSession, RateTable, TimeRestriction, UserRestriction

__all__ = [
    "ChargingSession",
    "RateTable",
    "TimeRestriction",
    "UserRestriction",
    "TimeWindowRules",
    "TierRules",
    "TariffRegistry",
    "TariffSnapshot",
    "AddTimeRestriction",
    "RemoveTimeRestriction",
    "AddUserRestriction",
    "RemoveUserRestriction",
    "UpdateRates",
    "load_tariffs",
    "load_sessions",
    "parse_tariff",
    "parse_session",
]
