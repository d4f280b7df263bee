"""Deterministic pricing of EV charging sessions and invoice assembly."""

from .billing import Invoice, InvoiceTotals, LineItem, assemble, build_invoice
from .errors import (
    ComputationInvariantError,
    ConfigurationError,
    InvalidDiscount,
    InvalidSession,
    InvalidWindow,
    MissingRateTable,
    TariffEngineError,
    ValidationError,
)
from .pricing import PricedSession, price_session, price_snapshot, reprice_batch, reprice_sessions
from .tariffs import (
    ChargingSession,
    RateTable,
    TariffRegistry,
    TariffSnapshot,
    TierRules,
    TimeRestriction,
    TimeWindowRules,
    UserRestriction,
)

__all__ = [
    "ChargingSession",
    "RateTable",
    "TimeRestriction",
    "UserRestriction",
    "TimeWindowRules",
    "TierRules",
    "TariffRegistry",
    "TariffSnapshot",
    "PricedSession",
    "price_session",
    "price_snapshot",
    "reprice_sessions",
    "reprice_batch",
    "Invoice",
    "InvoiceTotals",
    "LineItem",
    "assemble",
    "build_invoice",
    "TariffEngineError",
    "ValidationError",
    "InvalidSession",
    "InvalidWindow",
    "InvalidDiscount",
    "ConfigurationError",
    "MissingRateTable",
    "ComputationInvariantError",
]
