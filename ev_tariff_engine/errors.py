"""Error taxonomy for the tariff engine.

Three families:

- ValidationError: malformed input, rejected before any computation. Always
  names the offending field.
- ConfigurationError: the inputs are well formed but the tariff setup cannot be
  used (absent or inactive rate table). Retryable once an operator fixes it.
- ComputationInvariantError: an internal consistency check failed. Correct code
  never raises it.
"""

from __future__ import annotations


class TariffEngineError(Exception):
    """Base class for every error raised by the engine."""

    retryable: bool = False


class ValidationError(TariffEngineError):
    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class InvalidSession(ValidationError):
    pass


class InvalidRateTable(ValidationError):
    pass


class InvalidWindow(ValidationError):
    """A time restriction whose window is empty, reversed or wraps midnight."""


class InvalidRestriction(ValidationError):
    pass


class InvalidLineItem(ValidationError):
    pass


class InvalidDiscount(ValidationError):
    pass


class InvoiceFrozen(ValidationError):
    """Raised when an invoice that already left draft is edited."""


class InvalidInvoiceTransition(ValidationError):
    pass


class ConfigurationError(TariffEngineError):
    retryable = True


class MissingRateTable(ConfigurationError):
    def __init__(self, rate_table_id, reason: str = "not found"):
        super().__init__(f"rate table {rate_table_id!r}: {reason}")
        self.rate_table_id = rate_table_id
        self.reason = reason


class ComputationInvariantError(TariffEngineError):
    pass


__all__ = [
    "TariffEngineError",
    "ValidationError",
    "InvalidSession",
    "InvalidRateTable",
    "InvalidWindow",
    "InvalidRestriction",
    "InvalidLineItem",
    "InvalidDiscount",
    "InvoiceFrozen",
    "InvalidInvoiceTransition",
    "ConfigurationError",
    "MissingRateTable",
    "ComputationInvariantError",
]
