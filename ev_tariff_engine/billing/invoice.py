"""InvoiceAssembler and the invoice lifecycle.

assemble() is the pure totals computation:

    subtotal = sum(quantity * unit_price)        rounded half-up once
    tax      = subtotal * tax_percentage / 100   rounded half-up, unless overridden
    total    = subtotal + tax - discount

with the invariant discount <= subtotal + tax, so a total is never negative.

Invoice wraps the same computation with the document rules of the operator
console: it can be edited only while draft, moves through
draft -> sent -> paid/overdue (or cancelled), and once it has left draft a
correction is a separate credit note that mirrors it with the opposite sign.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from ..config import DEFAULT_CURRENCY
from ..errors import (
    InvalidDiscount,
    InvalidInvoiceTransition,
    InvalidLineItem,
    InvoiceFrozen,
    ValidationError,
)
from ..pricing.session import PricedSession
from ..pricing.units import round_money, tax_on
from ..tariffs.loader import to_decimal
from ..tariffs.types import ZERO

_LOGGER = logging.getLogger(__name__)

INVOICE_STATUSES = ("draft", "sent", "paid", "overdue", "cancelled")

_TRANSITIONS = {
    "draft": {"sent", "cancelled"},
    "sent": {"paid", "overdue", "cancelled"},
    "overdue": {"paid", "cancelled"},
    "paid": set(),
    "cancelled": set(),
}


def _dec(value: Decimal) -> str:
    return format(value, "f")


@dataclass(frozen=True)
class LineItem:
    description: str
    quantity: Decimal
    unit_price: Decimal
    session_id: Optional[str] = None

    @property
    def total(self) -> Decimal:
        return round_money(self.quantity * self.unit_price)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "quantity": _dec(self.quantity),
            "unit_price": _dec(self.unit_price),
            "total": _dec(self.total),
            "session_id": self.session_id,
        }


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total: Decimal
    tax_overridden: bool = False

    def negated(self) -> "InvoiceTotals":
        return replace(
            self,
            subtotal=-self.subtotal,
            tax_amount=-self.tax_amount,
            discount_amount=-self.discount_amount,
            total=-self.total,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subtotal": _dec(self.subtotal),
            "tax_amount": _dec(self.tax_amount),
            "discount_amount": _dec(self.discount_amount),
            "total": _dec(self.total),
            "tax_overridden": self.tax_overridden,
        }


def parse_line_item(obj: Dict[str, Any], *, ctx: str = "item") -> LineItem:
    """Line item in the console's invoice form shape."""
    if not isinstance(obj, dict):
        raise InvalidLineItem("items", f"line item must be an object in {ctx}")
    item = LineItem(
        description=str(obj.get("description") or ""),
        quantity=to_decimal(obj.get("quantity", 1), "quantity", error=InvalidLineItem),
        unit_price=to_decimal(obj.get("unit_price", 0), "unit_price", error=InvalidLineItem),
        session_id=obj.get("session_id"),
    )
    validate_line_item(item)
    return item


def validate_line_item(item: LineItem) -> None:
    if not (item.description or "").strip():
        raise InvalidLineItem("description", "line item description is required")
    if not isinstance(item.quantity, Decimal) or not item.quantity.is_finite() or item.quantity <= ZERO:
        raise InvalidLineItem("quantity", f"must be > 0, got {item.quantity!r}")
    if not isinstance(item.unit_price, Decimal) or not item.unit_price.is_finite() or item.unit_price < ZERO:
        raise InvalidLineItem("unit_price", f"must be >= 0, got {item.unit_price!r}")


def assemble(
    line_items: Iterable[LineItem],
    tax_percentage: Decimal = ZERO,
    tax_amount_override: Optional[Decimal] = None,
    discount_amount: Decimal = ZERO,
) -> InvoiceTotals:
    items = list(line_items)
    for item in items:
        validate_line_item(item)
    if tax_percentage < ZERO or tax_percentage > Decimal(100):
        raise ValidationError("tax_percentage", f"must be between 0 and 100, got {tax_percentage}")
    if discount_amount < ZERO:
        raise InvalidDiscount("discount_amount", f"must be >= 0, got {discount_amount}")
    if tax_amount_override is not None and tax_amount_override < ZERO:
        raise ValidationError("tax_amount", f"must be >= 0, got {tax_amount_override}")

    unrounded = sum((item.quantity * item.unit_price for item in items), ZERO)
    subtotal = round_money(unrounded)
    if tax_amount_override is not None:
        tax_amount = round_money(tax_amount_override)
    else:
        tax_amount = tax_on(unrounded, tax_percentage)
    discount = round_money(discount_amount)

    if discount > subtotal + tax_amount:
        raise InvalidDiscount(
            "discount_amount",
            f"discount {discount} exceeds subtotal plus tax ({subtotal + tax_amount})",
        )

    return InvoiceTotals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        discount_amount=discount,
        total=subtotal + tax_amount - discount,
        tax_overridden=tax_amount_override is not None,
    )


def line_item_for_session(priced: PricedSession) -> LineItem:
    return LineItem(
        description=f"Charging session {priced.session_id}",
        quantity=Decimal(1),
        unit_price=priced.subtotal,
        session_id=priced.session_id,
    )


@dataclass
class Invoice:
    invoice_number: str
    currency: str = DEFAULT_CURRENCY
    tax_percentage: Decimal = ZERO
    items: List[LineItem] = field(default_factory=list)
    discount_amount: Decimal = ZERO
    tax_amount_override: Optional[Decimal] = None
    status: str = "draft"
    kind: str = "invoice"  # "invoice" | "credit_note"
    corrects: Optional[str] = None  # invoice number a credit note compensates
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    payment_date: Optional[date] = None
    payment_method: Optional[str] = None
    notes: str = ""

    @property
    def totals(self) -> InvoiceTotals:
        t = assemble(self.items, self.tax_percentage, self.tax_amount_override, self.discount_amount)
        return t.negated() if self.kind == "credit_note" else t

    @property
    def session_ids(self) -> List[str]:
        return [i.session_id for i in self.items if i.session_id]

    # ------------------------------------------------------------
    # Draft-only edits
    # ------------------------------------------------------------
    def _require_draft(self, action: str) -> None:
        if self.status != "draft":
            raise InvoiceFrozen(
                "status",
                f"cannot {action} invoice {self.invoice_number} in status {self.status!r}; issue a credit note instead",
            )

    def add_item(self, item: LineItem) -> None:
        self._require_draft("add items to")
        validate_line_item(item)
        if item.session_id and item.session_id in self.session_ids:
            raise InvalidLineItem("session_id", f"session {item.session_id} is already on invoice {self.invoice_number}")
        items = self.items + [item]
        assemble(items, self.tax_percentage, self.tax_amount_override, self.discount_amount)
        self.items = items

    def remove_item(self, index: int) -> LineItem:
        self._require_draft("remove items from")
        if index < 0 or index >= len(self.items):
            raise InvalidLineItem("index", f"no line item at position {index}")
        items = self.items[:index] + self.items[index + 1:]
        # Removing an item can push an existing discount past the new total.
        assemble(items, self.tax_percentage, self.tax_amount_override, self.discount_amount)
        removed = self.items[index]
        self.items = items
        return removed

    def set_discount(self, discount_amount: Decimal) -> None:
        self._require_draft("change the discount on")
        assemble(self.items, self.tax_percentage, self.tax_amount_override, discount_amount)
        self.discount_amount = discount_amount

    def override_tax(self, tax_amount: Decimal) -> None:
        self._require_draft("override tax on")
        assemble(self.items, self.tax_percentage, tax_amount, self.discount_amount)
        self.tax_amount_override = tax_amount

    def clear_tax_override(self) -> None:
        self._require_draft("override tax on")
        assemble(self.items, self.tax_percentage, None, self.discount_amount)
        self.tax_amount_override = None

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------
    def _transition(self, target: str) -> None:
        if target not in _TRANSITIONS.get(self.status, set()):
            raise InvalidInvoiceTransition("status", f"cannot move invoice {self.invoice_number} from {self.status} to {target}")
        _LOGGER.info("Invoice %s: %s -> %s", self.invoice_number, self.status, target)
        self.status = target

    def mark_sent(self, issue_date: Optional[date] = None, due_date: Optional[date] = None) -> None:
        if not self.items:
            raise InvalidLineItem("items", f"invoice {self.invoice_number} has no line items")
        self._transition("sent")
        self.issue_date = issue_date or self.issue_date
        self.due_date = due_date or self.due_date

    def mark_paid(self, payment_date: date, payment_method: str) -> None:
        self._transition("paid")
        self.payment_date = payment_date
        self.payment_method = payment_method

    def mark_overdue(self) -> None:
        self._transition("overdue")

    def cancel(self) -> None:
        self._transition("cancelled")

    def credit_note(self, invoice_number: str, notes: str = "") -> "Invoice":
        """A draft compensating document mirroring this invoice with opposite sign."""
        if self.kind == "credit_note":
            raise InvalidInvoiceTransition("kind", "a credit note cannot itself be credited")
        if self.status in ("draft", "cancelled"):
            raise InvalidInvoiceTransition(
                "status",
                f"invoice {self.invoice_number} is {self.status}; only issued invoices are credited",
            )
        return Invoice(
            invoice_number=invoice_number,
            currency=self.currency,
            tax_percentage=self.tax_percentage,
            items=list(self.items),
            discount_amount=self.discount_amount,
            tax_amount_override=self.tax_amount_override,
            kind="credit_note",
            corrects=self.invoice_number,
            notes=notes or f"Credit note for invoice {self.invoice_number}",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "invoice_number": self.invoice_number,
            "kind": self.kind,
            "corrects": self.corrects,
            "status": self.status,
            "currency": self.currency,
            "tax_percentage": _dec(self.tax_percentage),
            "items": [i.to_dict() for i in self.items],
            "totals": self.totals.to_dict(),
            "issue_date": self.issue_date.isoformat() if self.issue_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
            "payment_method": self.payment_method,
            "notes": self.notes,
        }


def build_invoice(
    invoice_number: str,
    priced_sessions: Iterable[PricedSession] = (),
    manual_items: Iterable[LineItem] = (),
    *,
    tax_percentage: Optional[Decimal] = None,
    tax_amount_override: Optional[Decimal] = None,
    discount_amount: Decimal = ZERO,
    currency: Optional[str] = None,
    notes: str = "",
) -> Invoice:
    """Draft invoice for priced sessions plus manual line items.

    Sessions enter at their pre-tax subtotal; tax is charged once on the
    invoice, at the sessions' shared rate unless one is given.
    """
    sessions = list(priced_sessions)

    currencies = {p.currency for p in sessions}
    if currency is not None:
        currencies.add(currency)
    if len(currencies) > 1:
        raise ValidationError("currency", f"cannot mix currencies on one invoice: {', '.join(sorted(currencies))}")

    if tax_percentage is None:
        rates = {p.tax_percentage for p in sessions}
        if len(rates) > 1:
            raise ValidationError(
                "tax_percentage",
                "sessions use different tax rates; pass tax_percentage explicitly",
            )
        tax_percentage = rates.pop() if rates else ZERO

    invoice = Invoice(
        invoice_number=invoice_number,
        currency=currencies.pop() if currencies else DEFAULT_CURRENCY,
        tax_percentage=tax_percentage,
        notes=notes,
    )
    for priced in sessions:
        invoice.add_item(line_item_for_session(priced))
    for item in manual_items:
        invoice.add_item(item)
    if tax_amount_override is not None:
        invoice.override_tax(tax_amount_override)
    if discount_amount:
        invoice.set_discount(discount_amount)

    _LOGGER.info(
        "Built draft invoice %s: %d items (%d sessions), total=%s %s",
        invoice.invoice_number,
        len(invoice.items),
        len(sessions),
        invoice.totals.total,
        invoice.currency,
    )
    return invoice
