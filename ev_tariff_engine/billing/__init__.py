from .invoice import (
    INVOICE_STATUSES,
    Invoice,
    InvoiceTotals,
    LineItem,
    assemble,
    build_invoice,
    line_item_for_session,
    parse_line_item,
)

__all__ = [
    "INVOICE_STATUSES",
    "Invoice",
    "InvoiceTotals",
    "LineItem",
    "assemble",
    "build_invoice",
    "line_item_for_session",
    "parse_line_item",
]
