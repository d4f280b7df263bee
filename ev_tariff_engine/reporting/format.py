from decimal import Decimal
from typing import Any, Dict, Iterable, List

from ..billing.invoice import Invoice
from ..pricing.batch import BatchFailure
from ..pricing.session import PricedSession
from ..pricing.units import round_money


def _md_escape(v: Any) -> str:
    s = "" if v is None else str(v)
    # Escape pipes so Markdown tables don't break
    return s.replace("|", "\\|").replace("\n", " ").strip()


def _format_currency(value: Decimal, currency: str) -> str:
    return f"{round_money(value):,.2f} {currency}"


def _format_multiplier(value: Decimal) -> str:
    return "x" + format(value.normalize(), "f")


def _format_kwh(value: Decimal) -> str:
    return f"{value:,.3f}"


def render_sessions_table(priced: Iterable[PricedSession]) -> str:
    rows = [
        "| Session | Rate table | Tier | Energy (kWh) | Energy | Time | Fees | Subtotal | Tax | Total |",
        "|---|---|---|---|---|---|---|---|---|---|",
    ]
    for p in priced:
        rows.append(
            "| {sid} | {rt} | {tier} | {kwh} | {energy} | {time} | {fees} | {sub} | {tax} | {total} |".format(
                sid=_md_escape(p.session_id),
                rt=_md_escape(f"{p.rate_table_id} v{p.rate_table_version}"),
                tier=_md_escape(p.customer_tier),
                kwh=_format_kwh(p.energy_kwh),
                energy=_format_currency(p.energy_cost, p.currency),
                time=_format_currency(p.time_cost, p.currency),
                fees=_format_currency(p.base_price + p.session_fee, p.currency),
                sub=_format_currency(p.subtotal, p.currency),
                tax=_format_currency(p.tax_amount, p.currency),
                total=_format_currency(p.total, p.currency),
            )
        )
    return "\n".join(rows)


def render_multiplier_trace(priced: PricedSession) -> str:
    rows = [
        "| Slice | Start | End | Day | Time rule | Time mult. | Tier rule | Tier mult. | kWh | Cost |",
        "|---|---|---|---|---|---|---|---|---|---|",
    ]
    for entry, charge in zip(priced.multiplier_trace, priced.slices):
        rows.append(
            "| {i} | {start} | {end} | {day} | {tr} | {tm} | {ur} | {um} | {kwh} | {cost} |".format(
                i=entry.slice_index,
                start=entry.start.isoformat(),
                end=entry.end.isoformat(),
                day=entry.day_of_week,
                tr=_md_escape(entry.time_rule_id or "-"),
                tm=_format_multiplier(entry.time_multiplier),
                ur=_md_escape(entry.tier_rule_id or "-"),
                um=_format_multiplier(entry.tier_multiplier),
                kwh=_format_kwh(charge.energy_kwh),
                cost=_format_currency(charge.cost, priced.currency),
            )
        )
    return "\n".join(rows)


def render_failures_table(failures: Iterable[BatchFailure]) -> str:
    rows = [
        "| Session | Rate table | Error | Field | Retryable | Message |",
        "|---|---|---|---|---|---|",
    ]
    for f in failures:
        rows.append(
            "| {sid} | {rt} | {err} | {field} | {retry} | {msg} |".format(
                sid=_md_escape(f.session_id),
                rt=_md_escape(f.rate_table_id),
                err=_md_escape(f.error_type),
                field=_md_escape(f.field or "-"),
                retry="yes" if f.retryable else "no",
                msg=_md_escape(f.message),
            )
        )
    return "\n".join(rows)


def _totals_by_currency(priced: Iterable[PricedSession]) -> Dict[str, Dict[str, Decimal]]:
    out: Dict[str, Dict[str, Decimal]] = {}
    for p in priced:
        entry = out.setdefault(p.currency, {"subtotal": Decimal(0), "tax_amount": Decimal(0), "total": Decimal(0)})
        entry["subtotal"] += p.subtotal
        entry["tax_amount"] += p.tax_amount
        entry["total"] += p.total
    return out


def render_pricing_report(priced: List[PricedSession], failures: List[BatchFailure]) -> str:
    sections: List[str] = ["## Priced sessions", render_sessions_table(priced), ""]

    totals = _totals_by_currency(priced)
    if totals:
        sections.append("## Totals")
        sections.append("| Currency | Subtotal | Tax | Total |")
        sections.append("|---|---|---|---|")
        for currency in sorted(totals):
            t = totals[currency]
            sections.append(
                f"| {currency} | {_format_currency(t['subtotal'], currency)} | "
                f"{_format_currency(t['tax_amount'], currency)} | {_format_currency(t['total'], currency)} |"
            )
        sections.append("")

    sections.append("## Multiplier traces")
    for p in priced:
        sections.append(f"### {_md_escape(p.session_id)}")
        sections.append(render_multiplier_trace(p))
        sections.append("")

    if failures:
        sections.append("## Failed sessions")
        sections.append(render_failures_table(failures))

    return "\n".join(sections).strip()


def render_invoice(invoice: Invoice) -> str:
    currency = invoice.currency
    totals = invoice.totals
    sign = Decimal(-1) if invoice.kind == "credit_note" else Decimal(1)
    title = "Credit note" if invoice.kind == "credit_note" else "Invoice"

    sections: List[str] = [f"## {title} {_md_escape(invoice.invoice_number)} ({invoice.status})"]
    if invoice.corrects:
        sections.append(f"Corrects invoice {_md_escape(invoice.corrects)}.")
    sections.append("")
    sections.append("| Description | Quantity | Unit price | Total |")
    sections.append("|---|---|---|---|")
    for item in invoice.items:
        sections.append(
            "| {desc} | {qty} | {price} | {total} |".format(
                desc=_md_escape(item.description),
                qty=format(item.quantity.normalize(), "f"),
                price=_format_currency(item.unit_price, currency),
                total=_format_currency(sign * item.total, currency),
            )
        )
    sections.append("")
    tax_label = "Tax (manual)" if totals.tax_overridden else f"Tax ({format(invoice.tax_percentage.normalize(), 'f')}%)"
    sections.append("| | Amount |")
    sections.append("|---|---|")
    sections.append(f"| Subtotal | {_format_currency(totals.subtotal, currency)} |")
    sections.append(f"| {tax_label} | {_format_currency(totals.tax_amount, currency)} |")
    sections.append(f"| Discount | -{_format_currency(abs(totals.discount_amount), currency)} |")
    sections.append(f"| **Total** | **{_format_currency(totals.total, currency)}** |")
    return "\n".join(sections).strip()
