#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
EV Tariff Engine – CLI

Flow (price):
- Loads tariffs (YAML/JSON, console REST shape) into a versioned registry.
- Loads closed charging sessions (JSON list or JSONL).
- Re-prices every session concurrently; failures are collected, not fatal.
- Writes priced_sessions.json keyed by session_id, failures.json and a
  Markdown report with per-slice multiplier traces.

Flow (invoice):
- Reads priced_sessions.json from a previous run plus optional manual items.
- Builds a draft invoice and writes invoice.json / invoice.md.
"""

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from importlib import metadata
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markdown import Markdown

from .billing.invoice import build_invoice, parse_line_item
from .config import DEFAULT_BATCH_WORKERS, DEFAULT_LOG_LEVEL, RUNS_DIR, TRACE_ENABLED
from .errors import TariffEngineError
from .pricing.batch import BatchResult, reprice_batch
from .pricing.session import PricedSession
from .reporting.format import render_invoice, render_pricing_report
from .tariffs.loader import load_sessions, load_tariffs, to_decimal
from .utils.trace import build_trace_logger

console = Console()
DEBUG: bool = False


# --------------------------------------------------------------------
# Argument parsing
# --------------------------------------------------------------------
def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output-prefix",
        type=str,
        default="ev_tariff",
        help="Run name; outputs go to <runs dir>/<prefix>/.",
    )
    parser.add_argument(
        "--output-format",
        choices=["markdown", "json", "both"],
        default="both",
        help="Write the Markdown report, the JSON output, or both.",
    )
    parser.add_argument(
        "--log-level",
        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
        default=DEFAULT_LOG_LEVEL,
        help="Logging level for internal messages.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Verbose debug output (same as --log-level DEBUG).",
    )
    parser.add_argument(
        "--trace",
        action="store_true",
        help="Force writing the audit trace JSONL even if EVTARIFF_TRACE disables it.",
    )
    parser.add_argument(
        "--trace-path",
        type=str,
        default=None,
        help="Override trace output path (default: <run dir>/trace.jsonl).",
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ev-tariff",
        description=(
            "EV charging tariff engine\n\n"
            "- price: price closed charging sessions against versioned tariffs\n"
            "- invoice: assemble priced sessions and manual items into a draft invoice\n"
        ),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    price = sub.add_parser("price", help="Price charging sessions.", formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    price.add_argument("--tariffs", required=True, help="Tariff file (YAML or JSON; one tariff or a list).")
    price.add_argument("--sessions", required=True, help="Sessions file (JSON list or JSONL).")
    price.add_argument(
        "--workers",
        type=int,
        default=DEFAULT_BATCH_WORKERS,
        help="How many sessions to price concurrently.",
    )
    price.add_argument(
        "--fail-on-errors",
        action="store_true",
        help="Exit with code 2 if any session could not be priced.",
    )
    _add_common_args(price)

    invoice = sub.add_parser("invoice", help="Build a draft invoice.", formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    invoice.add_argument("--priced", required=True, help="priced_sessions.json from a previous 'price' run.")
    invoice.add_argument("--invoice-number", required=True, help="Invoice number, e.g. INV-2024-001.")
    invoice.add_argument("--items", default=None, help="Optional JSON list of manual line items.")
    invoice.add_argument("--session", action="append", default=[], help="Only bill these session ids (repeatable).")
    invoice.add_argument("--discount", default="0", help="Discount amount.")
    invoice.add_argument("--tax-percentage", default=None, help="Tax rate; defaults to the sessions' shared rate.")
    invoice.add_argument("--tax-override", default=None, help="Manual tax amount (draft override).")
    invoice.add_argument("--currency", default=None, help="Invoice currency (must match the sessions).")
    invoice.add_argument("--notes", default="", help="Free-text notes.")
    _add_common_args(invoice)

    return parser.parse_args(argv)


# --------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------
def _write_json(path: Path, payload: Any) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)


def _load_priced(path: Path, only: List[str]) -> List[PricedSession]:
    data = json.loads(path.read_text(encoding="utf-8"))
    records = data.values() if isinstance(data, dict) else data
    priced = [PricedSession.from_dict(r) for r in records]
    if only:
        wanted = set(only)
        priced = [p for p in priced if p.session_id in wanted]
    return priced


def _load_items(path: Optional[str]) -> list:
    if not path:
        return []
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("items") or []
    return [parse_line_item(obj, ctx=f"{Path(path).name}[{i}]") for i, obj in enumerate(data)]


def _tool_version() -> str:
    try:
        return metadata.version("ev-tariff-engine")
    except metadata.PackageNotFoundError:
        return "dev"


def _price_command(args: argparse.Namespace, run_dir: Path, trace, logger: logging.Logger) -> Dict[str, str]:
    registry = load_tariffs(args.tariffs)
    sessions = load_sessions(args.sessions)
    logger.info("Loaded %d rate tables and %d sessions.", len(registry.ids()), len(sessions))
    trace.log(
        "inputs_loaded",
        {
            "tariffs": args.tariffs,
            "sessions": args.sessions,
            "rate_tables": {str(rt): registry.snapshot(rt).version for rt in registry.ids()},
            "session_count": len(sessions),
        },
    )

    console.print(f"[cyan]Pricing {len(sessions)} sessions…[/cyan]")
    result: BatchResult = reprice_batch(sessions, registry, max_workers=args.workers, trace=trace)

    outputs: Dict[str, str] = {}
    if args.output_format in ("json", "both"):
        priced_path = run_dir / "priced_sessions.json"
        _write_json(priced_path, {sid: p.to_dict() for sid, p in sorted(result.priced.items())})
        failures_path = run_dir / "failures.json"
        _write_json(failures_path, [f.to_dict() for f in result.failures])
        outputs.update({"priced_sessions": str(priced_path), "failures": str(failures_path)})
        logger.info("Saved priced sessions to %s", priced_path)

    report_md = render_pricing_report(
        [result.priced[sid] for sid in sorted(result.priced)],
        result.failures,
    )
    if args.output_format in ("markdown", "both"):
        md_path = run_dir / "report.md"
        with open(md_path, "w", encoding="utf-8") as f:
            f.write(report_md)
        outputs["report"] = str(md_path)

    console.rule("[bold green]Pricing report[/bold green]")
    console.print(Markdown(report_md))

    if result.failures:
        console.print(f"[yellow]{len(result.failures)} session(s) could not be priced:[/yellow]")
        for f in result.failures:
            console.print(f"  - {f.session_id}: {f.error_type} ({f.message})")
        if args.fail_on_errors:
            console.print("[red]--fail-on-errors is set; exiting with code 2.[/red]")
            raise SystemExit(2)
    return outputs


def _invoice_command(args: argparse.Namespace, run_dir: Path, trace, logger: logging.Logger) -> Dict[str, str]:
    priced = _load_priced(Path(args.priced), args.session)
    items = _load_items(args.items)
    invoice = build_invoice(
        args.invoice_number,
        priced,
        items,
        tax_percentage=to_decimal(args.tax_percentage, "tax_percentage") if args.tax_percentage is not None else None,
        tax_amount_override=to_decimal(args.tax_override, "tax_amount") if args.tax_override is not None else None,
        discount_amount=to_decimal(args.discount, "discount_amount"),
        currency=args.currency,
        notes=args.notes,
    )
    trace.log("invoice_built", invoice.to_dict(), invoice_number=invoice.invoice_number)

    outputs: Dict[str, str] = {}
    if args.output_format in ("json", "both"):
        json_path = run_dir / "invoice.json"
        _write_json(json_path, invoice.to_dict())
        outputs["invoice"] = str(json_path)
        logger.info("Saved invoice to %s", json_path)

    invoice_md = render_invoice(invoice)
    if args.output_format in ("markdown", "both"):
        md_path = run_dir / "invoice.md"
        with open(md_path, "w", encoding="utf-8") as f:
            f.write(invoice_md)
        outputs["invoice_report"] = str(md_path)

    console.rule("[bold green]Invoice[/bold green]")
    console.print(Markdown(invoice_md))
    return outputs


# --------------------------------------------------------------------
# Main
# --------------------------------------------------------------------
def main(argv: Optional[List[str]] = None) -> None:
    global DEBUG
    args = parse_args(argv)

    run_dir = Path(RUNS_DIR) / args.output_prefix
    run_dir.mkdir(parents=True, exist_ok=True)
    trace_path = Path(args.trace_path) if args.trace_path else run_dir / "trace.jsonl"

    DEBUG = args.debug or (args.log_level.upper() == "DEBUG")
    log_handlers: list[logging.Handler] = [logging.StreamHandler()]
    console_log_path = run_dir / "console.log"
    log_handlers.append(logging.FileHandler(console_log_path, encoding="utf-8"))

    logging.basicConfig(
        level=logging.DEBUG if DEBUG else getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        handlers=log_handlers,
    )
    logger = logging.getLogger("ev_tariff_engine")
    logger.debug("CLI arguments: %s", args)

    trace_logger = build_trace_logger(trace_path, enabled=TRACE_ENABLED or args.trace)
    trace_logger.log(
        "setup",
        {"tool_version": _tool_version(), "command": args.command, "run_dir": str(run_dir)},
    )

    console.print("[bold]EV Tariff Engine[/bold]\n")

    try:
        if args.command == "price":
            outputs = _price_command(args, run_dir, trace_logger, logger)
        else:
            outputs = _invoice_command(args, run_dir, trace_logger, logger)
    except (TariffEngineError, OSError, ValueError, KeyError) as ex:
        logger.error("%s failed: %s", args.command, ex)
        console.print(f"[red]{args.command} failed: {ex}[/red]")
        sys.exit(1)

    metadata_path = run_dir / "metadata.json"
    _write_json(
        metadata_path,
        {
            "timestamp_utc": datetime.now(timezone.utc).isoformat(),
            "command": " ".join(sys.argv),
            "working_directory": os.getcwd(),
            "cli_args": vars(args),
            "tool_version": _tool_version(),
            "output_files": dict(outputs, trace=str(trace_path), console_log=str(console_log_path)),
        },
    )
    logger.info("Saved run metadata to %s", metadata_path)


if __name__ == "__main__":
    main()
