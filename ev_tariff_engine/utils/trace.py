"""Audit trail of pricing and invoicing runs, one JSON object per line.

Each event records which phase produced it, the run it belongs to and, where
relevant, the session or invoice it concerns. Money is written as exact
decimal strings so a disputed charge can be compared digit for digit with a
later re-pricing.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


@dataclass
class TraceLogger:
    path: Path
    enabled: bool = True
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    events_written: int = field(default=0, init=False)

    def log(
        self,
        phase: str,
        payload: Dict[str, Any],
        *,
        session_id: Optional[str] = None,
        invoice_number: Optional[str] = None,
    ) -> None:
        if not self.enabled:
            return
        if self.events_written == 0:
            self.path.parent.mkdir(parents=True, exist_ok=True)

        event: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "run_id": self.run_id,
            "seq": self.events_written,
            "phase": phase,
        }
        if session_id:
            event["session_id"] = session_id
        if invoice_number:
            event["invoice_number"] = invoice_number
        event["payload"] = payload

        line = json.dumps(event, ensure_ascii=False, default=_json_default)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        self.events_written += 1


def build_trace_logger(path: Path | str, enabled: bool = True) -> TraceLogger:
    return TraceLogger(Path(path), enabled=enabled)


def iter_trace(path: Path | str, *, session_id: Optional[str] = None) -> Iterator[Dict[str, Any]]:
    """Yield trace events in file order, optionally only those of one session."""
    p = Path(path)
    if not p.exists():
        return
    with p.open("r", encoding="utf-8") as handle:
        for line in handle:
            if not line.strip():
                continue
            event = json.loads(line)
            if session_id is not None and event.get("session_id") != session_id:
                continue
            yield event


def read_trace(path: Path | str, *, session_id: Optional[str] = None) -> List[Dict[str, Any]]:
    return list(iter_trace(path, session_id=session_id))


__all__ = ["TraceLogger", "build_trace_logger", "iter_trace", "read_trace"]
