"""Loader for tariffs and charging sessions.

Accepts the shapes the operator console already exposes through its REST
resources (tariff objects with nested time_restrictions / user_restrictions,
session billing records) as plain dicts, JSON, JSONL or YAML files.

The loader is intentionally strict:
- required keys must be present
- every number is converted to Decimal through its string form
- everything is validated before it is returned

Invalid input raises a ValidationError subclass naming the field and where it
was found, so a bad file fails fast instead of mispricing.
"""

from __future__ import annotations

import json
from datetime import datetime, time
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Type

import yaml

from ..config import DEFAULT_CURRENCY
from ..errors import (
    InvalidRateTable,
    InvalidRestriction,
    InvalidSession,
    InvalidWindow,
    ValidationError,
)
from .registry import TariffRegistry, TariffSnapshot
from .types import END_OF_DAY, WEEKDAYS, ChargingSession, RateTable, TimeRestriction, UserRestriction
from .validation import validate_rate_table, validate_session

_DAY_ALIASES = {d[:3]: d for d in WEEKDAYS}


def _as_list(x: Any) -> List[Any]:
    if x is None:
        return []
    if isinstance(x, list):
        return x
    return [x]


def _require(obj: Dict[str, Any], *keys: str, ctx: str, error: Type[ValidationError]) -> Any:
    for key in keys:
        if key in obj and obj[key] is not None:
            return obj[key]
    raise error(keys[0], f"missing required key in {ctx}")


def to_decimal(value: Any, field: str, *, error: Type[ValidationError] = ValidationError) -> Decimal:
    if isinstance(value, bool):
        raise error(field, f"expected a number, got {value!r}")
    if isinstance(value, Decimal):
        return value
    try:
        out = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise error(field, f"expected a number, got {value!r}") from None
    if not out.is_finite():
        raise error(field, f"expected a finite number, got {value!r}")
    return out


def parse_clock(value: Any, field: str) -> time:
    """Parse HH:MM or HH:MM:SS; 24:00 means the end of the day."""
    if isinstance(value, time):
        return value
    raw = str(value or "").strip()
    if raw in ("24:00", "24:00:00"):
        return END_OF_DAY
    for fmt in ("%H:%M:%S", "%H:%M"):
        try:
            return datetime.strptime(raw, fmt).time()
        except ValueError:
            continue
    raise InvalidWindow(field, f"expected HH:MM or HH:MM:SS, got {value!r}")


def parse_datetime(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        return value
    raw = str(value or "").strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        raise InvalidSession(field, f"expected an ISO 8601 datetime, got {value!r}") from None


def _parse_day(value: Any, ctx: str) -> str:
    day = str(value or "").strip().lower()
    day = _DAY_ALIASES.get(day, day)
    if day not in WEEKDAYS:
        raise InvalidRestriction("day_of_week", f"unknown day {value!r} in {ctx}")
    return day


def parse_time_restriction(obj: Dict[str, Any], *, ctx: str = "time_restriction") -> TimeRestriction:
    if not isinstance(obj, dict):
        raise InvalidRestriction("time_restrictions", f"time restriction must be an object in {ctx}")
    return TimeRestriction(
        id=obj.get("id"),
        day_of_week=_parse_day(_require(obj, "day_of_week", ctx=ctx, error=InvalidRestriction), ctx),
        start_time=parse_clock(_require(obj, "start_time", ctx=ctx, error=InvalidWindow), "start_time"),
        end_time=parse_clock(_require(obj, "end_time", ctx=ctx, error=InvalidWindow), "end_time"),
        multiplier=to_decimal(
            _require(obj, "multiplier", ctx=ctx, error=InvalidRestriction), "multiplier", error=InvalidRestriction
        ),
    )


def parse_user_restriction(obj: Dict[str, Any], *, ctx: str = "user_restriction") -> UserRestriction:
    if not isinstance(obj, dict):
        raise InvalidRestriction("user_restrictions", f"user restriction must be an object in {ctx}")
    tier = _require(obj, "user_type", "user_tier", ctx=ctx, error=InvalidRestriction)
    return UserRestriction(
        id=obj.get("id"),
        user_type=str(tier).strip().lower(),
        multiplier=to_decimal(
            _require(obj, "multiplier", ctx=ctx, error=InvalidRestriction), "multiplier", error=InvalidRestriction
        ),
    )


def parse_rate_table(obj: Dict[str, Any], *, ctx: str = "tariff") -> RateTable:
    if not isinstance(obj, dict):
        raise InvalidRateTable("tariff", f"tariff must be an object in {ctx}")

    def money(key: str) -> Decimal:
        value = obj.get(key)
        return to_decimal(0 if value is None else value, key, error=InvalidRateTable)

    rate_table = RateTable(
        id=_require(obj, "id", ctx=ctx, error=InvalidRateTable),
        currency=str(obj.get("currency") or DEFAULT_CURRENCY).strip().upper(),
        base_price=money("base_price"),
        price_per_kwh=money("price_per_kwh"),
        price_per_minute=money("price_per_minute"),
        price_per_session=money("price_per_session"),
        tax_percentage=money("tax_percentage"),
        status=str(obj.get("status") or "draft").strip().lower(),
        name=str(obj.get("name") or ""),
        description=str(obj.get("description") or ""),
    )
    validate_rate_table(rate_table)
    return rate_table


def parse_tariff(obj: Dict[str, Any], *, ctx: str = "tariff") -> TariffSnapshot:
    rate_table = parse_rate_table(obj, ctx=ctx)
    times = tuple(
        parse_time_restriction(it, ctx=f"{ctx}.time_restrictions[{i}]")
        for i, it in enumerate(_as_list(obj.get("time_restrictions")))
    )
    users = tuple(
        parse_user_restriction(it, ctx=f"{ctx}.user_restrictions[{i}]")
        for i, it in enumerate(_as_list(obj.get("user_restrictions")))
    )
    return TariffSnapshot(rate_table=rate_table, time_restrictions=times, user_restrictions=users)


def parse_session(obj: Dict[str, Any], *, ctx: str = "session") -> ChargingSession:
    if not isinstance(obj, dict):
        raise InvalidSession("session", f"session must be an object in {ctx}")
    session = ChargingSession(
        session_id=str(_require(obj, "session_id", "id", ctx=ctx, error=InvalidSession)),
        rate_table_id=_require(obj, "rate_table_id", "tariff_id", ctx=ctx, error=InvalidSession),
        customer_tier=str(obj.get("customer_tier") or obj.get("user_type") or "regular").strip().lower(),
        start_datetime=parse_datetime(_require(obj, "start_datetime", ctx=ctx, error=InvalidSession), "start_datetime"),
        end_datetime=parse_datetime(_require(obj, "end_datetime", ctx=ctx, error=InvalidSession), "end_datetime"),
        energy_kwh=to_decimal(
            _require(obj, "energy_kwh", "kwh_consumed", ctx=ctx, error=InvalidSession),
            "energy_kwh",
            error=InvalidSession,
        ),
    )
    validate_session(session)
    return session


# ------------------------------------------------------------
# Files
# ------------------------------------------------------------
def _load_document(path: Path) -> Any:
    raw = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            return yaml.safe_load(raw)
        if suffix == ".json":
            return json.loads(raw)
        if suffix == ".jsonl":
            return [json.loads(line) for line in raw.splitlines() if line.strip()]
    except (yaml.YAMLError, json.JSONDecodeError) as ex:
        raise ValidationError("path", f"cannot parse {path}: {ex}") from ex
    raise ValidationError("path", f"unsupported file type: {path}")


def _records(data: Any, key: str) -> Iterable[Any]:
    if isinstance(data, dict) and key in data:
        return _as_list(data[key])
    return _as_list(data)


def load_tariffs(path: Path | str, registry: TariffRegistry | None = None) -> TariffRegistry:
    """Load one tariff, a list of tariffs, or {"tariffs": [...]} into a registry."""
    p = Path(path)
    reg = registry if registry is not None else TariffRegistry()
    for i, obj in enumerate(_records(_load_document(p), "tariffs")):
        reg.register(parse_tariff(obj, ctx=f"{p.name}[{i}]"))
    return reg


def load_sessions(path: Path | str) -> List[ChargingSession]:
    p = Path(path)
    return [
        parse_session(obj, ctx=f"{p.name}[{i}]")
        for i, obj in enumerate(_records(_load_document(p), "sessions"))
    ]
