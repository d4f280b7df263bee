"""Batch re-pricing (nightly reconciliation and the CLI).

Sessions are independent, so they are priced concurrently in worker threads
under a semaphore. A failing session never aborts the run: its error is
recorded as a BatchFailure and the rest carry on. Results are keyed by
session_id, so writing them out is an idempotent upsert.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ..config import DEFAULT_BATCH_WORKERS
from ..errors import TariffEngineError, ValidationError
from ..tariffs.registry import TariffRegistry, TariffSnapshot
from ..tariffs.types import ChargingSession, RateTableId
from .session import PricedSession, price_snapshot

_LOGGER = logging.getLogger(__name__)

SnapshotResolver = Callable[[RateTableId], Optional[TariffSnapshot]]


@dataclass(frozen=True)
class BatchFailure:
    session_id: str
    rate_table_id: Optional[RateTableId]
    error_type: str
    message: str
    field: Optional[str] = None
    retryable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "rate_table_id": self.rate_table_id,
            "error_type": self.error_type,
            "message": self.message,
            "field": self.field,
            "retryable": self.retryable,
        }


@dataclass
class BatchResult:
    priced: Dict[str, PricedSession] = field(default_factory=dict)
    failures: List[BatchFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def upsert(self, priced: PricedSession) -> None:
        self.priced[priced.session_id] = priced


def _failure(session: ChargingSession, ex: Exception) -> BatchFailure:
    return BatchFailure(
        session_id=session.session_id,
        rate_table_id=session.rate_table_id,
        error_type=type(ex).__name__,
        message=str(ex),
        field=ex.field if isinstance(ex, ValidationError) else None,
        retryable=getattr(ex, "retryable", False),
    )


def _price_one(session: ChargingSession, resolve: SnapshotResolver) -> PricedSession:
    # The snapshot is taken once, before pricing starts; later edits to the
    # registry do not affect this session.
    return price_snapshot(session, resolve(session.rate_table_id))


async def reprice_sessions(
    sessions: Iterable[ChargingSession],
    tariffs: Union[TariffRegistry, SnapshotResolver],
    *,
    max_workers: int = DEFAULT_BATCH_WORKERS,
    trace=None,
) -> BatchResult:
    resolve: SnapshotResolver = tariffs.snapshot if isinstance(tariffs, TariffRegistry) else tariffs
    items = list(sessions)
    sem = asyncio.Semaphore(max(1, max_workers))

    _LOGGER.info("Re-pricing %d sessions (workers=%d).", len(items), max(1, max_workers))

    async def price_with_sem(session: ChargingSession):
        async with sem:
            try:
                return await asyncio.to_thread(_price_one, session, resolve)
            except TariffEngineError as ex:
                _LOGGER.warning("Session %s not priced: %s", session.session_id, ex)
                return _failure(session, ex)
            except Exception as ex:
                _LOGGER.exception("Unexpected error while pricing session %s.", session.session_id)
                return _failure(session, ex)

    outcomes = await asyncio.gather(*[price_with_sem(s) for s in items])

    result = BatchResult()
    for session, outcome in zip(items, outcomes):
        if isinstance(outcome, BatchFailure):
            result.failures.append(outcome)
            if trace is not None:
                trace.log("session_failed", outcome.to_dict(), session_id=session.session_id)
            continue
        if outcome.session_id in result.priced:
            _LOGGER.warning("Session %s appears more than once; keeping the last result.", outcome.session_id)
        result.upsert(outcome)
        if trace is not None:
            trace.log(
                "session_priced",
                {
                    "rate_table_id": outcome.rate_table_id,
                    "rate_table_version": outcome.rate_table_version,
                    "subtotal": outcome.subtotal,
                    "tax_amount": outcome.tax_amount,
                    "total": outcome.total,
                    "multiplier_trace": [t.to_dict() for t in outcome.multiplier_trace],
                },
                session_id=session.session_id,
            )

    _LOGGER.info(
        "Re-pricing finished: %d priced, %d failed.",
        len(result.priced),
        len(result.failures),
    )
    return result


def reprice_batch(
    sessions: Iterable[ChargingSession],
    tariffs: Union[TariffRegistry, SnapshotResolver],
    *,
    max_workers: int = DEFAULT_BATCH_WORKERS,
    trace=None,
) -> BatchResult:
    """Synchronous wrapper around reprice_sessions()."""
    return asyncio.run(reprice_sessions(sessions, tariffs, max_workers=max_workers, trace=trace))
