from .batch import BatchFailure, BatchResult, reprice_batch, reprice_sessions
from .session import MultiplierTraceEntry, PricedSession, SliceCharge, price_session, price_snapshot
from .slicing import SessionSlice, split_session
from .units import round_money

__all__ = [
    "price_session",
    "price_snapshot",
    "PricedSession",
    "SliceCharge",
    "MultiplierTraceEntry",
    "SessionSlice",
    "split_session",
    "round_money",
    "reprice_sessions",
    "reprice_batch",
    "BatchResult",
    "BatchFailure",
]
