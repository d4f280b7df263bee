"""Evaluators for the two multiplier families of a tariff."""

from __future__ import annotations

import logging
from datetime import time
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from .types import ONE, TimeRestriction, UserRestriction, clock_micros
from .validation import validate_time_restriction, validate_user_restriction

_LOGGER = logging.getLogger(__name__)


class TimeWindowRules:
    """Day-of-week windows, each carrying a multiplier.

    Windows are half-open, [start_time, end_time). They are validated on
    construction, so a window wrapping midnight never gets this far.
    """

    def __init__(self, restrictions: Iterable[TimeRestriction] = ()):
        self._by_day: Dict[str, List[Tuple[int, TimeRestriction]]] = {}
        for position, r in enumerate(restrictions):
            validate_time_restriction(r)
            self._by_day.setdefault(r.day_of_week, []).append((position, r))

    def for_day(self, day_of_week: str) -> List[TimeRestriction]:
        return [r for _, r in self._by_day.get(day_of_week, [])]

    def matching(self, day_of_week: str, clock: time) -> List[TimeRestriction]:
        """All restrictions whose window contains the given instant."""
        return [r for _, r in self._matching_positions(day_of_week, clock_micros(clock))]

    def boundaries(self, day_of_week: str) -> List[int]:
        """Sorted window edges for a day, in microseconds since midnight."""
        edges = set()
        for _, r in self._by_day.get(day_of_week, []):
            edges.add(r.start_micros)
            edges.add(r.end_micros)
        return sorted(edges)

    def select(self, day_of_week: str, at_micros: int) -> Optional[TimeRestriction]:
        """Pick the restriction that applies at an instant.

        Latest start wins; ties go to the earliest end, then to the
        restriction authored last.
        """
        candidates = self._matching_positions(day_of_week, at_micros)
        if not candidates:
            return None
        if len(candidates) > 1:
            _LOGGER.debug(
                "Overlapping time windows on %s: %s",
                day_of_week,
                ", ".join(r.rule_id for _, r in candidates),
            )
        _, winner = max(candidates, key=lambda pr: (pr[1].start_micros, -pr[1].end_micros, pr[0]))
        return winner

    def _matching_positions(self, day_of_week: str, at_micros: int) -> List[Tuple[int, TimeRestriction]]:
        return [
            (pos, r)
            for pos, r in self._by_day.get(day_of_week, [])
            if r.start_micros <= at_micros < r.end_micros
        ]


class TierRules:
    """Customer-tier multipliers, at most one per tier (last write wins)."""

    def __init__(self, restrictions: Iterable[UserRestriction] = ()):
        self._by_tier: Dict[str, UserRestriction] = {}
        for r in restrictions:
            validate_user_restriction(r)
            previous = self._by_tier.get(r.user_type)
            if previous is not None:
                _LOGGER.warning(
                    "Duplicate tier restriction for %s: %s replaces %s",
                    r.user_type,
                    r.rule_id,
                    previous.rule_id,
                )
            self._by_tier[r.user_type] = r

    def lookup(self, tier: str) -> Tuple[Optional[UserRestriction], Decimal]:
        rule = self._by_tier.get(tier)
        if rule is None:
            return None, ONE
        return rule, rule.multiplier
