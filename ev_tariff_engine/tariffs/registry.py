"""Versioned, append-only store of rate tables and their rule sets.

Every change goes through an explicit command and produces a new version; the
versions already recorded are never touched. That keeps any invoice that
references (rate_table_id, version) reproducible, and the recorded commands
form the audit history of a tariff.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple, Union

from ..errors import InvalidRateTable, InvalidRestriction, MissingRateTable
from .rules import TierRules, TimeWindowRules
from .types import RateTable, RateTableId, TimeRestriction, UserRestriction
from .validation import validate_rate_table

_LOGGER = logging.getLogger(__name__)

_EDITABLE_RATE_FIELDS = (
    "currency",
    "base_price",
    "price_per_kwh",
    "price_per_minute",
    "price_per_session",
    "tax_percentage",
    "status",
    "name",
    "description",
)


@dataclass(frozen=True)
class TariffSnapshot:
    """A rate table together with its rules, frozen for one pricing call."""

    rate_table: RateTable
    time_restrictions: Tuple[TimeRestriction, ...] = ()
    user_restrictions: Tuple[UserRestriction, ...] = ()

    @property
    def rate_table_id(self) -> RateTableId:
        return self.rate_table.id

    @property
    def version(self) -> int:
        return self.rate_table.version


def validate_snapshot(snapshot: TariffSnapshot) -> None:
    validate_rate_table(snapshot.rate_table)
    TimeWindowRules(snapshot.time_restrictions)
    TierRules(snapshot.user_restrictions)
    seen = set()
    for r in snapshot.time_restrictions:
        if r.rule_id in seen:
            raise InvalidRestriction("id", f"duplicate time restriction id {r.rule_id!r}")
        seen.add(r.rule_id)


# ------------------------------------------------------------
# Commands
# ------------------------------------------------------------
@dataclass(frozen=True)
class AddTimeRestriction:
    restriction: TimeRestriction

    def apply(self, snapshot: TariffSnapshot) -> TariffSnapshot:
        if any(r.rule_id == self.restriction.rule_id for r in snapshot.time_restrictions):
            raise InvalidRestriction("id", f"time restriction {self.restriction.rule_id!r} already exists")
        return replace(snapshot, time_restrictions=snapshot.time_restrictions + (self.restriction,))


@dataclass(frozen=True)
class RemoveTimeRestriction:
    rule_id: str

    def apply(self, snapshot: TariffSnapshot) -> TariffSnapshot:
        kept = tuple(r for r in snapshot.time_restrictions if r.rule_id != str(self.rule_id))
        if len(kept) == len(snapshot.time_restrictions):
            raise InvalidRestriction("rule_id", f"no time restriction {self.rule_id!r}")
        return replace(snapshot, time_restrictions=kept)


@dataclass(frozen=True)
class AddUserRestriction:
    """Adds a tier multiplier; an existing rule for the same tier is replaced."""

    restriction: UserRestriction

    def apply(self, snapshot: TariffSnapshot) -> TariffSnapshot:
        kept = tuple(r for r in snapshot.user_restrictions if r.user_type != self.restriction.user_type)
        if len(kept) != len(snapshot.user_restrictions):
            _LOGGER.info(
                "Replacing %s multiplier on rate table %s",
                self.restriction.user_type,
                snapshot.rate_table_id,
            )
        return replace(snapshot, user_restrictions=kept + (self.restriction,))


@dataclass(frozen=True)
class RemoveUserRestriction:
    rule_id: str

    def apply(self, snapshot: TariffSnapshot) -> TariffSnapshot:
        kept = tuple(r for r in snapshot.user_restrictions if r.rule_id != str(self.rule_id))
        if len(kept) == len(snapshot.user_restrictions):
            raise InvalidRestriction("rule_id", f"no user restriction {self.rule_id!r}")
        return replace(snapshot, user_restrictions=kept)


@dataclass(frozen=True)
class UpdateRates:
    changes: Dict[str, Any] = field(default_factory=dict)

    def apply(self, snapshot: TariffSnapshot) -> TariffSnapshot:
        unknown = sorted(set(self.changes) - set(_EDITABLE_RATE_FIELDS))
        if unknown:
            raise InvalidRateTable(unknown[0], "field cannot be edited")
        return replace(snapshot, rate_table=replace(snapshot.rate_table, **self.changes))


TariffCommand = Union[
    AddTimeRestriction,
    RemoveTimeRestriction,
    AddUserRestriction,
    RemoveUserRestriction,
    UpdateRates,
]


@dataclass(frozen=True)
class VersionEntry:
    snapshot: TariffSnapshot
    command: Optional[TariffCommand] = None  # None for a full (re)registration


@dataclass
class TariffRegistry:
    """Lookup table of tariff versions by rate table id."""

    # Keyed by str(rate_table_id); 7 and "7" name the same table.
    history: Dict[str, List[VersionEntry]] = field(default_factory=dict)

    def register(self, snapshot: TariffSnapshot) -> TariffSnapshot:
        """Record a whole tariff. Registering a known id appends a new version."""
        return self._append(snapshot.rate_table_id, snapshot, None)

    def apply(self, rate_table_id: RateTableId, command: TariffCommand) -> TariffSnapshot:
        current = self.snapshot(rate_table_id)
        return self._append(rate_table_id, command.apply(current), command)

    def snapshot(self, rate_table_id: RateTableId, version: Optional[int] = None) -> TariffSnapshot:
        entries = self.history.get(str(rate_table_id))
        if not entries:
            raise MissingRateTable(rate_table_id)
        if version is None:
            return entries[-1].snapshot
        if version < 1 or version > len(entries):
            raise MissingRateTable(rate_table_id, f"unknown version {version}")
        return entries[version - 1].snapshot

    def versions(self, rate_table_id: RateTableId) -> List[VersionEntry]:
        return list(self.history.get(str(rate_table_id), []))

    def ids(self) -> List[str]:
        return list(self.history.keys())

    def __contains__(self, rate_table_id: object) -> bool:
        return str(rate_table_id) in self.history

    def _append(
        self,
        rate_table_id: RateTableId,
        snapshot: TariffSnapshot,
        command: Optional[TariffCommand],
    ) -> TariffSnapshot:
        next_version = len(self.history.get(str(rate_table_id), [])) + 1
        versioned = replace(snapshot, rate_table=replace(snapshot.rate_table, version=next_version))
        validate_snapshot(versioned)
        self.history.setdefault(str(rate_table_id), []).append(VersionEntry(snapshot=versioned, command=command))
        _LOGGER.debug(
            "Rate table %s now at version %d (%s)",
            rate_table_id,
            versioned.version,
            type(command).__name__ if command is not None else "register",
        )
        return versioned
