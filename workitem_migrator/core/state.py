"""Per-record migration state and the thread-safe store that owns it.

Every ``MigrationRecord`` of a run lives in one ``StateStore``. Batches only
touch their own records, and only through the store's mutators, so a reader
iterating a ``snapshot()`` never sees a half-written record it is working on.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Hashable, Iterable, Iterator, TypeVar

from workitem_migrator.types import (
    FailureReason,
    MigrationAction,
    PhaseCompletion,
    PhaseRequirement,
    WorkItem,
)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


# ---------------------------------------------------------------------------
# Back-link marker
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceLinkMarker:
    """Revision and completed steps stored in the back-link comment."""

    rev: int = -1
    steps: frozenset[str] = frozenset()

    def to_comment(self) -> str:
        return json.dumps({"rev": self.rev, "steps": sorted(self.steps)})

    def covers(self, steps: Iterable[str]) -> bool:
        """True when every step in ``steps`` is already recorded."""
        return set(steps) <= self.steps

    @classmethod
    def from_comment(cls, comment: str | None) -> SourceLinkMarker:
        """Parse a back-link comment.

        Accepts the current ``{"rev": n, "steps": [...]}`` document, the
        older ``{"SourceRev": n}`` document and the ``"n;step;step"`` form.
        Anything unreadable yields rev -1 with no steps so the record is
        reworked.
        """
        if not comment:
            return cls()
        text = comment.strip()
        try:
            data = json.loads(text)
        except ValueError:
            data = None

        if isinstance(data, dict):
            rev = data.get("rev", data.get("SourceRev", -1))
            steps = data.get("steps") or []
            try:
                return cls(rev=int(rev), steps=frozenset(str(s) for s in steps))
            except (TypeError, ValueError):
                return cls()
        if isinstance(data, int):
            return cls(rev=data)

        parts = [p.strip() for p in text.split(";") if p.strip()]
        if not parts:
            return cls()
        try:
            rev = int(parts[0])
        except ValueError:
            return cls()
        return cls(rev=rev, steps=frozenset(parts[1:]))


# ---------------------------------------------------------------------------
# Migration record
# ---------------------------------------------------------------------------


@dataclass
class MigrationRecord:
    """State of one source work item across the three phases."""

    source_id: int
    source_url: str
    target_id: int | None = None
    target_url: str | None = None
    action: MigrationAction = MigrationAction.NONE
    failure_reason: FailureReason = FailureReason.NONE
    requirement: PhaseRequirement = PhaseRequirement.NONE
    completed: PhaseCompletion = PhaseCompletion.NONE
    marker: SourceLinkMarker | None = None
    source_item: WorkItem | None = field(default=None, repr=False)
    target_item: WorkItem | None = field(default=None, repr=False)

    @property
    def has_failure(self) -> bool:
        return self.failure_reason != FailureReason.NONE

    @property
    def source_rev(self) -> int | None:
        if self.source_item is None:
            return None
        return self.source_item.get("rev")


# ---------------------------------------------------------------------------
# Append-only concurrent collections
# ---------------------------------------------------------------------------


class ConcurrentSet(Generic[K]):
    """Set that many threads may add to without external locking."""

    def __init__(self, items: Iterable[K] = ()) -> None:
        self._lock = threading.Lock()
        self._items: set[K] = set(items)

    def add(self, item: K) -> bool:
        """Add ``item``; return True when it was not present yet."""
        with self._lock:
            if item in self._items:
                return False
            self._items.add(item)
            return True

    def update(self, items: Iterable[K]) -> None:
        with self._lock:
            self._items.update(items)

    def __contains__(self, item: object) -> bool:
        with self._lock:
            return item in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __iter__(self) -> Iterator[K]:
        with self._lock:
            return iter(list(self._items))


class ConcurrentMap(Generic[K, V]):
    """Insert-once map that many threads may write to without external locking."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: dict[K, V] = {}

    def add(self, key: K, value: V) -> bool:
        """Insert ``key`` unless present; return True when inserted."""
        with self._lock:
            if key in self._items:
                return False
            self._items[key] = value
            return True

    def get(self, key: K, default: V | None = None) -> V | None:
        with self._lock:
            return self._items.get(key, default)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def items(self) -> list[tuple[K, V]]:
        with self._lock:
            return list(self._items.items())


# ---------------------------------------------------------------------------
# State store
# ---------------------------------------------------------------------------


class StateStore:
    """Thread-safe owner of every MigrationRecord in a run.

    Records are never removed. Identity fields (source id and url) are fixed
    at insertion; everything else changes only through the mutators below.
    """

    def __init__(self, records: Iterable[MigrationRecord] = ()) -> None:
        self._lock = threading.RLock()
        self._records: dict[int, MigrationRecord] = {}
        for record in records:
            self.upsert(record)

    # -- basic access -------------------------------------------------------

    def get(self, source_id: int) -> MigrationRecord | None:
        with self._lock:
            return self._records.get(source_id)

    def upsert(self, record: MigrationRecord) -> MigrationRecord:
        with self._lock:
            self._records[record.source_id] = record
            return record

    def snapshot(self) -> list[MigrationRecord]:
        """Point-in-time list of records in insertion order."""
        with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, source_id: object) -> bool:
        with self._lock:
            return source_id in self._records

    # -- mutators -----------------------------------------------------------

    def _mutate(self, source_id: int, change: Callable[[MigrationRecord], Any]) -> None:
        with self._lock:
            record = self._records.get(source_id)
            if record is None:
                raise KeyError(f"No migration record for source id {source_id}")
            change(record)

    def add_failure(self, source_id: int, reason: FailureReason) -> None:
        def change(record: MigrationRecord) -> None:
            record.failure_reason |= reason

        self._mutate(source_id, change)

    def mark_completed(self, source_id: int, phase: PhaseCompletion) -> None:
        def change(record: MigrationRecord) -> None:
            record.completed |= phase

        self._mutate(source_id, change)

    def set_action(
        self,
        source_id: int,
        action: MigrationAction,
        requirement: PhaseRequirement = PhaseRequirement.NONE,
    ) -> None:
        def change(record: MigrationRecord) -> None:
            record.action = action
            record.requirement = requirement

        self._mutate(source_id, change)

    def resolve_target(
        self,
        source_id: int,
        target_id: int,
        target_url: str | None = None,
        target_item: WorkItem | None = None,
    ) -> None:
        """Record the target work item that corresponds to ``source_id``."""

        def change(record: MigrationRecord) -> None:
            record.target_id = target_id
            record.target_url = target_url
            if target_item is not None:
                record.target_item = target_item

        self._mutate(source_id, change)

    def cache_source_item(self, source_id: int, item: WorkItem) -> None:
        def change(record: MigrationRecord) -> None:
            record.source_item = item

        self._mutate(source_id, change)

    def cache_target_item(self, source_id: int, item: WorkItem) -> None:
        def change(record: MigrationRecord) -> None:
            record.target_item = item

        self._mutate(source_id, change)

    def set_marker(self, source_id: int, marker: SourceLinkMarker) -> None:
        def change(record: MigrationRecord) -> None:
            record.marker = marker

        self._mutate(source_id, change)

    # -- derived views ------------------------------------------------------

    def by_action(self, action: MigrationAction) -> list[MigrationRecord]:
        """Records the validator assigned ``action`` to, failed ones included."""
        return [r for r in self.snapshot() if r.action == action]

    def needing_phase(self, phase: int) -> list[MigrationRecord]:
        """Records that still have work to do in ``phase`` (1, 2 or 3)."""
        if phase == 1:
            return [r for r in self.snapshot() if _needs_phase1(r)]
        if phase == 2:
            return [r for r in self.snapshot() if _needs_phase2(r)]
        if phase == 3:
            return [r for r in self.snapshot() if _needs_phase3(r)]
        raise ValueError(f"Unknown phase: {phase}")

    def failed(self) -> list[MigrationRecord]:
        return [r for r in self.snapshot() if r.has_failure]

    def failed_by_reason(self) -> dict[FailureReason, list[MigrationRecord]]:
        """Failed records grouped by each single failure reason they carry."""
        grouped: dict[FailureReason, list[MigrationRecord]] = {}
        for record in self.failed():
            for reason in FailureReason:
                if reason.value and reason in record.failure_reason:
                    grouped.setdefault(reason, []).append(record)
        return grouped


def _needs_phase1(record: MigrationRecord) -> bool:
    if record.has_failure or PhaseCompletion.PHASE1 in record.completed:
        return False
    if record.action == MigrationAction.CREATE:
        return True
    return (
        record.action == MigrationAction.UPDATE
        and PhaseRequirement.NEEDS_PHASE1_UPDATE in record.requirement
    )


def _needs_phase2(record: MigrationRecord) -> bool:
    if record.has_failure or record.target_id is None:
        return False
    if PhaseCompletion.PHASE2 in record.completed:
        return False
    if record.action == MigrationAction.CREATE:
        return PhaseCompletion.PHASE1 in record.completed
    if record.action != MigrationAction.UPDATE:
        return False
    if PhaseRequirement.NEEDS_PHASE1_UPDATE in record.requirement:
        if PhaseCompletion.PHASE1 not in record.completed:
            return False
    return PhaseRequirement.NEEDS_PHASE2_UPDATE in record.requirement


def _needs_phase3(record: MigrationRecord) -> bool:
    if record.has_failure or PhaseCompletion.PHASE3 in record.completed:
        return False
    return bool(record.completed & (PhaseCompletion.PHASE1 | PhaseCompletion.PHASE2))
