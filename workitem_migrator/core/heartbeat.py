"""Periodic status logging while a long phase runs."""

from __future__ import annotations

import logging
import threading

from workitem_migrator.core.state import StateStore
from workitem_migrator.types import MigrationAction, PhaseCompletion, PhaseRequirement
from workitem_migrator.utils.logging import log_with_context


def status_counts(store: StateStore) -> dict[str, int]:
    """Phase 1 and phase 2 progress counts for the records in ``store``."""
    counts = {
        "phase1_succeeded": 0,
        "phase1_failed": 0,
        "phase1_total": 0,
        "phase2_succeeded": 0,
        "phase2_failed": 0,
        "phase2_total": 0,
    }
    for record in store.snapshot():
        needs_phase1 = record.action == MigrationAction.CREATE or (
            record.action == MigrationAction.UPDATE
            and PhaseRequirement.NEEDS_PHASE1_UPDATE in record.requirement
        )
        needs_phase2 = record.action == MigrationAction.CREATE or (
            record.action == MigrationAction.UPDATE
            and PhaseRequirement.NEEDS_PHASE2_UPDATE in record.requirement
        )
        phase1_done = PhaseCompletion.PHASE1 in record.completed
        phase2_done = PhaseCompletion.PHASE2 in record.completed

        if needs_phase1:
            counts["phase1_total"] += 1
            if phase1_done:
                counts["phase1_succeeded"] += 1
            elif record.has_failure:
                counts["phase1_failed"] += 1
        if needs_phase2:
            counts["phase2_total"] += 1
            if phase2_done:
                counts["phase2_succeeded"] += 1
            elif record.has_failure and (phase1_done or not needs_phase1):
                counts["phase2_failed"] += 1
    return counts


class MigrationHeartbeat:
    """Logs migration status every ``frequency`` seconds until stopped.

    Use as a context manager around a phase::

        with MigrationHeartbeat(store, 30):
            migrator.phase1()
    """

    def __init__(self, store: StateStore, frequency: float) -> None:
        self.store = store
        self.frequency = frequency
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def beat(self) -> None:
        counts = status_counts(self.store)
        log_with_context(
            logging.INFO,
            "MIGRATION STATUS:\n"
            f"  work items that succeeded phase 1: {counts['phase1_succeeded']}\n"
            f"  work items that failed phase 1:    {counts['phase1_failed']}\n"
            f"  work items to process in phase 1:  {counts['phase1_total']}\n"
            f"  work items that succeeded phase 2: {counts['phase2_succeeded']}\n"
            f"  work items that failed phase 2:    {counts['phase2_failed']}\n"
            f"  work items to process in phase 2:  {counts['phase2_total']}",
        )

    def _run(self) -> None:
        while not self._stop.wait(self.frequency):
            self.beat()

    def start(self) -> None:
        if self._thread is not None or self.frequency <= 0:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="migration-heartbeat", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.frequency)
            self._thread = None

    def __enter__(self) -> MigrationHeartbeat:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
