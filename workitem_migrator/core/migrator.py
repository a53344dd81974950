"""
Migration orchestrator: runs the three phases over the validated records.

Phase 1 writes core fields in batched creates and updates, phase 2 runs the
enrichment pipeline with one write per work item, and phase 3 applies the
finalization steps to the source in batched writes. Each phase waits for all
of its batches before the next one starts.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from workitem_migrator.constants import HTTP_BAD_REQUEST, JSON_PATCH_CONTENT_TYPE
from workitem_migrator.core.context import MigrationContext
from workitem_migrator.core.heartbeat import MigrationHeartbeat
from workitem_migrator.core.pipeline import Pipeline
from workitem_migrator.core.reconciler import reconcile_batch
from workitem_migrator.core.requests import Phase1RequestBuilder
from workitem_migrator.core.scheduler import BatchContext, for_each_batch
from workitem_migrator.core.state import MigrationRecord
from workitem_migrator.exceptions import (
    MigrationAbortedError,
    PermanentFaultError,
    ReconciliationError,
    RemoteServiceError,
)
from workitem_migrator.processors import PHASE2_PROCESSORS, PHASE3_PROCESSORS
from workitem_migrator.types import (
    BatchRequest,
    FailureReason,
    LedgerEntry,
    MigrationAction,
    MigrationSummary,
    PhaseCompletion,
    flag_names,
)
from workitem_migrator.utils.logging import log_success, log_with_context
from workitem_migrator.utils.patch import order_relation_operations


class Migrator:
    """Runs phases 1 to 3 for the records in the context's state store."""

    def __init__(self, ctx: MigrationContext) -> None:
        self.ctx = ctx
        self.config = ctx.config
        self.store = ctx.store
        self.request_builder = Phase1RequestBuilder(ctx)
        self.phase2_pipeline = Pipeline.build(PHASE2_PROCESSORS, ctx)
        self.phase3_pipeline = Pipeline.build(PHASE3_PROCESSORS, ctx)

    def migrate(self) -> MigrationSummary:
        """Run every phase and return the end-of-run summary.

        Raises:
            MigrationAbortedError: If a batch response could not be reconciled
        """
        started = time.monotonic()
        log_with_context(
            logging.INFO,
            f"Phase 2 steps enabled: {', '.join(self.phase2_pipeline.names) or 'none'}",
        )
        with MigrationHeartbeat(self.store, self.config.heartbeat_frequency_in_seconds):
            for label, run in (
                ("Phase 1", self.phase1),
                ("Phase 2", self.phase2),
                ("Phase 3", self.phase3),
            ):
                try:
                    run()
                except ReconciliationError as e:
                    raise MigrationAbortedError(f"{label} aborted: {e}") from e

        summary = self.summarize()
        log_with_context(
            logging.INFO,
            f"Migration finished in {time.monotonic() - started:.1f}s: "
            f"{summary.created} created, {summary.updated} updated, "
            f"{summary.unchanged} unchanged, {summary.failed} failed",
        )
        return summary

    def _mark_batch_failed(
        self, phase: PhaseCompletion
    ) -> Callable[[BatchContext, BaseException], None]:
        def on_batch_error(batch: BatchContext, error: BaseException) -> None:
            for record in batch.records:
                current = self.store.get(record.source_id)
                if current is not None and phase not in current.completed:
                    self.store.add_failure(record.source_id, FailureReason.CRITICAL_ERROR)

        return on_batch_error

    # ------------------------------------------------------------------
    # Phase 1
    # ------------------------------------------------------------------

    def phase1(self) -> None:
        records = self.store.needing_phase(1)
        log_with_context(
            logging.INFO, f"Phase 1: writing core fields of {len(records)} work item(s)"
        )
        for_each_batch(
            records,
            self.config.batch_size,
            self.config.parallelism,
            self._phase1_batch,
            description="Phase 1",
            on_batch_error=self._mark_batch_failed(PhaseCompletion.PHASE1),
        )

    def _phase1_batch(self, batch: BatchContext) -> None:
        self.request_builder.preprocess(batch)
        requests = self.request_builder.build_batch(batch)
        if not requests:
            return

        responses = None
        try:
            responses = self.ctx.call(
                lambda: self.ctx.target.execute_batch([r for _, r in requests]),
                f"Phase 1 write for {batch.label}",
                on_failure=self._verify_phase1_write(requests),
                batch_id=batch.batch_id,
            )
        except Exception as e:
            log_with_context(
                logging.ERROR,
                f"Phase 1 {batch.label}: write failed: {e}",
                batch_id=batch.batch_id,
            )

        reconcile_batch(
            self.store,
            batch.batch_id,
            requests,
            responses,
            PhaseCompletion.PHASE1,
            phase="Phase 1",
        )
        for source_id, _ in requests:
            record = self.store.get(source_id)
            if record.target_id is not None and not record.has_failure:
                self.ctx.source_to_target.add(source_id, record.target_id)

    def _verify_phase1_write(
        self, requests: list[tuple[int, BatchRequest]]
    ) -> Callable[[str, Exception], Optional[Exception]]:
        """Failure hook that checks whether a failed create actually landed."""
        created = [
            self.store.get(source_id).source_url
            for source_id, _ in requests
            if self.store.get(source_id).action == MigrationAction.CREATE
        ]

        def verify(request_id: str, error: Exception) -> Optional[Exception]:
            if not created:
                return None
            try:
                matches = self.ctx.target.query_artifact_uris(created)
            except Exception as verify_error:
                log_with_context(
                    logging.WARNING,
                    f"[{request_id}] Could not check whether the batch write landed: "
                    f"{verify_error}",
                    request_id=request_id,
                )
                return None
            if any(references for references in matches.values()):
                return PermanentFaultError(
                    f"Batch write reported {type(error).__name__} but work items "
                    "were created on the target; not resubmitting"
                )
            return None

        return verify

    # ------------------------------------------------------------------
    # Phase 2
    # ------------------------------------------------------------------

    def phase2(self) -> None:
        records = self.store.needing_phase(2)
        log_with_context(
            logging.INFO, f"Phase 2: processing {len(records)} work item(s)"
        )
        for_each_batch(
            records,
            self.config.batch_size,
            self.config.parallelism,
            self._phase2_batch,
            description="Phase 2",
            on_batch_error=self._mark_batch_failed(PhaseCompletion.PHASE2),
        )

    def _load_snapshots(self, batch: BatchContext) -> None:
        """Refresh target snapshots and fill in missing source snapshots."""
        missing = [r.source_id for r in batch.records if r.source_item is None]
        if missing:
            items = self.ctx.call(
                lambda: self.ctx.source.get_work_items(missing),
                f"read {len(missing)} source work item(s) for {batch.label}",
                batch_id=batch.batch_id,
            )
            for item in items:
                self.store.cache_source_item(item["id"], item)

        by_target = {r.target_id: r.source_id for r in batch.records}
        targets = self.ctx.call(
            lambda: self.ctx.target.get_work_items(list(by_target)),
            f"read {len(by_target)} target work item(s) for {batch.label}",
            batch_id=batch.batch_id,
        )
        for item in targets:
            source_id = by_target.get(item.get("id"))
            if source_id is not None:
                self.store.cache_target_item(source_id, item)

    def _phase2_batch(self, batch: BatchContext) -> None:
        self._load_snapshots(batch)
        self.phase2_pipeline.preprocess(batch)
        for record in batch.records:
            self.process_record(batch, self.store.get(record.source_id))

    def process_record(self, batch: BatchContext, record: MigrationRecord) -> None:
        """Run the phase 2 pipeline for one record and write the result."""
        if record.has_failure:
            log_with_context(
                logging.WARNING,
                f"Skipping phase 2 for work item {record.source_id}: it has failed",
                source_id=record.source_id,
            )
            return

        try:
            operations = self.phase2_pipeline.process(batch, record)
        except Exception as e:
            self._fail_record(record, FailureReason.UNEXPECTED_ERROR, e)
            return
        if record.has_failure:
            log_with_context(
                logging.ERROR,
                f"Work item {record.source_id} failed during phase 2 processing "
                f"({', '.join(flag_names(record.failure_reason))}); not writing it",
                source_id=record.source_id,
            )
            return
        if not operations:
            self.store.mark_completed(record.source_id, PhaseCompletion.PHASE2)
            return

        operations = order_relation_operations(operations)
        target_id = record.target_id
        try:
            item = self.ctx.call(
                lambda: self.ctx.target.update_work_item(target_id, operations),
                f"Phase 2 update of work item {target_id}",
                source_id=record.source_id,
            )
        except RemoteServiceError as e:
            reason = (
                FailureReason.BAD_REQUEST
                if e.status_code == HTTP_BAD_REQUEST
                else FailureReason.UNEXPECTED_ERROR
            )
            self._fail_record(record, reason, e)
            return
        except Exception as e:
            self._fail_record(record, FailureReason.UNEXPECTED_ERROR, e)
            return

        if item:
            self.store.cache_target_item(record.source_id, item)
        self.store.mark_completed(record.source_id, PhaseCompletion.PHASE2)
        log_with_context(
            logging.DEBUG,
            f"Phase 2: work item {record.source_id} -> {target_id} updated "
            f"with {len(operations)} operation(s)",
            source_id=record.source_id,
        )

    def _fail_record(
        self, record: MigrationRecord, reason: FailureReason, error: Exception
    ) -> None:
        self.store.add_failure(record.source_id, reason)
        log_with_context(
            logging.ERROR,
            f"Phase 2 of work item {record.source_id} failed: {error}",
            source_id=record.source_id,
        )

    # ------------------------------------------------------------------
    # Phase 3
    # ------------------------------------------------------------------

    def phase3(self) -> None:
        if not len(self.phase3_pipeline):
            log_with_context(logging.INFO, "Phase 3: no finalization steps enabled")
            return
        records = self.store.needing_phase(3)
        log_with_context(
            logging.INFO, f"Phase 3: finalizing {len(records)} work item(s)"
        )
        for_each_batch(
            records,
            self.config.batch_size,
            self.config.parallelism,
            self._phase3_batch,
            description="Phase 3",
            on_batch_error=self._mark_batch_failed(PhaseCompletion.PHASE3),
        )

    def _phase3_batch(self, batch: BatchContext) -> None:
        self.phase3_pipeline.preprocess(batch)
        requests: list[tuple[int, BatchRequest]] = []
        for record in batch.records:
            operations = self.phase3_pipeline.process(batch, record)
            if not operations:
                self.store.mark_completed(record.source_id, PhaseCompletion.PHASE3)
                continue
            requests.append(
                (
                    record.source_id,
                    {
                        "method": "PATCH",
                        "uri": self.ctx.source.update_batch_uri(record.source_id),
                        "headers": {"Content-Type": JSON_PATCH_CONTENT_TYPE},
                        "body": operations,
                    },
                )
            )
        if not requests:
            return

        responses = None
        try:
            responses = self.ctx.call(
                lambda: self.ctx.source.execute_batch([r for _, r in requests]),
                f"Phase 3 write for {batch.label}",
                batch_id=batch.batch_id,
            )
        except Exception as e:
            log_with_context(
                logging.ERROR,
                f"Phase 3 {batch.label}: write failed: {e}",
                batch_id=batch.batch_id,
            )
        reconcile_batch(
            self.store,
            batch.batch_id,
            requests,
            responses,
            PhaseCompletion.PHASE3,
            phase="Phase 3",
            update_target=False,
        )

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def summarize(self) -> MigrationSummary:
        """Aggregate the store into counts and a per-record ledger."""
        summary = MigrationSummary()
        summary.total = len(self.store)
        summary.failed = len(self.store.failed())
        summary.created = sum(
            1
            for r in self.store.by_action(MigrationAction.CREATE)
            if not r.has_failure and PhaseCompletion.PHASE1 in r.completed
        )
        summary.updated = sum(
            1
            for r in self.store.by_action(MigrationAction.UPDATE)
            if not r.has_failure
            and r.completed & (PhaseCompletion.PHASE1 | PhaseCompletion.PHASE2)
        )
        summary.unchanged = (
            summary.total - summary.failed - summary.created - summary.updated
        )

        for record in self.store.snapshot():
            summary.ledger.append(
                LedgerEntry(
                    source_id=record.source_id,
                    target_id=record.target_id,
                    action=record.action.value,
                    failure_reasons=flag_names(record.failure_reason),
                    phases_completed=flag_names(record.completed),
                )
            )

        summary.failures_by_reason = {
            reason.name: len(records)
            for reason, records in self.store.failed_by_reason().items()
        }
        if not summary.failed:
            log_success(f"All {summary.total} work item(s) processed without failures")
        return summary
