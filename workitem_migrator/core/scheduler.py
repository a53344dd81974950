"""
Batch scheduling for the migration phases.

Records are cut into contiguous batches and handed to a bounded thread pool.
A batch that raises is logged and reported through ``on_batch_error``; its
siblings keep running. Only fatal errors stop the remaining batches.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence, TypeVar

from tqdm import tqdm

from workitem_migrator.core.state import MigrationRecord
from workitem_migrator.exceptions import MigrationAbortedError, ReconciliationError
from workitem_migrator.utils.logging import log_with_context

T = TypeVar("T")

FATAL_ERRORS = (ReconciliationError, MigrationAbortedError)


@dataclass
class BatchContext:
    """Scratch state for one batch; discarded once the batch is written."""

    batch_id: int
    total_batches: int
    records: list[MigrationRecord]

    # Linked source id -> target id, resolved during preprocessing
    linked_targets: dict[int, int] = field(default_factory=dict)

    # Source inline image URL -> uploaded target attachment URL
    inline_images: dict[str, str] = field(default_factory=dict)

    # Source ids whose target relations are removed by this batch's writes
    cleared: set[int] = field(default_factory=set)

    @property
    def label(self) -> str:
        return f"batch {self.batch_id} of {self.total_batches}"

    @property
    def source_ids(self) -> list[int]:
        return [record.source_id for record in self.records]


def partition(items: Sequence[T], size: int) -> list[list[T]]:
    """Split ``items`` into contiguous chunks of ``size`` (the last may be short)."""
    if size < 1:
        raise ValueError("batch size must be at least 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def _run_batch(
    batch_fn: Callable[[BatchContext], None], batch: BatchContext, description: str
) -> None:
    started = time.monotonic()
    log_with_context(
        logging.DEBUG, f"{description} {batch.label}: Starting", batch_id=batch.batch_id
    )
    batch_fn(batch)
    log_with_context(
        logging.DEBUG,
        f"{description} {batch.label}: Completed in {time.monotonic() - started:.2f}s",
        batch_id=batch.batch_id,
    )


def for_each_batch(
    records: Sequence[MigrationRecord],
    batch_size: int,
    parallelism: int,
    batch_fn: Callable[[BatchContext], None],
    description: str = "Processing",
    on_batch_error: Optional[Callable[[BatchContext, BaseException], None]] = None,
    show_progress: bool = True,
) -> None:
    """
    Run ``batch_fn`` over ``records`` in batches, at most ``parallelism`` at a time.

    Args:
        records: Ordered records to process
        batch_size: Records per batch
        parallelism: Maximum number of batches running concurrently
        batch_fn: Callable invoked once per BatchContext
        description: Label used for logging and the progress bar
        on_batch_error: Called with the batch and the error when a batch raises
        show_progress: Whether to draw a progress bar

    Raises:
        ReconciliationError, MigrationAbortedError: re-raised after running
            batches finish; batches that had not started are cancelled
    """
    chunks = partition(records, batch_size)
    if not chunks:
        log_with_context(logging.INFO, f"{description}: nothing to do")
        return

    batches = [
        BatchContext(batch_id=index, total_batches=len(chunks), records=chunk)
        for index, chunk in enumerate(chunks, start=1)
    ]
    fatal: BaseException | None = None

    with ThreadPoolExecutor(
        max_workers=max(1, parallelism), thread_name_prefix="batch"
    ) as executor:
        futures = {
            executor.submit(_run_batch, batch_fn, batch, description): batch
            for batch in batches
        }
        with tqdm(
            total=len(batches),
            desc=description,
            unit="batch",
            disable=not show_progress,
        ) as pbar:
            for future in as_completed(futures):
                batch = futures[future]
                pbar.update(1)
                if future.cancelled():
                    continue
                error = future.exception()
                if error is None:
                    continue

                if isinstance(error, FATAL_ERRORS):
                    log_with_context(
                        logging.CRITICAL,
                        f"{description} {batch.label}: fatal error, stopping: {error}",
                        batch_id=batch.batch_id,
                    )
                    if fatal is None:
                        fatal = error
                        for pending in futures:
                            pending.cancel()
                    continue

                log_with_context(
                    logging.ERROR,
                    f"{description} {batch.label} failed: {error}",
                    batch_id=batch.batch_id,
                    exc_info=(type(error), error, error.__traceback__),
                )
                if on_batch_error is not None:
                    on_batch_error(batch, error)

    if fatal is not None:
        raise fatal
