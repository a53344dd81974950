"""Unit tests for batch partitioning and the batch scheduler."""

import threading
import time

import pytest
import requests

from tests.unit.conftest import make_record
from workitem_migrator.core.scheduler import BatchContext, for_each_batch, partition
from workitem_migrator.core.state import StateStore
from workitem_migrator.exceptions import ReconciliationError
from workitem_migrator.types import FailureReason

# ---------------------------------------------------------------------------
# partition
# ---------------------------------------------------------------------------


class TestPartition:
    def test_contiguous_chunks(self):
        assert partition([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_exact_multiple(self):
        assert partition([1, 2, 3, 4], 2) == [[1, 2], [3, 4]]

    def test_empty(self):
        assert partition([], 3) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            partition([1], 0)


class TestBatchContext:
    def test_label_and_ids(self):
        batch = BatchContext(batch_id=2, total_batches=5, records=[make_record(7)])
        assert batch.label == "batch 2 of 5"
        assert batch.source_ids == [7]


# ---------------------------------------------------------------------------
# for_each_batch
# ---------------------------------------------------------------------------


class TestForEachBatch:
    def test_every_record_is_visited_once(self):
        records = [make_record(i) for i in range(1, 8)]
        seen = []
        lock = threading.Lock()

        def batch_fn(batch):
            with lock:
                seen.extend(batch.source_ids)

        for_each_batch(records, 3, 2, batch_fn, show_progress=False)

        assert sorted(seen) == list(range(1, 8))

    def test_batches_are_numbered_in_order(self):
        records = [make_record(i) for i in range(1, 6)]
        batches = {}

        def batch_fn(batch):
            batches[batch.batch_id] = (batch.total_batches, batch.source_ids)

        for_each_batch(records, 2, 1, batch_fn, show_progress=False)

        assert batches == {1: (3, [1, 2]), 2: (3, [3, 4]), 3: (3, [5])}

    def test_failed_batch_does_not_stop_siblings(self):
        store = StateStore([make_record(i) for i in range(1, 6)])
        completed = []
        lock = threading.Lock()

        def batch_fn(batch):
            if batch.batch_id == 2:
                raise requests.exceptions.ConnectionError("transport failure")
            with lock:
                completed.extend(batch.source_ids)

        def on_error(batch, error):
            for source_id in batch.source_ids:
                store.add_failure(source_id, FailureReason.CRITICAL_ERROR)

        for_each_batch(
            store.snapshot(),
            2,
            2,
            batch_fn,
            on_batch_error=on_error,
            show_progress=False,
        )

        assert sorted(completed) == [1, 2, 5]
        failed = [r.source_id for r in store.failed()]
        assert failed == [3, 4]
        assert all(
            store.get(i).failure_reason == FailureReason.CRITICAL_ERROR for i in (3, 4)
        )

    def test_parallelism_is_bounded(self):
        records = [make_record(i) for i in range(1, 9)]
        running = 0
        peak = 0
        lock = threading.Lock()

        def batch_fn(batch):
            nonlocal running, peak
            with lock:
                running += 1
                peak = max(peak, running)
            time.sleep(0.02)
            with lock:
                running -= 1

        for_each_batch(records, 1, 3, batch_fn, show_progress=False)

        assert 1 <= peak <= 3

    def test_fatal_error_is_reraised(self):
        records = [make_record(i) for i in range(1, 5)]
        on_error_calls = []

        def batch_fn(batch):
            if batch.batch_id == 1:
                raise ReconciliationError("3 responses for 2 requests")

        with pytest.raises(ReconciliationError):
            for_each_batch(
                records,
                2,
                1,
                batch_fn,
                on_batch_error=lambda b, e: on_error_calls.append(b.batch_id),
                show_progress=False,
            )

        assert on_error_calls == []

    def test_fatal_error_cancels_pending_batches(self):
        records = [make_record(i) for i in range(1, 11)]
        started = []

        def batch_fn(batch):
            started.append(batch.batch_id)
            if batch.batch_id == 1:
                raise ReconciliationError("mismatch")
            time.sleep(0.05)

        with pytest.raises(ReconciliationError):
            for_each_batch(records, 1, 1, batch_fn, show_progress=False)

        assert 1 in started
        assert len(started) < 10

    def test_no_records_is_a_no_op(self):
        calls = []
        for_each_batch([], 5, 2, calls.append, show_progress=False)
        assert calls == []
