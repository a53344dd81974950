"""
Mapping batch write responses back onto the records that produced them.

The batch endpoint does not promise one response per request. Four cases are
handled for N requests and M responses:

* M == 0 (or an unreadable answer): every record fails with CRITICAL_ERROR.
* M == 1 and N > 1: the whole batch was rejected; every record fails with
  CRITICAL_ERROR.
* M == N: response i answers request i.
* anything else: ReconciliationError, and no record is touched.

Whenever a record fails, the batch's requests and responses are written to
the audit log.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Sequence

from workitem_migrator.constants import HTTP_BAD_REQUEST, HTTP_OK
from workitem_migrator.core.state import StateStore
from workitem_migrator.exceptions import ReconciliationError
from workitem_migrator.types import (
    BatchRequest,
    BatchResponse,
    FailureReason,
    PhaseCompletion,
    WorkItem,
)
from workitem_migrator.utils.logging import log_with_context


def parse_response_body(response: BatchResponse) -> Any:
    """Decode a batch response body, which the service sends as a JSON string."""
    body = response.get("body")
    if isinstance(body, (dict, list)):
        return body
    if not body:
        return None
    try:
        return json.loads(body)
    except (TypeError, ValueError):
        return body


def emit_audit_log(
    batch_id: int,
    phase: str,
    requests: Sequence[tuple[int, BatchRequest]],
    responses: Optional[Sequence[BatchResponse]],
    reason: str,
) -> None:
    """Write one structured record describing the whole batch exchange."""
    log_with_context(
        logging.INFO,
        f"{phase} batch {batch_id} audit: {reason}",
        audit=True,
        batch_id=batch_id,
        phase=phase,
        reason=reason,
        requests=[
            {"source_id": source_id, **request} for source_id, request in requests
        ],
        responses=list(responses or []),
    )


def reconcile_batch(
    store: StateStore,
    batch_id: int,
    requests: Sequence[tuple[int, BatchRequest]],
    responses: Optional[Sequence[BatchResponse]],
    completed_phase: PhaseCompletion,
    phase: str = "Phase 1",
    update_target: bool = True,
) -> int:
    """
    Apply a batch write's responses to the records that were submitted.

    Args:
        store: The state store owning the records
        batch_id: Batch sequence number, for logging
        requests: ``(source_id, request)`` pairs in submission order
        responses: The response list, or None when the call itself failed
        completed_phase: Phase flag set on records whose write succeeded
        phase: Phase label for logging
        update_target: When True a 200 body is taken as the target work
            item and recorded as the record's target identity

    Returns:
        Number of records marked failed

    Raises:
        ReconciliationError: If the response count is not 0, 1 or N
    """
    request_count = len(requests)
    if request_count == 0:
        return 0

    usable = isinstance(responses, (list, tuple))
    response_count = len(responses) if usable else 0

    if response_count not in (0, 1, request_count):
        emit_audit_log(
            batch_id, phase, requests, responses, "response count mismatch"
        )
        raise ReconciliationError(
            f"{phase} batch {batch_id}: received {response_count} responses for "
            f"{request_count} requests; cannot attribute results to work items"
        )

    if response_count == 0:
        for source_id, _ in requests:
            store.add_failure(source_id, FailureReason.CRITICAL_ERROR)
        log_with_context(
            logging.ERROR,
            f"{phase} batch {batch_id}: no usable response; marking "
            f"{request_count} work item(s) as failed",
            batch_id=batch_id,
        )
        emit_audit_log(batch_id, phase, requests, responses, "no usable response")
        return request_count

    if response_count == 1 and request_count > 1:
        only = responses[0]
        for source_id, _ in requests:
            store.add_failure(source_id, FailureReason.CRITICAL_ERROR)
        log_with_context(
            logging.ERROR,
            f"{phase} batch {batch_id}: the whole batch was rejected with status "
            f"{only.get('code')}: {parse_response_body(only)}",
            batch_id=batch_id,
        )
        emit_audit_log(batch_id, phase, requests, responses, "batch rejected")
        return request_count

    failures = 0
    for (source_id, _), response in zip(requests, responses):
        code = response.get("code")
        body = parse_response_body(response)

        if code == HTTP_OK and isinstance(body, dict) and "id" in body:
            if update_target:
                item: WorkItem = body
                store.resolve_target(source_id, item["id"], item.get("url"), item)
            store.mark_completed(source_id, completed_phase)
            continue

        failures += 1
        if code == HTTP_BAD_REQUEST:
            reason = FailureReason.BAD_REQUEST
        else:
            reason = FailureReason.UNEXPECTED_ERROR
        store.add_failure(source_id, reason)
        log_with_context(
            logging.ERROR,
            f"{phase} batch {batch_id}: work item {source_id} failed with status "
            f"{code}: {body}",
            batch_id=batch_id,
            source_id=source_id,
        )

    if failures:
        emit_audit_log(
            batch_id, phase, requests, responses, f"{failures} failed request(s)"
        )
    return failures
