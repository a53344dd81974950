"""
Fault classification and retry for calls against the remote work item service.

``classify`` turns an exception into a ``FaultClass`` value and ``retry_call``
consumes that value to decide whether to try again. The loop never relies on
catching and re-raising specific exception types to steer itself.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Any, Callable, Optional, TypeVar

import requests

from workitem_migrator.constants import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_DELAY,
    DEFAULT_RETRY_DELAY_INCREMENT,
    HTTP_RATE_LIMIT,
    HTTP_SERVER_ERROR_MIN,
    TRANSIENT_ERROR_CODES,
    UNKNOWN_FAULT_MAX_ATTEMPTS,
    VENDOR_ERROR_CODE_PATTERN,
)
from workitem_migrator.exceptions import (
    PermanentFaultError,
    RemoteServiceError,
    RetryExhaustedError,
)
from workitem_migrator.types import FaultClass
from workitem_migrator.utils.logging import log_with_context

T = TypeVar("T")

FailureHook = Callable[[str, BaseException], Optional[BaseException]]

_VENDOR_CODE_RE = re.compile(VENDOR_ERROR_CODE_PATTERN)

TRANSPORT_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    requests.exceptions.ChunkedEncodingError,
    ConnectionError,
    TimeoutError,
)


def innermost_error(error: BaseException) -> BaseException:
    """Follow wrapped causes down to the error that started the chain.

    Exception groups are unwrapped through their first member.
    """
    seen = set()
    current = error
    while id(current) not in seen:
        seen.add(id(current))
        members = getattr(current, "exceptions", None)
        if isinstance(members, (list, tuple)) and members:
            current = members[0]
            continue
        cause = current.__cause__ or (
            None if current.__suppress_context__ else current.__context__
        )
        if cause is None:
            break
        current = cause
    return current


def vendor_error_code(error: BaseException) -> str | None:
    """Return the service's ``TFnnnnnn``/``VSnnnnnn`` code carried by ``error``."""
    code = getattr(error, "error_code", None)
    if code:
        return str(code)
    match = _VENDOR_CODE_RE.search(str(error))
    return match.group(0) if match else None


def classify(error: BaseException) -> FaultClass:
    """Decide whether retrying ``error`` can help."""
    if isinstance(error, PermanentFaultError):
        return FaultClass.PERMANENT

    inner = innermost_error(error)
    if isinstance(inner, PermanentFaultError):
        return FaultClass.PERMANENT

    code = vendor_error_code(inner) or vendor_error_code(error)
    if code:
        if code in TRANSIENT_ERROR_CODES:
            return FaultClass.TRANSIENT
        return FaultClass.PERMANENT

    if isinstance(inner, TRANSPORT_ERRORS) or isinstance(error, TRANSPORT_ERRORS):
        return FaultClass.TRANSIENT

    service_error = next(
        (e for e in (inner, error) if isinstance(e, RemoteServiceError)), None
    )
    if service_error is not None and service_error.status_code is not None:
        if (
            service_error.status_code == HTTP_RATE_LIMIT
            or service_error.status_code >= HTTP_SERVER_ERROR_MIN
        ):
            return FaultClass.TRANSIENT
        return FaultClass.PERMANENT

    return FaultClass.UNKNOWN


def new_request_id() -> str:
    """Short correlation id shared by every attempt of one operation."""
    return uuid.uuid4().hex[:12]


def retry_call(
    operation: Callable[[], T],
    on_failure: Optional[FailureHook] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_delay: float = DEFAULT_RETRY_DELAY,
    delay_increment: float = DEFAULT_RETRY_DELAY_INCREMENT,
    description: str = "operation",
    **log_kwargs: Any,
) -> T:
    """
    Run ``operation`` until it succeeds, fails permanently, or runs out of attempts.

    The delay before each retry grows linearly by ``delay_increment``. Errors
    classified as unknown get at most ``UNKNOWN_FAULT_MAX_ATTEMPTS`` attempts.

    Args:
        operation: Zero-argument callable performing the remote call
        on_failure: Optional hook called with ``(request_id, error)`` after each
            failure. It returns the error to classify, which may be a different
            one (a ``PermanentFaultError`` stops the loop), or ``None`` to keep
            the original error.
        max_attempts: Upper bound on attempts
        initial_delay: Seconds to wait before the first retry
        delay_increment: Seconds added to the delay after every retry
        description: Human readable name of the operation for the log
        **log_kwargs: Extra context attached to every log line

    Returns:
        Whatever ``operation`` returns

    Raises:
        The last error seen, or RetryExhaustedError if no attempt ever ran
    """
    request_id = new_request_id()
    log_kwargs = {"component": "http", **log_kwargs, "request_id": request_id}

    delay = initial_delay
    last_error: BaseException | None = None
    attempt_limit = max_attempts

    attempt = 0
    while attempt < attempt_limit:
        attempt += 1
        try:
            log_with_context(
                logging.DEBUG,
                f"[{request_id}] {description}: attempt {attempt} of {attempt_limit}",
                **log_kwargs,
            )
            return operation()
        except Exception as e:
            error: BaseException = e
            if on_failure is not None:
                replacement = on_failure(request_id, e)
                if replacement is not None and replacement is not e:
                    if replacement.__cause__ is None:
                        replacement.__cause__ = e
                    error = replacement
            last_error = error

            fault = classify(error)
            if fault == FaultClass.PERMANENT:
                log_with_context(
                    logging.ERROR,
                    f"[{request_id}] {description} failed permanently on attempt {attempt}: {error}",
                    **log_kwargs,
                )
                break

            if fault == FaultClass.UNKNOWN:
                attempt_limit = min(attempt_limit, UNKNOWN_FAULT_MAX_ATTEMPTS)
                log_with_context(
                    logging.WARNING,
                    f"[{request_id}] {description} raised an unclassified error "
                    f"({type(error).__name__}) on attempt {attempt}: {error}",
                    **log_kwargs,
                )
            else:
                log_with_context(
                    logging.WARNING,
                    f"[{request_id}] {description} hit a transient error on attempt {attempt}: {error}",
                    **log_kwargs,
                )

            if attempt >= attempt_limit:
                log_with_context(
                    logging.ERROR,
                    f"[{request_id}] {description}: max attempts reached. Last error: {error}",
                    **log_kwargs,
                )
                break

            log_with_context(
                logging.INFO,
                f"[{request_id}] Retrying {description} in {delay:.1f} seconds...",
                **log_kwargs,
            )
            time.sleep(delay)
            delay += delay_increment

    if last_error is not None:
        raise last_error
    raise RetryExhaustedError(
        f"[{request_id}] {description} was not attempted (max_attempts={max_attempts})"
    )
