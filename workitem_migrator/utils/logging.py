"""
Logging module for the work item migration tool.

Everything logs through the ``workitem_migrator`` logger with
``log_with_context``. Context such as ``batch_id`` or ``source_id`` travels
as record attributes, so the console can prefix it and the audit file can
serialize it.

Files written into the run directory:

* ``migration.log``: every record except batch audits
* ``batch_audit.jsonl``: one JSON document per batch audit
* ``api_debug.log``: request and response bodies, only with ``--debug_api``
"""

import json
import logging
import os
import threading
from typing import Any, List, Optional

LOGGER_NAME = "workitem_migrator"

MAIN_LOG_FILE_NAME = "migration.log"
API_DEBUG_LOG_FILE_NAME = "api_debug.log"

# Module-level flag to track if API debug logging is enabled
_DEBUG_API_ENABLED = False

# Request payload keys whose values never reach a log file
_SENSITIVE_KEYS = ("token", "auth", "password", "secret")

# Patch documents can hold thousands of operations
MAX_LOGGED_OPERATIONS = 20
MAX_LOGGED_RESPONSE_CHARS = 2000

# Attributes every LogRecord carries; everything else came in through ``extra``
_STANDARD_RECORD_KEYS = frozenset(
    (
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "id",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    )
)


def _is_audit(record: logging.LogRecord) -> bool:
    return bool(getattr(record, "audit", False))


def _not_audit(record: logging.LogRecord) -> bool:
    return not _is_audit(record)


def _has_api_payload(record: logging.LogRecord) -> bool:
    return bool(getattr(record, "api_data", None) or getattr(record, "response", None))


def _is_api_debug_record(record: logging.LogRecord) -> bool:
    return record.name.startswith("urllib3") or _has_api_payload(record)


class JsonFormatter(logging.Formatter):
    """One JSON object per record, carrying every ``extra`` attribute."""

    def format(self, record):
        data = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
        }
        data.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _STANDARD_RECORD_KEYS
        )
        return json.dumps(data, default=str)


class EnhancedFormatter(logging.Formatter):
    """
    Text formatter that prefixes the batch and work item a record is about.

    In verbose mode the thread, module and line are included as well. With
    ``include_api_details`` the request and response bodies attached by
    ``log_api_request``/``log_api_response`` are appended.
    """

    DEFAULT_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
    VERBOSE_FORMAT = (
        "%(asctime)s - %(levelname)s - [%(threadName)s %(module)s:%(lineno)d] - %(message)s"
    )

    def __init__(self, fmt=None, datefmt=None, verbose=False, include_api_details=False):
        if verbose:
            fmt = self.VERBOSE_FORMAT
        super().__init__(fmt or self.DEFAULT_FORMAT, datefmt)
        self.include_api_details = include_api_details

    @staticmethod
    def context_prefix(record) -> str:
        parts = []
        batch_id = getattr(record, "batch_id", None)
        if batch_id is not None:
            parts.append(f"batch {batch_id}")
        source_id = getattr(record, "source_id", None)
        if source_id is not None:
            parts.append(f"work item {source_id}")
        return f"[{', '.join(parts)}] " if parts else ""

    def formatMessage(self, record):
        prefix = self.context_prefix(record)
        if prefix:
            record.message = prefix + record.message
        return super().formatMessage(record)

    def format(self, record):
        result = super().format(record)
        if self.include_api_details:
            api_data = getattr(record, "api_data", None)
            if api_data:
                result += f"\n  request: {api_data}"
            response = getattr(record, "response", None)
            if response:
                result += f"\n  response: {response}"
        return result


class SummaryCollector(logging.Handler):
    """Keep warnings, errors and success messages for the end-of-run digest."""

    def __init__(self, level: int = logging.WARNING):
        super().__init__(logging.DEBUG)
        self.threshold = level
        self.entries: List[str] = []
        self._entries_lock = threading.Lock()

    def emit(self, record):
        if _is_audit(record):
            return
        if record.levelno < self.threshold and not getattr(record, "success", False):
            return
        with self._entries_lock:
            self.entries.append(f"{record.levelname}: {record.getMessage()}")

    def text(self) -> str:
        with self._entries_lock:
            return "\n".join(self.entries)


_summary_collector: Optional[SummaryCollector] = None


def _file_handler(path: str, formatter: logging.Formatter, record_filter) -> logging.FileHandler:
    handler = logging.FileHandler(path, mode="w", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    handler.addFilter(record_filter)
    return handler


def setup_main_log_file(output_dir: str, debug_api: bool = False) -> logging.FileHandler:
    """
    Attach the ``migration.log`` handler.

    Args:
        output_dir: The run output directory
        debug_api: If True, request/response bodies are written as well

    Returns:
        The file handler for the main log file
    """
    os.makedirs(output_dir, exist_ok=True)
    log_file = os.path.join(output_dir, MAIN_LOG_FILE_NAME)
    handler = _file_handler(
        log_file,
        EnhancedFormatter(
            "%(asctime)s - %(levelname)s - [%(threadName)s] - %(message)s",
            include_api_details=debug_api,
        ),
        _not_audit,
    )
    logging.getLogger(LOGGER_NAME).addHandler(handler)
    log_with_context(logging.INFO, f"Main log file created at: {log_file}")
    return handler


def setup_batch_audit_log(output_dir: str) -> logging.FileHandler:
    """
    Attach the JSON-lines handler that receives batch request/response audits.

    Args:
        output_dir: The run output directory

    Returns:
        The file handler for the audit log
    """
    from workitem_migrator.constants import AUDIT_LOG_FILE_NAME

    os.makedirs(output_dir, exist_ok=True)
    audit_file = os.path.join(output_dir, AUDIT_LOG_FILE_NAME)
    handler = _file_handler(audit_file, JsonFormatter(), _is_audit)
    logging.getLogger(LOGGER_NAME).addHandler(handler)
    log_with_context(logging.DEBUG, f"Batch audit log created at: {audit_file}")
    return handler


def _setup_api_debug_log(output_dir: str) -> logging.FileHandler:
    """Send request/response bodies and urllib3 connection logs to ``api_debug.log``."""
    api_log_file = os.path.join(output_dir, API_DEBUG_LOG_FILE_NAME)
    handler = _file_handler(
        api_log_file,
        EnhancedFormatter(verbose=True, include_api_details=True),
        _is_api_debug_record,
    )
    logging.getLogger(LOGGER_NAME).addHandler(handler)

    # requests talks through urllib3, which logs one line per connection and call
    urllib3_logger = logging.getLogger("urllib3")
    for old in urllib3_logger.handlers[:]:
        if _is_api_debug_record in old.filters:
            urllib3_logger.removeHandler(old)
            old.close()
    urllib3_logger.setLevel(logging.DEBUG)
    urllib3_logger.addHandler(handler)

    log_with_context(logging.INFO, f"API debug logging enabled, writing to {api_log_file}")
    return handler


def setup_logger(
    verbose: bool = False, debug_api: bool = False, output_dir: Optional[str] = None
) -> logging.Logger:
    """
    Set up and return the package logger.

    Args:
        verbose: If True, the console shows DEBUG records; otherwise INFO
        debug_api: If True, enable request/response body logging
        output_dir: Optional run directory for the log files

    Returns:
        Configured logger instance
    """
    global _DEBUG_API_ENABLED, _summary_collector
    _DEBUG_API_ENABLED = debug_api

    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(
        EnhancedFormatter(verbose=verbose, include_api_details=debug_api)
    )
    console_handler.addFilter(_not_audit)
    logger.addHandler(console_handler)

    _summary_collector = SummaryCollector()
    logger.addHandler(_summary_collector)

    if output_dir:
        setup_main_log_file(output_dir, debug_api)
        setup_batch_audit_log(output_dir)
        if debug_api:
            _setup_api_debug_log(output_dir)
    elif debug_api:
        log_with_context(logging.INFO, "API debug logging enabled, writing to console")

    return logger


def log_with_context(level: int, message: str, **kwargs: Any) -> None:
    """
    Log a message with additional context information.

    Args:
        level: The logging level (e.g., logging.INFO)
        message: The log message
        **kwargs: Context attributes; ``None`` values are dropped and
            ``exc_info`` is passed through to the logger
    """
    extras = {k: v for k, v in kwargs.items() if v is not None}
    exc_info = extras.pop("exc_info", None)

    if "api_data" in extras or "response" in extras:
        extras.setdefault("api_data", "")
        extras.setdefault("response", "")

    logging.getLogger(LOGGER_NAME).log(level, message, extra=extras, exc_info=exc_info)


def log_success(message: str, **kwargs: Any) -> None:
    """Log an INFO message that is also kept for the run summary."""
    log_with_context(logging.INFO, message, success=True, **kwargs)


def _redact(data: dict) -> dict:
    return {
        key: "[REDACTED]"
        if any(sensitive in str(key).lower() for sensitive in _SENSITIVE_KEYS)
        else value
        for key, value in data.items()
    }


def describe_payload(data: Any) -> Optional[str]:
    """Render a request payload for the debug log.

    Dicts are redacted, long lists (patch documents, batches) are cut to
    ``MAX_LOGGED_OPERATIONS`` entries and binary bodies are reduced to their size.
    """
    if data is None:
        return None
    if isinstance(data, (bytes, bytearray)):
        return f"<{len(data)} bytes>"
    if isinstance(data, dict):
        return json.dumps(_redact(data), indent=2, default=str)
    if isinstance(data, list):
        shown = json.dumps(data[:MAX_LOGGED_OPERATIONS], indent=2, default=str)
        hidden = len(data) - MAX_LOGGED_OPERATIONS
        if hidden > 0:
            shown += f"\n... and {hidden} more"
        return shown
    return str(data)


def log_api_request(method: str, url: str, data: Any = None, **kwargs: Any) -> None:
    """
    Log an outgoing request when API debug logging is enabled.

    Args:
        method: HTTP method
        url: Request URL
        data: Optional JSON body, patch document or raw bytes
        **kwargs: Additional context to include in the log record
    """
    if not is_debug_api_enabled():
        return
    log_with_context(
        logging.DEBUG,
        f"API Request: {method} {url}",
        api_data=describe_payload(data),
        **kwargs,
    )


def log_api_response(
    status_code: int, url: str, response_data: Any = None, **kwargs: Any
) -> None:
    """
    Log a response when API debug logging is enabled.

    Args:
        status_code: HTTP status code
        url: Request URL
        response_data: Optional decoded body
        **kwargs: Additional context to include in the log record
    """
    if not is_debug_api_enabled():
        return

    response = None
    if response_data:
        if isinstance(response_data, (dict, list)):
            response = json.dumps(response_data, indent=2, default=str)
        else:
            response = str(response_data)
        if len(response) > MAX_LOGGED_RESPONSE_CHARS:
            response = response[:MAX_LOGGED_RESPONSE_CHARS] + "... [truncated]"

    log_with_context(
        logging.DEBUG,
        f"API Response: {status_code} from {url}",
        response=response,
        **kwargs,
    )


def get_log_summary_text() -> str:
    """Return the warnings, errors and successes collected during the run."""
    if _summary_collector is None:
        return ""
    return _summary_collector.text()


def is_debug_api_enabled() -> bool:
    """Check if API debug logging is enabled."""
    return _DEBUG_API_ENABLED


def get_logger():
    """Get the workitem_migrator logger, giving it a console handler if it has none."""
    migrator_logger = logging.getLogger(LOGGER_NAME)
    if not migrator_logger.handlers:
        migrator_logger.setLevel(logging.INFO)
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(EnhancedFormatter())
        handler.addFilter(_not_audit)
        migrator_logger.addHandler(handler)
    return migrator_logger


# Module logger, reconfigured when setup_logger is called
logger = get_logger()
