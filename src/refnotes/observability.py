"""Logging setup and in-process operation metrics for refnotes.

Service methods are wrapped with ``traced`` and MCP tools time themselves
with ``timed_operation``. Both feed the module-level ``metrics`` collector
that ``rn_status`` reports from. Metrics are kept in memory only and start
over with every server process.
"""
import functools
import inspect
import logging
import sys
import time
import uuid
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".refnotes" / "logs"
LOG_FILE_NAME = "refnotes.log"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

F = TypeVar("F", bound=Callable[..., Any])

# Arguments of traced calls that identify what the call is about
_TRACED_ARGS = ("note_id", "ref", "parent_id", "note_type", "title")
_MAX_ARG_LENGTH = 50


def _has_file_handler(target: logging.Logger, log_file: Path) -> bool:
    return any(
        isinstance(h, RotatingFileHandler)
        and Path(h.baseFilename).resolve() == log_file.resolve()
        for h in target.handlers
    )


def _has_stderr_handler(target: logging.Logger) -> bool:
    return any(
        type(h) is logging.StreamHandler and h.stream is sys.stderr
        for h in target.handlers
    )


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Send the ``refnotes`` logger hierarchy to a rotating log file.

    Calling this again for the same directory only changes the level; no
    second file handler is attached.

    Args:
        log_dir: Directory for ``refnotes.log``. Defaults to ~/.refnotes/logs/
        level: Level for the logger and its handlers
        max_bytes: Size at which the file is rotated
        backup_count: Number of rotated files kept
        console: Also log to stderr. stdout is left alone because the MCP
            stdio transport speaks over it.

    Returns:
        The log directory.
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / LOG_FILE_NAME

    package_logger = logging.getLogger("refnotes")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    new_handlers = []
    if not _has_file_handler(package_logger, log_file):
        new_handlers.append(
            RotatingFileHandler(
                log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
            )
        )
    if console and not _has_stderr_handler(package_logger):
        new_handlers.append(logging.StreamHandler(sys.stderr))

    for handler in new_handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    package_logger.info(f"Logging to {log_file} at {logging.getLevelName(level)}")
    return log_path


@dataclass
class OperationStats:
    """Running totals for one operation name."""

    calls: int = 0
    errors: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    def observe(self, duration_ms: float, error: Optional[str] = None) -> None:
        self.calls += 1
        self.total_ms += duration_ms
        self.max_ms = max(self.max_ms, duration_ms)
        if error is not None:
            self.errors += 1
            self.last_error = error
            self.last_error_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.calls,
            "success_count": self.calls - self.errors,
            "error_count": self.errors,
            "avg_duration_ms": round(self.total_ms / self.calls, 2) if self.calls else 0.0,
            "max_duration_ms": round(self.max_ms, 2),
            "last_error": self.last_error,
            "last_error_time": self.last_error_at.isoformat() if self.last_error_at else None,
        }


class MetricsCollector:
    """Thread-safe operation timings plus named event counters.

    Events count things that are not operations of their own, such as an
    allocation race that was lost and retried (``allocation_conflict``).
    """

    def __init__(self):
        self._lock = Lock()
        self._operations: Dict[str, OperationStats] = {}
        self._events: Counter = Counter()
        self._started_at = datetime.now(timezone.utc)

    def record(self, operation: str, duration_ms: float, error: Optional[str] = None) -> None:
        """Add one call of ``operation``; ``error`` marks it as failed."""
        with self._lock:
            stats = self._operations.setdefault(operation, OperationStats())
            stats.observe(duration_ms, error)

    def count_event(self, event: str, amount: int = 1) -> None:
        if amount <= 0:
            return
        with self._lock:
            self._events[event] += amount

    def operations(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {name: stats.to_dict() for name, stats in self._operations.items()}

    def events(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._events)

    def summary(self) -> Dict[str, Any]:
        """Totals across all operations since start or the last reset."""
        with self._lock:
            return {
                "uptime_seconds": (datetime.now(timezone.utc) - self._started_at).total_seconds(),
                "total_operations": sum(s.calls for s in self._operations.values()),
                "total_errors": sum(s.errors for s in self._operations.values()),
                "operations_tracked": sorted(self._operations),
                "events": dict(self._events),
            }

    def reset(self) -> None:
        with self._lock:
            self._operations.clear()
            self._events.clear()
            self._started_at = datetime.now(timezone.utc)


metrics = MetricsCollector()


def _format_pairs(values: Dict[str, Any]) -> str:
    return ", ".join(f"{k}={v}" for k, v in values.items())


@contextmanager
def timed_operation(operation: str, **context: Any) -> Iterator[Dict[str, Any]]:
    """Time a block and record it in ``metrics`` under ``operation``.

    Yields a dict the block fills with result details (a note id, a count);
    they are appended to the closing log line. Both log lines carry the
    same short correlation id.

    Example:
        with timed_operation("rn_create_note", title=title) as op:
            note = service.create_note(title)
            op["ref"] = note.ref
    """
    correlation_id = uuid.uuid4().hex[:8]
    details: Dict[str, Any] = {}
    logger.debug(f"[{correlation_id}] {operation} started ({_format_pairs(context)})")

    started = time.perf_counter()
    error = None
    try:
        yield details
    except Exception as e:
        error = f"{type(e).__name__}: {e}"
        raise
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record(operation, duration_ms, error)
        outcome = f"failed: {error}" if error else "ok"
        logger.debug(
            f"[{correlation_id}] {operation} {outcome} after {duration_ms:.2f}ms "
            f"({_format_pairs(details)})"
        )


def _call_context(signature: inspect.Signature, args, kwargs) -> Dict[str, Any]:
    """Identifying arguments of a call, however they were passed."""
    try:
        bound = signature.bind_partial(*args, **kwargs)
    except TypeError:
        return {}
    context = {}
    for name in _TRACED_ARGS:
        value = bound.arguments.get(name)
        if value is None:
            continue
        if isinstance(value, Enum):
            value = value.value
        context[name] = value[:_MAX_ARG_LENGTH] if isinstance(value, str) else value
    return context


def _describe_result(result: Any) -> Dict[str, Any]:
    """Ref and id of a returned note, or link counts of rendered content."""
    if isinstance(getattr(result, "ref", None), str):
        return {"ref": result.ref, "id": getattr(result, "id", None)}
    broken_refs = getattr(result, "broken_refs", None)
    if isinstance(broken_refs, list):
        return {"links": len(result.links), "broken": len(broken_refs)}
    if isinstance(result, list):
        return {"count": len(result)}
    return {}


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Run a service method inside ``timed_operation``.

    The note id, ref, parent, type and title arguments are logged whether
    they were passed by position or by keyword. A returned note adds its
    ref and id to the closing log line; rendered content adds its link and
    broken-link counts.

    Example:
        @traced("delete_note")
        def delete_note(self, note_id: int) -> None:
            ...
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with timed_operation(op_name, **_call_context(signature, args, kwargs)) as details:
                result = func(*args, **kwargs)
                details.update(_describe_result(result))
                return result

        return wrapper  # type: ignore
    return decorator
