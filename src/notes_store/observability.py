"""Logging setup and per-operation metrics for the notes store.

Service entry points are wrapped with :func:`traced`, which logs a START and
END line under a short correlation id and feeds the in-process
:data:`metrics` collector.
"""
import functools
import logging
import os
import re
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".notes-store" / "logs"
LOG_FILE_NAME = "notes-store.log"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Every module logger in the package descends from this one
ROOT_LOGGER_NAME = "notes_store"

MAX_ERROR_LENGTH = 200

F = TypeVar("F", bound=Callable[..., Any])


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Send the package's log records to a rotating file.

    Calling this again with the same directory does not add a second file
    handler.

    Args:
        log_dir: Directory for ``notes-store.log``. Defaults to
            ``~/.notes-store/logs``.
        level: Level for the package logger and its handlers.
        max_bytes: Size at which the log file is rotated.
        backup_count: Rotated files to keep.
        console: Also write records to stderr.

    Returns:
        The log directory.
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / LOG_FILE_NAME

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handlers = [
        h
        for h in package_logger.handlers
        if isinstance(h, RotatingFileHandler)
        and h.baseFilename == os.path.abspath(log_file)
    ]
    if not handlers:
        handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        package_logger.addHandler(handler)
        handlers.append(handler)

    if console and not any(
        type(h) is logging.StreamHandler for h in package_logger.handlers
    ):
        stream = logging.StreamHandler()
        package_logger.addHandler(stream)
        handlers.append(stream)

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    package_logger.info(
        f"Logging to {log_file} (rotating at {max_bytes} bytes, "
        f"keeping {backup_count})"
    )
    return log_path


def _sanitize_error_message(
    message: Optional[str], max_length: int = MAX_ERROR_LENGTH
) -> Optional[str]:
    """Shorten an error message for the metrics table.

    The home directory becomes ``~``, line breaks and runs of spaces become
    one space, and anything past ``max_length`` is cut off with ``...``.
    """
    if message is None:
        return None
    home = str(Path.home())
    if home and home != "/":
        message = message.replace(home, "~")
    message = re.sub(r"[\r\n]+", " ", message)
    message = re.sub(r" {2,}", " ", message).strip()
    if len(message) > max_length:
        message = message[: max_length - 3] + "..."
    return message


@dataclass
class OperationStats:
    """Running totals for one operation name."""

    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    def add(self, duration_ms: float, error: Optional[str]) -> None:
        self.count += 1
        self.total_ms += duration_ms
        if self.min_ms is None or duration_ms < self.min_ms:
            self.min_ms = duration_ms
        self.max_ms = max(self.max_ms, duration_ms)
        if error is None:
            self.success_count += 1
        else:
            self.error_count += 1
            self.last_error = _sanitize_error_message(error)
            self.last_error_at = datetime.now(timezone.utc)

    def as_dict(self) -> Dict[str, Any]:
        avg_ms = self.total_ms / self.count if self.count else 0.0
        return {
            "count": self.count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "success_rate": self.success_count / self.count if self.count else 0,
            "avg_duration_ms": round(avg_ms, 2),
            "min_duration_ms": round(self.min_ms or 0.0, 2),
            "max_duration_ms": round(self.max_ms, 2),
            "last_error": self.last_error,
            "last_error_time": (
                self.last_error_at.isoformat() if self.last_error_at else None
            ),
        }


class MetricsCollector:
    """Thread-safe, in-memory timing and outcome counters per operation."""

    def __init__(self) -> None:
        self._stats: Dict[str, OperationStats] = {}
        self._lock = Lock()

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        """Add one call of ``operation`` to its totals.

        A failed call with no message is recorded with an empty error.
        """
        with self._lock:
            stats = self._stats.setdefault(operation, OperationStats())
            stats.add(duration_ms, None if success else (error or ""))

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every operation's totals, keyed by operation name."""
        with self._lock:
            return {name: stats.as_dict() for name, stats in self._stats.items()}

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


# Process-wide collector fed by timed_operation
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context: Any) -> Iterator[Dict[str, Any]]:
    """Time a block of work and record it under ``operation``.

    The yielded dict carries the correlation id; keys added to it by the
    caller are included in the END log line.

    Example:
        with timed_operation("search", query=q) as op:
            hits = index.search(q)
            op["result_count"] = len(hits)
    """
    correlation_id = uuid.uuid4().hex[:8]
    info: Dict[str, Any] = {"correlation_id": correlation_id}
    details = ", ".join(f"{k}={v}" for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({details})")

    error: Optional[str] = None
    started = time.perf_counter()
    try:
        yield info
    except Exception as e:
        error = str(e) or type(e).__name__
        raise
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, duration_ms, error is None, error)
        outcome = "OK" if error is None else f"ERROR: {error}"
        extra = ", ".join(
            f"{k}={v}" for k, v in info.items() if k != "correlation_id"
        )
        logger.debug(
            f"[{correlation_id}] END {operation} "
            f"({duration_ms:.2f}ms) [{outcome}] {extra}"
        )


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Decorator running the wrapped call inside :func:`timed_operation`.

    Args:
        operation_name: Metrics name, defaults to the function's name.

    A ``path`` or ``query`` keyword argument is added to the log context.
    """

    def decorator(func: F) -> F:
        name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {}
            if "path" in kwargs:
                context["path"] = kwargs["path"]
            elif "query" in kwargs:
                context["query"] = str(kwargs["query"])[:50]

            with timed_operation(name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple, dict)):
                    op["result_count"] = len(result)
                return result

        return wrapper  # type: ignore

    return decorator
