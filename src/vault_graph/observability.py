"""Observability utilities for the vault graph engine.

Provides structured logging, timing metrics, operation tracking,
and persistent disk logging with rotation.
"""
import functools
import logging
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

# Root of the package logger hierarchy
ROOT_LOGGER_NAME = "vault_graph"

# Default log directory (can be overridden via configure_logging)
DEFAULT_LOG_DIR = Path.home() / ".vault_graph" / "logs"

# Logging format with ISO 8601 timestamps
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Type variable for decorators
F = TypeVar('F', bound=Callable[..., Any])


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB per file
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Configure persistent file logging with rotation.

    Sets up a rotating file handler for the vault_graph logger hierarchy.
    Log files are rotated when they reach max_bytes, keeping backup_count old files.

    Args:
        log_dir: Directory for log files. Defaults to ~/.vault_graph/logs/
        level: Logging level (default: INFO)
        max_bytes: Maximum size per log file before rotation (default: 10 MB)
        backup_count: Number of rotated files to keep (default: 5)
        console: Also log to console (default: True)

    Returns:
        Path to the log directory
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    log_file = log_path / "vault_graph.log"
    # Re-configuring must not stack a second file handler on the same file
    if not any(
        isinstance(h, RotatingFileHandler)
        and Path(h.baseFilename) == log_file.resolve()
        for h in root_logger.handlers
    ):
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in root_logger.handlers
    ):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    root_logger.info(f"Logging configured: {log_file} (max {max_bytes} bytes, {backup_count} backups)")

    return log_path


def _sanitize_error_message(message: Optional[str], max_length: int = 200) -> Optional[str]:
    """Make an error message safe to keep in metrics.

    Home directory paths are replaced with ``~``, line breaks are folded
    into spaces, surrounding whitespace is stripped and long messages are truncated with an ellipsis.
    """
    if message is None:
        return None
    home = str(Path.home())
    cleaned = message.replace(home, "~")
    # Fold line breaks and runs of whitespace into single spaces
    cleaned = " ".join(cleaned.split())
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3] + "..."
    return cleaned


@dataclass
class OperationMetrics:
    """Metrics for a single operation type."""
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float = float('inf')
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None


class MetricsCollector:
    """Thread-safe, in-memory metrics for engine operations.

    Tracks call counts, durations and the last error per operation type
    (apply_batch, backlinks, shortest_path, ...).
    """

    def __init__(self):
        self._metrics: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._lock = Lock()

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        """Record metrics for an operation.

        Args:
            operation: The operation name (e.g., 'apply_batch', 'backlinks')
            duration_ms: Duration in milliseconds
            success: Whether the operation succeeded
            error: Error message if the operation failed
        """
        with self._lock:
            m = self._metrics[operation]
            m.count += 1
            m.total_duration_ms += duration_ms
            m.min_duration_ms = min(m.min_duration_ms, duration_ms)
            m.max_duration_ms = max(m.max_duration_ms, duration_ms)

            if success:
                m.success_count += 1
            else:
                m.error_count += 1
                m.last_error = _sanitize_error_message(error)
                m.last_error_time = datetime.now(timezone.utc)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Get a snapshot of all metrics.

        Returns:
            Dictionary mapping operation names to their metrics.
        """
        with self._lock:
            result = {}
            for op, m in self._metrics.items():
                avg_duration = m.total_duration_ms / m.count if m.count > 0 else 0
                min_dur = m.min_duration_ms if m.min_duration_ms != float('inf') else 0
                result[op] = {
                    'count': m.count,
                    'success_count': m.success_count,
                    'error_count': m.error_count,
                    'success_rate': m.success_count / m.count if m.count > 0 else 0,
                    'avg_duration_ms': round(avg_duration, 2),
                    'min_duration_ms': round(min_dur, 2),
                    'max_duration_ms': round(m.max_duration_ms, 2),
                    'last_error': m.last_error,
                    'last_error_time': m.last_error_time.isoformat() if m.last_error_time else None
                }
            return result


# Global metrics collector instance
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Context manager for timing and logging operations.

    Args:
        operation: Name of the operation being performed
        **context: Additional context to include in log messages

    Yields:
        A dictionary where you can store result info (e.g., result_count)

    Example:
        with timed_operation('apply_batch', events=len(events)) as op:
            snapshot, diff = maintainer.apply(snapshot, events)
            op['changed'] = len(diff.changed_note_ids)
    """
    correlation_id = str(uuid.uuid4())[:8]
    start_time = time.perf_counter()
    result_info: Dict[str, Any] = {'correlation_id': correlation_id}

    context_str = ', '.join(f'{k}={v}' for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    error_msg = None
    success = True

    try:
        yield result_info
    except Exception as e:
        success = False
        error_msg = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        metrics.record_operation(operation, duration_ms, success, error_msg)

        result_str = ', '.join(f'{k}={v}' for k, v in result_info.items() if k != 'correlation_id')
        status = 'OK' if success else f'ERROR: {error_msg}'
        logger.debug(
            f"[{correlation_id}] END {operation} "
            f"({duration_ms:.2f}ms) [{status}] {result_str}"
        )


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Decorator for automatic operation tracing.

    Automatically times the function, records metrics, and logs
    start/end with correlation ID.

    Args:
        operation_name: Name to use for the operation. If None, uses function name.

    Example:
        @traced('backlinks')
        def backlinks(self, note_id: str) -> List[ResolvedEdge]:
            ...
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {}
            if 'note_id' in kwargs:
                context['note_id'] = kwargs['note_id']
            elif len(args) > 1 and isinstance(args[1], str):
                context['arg'] = args[1][:50]

            with timed_operation(op_name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple, set, frozenset, dict)):
                    op['result_count'] = len(result)
                elif result is not None:
                    op['has_result'] = True
                return result

        return wrapper  # type: ignore
    return decorator


class StructuredLogger:
    """Logger adapter that adds structured context to all messages.

    Wraps the standard logging module to automatically include
    component name and optional persistent context.
    """

    def __init__(self, component: str):
        """Initialize with a component name.

        Args:
            component: Name of the component (e.g., 'maintainer', 'service')
        """
        self._logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")
        self._component = component
        self._context: Dict[str, Any] = {}

    def set_context(self, **context) -> None:
        """Set persistent context that will be included in all log messages."""
        self._context.update(context)

    def clear_context(self) -> None:
        """Clear the persistent context."""
        self._context.clear()

    def _format_message(self, msg: str, **extra) -> str:
        all_context = {**self._context, **extra}
        if all_context:
            ctx_str = ' '.join(f'{k}={v}' for k, v in all_context.items())
            return f"[{self._component}] {msg} | {ctx_str}"
        return f"[{self._component}] {msg}"

    def debug(self, msg: str, **extra) -> None:
        self._logger.debug(self._format_message(msg, **extra))

    def info(self, msg: str, **extra) -> None:
        self._logger.info(self._format_message(msg, **extra))

    def warning(self, msg: str, **extra) -> None:
        self._logger.warning(self._format_message(msg, **extra))

    def error(self, msg: str, exc_info: bool = False, **extra) -> None:
        self._logger.error(self._format_message(msg, **extra), exc_info=exc_info)


def get_logger(component: str) -> StructuredLogger:
    """Get a structured logger for a component.

    Args:
        component: Component name (e.g., 'maintainer', 'service')

    Returns:
        A StructuredLogger instance
    """
    return StructuredLogger(component)
