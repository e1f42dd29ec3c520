"""
Performance monitoring utilities.

Provides a decorator and a context manager that record operation durations
in a shared, thread-safe monitor and warn about slow operations.
"""

import time
import functools
import threading
from typing import Callable, Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

SLOW_OPERATION_SECONDS = 1.0


class PerformanceMonitor:
    """
    Collects operation durations. Safe to use from job worker threads.
    """

    def __init__(self):
        self.metrics: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def record(self, operation: str, duration: float):
        """
        Record an operation duration.

        Args:
            operation: Name of the operation
            duration: Duration in seconds
        """
        with self._lock:
            self.metrics.setdefault(operation, []).append(duration)

    def get_stats(self, operation: str) -> Dict[str, float]:
        """
        Get statistics for an operation.

        Returns:
            Dictionary with min, max, avg, total, count
        """
        with self._lock:
            durations = list(self.metrics.get(operation, []))

        if not durations:
            return {'min': 0, 'max': 0, 'avg': 0, 'total': 0, 'count': 0}

        return {
            'min': min(durations),
            'max': max(durations),
            'avg': sum(durations) / len(durations),
            'total': sum(durations),
            'count': len(durations)
        }

    def get_all_stats(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            operations = list(self.metrics.keys())
        return {operation: self.get_stats(operation) for operation in operations}

    def clear(self):
        """Clear all recorded metrics."""
        with self._lock:
            self.metrics.clear()

    def log_stats(self, operation: Optional[str] = None):
        """
        Log statistics, for one operation or all of them.
        """
        stats_by_op = {operation: self.get_stats(operation)} if operation else self.get_all_stats()
        for op, stats in stats_by_op.items():
            logger.info(
                "Performance '%s': count=%d avg=%.4fs max=%.4fs total=%.4fs",
                op, stats['count'], stats['avg'], stats['max'], stats['total'],
            )


_global_monitor = PerformanceMonitor()


def get_monitor() -> PerformanceMonitor:
    """Get the global performance monitor instance."""
    return _global_monitor


def _finish(op_name: str, start_time: float):
    duration = time.time() - start_time
    _global_monitor.record(op_name, duration)
    if duration > SLOW_OPERATION_SECONDS:
        logger.warning(
            f"Operation '{op_name}' took {duration:.2f}s "
            f"(threshold: {SLOW_OPERATION_SECONDS}s)"
        )


def monitor_performance(operation_name: str = None):
    """
    Decorator to monitor function performance.

    Args:
        operation_name: Name for the operation (defaults to function name)

    Example:
        @monitor_performance("file_import")
        def load_file(path):
            ...
    """
    def decorator(func: Callable) -> Callable:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                _finish(op_name, start_time)

        return wrapper
    return decorator


class measure_time:
    """
    Context manager for measuring operation time.

    Example:
        with measure_time("duplicate_scan"):
            analyzer.analyze(records)
    """

    def __init__(self, operation_name: str):
        self.name = operation_name
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _finish(self.name, self.start_time)
        return False
