"""
Case store query timing

Every repository call made during a conflict check runs inside
query_timer(); the per-operation counters are exposed through
get_db_metrics() and the /api/v1/cache/stats endpoint.

Usage:
    with query_timer("fetch_candidate_cases"):
        rows = session.execute(query)
"""

import logging
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# Queries slower than this are logged at WARNING and counted as slow
SLOW_QUERY_MS = float(os.getenv("DB_SLOW_QUERY_MS", "1000"))


@dataclass
class OperationTimings:
    """Running totals for one repository operation"""
    count: int = 0
    errors: int = 0
    slow: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    last_at: Optional[datetime] = field(default=None)

    def add(self, elapsed_ms: float, failed: bool) -> None:
        self.count += 1
        self.total_ms += elapsed_ms
        self.max_ms = max(self.max_ms, elapsed_ms)
        self.last_at = datetime.now(timezone.utc)
        if failed:
            self.errors += 1
        if elapsed_ms > SLOW_QUERY_MS:
            self.slow += 1

    def to_dict(self, operation: str) -> Dict[str, Any]:
        return {
            'operation': operation,
            'count': self.count,
            'errors': self.errors,
            'slow_queries': self.slow,
            'avg_time_ms': round(self.total_ms / self.count, 2) if self.count else 0.0,
            'max_time_ms': round(self.max_ms, 2),
            'last_executed': self.last_at.isoformat() if self.last_at else None,
        }


_lock = threading.Lock()
_timings: Dict[str, OperationTimings] = {}
_started_at = time.monotonic()


def _record(operation: str, elapsed_ms: float, failed: bool) -> None:
    with _lock:
        _timings.setdefault(operation, OperationTimings()).add(elapsed_ms, failed)


def get_db_metrics(operation: Optional[str] = None) -> Dict[str, Any]:
    """Timings of all operations, or of one (empty dict if never run)"""
    with _lock:
        if operation:
            timings = _timings.get(operation)
            return timings.to_dict(operation) if timings else {}
        return {
            'uptime_seconds': round(time.monotonic() - _started_at, 1),
            'operations': {name: t.to_dict(name) for name, t in _timings.items()},
        }


def get_slow_query_report() -> List[Dict[str, Any]]:
    """Operations that had at least one slow query"""
    with _lock:
        return [t.to_dict(name) for name, t in _timings.items() if t.slow]


def reset_metrics() -> None:
    global _started_at
    with _lock:
        _timings.clear()
        _started_at = time.monotonic()


@contextmanager
def query_timer(operation: str):
    """Time the enclosed block and record it under operation; errors propagate"""
    started = time.perf_counter()
    failed = False
    try:
        yield
    except Exception:
        failed = True
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        _record(operation, elapsed_ms, failed)
        if elapsed_ms > SLOW_QUERY_MS:
            logger.warning("Slow case store query: %s took %.1fms", operation, elapsed_ms)


def timed_query(operation: str) -> Callable:
    """Decorator form of query_timer for repository methods"""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            with query_timer(operation):
                return func(*args, **kwargs)
        return wrapper
    return decorator
