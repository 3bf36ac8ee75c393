"""
Thread-safe in-memory metrics for the tour worker.

  - counters:  jobs.enqueued / jobs.completed / jobs.failed / jobs.fallback,
               generation.retries, generation.poll_errors, ...
  - stage latency samples (last 100 per pipeline stage, in ms)
  - gauges:    queue_depth, active_jobs, start_time
  - recent errors (last 50) for root-cause analysis

Everything resets on restart. Exposed as a snapshot at GET /metrics.
"""

import time
import threading
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Deque, Dict

_lock = threading.Lock()

MAX_SAMPLES = 100
MAX_ERRORS = 50

_counters: Dict[str, int] = defaultdict(int)
_gauges: Dict[str, float] = defaultdict(float)
_stage_samples: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=MAX_SAMPLES))
_recent_errors: Deque[dict] = deque(maxlen=MAX_ERRORS)


def inc_counter(name: str, amount: int = 1):
    with _lock:
        _counters[name] += amount


def set_gauge(name: str, value: float):
    with _lock:
        _gauges[name] = value


def record_stage(stage: str, duration_ms: float):
    with _lock:
        _stage_samples[stage].append(duration_ms)


@contextmanager
def timed(stage: str):
    """Record how long the wrapped block took, whether or not it raised."""
    started = time.perf_counter()
    try:
        yield
    finally:
        record_stage(stage, (time.perf_counter() - started) * 1000)


def record_error(source: str, error: BaseException, job_id: str = ""):
    with _lock:
        _recent_errors.append({
            "timestamp": time.time(),
            "source": source,
            "error_type": type(error).__name__,
            "message": str(error)[:300],
            "job_id": job_id,
        })


def _percentile(sorted_samples: list, pct: float) -> float:
    index = min(len(sorted_samples) - 1, int(len(sorted_samples) * pct))
    return sorted_samples[index]


def get_snapshot() -> dict:
    now = time.time()
    with _lock:
        stages = {}
        for stage, samples in _stage_samples.items():
            if not samples:
                continue
            ordered = sorted(samples)
            stages[stage] = {
                "p50": _percentile(ordered, 0.50),
                "p95": _percentile(ordered, 0.95),
                "avg": sum(ordered) / len(ordered),
                "count": len(ordered),
            }

        return {
            "timestamp": now,
            "counters": dict(_counters),
            "gauges": dict(_gauges),
            "stages": stages,
            "recent_errors": list(_recent_errors)[-10:],
            "uptime_seconds": now - _gauges.get("start_time", now),
        }


def reset():
    """Clear everything. Used by tests."""
    with _lock:
        _counters.clear()
        _gauges.clear()
        _stage_samples.clear()
        _recent_errors.clear()
