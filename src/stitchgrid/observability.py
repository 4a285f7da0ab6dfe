"""Run-level observability helpers for stitchgrid.

Collects per-stage timings, chunk counts and matcher cache statistics that
can be shown by the CLI and exported as JSON after a run.
"""

from __future__ import annotations

import json
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass
class RunMetricsCollector:
    """Collect run-level counters for pipeline stages and the match cache."""

    run_started_at_epoch: float = field(default_factory=time.time)
    run_finished_at_epoch: float | None = None

    _stage_duration_ms: dict[str, float] = field(default_factory=dict)
    _chunk_count: Counter[str] = field(default_factory=Counter)
    _cache_hits: int = 0
    _cache_misses: int = 0
    _runs_completed: int = 0
    _runs_aborted: int = 0
    _runs_failed: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def record_stage(self, stage: str, duration_ms: float) -> None:
        """Record how long *stage* took in the most recent run."""
        with self._lock:
            self._stage_duration_ms[stage] = duration_ms

    def record_chunks(self, stage: str, count: int = 1) -> None:
        with self._lock:
            self._chunk_count[stage] += count

    def record_cache(self, hits: int, misses: int) -> None:
        """Store the latest matcher cache counters."""
        with self._lock:
            self._cache_hits = hits
            self._cache_misses = misses

    def record_outcome(self, outcome: str) -> None:
        """Count a run ending in ``"ready"``, ``"aborted"`` or ``"failed"``."""
        with self._lock:
            if outcome == "ready":
                self._runs_completed += 1
            elif outcome == "aborted":
                self._runs_aborted += 1
            else:
                self._runs_failed += 1

    def finish(self) -> None:
        """Mark the run as finished."""
        with self._lock:
            if self.run_finished_at_epoch is None:
                self.run_finished_at_epoch = time.time()

    def snapshot(self) -> dict[str, Any]:
        """Build a JSON-serializable snapshot of collected metrics."""
        with self._lock:
            now = time.time()
            finished_at = self.run_finished_at_epoch
            duration_seconds = max(
                0.0,
                (finished_at if finished_at is not None else now)
                - self.run_started_at_epoch,
            )
            lookups = self._cache_hits + self._cache_misses
            return {
                "run_started_at_epoch": self.run_started_at_epoch,
                "run_finished_at_epoch": finished_at,
                "duration_seconds": duration_seconds,
                "stage_duration_ms": dict(self._stage_duration_ms),
                "chunk_count": dict(self._chunk_count),
                "cache_hits": self._cache_hits,
                "cache_misses": self._cache_misses,
                "cache_hit_rate": (self._cache_hits / lookups) if lookups else 0.0,
                "runs_completed": self._runs_completed,
                "runs_aborted": self._runs_aborted,
                "runs_failed": self._runs_failed,
            }


def write_run_summary(path: Path, payload: dict[str, Any]) -> None:
    """Write a run summary payload to disk as UTF-8 JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n")
