"""
Core timing primitives for the benchmarking system.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class TimingRecord:
    """A single timing measurement."""

    name: str
    start_ns: int
    end_ns: int
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ns(self) -> int:
        """Duration in nanoseconds."""
        return self.end_ns - self.start_ns

    @property
    def duration_ms(self) -> float:
        """Duration in milliseconds."""
        return self.duration_ns / 1_000_000


class TimingContext:
    """Monotonic stopwatch usable as a context manager.

    Usage:
        with TimingContext("trial", url=url) as timer:
            ...
            if timer.elapsed_ms > limit:
                ...
        timer.elapsed_ms  # frozen at exit
    """

    def __init__(self, name: str, **metadata: Any):
        self.name = name
        self.metadata = metadata
        self._start_ns: int = time.perf_counter_ns()
        self._record: TimingRecord | None = None

    def __enter__(self) -> TimingContext:
        self._start_ns = time.perf_counter_ns()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()

    def stop(self) -> TimingRecord:
        """Freeze the measurement; later calls return the same record."""
        if self._record is None:
            self._record = TimingRecord(
                name=self.name,
                start_ns=self._start_ns,
                end_ns=time.perf_counter_ns(),
                metadata=self.metadata,
            )
        return self._record

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since start, or the frozen duration once stopped."""
        if self._record is not None:
            return self._record.duration_ms
        return (time.perf_counter_ns() - self._start_ns) / 1_000_000


def utc_timestamp(now: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-05-01T10:00:00.123Z."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def make_run_id(now: datetime | None = None) -> str:
    """Local-time run identifier of the form YYYYMMDD-HHMMSS."""
    now = now or datetime.now()
    return f"{now:%Y%m%d-%H%M%S}"
