"""Profiling interval timer and report timing metadata."""

from __future__ import annotations

import signal
import time
from dataclasses import dataclass

__all__ = ["ReportTiming", "Timer"]


@dataclass
class ReportTiming:
    """Sampling frequency, start time (seconds since the epoch) and duration in seconds."""

    frequency: int = 1
    start_time: float = 0.0
    duration: float = 0.0


class Timer:
    """Arms ``ITIMER_PROF`` to deliver ``SIGPROF`` ``frequency`` times per CPU second."""

    def __init__(self, frequency: int) -> None:
        if frequency <= 0:
            raise ValueError("frequency must be positive")
        interval = (1_000_000 // frequency) / 1_000_000
        signal.setitimer(signal.ITIMER_PROF, interval, interval)
        self.frequency = frequency
        self.start_time = time.time()
        self._start_instant = time.perf_counter()
        self._active = True

    def timing(self) -> ReportTiming:
        return ReportTiming(
            frequency=self.frequency,
            start_time=self.start_time,
            duration=time.perf_counter() - self._start_instant,
        )

    def cancel(self) -> None:
        """Disarm the timer; further calls do nothing."""
        if self._active:
            signal.setitimer(signal.ITIMER_PROF, 0, 0)
            self._active = False

    def __enter__(self) -> Timer:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()