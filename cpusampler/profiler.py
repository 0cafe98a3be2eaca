"""The sampling CPU profiler driven by ``SIGPROF`` and the guard that runs it."""

from __future__ import annotations

import logging
import signal
import threading
import time
from dataclasses import dataclass, replace
from types import FrameType
from typing import Iterable, Sequence

from .collector import Collector
from .errors import CreatingError, NotRunningError, ProfilerError, RunningError
from .frames import MAX_DEPTH, Frame, UnresolvedFrames, capture_stack
from .report import ReportBuilder
from .timer import ReportTiming, Timer

__all__ = [
    "DEFAULT_FREQUENCY",
    "Profiler",
    "get_profiler",
    "ProfilerGuardBuilder",
    "ProfilerGuard",
]

_log = logging.getLogger(__name__)

DEFAULT_FREQUENCY = 99


class Profiler:
    """Collects stack samples while its ``SIGPROF`` handler is installed."""

    def __init__(self, blocklist: Iterable[str] = ()) -> None:
        self.data = Collector()
        self.sample_counter = 0
        self.blocklist: tuple[str, ...] = tuple(blocklist)
        self._running = False
        self._old_handler = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Install the signal handler; raises :class:`RunningError` if already running."""
        _log.info("starting cpu profiler")
        if self._running:
            raise RunningError()
        self._register_signal_handler()
        self._running = True

    def stop(self) -> None:
        """Ignore ``SIGPROF`` and discard all samples; raises :class:`NotRunningError`."""
        _log.info("stopping cpu profiler")
        if not self._running:
            raise NotRunningError()
        self._unregister_signal_handler()
        self._reset()

    def clear(self) -> None:
        """Discard collected samples but keep profiling."""
        if not self._running:
            raise NotRunningError()
        self.sample_counter = 0
        self.data.clear()

    def _reset(self) -> None:
        self.sample_counter = 0
        old = self.data
        self.data = Collector()
        old.close()
        self._running = False

    def _register_signal_handler(self) -> None:
        self._old_handler = signal.signal(signal.SIGPROF, _perf_signal_handler)
        # Restart interrupted system calls rather than failing them.
        signal.siginterrupt(signal.SIGPROF, False)

    def _unregister_signal_handler(self) -> None:
        # Ignoring rather than restoring the default action keeps a pending
        # SIGPROF from terminating the process between stop and restart.
        self._old_handler = None
        signal.signal(signal.SIGPROF, signal.SIG_IGN)

    def is_blocklisted(self, filename: str) -> bool:
        """Whether ``filename`` contains any of the blocklisted names."""
        return any(name in filename for name in self.blocklist)

    def sample(
        self,
        frames: Sequence[Frame],
        thread_name: str,
        thread_id: int,
        sample_timestamp: float,
    ) -> None:
        """Count one sample of ``frames`` taken on the given thread."""
        unresolved = UnresolvedFrames(tuple(frames), thread_name, thread_id, sample_timestamp)
        self.sample_counter += 1
        try:
            self.data.add(unresolved, 1)
        except OSError:
            pass


class _Shared:
    __slots__ = ("created", "profiler", "error")

    def __init__(self) -> None:
        self.created = False
        self.profiler: Profiler | None = None
        self.error: OSError | None = None


_LOCK = threading.Lock()
_INIT_LOCK = threading.Lock()
_SHARED = _Shared()


def _shared_profiler() -> Profiler | None:
    with _INIT_LOCK:
        if not _SHARED.created:
            _SHARED.created = True
            try:
                _SHARED.profiler = Profiler()
            except OSError as err:
                _SHARED.error = err
        return _SHARED.profiler


def get_profiler() -> Profiler:
    """Return the process-wide profiler, creating it on first use.

    Raises :class:`CreatingError` if it could not be created.
    """
    profiler = _shared_profiler()
    if profiler is None:
        _log.error("Error in creating profiler: %s", _SHARED.error)
        raise CreatingError()
    return profiler


def _perf_signal_handler(signum: int, frame: FrameType | None) -> None:
    sample_timestamp = time.time()
    if not _LOCK.acquire(blocking=False):
        return
    try:
        profiler = _SHARED.profiler
        if profiler is None:
            return
        if frame is not None and profiler.is_blocklisted(frame.f_code.co_filename):
            return
        stack = capture_stack(frame, MAX_DEPTH)
        profiler.sample(
            stack,
            threading.current_thread().name,
            threading.get_ident(),
            sample_timestamp,
        )
    finally:
        _LOCK.release()


@dataclass(frozen=True)
class ProfilerGuardBuilder:
    """Configures and starts the shared profiler."""

    sample_frequency: int = DEFAULT_FREQUENCY
    blocked_names: tuple[str, ...] = ()

    def frequency(self, frequency: int) -> ProfilerGuardBuilder:
        """Return a builder sampling ``frequency`` times per CPU second."""
        return replace(self, sample_frequency=frequency)

    def blocklist(self, blocklist: Iterable[str]) -> ProfilerGuardBuilder:
        """Return a builder that skips samples whose innermost file contains any of these names."""
        names = (blocklist,) if isinstance(blocklist, str) else tuple(blocklist)
        return replace(self, blocked_names=names)

    def build(self) -> ProfilerGuard:
        """Start profiling and return the guard that stops it."""
        profiler = _shared_profiler()
        if profiler is None:
            _log.error("Error in creating profiler: %s", _SHARED.error)
            raise CreatingError()
        with _LOCK:
            profiler.blocklist = self.blocked_names
            profiler.start()
        try:
            timer = Timer(self.sample_frequency)
        except BaseException:
            with _LOCK:
                profiler.stop()
            raise
        return ProfilerGuard(profiler, timer)


class ProfilerGuard:
    """Keeps the profiler running until stopped or the ``with`` block ends."""

    def __init__(self, profiler: Profiler, timer: Timer) -> None:
        self._profiler = profiler
        self._timer: Timer | None = timer

    @classmethod
    def new(cls, frequency: int) -> ProfilerGuard:
        """Start profiling at ``frequency`` samples per CPU second."""
        return ProfilerGuardBuilder().frequency(frequency).build()

    def report(self) -> ReportBuilder:
        """A builder for reports of the samples collected so far."""
        timing = self._timer.timing() if self._timer is not None else ReportTiming()
        return ReportBuilder(self._profiler, timing, _LOCK)

    def stop(self) -> None:
        """Disarm the timer and stop the profiler; further calls do nothing."""
        timer, self._timer = self._timer, None
        if timer is None:
            return
        timer.cancel()
        with _LOCK:
            try:
                self._profiler.stop()
            except (ProfilerError, OSError, ValueError) as err:
                _log.error("error while stopping profiler %s", err)

    def __enter__(self) -> ProfilerGuard:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def __del__(self) -> None:
        try:
            if getattr(self, "_timer", None) is not None:
                self.stop()
        except Exception:
            pass