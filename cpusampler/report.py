"""Reports built from a running profiler: aggregation, folded stacks and pprof output."""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass, field
from typing import Any, Callable, TextIO

from .errors import CreatingError
from .frames import Frames, UnresolvedFrames
from .profile_proto import Function, Label, Line, Location, Profile, Sample, ValueType
from .timer import ReportTiming

__all__ = ["Report", "UnresolvedReport", "ReportBuilder"]

_log = logging.getLogger(__name__)

_SAMPLES = "samples"
_COUNT = "count"
_CPU = "cpu"
_NANOSECONDS = "nanoseconds"
_THREAD = "thread"
_NANOS_PER_SECOND = 1_000_000_000

FramesPostProcessor = Callable[[Frames], None]


def _div_trunc(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero."""
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


@dataclass
class Report:
    """Resolved backtraces mapped to the number of times they were sampled."""

    data: dict[Frames, int] = field(default_factory=dict)
    timing: ReportTiming = field(default_factory=ReportTiming)

    def folded_lines(self) -> list[str]:
        """One ``thread;root;...;leaf count`` line per backtrace."""
        lines = []
        for key, value in self.data.items():
            parts = [key.thread_name_or_id()]
            for frame in reversed(key.frames):
                parts.extend(str(symbol) for symbol in reversed(frame))
            lines.append(f"{';'.join(parts)} {value}")
        return lines

    def write_folded(self, writer: TextIO) -> None:
        """Write the folded stacks, one per line, for flame graph tools."""
        lines = self.folded_lines()
        if lines:
            writer.write("\n".join(lines))
            writer.write("\n")

    def pprof(self) -> Profile:
        """Build a profile in the pprof format."""
        names: dict[str, None] = {}
        for key in self.data:
            names[key.thread_name_or_id()] = None
            for frame in key.frames:
                for symbol in frame:
                    names[symbol.demangled()] = None
                    names[symbol.sys_name()] = None
                    names[symbol.file_name()] = None
        for constant in (_SAMPLES, _COUNT, _CPU, _NANOSECONDS, _THREAD):
            names[constant] = None

        string_table = ["", *names]
        strings = {name: index for index, name in enumerate(string_table)}

        frequency = self.timing.frequency
        samples: list[Sample] = []
        locations: list[Location] = []
        functions: list[Function] = []
        function_ids: dict[str, int] = {}

        for key, count in self.data.items():
            location_ids = []
            for frame in key.frames:
                for symbol in frame:
                    name = symbol.demangled()
                    known = function_ids.get(name)
                    if known is not None:
                        location_ids.append(known)
                        continue
                    function_id = len(functions) + 1
                    functions.append(
                        Function(
                            id=function_id,
                            name=strings[name],
                            system_name=strings[symbol.sys_name()],
                            filename=strings[symbol.file_name()],
                        )
                    )
                    locations.append(
                        Location(
                            id=function_id,
                            line=[Line(function_id=function_id, line=symbol.line_number())],
                        )
                    )
                    function_ids[name] = function_id
                    location_ids.append(function_id)

            thread_label = Label(
                key=strings[_THREAD],
                str=strings[key.thread_name_or_id()],
            )
            samples.append(
                Sample(
                    location_id=location_ids,
                    value=[count, _div_trunc(count * _NANOS_PER_SECOND, frequency)],
                    label=[thread_label],
                )
            )

        samples_value = ValueType(type=strings[_SAMPLES], unit=strings[_COUNT])
        time_value = ValueType(type=strings[_CPU], unit=strings[_NANOSECONDS])
        start_nanos = int(self.timing.start_time * _NANOS_PER_SECOND)
        return Profile(
            sample_type=[samples_value, ValueType(time_value.type, time_value.unit)],
            sample=samples,
            location=locations,
            function=functions,
            string_table=string_table,
            time_nanos=max(start_nanos, 0),
            duration_nanos=int(self.timing.duration * _NANOS_PER_SECOND),
            period_type=time_value,
            period=_div_trunc(_NANOS_PER_SECOND, frequency),
        )

    def __str__(self) -> str:
        return "".join(f"{key} {value}\n" for key, value in self.data.items())


@dataclass
class UnresolvedReport:
    """Raw backtraces mapped to the number of times they were sampled."""

    data: dict[UnresolvedFrames, int] = field(default_factory=dict)
    timing: ReportTiming = field(default_factory=ReportTiming)


class ReportBuilder:
    """Builds reports from a profiler's collected samples.

    ``profiler`` must expose ``data`` (an iterable of entries with ``item``
    and ``count``) and ``clear()``; ``None`` stands for a profiler that could
    not be created. ``lock`` guards access to the profiler.
    """

    def __init__(
        self,
        profiler: Any,
        timing: ReportTiming | None = None,
        lock: AbstractContextManager | None = None,
    ) -> None:
        self._profiler = profiler
        self._timing = timing if timing is not None else ReportTiming()
        self._lock = lock if lock is not None else nullcontext()
        self._post_processor: FramesPostProcessor | None = None

    def frames_post_processor(self, processor: FramesPostProcessor) -> ReportBuilder:
        """Apply ``processor`` to every resolved backtrace before aggregation."""
        self._post_processor = processor
        return self

    def _require_profiler(self) -> Any:
        if self._profiler is None:
            _log.error("Error in creating profiler")
            raise CreatingError()
        return self._profiler

    def _copy_timing(self) -> ReportTiming:
        t = self._timing
        return ReportTiming(t.frequency, t.start_time, t.duration)

    def build_unresolved(self) -> UnresolvedReport:
        """Aggregate the raw samples without resolving symbols."""
        with self._lock:
            profiler = self._require_profiler()
            data: dict[UnresolvedFrames, int] = {}
            for entry in profiler.data:
                if entry.count > 0:
                    data[entry.item] = data.get(entry.item, 0) + entry.count
        return UnresolvedReport(data=data, timing=self._copy_timing())

    def build(self) -> Report:
        """Aggregate and resolve the samples collected so far."""
        return self.build_and_clear(False)

    def build_and_clear(self, clear: bool) -> Report:
        """Build a report; if ``clear``, discard the samples under the same lock."""
        with self._lock:
            profiler = self._require_profiler()
            data: dict[Frames, int] = {}
            for entry in profiler.data:
                if entry.count <= 0:
                    continue
                key = Frames.from_unresolved(entry.item)
                if self._post_processor is not None:
                    self._post_processor(key)
                data[key] = data.get(key, 0) + entry.count
            if clear:
                profiler.clear()
        return Report(data=data, timing=self._copy_timing())