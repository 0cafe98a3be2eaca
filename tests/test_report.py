import io
import threading

import pytest

from cpusampler.collector import Collector
from cpusampler.errors import CreatingError
from cpusampler.frames import Frame, Frames, UnresolvedFrames
from cpusampler.profile_proto import Profile
from cpusampler.report import Report, ReportBuilder, UnresolvedReport
from cpusampler.timer import ReportTiming


def leaf():
    return None


def root():
    return None


def other():
    return None


class FakeProfiler:
    def __init__(self):
        self.data = Collector()
        self.cleared = 0

    def clear(self):
        self.data.clear()
        self.cleared += 1


@pytest.fixture
def profiler():
    p = FakeProfiler()
    yield p
    p.data.close()


def stack(*funcs, name="worker", tid=1):
    frames = tuple(Frame(f.__code__, 10) for f in funcs)
    return UnresolvedFrames(frames=frames, thread_name=name, thread_id=tid, sample_timestamp=0.0)


TIMING = ReportTiming(frequency=100, start_time=2.0, duration=0.5)


def test_build_aggregates_counts(profiler):
    for _ in range(3):
        profiler.data.add(stack(leaf, root), 1)
    report = ReportBuilder(profiler, TIMING).build()
    assert list(report.data.values()) == [3]
    key = next(iter(report.data))
    assert [[s.sys_name() for s in frame] for frame in key.frames] == [["leaf"], ["root"]]


def test_non_positive_counts_are_skipped(profiler):
    profiler.data.add(stack(leaf), 0)
    profiler.data.add(stack(root), -2)
    assert ReportBuilder(profiler, TIMING).build().data == {}


def test_build_unresolved(profiler):
    profiler.data.add(stack(leaf, root), 2)
    profiler.data.add(stack(leaf, root), 1)
    report = ReportBuilder(profiler, TIMING).build_unresolved()
    assert isinstance(report, UnresolvedReport)
    assert report.data == {stack(leaf, root): 3}
    assert report.timing == TIMING


def test_post_processor_applied(profiler):
    profiler.data.add(stack(leaf, name="a", tid=1), 1)
    profiler.data.add(stack(root, name="b", tid=2), 1)

    def rename(frames):
        frames.thread_name = "PROCESSED"

    builder = ReportBuilder(profiler, TIMING)
    assert builder.frames_post_processor(rename) is builder
    report = builder.build()
    assert {k.thread_name for k in report.data} == {"PROCESSED"}
    assert len(report.data) == 2


def test_build_and_clear(profiler):
    profiler.data.add(stack(leaf), 4)
    builder = ReportBuilder(profiler, TIMING)
    report = builder.build_and_clear(True)
    assert sum(report.data.values()) == 4
    assert profiler.cleared == 1
    assert builder.build().data == {}


def test_build_does_not_clear(profiler):
    profiler.data.add(stack(leaf), 4)
    builder = ReportBuilder(profiler, TIMING)
    builder.build()
    assert profiler.cleared == 0
    assert sum(builder.build().data.values()) == 4


def test_missing_profiler_raises():
    with pytest.raises(CreatingError):
        ReportBuilder(None, TIMING).build()
    with pytest.raises(CreatingError):
        ReportBuilder(None, TIMING).build_unresolved()


def test_lock_is_used(profiler):
    lock = threading.Lock()

    class Spy:
        entered = 0

        def __enter__(self):
            Spy.entered += 1
            lock.acquire()

        def __exit__(self, *exc):
            lock.release()

    profiler.data.add(stack(leaf), 1)
    ReportBuilder(profiler, TIMING, lock=Spy()).build()
    assert Spy.entered == 1
    assert not lock.locked()


def test_folded_lines_order(profiler):
    profiler.data.add(stack(leaf, root), 3)
    report = ReportBuilder(profiler, TIMING).build()
    assert report.folded_lines() == ["worker;root;leaf 3"]


def test_folded_lines_without_frames_or_name(profiler):
    profiler.data.add(stack(name="", tid=7), 1)
    report = ReportBuilder(profiler, TIMING).build()
    assert report.folded_lines() == ["7 1"]


def test_write_folded(profiler):
    profiler.data.add(stack(leaf, root), 3)
    report = ReportBuilder(profiler, TIMING).build()
    out = io.StringIO()
    report.write_folded(out)
    assert out.getvalue() == "worker;root;leaf 3\n"
    empty = io.StringIO()
    Report().write_folded(empty)
    assert empty.getvalue() == ""


def test_str(profiler):
    profiler.data.add(stack(leaf, root), 3)
    report = ReportBuilder(profiler, TIMING).build()
    assert str(report) == "FRAME: leaf -> FRAME: root -> THREAD: worker 3\n"


def _lookup(profile, index):
    return profile.string_table[index]


def test_pprof_structure(profiler):
    profiler.data.add(stack(leaf, root), 3)
    profile = ReportBuilder(profiler, TIMING).build().pprof()
    assert profile.string_table[0] == ""
    assert [(_lookup(profile, v.type), _lookup(profile, v.unit)) for v in profile.sample_type] == [
        ("samples", "count"),
        ("cpu", "nanoseconds"),
    ]
    assert (_lookup(profile, profile.period_type.type), _lookup(profile, profile.period_type.unit)) == (
        "cpu",
        "nanoseconds",
    )
    assert profile.period == 10_000_000
    (sample,) = profile.sample
    assert sample.value[0] == 3
    assert sample.value[1] == sample.value[0] * profile.period
    names = {f.id: _lookup(profile, f.name) for f in profile.function}
    assert [names[i] for i in sample.location_id] == ["leaf", "root"]
    (label,) = sample.label
    assert (_lookup(profile, label.key), _lookup(profile, label.str)) == ("thread", "worker")
    assert [loc.id for loc in profile.location] == [f.id for f in profile.function]


def test_pprof_reuses_functions(profiler):
    profiler.data.add(stack(leaf, root, tid=1), 1)
    profiler.data.add(stack(other, root, tid=2), 1)
    profile = ReportBuilder(profiler, TIMING).build().pprof()
    assert len(profile.function) == 3
    assert len(profile.location) == 3
    roots = {s.location_id[-1] for s in profile.sample}
    assert len(roots) == 1


def test_pprof_times(profiler):
    profile = Report(timing=TIMING).pprof()
    assert profile.time_nanos == 2_000_000_000
    assert profile.duration_nanos == 500_000_000
    before_epoch = Report(timing=ReportTiming(frequency=100, start_time=-5.0)).pprof()
    assert before_epoch.time_nanos == 0


def test_pprof_round_trip(profiler):
    profiler.data.add(stack(leaf, root), 5)
    profiler.data.add(stack(other, name="", tid=9), 2)
    profile = ReportBuilder(profiler, TIMING).build().pprof()
    assert Profile.decode(profile.encode()) == profile


def test_report_key_is_resolved_frames(profiler):
    profiler.data.add(stack(leaf), 1)
    report = ReportBuilder(profiler, TIMING).build()
    key = next(iter(report.data))
    assert key == Frames.from_unresolved(stack(leaf))