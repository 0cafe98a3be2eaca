import signal
import time

import pytest

from cpusampler.timer import ReportTiming, Timer


@pytest.fixture(autouse=True)
def ignore_sigprof():
    previous = signal.signal(signal.SIGPROF, signal.SIG_IGN)
    yield
    signal.setitimer(signal.ITIMER_PROF, 0, 0)
    signal.signal(signal.SIGPROF, previous)


def test_report_timing_default():
    timing = ReportTiming()
    assert timing.frequency == 1
    assert timing.start_time == 0.0
    assert timing.duration == 0.0


def test_timer_arms_and_cancels():
    timer = Timer(100)
    assert timer.frequency == 100
    assert timer.timing().frequency == 100
    _, interval = signal.getitimer(signal.ITIMER_PROF)
    assert interval == pytest.approx(0.01)
    timer.cancel()
    assert signal.getitimer(signal.ITIMER_PROF) == (0.0, 0.0)


def test_context_manager_cancels():
    with Timer(50) as timer:
        assert timer.frequency == 50
    assert signal.getitimer(signal.ITIMER_PROF) == (0.0, 0.0)


def test_timing_grows():
    with Timer(100) as timer:
        first = timer.timing()
        time.sleep(0.01)
        second = timer.timing()
    assert first.frequency == 100
    assert first.start_time == second.start_time
    assert second.duration >= first.duration >= 0


def test_invalid_frequency():
    with pytest.raises(ValueError):
        Timer(0)