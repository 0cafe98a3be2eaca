import pytest

from cpusampler.errors import (
    CreatingError,
    NotRunningError,
    ProfilerError,
    RunningError,
)


@pytest.mark.parametrize(
    "cls, message",
    [
        (CreatingError, "create profiler error"),
        (RunningError, "start running cpu profiler error"),
        (NotRunningError, "stop running cpu profiler error"),
    ],
)
def test_default_messages(cls, message):
    assert str(cls()) == message


@pytest.mark.parametrize(
    "cls, message",
    [
        (CreatingError, "create profiler error"),
        (RunningError, "start running cpu profiler error"),
        (NotRunningError, "stop running cpu profiler error"),
    ],
)
def test_errors_share_base_class(cls, message):
    with pytest.raises(ProfilerError) as info:
        raise cls()
    assert type(info.value) is cls
    assert str(info.value) == message


def test_custom_message_overrides_default():
    err = RunningError("already on")
    assert str(err) == "already on"
    assert err.args == ("already on",)


def test_specific_error_is_not_caught_as_sibling():
    err = NotRunningError()
    assert not isinstance(err, RunningError)
    assert str(err) == "stop running cpu profiler error"