"""Exceptions raised by the profiler."""

from __future__ import annotations

__all__ = [
    "ProfilerError",
    "CreatingError",
    "RunningError",
    "NotRunningError",
]


class ProfilerError(Exception):
    """Base class for every error the profiler reports.

    Operating-system and I/O failures are raised as the built-in
    :class:`OSError` and are not wrapped.
    """

    default_message = "profiler error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message if message is not None else self.default_message)


class CreatingError(ProfilerError):
    """The shared profiler could not be created."""

    default_message = "create profiler error"


class RunningError(ProfilerError):
    """The profiler was asked to start while it is already running."""

    default_message = "start running cpu profiler error"


class NotRunningError(ProfilerError):
    """The profiler was asked to stop or clear while it is not running."""

    default_message = "stop running cpu profiler error"