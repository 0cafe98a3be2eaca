"""Sampling CPU profiler for Python programs with text, folded-stack and pprof reports."""

__version__ = "0.1.0"

__all__ = [
    "collector",
    "errors",
    "frames",
    "perfmap",
    "profile_proto",
    "profiler",
    "report",
    "timer",
]