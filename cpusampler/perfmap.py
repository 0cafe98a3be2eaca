"""Symbol lookup through ``/tmp/perf-<pid>.map`` files written by JIT runtimes."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

__all__ = ["PerfMapSymbol", "PerfMap", "perf_map_path", "get_resolver"]


@dataclass(frozen=True)
class PerfMapSymbol:
    """A name found in a perf map."""

    name: str


class PerfMap:
    """Address ranges and the names that cover them."""

    def __init__(self, ranges: list[tuple[int, int, str]]) -> None:
        self._ranges = ranges

    @classmethod
    def parse(cls, lines: Iterable[str]) -> PerfMap:
        """Parse ``<start hex> <len hex> <name>`` lines; the name may hold spaces.

        Raises :class:`ValueError` on a malformed line.
        """
        ranges = []
        for line in lines:
            parts = line.split()
            if len(parts) < 2:
                raise ValueError(f"malformed perf map line: {line!r}")
            start = int(parts[0], 16)
            length = int(parts[1], 16)
            ranges.append((start, start + length, " ".join(parts[2:])))
        return cls(ranges)

    @classmethod
    def from_file(cls, path: str | os.PathLike) -> PerfMap:
        with open(path, encoding="utf-8") as handle:
            return cls.parse(handle)

    def find(self, addr: int) -> PerfMapSymbol | None:
        """Return the symbol of the first range holding ``addr``."""
        for start, end, name in self._ranges:
            if start <= addr < end:
                return PerfMapSymbol(name)
        return None

    def __len__(self) -> int:
        return len(self._ranges)


def perf_map_path(pid: int) -> Path:
    """Path of the perf map file for process ``pid``."""
    return Path("/tmp") / f"perf-{pid}.map"


_lock = threading.Lock()
_state: dict = {"initialized": False, "mtime": 0, "resolver": None}


def _load(path: Path) -> PerfMap | None:
    try:
        mtime = int(path.stat().st_mtime)
    except OSError:
        return None
    with _lock:
        if _state["mtime"] == mtime:
            return None
        _state["mtime"] = mtime
    try:
        return PerfMap.from_file(path)
    except (OSError, ValueError):
        return None


def _refresh(path: Path) -> None:
    perf_map = _load(path)
    if perf_map is not None:
        with _lock:
            _state["resolver"] = perf_map


def get_resolver() -> PerfMap | None:
    """Return the perf map of this process, reloading it in the background."""
    path = perf_map_path(os.getpid())
    with _lock:
        first = not _state["initialized"]
        _state["initialized"] = True
    if first:
        try:
            path.touch(exist_ok=True)
        except OSError:
            pass
        initial = _load(path)
        with _lock:
            _state["resolver"] = initial
    threading.Thread(target=_refresh, args=(path,), daemon=True).start()
    with _lock:
        return _state["resolver"]