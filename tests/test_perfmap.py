import os
from pathlib import Path

import pytest

from cpusampler.perfmap import PerfMap, PerfMapSymbol, get_resolver, perf_map_path


def test_find_inside_range():
    pm = PerfMap.parse(["1000 10 foo bar"])
    assert pm.find(0x1000) == PerfMapSymbol("foo bar")
    assert pm.find(0x100F) == PerfMapSymbol("foo bar")


def test_find_outside_range():
    pm = PerfMap.parse(["1000 10 foo"])
    assert pm.find(0x1010) is None
    assert pm.find(0xFFF) is None


def test_first_matching_range_wins():
    pm = PerfMap.parse(["0 100 first", "0 100 second"])
    assert pm.find(5).name == "first"
    assert len(pm) == 2


def test_malformed_line_raises():
    with pytest.raises(ValueError):
        PerfMap.parse(["1000"])
    with pytest.raises(ValueError):
        PerfMap.parse(["zz 10 name"])


def test_from_file(tmp_path):
    path = tmp_path / "perf.map"
    path.write_text("20 4 alpha\n40 4 beta gamma\n")
    pm = PerfMap.from_file(path)
    assert pm.find(0x41).name == "beta gamma"
    assert pm.find(0x22).name == "alpha"


def test_perf_map_path():
    assert perf_map_path(42) == Path("/tmp/perf-42.map")


def test_get_resolver_reads_process_map():
    path = perf_map_path(os.getpid())
    path.write_text("5000 100 jitted fn\n")
    try:
        resolver = get_resolver()
        assert resolver is not None
        assert resolver.find(0x5010).name == "jitted fn"
    finally:
        path.unlink(missing_ok=True)