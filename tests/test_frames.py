import sys

from cpusampler.frames import (
    Frames,
    Symbol,
    UnresolvedFrames,
    capture_stack,
    demangle,
)


def _perf_signal_handler():
    return capture_stack(sys._getframe(), 128)


def _handler_caller():
    return _perf_signal_handler()


def _outer():
    return _handler_caller()


def test_demangle_rust():
    symbol = Symbol(name=b"_ZN3foo3barE")
    assert symbol.demangled() == "foo::bar"


def test_demangle_cpp():
    name = b"_ZNK3MapI10StringName3RefI8GDScriptE10ComparatorIS0_E16DefaultAllocatorE3hasERKS0_"
    symbol = Symbol(name=name)
    assert symbol.demangled() == (
        "Map<StringName, Ref<GDScript>, Comparator<StringName>, DefaultAllocator>"
        "::has(StringName const&) const"
    )


def test_demangle_plain_name_unchanged():
    assert demangle("main") == "main"
    assert demangle("_Zbroken") == "_Zbroken"


def test_symbol_defaults():
    symbol = Symbol()
    assert symbol.raw_name() == b"Unknown"
    assert symbol.file_name() == "Unknown"
    assert symbol.line_number() == 0
    assert str(symbol) == "Unknown"


def test_symbol_equality_by_raw_name():
    a = Symbol(name=b"f", lineno=1, filename="a.py")
    b = Symbol(name=b"f", lineno=2, filename="b.py")
    assert a == b
    assert hash(a) == hash(b)
    assert a != Symbol(name=b"g")


def test_capture_stack_contains_caller():
    frames = capture_stack(sys._getframe(), 128)
    names = [f.resolve_symbols()[0].sys_name() for f in frames]
    assert names[0].endswith("test_capture_stack_contains_caller")


def test_capture_stack_respects_depth():
    assert len(capture_stack(sys._getframe(), 1)) == 1


def test_unresolved_equality_uses_functions_and_thread():
    stack = capture_stack(sys._getframe(), 3)
    a = UnresolvedFrames(stack, "t", 7, 1.0)
    b = UnresolvedFrames(stack, "other", 7, 2.0)
    c = UnresolvedFrames(stack, "t", 8, 1.0)
    assert a == b
    assert hash(a) == hash(b)
    assert a != c


def test_thread_name_truncated():
    u = UnresolvedFrames((), "x" * 40, 1)
    assert len(u.thread_name) == 16


def test_from_unresolved_skips_handler_and_next():
    stack = _outer()
    frames = Frames.from_unresolved(UnresolvedFrames(stack, "main", 1, 0.0))
    names = [s[0].demangled() for s in frames.frames]
    assert not any(n.endswith("_perf_signal_handler") for n in names)
    assert not any(n.endswith("_handler_caller") for n in names)
    assert any(n.endswith("_outer") for n in names)


def test_frames_str_and_thread_name_or_id():
    sym = Symbol(name=b"f")
    named = Frames([[sym]], "worker", 5, 0.0)
    assert str(named) == "FRAME: f -> THREAD: worker"
    assert named.thread_name_or_id() == "worker"
    anon = Frames([], "", 5, 0.0)
    assert str(anon) == "THREAD: ThreadId(5)"
    assert anon.thread_name_or_id() == "5"