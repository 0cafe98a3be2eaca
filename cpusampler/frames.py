"""Stack frames, symbols and name demangling."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from types import CodeType, FrameType

__all__ = [
    "MAX_DEPTH",
    "MAX_THREAD_NAME",
    "demangle",
    "Frame",
    "Symbol",
    "UnresolvedFrames",
    "Frames",
    "capture_stack",
]

MAX_DEPTH = 128
MAX_THREAD_NAME = 16

_SIGNAL_HANDLER_NAMES = {"perf_signal_handler", "_perf_signal_handler"}

_BUILTINS = {
    "v": "void", "b": "bool", "c": "char", "a": "signed char",
    "h": "unsigned char", "s": "short", "t": "unsigned short", "i": "int",
    "j": "unsigned int", "l": "long", "m": "unsigned long", "x": "long long",
    "y": "unsigned long long", "f": "float", "d": "double",
    "e": "long double", "w": "wchar_t", "z": "...",
}
_SPECIAL_SUBS = {
    "a": "std::allocator", "b": "std::basic_string", "s": "std::string",
    "i": "std::istream", "o": "std::ostream", "d": "std::iostream",
}
_RUST_HASH = re.compile(r"h[0-9a-f]{16}")
_RUST_ESCAPES = {
    "$SP$": "@", "$BP$": "*", "$RF$": "&", "$LT$": "<", "$GT$": ">",
    "$LP$": "(", "$RP$": ")", "$C$": ",",
}


class _DemangleError(ValueError):
    pass


class _Itanium:
    def __init__(self, text: str) -> None:
        self.s = text
        self.i = 0
        self.subs: list[str] = []

    def peek(self, n: int = 1) -> str:
        return self.s[self.i:self.i + n]

    def take(self, expected: str) -> None:
        if self.peek() != expected:
            raise _DemangleError(self.s)
        self.i += 1

    def at_end(self) -> bool:
        return self.i >= len(self.s)

    def number(self) -> int:
        start = self.i
        while not self.at_end() and self.s[self.i].isdigit():
            self.i += 1
        if start == self.i:
            raise _DemangleError(self.s)
        return int(self.s[start:self.i])

    def source_name(self) -> str:
        n = self.number()
        name = self.s[self.i:self.i + n]
        if len(name) < n:
            raise _DemangleError(self.s)
        self.i += n
        return name

    def cv_qualifiers(self) -> str:
        found = set()
        while self.peek() in ("r", "V", "K") and not self.at_end():
            found.add(self.peek())
            self.i += 1
        words = [w for q, w in (("K", "const"), ("V", "volatile"), ("r", "restrict")) if q in found]
        return "".join(" " + w for w in words)

    def substitution(self) -> str:
        self.take("S")
        c = self.peek()
        if c == "_":
            self.i += 1
            index = 0
        elif c.isdigit() or c.isupper():
            start = self.i
            while self.peek() and self.peek() != "_":
                self.i += 1
            index = int(self.s[start:self.i], 36) + 1
            self.take("_")
        elif c == "t":
            self.i += 1
            return "std"
        elif c in _SPECIAL_SUBS:
            self.i += 1
            return _SPECIAL_SUBS[c]
        else:
            raise _DemangleError(self.s)
        if index >= len(self.subs):
            raise _DemangleError(self.s)
        return self.subs[index]

    def template_args(self) -> str:
        self.take("I")
        args = []
        while self.peek() != "E":
            if self.at_end():
                raise _DemangleError(self.s)
            if self.peek() == "L":
                self.i += 1
                self.type()
                negative = self.peek() == "n"
                if negative:
                    self.i += 1
                value = self.number()
                self.take("E")
                args.append(f"-{value}" if negative else str(value))
            else:
                args.append(self.type())
        self.take("E")
        return "<" + ", ".join(args) + ">"

    def nested(self) -> tuple[str, str, bool]:
        self.take("N")
        cv = self.cv_qualifiers()
        prefix: str | None = None
        pending = False
        templated = False
        while True:
            c = self.peek()
            if not c:
                raise _DemangleError(self.s)
            if c == "E":
                self.i += 1
                break
            if pending:
                self.subs.append(prefix)
            if c == "S":
                part = self.substitution()
                prefix = part if prefix is None else f"{prefix}::{part}"
                pending = False
                templated = False
                continue
            if c == "I":
                if prefix is None:
                    raise _DemangleError(self.s)
                prefix += self.template_args()
                templated = True
            else:
                part = self.source_name()
                prefix = part if prefix is None else f"{prefix}::{part}"
                templated = False
            pending = True
        if prefix is None:
            raise _DemangleError(self.s)
        return prefix, cv, templated

    def type(self) -> str:
        c = self.peek()
        if c in _BUILTINS and c:
            self.i += 1
            return _BUILTINS[c]
        if c in ("K", "V", "r") and c:
            cv = self.cv_qualifiers()
            result = self.type() + cv
            self.subs.append(result)
            return result
        if c in ("P", "R", "O") and c:
            self.i += 1
            result = self.type() + {"P": "*", "R": "&", "O": "&&"}[c]
            self.subs.append(result)
            return result
        if c == "N":
            name, _, _ = self.nested()
            self.subs.append(name)
            return name
        if self.peek(2) == "St":
            self.i += 2
            name = "std::" + self.source_name()
            self.subs.append(name)
            return self._maybe_template(name)
        if c == "S":
            name = self.substitution()
            if self.peek() == "I":
                name += self.template_args()
                self.subs.append(name)
            return name
        if c.isdigit():
            name = self.source_name()
            self.subs.append(name)
            return self._maybe_template(name)
        raise _DemangleError(self.s)

    def _maybe_template(self, name: str) -> str:
        if self.peek() == "I":
            name += self.template_args()
            self.subs.append(name)
        return name

    def name(self) -> tuple[str, str, bool]:
        if self.peek() == "N":
            return self.nested()
        if self.peek(2) == "St":
            self.i += 2
            name = "std::" + self.source_name()
        elif self.peek() == "S":
            name = self.substitution()
        else:
            name = self.source_name()
        if self.peek() == "I":
            self.subs.append(name)
            return name + self.template_args(), "", True
        return name, "", False

    def encoding(self) -> str:
        name, cv, templated = self.name()
        if self.at_end():
            return name
        ret = self.type() if templated else None
        params = []
        while not self.at_end():
            params.append(self.type())
        if params == ["void"]:
            params = []
        result = f"{name}({', '.join(params)}){cv}"
        return f"{ret} {result}" if ret else result


def _rust_cleanup(name: str) -> str:
    parts = name.split("::")
    if len(parts) > 1 and _RUST_HASH.fullmatch(parts[-1]):
        parts = parts[:-1]
    cleaned = []
    for part in parts:
        if part.startswith("_$"):
            part = part[1:]
        part = part.replace("..", "::")
        for escape, replacement in _RUST_ESCAPES.items():
            part = part.replace(escape, replacement)
        part = re.sub(r"\$u([0-9a-f]+)\$", lambda m: chr(int(m.group(1), 16)), part)
        cleaned.append(part)
    return "::".join(cleaned)


def demangle(name: str) -> str:
    """Demangle an Itanium C++ or legacy Rust symbol; other names come back unchanged."""
    text = name[1:] if name.startswith("__Z") else name
    if not text.startswith("_Z"):
        return name
    parser = _Itanium(text[2:])
    try:
        result = parser.encoding()
    except (_DemangleError, ValueError):
        return name
    if not parser.at_end():
        return name
    if "(" not in result:
        result = _rust_cleanup(result)
    return result


def _code_name(code: CodeType) -> str:
    return getattr(code, "co_qualname", code.co_name)


@dataclass(frozen=True)
class Frame:
    """One captured stack frame."""

    code: CodeType
    lineno: int
    lasti: int = -1

    @property
    def ip(self) -> int:
        return self.lasti

    def symbol_address(self) -> int:
        """An identifier of the enclosing function."""
        return id(self.code)

    def resolve_symbols(self) -> list[Symbol]:
        return [
            Symbol(
                name=_code_name(self.code).encode("utf-8"),
                addr=id(self.code),
                lineno=self.lineno,
                filename=self.code.co_filename,
            )
        ]


@dataclass(eq=False)
class Symbol:
    """A function symbol; equality and hashing use the raw name only."""

    name: bytes | None = None
    addr: int | None = None
    lineno: int | None = None
    filename: str | None = None

    def raw_name(self) -> bytes:
        return self.name if self.name is not None else b"Unknown"

    def demangled(self) -> str:
        return demangle(self.sys_name())

    def sys_name(self) -> str:
        return self.raw_name().decode("utf-8", errors="replace")

    def file_name(self) -> str:
        return self.filename if self.filename is not None else "Unknown"

    def line_number(self) -> int:
        return self.lineno if self.lineno is not None else 0

    def __str__(self) -> str:
        return self.demangled()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Symbol):
            return NotImplemented
        return self.raw_name() == other.raw_name()

    def __hash__(self) -> int:
        return hash(self.raw_name())


@dataclass(eq=False)
class UnresolvedFrames:
    """A raw sample: frames plus thread identity; compared by functions and thread id."""

    frames: tuple[Frame, ...] = ()
    thread_name: str = ""
    thread_id: int = 0
    sample_timestamp: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        self.frames = tuple(self.frames)
        self.thread_name = self.thread_name[:MAX_THREAD_NAME]

    def _key(self) -> tuple:
        return tuple(f.symbol_address() for f in self.frames), self.thread_id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UnresolvedFrames):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __repr__(self) -> str:
        return repr(list(self.frames))


@dataclass
class Frames:
    """A resolved backtrace: one list of symbols per frame."""

    frames: list[list[Symbol]]
    thread_name: str
    thread_id: int
    sample_timestamp: float

    def __hash__(self) -> int:
        return hash((
            tuple(tuple(frame) for frame in self.frames),
            self.thread_name,
            self.thread_id,
            self.sample_timestamp,
        ))

    @classmethod
    def from_unresolved(cls, unresolved: UnresolvedFrames) -> Frames:
        """Resolve symbols, dropping the signal handler frame and the one after it."""
        resolved = []
        frame_iter = iter(unresolved.frames)
        for frame in frame_iter:
            symbols = frame.resolve_symbols()
            if any(s.demangled() in _SIGNAL_HANDLER_NAMES for s in symbols):
                next(frame_iter, None)
                continue
            if symbols:
                resolved.append(symbols)
        return cls(
            frames=resolved,
            thread_name=unresolved.thread_name,
            thread_id=unresolved.thread_id,
            sample_timestamp=unresolved.sample_timestamp,
        )

    def thread_name_or_id(self) -> str:
        return self.thread_name if self.thread_name else str(self.thread_id)

    def __str__(self) -> str:
        parts = []
        for frame in self.frames:
            parts.append("FRAME: ")
            parts.extend(f"{symbol} -> " for symbol in frame)
        parts.append("THREAD: ")
        parts.append(self.thread_name if self.thread_name else f"ThreadId({self.thread_id})")
        return "".join(parts)


def capture_stack(frame: FrameType | None, max_depth: int = MAX_DEPTH) -> tuple[Frame, ...]:
    """Walk from ``frame`` outwards, keeping at most ``max_depth`` frames."""
    captured = []
    while frame is not None and len(captured) < max_depth:
        captured.append(Frame(frame.f_code, frame.f_lineno or 0, frame.f_lasti))
        frame = frame.f_back
    return tuple(captured)