"""The pprof ``perftools.profiles`` messages with a protobuf wire codec."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, NamedTuple

__all__ = [
    "ValueType",
    "Label",
    "Sample",
    "Mapping",
    "Line",
    "Location",
    "Function",
    "Profile",
]

_WIRE_VARINT = 0
_WIRE_FIXED64 = 1
_WIRE_LEN = 2
_WIRE_FIXED32 = 5

_MASK64 = (1 << 64) - 1
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_SCALAR_KINDS = frozenset({"int64", "uint64", "bool"})
_DEFAULTS = {"int64": 0, "uint64": 0, "bool": False, "string": ""}


class _Field(NamedTuple):
    number: int
    name: str
    kind: str
    repeated: bool = False
    message: Any = None


def _varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _key(number: int, wire: int) -> bytes:
    return _varint((number << 3) | wire)


def _scalar_to_varint(f: _Field, value: Any) -> bytes:
    if f.kind == "bool":
        if not isinstance(value, bool):
            raise TypeError(f"field {f.name!r} expects bool, got {value!r}")
        return _varint(int(value))
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"field {f.name!r} expects int, got {value!r}")
    if f.kind == "int64":
        if not _INT64_MIN <= value <= _INT64_MAX:
            raise ValueError(f"field {f.name!r} out of int64 range: {value}")
        return _varint(value & _MASK64)
    if not 0 <= value <= _MASK64:
        raise ValueError(f"field {f.name!r} out of uint64 range: {value}")
    return _varint(value)


def _scalar_from_varint(kind: str, raw: int) -> Any:
    raw &= _MASK64
    if kind == "bool":
        return raw != 0
    if kind == "int64" and raw > _INT64_MAX:
        return raw - (1 << 64)
    return raw


def _length_delimited(number: int, payload: bytes) -> bytes:
    return _key(number, _WIRE_LEN) + _varint(len(payload)) + payload


def _encode_single(f: _Field, value: Any) -> bytes:
    if f.kind in _SCALAR_KINDS:
        return _key(f.number, _WIRE_VARINT) + _scalar_to_varint(f, value)
    if f.kind == "string":
        if not isinstance(value, str):
            raise TypeError(f"field {f.name!r} expects str, got {value!r}")
        return _length_delimited(f.number, value.encode("utf-8"))
    if not isinstance(value, f.message):
        raise TypeError(f"field {f.name!r} expects {f.message.__name__}, got {value!r}")
    return _length_delimited(f.number, value.encode())


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def done(self) -> bool:
        return self._pos >= len(self._data)

    def varint(self) -> int:
        result = 0
        for shift in range(0, 70, 7):
            if self._pos >= len(self._data):
                raise ValueError("truncated varint")
            byte = self._data[self._pos]
            self._pos += 1
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                return result
        raise ValueError("varint longer than 10 bytes")

    def take(self, n: int) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise ValueError("truncated message")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def length_delimited(self) -> bytes:
        return self.take(self.varint())

    def skip(self, wire: int) -> None:
        if wire == _WIRE_VARINT:
            self.varint()
        elif wire == _WIRE_FIXED64:
            self.take(8)
        elif wire == _WIRE_LEN:
            self.length_delimited()
        elif wire == _WIRE_FIXED32:
            self.take(4)
        else:
            raise ValueError(f"unsupported wire type {wire}")


def _read_values(f: _Field, wire: int, reader: _Reader) -> list:
    if f.kind in _SCALAR_KINDS:
        if wire == _WIRE_VARINT:
            return [_scalar_from_varint(f.kind, reader.varint())]
        if wire == _WIRE_LEN and f.repeated:
            packed = _Reader(reader.length_delimited())
            items = []
            while not packed.done():
                items.append(_scalar_from_varint(f.kind, packed.varint()))
            return items
        raise ValueError(f"bad wire type {wire} for field {f.name!r}")
    if wire != _WIRE_LEN:
        raise ValueError(f"bad wire type {wire} for field {f.name!r}")
    payload = reader.length_delimited()
    if f.kind == "string":
        return [payload.decode("utf-8")]
    return [f.message.decode(payload)]


def _encode_message(message: Any) -> bytes:
    """Serialise to protobuf wire format; repeated numbers are packed."""
    out = bytearray()
    for f in message._FIELDS:
        value = getattr(message, f.name)
        if f.repeated:
            if f.kind in _SCALAR_KINDS:
                if value:
                    payload = b"".join(_scalar_to_varint(f, v) for v in value)
                    out += _length_delimited(f.number, payload)
            else:
                for item in value:
                    out += _encode_single(f, item)
        elif f.kind == "message":
            if value is not None:
                out += _encode_single(f, value)
        elif value != _DEFAULTS[f.kind] or type(value) is not type(_DEFAULTS[f.kind]):
            out += _encode_single(f, value)
    return bytes(out)


def _decode_message(cls: Any, data: bytes) -> Any:
    """Parse protobuf wire format into ``cls``; unknown fields are skipped."""
    by_number = {f.number: f for f in cls._FIELDS}
    values: dict[str, Any] = {}
    reader = _Reader(bytes(data))
    while not reader.done():
        key = reader.varint()
        number, wire = key >> 3, key & 0x7
        if number == 0:
            raise ValueError("field number 0 is invalid")
        f = by_number.get(number)
        if f is None:
            reader.skip(wire)
            continue
        for value in _read_values(f, wire, reader):
            if f.repeated:
                values.setdefault(f.name, []).append(value)
            else:
                values[f.name] = value
    return cls(**values)


@dataclass
class ValueType:
    """Semantics and unit of a value, both as string-table indices."""

    type: int = 0
    unit: int = 0

    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "type", "int64"),
        _Field(2, "unit", "int64"),
    )

    def encode(self) -> bytes:
        """Serialise to protobuf wire format."""
        return _encode_message(self)

    @classmethod
    def decode(cls, data: bytes) -> ValueType:
        """Parse wire format; raises :class:`ValueError` on malformed input."""
        return _decode_message(cls, data)


@dataclass
class Label:
    """Extra context for a sample; ``key``, ``str`` and ``num_unit`` index the string table."""

    key: int = 0
    str: int = 0
    num: int = 0
    num_unit: int = 0

    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "key", "int64"),
        _Field(2, "str", "int64"),
        _Field(3, "num", "int64"),
        _Field(4, "num_unit", "int64"),
    )

    def encode(self) -> bytes:
        """Serialise to protobuf wire format."""
        return _encode_message(self)

    @classmethod
    def decode(cls, data: bytes) -> Label:
        """Parse wire format; raises :class:`ValueError` on malformed input."""
        return _decode_message(cls, data)


@dataclass
class Sample:
    """Values recorded for one stack; the leaf is ``location_id[0]``."""

    location_id: list[int] = field(default_factory=list)
    value: list[int] = field(default_factory=list)
    label: list[Label] = field(default_factory=list)

    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "location_id", "uint64", True),
        _Field(2, "value", "int64", True),
        _Field(3, "label", "message", True, Label),
    )

    def encode(self) -> bytes:
        """Serialise to protobuf wire format; repeated numbers are packed."""
        return _encode_message(self)

    @classmethod
    def decode(cls, data: bytes) -> Sample:
        """Parse wire format; raises :class:`ValueError` on malformed input."""
        return _decode_message(cls, data)


@dataclass
class Mapping:
    """An address range and the binary mapped into it."""

    id: int = 0
    memory_start: int = 0
    memory_limit: int = 0
    file_offset: int = 0
    filename: int = 0
    build_id: int = 0
    has_functions: bool = False
    has_filenames: bool = False
    has_line_numbers: bool = False
    has_inline_frames: bool = False

    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "id", "uint64"),
        _Field(2, "memory_start", "uint64"),
        _Field(3, "memory_limit", "uint64"),
        _Field(4, "file_offset", "uint64"),
        _Field(5, "filename", "int64"),
        _Field(6, "build_id", "int64"),
        _Field(7, "has_functions", "bool"),
        _Field(8, "has_filenames", "bool"),
        _Field(9, "has_line_numbers", "bool"),
        _Field(10, "has_inline_frames", "bool"),
    )

    def encode(self) -> bytes:
        """Serialise to protobuf wire format."""
        return _encode_message(self)

    @classmethod
    def decode(cls, data: bytes) -> Mapping:
        """Parse wire format; raises :class:`ValueError` on malformed input."""
        return _decode_message(cls, data)


@dataclass
class Line:
    """A function and the source line within it."""

    function_id: int = 0
    line: int = 0

    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "function_id", "uint64"),
        _Field(2, "line", "int64"),
    )

    def encode(self) -> bytes:
        """Serialise to protobuf wire format."""
        return _encode_message(self)

    @classmethod
    def decode(cls, data: bytes) -> Line:
        """Parse wire format; raises :class:`ValueError` on malformed input."""
        return _decode_message(cls, data)


@dataclass
class Location:
    """A program location; several lines mean inlined functions, caller last."""

    id: int = 0
    mapping_id: int = 0
    address: int = 0
    line: list[Line] = field(default_factory=list)
    is_folded: bool = False

    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "id", "uint64"),
        _Field(2, "mapping_id", "uint64"),
        _Field(3, "address", "uint64"),
        _Field(4, "line", "message", True, Line),
        _Field(5, "is_folded", "bool"),
    )

    def encode(self) -> bytes:
        """Serialise to protobuf wire format."""
        return _encode_message(self)

    @classmethod
    def decode(cls, data: bytes) -> Location:
        """Parse wire format; raises :class:`ValueError` on malformed input."""
        return _decode_message(cls, data)


@dataclass
class Function:
    """A function; names and file are string-table indices."""

    id: int = 0
    name: int = 0
    system_name: int = 0
    filename: int = 0
    start_line: int = 0

    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "id", "uint64"),
        _Field(2, "name", "int64"),
        _Field(3, "system_name", "int64"),
        _Field(4, "filename", "int64"),
        _Field(5, "start_line", "int64"),
    )

    def encode(self) -> bytes:
        """Serialise to protobuf wire format."""
        return _encode_message(self)

    @classmethod
    def decode(cls, data: bytes) -> Function:
        """Parse wire format; raises :class:`ValueError` on malformed input."""
        return _decode_message(cls, data)


@dataclass
class Profile:
    """A whole profile; ``string_table[0]`` must be the empty string."""

    sample_type: list[ValueType] = field(default_factory=list)
    sample: list[Sample] = field(default_factory=list)
    mapping: list[Mapping] = field(default_factory=list)
    location: list[Location] = field(default_factory=list)
    function: list[Function] = field(default_factory=list)
    string_table: list[str] = field(default_factory=list)
    drop_frames: int = 0
    keep_frames: int = 0
    time_nanos: int = 0
    duration_nanos: int = 0
    period_type: ValueType | None = None
    period: int = 0
    comment: list[int] = field(default_factory=list)
    default_sample_type: int = 0

    _FIELDS: ClassVar[tuple[_Field, ...]] = (
        _Field(1, "sample_type", "message", True, ValueType),
        _Field(2, "sample", "message", True, Sample),
        _Field(3, "mapping", "message", True, Mapping),
        _Field(4, "location", "message", True, Location),
        _Field(5, "function", "message", True, Function),
        _Field(6, "string_table", "string", True),
        _Field(7, "drop_frames", "int64"),
        _Field(8, "keep_frames", "int64"),
        _Field(9, "time_nanos", "int64"),
        _Field(10, "duration_nanos", "int64"),
        _Field(11, "period_type", "message", False, ValueType),
        _Field(12, "period", "int64"),
        _Field(13, "comment", "int64", True),
        _Field(14, "default_sample_type", "int64"),
    )

    def encode(self) -> bytes:
        """Serialise to protobuf wire format; repeated numbers are packed."""
        return _encode_message(self)

    @classmethod
    def decode(cls, data: bytes) -> Profile:
        """Parse wire format; raises :class:`ValueError` on malformed input."""
        return _decode_message(cls, data)