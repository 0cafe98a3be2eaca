"""Bounded in-memory counting of samples with overflow spilled to a temp file."""

from __future__ import annotations

import pickle
import tempfile
from dataclasses import dataclass
from itertools import chain
from typing import Any, Generic, Hashable, Iterator, TypeVar

__all__ = [
    "BUCKETS",
    "BUCKETS_ASSOCIATIVITY",
    "BUFFER_LENGTH",
    "Entry",
    "Bucket",
    "HashCounter",
    "TempFileArray",
    "Collector",
]

BUCKETS = 1 << 12
BUCKETS_ASSOCIATIVITY = 4
BUFFER_LENGTH = 1024

K = TypeVar("K", bound=Hashable)


@dataclass
class Entry(Generic[K]):
    """A key with the number of times it was counted."""

    item: Any
    count: int = 0


class Bucket:
    """A small fixed-size set of entries; the lowest count is evicted when full."""

    __slots__ = ("_entries",)

    def __init__(self) -> None:
        self._entries: list[Entry] = []

    def clear(self) -> None:
        self._entries.clear()

    def add(self, key: Any, count: int) -> Entry | None:
        """Count ``key``; return the entry evicted to make room, if any."""
        for entry in self._entries:
            if entry.item == key:
                entry.count += count
                return None

        if len(self._entries) < BUCKETS_ASSOCIATIVITY:
            self._entries.append(Entry(key, count))
            return None

        min_index = 0
        min_count = self._entries[0].count
        for index, entry in enumerate(self._entries):
            if entry.count < min_count:
                min_index = index
                min_count = entry.count

        evicted = self._entries[min_index]
        self._entries[min_index] = Entry(key, count)
        return evicted

    def __iter__(self) -> Iterator[Entry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class HashCounter:
    """A lossy hash table of counters made of fixed-size buckets."""

    __slots__ = ("_buckets",)

    def __init__(self) -> None:
        self._buckets = [Bucket() for _ in range(BUCKETS)]

    def clear(self) -> None:
        for bucket in self._buckets:
            bucket.clear()

    def add(self, key: Any, count: int) -> Entry | None:
        """Count ``key``; return the entry evicted from its bucket, if any."""
        return self._buckets[hash(key) % BUCKETS].add(key, count)

    def __iter__(self) -> Iterator[Entry]:
        return chain.from_iterable(self._buckets)


class TempFileArray:
    """An append-only list of entries kept in a buffer and flushed to a temp file."""

    def __init__(self, buffer_length: int = BUFFER_LENGTH) -> None:
        if buffer_length < 1:
            raise ValueError("buffer_length must be positive")
        self._buffer_length = buffer_length
        self._file = tempfile.TemporaryFile(mode="w+b")
        self._buffer: list[Entry] = []
        self._flush_n = 0

    def flush_count(self) -> int:
        """Number of buffers written to the backing file."""
        return self._flush_n

    def buffered(self) -> int:
        """Number of entries waiting in the in-memory buffer."""
        return len(self._buffer)

    def clear(self) -> None:
        self._buffer.clear()
        self._flush_n = 0
        self._file.seek(0)
        self._file.truncate(0)

    def _flush_buffer(self) -> None:
        chunk = [(entry.item, entry.count) for entry in self._buffer]
        self._buffer.clear()
        self._flush_n += 1
        self._file.seek(0, 2)
        pickle.dump(chunk, self._file, protocol=pickle.HIGHEST_PROTOCOL)
        self._file.flush()

    def push(self, entry: Entry) -> None:
        if len(self._buffer) >= self._buffer_length:
            self._flush_buffer()
        self._buffer.append(entry)

    def __iter__(self) -> Iterator[Entry]:
        buffered = list(self._buffer)
        self._file.seek(0)
        try:
            chunks = [pickle.load(self._file) for _ in range(self._flush_n)]
        finally:
            self._file.seek(0, 2)
        return self._entries(buffered, chunks)

    @staticmethod
    def _entries(buffered: list[Entry], chunks: list[list[tuple]]) -> Iterator[Entry]:
        yield from buffered
        for chunk in chunks:
            for item, count in chunk:
                yield Entry(item, count)

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> TempFileArray:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class Collector:
    """Counts keys in memory, spilling evicted counts to a temp file."""

    def __init__(self, buffer_length: int = BUFFER_LENGTH) -> None:
        self._map = HashCounter()
        self._temp_array = TempFileArray(buffer_length)

    def clear(self) -> None:
        self._map.clear()
        self._temp_array.clear()

    def add(self, key: Any, count: int) -> None:
        evicted = self._map.add(key, count)
        if evicted is not None:
            self._temp_array.push(evicted)

    def __iter__(self) -> Iterator[Entry]:
        """Yield every entry; a key may appear more than once."""
        return chain(self._map, self._temp_array)

    def flushed_to_disk(self) -> int:
        """Number of buffers written to the backing file."""
        return self._temp_array.flush_count()

    def close(self) -> None:
        self._temp_array.close()

    def __enter__(self) -> Collector:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()