"""
Restartable Record Streams
===========================

Finite, lazily-read sequences of records laid out in an image.  A stream
object only remembers where the sequence starts and how it is bounded;
each call to ``iter()`` builds a fresh cursor, so a stream can be walked
any number of times and every walk re-reads the image.

Two shapes cover every table in the supported formats:

    - :class:`StrideStream` -- fixed-size records at ``start + i*stride``
      (section tables, thunk arrays, descriptor chains).
    - :class:`ChainStream` -- variable-size records where each record
      yields the address of the next (load commands, notes, version
      blocks, linked lists).

Auxiliary tables pass an ``on_unreadable`` handler: a read failure part
way through the walk is reported to the handler and ends the stream, so
the records read so far are still delivered.  Without a handler the
:class:`~imagelens.core.errors.UnreadableRegionError` propagates.
"""

from __future__ import annotations

from typing import Callable, Generic, Iterator, Optional, TypeVar

from imagelens.core.errors import UnreadableRegionError

T = TypeVar("T")
UnreadableHandler = Callable[[UnreadableRegionError], None]

# Hard ceiling for any stream that was not given an explicit limit.
DEFAULT_LIMIT: int = 65_536


class StrideStream(Generic[T]):
    """Fixed-stride records, bounded by a count and/or a terminator.

    Args:
        start: Address of record 0.
        stride: Size of one record in bytes.
        read: ``read(address, index)`` returning the record, or ``None``
              for a terminating (null) entry.
        count: Number of records, ``None`` for terminator-delimited tables.
        limit: Safety limit on records yielded.
        on_unreadable: Called with the error when a read fails; the
              stream then ends instead of raising.
    """

    def __init__(
        self,
        start: int,
        stride: int,
        read: Callable[[int, int], Optional[T]],
        count: Optional[int] = None,
        limit: int = DEFAULT_LIMIT,
        on_unreadable: Optional[UnreadableHandler] = None,
    ) -> None:
        self.start = start
        self.stride = stride
        self.count = count
        self.limit = limit
        self._read = read
        self._on_unreadable = on_unreadable

    def __iter__(self) -> Iterator[T]:
        return _StrideCursor(self)

    def first(self) -> Optional[T]:
        return next(iter(self), None)


class _StrideCursor(Generic[T]):
    __slots__ = ("_stream", "_index")

    def __init__(self, stream: StrideStream[T]) -> None:
        self._stream = stream
        self._index = 0

    def __iter__(self) -> _StrideCursor[T]:
        return self

    def __next__(self) -> T:
        stream = self._stream
        bound = stream.limit if stream.count is None else min(stream.count, stream.limit)
        if self._index < 0 or self._index >= bound:
            raise StopIteration
        index = self._index
        try:
            record = stream._read(stream.start + index * stream.stride, index)
        except UnreadableRegionError as exc:
            if stream._on_unreadable is None:
                raise
            stream._on_unreadable(exc)
            record = None
        if record is None:
            self._index = -1
            raise StopIteration
        self._index = index + 1
        return record


class ChainStream(Generic[T]):
    """Variable-size records, each naming where the next one starts.

    Args:
        start: Address of the first record.
        step: ``step(address, index)`` returning ``(record, next_address)``
              or ``None`` to stop.  A ``next_address`` of ``None`` makes
              the record the last one.
        count: Maximum number of records, if the format declares one.
        end: Exclusive address bound; a cursor at or past it stops.
        limit: Safety limit on records yielded.
        on_unreadable: Called with the error when a read fails; the
              stream then ends instead of raising.
    """

    def __init__(
        self,
        start: Optional[int],
        step: Callable[[int, int], Optional[tuple[T, Optional[int]]]],
        count: Optional[int] = None,
        end: Optional[int] = None,
        limit: int = DEFAULT_LIMIT,
        on_unreadable: Optional[UnreadableHandler] = None,
    ) -> None:
        self.start = start
        self.count = count
        self.end = end
        self.limit = limit
        self._step = step
        self._on_unreadable = on_unreadable

    def __iter__(self) -> Iterator[T]:
        return _ChainCursor(self)

    def first(self) -> Optional[T]:
        return next(iter(self), None)


class _ChainCursor(Generic[T]):
    __slots__ = ("_stream", "_address", "_index")

    def __init__(self, stream: ChainStream[T]) -> None:
        self._stream = stream
        self._address = stream.start
        self._index = 0

    def __iter__(self) -> _ChainCursor[T]:
        return self

    def __next__(self) -> T:
        stream = self._stream
        address = self._address
        if address is None or self._index >= stream.limit:
            raise StopIteration
        if stream.count is not None and self._index >= stream.count:
            raise StopIteration
        if stream.end is not None and address >= stream.end:
            raise StopIteration
        try:
            result = stream._step(address, self._index)
        except UnreadableRegionError as exc:
            if stream._on_unreadable is None:
                raise
            stream._on_unreadable(exc)
            result = None
        if result is None:
            self._address = None
            raise StopIteration
        record, self._address = result
        self._index += 1
        return record


def empty_stream() -> StrideStream:
    """A stream with no records, used for absent tables."""
    return StrideStream(0, 0, lambda address, index: None, count=0)
