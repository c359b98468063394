"""
Memory Access Provider
=======================

Byte-addressable views over an image, plus the address-space context and
the optional collaborators (module resolver, symbol lookup) the parsers
may consult.

The parsers never touch a file handle or a ``bytes`` object directly:
every read goes through a :class:`MemoryReader` at an absolute address,
so the same parser code runs against an on-disk file, a loader-mapped
copy, or a live process address space supplied by a debugger host.

Usage::

    image = Image.from_file("/usr/lib/libc.so.6")
    header = image.memory.read(image.space.base, 4)
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

from imagelens.core.errors import UnreadableRegionError


_STRING_CHUNK: int = 64


class ImageLayout(str, enum.Enum):
    """How the image bytes are laid out in the address space."""
    FILE = "file"
    MAPPED = "mapped"


# ---------------------------------------------------------------------------
# Readers
# ---------------------------------------------------------------------------

class MemoryReader(ABC):
    """Abstract byte reader over a logical address space."""

    @abstractmethod
    def read(self, address: int, count: int) -> bytes:
        """Read exactly *count* bytes at *address*.

        Raises:
            UnreadableRegionError: If any byte of the range is unreadable.
        """

    def read_int(self, address: int, size: int, byteorder: str = "little") -> int:
        """Read an unsigned integer of *size* bytes."""
        return int.from_bytes(self.read(address, size), byteorder)

    def read_string(
        self,
        address: int,
        max_length: int = 1024,
        wide: bool = False,
    ) -> str:
        """Read a null-terminated ASCII or UTF-16LE string.

        The string ends at the terminator, after *max_length* characters,
        or where readable memory ends.  Only a failure to read the very
        first character propagates.
        """
        unit = 2 if wide else 1
        raw = bytearray()
        cursor = address
        while len(raw) < max_length * unit:
            want = min(_STRING_CHUNK * unit, max_length * unit - len(raw))
            try:
                chunk = self.read(cursor, want)
            except UnreadableRegionError:
                chunk = self._read_tail(cursor, want, unit)
                if not chunk and not raw:
                    raise
            for i in range(0, len(chunk) - unit + 1, unit):
                if chunk[i:i + unit] == b"\x00" * unit:
                    raw.extend(chunk[:i])
                    return self._decode(bytes(raw), wide)
            raw.extend(chunk)
            if len(chunk) < want:
                break
            cursor += want
        return self._decode(bytes(raw), wide)

    def _read_tail(self, address: int, count: int, unit: int) -> bytes:
        """Read as many whole characters as possible from *address*."""
        data = bytearray()
        for offset in range(0, count, unit):
            try:
                data.extend(self.read(address + offset, unit))
            except UnreadableRegionError:
                break
        return bytes(data)

    @staticmethod
    def _decode(raw: bytes, wide: bool) -> str:
        if wide:
            return raw.decode("utf-16-le", errors="replace")
        return raw.decode("latin-1")


class BufferMemory(MemoryReader):
    """A byte buffer made visible at ``[base, base + len(data))``."""

    def __init__(self, data: bytes, base: int = 0) -> None:
        self._data = bytes(data)
        self._base = base

    @property
    def base(self) -> int:
        return self._base

    @property
    def size(self) -> int:
        return len(self._data)

    def read(self, address: int, count: int) -> bytes:
        if count < 0:
            raise UnreadableRegionError(address, count, "negative length")
        start = address - self._base
        end = start + count
        if start < 0 or end > len(self._data):
            raise UnreadableRegionError(address, count, "outside mapped buffer")
        return self._data[start:end]


# ---------------------------------------------------------------------------
# Address-space context and collaborators
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class AddressSpace:
    """Base address and mapped size of the image being parsed."""
    base: int
    size: int
    layout: ImageLayout = ImageLayout.FILE

    @property
    def end(self) -> int:
        return self.base + self.size

    def contains(self, address: int) -> bool:
        return self.base <= address < self.end


@dataclass(frozen=True, slots=True)
class ModuleRecord:
    """A sibling module in the same debugging session."""
    name: str
    base: int
    size: int

    @property
    def comparison_name(self) -> str:
        return _comparison_name(self.name)

    def contains(self, address: int) -> bool:
        return self.base <= address < self.base + self.size


class ModuleResolver(Protocol):
    """Locates a sibling module by name and/or by an address inside it."""

    def find_module(
        self,
        name: Optional[str] = None,
        bound_address: Optional[int] = None,
    ) -> Optional[ModuleRecord]:
        ...


SymbolLookup = Callable[[int], Optional[str]]


def _comparison_name(name: str) -> str:
    """Strip any path elements, keeping only the module's own name."""
    return name.replace("\\", "/").rsplit("/", 1)[-1]


class StaticModuleResolver:
    """Resolve modules against a fixed list of :class:`ModuleRecord`.

    A non-zero bound address is the preferred key; otherwise the match is
    by case-insensitive module name.  Anything other than exactly one
    match resolves to ``None``.
    """

    def __init__(self, modules: Sequence[ModuleRecord]) -> None:
        self._modules: list[ModuleRecord] = list(modules)

    def find_module(
        self,
        name: Optional[str] = None,
        bound_address: Optional[int] = None,
    ) -> Optional[ModuleRecord]:
        if bound_address:
            matches = [m for m in self._modules if m.contains(bound_address)]
        elif name:
            wanted = _comparison_name(name).lower()
            matches = [m for m in self._modules if m.comparison_name.lower() == wanted]
        else:
            return None
        if len(matches) == 1:
            return matches[0]
        return None


# ---------------------------------------------------------------------------
# Image bundle
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class Image:
    """Everything a parser needs to read one image.

    Attributes:
        memory: Byte reader over the address space.
        space: Base address, mapped size and layout of the image.
        name: Display name (usually the file or module name).
        resolver: Optional sibling-module resolver.
        symbols: Optional address-to-symbol lookup.
    """
    memory: MemoryReader
    space: AddressSpace
    name: str = ""
    resolver: Optional[ModuleResolver] = None
    symbols: Optional[SymbolLookup] = field(default=None, repr=False)

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        *,
        base: int = 0,
        layout: ImageLayout = ImageLayout.FILE,
        name: str = "",
        resolver: Optional[ModuleResolver] = None,
        symbols: Optional[SymbolLookup] = None,
    ) -> Image:
        """Wrap an in-memory buffer as an image at *base*."""
        memory = BufferMemory(data, base)
        return cls(
            memory=memory,
            space=AddressSpace(base, len(data), layout),
            name=name,
            resolver=resolver,
            symbols=symbols,
        )

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        *,
        base: int = 0,
        layout: ImageLayout = ImageLayout.FILE,
    ) -> Image:
        """Read a file from disk into a :class:`BufferMemory` image."""
        file_path = Path(path)
        return cls.from_bytes(
            file_path.read_bytes(),
            base=base,
            layout=layout,
            name=file_path.name,
        )

    @property
    def comparison_name(self) -> str:
        return _comparison_name(self.name)

    def symbol_for(self, address: int) -> Optional[str]:
        """Ask the optional symbol lookup for *address*."""
        if self.symbols is None:
            return None
        return self.symbols(address)
