"""
Structure Reflection Engine
============================

Declarative C-style structure and union descriptors, and typed views
instantiated from them at an arbitrary address inside an image.

A descriptor is data only: an ordered tuple of field descriptors plus a
union flag.  Descriptors are registered in a :class:`StructRegistry`
under a member of a closed enum of structure kinds; the registry
computes (and memoizes) each kind's size and field layout and projects
a :class:`TypedView` over a :class:`~imagelens.core.memory.MemoryReader`
on demand.

Layout rules (MSVC-style packing, no implicit alignment padding):

    - A plain field closes any open bit-field storage unit and occupies
      ``primitive size * count`` bytes (or the nested kind's size).
    - The first bit-field of a storage unit contributes the unit's size;
      further bit-fields that fit in the same unit contribute nothing.
      A unit closes when its bits are exhausted, when a bit-field would
      overflow it, or when the primitive type of the unit changes.
    - Every member of a union starts at offset 0 and the union's size
      is its largest member.
    - An :func:`embed` field splices the members of another kind into the
      parent's field map, flattening anonymous structures and unions.

Usage::

    registry = StructRegistry({
        Kind.PAIR: structure(field("Low", "unsigned long"),
                             field("High", "unsigned long")),
    })
    view = registry.instantiate(Kind.PAIR, memory, 0x1000)
    print(view.Low, registry.size_of(Kind.PAIR))

References:
    - ISO/IEC 9899:2018, 6.7.2.1 Structure and union specifiers.
    - Microsoft. (2024). C++ Bit Fields. Microsoft Learn.
    - vstruct (vivisect) declarative structure definitions.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Any, Hashable, Iterator, Mapping, Optional

from imagelens.core.errors import UnresolvedTypeError
from imagelens.core.memory import MemoryReader


# ---------------------------------------------------------------------------
# Primitive type system
# ---------------------------------------------------------------------------

# C spelling -> struct format character.  ``unsigned long`` follows the
# LLP64 model of the Windows headers (4 bytes).
_PRIMITIVES: dict[str, str] = {
    "char": "B",
    "unsigned char": "B",
    "signed char": "b",
    "uint8_t": "B",
    "int8_t": "b",
    "short": "h",
    "unsigned short": "H",
    "wchar_t": "H",
    "uint16_t": "H",
    "int16_t": "h",
    "int": "i",
    "unsigned int": "I",
    "long": "i",
    "unsigned long": "I",
    "uint32_t": "I",
    "int32_t": "i",
    "__int64": "q",
    "unsigned __int64": "Q",
    "long long": "q",
    "unsigned long long": "Q",
    "uint64_t": "Q",
    "int64_t": "q",
}


def primitive_format(name: str) -> str:
    """Return the :mod:`struct` format character for a C primitive.

    Raises:
        UnresolvedTypeError: If *name* is not a known primitive.
    """
    try:
        return _PRIMITIVES[name]
    except KeyError:
        raise UnresolvedTypeError(name) from None


def primitive_size(name: str) -> int:
    """Size in bytes of a C primitive."""
    return struct.calcsize(primitive_format(name))


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class FieldDescriptor:
    """One member of a structure or union.

    Exactly one of *primitive* and *kind* is set.  A descriptor with a
    *kind* and no *name* is an embedded member whose fields are merged
    into the parent view.

    Attributes:
        name: Field name, ``None`` for an embedded member.
        primitive: C primitive spelling for scalar fields.
        kind: Registered structure kind for nested or embedded fields.
        count: Fixed array length, ``None`` for a scalar.
        bits: Bit-field width, ``None`` for an ordinary field.
    """
    name: Optional[str]
    primitive: Optional[str] = None
    kind: Optional[Hashable] = None
    count: Optional[int] = None
    bits: Optional[int] = None

    @property
    def is_embedded(self) -> bool:
        return self.name is None

    @property
    def is_bitfield(self) -> bool:
        return self.bits is not None


@dataclass(frozen=True, slots=True)
class StructureDescriptor:
    """Ordered fields plus a union flag."""
    fields: tuple[FieldDescriptor, ...]
    is_union: bool = False


def field(name: str, primitive: str, count: Optional[int] = None) -> FieldDescriptor:
    """A scalar primitive field, or a fixed array of them."""
    return FieldDescriptor(name=name, primitive=primitive, count=count)


def bitfield(name: str, primitive: str, bits: int) -> FieldDescriptor:
    """A bit-field stored in a unit of type *primitive*."""
    if bits <= 0:
        raise ValueError(f"Bit-field '{name}' must be at least one bit wide")
    return FieldDescriptor(name=name, primitive=primitive, bits=bits)


def nested(name: str, kind: Hashable, count: Optional[int] = None) -> FieldDescriptor:
    """A named nested structure, or a fixed array of them."""
    return FieldDescriptor(name=name, kind=kind, count=count)


def embed(kind: Hashable) -> FieldDescriptor:
    """An anonymous member whose fields are flattened into the parent."""
    return FieldDescriptor(name=None, kind=kind)


def structure(*fields: FieldDescriptor) -> StructureDescriptor:
    return StructureDescriptor(fields=tuple(fields), is_union=False)


def union(*fields: FieldDescriptor) -> StructureDescriptor:
    return StructureDescriptor(fields=tuple(fields), is_union=True)


# ---------------------------------------------------------------------------
# Computed layout
# ---------------------------------------------------------------------------

class _Slot:
    """A field placed at a byte offset (and starting bit) in its parent."""

    __slots__ = ("field", "offset", "start_bit", "size")

    def __init__(self, field: FieldDescriptor, offset: int, start_bit: int, size: int) -> None:
        self.field = field
        self.offset = offset
        self.start_bit = start_bit
        self.size = size


class _Layout:
    __slots__ = ("slots", "size")

    def __init__(self, slots: tuple[_Slot, ...], size: int) -> None:
        self.slots = slots
        self.size = size


# ---------------------------------------------------------------------------
# Typed view
# ---------------------------------------------------------------------------

class TypedView:
    """A structure materialized at an address.

    Field values are scalars, ``bytes`` (for ``char`` arrays), lists, or
    nested :class:`TypedView` objects.  The view owns no memory and is
    never refreshed; instantiate again to re-read.
    """

    __slots__ = ("kind", "address", "total_size", "fields")

    def __init__(self, kind: Hashable, address: int, total_size: int, fields: dict[str, Any]) -> None:
        self.kind = kind
        self.address = address
        self.total_size = total_size
        self.fields = fields

    def __getattr__(self, name: str) -> Any:
        # Only reached for names that are not slots.
        if name == "fields":
            raise AttributeError(name)
        try:
            return self.fields[name]
        except KeyError:
            raise AttributeError(
                f"{self.kind!s} view has no field '{name}'"
            ) from None

    def __getitem__(self, name: str) -> Any:
        return self.fields[name]

    def __contains__(self, name: object) -> bool:
        return name in self.fields

    def __iter__(self) -> Iterator[str]:
        return iter(self.fields)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def as_dict(self) -> dict[str, Any]:
        """Recursively convert the view to plain Python values."""
        return {name: _plain(value) for name, value in self.fields.items()}

    def __repr__(self) -> str:
        return f"<TypedView {self.kind!s} @0x{self.address:x} size={self.total_size}>"


def _plain(value: Any) -> Any:
    if isinstance(value, TypedView):
        return value.as_dict()
    if isinstance(value, list):
        return [_plain(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class StructRegistry:
    """Closed table of structure kinds and their memoized layouts.

    The table is fixed at construction; only the computed layouts are
    added afterwards, once per kind, so a registry can be shared by any
    number of readers after it has been built.

    Args:
        definitions: Mapping from structure kind to its descriptor.
    """

    def __init__(self, definitions: Mapping[Hashable, StructureDescriptor]) -> None:
        self._definitions: dict[Hashable, StructureDescriptor] = dict(definitions)
        self._layouts: dict[Hashable, _Layout] = {}

    # ------------------------------------------------------------------ #
    #  Public interface
    # ------------------------------------------------------------------ #

    def define(self, kind: Hashable, descriptor: StructureDescriptor) -> None:
        """Register a new structure kind.

        Raises:
            ValueError: If *kind* is already defined; a defined shape never
                changes once its layout may have been memoized.
        """
        if kind in self._definitions:
            raise ValueError(f"Structure {kind!s} is already defined")
        self._definitions[kind] = descriptor

    def descriptor(self, kind: Hashable) -> StructureDescriptor:
        try:
            return self._definitions[kind]
        except KeyError:
            raise UnresolvedTypeError(str(kind)) from None

    def size_of(self, kind: Hashable) -> int:
        """Total size in bytes of *kind* (computed once, then cached)."""
        return self._layout(kind).size

    def offset_of(self, kind: Hashable, name: str) -> int:
        """Byte offset of field *name*, searching embedded members too.

        Raises:
            KeyError: If no field of that name exists.
        """
        found = self._find_offset(kind, name)
        if found is None:
            raise KeyError(f"{kind!s} has no field '{name}'")
        return found

    def instantiate(
        self,
        kind: Hashable,
        memory: MemoryReader,
        address: int,
        byteorder: str = "<",
    ) -> TypedView:
        """Read a :class:`TypedView` of *kind* at *address*.

        Read failures from *memory* propagate unchanged.

        Args:
            kind: Registered structure kind.
            memory: Memory reader to project over.
            address: Absolute address of the first byte.
            byteorder: :mod:`struct` byte-order prefix (``"<"`` or ``">"``).
        """
        layout = self._layout(kind)
        values: dict[str, Any] = {}
        for slot in layout.slots:
            fd = slot.field
            where = address + slot.offset
            if fd.kind is not None:
                if fd.is_embedded:
                    inner = self.instantiate(fd.kind, memory, where, byteorder)
                    values.update(inner.fields)
                elif fd.count is None:
                    values[fd.name] = self.instantiate(fd.kind, memory, where, byteorder)
                else:
                    stride = self.size_of(fd.kind)
                    values[fd.name] = [
                        self.instantiate(fd.kind, memory, where + i * stride, byteorder)
                        for i in range(fd.count)
                    ]
            else:
                values[fd.name] = self._read_primitive(fd, slot, memory, where, byteorder)
        return TypedView(kind, address, layout.size, values)

    # ------------------------------------------------------------------ #
    #  Internal helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _read_primitive(
        fd: FieldDescriptor,
        slot: _Slot,
        memory: MemoryReader,
        address: int,
        byteorder: str,
    ) -> Any:
        fmt = primitive_format(fd.primitive)
        if fd.is_bitfield:
            unit = struct.unpack(byteorder + fmt.upper(), memory.read(address, slot.size))[0]
            return (unit >> slot.start_bit) & ((1 << fd.bits) - 1)
        raw = memory.read(address, slot.size)
        if fd.count is None:
            return struct.unpack(byteorder + fmt, raw)[0]
        if fd.primitive == "char":
            return raw
        return list(struct.unpack(f"{byteorder}{fd.count}{fmt}", raw))

    def _field_size(self, fd: FieldDescriptor) -> int:
        if fd.kind is not None:
            unit = self.size_of(fd.kind)
        else:
            unit = primitive_size(fd.primitive)
        return unit * (fd.count if fd.count is not None else 1)

    def _layout(self, kind: Hashable) -> _Layout:
        layout = self._layouts.get(kind)
        if layout is None:
            layout = self._compute_layout(self.descriptor(kind))
            self._layouts[kind] = layout
        return layout

    def _compute_layout(self, desc: StructureDescriptor) -> _Layout:
        slots: list[_Slot] = []

        if desc.is_union:
            size = 0
            for fd in desc.fields:
                fsize = primitive_size(fd.primitive) if fd.is_bitfield else self._field_size(fd)
                slots.append(_Slot(fd, 0, 0, fsize))
                size = max(size, fsize)
            return _Layout(tuple(slots), size)

        offset = 0
        cur_bit = 0
        unit_offset = 0
        unit_size = 0
        for fd in desc.fields:
            if fd.is_bitfield:
                fsize = primitive_size(fd.primitive)
                width = fsize * 8
                if fd.bits > width:
                    raise ValueError(
                        f"Bit-field '{fd.name}' is wider than its {fd.primitive} unit"
                    )
                if cur_bit == 0 or fsize != unit_size or cur_bit + fd.bits > width:
                    # Open a new storage unit; only it contributes size.
                    unit_offset = offset
                    unit_size = fsize
                    cur_bit = 0
                    offset += fsize
                slots.append(_Slot(fd, unit_offset, cur_bit, fsize))
                cur_bit += fd.bits
                if cur_bit >= width:
                    cur_bit = 0
            else:
                cur_bit = 0
                fsize = self._field_size(fd)
                slots.append(_Slot(fd, offset, 0, fsize))
                offset += fsize
        return _Layout(tuple(slots), offset)

    def _find_offset(self, kind: Hashable, name: str) -> Optional[int]:
        for slot in self._layout(kind).slots:
            fd = slot.field
            if fd.name == name:
                return slot.offset
            if fd.is_embedded:
                inner = self._find_offset(fd.kind, name)
                if inner is not None:
                    return slot.offset + inner
        return None
