"""
Version Resource Decoder
=========================

Decodes the self-describing block tree stored in an ``RT_VERSION``
resource and interprets its root ``VS_FIXEDFILEINFO`` value.

Every block has the layout::

    WORD   wLength         total length of the block, children included
    WORD   wValueLength    value length (bytes if binary, characters if text)
    WORD   wType           0 = binary value, 1 = text value
    WCHAR  szKey[]         null-terminated UTF-16 key
    ...    padding         to a DWORD boundary
    ...    Value
    ...    padding         to a DWORD boundary
    ...    Children        each DWORD aligned, until wLength is exhausted

Offsets below are relative to the start of the resource payload; the
payload is wrapped in a :class:`BufferMemory` at its own address so that
a truncated payload surfaces as :class:`UnreadableRegionError` rather
than an ``IndexError``.

References:
    - Microsoft. (2024). VS_VERSIONINFO structure. Microsoft Learn.
    - Microsoft. (2024). VS_FIXEDFILEINFO structure. Microsoft Learn.
"""

from __future__ import annotations

from typing import Optional

from imagelens.core.memory import BufferMemory
from imagelens.core.models import FixedVersionInfo
from imagelens.core.reflection import StructRegistry, TypedView
from imagelens.core.streams import ChainStream
from imagelens.parsers.structures import StructKind

ROOT_KEY: str = "VS_VERSION_INFO"
_MAX_KEY_CHARS: int = 256

# VS_FF_* file flags
_FILE_FLAGS: tuple[tuple[int, str], ...] = (
    (0x01, "debug"),
    (0x02, "prerelease"),
    (0x04, "patched"),
    (0x08, "private"),
    (0x10, "infoinferred"),
    (0x20, "special"),
)

# VOS_* operating systems
_OS_NAMES: dict[int, str] = {
    0x00010000: "MS-DOS",
    0x00040000: "Windows NT",
    0x00040004: "Windows NT",
    0x00000001: "16-bit Windows",
    0x00000004: "32-bit Windows",
    0x00020000: "16-bit OS/2",
    0x00030000: "32-bit OS/2",
    0x00000002: "16-bit Presentation Manager",
    0x00000003: "32-bit Presentation Manager",
}

# VFT_* file types
_FILE_TYPES: dict[int, str] = {
    1: "Application",
    2: "DLL",
    3: "Device Driver",
    4: "Font",
    5: "Virtual Device (VXD)",
    7: "Static Link Library",
}

# VFT2_DRV_* driver subtypes
_DRIVER_SUBTYPES: dict[int, str] = {
    0: "Communications Driver",
    1: "Printer Driver",
    2: "Keyboard Driver",
    3: "Language Driver",
    4: "Display Driver",
    5: "Mouse Driver",
    6: "Network Driver",
    7: "System Driver",
    8: "Installable Driver",
    9: "Sound Driver",
    12: "Versioned Printer Driver",
}

# VFT2_FONT_* font subtypes
_FONT_SUBTYPES: dict[int, str] = {
    1: "Raster Font",
    2: "Vector Font",
    3: "TrueType Font",
}


def pad_to_dword(offset: int) -> int:
    return (offset + 3) & ~3


# ---------------------------------------------------------------------------
# VS_FIXEDFILEINFO interpretation
# ---------------------------------------------------------------------------

def _dotted(ms: int, ls: int) -> str:
    return f"{ms >> 16}.{ms & 0xFFFF}.{ls >> 16}.{ls & 0xFFFF}"


def _os_string(value: int) -> str:
    name = _OS_NAMES.get(value)
    if name is not None:
        return name
    high = value & 0xFFFF0000
    low = value & 0x0000FFFF
    if high == 0 or low == 0:
        return "Unknown"
    return f"{_OS_NAMES.get(low, 'Unknown')} on {_OS_NAMES.get(high, 'Unknown')}"


def _subtype_string(file_type: int, subtype: int) -> str:
    if file_type == 3:
        return _DRIVER_SUBTYPES.get(subtype, "Unknown Driver")
    if file_type == 4:
        return _FONT_SUBTYPES.get(subtype, "Unknown Font")
    return ""


def interpret_fixed_info(view: TypedView) -> FixedVersionInfo:
    """Turn a ``VS_FIXEDFILEINFO`` view into a :class:`FixedVersionInfo`."""
    flags = view.dwFileFlags & view.dwFileFlagsMask
    return FixedVersionInfo(
        signature=view.dwSignature,
        struct_version=view.dwStrucVersion,
        file_version=_dotted(view.dwFileVersionMS, view.dwFileVersionLS),
        product_version=_dotted(view.dwProductVersionMS, view.dwProductVersionLS),
        file_flags=[name for bit, name in _FILE_FLAGS if flags & bit],
        os=_os_string(view.dwFileOS),
        file_type=_FILE_TYPES.get(view.dwFileType, "Unknown"),
        file_subtype=_subtype_string(view.dwFileType, view.dwFileSubtype),
        file_date=(view.dwFileDateMS << 32) | view.dwFileDateLS,
    )


# ---------------------------------------------------------------------------
# Version blocks
# ---------------------------------------------------------------------------

class VersionBlock:
    """One node of a version resource tree.

    Args:
        registry: Structure registry used for the fixed-info view.
        blob: The whole version resource payload.
        address: Address the payload was read from.
        offset: Offset of this block within *blob*.
        prior_path: Backslash-joined keys of the ancestors.
        depth: Nesting depth of this block (root is 0).
        max_depth: Blocks at this depth report no children.
        limit: Offset this block may not extend past (the parent's end).
    """

    def __init__(
        self,
        registry: StructRegistry,
        blob: bytes,
        address: int,
        offset: int = 0,
        prior_path: str = "",
        depth: int = 0,
        max_depth: int = 16,
        limit: Optional[int] = None,
    ) -> None:
        self._registry = registry
        self._blob = blob
        self._memory = BufferMemory(blob, address)
        self._address = address
        self._offset = offset
        self._prior_path = prior_path
        self._depth = depth
        self._max_depth = max_depth
        self._limit = len(blob) if limit is None else limit

    def __repr__(self) -> str:
        return f"<VersionBlock {self.path!r}>"

    # ------------------------------------------------------------------ #
    #  Raw header
    # ------------------------------------------------------------------ #

    @property
    def header(self) -> TypedView:
        return self._registry.instantiate(
            StructKind.VERSION_BLOCK_HEADER, self._memory, self._address + self._offset
        )

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def entry_size(self) -> int:
        """Declared total length (``wLength``) of this block."""
        return self.header.wLength

    @property
    def end(self) -> int:
        """Offset just past this block, never beyond the parent's end."""
        return min(self._offset + self.entry_size, self._limit)

    @property
    def is_binary(self) -> bool:
        return self.header.wType == 0

    @property
    def kind(self) -> str:
        return "Binary" if self.is_binary else "Text"

    @property
    def name(self) -> str:
        header_size = self._registry.size_of(StructKind.VERSION_BLOCK_HEADER)
        return self._memory.read_string(
            self._address + self._offset + header_size,
            max_length=_MAX_KEY_CHARS,
            wide=True,
        )

    @property
    def path(self) -> str:
        if not self._prior_path:
            return self.name
        return f"{self._prior_path}\\{self.name}"

    @property
    def data_size(self) -> int:
        """Value size in bytes (text lengths are stored in characters)."""
        size = self.header.wValueLength
        return size if self.is_binary else size * 2

    @property
    def data_offset(self) -> int:
        name_bytes = (len(self.name) + 1) * 2
        header_size = self._registry.size_of(StructKind.VERSION_BLOCK_HEADER)
        return pad_to_dword(self._offset + header_size + name_bytes)

    @property
    def data_address(self) -> int:
        return self._address + self.data_offset

    # ------------------------------------------------------------------ #
    #  Value
    # ------------------------------------------------------------------ #

    def _value_size(self) -> int:
        return max(0, min(self.data_size, self.end - self.data_offset))

    @property
    def data(self) -> Optional[bytes]:
        """Raw binary value, ``None`` for text or empty values."""
        size = self._value_size()
        if not self.is_binary or size == 0:
            return None
        return self._memory.read(self.data_address, size)

    @property
    def text(self) -> Optional[str]:
        """Text value, ``None`` for binary or empty values."""
        size = self._value_size()
        if self.is_binary or size == 0:
            return None
        return self._memory.read_string(self.data_address, max_length=size // 2, wide=True)

    @property
    def fixed_view(self) -> Optional[TypedView]:
        """The root ``VS_FIXEDFILEINFO`` as a typed view."""
        if self.path != ROOT_KEY or not self.is_binary:
            return None
        if self._value_size() < self._registry.size_of(StructKind.VS_FIXEDFILEINFO):
            return None
        return self._registry.instantiate(
            StructKind.VS_FIXEDFILEINFO, self._memory, self.data_address
        )

    @property
    def version_info(self) -> Optional[FixedVersionInfo]:
        view = self.fixed_view
        return interpret_fixed_info(view) if view is not None else None

    # ------------------------------------------------------------------ #
    #  Children
    # ------------------------------------------------------------------ #

    @property
    def children(self) -> ChainStream[VersionBlock]:
        """Child blocks, walked until this block's length is exhausted.

        A child whose declared length overruns what is left of the parent
        is still yielded, clamped to the parent's end, and ends the walk.
        """
        block_end = self.end
        first = pad_to_dword(self.data_offset + self.data_size)
        if self._depth >= self._max_depth:
            first = block_end
        path = self.path

        def step(offset: int, index: int) -> tuple[VersionBlock, Optional[int]]:
            remaining = block_end - offset
            child = VersionBlock(
                self._registry, self._blob, self._address, offset, path,
                self._depth + 1, self._max_depth, block_end,
            )
            child_size = child.entry_size
            if child_size == 0 or child_size > remaining:
                return child, None
            return child, pad_to_dword(offset + child_size)

        # More than a bare 8 bytes must remain for another child to start.
        return ChainStream(first, step, end=block_end - 8)

    def child(self, name: str) -> Optional[VersionBlock]:
        """First direct child whose key equals *name*."""
        for block in self.children:
            if block.name == name:
                return block
        return None

    def __getitem__(self, name: str) -> VersionBlock:
        block = self.child(name)
        if block is None:
            raise KeyError(f"Version block {self.path!r} has no child {name!r}")
        return block

    def walk(self) -> list[VersionBlock]:
        """This block and all of its descendants, depth first."""
        found: list[VersionBlock] = [self]
        for block in self.children:
            found.extend(block.walk())
        return found

    def string_table(self) -> dict[str, str]:
        """Flatten ``StringFileInfo`` key/value pairs (first table wins)."""
        strings: dict[str, str] = {}
        info = self.child("StringFileInfo")
        if info is None:
            return strings
        for table in info.children:
            for entry in table.children:
                strings.setdefault(entry.name, entry.text or "")
        return strings
