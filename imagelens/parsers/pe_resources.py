"""
PE Resource Directory
======================

Walks the ``.rsrc`` directory tree: each directory is a header followed
by ``NumberOfNamedEntries + NumberOfIdEntries`` eight-byte entries, each
keyed by a name (length-prefixed UTF-16 string) or a 16-bit ID and
pointing either at a child directory or at a data-entry leaf.

All directory and name offsets are relative to the resource root; the
data entry's ``OffsetToData`` is an RVA.  The ID (or name) of the
top-level entry is the resource *type* and is carried down the tree so
leaves can be decoded by type.

References:
    - Microsoft. (2024). PE Format -- The .rsrc Section. Microsoft Learn.
    - Pietrek, M. (2002). An In-Depth Look into the Win32 Portable
      Executable File Format, Part 2. MSDN Magazine.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterator, Optional, Union

from imagelens.core.errors import unknown_name
from imagelens.core.models import TextResource
from imagelens.core.reflection import TypedView
from imagelens.core.streams import StrideStream, empty_stream
from imagelens.parsers.structures import StructKind
from imagelens.parsers.version_resource import VersionBlock

if TYPE_CHECKING:
    from imagelens.parsers.pe_parser import PEImage

ResourceKey = Union[int, str]

RT_VERSION: int = 16
RT_MANIFEST: int = 24

_RESOURCE_TYPE_NAMES: dict[int, str] = {
    1: "RT_CURSOR",
    2: "RT_BITMAP",
    3: "RT_ICON",
    4: "RT_MENU",
    5: "RT_DIALOG",
    6: "RT_STRING",
    7: "RT_FONTDIR",
    8: "RT_FONT",
    9: "RT_ACCELERATOR",
    10: "RT_RCDATA",
    11: "RT_MESSAGETABLE",
    12: "RT_GROUP_CURSOR",
    14: "RT_GROUP_ICON",
    16: "RT_VERSION",
    17: "RT_DLGINCLUDE",
    19: "RT_PLUGPLAY",
    20: "RT_VXD",
    21: "RT_ANICURSOR",
    22: "RT_ANIICON",
    23: "RT_HTML",
    24: "RT_MANIFEST",
}

# Named resource types whose payload is text.
_TEXT_TYPE_NAMES: frozenset[str] = frozenset({"XML", "XSD", "REGISTRY", "REGINST"})


def resource_type_name(type_id: int) -> str:
    return _RESOURCE_TYPE_NAMES.get(type_id, unknown_name(type_id))


def decode_text(data: bytes) -> TextResource:
    """Decode a text payload, detecting UTF-16 by BOM or NUL pattern."""
    if data.startswith(b"\xff\xfe"):
        return TextResource(encoding="utf-16-le", text=data[2:].decode("utf-16-le", errors="replace"))
    if data.startswith(b"\xef\xbb\xbf"):
        return TextResource(encoding="utf-8", text=data[3:].decode("utf-8", errors="replace"))
    if len(data) >= 2 and data[1] == 0 and data[0] != 0:
        return TextResource(encoding="utf-16-le", text=data.decode("utf-16-le", errors="replace"))
    return TextResource(encoding="utf-8", text=data.decode("utf-8", errors="replace"))


class ResourceEntry:
    """One entry of a resource directory."""

    def __init__(
        self,
        pe: PEImage,
        root_address: int,
        entry: TypedView,
        prior_path: Optional[str],
        root_index: Optional[ResourceKey],
    ) -> None:
        self._pe = pe
        self._root = root_address
        self._entry = entry
        self._prior_path = prior_path
        self._root_index = root_index if root_index is not None else self.index

    def __repr__(self) -> str:
        type_name = self.type_name
        suffix = f" ({type_name})" if type_name else ""
        return f"<ResourceEntry {self.path!r}{suffix}>"

    # ------------------------------------------------------------------ #
    #  Identity
    # ------------------------------------------------------------------ #

    @property
    def is_named(self) -> bool:
        return self._entry.NameIsString != 0

    @property
    def is_directory(self) -> bool:
        return self._entry.DataIsDirectory != 0

    @property
    def name(self) -> Optional[str]:
        """Key of a named entry; an unreadable name reads as empty."""
        if not self.is_named:
            return None
        return self._pe.guarded("resources", self._read_name, "")

    def _read_name(self) -> str:
        location = self._root + self._entry.NameOffset
        memory = self._pe.image.memory
        length = memory.read_int(location, 2)
        if length == 0:
            return ""
        return memory.read(location + 2, length * 2).decode("utf-16-le", errors="replace")

    @property
    def id(self) -> Optional[int]:
        return None if self.is_named else self._entry.Id

    @property
    def index(self) -> ResourceKey:
        return self.name if self.is_named else self.id

    @property
    def path(self) -> str:
        element = self.name if self.is_named else str(self.id)
        if self._prior_path is None:
            return element
        return f"{self._prior_path}/{element}"

    @property
    def root_index(self) -> ResourceKey:
        return self._root_index

    @property
    def type_name(self) -> Optional[str]:
        """Well-known resource type of the tree this entry belongs to."""
        if isinstance(self._root_index, str):
            return None
        return resource_type_name(self._root_index)

    # ------------------------------------------------------------------ #
    #  Descent and payload
    # ------------------------------------------------------------------ #

    @property
    def children(self) -> Optional[ResourceTable]:
        if not self.is_directory:
            return None
        return ResourceTable(
            self._pe,
            self._root,
            self._root + self._entry.OffsetToDirectory,
            self.path,
            self._root_index,
        )

    @property
    def data_entry(self) -> Optional[TypedView]:
        if self.is_directory:
            return None
        return self._pe.guarded(
            "resources",
            lambda: self._pe.instantiate(
                StructKind.IMAGE_RESOURCE_DATA_ENTRY, self._root + self._entry.OffsetToData
            ),
        )

    @property
    def data_address(self) -> Optional[int]:
        entry = self.data_entry
        if entry is None:
            return None
        return self._pe.rva_to_address(entry.OffsetToData)

    @property
    def size(self) -> Optional[int]:
        entry = self.data_entry
        return entry.Size if entry is not None else None

    @property
    def code_page(self) -> Optional[int]:
        entry = self.data_entry
        return entry.CodePage if entry is not None else None

    @property
    def data(self) -> Optional[bytes]:
        entry = self.data_entry
        if entry is None:
            return None
        address = self._pe.rva_to_address(entry.OffsetToData)
        return self._pe.guarded("resources", lambda: self._pe.image.memory.read(address, entry.Size))

    def decoded(self) -> Union[VersionBlock, TextResource, None]:
        """Interpret the leaf payload according to the resource type.

        ``RT_VERSION`` yields the root :class:`VersionBlock`; ``RT_MANIFEST``
        and the named ``XML``/``XSD``/``REGISTRY``/``REGINST`` types yield
        a :class:`TextResource`.  Everything else is ``None``.
        """
        if self.is_directory:
            return None
        kind = self._root_index
        if kind == RT_VERSION:
            return self.version_block()
        if kind == RT_MANIFEST or (isinstance(kind, str) and kind in _TEXT_TYPE_NAMES):
            data = self.data
            return decode_text(data) if data is not None else None
        return None

    def version_block(self) -> Optional[VersionBlock]:
        entry = self.data_entry
        if entry is None:
            return None
        address = self._pe.rva_to_address(entry.OffsetToData)
        blob = self.data
        if blob is None:
            return None
        return VersionBlock(
            self._pe.registry,
            blob,
            address,
            max_depth=self._pe.limits.max_version_depth,
        )


class ResourceTable:
    """A resource directory: its entries in file order, with lookup by key.

    Args:
        pe: Owning image.
        root_address: Address of the root resource directory.
        directory_address: Address of this directory's header.
        prior_path: Path of the entry that owns this directory.
        root_index: Type key of the top-level entry above this directory.
    """

    def __init__(
        self,
        pe: PEImage,
        root_address: int,
        directory_address: int,
        prior_path: Optional[str] = None,
        root_index: Optional[ResourceKey] = None,
    ) -> None:
        self._pe = pe
        self._root = root_address
        self._directory_address = directory_address
        self._prior_path = prior_path
        self._root_index = root_index

    @property
    def directory(self) -> TypedView:
        return self._pe.instantiate(StructKind.IMAGE_RESOURCE_DIRECTORY, self._directory_address)

    @property
    def entries(self) -> StrideStream[ResourceEntry]:
        directory = self._pe.guarded("resources", lambda: self.directory)
        if directory is None:
            return empty_stream()
        count = directory.NumberOfNamedEntries + directory.NumberOfIdEntries

        def read(address: int, index: int) -> ResourceEntry:
            view = self._pe.instantiate(StructKind.IMAGE_RESOURCE_DIRECTORY_ENTRY, address)
            return ResourceEntry(self._pe, self._root, view, self._prior_path, self._root_index)

        return StrideStream(
            directory.address + directory.total_size,
            self._pe.registry.size_of(StructKind.IMAGE_RESOURCE_DIRECTORY_ENTRY),
            read,
            count=count,
            limit=self._pe.limits.max_resource_entries,
            on_unreadable=self._pe.degraded_handler("resources"),
        )

    def __iter__(self) -> Iterator[ResourceEntry]:
        return iter(self.entries)

    def get(self, key: ResourceKey) -> Optional[ResourceEntry]:
        """Find an entry by name (``str``) or ID (``int``)."""
        for entry in self:
            if isinstance(key, str):
                if entry.is_named and entry.name == key:
                    return entry
            elif not entry.is_named and entry.id == key:
                return entry
        return None

    def __getitem__(self, key: ResourceKey) -> ResourceEntry:
        entry = self.get(key)
        if entry is None:
            raise KeyError(f"Unable to find specified resource: {key!r}")
        return entry

    def walk(self, max_depth: int = 8) -> list[ResourceEntry]:
        """Every entry of the tree below this directory, depth first."""
        found: list[ResourceEntry] = []
        for entry in self:
            found.append(entry)
            children = entry.children
            if children is not None and max_depth > 1:
                found.extend(children.walk(max_depth - 1))
        return found
