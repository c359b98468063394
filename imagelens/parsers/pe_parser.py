"""
PE/COFF Image Parser
=====================

Reflection-based parser for the Portable Executable (PE) format used by
Microsoft Windows executables (.exe), dynamic link libraries (.dll) and
drivers.  Both PE32 and PE32+ optional headers are supported, and the
image may be read either as the raw file (RVAs are translated through
the section table) or as the loader mapped it (RVA == offset from base).

The parser exposes:
    - DOS header, PE signature, COFF file header, optional header
    - The sixteen data directories and the section table
    - Resource directory tree (see :mod:`imagelens.parsers.pe_resources`)
    - Import descriptors and thunks, delay-load descriptors
    - Export address table with name/ordinal inversion
    - Debug directories and the CodeView ``RSDS`` record
    - The version resource (see :mod:`imagelens.parsers.version_resource`)

Header accessors raise :class:`MalformedHeaderError`; the directory
tables are auxiliary and degrade to "absent" when unreadable.

References:
    - Microsoft. (2024). PE Format. Microsoft Learn.
      https://learn.microsoft.com/en-us/windows/win32/debug/pe-format
    - Pietrek, M. (2002). An In-Depth Look into the Win32 Portable
      Executable File Format. MSDN Magazine.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Iterator, NamedTuple, Optional

from imagelens.core.errors import MalformedHeaderError, UnreadableRegionError, unknown_name
from imagelens.core.memory import ModuleRecord
from imagelens.core.models import (
    BoundImport,
    CodeViewInfo,
    DataDirectory,
    DebugDirectoryEntry,
    ExportedFunction,
    ImageClassification,
    ImportedFunction,
    NamedImport,
    OrdinalImport,
    RsdsInfo,
    SectionHeader,
)
from imagelens.core.reflection import TypedView
from imagelens.core.streams import StrideStream, empty_stream
from imagelens.parsers.base import ParsedImage
from imagelens.parsers.pe_resources import RT_VERSION, ResourceTable
from imagelens.parsers.structures import StructKind
from imagelens.parsers.version_resource import VersionBlock


# ---------------------------------------------------------------------------
# PE Constants
# ---------------------------------------------------------------------------

MZ_MAGIC: int = 0x5A4D
PE_SIGNATURE: int = 0x00004550

PE32_MAGIC: int = 0x10B
PE32PLUS_MAGIC: int = 0x20B

_MACHINE_NAMES: dict[int, str] = {
    0x0000: "Unknown",
    0x014C: "x86",
    0x0162: "MIPS R3000",
    0x0166: "MIPS R4000",
    0x0266: "MIPS16",
    0x01C0: "ARM",
    0x01C4: "ARM Thumb-2",
    0x8664: "x86_64",
    0xAA64: "AArch64",
    0x0200: "IA-64",
    0x5032: "RISC-V 32",
    0x5064: "RISC-V 64",
}

_SUBSYSTEM_NAMES: dict[int, str] = {
    0: "Unknown",
    1: "Native",
    2: "Windows GUI",
    3: "Windows Console",
    7: "POSIX Console",
    9: "Windows CE GUI",
    10: "EFI Application",
    11: "EFI Boot Service Driver",
    12: "EFI Runtime Driver",
    13: "EFI ROM",
    14: "Xbox",
    16: "Windows Boot Application",
}

IMAGE_FILE_DLL: int = 0x2000

# Section characteristics
IMAGE_SCN_CNT_CODE: int = 0x00000020
IMAGE_SCN_CNT_INITIALIZED_DATA: int = 0x00000040
IMAGE_SCN_CNT_UNINITIALIZED_DATA: int = 0x00000080
IMAGE_SCN_MEM_EXECUTE: int = 0x20000000
IMAGE_SCN_MEM_READ: int = 0x40000000
IMAGE_SCN_MEM_WRITE: int = 0x80000000

IMAGE_DEBUG_TYPE_CODEVIEW: int = 2

_DEBUG_TYPE_NAMES: dict[int, str] = {
    0: "Unknown",
    1: "COFF",
    2: "CodeView",
    3: "FPO",
    4: "Misc",
    5: "Exception",
    6: "Fixup",
    7: "OMAP to Source",
    8: "OMAP from Source",
    9: "Borland",
    10: "Reserved10",
    11: "CLSID",
    12: "VC Feature",
    13: "POGO",
    14: "ILTCG",
    15: "MPX",
    16: "Repro",
    20: "Extended DLL Characteristics",
}

RSDS_SIGNATURE: str = "RSDS"


class DirectoryNumber(enum.IntEnum):
    """Index of each optional-header data directory."""
    EXPORT = 0
    IMPORT = 1
    RESOURCE = 2
    EXCEPTION = 3
    SECURITY = 4
    BASE_RELOCATION = 5
    DEBUG = 6
    ARCHITECTURE = 7
    GLOBAL_POINTER = 8
    TLS = 9
    LOAD_CONFIG = 10
    BOUND_IMPORT = 11
    IAT = 12
    DELAY_IMPORT = 13
    COM_DESCRIPTOR = 14
    RESERVED = 15


class PEHeaders(NamedTuple):
    dos_header: TypedView
    file_header: TypedView
    optional_header: TypedView


def format_guid(view: TypedView) -> str:
    """Render a ``GUID`` view as ``{XXXXXXXX-XXXX-XXXX-XXXX-XXXXXXXXXXXX}``."""
    tail = bytes(view.Data4)
    return (
        f"{{{view.Data1:08X}-{view.Data2:04X}-{view.Data3:04X}-"
        f"{tail[:2].hex().upper()}-{tail[2:].hex().upper()}}}"
    )


def _section_flags(characteristics: int) -> str:
    parts: list[str] = []
    if characteristics & IMAGE_SCN_MEM_READ:
        parts.append("R")
    if characteristics & IMAGE_SCN_MEM_WRITE:
        parts.append("W")
    if characteristics & IMAGE_SCN_MEM_EXECUTE:
        parts.append("X")
    if characteristics & IMAGE_SCN_CNT_CODE:
        parts.append("CODE")
    if characteristics & IMAGE_SCN_CNT_INITIALIZED_DATA:
        parts.append("IDATA")
    if characteristics & IMAGE_SCN_CNT_UNINITIALIZED_DATA:
        parts.append("UDATA")
    return " ".join(parts) if parts else "-"


# ---------------------------------------------------------------------------
# PE image
# ---------------------------------------------------------------------------

class PEImage(ParsedImage):
    """A PE image read through the reflection engine.

    Every accessor re-reads the image; only the section table used for
    RVA translation of on-disk files is kept once it has been read.

    Usage::

        pe = PEImage(image, registry, limits, logger)
        for module in pe.imports:
            print(module.module_name, [f.kind for f in module.functions])
    """

    format_name = "PE"
    classification = ImageClassification.PE

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._section_cache: Optional[list[TypedView]] = None

    # ------------------------------------------------------------------ #
    #  Mandatory headers
    # ------------------------------------------------------------------ #

    @property
    def dos_header(self) -> TypedView:
        header = self.instantiate(StructKind.IMAGE_DOS_HEADER, self.base)
        if header.e_magic != MZ_MAGIC:
            raise MalformedHeaderError("Unrecognized image header", self.image.name)
        return header

    @property
    def nt_headers_address(self) -> int:
        return self.base + self.dos_header.e_lfanew

    @property
    def file_header(self) -> TypedView:
        address = self.nt_headers_address
        if self.image.memory.read_int(address, 4) != PE_SIGNATURE:
            raise MalformedHeaderError("Unrecognized file header", self.image.name)
        return self.instantiate(StructKind.IMAGE_FILE_HEADER, address + 4)

    @property
    def optional_header(self) -> TypedView:
        file_header = self.file_header
        address = file_header.address + file_header.total_size
        header = self.instantiate(StructKind.IMAGE_OPTIONAL_HEADER32, address)
        if header.Magic == PE32_MAGIC:
            return header
        if header.Magic == PE32PLUS_MAGIC:
            return self.instantiate(StructKind.IMAGE_OPTIONAL_HEADER64, address)
        raise MalformedHeaderError(
            f"Unrecognized optional header magic 0x{header.Magic:x}", self.image.name
        )

    def headers(self) -> PEHeaders:
        return PEHeaders(self.dos_header, self.file_header, self.optional_header)

    def validate(self) -> None:
        self.optional_header

    @property
    def is_pe32(self) -> bool:
        return self.optional_header.Magic == PE32_MAGIC

    @property
    def bits(self) -> int:
        return 32 if self.is_pe32 else 64

    @property
    def thunk_size(self) -> int:
        return 4 if self.is_pe32 else 8

    @property
    def machine(self) -> str:
        code = self.file_header.Machine
        return _MACHINE_NAMES.get(code, unknown_name(code))

    @property
    def subsystem(self) -> str:
        code = self.optional_header.Subsystem
        return _SUBSYSTEM_NAMES.get(code, unknown_name(code))

    @property
    def is_dll(self) -> bool:
        return bool(self.file_header.Characteristics & IMAGE_FILE_DLL)

    @property
    def timestamp(self) -> Optional[datetime]:
        stamp = self.file_header.TimeDateStamp
        if stamp == 0:
            return None
        return datetime.fromtimestamp(stamp, tz=timezone.utc)

    @property
    def size_of_image(self) -> int:
        """Extent used to decide whether a thunk value lies inside the image."""
        if self.is_file_layout:
            return self.optional_header.SizeOfImage
        return self.image.space.size

    # ------------------------------------------------------------------ #
    #  Directories and sections
    # ------------------------------------------------------------------ #

    @property
    def directories(self) -> list[DataDirectory]:
        return [
            DataDirectory(
                index=index,
                name=DirectoryNumber(index).name.lower(),
                virtual_address=entry.VirtualAddress,
                size=entry.Size,
            )
            for index, entry in enumerate(self.optional_header.DataDirectory)
        ]

    def directory(self, number: DirectoryNumber | int) -> DataDirectory:
        return self.directories[int(number)]

    def directory_address(self, number: DirectoryNumber | int) -> Optional[int]:
        """Address of a directory's table, ``None`` when it is absent."""
        entry = self.directory(number)
        if not entry.present:
            return None
        return self.rva_to_address(entry.virtual_address)

    @property
    def iat_address(self) -> Optional[int]:
        return self.directory_address(DirectoryNumber.IAT)

    def _section_views(self) -> list[TypedView]:
        file_header = self.file_header
        start = file_header.address + file_header.total_size + file_header.SizeOfOptionalHeader
        stride = self.registry.size_of(StructKind.IMAGE_SECTION_HEADER)
        return [
            self.instantiate(StructKind.IMAGE_SECTION_HEADER, start + i * stride)
            for i in range(file_header.NumberOfSections)
        ]

    @property
    def sections(self) -> list[SectionHeader]:
        return [
            SectionHeader(
                name=view.Name.rstrip(b"\x00").decode("ascii", errors="replace"),
                virtual_address=view.VirtualAddress,
                virtual_size=view.VirtualSize,
                raw_offset=view.PointerToRawData,
                raw_size=view.SizeOfRawData,
                characteristics=view.Characteristics,
                flags=_section_flags(view.Characteristics),
            )
            for view in self._section_views()
        ]

    def rva_to_address(self, rva: int) -> int:
        """Absolute address of *rva* in this image's layout.

        For an on-disk file the section table maps the RVA to a file
        offset; RVAs outside every section (the headers) map one to one.
        """
        if not self.is_file_layout:
            return self.base + rva
        if self._section_cache is None:
            self._section_cache = self._section_views()
        for view in self._section_cache:
            start = view.VirtualAddress
            end = start + max(view.VirtualSize, view.SizeOfRawData)
            if start <= rva < end:
                return self.base + view.PointerToRawData + (rva - start)
        return self.base + rva

    # ------------------------------------------------------------------ #
    #  Tables
    # ------------------------------------------------------------------ #

    @property
    def resources(self) -> Optional[ResourceTable]:
        """Root resource directory, ``None`` when the image has none."""
        address = self.directory_address(DirectoryNumber.RESOURCE)
        if address is None:
            return None
        return ResourceTable(self, address, address)

    @property
    def imports(self) -> ImportTable:
        return ImportTable(self, self.directory_address(DirectoryNumber.IMPORT))

    @property
    def delay_imports(self) -> DelayImportTable:
        return DelayImportTable(self, self.directory_address(DirectoryNumber.DELAY_IMPORT))

    @property
    def exports(self) -> ExportTable:
        return ExportTable(self, self.directory_address(DirectoryNumber.EXPORT))

    @property
    def debug_info(self) -> DebugTable:
        entry = self.directory(DirectoryNumber.DEBUG)
        address = self.rva_to_address(entry.virtual_address) if entry.present else None
        return DebugTable(self, address, entry.size)

    def version(self) -> Optional[VersionBlock]:
        """Root of the version resource: type 16, name 1, first language."""
        def read() -> Optional[VersionBlock]:
            table = self.resources
            if table is None:
                return None
            version = table.get(RT_VERSION)
            if version is None or version.children is None:
                return None
            neutral = version.children.get(1)
            if neutral is None or neutral.children is None:
                return None
            first = neutral.children.entries.first()
            if first is None:
                return None
            return first.version_block()

        return self.guarded("version", read)

    # ------------------------------------------------------------------ #
    #  Thunk walking
    # ------------------------------------------------------------------ #

    def thunk_stream(
        self,
        table: int,
        bound_table: Optional[int],
        table_name: str,
    ) -> StrideStream[ImportedFunction]:
        """Walk a zero-terminated thunk array.

        A thunk whose low bits point past the end of the image is taken
        to be an already-bound function pointer; otherwise the top bit
        selects an ordinal import over a hint/name import.  The matching
        slot of *bound_table*, when given and readable, is reported as
        the bound address.
        """
        size = self.thunk_size
        top_bit = 1 << (size * 8 - 1)
        low_mask = top_bit - 1
        last = self.size_of_image - 1
        memory = self.image.memory

        def read(address: int, index: int) -> Optional[ImportedFunction]:
            thunk = memory.read_int(address, size)
            if thunk == 0:
                return None
            bound: Optional[int] = None
            if bound_table is not None:
                try:
                    bound = memory.read_int(bound_table + index * size, size)
                except UnreadableRegionError:
                    bound = None
            if thunk & low_mask > last:
                return BoundImport(
                    thunk_address=address,
                    address=thunk,
                    bound_address=thunk,
                    bound_symbol=self.image.symbol_for(thunk),
                )
            symbol = self.image.symbol_for(bound) if bound else None
            if not thunk & top_bit:
                hint_address = self.rva_to_address(thunk)
                return NamedImport(
                    thunk_address=address,
                    name=self.read_cstring(hint_address + 2),
                    hint=memory.read_int(hint_address, 2),
                    bound_address=bound,
                    bound_symbol=symbol,
                )
            return OrdinalImport(
                thunk_address=address,
                ordinal=thunk & low_mask,
                bound_address=bound,
                bound_symbol=symbol,
            )

        return StrideStream(
            table,
            size,
            read,
            limit=self.limits.max_thunks_per_module,
            on_unreadable=self.degraded_handler(table_name),
        )


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------

class ImportModule:
    """One import descriptor: a DLL and the functions taken from it."""

    def __init__(self, pe: PEImage, descriptor: TypedView) -> None:
        self._pe = pe
        self.descriptor = descriptor

    def __repr__(self) -> str:
        return f"<ImportModule {self.module_name!r}>"

    @property
    def module_name(self) -> str:
        return self._pe.read_cstring(self._pe.rva_to_address(self.descriptor.Name))

    @property
    def first_bound_thunk(self) -> Optional[int]:
        """First IAT slot, or ``None`` when the IAT matches the lookup table.

        Equal first slots are taken to mean "not bound"; this compares raw
        values and is a heuristic rather than a loader-exact test.
        """
        size = self._pe.thunk_size
        memory = self._pe.image.memory
        try:
            thunk = memory.read_int(self._pe.rva_to_address(self.descriptor.FirstThunk), size)
            original = memory.read_int(
                self._pe.rva_to_address(self.descriptor.OriginalFirstThunk), size
            )
        except UnreadableRegionError:
            return None
        if thunk == original:
            return None
        return thunk

    @property
    def resolved_module(self) -> Optional[ModuleRecord]:
        resolver = self._pe.image.resolver
        if resolver is None:
            return None
        return resolver.find_module(name=self.module_name, bound_address=self.first_bound_thunk)

    @property
    def functions(self) -> StrideStream[ImportedFunction]:
        lookup_rva = self.descriptor.OriginalFirstThunk or self.descriptor.FirstThunk
        bound_table = (
            self._pe.rva_to_address(self.descriptor.FirstThunk)
            if self.descriptor.OriginalFirstThunk else None
        )
        return self._pe.thunk_stream(self._pe.rva_to_address(lookup_rva), bound_table, "imports")


class ImportTable:
    """The null-terminated import descriptor array."""

    def __init__(self, pe: PEImage, address: Optional[int]) -> None:
        self._pe = pe
        self._address = address

    @property
    def present(self) -> bool:
        return self._address is not None

    @property
    def modules(self) -> StrideStream[ImportModule]:
        if self._address is None:
            return empty_stream()

        def read(address: int, index: int) -> Optional[ImportModule]:
            descriptor = self._pe.instantiate(StructKind.IMAGE_IMPORT_DESCRIPTOR, address)
            if descriptor.Name == 0:
                return None
            return ImportModule(self._pe, descriptor)

        return StrideStream(
            self._address,
            self._pe.registry.size_of(StructKind.IMAGE_IMPORT_DESCRIPTOR),
            read,
            limit=self._pe.limits.max_import_modules,
            on_unreadable=self._pe.degraded_handler("imports"),
        )

    def __iter__(self) -> Iterator[ImportModule]:
        return iter(self.modules)

    def get(self, module_name: str) -> Optional[ImportModule]:
        for module in self:
            if module.module_name == module_name:
                return module
        return None

    def __getitem__(self, module_name: str) -> ImportModule:
        module = self.get(module_name)
        if module is None:
            raise KeyError(f"Unable to find specified import: {module_name}")
        return module


class DelayImportModule:
    """One delay-load descriptor.  Only the address table is walked."""

    def __init__(self, pe: PEImage, descriptor: TypedView) -> None:
        self._pe = pe
        self.descriptor = descriptor

    def __repr__(self) -> str:
        return f"<DelayImportModule {self.module_name!r}>"

    @property
    def module_name(self) -> str:
        return self._pe.read_cstring(self._pe.rva_to_address(self.descriptor.DllNameRVA))

    @property
    def rva_based(self) -> bool:
        return bool(self.descriptor.RvaBased)

    @property
    def resolved_module(self) -> Optional[ModuleRecord]:
        resolver = self._pe.image.resolver
        if resolver is None:
            return None
        return resolver.find_module(name=self.module_name)

    @property
    def is_loaded(self) -> bool:
        return self.resolved_module is not None

    @property
    def functions(self) -> StrideStream[ImportedFunction]:
        table = self._pe.rva_to_address(self.descriptor.ImportAddressTableRVA)
        return self._pe.thunk_stream(table, None, "delay imports")


class DelayImportTable:
    """The delay-load descriptor array, terminated by a zero DLL name."""

    def __init__(self, pe: PEImage, address: Optional[int]) -> None:
        self._pe = pe
        self._address = address

    @property
    def present(self) -> bool:
        return self._address is not None

    @property
    def modules(self) -> StrideStream[DelayImportModule]:
        if self._address is None:
            return empty_stream()

        def read(address: int, index: int) -> Optional[DelayImportModule]:
            descriptor = self._pe.instantiate(StructKind.IMAGE_DELAYLOAD_DESCRIPTOR, address)
            if descriptor.DllNameRVA == 0:
                return None
            return DelayImportModule(self._pe, descriptor)

        return StrideStream(
            self._address,
            self._pe.registry.size_of(StructKind.IMAGE_DELAYLOAD_DESCRIPTOR),
            read,
            limit=self._pe.limits.max_import_modules,
            on_unreadable=self._pe.degraded_handler("delay imports"),
        )

    def __iter__(self) -> Iterator[DelayImportModule]:
        return iter(self.modules)

    def get(self, module_name: str) -> Optional[DelayImportModule]:
        for module in self:
            if module.module_name == module_name:
                return module
        return None


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------

_NO_NAME: int = 0xFFFF


class ExportTable:
    """The export directory and its three parallel arrays."""

    def __init__(self, pe: PEImage, address: Optional[int]) -> None:
        self._pe = pe
        self._address = address

    @property
    def present(self) -> bool:
        return self._address is not None

    @property
    def directory(self) -> Optional[TypedView]:
        if self._address is None:
            return None
        return self._pe.guarded(
            "exports",
            lambda: self._pe.instantiate(StructKind.IMAGE_EXPORT_DIRECTORY, self._address),
        )

    @property
    def module_name(self) -> Optional[str]:
        directory = self.directory
        if directory is None or directory.Name == 0:
            return None
        return self._pe.guarded(
            "exports",
            lambda: self._pe.read_cstring(self._pe.rva_to_address(directory.Name)),
        )

    def functions(self) -> list[ExportedFunction]:
        """Read the export address table afresh.

        The name-ordinal array is inverted so each function index knows
        its name slot; indices without one become ordinal-only exports.
        """
        directory = self.directory
        if directory is None:
            return []
        return self._pe.guarded("exports", lambda: self._read(directory), default=[])

    def _read(self, directory: TypedView) -> list[ExportedFunction]:
        pe = self._pe
        memory = pe.image.memory
        limit = pe.limits.max_exports
        func_count = min(directory.NumberOfFunctions, limit)
        name_count = min(directory.NumberOfNames, limit)

        ordinals_at = pe.rva_to_address(directory.AddressOfNameOrdinals)
        name_ordinals = [memory.read_int(ordinals_at + 2 * i, 2) for i in range(name_count)]

        functions_at = pe.rva_to_address(directory.AddressOfFunctions)
        function_rvas = [memory.read_int(functions_at + 4 * i, 4) for i in range(func_count)]

        ordinal_names = [_NO_NAME] * func_count
        for name_index, ordinal in enumerate(name_ordinals):
            if ordinal < func_count:
                ordinal_names[ordinal] = name_index

        names_at = pe.rva_to_address(directory.AddressOfNames)
        name_rvas = [memory.read_int(names_at + 4 * i, 4) for i in range(name_count)]

        exports: list[ExportedFunction] = []
        for index, rva in enumerate(function_rvas):
            address = pe.base + rva
            name_index = ordinal_names[index]
            name = None
            if name_index != _NO_NAME:
                name = pe.read_cstring(pe.rva_to_address(name_rvas[name_index]))
            exports.append(
                ExportedFunction(
                    ordinal=index,
                    name=name,
                    address=address,
                    symbol=pe.image.symbol_for(address),
                )
            )
        return exports

    def __iter__(self) -> Iterator[ExportedFunction]:
        return iter(self.functions())

    def get(self, name: str) -> Optional[ExportedFunction]:
        for function in self:
            if function.name == name:
                return function
        return None


# ---------------------------------------------------------------------------
# Debug directories
# ---------------------------------------------------------------------------

class DebugTable:
    """The array of ``IMAGE_DEBUG_DIRECTORY`` entries."""

    def __init__(self, pe: PEImage, address: Optional[int], size: int) -> None:
        self._pe = pe
        self._address = address
        self._size = size

    @property
    def present(self) -> bool:
        return self._address is not None

    def _views(self) -> StrideStream[TypedView]:
        if self._address is None:
            return empty_stream()
        stride = self._pe.registry.size_of(StructKind.IMAGE_DEBUG_DIRECTORY)
        return StrideStream(
            self._address,
            stride,
            lambda address, index: self._pe.instantiate(StructKind.IMAGE_DEBUG_DIRECTORY, address),
            count=self._size // stride,
            on_unreadable=self._pe.degraded_handler("debug"),
        )

    @property
    def entries(self) -> list[DebugDirectoryEntry]:
        return [
            DebugDirectoryEntry(
                type=view.Type,
                type_name=_DEBUG_TYPE_NAMES.get(view.Type, unknown_name(view.Type)),
                timestamp=view.TimeDateStamp,
                major_version=view.MajorVersion,
                minor_version=view.MinorVersion,
                size=view.SizeOfData,
                address_of_raw_data=view.AddressOfRawData,
                pointer_to_raw_data=view.PointerToRawData,
            )
            for view in self._views()
        ]

    def _find_entry(self, debug_type: int) -> Optional[TypedView]:
        for view in self._views():
            if view.Type == debug_type:
                return view
        return None

    @property
    def code_view(self) -> Optional[CodeViewInfo]:
        """The first CodeView entry; only ``RSDS`` payloads are decoded."""
        entry = self._find_entry(IMAGE_DEBUG_TYPE_CODEVIEW)
        if entry is None:
            return None
        return self._pe.guarded("debug", lambda: self._read_code_view(entry))

    def _read_code_view(self, entry: TypedView) -> CodeViewInfo:
        pe = self._pe
        address = pe.rva_to_address(entry.AddressOfRawData)
        signature = pe.image.memory.read(address, 4).decode("latin-1")
        if signature != RSDS_SIGNATURE:
            return CodeViewInfo(signature=signature)
        record = pe.instantiate(StructKind.CV_INFO_PDB70, address)
        return CodeViewInfo(
            signature=signature,
            data=RsdsInfo(
                guid=format_guid(record.Signature),
                age=record.Age,
                pdb_path=pe.read_cstring(address + record.total_size),
            ),
        )
