"""
ELF Image Parser
=================

Reflection-based parser for the Executable and Linkable Format used by
Linux, the BSDs and most other Unix-like systems.  Both ELFCLASS32 and
ELFCLASS64 images are supported, in either byte order.

The parser exposes:
    - ELF identification and file header (machine / type names)
    - Program headers and the PT_LOAD file-offset <-> address table
    - Notes (PT_NOTE), with GNU build-id and FDO package metadata decoded
    - Dynamic entries (PT_DYNAMIC), string tags resolved through DT_STRTAB
    - The runtime link map reached through DT_DEBUG -> r_debug.r_map
    - The program interpreter (PT_INTERP)

Only program headers are used; section headers are never consulted, so
stripped and in-memory images parse the same way as files on disk.

References:
    - TIS Committee. (1995). Tool Interface Standard (TIS) Executable and
      Linking Format (ELF) Specification, Version 1.2.
    - System V Application Binary Interface, Generic ABI (gABI).
    - systemd. (2021). Package Metadata for Executable Files.
      https://systemd.io/ELF_PACKAGE_METADATA/
"""

from __future__ import annotations

import json
import struct
from typing import Any, Optional

from imagelens.core.errors import MalformedHeaderError, unknown_name
from imagelens.core.models import (
    DynamicEntry,
    ElfNote,
    ImageClassification,
    LinkMapEntry,
    ProgramHeader,
    TranslationRange,
)
from imagelens.core.reflection import TypedView
from imagelens.core.streams import ChainStream, StrideStream, empty_stream
from imagelens.parsers.base import ParsedImage
from imagelens.parsers.structures import StructKind


# ---------------------------------------------------------------------------
# ELF Constants
# ---------------------------------------------------------------------------

ELF_MAGIC: bytes = b"\x7fELF"

ELFCLASS32: int = 1
ELFCLASS64: int = 2

ELFDATA2LSB: int = 1
ELFDATA2MSB: int = 2

_TYPE_NAMES: dict[int, str] = {
    0: "NONE",
    1: "REL",
    2: "EXEC",
    3: "DYN",
    4: "CORE",
}

_MACHINE_NAMES: dict[int, str] = {
    2: "SPARC",
    3: "x86",
    8: "MIPS",
    20: "PowerPC",
    21: "PowerPC64",
    22: "S390",
    40: "ARM",
    43: "SPARCv9",
    50: "IA-64",
    62: "x86_64",
    183: "AArch64",
    243: "RISC-V",
    258: "LoongArch",
}

# Program header types
PT_NULL: int = 0
PT_LOAD: int = 1
PT_DYNAMIC: int = 2
PT_INTERP: int = 3
PT_NOTE: int = 4

_SEGMENT_TYPE_NAMES: dict[int, str] = {
    0: "NULL",
    1: "LOAD",
    2: "DYNAMIC",
    3: "INTERP",
    4: "NOTE",
    5: "SHLIB",
    6: "PHDR",
    7: "TLS",
    0x6474E550: "GNU_EH_FRAME",
    0x6474E551: "GNU_STACK",
    0x6474E552: "GNU_RELRO",
    0x6474E553: "GNU_PROPERTY",
}

PF_X: int = 0x1
PF_W: int = 0x2
PF_R: int = 0x4

# Note types, keyed by owner name
NT_GNU_ABI_TAG: int = 1
NT_GNU_BUILD_ID: int = 3
NT_FDO_PACKAGING_METADATA: int = 0xCAFE1A7E

_NOTE_TYPE_NAMES: dict[str, dict[int, str]] = {
    "GNU": {
        1: "NT_GNU_ABI_TAG",
        2: "NT_GNU_HWCAP",
        3: "NT_GNU_BUILD_ID",
        4: "NT_GNU_GOLD_VERSION",
        5: "NT_GNU_PROPERTY_TYPE_0",
    },
    "FDO": {
        NT_FDO_PACKAGING_METADATA: "NT_FDO_PACKAGING_METADATA",
    },
    "CORE": {
        1: "NT_PRSTATUS",
        2: "NT_PRFPREG",
        3: "NT_PRPSINFO",
        4: "NT_TASKSTRUCT",
        6: "NT_AUXV",
        0x46494C45: "NT_FILE",
        0x53494749: "NT_SIGINFO",
    },
}

_ABI_TAG_OS: dict[int, str] = {0: "Linux", 1: "Hurd", 2: "Solaris", 3: "FreeBSD"}

# Dynamic tags
DT_NULL: int = 0
DT_NEEDED: int = 1
DT_STRTAB: int = 5
DT_SONAME: int = 14
DT_RPATH: int = 15
DT_DEBUG: int = 21
DT_RUNPATH: int = 29

_DYNAMIC_TAG_NAMES: dict[int, str] = {
    0: "NULL",
    1: "NEEDED",
    2: "PLTRELSZ",
    3: "PLTGOT",
    4: "HASH",
    5: "STRTAB",
    6: "SYMTAB",
    7: "RELA",
    8: "RELASZ",
    9: "RELAENT",
    10: "STRSZ",
    11: "SYMENT",
    12: "INIT",
    13: "FINI",
    14: "SONAME",
    15: "RPATH",
    16: "SYMBOLIC",
    17: "REL",
    18: "RELSZ",
    19: "RELENT",
    20: "PLTREL",
    21: "DEBUG",
    22: "TEXTREL",
    23: "JMPREL",
    24: "BIND_NOW",
    25: "INIT_ARRAY",
    26: "FINI_ARRAY",
    27: "INIT_ARRAYSZ",
    28: "FINI_ARRAYSZ",
    29: "RUNPATH",
    30: "FLAGS",
    0x6FFFFEF5: "GNU_HASH",
    0x6FFFFFF0: "VERSYM",
    0x6FFFFFF9: "RELACOUNT",
    0x6FFFFFFA: "RELCOUNT",
    0x6FFFFFFB: "FLAGS_1",
    0x6FFFFFFE: "VERNEED",
    0x6FFFFFFF: "VERNEEDNUM",
}

_STRING_TAGS: frozenset[int] = frozenset({DT_NEEDED, DT_SONAME, DT_RPATH, DT_RUNPATH})


def _align(value: int, alignment: int) -> int:
    return (value + alignment - 1) & ~(alignment - 1)


def _segment_flags(flags: int) -> str:
    return (
        ("R" if flags & PF_R else "-")
        + ("W" if flags & PF_W else "-")
        + ("X" if flags & PF_X else "-")
    )


def note_type_name(owner: str, note_type: int) -> str:
    return _NOTE_TYPE_NAMES.get(owner, {}).get(note_type, unknown_name(note_type))


def dynamic_tag_name(tag: int) -> str:
    return _DYNAMIC_TAG_NAMES.get(tag, unknown_name(tag))


# ---------------------------------------------------------------------------
# ELF image
# ---------------------------------------------------------------------------

class ELFImage(ParsedImage):
    """An ELF image read through the reflection engine.

    In ``FILE`` layout a virtual address is located through the PT_LOAD
    translation table; in ``MAPPED`` layout the image base corresponds to
    the lowest page-aligned PT_LOAD address.
    """

    format_name = "ELF"
    classification = ImageClassification.ELF

    # ------------------------------------------------------------------ #
    #  Header
    # ------------------------------------------------------------------ #

    @property
    def ident(self) -> TypedView:
        ident = self.instantiate(StructKind.ELF_IDENT, self.base)
        if ident.EI_MAG != ELF_MAGIC:
            raise MalformedHeaderError("Unrecognized ELF identifier", self.image.name)
        if ident.EI_CLASS not in (ELFCLASS32, ELFCLASS64):
            raise MalformedHeaderError(
                f"Unrecognized ELF class {ident.EI_CLASS}", self.image.name
            )
        if ident.EI_DATA not in (ELFDATA2LSB, ELFDATA2MSB):
            raise MalformedHeaderError(
                f"Unrecognized ELF data encoding {ident.EI_DATA}", self.image.name
            )
        return ident

    @property
    def header(self) -> TypedView:
        ident = self.ident
        kind = StructKind.ELF64_EHDR if ident.EI_CLASS == ELFCLASS64 else StructKind.ELF32_EHDR
        return self.instantiate(kind, self.base)

    def validate(self) -> None:
        ident = self.ident
        self.byteorder = "<" if ident.EI_DATA == ELFDATA2LSB else ">"
        self.header

    @property
    def is_64bit(self) -> bool:
        return self.ident.EI_CLASS == ELFCLASS64

    @property
    def bits(self) -> int:
        return 64 if self.is_64bit else 32

    @property
    def is_big_endian(self) -> bool:
        return self.ident.EI_DATA == ELFDATA2MSB

    @property
    def machine(self) -> str:
        code = self.header.e_machine
        return _MACHINE_NAMES.get(code, unknown_name(code))

    @property
    def file_type(self) -> str:
        code = self.header.e_type
        return _TYPE_NAMES.get(code, unknown_name(code))

    @property
    def entry_point(self) -> int:
        return self.header.e_entry

    # ------------------------------------------------------------------ #
    #  Program headers and address translation
    # ------------------------------------------------------------------ #

    def _program_header_views(self) -> list[TypedView]:
        header = self.header
        kind = StructKind.ELF64_PHDR if self.is_64bit else StructKind.ELF32_PHDR
        stride = header.e_phentsize or self.registry.size_of(kind)
        start = self.base + header.e_phoff
        if header.e_phoff == 0:
            return []
        return [self.instantiate(kind, start + i * stride) for i in range(header.e_phnum)]

    def _views_of_type(self, segment_type: int) -> list[TypedView]:
        return [view for view in self._program_header_views() if view.p_type == segment_type]

    @property
    def program_headers(self) -> list[ProgramHeader]:
        return [
            ProgramHeader(
                index=index,
                type=view.p_type,
                type_name=_SEGMENT_TYPE_NAMES.get(view.p_type, unknown_name(view.p_type)),
                flags=view.p_flags,
                flags_text=_segment_flags(view.p_flags),
                offset=view.p_offset,
                vaddr=view.p_vaddr,
                paddr=view.p_paddr,
                file_size=view.p_filesz,
                mem_size=view.p_memsz,
                align=view.p_align,
            )
            for index, view in enumerate(self._program_header_views())
        ]

    @property
    def translation_ranges(self) -> list[TranslationRange]:
        """Byte-exact PT_LOAD mappings.

        Segments whose memory size differs from their file size (BSS
        padding) are left out, so the table is approximate by construction.
        """
        return [
            TranslationRange(file_offset=view.p_offset, vaddr=view.p_vaddr, size=view.p_filesz)
            for view in self._views_of_type(PT_LOAD)
            if view.p_filesz == view.p_memsz and view.p_filesz > 0
        ]

    def offset_to_va(self, offset: int) -> Optional[int]:
        for entry in self.translation_ranges:
            if entry.contains_offset(offset):
                return entry.vaddr + (offset - entry.file_offset)
        return None

    def va_to_offset(self, vaddr: int) -> Optional[int]:
        for entry in self.translation_ranges:
            if entry.contains_vaddr(vaddr):
                return entry.file_offset + (vaddr - entry.vaddr)
        return None

    @property
    def link_base(self) -> int:
        """Lowest page-aligned PT_LOAD address; the image base maps here."""
        starts = [
            view.p_vaddr & ~(view.p_align - 1) if view.p_align > 1 else view.p_vaddr
            for view in self._views_of_type(PT_LOAD)
        ]
        return min(starts) if starts else 0

    def vaddr_to_address(self, vaddr: int) -> Optional[int]:
        """Absolute address of a link-time virtual address, if it is reachable."""
        if not self.is_file_layout:
            return self.base + (vaddr - self.link_base)
        offset = self.va_to_offset(vaddr)
        return None if offset is None else self.base + offset

    def segment_address(self, view: TypedView) -> int:
        """Where the contents of a program header live in this layout."""
        if self.is_file_layout:
            return self.base + view.p_offset
        return self.base + (view.p_vaddr - self.link_base)

    @property
    def interpreter(self) -> Optional[str]:
        views = self._views_of_type(PT_INTERP)
        if not views:
            return None
        return self.guarded("interpreter", lambda: self.read_cstring(self.segment_address(views[0])))

    # ------------------------------------------------------------------ #
    #  Notes
    # ------------------------------------------------------------------ #

    def note_stream(self, view: TypedView) -> ChainStream[ElfNote]:
        """Walk the notes of one PT_NOTE segment."""
        start = self.segment_address(view)
        end = start + (view.p_filesz if self.is_file_layout else view.p_memsz)
        alignment = 8 if view.p_align == 8 else 4
        header_size = self.registry.size_of(StructKind.ELF_NHDR)
        memory = self.image.memory

        def step(address: int, index: int) -> Optional[tuple[ElfNote, Optional[int]]]:
            if address + header_size > end:
                return None
            header = self.instantiate(StructKind.ELF_NHDR, address)
            name_at = address + header_size
            raw_name = memory.read(name_at, header.n_namesz) if header.n_namesz else b""
            name = raw_name.split(b"\x00", 1)[0].decode("ascii", errors="replace")
            desc_at = name_at + _align(header.n_namesz, alignment)
            data = memory.read(desc_at, header.n_descsz) if header.n_descsz else b""
            note = ElfNote(
                name=name,
                type=header.n_type,
                type_name=note_type_name(name, header.n_type),
                data=data,
                value=self._decode_note(name, header.n_type, data),
            )
            return note, desc_at + _align(header.n_descsz, alignment)

        return ChainStream(
            start,
            step,
            end=end,
            limit=self.limits.max_notes,
            on_unreadable=self.degraded_handler("notes"),
        )

    def _decode_note(self, owner: str, note_type: int, data: bytes) -> Any:
        if owner == "GNU" and note_type == NT_GNU_BUILD_ID:
            return data.hex()
        if owner == "GNU" and note_type == NT_GNU_ABI_TAG and len(data) >= 16:
            os_code, major, minor, patch = struct.unpack(self.byteorder + "4I", data[:16])
            return f"{_ABI_TAG_OS.get(os_code, unknown_name(os_code))} {major}.{minor}.{patch}"
        if owner == "FDO" and note_type == NT_FDO_PACKAGING_METADATA:
            try:
                return json.loads(data.rstrip(b"\x00").decode("utf-8"))
            except ValueError as exc:
                self.logger.debug("FDO package metadata is not valid JSON: %s", exc)
                return None
        return None

    @property
    def notes(self) -> list[ElfNote]:
        found: list[ElfNote] = []
        for view in self._views_of_type(PT_NOTE):
            found.extend(self.note_stream(view))
        return found

    def find_note(self, owner: str, note_type: int) -> Optional[ElfNote]:
        for note in self.notes:
            if note.name == owner and note.type == note_type:
                return note
        return None

    @property
    def build_id(self) -> Optional[str]:
        """Hex-encoded GNU build ID."""
        note = self.find_note("GNU", NT_GNU_BUILD_ID)
        return note.value if note is not None else None

    @property
    def build_info(self) -> Optional[dict[str, Any]]:
        """FDO package metadata (``type``, ``name``, ``version``...)."""
        note = self.find_note("FDO", NT_FDO_PACKAGING_METADATA)
        if note is None or not isinstance(note.value, dict):
            return None
        return note.value

    # ------------------------------------------------------------------ #
    #  Dynamic section
    # ------------------------------------------------------------------ #

    def _dynamic_pairs(self) -> StrideStream[tuple[int, int]]:
        views = self._views_of_type(PT_DYNAMIC)
        if not views:
            return empty_stream()
        segment = views[0]
        kind = StructKind.ELF64_DYN if self.is_64bit else StructKind.ELF32_DYN
        stride = self.registry.size_of(kind)

        def read(address: int, index: int) -> Optional[tuple[int, int]]:
            entry = self.instantiate(kind, address)
            if entry.d_tag == DT_NULL:
                return None
            return entry.d_tag, entry.d_val

        return StrideStream(
            self.segment_address(segment),
            stride,
            read,
            count=segment.p_memsz // stride,
            limit=self.limits.max_dynamic_entries,
            on_unreadable=self.degraded_handler("dynamic"),
        )

    def _dynamic_pointer(self, value: int) -> Optional[int]:
        # The loader relocates some entries in place, so a mapped image may
        # already hold absolute addresses.
        if not self.is_file_layout and self.image.space.contains(value):
            return value
        return self.vaddr_to_address(value)

    @property
    def dynamic_entries(self) -> list[DynamicEntry]:
        pairs = list(self._dynamic_pairs())
        strtab: Optional[int] = None
        for tag, value in pairs:
            if tag == DT_STRTAB:
                strtab = self._dynamic_pointer(value)
                break

        entries: list[DynamicEntry] = []
        for tag, value in pairs:
            string = None
            if tag in _STRING_TAGS and strtab is not None:
                string = self.guarded("dynamic", lambda: self.read_cstring(strtab + value))
            entries.append(
                DynamicEntry(tag=tag, tag_name=dynamic_tag_name(tag), value=value, string=string)
            )
        return entries

    def _strings_for(self, tag: int) -> list[str]:
        return [
            entry.string
            for entry in self.dynamic_entries
            if entry.tag == tag and entry.string is not None
        ]

    @property
    def needed_libraries(self) -> list[str]:
        return self._strings_for(DT_NEEDED)

    @property
    def soname(self) -> Optional[str]:
        names = self._strings_for(DT_SONAME)
        return names[0] if names else None

    @property
    def search_paths(self) -> list[str]:
        """DT_RPATH and DT_RUNPATH entries, split on ``:``."""
        paths: list[str] = []
        for tag in (DT_RPATH, DT_RUNPATH):
            for value in self._strings_for(tag):
                paths.extend(part for part in value.split(":") if part)
        return paths

    # ------------------------------------------------------------------ #
    #  Runtime link map
    # ------------------------------------------------------------------ #

    def link_map(self) -> list[LinkMapEntry]:
        """Modules on the ``r_debug.r_map`` list of a live process image.

        Empty for files on disk, where DT_DEBUG is still zero.
        """
        debug = next((value for tag, value in self._dynamic_pairs() if tag == DT_DEBUG), 0)
        if debug == 0:
            return []
        return self.guarded("link map", lambda: self._walk_link_map(debug), default=[])

    def _walk_link_map(self, r_debug: int) -> list[LinkMapEntry]:
        if self.is_64bit:
            debug_kind, map_kind = StructKind.R_DEBUG64, StructKind.LINK_MAP64
        else:
            debug_kind, map_kind = StructKind.R_DEBUG32, StructKind.LINK_MAP32
        record = self.instantiate(debug_kind, r_debug)
        seen: set[int] = set()

        def step(address: int, index: int) -> Optional[tuple[LinkMapEntry, Optional[int]]]:
            if address in seen:
                return None
            seen.add(address)
            entry = self.instantiate(map_kind, address)
            name = self.read_cstring(entry.l_name) if entry.l_name else ""
            module = LinkMapEntry(
                name=name,
                base_address=entry.l_addr,
                dynamic_address=entry.l_ld,
                address=address,
            )
            return module, entry.l_next or None

        stream = ChainStream(
            record.r_map or None,
            step,
            limit=self.limits.max_link_map_entries,
            on_unreadable=self.degraded_handler("link map"),
        )
        return list(stream)
