"""
ImageLens Data Models
======================

Pydantic value models for the leaf records produced by the PE, ELF and
Mach-O parsers, plus the :class:`ImageSummary` used by the console and
JSON reports.

Tables whose contents are read on demand (resource trees, import
modules, load commands carrying sections) are plain parser objects; the
records they yield are the models defined here.

References:
    - Microsoft. (2024). PE Format. Microsoft Learn.
    - TIS Committee. (1995). Executable and Linkable Format (ELF) Specification.
    - Apple. (2023). Mach-O Programming Topics / mach-o/loader.h.
"""

from __future__ import annotations

import enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class ImageClassification(str, enum.Enum):
    """Container format decided from an image's leading magic bytes."""
    PE = "pe"
    ELF = "elf"
    MACHO = "macho"
    UNRECOGNIZED = "unrecognized"


# ---------------------------------------------------------------------------
# PE records
# ---------------------------------------------------------------------------

class DataDirectory(BaseModel):
    """One of the sixteen optional-header data directories.

    Attributes:
        index: Directory number (0 = export ... 14 = COM descriptor).
        name: Well-known directory name.
        virtual_address: RVA of the table, 0 when absent.
        size: Size of the table in bytes.
    """
    index: int = 0
    name: str = ""
    virtual_address: int = 0
    size: int = 0

    @property
    def present(self) -> bool:
        return self.virtual_address != 0


class SectionHeader(BaseModel):
    """A PE section-table entry."""
    name: str = ""
    virtual_address: int = 0
    virtual_size: int = 0
    raw_offset: int = 0
    raw_size: int = 0
    characteristics: int = 0
    flags: str = ""


class ImportedFunction(BaseModel):
    """Common shape of a single import thunk.

    Attributes:
        kind: ``named``, ``ordinal`` or ``bound``.
        thunk_address: Address of the thunk slot that produced this entry.
        bound_address: Value of the matching slot in the bound (IAT)
            table, ``None`` when unreadable or absent.
        bound_symbol: Symbol at *bound_address*, when a symbol lookup is
            available and knows the address.
    """
    kind: str = ""
    thunk_address: int = 0
    bound_address: Optional[int] = None
    bound_symbol: Optional[str] = None


class NamedImport(ImportedFunction):
    kind: Literal["named"] = "named"
    name: str = ""
    hint: int = 0


class OrdinalImport(ImportedFunction):
    kind: Literal["ordinal"] = "ordinal"
    ordinal: int = 0


class BoundImport(ImportedFunction):
    kind: Literal["bound"] = "bound"
    address: int = 0


class ExportedFunction(BaseModel):
    """An export-address-table entry.

    Attributes:
        ordinal: Index into the export address table.
        name: Exported name, ``None`` for ordinal-only exports.
        address: Absolute address of the code.
        symbol: Symbol at *address* from the optional symbol lookup.
    """
    ordinal: int = 0
    name: Optional[str] = None
    address: int = 0
    symbol: Optional[str] = None

    @property
    def is_named(self) -> bool:
        return self.name is not None


class DebugDirectoryEntry(BaseModel):
    """One ``IMAGE_DEBUG_DIRECTORY`` record."""
    type: int = 0
    type_name: str = ""
    timestamp: int = 0
    major_version: int = 0
    minor_version: int = 0
    size: int = 0
    address_of_raw_data: int = 0
    pointer_to_raw_data: int = 0


class RsdsInfo(BaseModel):
    """Decoded ``RSDS`` (PDB 7.0) CodeView record."""
    guid: str = ""
    age: int = 0
    pdb_path: str = ""


class CodeViewInfo(BaseModel):
    """The first CodeView debug entry of an image.

    Attributes:
        signature: Four-character CodeView signature (``RSDS``, ``NB10``...).
        data: Decoded payload; only ``RSDS`` records are decoded.
    """
    signature: str = ""
    data: Optional[RsdsInfo] = None


class TextResource(BaseModel):
    """A resource payload that holds text (manifests, XML, registry scripts)."""
    encoding: str = "utf-8"
    text: str = ""

    @property
    def lines(self) -> list[str]:
        return [line.replace("\r", "") for line in self.text.split("\n")]


class FixedVersionInfo(BaseModel):
    """Interpretation of a ``VS_FIXEDFILEINFO`` block."""
    signature: int = 0
    struct_version: int = 0
    file_version: str = ""
    product_version: str = ""
    file_flags: list[str] = Field(default_factory=list)
    os: str = ""
    file_type: str = ""
    file_subtype: str = ""
    file_date: int = 0


# ---------------------------------------------------------------------------
# ELF records
# ---------------------------------------------------------------------------

class ProgramHeader(BaseModel):
    """An ELF program-header entry."""
    index: int = 0
    type: int = 0
    type_name: str = ""
    flags: int = 0
    flags_text: str = ""
    offset: int = 0
    vaddr: int = 0
    paddr: int = 0
    file_size: int = 0
    mem_size: int = 0
    align: int = 0


class TranslationRange(BaseModel):
    """A byte-for-byte file-offset to virtual-address mapping."""
    file_offset: int = 0
    vaddr: int = 0
    size: int = 0

    def contains_offset(self, offset: int) -> bool:
        return self.file_offset <= offset < self.file_offset + self.size

    def contains_vaddr(self, vaddr: int) -> bool:
        return self.vaddr <= vaddr < self.vaddr + self.size


class ElfNote(BaseModel):
    """An ELF note record; *value* holds the decoded form when known."""
    name: str = ""
    type: int = 0
    type_name: str = ""
    data: bytes = b""
    value: Any = None


class DynamicEntry(BaseModel):
    """A ``.dynamic`` tag/value pair."""
    tag: int = 0
    tag_name: str = ""
    value: int = 0
    string: Optional[str] = None


class LinkMapEntry(BaseModel):
    """A loaded module reached through ``r_debug.r_map``."""
    name: str = ""
    base_address: int = 0
    dynamic_address: int = 0
    address: int = 0


# ---------------------------------------------------------------------------
# Mach-O records
# ---------------------------------------------------------------------------

class MachOSection(BaseModel):
    """A section record owned by a segment load command."""
    sectname: str = ""
    segname: str = ""
    addr: int = 0
    size: int = 0
    offset: int = 0
    align: int = 0
    reloff: int = 0
    nreloc: int = 0
    flags: int = 0


class BuildTool(BaseModel):
    tool: int = 0
    tool_name: str = ""
    version: str = ""


# ---------------------------------------------------------------------------
# Summary (console / JSON report)
# ---------------------------------------------------------------------------

class RegionSummary(BaseModel):
    """A section, segment or program header reduced to its extent."""
    name: str = ""
    address: int = 0
    size: int = 0
    file_offset: int = 0
    file_size: int = 0
    flags: str = ""


class ImageSummary(BaseModel):
    """Format-neutral overview of one parsed image.

    Attributes:
        name: Display name of the image.
        format: Container classification.
        bits: Address width (32 or 64).
        machine: Target machine/CPU name.
        image_type: Executable, library, object, etc.
        entry_point: Entry point address, when the format records one.
        identifier: Build ID, PDB GUID/age, or Mach-O UUID.
        regions: Sections or segments.
        libraries: Imported/needed/linked libraries.
        exports: Number of exported functions (PE only).
        details: Additional format-specific key/value facts.
        degraded: Auxiliary tables that were unreadable.
    """
    name: str = ""
    format: ImageClassification = ImageClassification.UNRECOGNIZED
    bits: int = 0
    machine: str = ""
    image_type: str = ""
    entry_point: Optional[int] = None
    identifier: Optional[str] = None
    regions: list[RegionSummary] = Field(default_factory=list)
    libraries: list[str] = Field(default_factory=list)
    exports: int = 0
    details: dict[str, Any] = Field(default_factory=dict)
    degraded: list[str] = Field(default_factory=list)
