"""
Structure Definitions
======================

The closed set of on-disk structures understood by the PE, ELF and
Mach-O parsers, as :class:`StructKind` members mapped to declarative
descriptors.  Layouts follow the platform headers field for field
(``winnt.h``, ``verrsrc.h``, ``elf.h``, ``link.h``, ``mach-o/loader.h``);
where a C compiler would insert alignment padding, an explicit padding
member is declared instead.

References:
    - Microsoft. (2024). PE Format. Microsoft Learn.
    - TIS Committee. (1995). ELF Specification v1.2.
    - Apple. mach-o/loader.h (cctools / xnu EXTERNAL_HEADERS).
"""

from __future__ import annotations

import enum

from imagelens.core.reflection import (
    StructRegistry,
    StructureDescriptor,
    bitfield,
    embed,
    field,
    nested,
    structure,
    union,
)


class StructKind(enum.Enum):
    """Every structure shape known to the parsers."""

    # PE / COFF
    IMAGE_DOS_HEADER = enum.auto()
    IMAGE_FILE_HEADER = enum.auto()
    IMAGE_DATA_DIRECTORY = enum.auto()
    IMAGE_OPTIONAL_HEADER32 = enum.auto()
    IMAGE_OPTIONAL_HEADER64 = enum.auto()
    IMAGE_SECTION_MISC = enum.auto()
    IMAGE_SECTION_HEADER = enum.auto()
    IMAGE_IMPORT_THUNK_UNION = enum.auto()
    IMAGE_IMPORT_DESCRIPTOR = enum.auto()
    IMAGE_DELAYLOAD_ATTRIBUTE_BITS = enum.auto()
    IMAGE_DELAYLOAD_ATTRIBUTES = enum.auto()
    IMAGE_DELAYLOAD_DESCRIPTOR = enum.auto()
    IMAGE_EXPORT_DIRECTORY = enum.auto()
    IMAGE_RESOURCE_DIRECTORY = enum.auto()
    IMAGE_RESOURCE_NAME_BITS = enum.auto()
    IMAGE_RESOURCE_NAME_UNION = enum.auto()
    IMAGE_RESOURCE_OFFSET_BITS = enum.auto()
    IMAGE_RESOURCE_OFFSET_UNION = enum.auto()
    IMAGE_RESOURCE_DIRECTORY_ENTRY = enum.auto()
    IMAGE_RESOURCE_DATA_ENTRY = enum.auto()
    IMAGE_DEBUG_DIRECTORY = enum.auto()
    GUID = enum.auto()
    CV_INFO_PDB70 = enum.auto()
    VS_FIXEDFILEINFO = enum.auto()
    VERSION_BLOCK_HEADER = enum.auto()

    # ELF
    ELF_IDENT = enum.auto()
    ELF32_EHDR = enum.auto()
    ELF64_EHDR = enum.auto()
    ELF32_PHDR = enum.auto()
    ELF64_PHDR = enum.auto()
    ELF_NHDR = enum.auto()
    ELF32_DYN = enum.auto()
    ELF64_DYN = enum.auto()
    R_DEBUG32 = enum.auto()
    R_DEBUG64 = enum.auto()
    LINK_MAP32 = enum.auto()
    LINK_MAP64 = enum.auto()

    # Mach-O
    MACH_HEADER = enum.auto()
    MACH_HEADER_64 = enum.auto()
    LOAD_COMMAND = enum.auto()
    SEGMENT_COMMAND = enum.auto()
    SEGMENT_COMMAND_64 = enum.auto()
    SECTION = enum.auto()
    SECTION_64 = enum.auto()
    UUID_COMMAND = enum.auto()
    BUILD_VERSION_COMMAND = enum.auto()
    BUILD_TOOL_VERSION = enum.auto()
    DYLIB = enum.auto()
    DYLIB_COMMAND = enum.auto()
    DYLINKER_COMMAND = enum.auto()
    RPATH_COMMAND = enum.auto()
    ENTRY_POINT_COMMAND = enum.auto()
    SOURCE_VERSION_COMMAND = enum.auto()
    DYLD_INFO_COMMAND = enum.auto()
    SYMTAB_COMMAND = enum.auto()
    DYSYMTAB_COMMAND = enum.auto()

    def __str__(self) -> str:
        return self.name


_U8 = "unsigned char"
_U16 = "unsigned short"
_U32 = "unsigned long"
_U64 = "unsigned __int64"


def _u32s(*names: str) -> list:
    return [field(name, "uint32_t") for name in names]


# ---------------------------------------------------------------------------
# PE / COFF
# ---------------------------------------------------------------------------

_PE_DEFINITIONS: dict[StructKind, StructureDescriptor] = {
    StructKind.IMAGE_DOS_HEADER: structure(
        field("e_magic", _U16),
        field("e_cblp", _U16),
        field("e_cp", _U16),
        field("e_crlc", _U16),
        field("e_cparhdr", _U16),
        field("e_minalloc", _U16),
        field("e_maxalloc", _U16),
        field("e_ss", _U16),
        field("e_sp", _U16),
        field("e_csum", _U16),
        field("e_ip", _U16),
        field("e_cs", _U16),
        field("e_lfarlc", _U16),
        field("e_ovno", _U16),
        field("e_res", _U16, 4),
        field("e_oemid", _U16),
        field("e_oeminfo", _U16),
        field("e_res2", _U16, 10),
        field("e_lfanew", "long"),
    ),
    StructKind.IMAGE_FILE_HEADER: structure(
        field("Machine", _U16),
        field("NumberOfSections", _U16),
        field("TimeDateStamp", _U32),
        field("PointerToSymbolTable", _U32),
        field("NumberOfSymbols", _U32),
        field("SizeOfOptionalHeader", _U16),
        field("Characteristics", _U16),
    ),
    StructKind.IMAGE_DATA_DIRECTORY: structure(
        field("VirtualAddress", _U32),
        field("Size", _U32),
    ),
    StructKind.IMAGE_OPTIONAL_HEADER32: structure(
        field("Magic", _U16),
        field("MajorLinkerVersion", _U8),
        field("MinorLinkerVersion", _U8),
        field("SizeOfCode", _U32),
        field("SizeOfInitializedData", _U32),
        field("SizeOfUninitializedData", _U32),
        field("AddressOfEntryPoint", _U32),
        field("BaseOfCode", _U32),
        field("BaseOfData", _U32),
        field("ImageBase", _U32),
        field("SectionAlignment", _U32),
        field("FileAlignment", _U32),
        field("MajorOperatingSystemVersion", _U16),
        field("MinorOperatingSystemVersion", _U16),
        field("MajorImageVersion", _U16),
        field("MinorImageVersion", _U16),
        field("MajorSubsystemVersion", _U16),
        field("MinorSubsystemVersion", _U16),
        field("Win32VersionValue", _U32),
        field("SizeOfImage", _U32),
        field("SizeOfHeaders", _U32),
        field("CheckSum", _U32),
        field("Subsystem", _U16),
        field("DllCharacteristics", _U16),
        field("SizeOfStackReserve", _U32),
        field("SizeOfStackCommit", _U32),
        field("SizeOfHeapReserve", _U32),
        field("SizeOfHeapCommit", _U32),
        field("LoaderFlags", _U32),
        field("NumberOfRvaAndSizes", _U32),
        nested("DataDirectory", StructKind.IMAGE_DATA_DIRECTORY, 16),
    ),
    StructKind.IMAGE_OPTIONAL_HEADER64: structure(
        field("Magic", _U16),
        field("MajorLinkerVersion", _U8),
        field("MinorLinkerVersion", _U8),
        field("SizeOfCode", _U32),
        field("SizeOfInitializedData", _U32),
        field("SizeOfUninitializedData", _U32),
        field("AddressOfEntryPoint", _U32),
        field("BaseOfCode", _U32),
        field("ImageBase", _U64),
        field("SectionAlignment", _U32),
        field("FileAlignment", _U32),
        field("MajorOperatingSystemVersion", _U16),
        field("MinorOperatingSystemVersion", _U16),
        field("MajorImageVersion", _U16),
        field("MinorImageVersion", _U16),
        field("MajorSubsystemVersion", _U16),
        field("MinorSubsystemVersion", _U16),
        field("Win32VersionValue", _U32),
        field("SizeOfImage", _U32),
        field("SizeOfHeaders", _U32),
        field("CheckSum", _U32),
        field("Subsystem", _U16),
        field("DllCharacteristics", _U16),
        field("SizeOfStackReserve", _U64),
        field("SizeOfStackCommit", _U64),
        field("SizeOfHeapReserve", _U64),
        field("SizeOfHeapCommit", _U64),
        field("LoaderFlags", _U32),
        field("NumberOfRvaAndSizes", _U32),
        nested("DataDirectory", StructKind.IMAGE_DATA_DIRECTORY, 16),
    ),
    StructKind.IMAGE_SECTION_MISC: union(
        field("PhysicalAddress", _U32),
        field("VirtualSize", _U32),
    ),
    StructKind.IMAGE_SECTION_HEADER: structure(
        field("Name", "char", 8),
        embed(StructKind.IMAGE_SECTION_MISC),
        field("VirtualAddress", _U32),
        field("SizeOfRawData", _U32),
        field("PointerToRawData", _U32),
        field("PointerToRelocations", _U32),
        field("PointerToLinenumbers", _U32),
        field("NumberOfRelocations", _U16),
        field("NumberOfLinenumbers", _U16),
        field("Characteristics", _U32),
    ),
    StructKind.IMAGE_IMPORT_THUNK_UNION: union(
        field("Characteristics", _U32),
        field("OriginalFirstThunk", _U32),
    ),
    StructKind.IMAGE_IMPORT_DESCRIPTOR: structure(
        embed(StructKind.IMAGE_IMPORT_THUNK_UNION),
        field("TimeDateStamp", _U32),
        field("ForwarderChain", _U32),
        field("Name", _U32),
        field("FirstThunk", _U32),
    ),
    StructKind.IMAGE_DELAYLOAD_ATTRIBUTE_BITS: structure(
        bitfield("RvaBased", _U32, 1),
        bitfield("ReservedAttributes", _U32, 31),
    ),
    StructKind.IMAGE_DELAYLOAD_ATTRIBUTES: union(
        field("AllAttributes", _U32),
        embed(StructKind.IMAGE_DELAYLOAD_ATTRIBUTE_BITS),
    ),
    StructKind.IMAGE_DELAYLOAD_DESCRIPTOR: structure(
        embed(StructKind.IMAGE_DELAYLOAD_ATTRIBUTES),
        field("DllNameRVA", _U32),
        field("ModuleHandleRVA", _U32),
        field("ImportAddressTableRVA", _U32),
        field("ImportNameTableRVA", _U32),
        field("BoundImportAddressTableRVA", _U32),
        field("UnloadInformationTableRVA", _U32),
        field("TimeDateStamp", _U32),
    ),
    StructKind.IMAGE_EXPORT_DIRECTORY: structure(
        field("Characteristics", _U32),
        field("TimeDateStamp", _U32),
        field("MajorVersion", _U16),
        field("MinorVersion", _U16),
        field("Name", _U32),
        field("Base", _U32),
        field("NumberOfFunctions", _U32),
        field("NumberOfNames", _U32),
        field("AddressOfFunctions", _U32),
        field("AddressOfNames", _U32),
        field("AddressOfNameOrdinals", _U32),
    ),
    StructKind.IMAGE_RESOURCE_DIRECTORY: structure(
        field("Characteristics", _U32),
        field("TimeDateStamp", _U32),
        field("MajorVersion", _U16),
        field("MinorVersion", _U16),
        field("NumberOfNamedEntries", _U16),
        field("NumberOfIdEntries", _U16),
    ),
    StructKind.IMAGE_RESOURCE_NAME_BITS: structure(
        bitfield("NameOffset", _U32, 31),
        bitfield("NameIsString", _U32, 1),
    ),
    StructKind.IMAGE_RESOURCE_NAME_UNION: union(
        embed(StructKind.IMAGE_RESOURCE_NAME_BITS),
        field("Name", _U32),
        field("Id", _U16),
    ),
    StructKind.IMAGE_RESOURCE_OFFSET_BITS: structure(
        bitfield("OffsetToDirectory", _U32, 31),
        bitfield("DataIsDirectory", _U32, 1),
    ),
    StructKind.IMAGE_RESOURCE_OFFSET_UNION: union(
        field("OffsetToData", _U32),
        embed(StructKind.IMAGE_RESOURCE_OFFSET_BITS),
    ),
    StructKind.IMAGE_RESOURCE_DIRECTORY_ENTRY: structure(
        embed(StructKind.IMAGE_RESOURCE_NAME_UNION),
        embed(StructKind.IMAGE_RESOURCE_OFFSET_UNION),
    ),
    StructKind.IMAGE_RESOURCE_DATA_ENTRY: structure(
        field("OffsetToData", _U32),
        field("Size", _U32),
        field("CodePage", _U32),
        field("Reserved", _U32),
    ),
    StructKind.IMAGE_DEBUG_DIRECTORY: structure(
        field("Characteristics", _U32),
        field("TimeDateStamp", _U32),
        field("MajorVersion", _U16),
        field("MinorVersion", _U16),
        field("Type", _U32),
        field("SizeOfData", _U32),
        field("AddressOfRawData", _U32),
        field("PointerToRawData", _U32),
    ),
    StructKind.GUID: structure(
        field("Data1", _U32),
        field("Data2", _U16),
        field("Data3", _U16),
        field("Data4", _U8, 8),
    ),
    StructKind.CV_INFO_PDB70: structure(
        field("CvSignature", _U32),
        nested("Signature", StructKind.GUID),
        field("Age", _U32),
    ),
    StructKind.VS_FIXEDFILEINFO: structure(
        *[
            field(name, _U32)
            for name in (
                "dwSignature",
                "dwStrucVersion",
                "dwFileVersionMS",
                "dwFileVersionLS",
                "dwProductVersionMS",
                "dwProductVersionLS",
                "dwFileFlagsMask",
                "dwFileFlags",
                "dwFileOS",
                "dwFileType",
                "dwFileSubtype",
                "dwFileDateMS",
                "dwFileDateLS",
            )
        ]
    ),
    StructKind.VERSION_BLOCK_HEADER: structure(
        field("wLength", _U16),
        field("wValueLength", _U16),
        field("wType", _U16),
    ),
}


# ---------------------------------------------------------------------------
# ELF
# ---------------------------------------------------------------------------

_ELF_DEFINITIONS: dict[StructKind, StructureDescriptor] = {
    StructKind.ELF_IDENT: structure(
        field("EI_MAG", "char", 4),
        field("EI_CLASS", "uint8_t"),
        field("EI_DATA", "uint8_t"),
        field("EI_VERSION", "uint8_t"),
        field("EI_OSABI", "uint8_t"),
        field("EI_ABIVERSION", "uint8_t"),
        field("EI_PAD", "char", 7),
    ),
    StructKind.ELF32_EHDR: structure(
        embed(StructKind.ELF_IDENT),
        field("e_type", "uint16_t"),
        field("e_machine", "uint16_t"),
        field("e_version", "uint32_t"),
        field("e_entry", "uint32_t"),
        field("e_phoff", "uint32_t"),
        field("e_shoff", "uint32_t"),
        field("e_flags", "uint32_t"),
        field("e_ehsize", "uint16_t"),
        field("e_phentsize", "uint16_t"),
        field("e_phnum", "uint16_t"),
        field("e_shentsize", "uint16_t"),
        field("e_shnum", "uint16_t"),
        field("e_shstrndx", "uint16_t"),
    ),
    StructKind.ELF64_EHDR: structure(
        embed(StructKind.ELF_IDENT),
        field("e_type", "uint16_t"),
        field("e_machine", "uint16_t"),
        field("e_version", "uint32_t"),
        field("e_entry", "uint64_t"),
        field("e_phoff", "uint64_t"),
        field("e_shoff", "uint64_t"),
        field("e_flags", "uint32_t"),
        field("e_ehsize", "uint16_t"),
        field("e_phentsize", "uint16_t"),
        field("e_phnum", "uint16_t"),
        field("e_shentsize", "uint16_t"),
        field("e_shnum", "uint16_t"),
        field("e_shstrndx", "uint16_t"),
    ),
    StructKind.ELF32_PHDR: structure(
        *_u32s("p_type", "p_offset", "p_vaddr", "p_paddr",
               "p_filesz", "p_memsz", "p_flags", "p_align"),
    ),
    StructKind.ELF64_PHDR: structure(
        field("p_type", "uint32_t"),
        field("p_flags", "uint32_t"),
        field("p_offset", "uint64_t"),
        field("p_vaddr", "uint64_t"),
        field("p_paddr", "uint64_t"),
        field("p_filesz", "uint64_t"),
        field("p_memsz", "uint64_t"),
        field("p_align", "uint64_t"),
    ),
    StructKind.ELF_NHDR: structure(*_u32s("n_namesz", "n_descsz", "n_type")),
    StructKind.ELF32_DYN: structure(
        field("d_tag", "int32_t"),
        field("d_val", "uint32_t"),
    ),
    StructKind.ELF64_DYN: structure(
        field("d_tag", "int64_t"),
        field("d_val", "uint64_t"),
    ),
    StructKind.R_DEBUG32: structure(
        field("r_version", "int32_t"),
        field("r_map", "uint32_t"),
        field("r_brk", "uint32_t"),
        field("r_state", "int32_t"),
        field("r_ldbase", "uint32_t"),
    ),
    StructKind.R_DEBUG64: structure(
        field("r_version", "int32_t"),
        field("r_pad0", "uint32_t"),
        field("r_map", "uint64_t"),
        field("r_brk", "uint64_t"),
        field("r_state", "int32_t"),
        field("r_pad1", "uint32_t"),
        field("r_ldbase", "uint64_t"),
    ),
    StructKind.LINK_MAP32: structure(
        *_u32s("l_addr", "l_name", "l_ld", "l_next", "l_prev"),
    ),
    StructKind.LINK_MAP64: structure(
        *[field(name, "uint64_t") for name in ("l_addr", "l_name", "l_ld", "l_next", "l_prev")],
    ),
}


# ---------------------------------------------------------------------------
# Mach-O
# ---------------------------------------------------------------------------

_MACHO_DEFINITIONS: dict[StructKind, StructureDescriptor] = {
    StructKind.MACH_HEADER: structure(
        field("magic", "uint32_t"),
        field("cputype", "int32_t"),
        field("cpusubtype", "int32_t"),
        *_u32s("filetype", "ncmds", "sizeofcmds", "flags"),
    ),
    StructKind.MACH_HEADER_64: structure(
        field("magic", "uint32_t"),
        field("cputype", "int32_t"),
        field("cpusubtype", "int32_t"),
        *_u32s("filetype", "ncmds", "sizeofcmds", "flags", "reserved"),
    ),
    StructKind.LOAD_COMMAND: structure(*_u32s("cmd", "cmdsize")),
    StructKind.SEGMENT_COMMAND: structure(
        embed(StructKind.LOAD_COMMAND),
        field("segname", "char", 16),
        *_u32s("vmaddr", "vmsize", "fileoff", "filesize"),
        field("maxprot", "int32_t"),
        field("initprot", "int32_t"),
        *_u32s("nsects", "flags"),
    ),
    StructKind.SEGMENT_COMMAND_64: structure(
        embed(StructKind.LOAD_COMMAND),
        field("segname", "char", 16),
        field("vmaddr", "uint64_t"),
        field("vmsize", "uint64_t"),
        field("fileoff", "uint64_t"),
        field("filesize", "uint64_t"),
        field("maxprot", "int32_t"),
        field("initprot", "int32_t"),
        *_u32s("nsects", "flags"),
    ),
    StructKind.SECTION: structure(
        field("sectname", "char", 16),
        field("segname", "char", 16),
        *_u32s("addr", "size", "offset", "align", "reloff", "nreloc",
               "flags", "reserved1", "reserved2"),
    ),
    StructKind.SECTION_64: structure(
        field("sectname", "char", 16),
        field("segname", "char", 16),
        field("addr", "uint64_t"),
        field("size", "uint64_t"),
        *_u32s("offset", "align", "reloff", "nreloc", "flags",
               "reserved1", "reserved2", "reserved3"),
    ),
    StructKind.UUID_COMMAND: structure(
        embed(StructKind.LOAD_COMMAND),
        field("uuid", "char", 16),
    ),
    StructKind.BUILD_VERSION_COMMAND: structure(
        embed(StructKind.LOAD_COMMAND),
        *_u32s("platform", "minos", "sdk", "ntools"),
    ),
    StructKind.BUILD_TOOL_VERSION: structure(*_u32s("tool", "version")),
    StructKind.DYLIB: structure(
        *_u32s("name", "timestamp", "current_version", "compatibility_version"),
    ),
    StructKind.DYLIB_COMMAND: structure(
        embed(StructKind.LOAD_COMMAND),
        nested("dylib", StructKind.DYLIB),
    ),
    StructKind.DYLINKER_COMMAND: structure(
        embed(StructKind.LOAD_COMMAND),
        field("name", "uint32_t"),
    ),
    StructKind.RPATH_COMMAND: structure(
        embed(StructKind.LOAD_COMMAND),
        field("path", "uint32_t"),
    ),
    StructKind.ENTRY_POINT_COMMAND: structure(
        embed(StructKind.LOAD_COMMAND),
        field("entryoff", "uint64_t"),
        field("stacksize", "uint64_t"),
    ),
    StructKind.SOURCE_VERSION_COMMAND: structure(
        embed(StructKind.LOAD_COMMAND),
        field("version", "uint64_t"),
    ),
    StructKind.DYLD_INFO_COMMAND: structure(
        embed(StructKind.LOAD_COMMAND),
        *_u32s("rebase_off", "rebase_size", "bind_off", "bind_size",
               "weak_bind_off", "weak_bind_size", "lazy_bind_off",
               "lazy_bind_size", "export_off", "export_size"),
    ),
    StructKind.SYMTAB_COMMAND: structure(
        embed(StructKind.LOAD_COMMAND),
        *_u32s("symoff", "nsyms", "stroff", "strsize"),
    ),
    StructKind.DYSYMTAB_COMMAND: structure(
        embed(StructKind.LOAD_COMMAND),
        *_u32s("ilocalsym", "nlocalsym", "iextdefsym", "nextdefsym",
               "iundefsym", "nundefsym", "tocoff", "ntoc", "modtaboff",
               "nmodtab", "extrefsymoff", "nextrefsyms", "indirectsymoff",
               "nindirectsyms", "extreloff", "nextrel", "locreloff",
               "nlocrel"),
    ),
}


DEFINITIONS: dict[StructKind, StructureDescriptor] = {
    **_PE_DEFINITIONS,
    **_ELF_DEFINITIONS,
    **_MACHO_DEFINITIONS,
}


def build_registry() -> StructRegistry:
    """A fresh registry holding every known structure kind."""
    return StructRegistry(DEFINITIONS)
