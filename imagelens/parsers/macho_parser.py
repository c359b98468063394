"""
Mach-O Image Parser
====================

Reflection-based parser for the Mach-O object format used by macOS, iOS
and the other Apple platforms.  Thin 32-bit and 64-bit little-endian
images are supported (the two magics the format detector recognizes);
fat/universal wrappers are not unpacked.

Every load command is first read through its common ``{cmd, cmdsize}``
prefix, then re-read under the shape registered for its command type.
Unrecognized commands stay generic :class:`LoadCommand` objects exposing
only the prefix.

References:
    - Apple. mach-o/loader.h (xnu EXTERNAL_HEADERS/mach-o/loader.h).
    - Apple. (2009). OS X ABI Mach-O File Format Reference.
    - Levin, J. (2017). *OS Internals, Volume I: User Mode*. Ch. 6.
"""

from __future__ import annotations

from typing import Iterator, Optional

from imagelens.core.errors import MalformedHeaderError, unknown_name
from imagelens.core.models import BuildTool, ImageClassification, MachOSection
from imagelens.core.reflection import TypedView
from imagelens.core.streams import ChainStream, StrideStream
from imagelens.parsers.base import ParsedImage
from imagelens.parsers.structures import StructKind


# ---------------------------------------------------------------------------
# Mach-O Constants
# ---------------------------------------------------------------------------

MH_MAGIC: int = 0xFEEDFACE
MH_MAGIC_64: int = 0xFEEDFACF

CPU_ARCH_ABI64: int = 0x01000000
CPU_ARCH_ABI64_32: int = 0x02000000

_CPU_NAMES: dict[int, str] = {
    7: "x86",
    7 | CPU_ARCH_ABI64: "x86_64",
    12: "ARM",
    12 | CPU_ARCH_ABI64: "ARM64",
    12 | CPU_ARCH_ABI64_32: "ARM64_32",
    18: "PowerPC",
    18 | CPU_ARCH_ABI64: "PowerPC64",
}

_FILE_TYPE_NAMES: dict[int, str] = {
    1: "OBJECT",
    2: "EXECUTE",
    3: "FVMLIB",
    4: "CORE",
    5: "PRELOAD",
    6: "DYLIB",
    7: "DYLINKER",
    8: "BUNDLE",
    9: "DYLIB_STUB",
    10: "DSYM",
    11: "KEXT_BUNDLE",
    12: "FILESET",
}

LC_REQ_DYLD: int = 0x80000000

LC_SEGMENT: int = 0x1
LC_SYMTAB: int = 0x2
LC_DYSYMTAB: int = 0xB
LC_LOAD_DYLIB: int = 0xC
LC_ID_DYLIB: int = 0xD
LC_LOAD_DYLINKER: int = 0xE
LC_ID_DYLINKER: int = 0xF
LC_LOAD_WEAK_DYLIB: int = 0x18 | LC_REQ_DYLD
LC_SEGMENT_64: int = 0x19
LC_UUID: int = 0x1B
LC_RPATH: int = 0x1C | LC_REQ_DYLD
LC_CODE_SIGNATURE: int = 0x1D
LC_REEXPORT_DYLIB: int = 0x1F | LC_REQ_DYLD
LC_LAZY_LOAD_DYLIB: int = 0x20
LC_DYLD_INFO: int = 0x22
LC_DYLD_INFO_ONLY: int = 0x22 | LC_REQ_DYLD
LC_VERSION_MIN_MACOSX: int = 0x24
LC_FUNCTION_STARTS: int = 0x26
LC_MAIN: int = 0x28 | LC_REQ_DYLD
LC_DATA_IN_CODE: int = 0x29
LC_SOURCE_VERSION: int = 0x2A
LC_ENCRYPTION_INFO_64: int = 0x2C
LC_BUILD_VERSION: int = 0x32
LC_DYLD_EXPORTS_TRIE: int = 0x33 | LC_REQ_DYLD
LC_DYLD_CHAINED_FIXUPS: int = 0x34 | LC_REQ_DYLD

_COMMAND_NAMES: dict[int, str] = {
    LC_SEGMENT: "LC_SEGMENT",
    LC_SYMTAB: "LC_SYMTAB",
    LC_DYSYMTAB: "LC_DYSYMTAB",
    LC_LOAD_DYLIB: "LC_LOAD_DYLIB",
    LC_ID_DYLIB: "LC_ID_DYLIB",
    LC_LOAD_DYLINKER: "LC_LOAD_DYLINKER",
    LC_ID_DYLINKER: "LC_ID_DYLINKER",
    LC_LOAD_WEAK_DYLIB: "LC_LOAD_WEAK_DYLIB",
    LC_SEGMENT_64: "LC_SEGMENT_64",
    LC_UUID: "LC_UUID",
    LC_RPATH: "LC_RPATH",
    LC_CODE_SIGNATURE: "LC_CODE_SIGNATURE",
    LC_REEXPORT_DYLIB: "LC_REEXPORT_DYLIB",
    LC_LAZY_LOAD_DYLIB: "LC_LAZY_LOAD_DYLIB",
    LC_DYLD_INFO: "LC_DYLD_INFO",
    LC_DYLD_INFO_ONLY: "LC_DYLD_INFO_ONLY",
    LC_VERSION_MIN_MACOSX: "LC_VERSION_MIN_MACOSX",
    LC_FUNCTION_STARTS: "LC_FUNCTION_STARTS",
    LC_MAIN: "LC_MAIN",
    LC_DATA_IN_CODE: "LC_DATA_IN_CODE",
    LC_SOURCE_VERSION: "LC_SOURCE_VERSION",
    LC_ENCRYPTION_INFO_64: "LC_ENCRYPTION_INFO_64",
    LC_BUILD_VERSION: "LC_BUILD_VERSION",
    LC_DYLD_EXPORTS_TRIE: "LC_DYLD_EXPORTS_TRIE",
    LC_DYLD_CHAINED_FIXUPS: "LC_DYLD_CHAINED_FIXUPS",
}

_PLATFORM_NAMES: dict[int, str] = {
    1: "macOS",
    2: "iOS",
    3: "tvOS",
    4: "watchOS",
    5: "bridgeOS",
    6: "Mac Catalyst",
    7: "iOS Simulator",
    8: "tvOS Simulator",
    9: "watchOS Simulator",
    10: "DriverKit",
    11: "visionOS",
    12: "visionOS Simulator",
}

_TOOL_NAMES: dict[int, str] = {1: "clang", 2: "swift", 3: "ld", 4: "lld"}

_DYLIB_LOADS: frozenset[int] = frozenset(
    {LC_LOAD_DYLIB, LC_LOAD_WEAK_DYLIB, LC_REEXPORT_DYLIB, LC_LAZY_LOAD_DYLIB}
)


def command_name(cmd: int) -> str:
    return _COMMAND_NAMES.get(cmd, unknown_name(cmd))


def format_version(packed: int) -> str:
    """``xxxx.yy.zz`` nibble-packed version as used by dylib and build commands."""
    return f"{packed >> 16}.{(packed >> 8) & 0xFF}.{packed & 0xFF}"


def _fixed_name(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("ascii", errors="replace")


# ---------------------------------------------------------------------------
# Load commands
# ---------------------------------------------------------------------------

class LoadCommand:
    """A load command seen through its common prefix.

    Subclasses set ``shape`` to the structure the command is re-read as;
    ``view`` is then that specific view, otherwise the prefix itself.
    """

    shape: Optional[StructKind] = None

    def __init__(self, macho: MachOImage, view: TypedView) -> None:
        self._macho = macho
        self.view = view

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} @0x{self.address:x}>"

    @property
    def address(self) -> int:
        return self.view.address

    @property
    def cmd(self) -> int:
        return self.view.cmd

    @property
    def cmdsize(self) -> int:
        return self.view.cmdsize

    @property
    def name(self) -> str:
        return command_name(self.cmd)

    def _lc_str(self, offset: int) -> str:
        """Read an ``lc_str`` stored *offset* bytes into the command."""
        if offset <= 0 or offset >= self.cmdsize:
            return ""
        limit = min(self.cmdsize - offset, self._macho.limits.max_string_length)
        return self._macho.image.memory.read_string(self.address + offset, max_length=limit)


class SegmentCommand(LoadCommand):
    """``LC_SEGMENT`` / ``LC_SEGMENT_64`` and the sections that follow it."""

    @property
    def is_64bit(self) -> bool:
        return self.cmd == LC_SEGMENT_64

    @property
    def segname(self) -> str:
        return _fixed_name(self.view.segname)

    @property
    def section_stream(self) -> StrideStream[MachOSection]:
        kind = StructKind.SECTION_64 if self.is_64bit else StructKind.SECTION
        stride = self._macho.registry.size_of(kind)
        room = max(self.cmdsize - self.view.total_size, 0) // stride

        def read(address: int, index: int) -> MachOSection:
            section = self._macho.instantiate(kind, address)
            return MachOSection(
                sectname=_fixed_name(section.sectname),
                segname=_fixed_name(section.segname),
                addr=section.addr,
                size=section.size,
                offset=section.offset,
                align=section.align,
                reloff=section.reloff,
                nreloc=section.nreloc,
                flags=section.flags,
            )

        return StrideStream(
            self.address + self.view.total_size,
            stride,
            read,
            count=min(self.view.nsects, room),
            on_unreadable=self._macho.degraded_handler("sections"),
        )

    @property
    def sections(self) -> list[MachOSection]:
        return list(self.section_stream)


class UuidCommand(LoadCommand):
    @property
    def uuid(self) -> str:
        raw = bytes(self.view.uuid).hex().upper()
        return f"{raw[:8]}-{raw[8:12]}-{raw[12:16]}-{raw[16:20]}-{raw[20:]}"


class BuildVersionCommand(LoadCommand):
    """``LC_BUILD_VERSION`` followed by ``ntools`` tool records."""

    @property
    def platform(self) -> str:
        code = self.view.platform
        return _PLATFORM_NAMES.get(code, unknown_name(code))

    @property
    def minos(self) -> str:
        return format_version(self.view.minos)

    @property
    def sdk(self) -> str:
        return format_version(self.view.sdk)

    @property
    def tool_stream(self) -> StrideStream[BuildTool]:
        stride = self._macho.registry.size_of(StructKind.BUILD_TOOL_VERSION)

        def read(address: int, index: int) -> BuildTool:
            record = self._macho.instantiate(StructKind.BUILD_TOOL_VERSION, address)
            return BuildTool(
                tool=record.tool,
                tool_name=_TOOL_NAMES.get(record.tool, unknown_name(record.tool)),
                version=format_version(record.version),
            )

        return StrideStream(
            self.address + self.view.total_size,
            stride,
            read,
            count=self.view.ntools,
            on_unreadable=self._macho.degraded_handler("build tools"),
        )

    @property
    def tools(self) -> list[BuildTool]:
        return list(self.tool_stream)


class DylibCommand(LoadCommand):
    """Library load, weak load, re-export, lazy load and ``LC_ID_DYLIB``."""

    @property
    def library(self) -> str:
        return self._lc_str(self.view.dylib.name)

    @property
    def timestamp(self) -> int:
        return self.view.dylib.timestamp

    @property
    def current_version(self) -> str:
        return format_version(self.view.dylib.current_version)

    @property
    def compatibility_version(self) -> str:
        return format_version(self.view.dylib.compatibility_version)


class DylinkerCommand(LoadCommand):
    @property
    def path(self) -> str:
        return self._lc_str(self.view.name)


class RpathCommand(LoadCommand):
    @property
    def path(self) -> str:
        return self._lc_str(self.view.path)


class EntryPointCommand(LoadCommand):
    @property
    def entry_offset(self) -> int:
        return self.view.entryoff

    @property
    def stack_size(self) -> int:
        return self.view.stacksize


class SourceVersionCommand(LoadCommand):
    @property
    def version(self) -> str:
        """``A.B.C.D.E`` packed as a24.b10.c10.d10.e10."""
        packed = self.view.version
        parts = [packed >> 40]
        parts.extend((packed >> shift) & 0x3FF for shift in (30, 20, 10, 0))
        return ".".join(str(part) for part in parts)


class DyldInfoCommand(LoadCommand):
    pass


class SymtabCommand(LoadCommand):
    @property
    def symbol_count(self) -> int:
        return self.view.nsyms


class DysymtabCommand(LoadCommand):
    pass


_COMMAND_SHAPES: dict[int, tuple[type[LoadCommand], StructKind]] = {
    LC_SEGMENT: (SegmentCommand, StructKind.SEGMENT_COMMAND),
    LC_SEGMENT_64: (SegmentCommand, StructKind.SEGMENT_COMMAND_64),
    LC_UUID: (UuidCommand, StructKind.UUID_COMMAND),
    LC_BUILD_VERSION: (BuildVersionCommand, StructKind.BUILD_VERSION_COMMAND),
    LC_LOAD_DYLIB: (DylibCommand, StructKind.DYLIB_COMMAND),
    LC_LOAD_WEAK_DYLIB: (DylibCommand, StructKind.DYLIB_COMMAND),
    LC_REEXPORT_DYLIB: (DylibCommand, StructKind.DYLIB_COMMAND),
    LC_LAZY_LOAD_DYLIB: (DylibCommand, StructKind.DYLIB_COMMAND),
    LC_ID_DYLIB: (DylibCommand, StructKind.DYLIB_COMMAND),
    LC_LOAD_DYLINKER: (DylinkerCommand, StructKind.DYLINKER_COMMAND),
    LC_ID_DYLINKER: (DylinkerCommand, StructKind.DYLINKER_COMMAND),
    LC_RPATH: (RpathCommand, StructKind.RPATH_COMMAND),
    LC_MAIN: (EntryPointCommand, StructKind.ENTRY_POINT_COMMAND),
    LC_SOURCE_VERSION: (SourceVersionCommand, StructKind.SOURCE_VERSION_COMMAND),
    LC_DYLD_INFO: (DyldInfoCommand, StructKind.DYLD_INFO_COMMAND),
    LC_DYLD_INFO_ONLY: (DyldInfoCommand, StructKind.DYLD_INFO_COMMAND),
    LC_SYMTAB: (SymtabCommand, StructKind.SYMTAB_COMMAND),
    LC_DYSYMTAB: (DysymtabCommand, StructKind.DYSYMTAB_COMMAND),
}


# ---------------------------------------------------------------------------
# Mach-O image
# ---------------------------------------------------------------------------

class MachOImage(ParsedImage):
    """A thin little-endian Mach-O image read through the reflection engine."""

    format_name = "Mach-O"
    classification = ImageClassification.MACHO

    @property
    def header(self) -> TypedView:
        header = self.instantiate(StructKind.MACH_HEADER, self.base)
        if header.magic == MH_MAGIC:
            return header
        if header.magic == MH_MAGIC_64:
            return self.instantiate(StructKind.MACH_HEADER_64, self.base)
        raise MalformedHeaderError(
            f"Unrecognized Mach-O magic 0x{header.magic:08x}", self.image.name
        )

    def validate(self) -> None:
        self.header

    @property
    def is_64bit(self) -> bool:
        return self.header.magic == MH_MAGIC_64

    @property
    def bits(self) -> int:
        return 64 if self.is_64bit else 32

    @property
    def cpu_type(self) -> str:
        code = self.header.cputype
        return _CPU_NAMES.get(code, unknown_name(code & 0xFFFFFFFF))

    @property
    def file_type(self) -> str:
        code = self.header.filetype
        return _FILE_TYPE_NAMES.get(code, unknown_name(code))

    # ------------------------------------------------------------------ #
    #  Load commands
    # ------------------------------------------------------------------ #

    def _command_at(self, prefix: TypedView) -> LoadCommand:
        shape = _COMMAND_SHAPES.get(prefix.cmd)
        if shape is None:
            return LoadCommand(self, prefix)
        command_class, kind = shape
        if prefix.cmdsize < self.registry.size_of(kind):
            self.logger.debug(
                "%s at 0x%x is shorter than its structure, keeping the prefix only",
                command_name(prefix.cmd), prefix.address,
            )
            return LoadCommand(self, prefix)
        return command_class(self, self.instantiate(kind, prefix.address))

    @property
    def load_commands(self) -> ChainStream[LoadCommand]:
        """Load commands in file order.

        The walk stops after ``ncmds`` commands or when the next command
        would not fit in the remaining ``sizeofcmds`` bytes.
        """
        header = self.header
        start = header.address + header.total_size
        end = start + header.sizeofcmds
        prefix_size = self.registry.size_of(StructKind.LOAD_COMMAND)

        def step(address: int, index: int) -> Optional[tuple[LoadCommand, Optional[int]]]:
            if address + prefix_size > end:
                return None
            prefix = self.instantiate(StructKind.LOAD_COMMAND, address)
            if prefix.cmdsize < prefix_size or address + prefix.cmdsize > end:
                self.logger.debug(
                    "Load command %d at 0x%x has invalid size %d", index, address, prefix.cmdsize
                )
                return None
            return self._command_at(prefix), address + prefix.cmdsize

        return ChainStream(
            start,
            step,
            count=header.ncmds,
            end=end,
            limit=self.limits.max_load_commands,
            on_unreadable=self.degraded_handler("load commands"),
        )

    def commands_of(self, command_class: type[LoadCommand]) -> Iterator[LoadCommand]:
        return (cmd for cmd in self.load_commands if isinstance(cmd, command_class))

    def segments(self) -> list[SegmentCommand]:
        return list(self.commands_of(SegmentCommand))

    @property
    def uuid(self) -> Optional[str]:
        command = next(self.commands_of(UuidCommand), None)
        return command.uuid if command is not None else None

    def dylibs(self) -> list[str]:
        """Libraries this image links against, in load-command order."""
        return [
            cmd.library
            for cmd in self.commands_of(DylibCommand)
            if cmd.cmd in _DYLIB_LOADS
        ]

    @property
    def install_name(self) -> Optional[str]:
        for cmd in self.commands_of(DylibCommand):
            if cmd.cmd == LC_ID_DYLIB:
                return cmd.library
        return None

    @property
    def build_version(self) -> Optional[BuildVersionCommand]:
        return next(self.commands_of(BuildVersionCommand), None)

    @property
    def dylinker(self) -> Optional[str]:
        command = next(self.commands_of(DylinkerCommand), None)
        return command.path if command is not None else None

    @property
    def rpaths(self) -> list[str]:
        return [cmd.path for cmd in self.commands_of(RpathCommand)]

    @property
    def entry_point(self) -> Optional[int]:
        """File offset of ``main`` from ``LC_MAIN``."""
        command = next(self.commands_of(EntryPointCommand), None)
        return command.entry_offset if command is not None else None

    @property
    def source_version(self) -> Optional[str]:
        command = next(self.commands_of(SourceVersionCommand), None)
        return command.version if command is not None else None
