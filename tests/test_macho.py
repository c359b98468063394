"""
Tests for the Mach-O parser: header, load command walk and the typed
commands built on top of it.
"""

import unittest

from builders import (
    CPU_TYPE_ARM64,
    LC_ID_DYLIB,
    LC_LOAD_DYLIB,
    LC_LOAD_DYLINKER,
    LC_LOAD_WEAK_DYLIB,
    LC_RPATH,
    LC_UUID,
    UUID_BYTES,
    MachOBuilder,
    build_version_command,
    dylib_command,
    lc_str_command,
    main_command,
    raw_command,
    scenario_b_macho,
    segment_command,
    source_version_command,
    uuid_command,
)
from shared.config import ParserLimits
from shared.logger import quiet_logger

from imagelens.core.engine import ImageInspector
from imagelens.core.errors import MalformedHeaderError
from imagelens.core.memory import Image
from imagelens.parsers.macho_parser import (
    BuildVersionCommand,
    DylibCommand,
    LoadCommand,
    MachOImage,
    SegmentCommand,
    UuidCommand,
    format_version,
)
from imagelens.parsers.structures import build_registry

UUID_TEXT = "00112233-4455-6677-8899-AABBCCDDEEFF"


def parse(data, name="demo"):
    return ImageInspector().parse(Image.from_bytes(data, name=name))


def packed_version(major, minor, patch):
    return (major << 16) | (minor << 8) | patch


def full_dylib():
    builder = MachOBuilder(cputype=CPU_TYPE_ARM64, filetype=6)
    builder.add(segment_command("__TEXT", 0, 0x8000, [("__text", 0x3F00, 0x100, 0x3F00)], filesize=0x8000))
    builder.add(segment_command("__DATA", 0x8000, 0x4000, initprot=3))
    builder.add(build_version_command(
        1, packed_version(13, 0, 0), packed_version(14, 2, 0), [(3, packed_version(948, 0, 0))],
    ))
    builder.add(dylib_command(LC_ID_DYLIB, "@rpath/libdemo.dylib"))
    builder.add(dylib_command(LC_LOAD_DYLIB, "/usr/lib/libSystem.B.dylib", current=0x05276403))
    builder.add(dylib_command(LC_LOAD_WEAK_DYLIB, "/usr/lib/libobjc.A.dylib"))
    builder.add(lc_str_command(LC_LOAD_DYLINKER, "/usr/lib/dyld"))
    builder.add(lc_str_command(LC_RPATH, "@loader_path/../lib"))
    builder.add(main_command(0x3F50, 0x10000))
    builder.add(source_version_command((1 << 40) | (2 << 30) | (3 << 20) | (4 << 10) | 5))
    builder.add(uuid_command(UUID_BYTES))
    return builder.build()


class TestHeader(unittest.TestCase):

    def test_64bit_executable(self):
        macho = parse(scenario_b_macho())
        self.assertEqual(macho.bits, 64)
        self.assertEqual(macho.cpu_type, "x86_64")
        self.assertEqual(macho.file_type, "EXECUTE")
        self.assertEqual(macho.header.ncmds, 2)

    def test_32bit(self):
        builder = MachOBuilder(bits=32, cputype=7)
        builder.add(segment_command("__TEXT", 0x1000, 0x1000, [("__text", 0x1F00, 0x80, 0xF00)], bits=32))
        macho = parse(builder.build())
        self.assertEqual(macho.bits, 32)
        self.assertEqual(macho.cpu_type, "x86")
        segments = macho.segments()
        self.assertEqual([s.segname for s in segments], ["__TEXT"])
        self.assertFalse(segments[0].is_64bit)
        section = segments[0].sections[0]
        self.assertEqual((section.sectname, section.segname), ("__text", "__TEXT"))
        self.assertEqual((section.addr, section.size, section.offset), (0x1F00, 0x80, 0xF00))

    def test_bad_magic(self):
        image = Image.from_bytes(b"\xbe\xba\xfe\xca" + bytes(28))
        macho = MachOImage(image, build_registry(), ParserLimits(), quiet_logger("test"))
        with self.assertRaisesRegex(MalformedHeaderError, "0xcafebabe"):
            macho.validate()


class TestScenario(unittest.TestCase):
    """A single ``__TEXT`` segment with two sections, then a UUID."""

    def setUp(self):
        self.macho = parse(scenario_b_macho())

    def test_commands_in_order(self):
        commands = list(self.macho.load_commands)
        self.assertEqual([c.name for c in commands], ["LC_SEGMENT_64", "LC_UUID"])
        self.assertIsInstance(commands[0], SegmentCommand)
        self.assertIsInstance(commands[1], UuidCommand)
        self.assertEqual(commands[0].address, 32)
        self.assertEqual(commands[1].address, 32 + commands[0].cmdsize)

    def test_sections(self):
        segment = self.macho.segments()[0]
        self.assertEqual(segment.segname, "__TEXT")
        self.assertEqual(segment.view.vmaddr, 0x100000000)
        sections = segment.sections
        self.assertEqual([s.sectname for s in sections], ["__text", "__cstring"])
        self.assertEqual([s.addr for s in sections], [0x100000F00, 0x100000F80])
        self.assertLess(sections[0].addr, sections[1].addr)

    def test_uuid(self):
        self.assertEqual(self.macho.uuid, UUID_TEXT)

    def test_walk_is_restartable(self):
        stream = self.macho.load_commands
        self.assertEqual([c.cmd for c in stream], [c.cmd for c in stream])


class TestCommands(unittest.TestCase):

    def setUp(self):
        self.macho = parse(full_dylib(), name="libdemo.dylib")

    def test_header(self):
        self.assertEqual(self.macho.cpu_type, "ARM64")
        self.assertEqual(self.macho.file_type, "DYLIB")

    def test_build_version(self):
        build = self.macho.build_version
        self.assertIsInstance(build, BuildVersionCommand)
        self.assertEqual(build.platform, "macOS")
        self.assertEqual(build.minos, "13.0.0")
        self.assertEqual(build.sdk, "14.2.0")
        tools = build.tools
        self.assertEqual(len(tools), 1)
        self.assertEqual((tools[0].tool_name, tools[0].version), ("ld", "948.0.0"))

    def test_dylibs(self):
        self.assertEqual(
            self.macho.dylibs(),
            ["/usr/lib/libSystem.B.dylib", "/usr/lib/libobjc.A.dylib"],
        )
        self.assertEqual(self.macho.install_name, "@rpath/libdemo.dylib")
        system = [c for c in self.macho.commands_of(DylibCommand) if c.cmd == LC_LOAD_DYLIB][0]
        self.assertEqual(system.current_version, "1319.100.3")
        self.assertEqual(system.compatibility_version, "1.0.0")
        self.assertEqual(system.timestamp, 2)

    def test_paths_and_entry(self):
        self.assertEqual(self.macho.dylinker, "/usr/lib/dyld")
        self.assertEqual(self.macho.rpaths, ["@loader_path/../lib"])
        self.assertEqual(self.macho.entry_point, 0x3F50)
        self.assertEqual(self.macho.source_version, "1.2.3.4.5")

    def test_segments(self):
        segments = self.macho.segments()
        self.assertEqual([s.segname for s in segments], ["__TEXT", "__DATA"])
        self.assertEqual(segments[1].sections, [])

    def test_absent_commands(self):
        macho = parse(scenario_b_macho())
        self.assertIsNone(macho.build_version)
        self.assertIsNone(macho.install_name)
        self.assertIsNone(macho.dylinker)
        self.assertIsNone(macho.entry_point)
        self.assertIsNone(macho.source_version)
        self.assertEqual(macho.dylibs(), [])
        self.assertEqual(macho.rpaths, [])


class TestCommandWalkBounds(unittest.TestCase):

    def test_ncmds_bounds_walk(self):
        builder = MachOBuilder(ncmds=1)
        builder.add(uuid_command(UUID_BYTES))
        builder.add(lc_str_command(LC_RPATH, "/opt/lib"))
        macho = parse(builder.build())
        self.assertEqual([c.name for c in macho.load_commands], ["LC_UUID"])

    def test_sizeofcmds_bounds_walk(self):
        first = uuid_command(UUID_BYTES)
        builder = MachOBuilder(sizeofcmds=len(first))
        builder.add(first)
        builder.add(lc_str_command(LC_RPATH, "/opt/lib"))
        macho = parse(builder.build())
        self.assertEqual([c.name for c in macho.load_commands], ["LC_UUID"])

    def test_invalid_cmdsize_ends_walk(self):
        builder = MachOBuilder()
        builder.add(uuid_command(UUID_BYTES))
        builder.add(b"\x99\x00\x00\x00\x04\x00\x00\x00")
        builder.add(lc_str_command(LC_RPATH, "/opt/lib"))
        macho = parse(builder.build())
        self.assertEqual(len(list(macho.load_commands)), 1)

    def test_short_command_stays_generic(self):
        builder = MachOBuilder()
        builder.add(raw_command(LC_UUID))
        macho = parse(builder.build())
        commands = list(macho.load_commands)
        self.assertIs(type(commands[0]), LoadCommand)
        self.assertEqual(commands[0].name, "LC_UUID")
        self.assertIsNone(macho.uuid)

    def test_unknown_command(self):
        builder = MachOBuilder()
        builder.add(raw_command(0x99, b"\x00" * 8))
        command = list(parse(builder.build()).load_commands)[0]
        self.assertIs(type(command), LoadCommand)
        self.assertEqual(command.name, "Unknown(0x99)")
        self.assertEqual(command.cmdsize, 16)

    def test_section_count_bounded_by_command_size(self):
        builder = MachOBuilder()
        builder.add(segment_command("__TEXT", 0, 0x1000, [("__text", 0x100, 0x10, 0x100)], nsects=5))
        segment = parse(builder.build()).segments()[0]
        self.assertEqual(segment.view.nsects, 5)
        self.assertEqual(len(segment.sections), 1)


class TestFormatVersion(unittest.TestCase):

    def test_versions(self):
        cases = {0x00010000: "1.0.0", 0x05276403: "1319.100.3", 0x000E0200: "14.2.0"}
        for packed, expected in cases.items():
            with self.subTest(packed=hex(packed)):
                self.assertEqual(format_version(packed), expected)


if __name__ == "__main__":
    unittest.main()
