"""
Tests for the ELF parser: identification, program headers, address
translation, notes, the dynamic section and the runtime link map.
"""

import json
import struct
import unittest

from builders import (
    BUILD_ID,
    DT_DEBUG,
    PF_R,
    PF_W,
    PF_X,
    PT_DYNAMIC,
    PT_INTERP,
    PT_LOAD,
    PT_NOTE,
    ElfBuilder,
    shared_library_elf,
)
from shared.config import ParserLimits
from shared.logger import quiet_logger

from imagelens.core.engine import ImageInspector
from imagelens.core.errors import MalformedHeaderError
from imagelens.core.memory import Image, ImageLayout
from imagelens.parsers.elf_parser import ELFImage, dynamic_tag_name, note_type_name
from imagelens.parsers.structures import build_registry

MAPPED_BASE = 0x7F0000000000


def parse(data, name="libdemo.so.1", **options):
    return ImageInspector().parse(Image.from_bytes(data, name=name, **options))


class TestHeader(unittest.TestCase):

    def test_64bit_little_endian(self):
        elf = parse(shared_library_elf())
        self.assertIsInstance(elf, ELFImage)
        self.assertEqual(elf.bits, 64)
        self.assertFalse(elf.is_big_endian)
        self.assertEqual(elf.machine, "x86_64")
        self.assertEqual(elf.file_type, "DYN")
        self.assertEqual(elf.entry_point, 0x401040)

    def test_32bit_big_endian(self):
        builder = ElfBuilder(bits=32, big_endian=True, machine=8, file_type=2, entry=0x400100)
        builder.load_everything()
        builder.add_segment(PT_INTERP, b"/lib/ld.so.1\x00", alignment=1)
        builder.add_segment(PT_NOTE, builder.note("GNU", 1, struct.pack(">4I", 0, 3, 2, 0)), alignment=4)
        elf = parse(builder.build())
        self.assertEqual(elf.bits, 32)
        self.assertTrue(elf.is_big_endian)
        self.assertEqual(elf.machine, "MIPS")
        self.assertEqual(elf.file_type, "EXEC")
        self.assertEqual(elf.entry_point, 0x400100)
        self.assertEqual([h.type_name for h in elf.program_headers], ["LOAD", "INTERP", "NOTE"])
        self.assertEqual(elf.interpreter, "/lib/ld.so.1")
        self.assertEqual(elf.notes[0].value, "Linux 3.2.0")
        self.assertEqual(elf.notes[0].type_name, "NT_GNU_ABI_TAG")

    def test_byte_order_chosen_by_validate(self):
        data = ElfBuilder(bits=32, big_endian=True, machine=8).build()
        elf = ELFImage(Image.from_bytes(data), build_registry(), ParserLimits(), quiet_logger("test"))
        elf.ident
        elf.header
        self.assertEqual(elf.byteorder, "<")
        elf.validate()
        self.assertEqual(elf.byteorder, ">")
        self.assertEqual(elf.machine, "MIPS")

    def test_unknown_machine(self):
        self.assertEqual(parse(ElfBuilder(machine=0x1234).build()).machine, "Unknown(0x1234)")

    def test_bad_class(self):
        with self.assertRaisesRegex(MalformedHeaderError, "class 3"):
            parse(ElfBuilder(elf_class=3).build())

    def test_bad_data_encoding(self):
        with self.assertRaisesRegex(MalformedHeaderError, "data encoding 0"):
            parse(ElfBuilder(elf_data=0).build())


class TestProgramHeaders(unittest.TestCase):

    def test_program_headers(self):
        headers = parse(shared_library_elf()).program_headers
        self.assertEqual([h.type_name for h in headers], ["LOAD", "INTERP", "NOTE", "DYNAMIC"])
        self.assertEqual(headers[0].flags_text, "R-X")
        self.assertEqual(headers[3].flags_text, "RW-")
        self.assertEqual(headers[0].vaddr, 0x400000)
        self.assertEqual([h.index for h in headers], [0, 1, 2, 3])

    def test_translation_skips_partial_segments(self):
        builder = ElfBuilder()
        builder.add(bytes(0x1C0))
        builder.segment(PT_LOAD, 0x400, 0x100, vaddr=0x10000, flags=PF_R | PF_X)
        builder.segment(PT_LOAD, 0x500, 0x80, vaddr=0x20000, memsz=0x200, flags=PF_R | PF_W)
        builder.segment(PT_LOAD, 0x580, 0x40, vaddr=0x30000)
        elf = parse(builder.build())

        ranges = [(r.file_offset, r.vaddr, r.size) for r in elf.translation_ranges]
        self.assertEqual(ranges, [(0x400, 0x10000, 0x100), (0x580, 0x30000, 0x40)])
        self.assertEqual(elf.offset_to_va(0x410), 0x10010)
        self.assertEqual(elf.va_to_offset(0x30010), 0x590)
        self.assertIsNone(elf.offset_to_va(0x520))
        self.assertIsNone(elf.va_to_offset(0x20010))
        self.assertEqual(elf.link_base, 0x10000)

    def test_translation_round_trip(self):
        elf = parse(shared_library_elf())
        for offset in (0, 0x40, 0x400, 0x4F0):
            with self.subTest(offset=hex(offset)):
                self.assertEqual(elf.va_to_offset(elf.offset_to_va(offset)), offset)

    def test_no_program_headers(self):
        elf = parse(ElfBuilder().build())
        self.assertEqual(elf.program_headers, [])
        self.assertIsNone(elf.interpreter)
        self.assertEqual(elf.notes, [])
        self.assertEqual(elf.dynamic_entries, [])


class TestNotes(unittest.TestCase):

    def test_build_id(self):
        elf = parse(shared_library_elf())
        notes = elf.notes
        self.assertEqual(len(notes), 1)
        self.assertEqual((notes[0].name, notes[0].type_name), ("GNU", "NT_GNU_BUILD_ID"))
        self.assertEqual(notes[0].data, BUILD_ID)
        self.assertEqual(elf.build_id, BUILD_ID.hex())
        self.assertEqual(len(elf.build_id), 32)

    def test_several_notes_and_package_metadata(self):
        package = {"type": "rpm", "name": "demo", "version": "1.0-1", "architecture": "x86_64"}
        builder = ElfBuilder()
        builder.load_everything()
        notes = (
            builder.note("GNU", 1, struct.pack("<4I", 0, 4, 4, 0))
            + builder.note("FDO", 0xCAFE1A7E, json.dumps(package).encode() + b"\x00")
            + builder.note("GNU", 3, BUILD_ID)
        )
        builder.add_segment(PT_NOTE, notes, alignment=4)
        elf = parse(builder.build())
        self.assertEqual([note.name for note in elf.notes], ["GNU", "FDO", "GNU"])
        self.assertEqual(elf.notes[0].value, "Linux 4.4.0")
        self.assertEqual(elf.build_info, package)
        self.assertEqual(elf.build_id, BUILD_ID.hex())
        self.assertIsNotNone(elf.find_note("FDO", 0xCAFE1A7E))
        self.assertIsNone(elf.find_note("GNU", 5))

    def test_invalid_package_metadata(self):
        builder = ElfBuilder()
        builder.add_segment(PT_NOTE, builder.note("FDO", 0xCAFE1A7E, b"{not json"), alignment=4)
        elf = parse(builder.build())
        self.assertIsNone(elf.notes[0].value)
        self.assertIsNone(elf.build_info)

    def test_eight_byte_aligned_notes(self):
        builder = ElfBuilder()
        notes = builder.note("GNU", 5, b"\x01\x02\x03", alignment=8) + builder.note("GNU", 3, BUILD_ID, alignment=8)
        builder.add_segment(PT_NOTE, notes, alignment=8)
        elf = parse(builder.build())
        self.assertEqual([note.type for note in elf.notes], [5, 3])
        self.assertEqual(elf.notes[0].type_name, "NT_GNU_PROPERTY_TYPE_0")
        self.assertEqual(elf.build_id, BUILD_ID.hex())

    def test_unreadable_notes_degrade(self):
        builder = ElfBuilder()
        offset = builder.add(builder.note("GNU", 3, BUILD_ID), 4)
        builder.segment(PT_NOTE, offset, 0x1000, alignment=4)
        elf = parse(builder.build())
        self.assertEqual(elf.build_id, BUILD_ID.hex())
        self.assertEqual(elf.degraded, ["notes"])

    def test_type_names(self):
        self.assertEqual(note_type_name("CORE", 1), "NT_PRSTATUS")
        self.assertEqual(note_type_name("Go", 4), "Unknown(0x4)")


class TestDynamicSection(unittest.TestCase):

    def test_entries(self):
        entries = parse(shared_library_elf()).dynamic_entries
        self.assertEqual(
            [entry.tag_name for entry in entries],
            ["NEEDED", "NEEDED", "SONAME", "RUNPATH", "STRTAB", "STRSZ", "DEBUG"],
        )
        self.assertEqual(entries[0].string, "libc.so.6")
        self.assertIsNone(entries[4].string)

    def test_libraries_and_paths(self):
        elf = parse(shared_library_elf())
        self.assertEqual(elf.needed_libraries, ["libc.so.6", "libm.so.6"])
        self.assertEqual(elf.soname, "libdemo.so.1")
        self.assertEqual(elf.search_paths, ["$ORIGIN/lib", "/opt/lib"])
        self.assertEqual(elf.link_map(), [])

    def test_mapped_layout(self):
        elf = parse(shared_library_elf(), base=MAPPED_BASE, layout=ImageLayout.MAPPED)
        self.assertEqual(elf.link_base, 0x400000)
        self.assertEqual(elf.vaddr_to_address(0x400010), MAPPED_BASE + 0x10)
        self.assertEqual(elf.interpreter, "/lib64/ld-linux-x86-64.so.2")
        self.assertEqual(elf.needed_libraries, ["libc.so.6", "libm.so.6"])
        self.assertEqual(elf.build_id, BUILD_ID.hex())

    def test_unreachable_strtab(self):
        builder = ElfBuilder()
        builder.load_everything()
        builder.add_segment(PT_DYNAMIC, builder.dynamic([(1, 1), (5, 0x900000)]))
        elf = parse(builder.build())
        self.assertEqual(elf.needed_libraries, [])
        self.assertEqual([entry.value for entry in elf.dynamic_entries], [1, 0x900000])

    def test_tag_names(self):
        self.assertEqual(dynamic_tag_name(0x6FFFFEF5), "GNU_HASH")
        self.assertEqual(dynamic_tag_name(0x7000_0001), "Unknown(0x70000001)")


class TestLinkMap(unittest.TestCase):

    def build(self):
        builder = ElfBuilder()
        builder.load_everything()
        names, index = builder.add_strings(["/usr/lib/libc.so.6", "/usr/lib/libm.so.6"])
        first = builder.add(bytes(40))
        second = builder.add(bytes(40))
        r_debug = builder.add(bytes(40))
        builder.patch(first, struct.pack(
            "<5Q", 0x7F1000000000, MAPPED_BASE + names + index["/usr/lib/libc.so.6"],
            0x7F1000001000, MAPPED_BASE + second, 0,
        ))
        # The second entry links back to the first.
        builder.patch(second, struct.pack(
            "<5Q", 0x7F2000000000, MAPPED_BASE + names + index["/usr/lib/libm.so.6"],
            0x7F2000002000, MAPPED_BASE + first, MAPPED_BASE + first,
        ))
        builder.patch(r_debug, struct.pack("<iIQQiIQ", 1, 0, MAPPED_BASE + first, 0, 0, 0, 0))
        builder.add_segment(PT_DYNAMIC, builder.dynamic([(DT_DEBUG, MAPPED_BASE + r_debug)]))
        return builder.build(), first

    def test_walk_stops_on_cycle(self):
        data, first = self.build()
        elf = parse(data, base=MAPPED_BASE, layout=ImageLayout.MAPPED)
        modules = elf.link_map()
        self.assertEqual([m.name for m in modules], ["/usr/lib/libc.so.6", "/usr/lib/libm.so.6"])
        self.assertEqual(modules[0].base_address, 0x7F1000000000)
        self.assertEqual(modules[1].dynamic_address, 0x7F2000002000)
        self.assertEqual(modules[0].address, MAPPED_BASE + first)

    def test_unreadable_r_debug_degrades(self):
        builder = ElfBuilder()
        builder.load_everything()
        builder.add_segment(PT_DYNAMIC, builder.dynamic([(DT_DEBUG, 0xDEAD0000)]))
        elf = parse(builder.build(), base=MAPPED_BASE, layout=ImageLayout.MAPPED)
        self.assertEqual(elf.link_map(), [])
        self.assertEqual(elf.degraded, ["link map"])


if __name__ == "__main__":
    unittest.main()
