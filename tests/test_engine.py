"""
Tests for the ImageInspector facade: dispatch on magic bytes, file
loading with the configured layout, and format-neutral summaries.
"""

import os
import tempfile
import unittest

from builders import (
    BUILD_ID,
    UUID_BYTES,
    ImportSpec,
    PEBuilder,
    scenario_b_macho,
    shared_library_elf,
    version_resource,
)
from shared.config import LensConfig, ParserLimits

from imagelens.core.engine import ImageInspector
from imagelens.core.errors import UnrecognizedFormatError
from imagelens.core.memory import Image, ImageLayout
from imagelens.core.models import ImageClassification
from imagelens.parsers.elf_parser import ELFImage
from imagelens.parsers.macho_parser import MachOImage
from imagelens.parsers.pe_parser import DirectoryNumber, PEImage

GUID_BYTES = bytes.fromhex("33221100554477668899AABBCCDDEEFF")


def full_pe():
    builder = PEBuilder(characteristics=0x2022)
    builder.add_imports([ImportSpec("KERNEL32.dll", ["ExitProcess"])])
    builder.add_delay_imports([("dbghelp.dll", ["SymInitialize"])])
    builder.add_exports("demo.dll", [0x1100, 0x1200], {"Alpha": 0, "Beta": 1})
    builder.add_codeview(GUID_BYTES, 2, "C:\\build\\demo.pdb")
    builder.add_resources({16: {1: {0x409: version_resource({"CompanyName": "Acme"})}}})
    return builder.build()


class TestParseDispatch(unittest.TestCase):

    def setUp(self):
        self.inspector = ImageInspector()

    def test_parser_per_format(self):
        cases = [
            (PEBuilder().build(), PEImage, ImageClassification.PE),
            (shared_library_elf(), ELFImage, ImageClassification.ELF),
            (scenario_b_macho(), MachOImage, ImageClassification.MACHO),
        ]
        for data, parser_class, classification in cases:
            with self.subTest(parser=parser_class.__name__):
                image = Image.from_bytes(data)
                self.assertIs(self.inspector.classify(image), classification)
                parsed = self.inspector.parse(image)
                self.assertIsInstance(parsed, parser_class)
                self.assertIs(parsed.registry, self.inspector.registry)

    def test_unrecognized_format(self):
        image = Image.from_bytes(b"PK\x03\x04" + bytes(64), name="archive.zip")
        with self.assertRaises(UnrecognizedFormatError) as caught:
            self.inspector.parse(image)
        self.assertIn("archive.zip", str(caught.exception))
        self.assertEqual(caught.exception.magic, b"PK\x03\x04")

    def test_inspectors_keep_separate_registries(self):
        first, second = ImageInspector(), ImageInspector()
        self.assertIsNot(first.registry, second.registry)


class TestLoading(unittest.TestCase):

    def setUp(self):
        handle, self.path = tempfile.mkstemp(suffix=".so")
        with os.fdopen(handle, "wb") as fh:
            fh.write(shared_library_elf())

    def tearDown(self):
        os.unlink(self.path)

    def test_inspect_file(self):
        elf = ImageInspector().inspect_file(self.path)
        self.assertIsInstance(elf, ELFImage)
        self.assertEqual(elf.image.name, os.path.basename(self.path))
        self.assertEqual(elf.needed_libraries, ["libc.so.6", "libm.so.6"])

    def test_configured_default_layout(self):
        config = LensConfig(imagelens=ParserLimits(default_layout="mapped"))
        image = ImageInspector(config).load(self.path, base=0x7F0000000000)
        self.assertIs(image.space.layout, ImageLayout.MAPPED)
        self.assertEqual(image.space.base, 0x7F0000000000)

    def test_explicit_layout_wins(self):
        config = LensConfig(imagelens=ParserLimits(default_layout="mapped"))
        image = ImageInspector(config).load(self.path, layout="file")
        self.assertIs(image.space.layout, ImageLayout.FILE)


class TestDescribe(unittest.TestCase):

    def setUp(self):
        self.inspector = ImageInspector()

    def describe(self, data, name="demo", **options):
        return self.inspector.describe(self.inspector.parse(Image.from_bytes(data, name=name, **options)))

    def test_pe_summary(self):
        summary = self.describe(full_pe(), name="demo.dll")
        self.assertIs(summary.format, ImageClassification.PE)
        self.assertEqual((summary.bits, summary.machine), (64, "x86_64"))
        self.assertEqual(summary.image_type, "DLL")
        self.assertEqual(summary.entry_point, 0x1000)
        self.assertEqual(summary.identifier, "{00112233-4455-6677-8899-AABBCCDDEEFF}/2")
        self.assertEqual(summary.libraries, ["KERNEL32.dll"])
        self.assertEqual(summary.exports, 2)
        self.assertEqual([region.name for region in summary.regions], [".rdata"])
        self.assertEqual(summary.details["pdb_path"], "C:\\build\\demo.pdb")
        self.assertEqual(summary.details["image_base"], "0x140000000")
        self.assertEqual(summary.details["subsystem"], "Windows Console")
        self.assertEqual(summary.details["timestamp"], "2021-01-14T08:25:36+00:00")
        self.assertEqual(summary.details["delay_imports"], ["dbghelp.dll"])
        self.assertEqual(summary.details["export_name"], "demo.dll")
        self.assertEqual(summary.details["file_version"], "1.2.3.4")
        self.assertEqual(summary.details["product_version"], "5.6.7.8")
        self.assertEqual(summary.degraded, [])

    def test_minimal_pe_summary(self):
        summary = self.describe(PEBuilder().build())
        self.assertEqual(summary.image_type, "Executable")
        self.assertIsNone(summary.identifier)
        self.assertEqual(summary.libraries, [])
        self.assertEqual(summary.exports, 0)
        self.assertNotIn("file_version", summary.details)

    def test_degraded_tables_reported(self):
        builder = PEBuilder()
        builder.set_directory(DirectoryNumber.IMPORT, 0x8000, 40)
        summary = self.describe(builder.build())
        self.assertEqual(summary.libraries, [])
        self.assertEqual(summary.degraded, ["imports"])

    def test_elf_summary(self):
        summary = self.describe(shared_library_elf(), name="libdemo.so.1")
        self.assertIs(summary.format, ImageClassification.ELF)
        self.assertEqual((summary.bits, summary.machine, summary.image_type), (64, "x86_64", "DYN"))
        self.assertEqual(summary.entry_point, 0x401040)
        self.assertEqual(summary.identifier, BUILD_ID.hex())
        self.assertEqual([region.name for region in summary.regions], ["LOAD", "INTERP", "NOTE", "DYNAMIC"])
        self.assertEqual(summary.regions[0].flags, "R-X")
        self.assertEqual(summary.libraries, ["libc.so.6", "libm.so.6"])
        self.assertEqual(summary.details["byte_order"], "little")
        self.assertEqual(summary.details["interpreter"], "/lib64/ld-linux-x86-64.so.2")
        self.assertEqual(summary.details["soname"], "libdemo.so.1")
        self.assertEqual(summary.details["search_paths"], ["$ORIGIN/lib", "/opt/lib"])
        self.assertNotIn("link_map", summary.details)

    def test_macho_summary(self):
        summary = self.describe(scenario_b_macho())
        self.assertIs(summary.format, ImageClassification.MACHO)
        self.assertEqual((summary.bits, summary.machine, summary.image_type), (64, "x86_64", "EXECUTE"))
        self.assertIsNone(summary.entry_point)
        self.assertEqual(summary.identifier, "00112233-4455-6677-8899-AABBCCDDEEFF")
        self.assertEqual(UUID_BYTES.hex().upper(), summary.identifier.replace("-", ""))
        region = summary.regions[0]
        self.assertEqual((region.name, region.address, region.size), ("__TEXT", 0x100000000, 0x4000))
        self.assertEqual(region.flags, "r-x")
        self.assertEqual(summary.libraries, [])

    def test_summary_serializes(self):
        data = self.describe(shared_library_elf()).model_dump(mode="json")
        self.assertEqual(data["format"], "elf")
        self.assertEqual(data["regions"][1]["name"], "INTERP")

    def test_describe_rejects_other_objects(self):
        with self.assertRaises(TypeError):
            self.inspector.describe(object())


if __name__ == "__main__":
    unittest.main()
