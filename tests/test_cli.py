"""
Tests for the click command-line interface.
"""

import json
import os
import tempfile
import unittest

from click.testing import CliRunner

from builders import BUILD_ID, PEBuilder, shared_library_elf
from imagelens import __version__
from imagelens.cli import cli


class CliTestCase(unittest.TestCase):

    def setUp(self):
        self.runner = CliRunner()
        self.directory = tempfile.TemporaryDirectory()
        self.addCleanup(self.directory.cleanup)

    def write(self, name, data):
        path = os.path.join(self.directory.name, name)
        with open(path, "wb") as fh:
            fh.write(data)
        return path

    def invoke(self, *args):
        return self.runner.invoke(cli, list(args), obj={})


class TestClassify(CliTestCase):

    def test_formats(self):
        cases = [
            ("libdemo.so", shared_library_elf(), "elf"),
            ("demo.exe", PEBuilder().build(), "pe"),
            ("notes.txt", b"plain text", "unrecognized"),
        ]
        for name, data, expected in cases:
            with self.subTest(name=name):
                result = self.invoke("classify", self.write(name, data))
                self.assertEqual(result.exit_code, 0, result.output)
                self.assertEqual(result.output.strip(), f"{name}: {expected}")

    def test_missing_file(self):
        result = self.invoke("classify", os.path.join(self.directory.name, "absent"))
        self.assertEqual(result.exit_code, 2)


class TestInspect(CliTestCase):

    def setUp(self):
        super().setUp()
        self.elf = self.write("libdemo.so", shared_library_elf())

    def test_json(self):
        result = self.invoke("--quiet", "inspect", self.elf, "--json")
        self.assertEqual(result.exit_code, 0, result.output)
        report = json.loads(result.output)
        self.assertEqual(report["report_type"], "imagelens_image_summary")
        self.assertEqual(report["image"]["format"], "elf")
        self.assertEqual(report["image"]["identifier"], BUILD_ID.hex())
        self.assertEqual(report["image"]["libraries"], ["libc.so.6", "libm.so.6"])

    def test_mapped_layout_and_base(self):
        result = self.invoke(
            "--quiet", "inspect", self.elf, "--layout", "MAPPED", "--base", "0x7f0000000000", "--json",
        )
        self.assertEqual(result.exit_code, 0, result.output)
        image = json.loads(result.output)["image"]
        self.assertEqual(image["details"]["interpreter"], "/lib64/ld-linux-x86-64.so.2")
        self.assertEqual(image["libraries"], ["libc.so.6", "libm.so.6"])

    def test_console_display(self):
        result = self.invoke("inspect", self.elf)
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Image Information", result.output)
        self.assertIn("Program Headers", result.output)
        self.assertIn("libm.so.6", result.output)

    def test_output_file(self):
        target = os.path.join(self.directory.name, "reports", "libdemo.json")
        result = self.invoke("inspect", self.elf, "--output", target)
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("JSON report saved", result.output)
        with open(target, encoding="utf-8") as fh:
            self.assertEqual(json.load(fh)["image"]["name"], "libdemo.so")

    def test_unrecognized_image(self):
        path = self.write("archive.zip", b"PK\x03\x04" + bytes(60))
        result = self.invoke("inspect", path)
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Unrecognized image format", result.output)

    def test_invalid_base(self):
        result = self.invoke("inspect", self.elf, "--base", "zzz")
        self.assertEqual(result.exit_code, 2)
        self.assertIn("not a valid address", result.output)

    def test_config_option(self):
        config = self.write("lens.toml", b'[imagelens]\ndefault_layout = "mapped"\n')
        result = self.invoke("--quiet", "--config", config, "inspect", self.elf, "--json")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(json.loads(result.output)["image"]["format"], "elf")

    def test_configured_output_format(self):
        config = self.write("lens.toml", b'[global]\noutput_format = "json"\n')
        result = self.invoke("--quiet", "--config", config, "inspect", self.elf)
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(json.loads(result.output)["image"]["name"], "libdemo.so")

        result = self.invoke("--config", config, "inspect", self.elf, "--console")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Image Information", result.output)


class TestVersion(CliTestCase):

    def test_version(self):
        result = self.invoke("--version")
        self.assertEqual(result.exit_code, 0)
        self.assertIn(__version__, result.output)


if __name__ == "__main__":
    unittest.main()
