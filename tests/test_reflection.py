"""
Tests for the structure reflection engine: layout sizes and offsets,
bit-field packing, unions, embedded members and typed views.
"""

import enum
import struct
import unittest

from imagelens.core.errors import UnreadableRegionError, UnresolvedTypeError
from imagelens.core.memory import BufferMemory
from imagelens.core.reflection import (
    StructRegistry,
    bitfield,
    embed,
    field,
    nested,
    primitive_size,
    structure,
    union,
)


class Shape(enum.Enum):
    PAIR = enum.auto()
    TAGGED = enum.auto()
    PACKED = enum.auto()
    OVERFLOW = enum.auto()
    UNIT_CHANGE = enum.auto()
    EXACT_FILL = enum.auto()
    TOO_WIDE = enum.auto()
    VARIANT = enum.auto()
    PAIRS = enum.auto()
    NAMES = enum.auto()
    BAD_TYPE = enum.auto()
    EXTRA = enum.auto()


DEFINITIONS = {
    Shape.PAIR: structure(
        field("X", "uint32_t"),
        field("Y", "uint32_t"),
    ),
    Shape.TAGGED: structure(
        field("Tag", "uint16_t"),
        embed(Shape.PAIR),
    ),
    Shape.PACKED: structure(
        bitfield("Low", "uint32_t", 3),
        bitfield("High", "uint32_t", 5),
        field("After", "uint16_t"),
    ),
    Shape.OVERFLOW: structure(
        bitfield("A", "uint8_t", 6),
        bitfield("B", "uint8_t", 4),
    ),
    Shape.UNIT_CHANGE: structure(
        bitfield("A", "uint8_t", 2),
        bitfield("B", "uint16_t", 2),
    ),
    Shape.EXACT_FILL: structure(
        bitfield("A", "uint8_t", 8),
        bitfield("B", "uint8_t", 1),
    ),
    Shape.TOO_WIDE: structure(
        bitfield("A", "uint8_t", 9),
    ),
    Shape.VARIANT: union(
        field("Word", "uint32_t"),
        field("Half", "uint16_t"),
        field("Text", "char", 8),
    ),
    Shape.PAIRS: structure(
        field("Count", "uint32_t"),
        nested("Items", Shape.PAIR, 2),
        nested("Last", Shape.PAIR),
    ),
    Shape.NAMES: structure(
        field("Raw", "char", 4),
        field("Bytes", "unsigned char", 4),
    ),
    Shape.BAD_TYPE: structure(
        field("Value", "float"),
    ),
}


class TestPrimitives(unittest.TestCase):

    def test_sizes(self):
        cases = {
            "char": 1,
            "unsigned short": 2,
            "wchar_t": 2,
            "int": 4,
            "unsigned long": 4,
            "long long": 8,
            "unsigned __int64": 8,
        }
        for name, size in cases.items():
            with self.subTest(primitive=name):
                self.assertEqual(primitive_size(name), size)

    def test_unknown_primitive(self):
        with self.assertRaises(UnresolvedTypeError):
            primitive_size("float")


class TestLayout(unittest.TestCase):

    def setUp(self):
        self.registry = StructRegistry(DEFINITIONS)

    def test_plain_structure(self):
        self.assertEqual(self.registry.size_of(Shape.PAIR), 8)
        self.assertEqual(self.registry.offset_of(Shape.PAIR, "Y"), 4)

    def test_embedded_members_are_flattened(self):
        self.assertEqual(self.registry.size_of(Shape.TAGGED), 10)
        self.assertEqual(self.registry.offset_of(Shape.TAGGED, "X"), 2)
        self.assertEqual(self.registry.offset_of(Shape.TAGGED, "Y"), 6)

    def test_bitfields_share_one_unit(self):
        self.assertEqual(self.registry.size_of(Shape.PACKED), 6)
        self.assertEqual(self.registry.offset_of(Shape.PACKED, "High"), 0)
        self.assertEqual(self.registry.offset_of(Shape.PACKED, "After"), 4)

    def test_overflowing_bitfield_opens_new_unit(self):
        self.assertEqual(self.registry.size_of(Shape.OVERFLOW), 2)
        self.assertEqual(self.registry.offset_of(Shape.OVERFLOW, "B"), 1)

    def test_unit_type_change_opens_new_unit(self):
        self.assertEqual(self.registry.size_of(Shape.UNIT_CHANGE), 3)
        self.assertEqual(self.registry.offset_of(Shape.UNIT_CHANGE, "B"), 1)

    def test_exhausted_unit_closes(self):
        self.assertEqual(self.registry.size_of(Shape.EXACT_FILL), 2)

    def test_bitfield_wider_than_unit(self):
        with self.assertRaises(ValueError):
            self.registry.size_of(Shape.TOO_WIDE)

    def test_zero_width_bitfield_rejected(self):
        with self.assertRaises(ValueError):
            bitfield("Nothing", "uint8_t", 0)

    def test_union_is_largest_member(self):
        self.assertEqual(self.registry.size_of(Shape.VARIANT), 8)
        for name in ("Word", "Half", "Text"):
            with self.subTest(member=name):
                self.assertEqual(self.registry.offset_of(Shape.VARIANT, name), 0)

    def test_nested_arrays(self):
        self.assertEqual(self.registry.size_of(Shape.PAIRS), 4 + 16 + 8)
        self.assertEqual(self.registry.offset_of(Shape.PAIRS, "Last"), 20)

    def test_missing_field_offset(self):
        with self.assertRaises(KeyError):
            self.registry.offset_of(Shape.PAIR, "Z")

    def test_unknown_kind(self):
        with self.assertRaises(UnresolvedTypeError):
            self.registry.size_of(Shape.EXTRA)

    def test_unknown_primitive_in_structure(self):
        with self.assertRaises(UnresolvedTypeError):
            self.registry.size_of(Shape.BAD_TYPE)

    def test_define_new_kind(self):
        self.registry.define(Shape.EXTRA, structure(field("Only", "uint8_t")))
        self.assertEqual(self.registry.size_of(Shape.EXTRA), 1)

    def test_define_existing_kind_rejected(self):
        with self.assertRaises(ValueError):
            self.registry.define(Shape.PAIR, structure(field("Other", "uint8_t")))


class TestTypedView(unittest.TestCase):

    def setUp(self):
        self.registry = StructRegistry(DEFINITIONS)

    def test_values_at_address(self):
        memory = BufferMemory(b"\xff" * 4 + struct.pack("<II", 7, 9), base=0x1000)
        view = self.registry.instantiate(Shape.PAIR, memory, 0x1004)
        self.assertEqual((view.X, view.Y), (7, 9))
        self.assertEqual(view.address, 0x1004)
        self.assertEqual(view.total_size, 8)
        self.assertEqual(view["Y"], 9)
        self.assertIn("X", view)

    def test_embedded_values(self):
        memory = BufferMemory(struct.pack("<HII", 0xBEEF, 1, 2))
        view = self.registry.instantiate(Shape.TAGGED, memory, 0)
        self.assertEqual(view.Tag, 0xBEEF)
        self.assertEqual((view.X, view.Y), (1, 2))

    def test_bitfield_values(self):
        memory = BufferMemory(struct.pack("<IH", 0xAD, 0x1234))
        view = self.registry.instantiate(Shape.PACKED, memory, 0)
        self.assertEqual(view.Low, 0b101)
        self.assertEqual(view.High, 0b10101)
        self.assertEqual(view.After, 0x1234)

    def test_union_values_overlap(self):
        memory = BufferMemory(b"ABCDEFGH")
        view = self.registry.instantiate(Shape.VARIANT, memory, 0)
        self.assertEqual(view.Word, 0x44434241)
        self.assertEqual(view.Half, 0x4241)
        self.assertEqual(view.Text, b"ABCDEFGH")

    def test_char_and_unsigned_char_arrays(self):
        memory = BufferMemory(b"PE\x00\x00\x01\x02\x03\x04")
        view = self.registry.instantiate(Shape.NAMES, memory, 0)
        self.assertEqual(view.Raw, b"PE\x00\x00")
        self.assertEqual(view.Bytes, [1, 2, 3, 4])

    def test_nested_views(self):
        memory = BufferMemory(struct.pack("<7I", 2, 1, 2, 3, 4, 5, 6))
        view = self.registry.instantiate(Shape.PAIRS, memory, 0)
        self.assertEqual([item.Y for item in view.Items], [2, 4])
        self.assertEqual(view.Last.X, 5)
        self.assertEqual(
            view.as_dict(),
            {
                "Count": 2,
                "Items": [{"X": 1, "Y": 2}, {"X": 3, "Y": 4}],
                "Last": {"X": 5, "Y": 6},
            },
        )

    def test_big_endian(self):
        memory = BufferMemory(struct.pack(">II", 0x01020304, 5))
        view = self.registry.instantiate(Shape.PAIR, memory, 0, byteorder=">")
        self.assertEqual(view.X, 0x01020304)

    def test_views_reread_memory(self):
        data = bytearray(struct.pack("<II", 1, 2))
        first = self.registry.instantiate(Shape.PAIR, BufferMemory(bytes(data)), 0)
        data[0] = 42
        second = self.registry.instantiate(Shape.PAIR, BufferMemory(bytes(data)), 0)
        self.assertEqual((first.X, second.X), (1, 42))

    def test_missing_field_attribute(self):
        view = self.registry.instantiate(Shape.PAIR, BufferMemory(bytes(8)), 0)
        with self.assertRaises(AttributeError):
            view.Z
        self.assertIsNone(view.get("Z"))

    def test_unreadable_memory_propagates(self):
        with self.assertRaises(UnreadableRegionError):
            self.registry.instantiate(Shape.PAIR, BufferMemory(bytes(6)), 0)


if __name__ == "__main__":
    unittest.main()
