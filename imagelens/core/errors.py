"""
ImageLens Error Taxonomy
=========================

Exception hierarchy shared by the reflection engine and every format
parser.  Mandatory-header failures propagate to the caller of
:meth:`ImageInspector.parse`; auxiliary tables catch
:class:`UnreadableRegionError` at the accessor and report the table as
absent instead.

Two conditions are deliberately *not* exceptions:

    - An optional table whose directory/location field is zero is
      represented as ``None`` or an empty sequence.
    - A numeric code with no known name is rendered as ``Unknown(0x..)``.
"""

from __future__ import annotations

from typing import Optional


class ImageError(Exception):
    """Base class for all image inspection failures."""


class UnrecognizedFormatError(ImageError):
    """The leading magic bytes match none of PE, ELF or Mach-O."""

    def __init__(self, magic: bytes, name: str = "") -> None:
        self.magic = magic
        self.name = name
        where = f" in {name}" if name else ""
        super().__init__(f"Unrecognized image format{where} (magic {magic.hex() or '<empty>'})")


class MalformedHeaderError(ImageError):
    """A recognized format failed a secondary header invariant."""

    def __init__(self, message: str, name: str = "") -> None:
        self.name = name
        if name:
            message = f"{message} for image: {name}"
        super().__init__(message)


class UnreadableRegionError(ImageError):
    """The memory provider cannot satisfy a read."""

    def __init__(self, address: int, length: int, reason: Optional[str] = None) -> None:
        self.address = address
        self.length = length
        text = f"Unable to read {length} byte(s) at 0x{address:x}"
        if reason:
            text = f"{text}: {reason}"
        super().__init__(text)


class UnresolvedTypeError(UnreadableRegionError):
    """A field names a primitive type the type system does not know."""

    def __init__(self, type_name: str) -> None:
        self.type_name = type_name
        super().__init__(0, 0, f"unresolved primitive type '{type_name}'")


def unknown_name(code: int) -> str:
    """Render a numeric code that has no well-known name."""
    return f"Unknown(0x{code:x})"
