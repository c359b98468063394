"""
Image Format Detection
=======================

Classifies an image as PE, ELF or Mach-O from the first four bytes at
its base address.  Signatures are tested in a fixed priority order and
the first match wins; anything else is *unrecognized*, which callers
treat as "not an image this inspector handles" rather than an error.

Only the little-endian (``0xFEEDFACE``/``0xFEEDFACF`` stored
byte-reversed) Mach-O headers are recognised, matching the images the
Mach-O parser reads.

References:
    - Gary Kessler's File Signatures Table.
      https://www.garykessler.net/library/file_sigs.html
    - Microsoft. (2024). PE Format -- MS-DOS Stub.
    - TIS Committee. (1995). ELF Specification -- ELF Identification.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from imagelens.core.errors import UnreadableRegionError
from imagelens.core.memory import Image
from imagelens.core.models import ImageClassification

MAGIC_LENGTH: int = 4


@dataclass(frozen=True, slots=True)
class _Signature:
    """A single format signature.

    Attributes:
        prefix: Leading bytes that must match.
        classification: Format selected by a match.
        description: Human-readable type description.
    """
    prefix: bytes
    classification: ImageClassification
    description: str


# ---------------------------------------------------------------------------
# Signature table -- checked in order
# ---------------------------------------------------------------------------

_SIGNATURES: tuple[_Signature, ...] = (
    _Signature(b"MZ", ImageClassification.PE, "PE/MS-DOS executable"),
    _Signature(b"\x7fELF", ImageClassification.ELF, "ELF image"),
    _Signature(b"\xcf\xfa\xed\xfe", ImageClassification.MACHO, "Mach-O 64-bit"),
    _Signature(b"\xce\xfa\xed\xfe", ImageClassification.MACHO, "Mach-O 32-bit"),
)


class FormatDetector:
    """Identify an image's container format by its magic bytes.

    Usage::

        detector = FormatDetector()
        detector.classify(image)            # => ImageClassification.ELF
        detector.classify_bytes(b"MZ\\x90\\x00")
    """

    def __init__(self) -> None:
        self._signatures: tuple[_Signature, ...] = _SIGNATURES

    def classify_bytes(self, magic: bytes) -> ImageClassification:
        """Classify a 4-byte magic prefix.

        Args:
            magic: The leading bytes of the image.  Fewer than four bytes
                   never match.

        Returns:
            The matching :class:`ImageClassification`.
        """
        match = self._match(magic)
        return match.classification if match else ImageClassification.UNRECOGNIZED

    def describe_bytes(self, magic: bytes) -> str:
        match = self._match(magic)
        return match.description if match else "Unrecognized"

    def read_magic(self, image: Image) -> bytes:
        """Read the magic prefix at the image base (empty if unreadable)."""
        try:
            return image.memory.read(image.space.base, MAGIC_LENGTH)
        except UnreadableRegionError:
            return b""

    def classify(self, image: Image) -> ImageClassification:
        """Classify *image* by the four bytes at its base address."""
        return self.classify_bytes(self.read_magic(image))

    # ------------------------------------------------------------------ #
    #  Private helpers
    # ------------------------------------------------------------------ #

    def _match(self, magic: bytes) -> Optional[_Signature]:
        if len(magic) < MAGIC_LENGTH:
            return None
        head = magic[:MAGIC_LENGTH]
        for sig in self._signatures:
            if head.startswith(sig.prefix):
                return sig
        return None
