"""
ImageLens -- Executable Image Inspector
========================================

ImageLens reads PE, ELF and Mach-O images through a declarative structure
reflection engine: C-style structures and unions (bit-fields, arrays and
embedded members included) are described as data and instantiated as
typed views at any address of an opaque, byte-addressable image.

Capabilities:
    - Format detection from the leading magic bytes
    - PE headers, sections, resources, imports, delay imports, exports,
      debug directories and version resources
    - ELF program headers, address translation, notes, dynamic entries
      and the runtime link map
    - Mach-O load commands, segments, sections and build versions
    - Both on-disk files and loader-mapped images
    - Rich console and JSON report output

References:
    - Microsoft. (2024). PE Format.
    - TIS Committee. (1995). ELF Specification.
    - Apple. mach-o/loader.h.
"""

__version__ = "1.0.0"
__all__ = [
    "ImageInspector",
    "ImageClassification",
    "Image",
    "ImageLayout",
]


def __getattr__(name: str):
    if name == "ImageInspector":
        from imagelens.core.engine import ImageInspector
        return ImageInspector
    if name == "ImageClassification":
        from imagelens.core.models import ImageClassification
        return ImageClassification
    if name in ("Image", "ImageLayout"):
        from imagelens.core import memory
        return getattr(memory, name)
    raise AttributeError(f"module 'imagelens' has no attribute {name!r}")
