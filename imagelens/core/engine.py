"""
ImageLens Inspection Engine
============================

The image information facade: decides an image's container format from
its magic bytes, constructs the matching parser, and reduces any parse
result to a format-neutral :class:`ImageSummary` for the console and
JSON reports.

The inspector owns the per-session state: the structure registry (with
its memoized layouts), the parser limits and the logger.  Parse results
are lazy; every table accessor on a :class:`PEImage`,
:class:`ELFImage` or :class:`MachOImage` re-reads the image on demand.

Inspection Pipeline:
    1. Read the four magic bytes at the image base
    2. Construct the PE, ELF or Mach-O parser
    3. Read the mandatory headers (failures propagate)
    4. On request, summarise the auxiliary tables (failures degrade)
"""

from __future__ import annotations

from pathlib import Path
from typing import Union

from shared.config import LensConfig, ParserLimits
from shared.logger import LensLogger, quiet_logger

from imagelens.core.errors import UnrecognizedFormatError
from imagelens.core.memory import Image, ImageLayout
from imagelens.core.models import ImageClassification, ImageSummary, RegionSummary
from imagelens.core.reflection import StructRegistry
from imagelens.parsers.elf_parser import ELFImage
from imagelens.parsers.macho_parser import MachOImage
from imagelens.parsers.magic import FormatDetector
from imagelens.parsers.pe_parser import PEImage
from imagelens.parsers.structures import build_registry

ParsedImageType = Union[PEImage, ELFImage, MachOImage]

_PARSERS: dict[ImageClassification, type] = {
    ImageClassification.PE: PEImage,
    ImageClassification.ELF: ELFImage,
    ImageClassification.MACHO: MachOImage,
}

# Mach-O VM_PROT_* bits
_VM_PROT_READ: int = 0x1
_VM_PROT_WRITE: int = 0x2
_VM_PROT_EXECUTE: int = 0x4


def _protection(prot: int) -> str:
    return (
        ("r" if prot & _VM_PROT_READ else "-")
        + ("w" if prot & _VM_PROT_WRITE else "-")
        + ("x" if prot & _VM_PROT_EXECUTE else "-")
    )


# ---------------------------------------------------------------------------
# ImageInspector
# ---------------------------------------------------------------------------

class ImageInspector:
    """Classify and parse executable images.

    Usage::

        inspector = ImageInspector()
        parsed = inspector.inspect_file("/usr/bin/ls")
        summary = inspector.describe(parsed)
        print(summary.machine, summary.libraries)
    """

    def __init__(
        self,
        config: LensConfig | None = None,
        logger: LensLogger | None = None,
    ) -> None:
        """Initialise the inspector.

        Args:
            config: ImageLens configuration.  Defaults are used if not provided.
            logger: Logger instance.  A console-less one is created if not provided.
        """
        self._config: LensConfig = config or LensConfig()
        self._logger: LensLogger = logger or quiet_logger("engine")
        self._registry: StructRegistry = build_registry()
        self._detector: FormatDetector = FormatDetector()

    @property
    def registry(self) -> StructRegistry:
        return self._registry

    @property
    def limits(self) -> ParserLimits:
        return self._config.imagelens

    # ------------------------------------------------------------------ #
    #  Public interface
    # ------------------------------------------------------------------ #

    def classify(self, image: Image) -> ImageClassification:
        """Decide the container format from the first four bytes."""
        return self._detector.classify(image)

    def parse(self, image: Image) -> ParsedImageType:
        """Construct the parser for *image* and read its mandatory headers.

        Raises:
            UnrecognizedFormatError: The magic matches no supported format.
            MalformedHeaderError: A mandatory header fails validation.
            UnreadableRegionError: A mandatory header cannot be read.
        """
        classification = self.classify(image)
        parser_class = _PARSERS.get(classification)
        if parser_class is None:
            raise UnrecognizedFormatError(self._detector.read_magic(image), image.name)

        logger = self._logger.child(classification.value)
        parsed: ParsedImageType = parser_class(image, self._registry, self.limits, logger)
        with self._logger.operation("parse"):
            parsed.validate()
            self._logger.debug(
                "Parsed %s as %s at base 0x%x (%s layout)",
                image.name or "image", parsed.format_name,
                image.space.base, image.space.layout.value,
            )
        return parsed

    def load(
        self,
        path: str | Path,
        layout: ImageLayout | str | None = None,
        base: int = 0,
    ) -> Image:
        """Read a file into an :class:`Image` using the configured default layout."""
        chosen = ImageLayout(layout or self.limits.default_layout)
        return Image.from_file(path, base=base, layout=chosen)

    def inspect_file(
        self,
        path: str | Path,
        layout: ImageLayout | str | None = None,
        base: int = 0,
    ) -> ParsedImageType:
        """Load *path* and parse it."""
        with self._logger.timed(f"inspect {path}"):
            return self.parse(self.load(path, layout, base))

    def describe(self, parsed: ParsedImageType) -> ImageSummary:
        """Reduce a parse result to an :class:`ImageSummary`.

        Raises:
            TypeError: If *parsed* is not a PE, ELF or Mach-O parse result.
        """
        if isinstance(parsed, PEImage):
            summary = self._describe_pe(parsed)
        elif isinstance(parsed, ELFImage):
            summary = self._describe_elf(parsed)
        elif isinstance(parsed, MachOImage):
            summary = self._describe_macho(parsed)
        else:
            raise TypeError(f"Cannot describe {type(parsed).__name__}")
        summary.degraded = parsed.degraded
        return summary

    # ------------------------------------------------------------------ #
    #  Per-format summaries
    # ------------------------------------------------------------------ #

    @staticmethod
    def _describe_pe(pe: PEImage) -> ImageSummary:
        optional = pe.optional_header
        summary = ImageSummary(
            name=pe.image.name,
            format=ImageClassification.PE,
            bits=pe.bits,
            machine=pe.machine,
            image_type="DLL" if pe.is_dll else "Executable",
            entry_point=optional.AddressOfEntryPoint or None,
        )
        summary.regions = [
            RegionSummary(
                name=section.name,
                address=section.virtual_address,
                size=section.virtual_size,
                file_offset=section.raw_offset,
                file_size=section.raw_size,
                flags=section.flags,
            )
            for section in pe.sections
        ]

        summary.libraries = pe.guarded(
            "imports", lambda: [module.module_name for module in pe.imports], default=[]
        )
        delayed = pe.guarded(
            "delay imports",
            lambda: [module.module_name for module in pe.delay_imports],
            default=[],
        )
        summary.exports = len(pe.exports.functions())

        code_view = pe.debug_info.code_view
        if code_view is not None and code_view.data is not None:
            summary.identifier = f"{code_view.data.guid}/{code_view.data.age}"
            summary.details["pdb_path"] = code_view.data.pdb_path

        summary.details["image_base"] = f"0x{optional.ImageBase:x}"
        summary.details["subsystem"] = pe.subsystem
        timestamp = pe.timestamp
        if timestamp is not None:
            summary.details["timestamp"] = timestamp.isoformat()
        if delayed:
            summary.details["delay_imports"] = delayed
        export_name = pe.exports.module_name
        if export_name:
            summary.details["export_name"] = export_name

        version = pe.version()
        info = pe.guarded("version", lambda: version.version_info) if version is not None else None
        if info is not None:
            summary.details["file_version"] = info.file_version
            summary.details["product_version"] = info.product_version
        return summary

    @staticmethod
    def _describe_elf(elf: ELFImage) -> ImageSummary:
        summary = ImageSummary(
            name=elf.image.name,
            format=ImageClassification.ELF,
            bits=elf.bits,
            machine=elf.machine,
            image_type=elf.file_type,
            entry_point=elf.entry_point or None,
            identifier=elf.build_id,
        )
        summary.regions = [
            RegionSummary(
                name=header.type_name,
                address=header.vaddr,
                size=header.mem_size,
                file_offset=header.offset,
                file_size=header.file_size,
                flags=header.flags_text,
            )
            for header in elf.program_headers
        ]
        summary.libraries = elf.needed_libraries
        summary.details["byte_order"] = "big" if elf.is_big_endian else "little"
        interpreter = elf.interpreter
        if interpreter:
            summary.details["interpreter"] = interpreter
        soname = elf.soname
        if soname:
            summary.details["soname"] = soname
        paths = elf.search_paths
        if paths:
            summary.details["search_paths"] = paths
        build_info = elf.build_info
        if build_info:
            summary.details["package"] = build_info
        modules = elf.link_map()
        if modules:
            summary.details["link_map"] = [module.name for module in modules]
        return summary

    @staticmethod
    def _describe_macho(macho: MachOImage) -> ImageSummary:
        summary = ImageSummary(
            name=macho.image.name,
            format=ImageClassification.MACHO,
            bits=macho.bits,
            machine=macho.cpu_type,
            image_type=macho.file_type,
            entry_point=macho.entry_point,
            identifier=macho.uuid,
        )
        summary.regions = [
            RegionSummary(
                name=segment.segname,
                address=segment.view.vmaddr,
                size=segment.view.vmsize,
                file_offset=segment.view.fileoff,
                file_size=segment.view.filesize,
                flags=_protection(segment.view.initprot),
            )
            for segment in macho.segments()
        ]
        summary.libraries = macho.dylibs()

        build = macho.build_version
        if build is not None:
            summary.details["platform"] = build.platform
            summary.details["minos"] = build.minos
            summary.details["sdk"] = build.sdk
            summary.details["tools"] = [f"{tool.tool_name} {tool.version}" for tool in build.tools]
        install_name = macho.install_name
        if install_name:
            summary.details["install_name"] = install_name
        dylinker = macho.dylinker
        if dylinker:
            summary.details["dylinker"] = dylinker
        rpaths = macho.rpaths
        if rpaths:
            summary.details["rpaths"] = rpaths
        source_version = macho.source_version
        if source_version:
            summary.details["source_version"] = source_version
        return summary
