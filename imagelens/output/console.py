"""
ImageLens Console Output
=========================

Rich-powered terminal display for image summaries: an overview panel,
the section / segment / program-header table, linked libraries and the
format-specific details.

Uses the :class:`LensConsole` abstraction for consistent styling.

References:
    - Rich library: https://github.com/Textualize/rich
"""

from __future__ import annotations

from typing import Any

from shared.console import LensConsole

from imagelens.core.models import ImageClassification, ImageSummary, RegionSummary


_REGION_TITLES: dict[ImageClassification, str] = {
    ImageClassification.PE: "Sections",
    ImageClassification.ELF: "Program Headers",
    ImageClassification.MACHO: "Segments",
}


def _hex(value: int | None) -> str:
    return "-" if value is None else f"0x{value:x}"


def _format_detail(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value) or "-"
    if isinstance(value, dict):
        return ", ".join(f"{key}={item}" for key, item in value.items()) or "-"
    return str(value)


class LensConsoleOutput:
    """Render an :class:`ImageSummary` to the terminal.

    Usage::

        output = LensConsoleOutput()
        output.display(summary)
    """

    def __init__(self, console: LensConsole | None = None) -> None:
        self._console: LensConsole = console or LensConsole()

    def display(self, summary: ImageSummary) -> None:
        self.display_overview(summary)
        if summary.regions:
            self.display_regions(summary.format, summary.regions)
        if summary.libraries:
            self.display_libraries(summary.libraries)
        if summary.details:
            self._console.key_values("Details", {
                key: _format_detail(value) for key, value in summary.details.items()
            })
        for table in summary.degraded:
            self._console.warning(f"{table} table could not be read and is shown as absent")

    def display_overview(self, summary: ImageSummary) -> None:
        values: dict[str, Any] = {
            "Image": summary.name or "-",
            "Format": f"{summary.format.value.upper()} ({summary.bits}-bit)",
            "Machine": summary.machine,
            "Type": summary.image_type,
            "Entry point": _hex(summary.entry_point),
        }
        if summary.identifier:
            values["Identifier"] = summary.identifier
        if summary.format is ImageClassification.PE:
            values["Exports"] = summary.exports
        self._console.key_values("Image Information", values)

    def display_regions(self, image_format: ImageClassification, regions: list[RegionSummary]) -> None:
        self._console.table(
            _REGION_TITLES.get(image_format, "Regions"),
            ["Name", "Address", "Size", "File Offset", "File Size", "Flags"],
            [
                (
                    region.name,
                    _hex(region.address),
                    _hex(region.size),
                    _hex(region.file_offset),
                    _hex(region.file_size),
                    region.flags,
                )
                for region in regions
            ],
            styles=["bright_white", "cyan", "", "cyan", "", "yellow"],
        )

    def display_libraries(self, libraries: list[str]) -> None:
        self._console.table(
            "Libraries",
            ["#", "Name"],
            [(index, name) for index, name in enumerate(libraries, start=1)],
            styles=["dim", "bright_white"],
        )
