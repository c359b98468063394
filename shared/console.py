"""
ImageLens Console Interface
============================

Rich-powered console abstraction providing one presentation layer for
the ImageLens CLI and output renderers.

The class wraps :class:`rich.console.Console` and adds convenience methods
for the banner, section headers, severity-coloured messages, tables,
key/value panels and status spinners, all with consistent styling.

References:
    - Rich library: https://github.com/Textualize/rich
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator, Mapping, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

# ---------------------------------------------------------------------------
# Theme -- consistent palette across all ImageLens output
# ---------------------------------------------------------------------------
_LENS_THEME = Theme(
    {
        "lens.banner": "bold bright_cyan",
        "lens.section": "bold bright_magenta",
        "lens.success": "bold green",
        "lens.warning": "bold yellow",
        "lens.error": "bold red",
        "lens.info": "bold bright_blue",
        "lens.dim": "dim white",
        "lens.key": "bold bright_white",
    }
)


class LensConsole:
    """Unified console interface for ImageLens.

    Usage::

        con = LensConsole()
        con.banner()
        con.section("Sections")
        con.success("Parsed 3 images")
    """

    def __init__(self, *, quiet: bool = False, record: bool = False, width: int | None = None) -> None:
        """Initialise the console.

        Args:
            quiet:  Suppress all output (useful in library / test mode).
            record: Enable Rich recording for later export.
            width:  Fixed console width; ``None`` lets Rich detect it.
        """
        self._console = Console(
            theme=_LENS_THEME,
            quiet=quiet,
            record=record,
            highlight=False,
            width=width,
        )

    @property
    def rich(self) -> Console:
        """Direct access to the underlying Rich Console instance."""
        return self._console

    # ------------------------------------------------------------------ #
    #  Banner and section header
    # ------------------------------------------------------------------ #

    def banner(self, version: str = "1.0.0") -> None:
        self._console.print(
            Panel(
                f"[lens.banner]ImageLens[/lens.banner]  "
                f"[lens.dim]PE / ELF / Mach-O image inspector  v{version}[/lens.dim]",
                border_style="bright_cyan",
                padding=(0, 2),
            )
        )

    def section(self, title: str) -> None:
        """Print a prominent section header."""
        self._console.rule(f"  {title}  ", style="lens.section", characters="─")

    # ------------------------------------------------------------------ #
    #  Message helpers (severity-coloured)
    # ------------------------------------------------------------------ #

    def success(self, message: str) -> None:
        self._console.print(f"[lens.success][✔] SUCCESS:[/lens.success] {message}")

    def warning(self, message: str) -> None:
        self._console.print(f"[lens.warning][⚠] WARNING:[/lens.warning] {message}")

    def error(self, message: str) -> None:
        self._console.print(f"[lens.error][✘] ERROR:[/lens.error] {message}")

    def info(self, message: str) -> None:
        self._console.print(f"[lens.info][ℹ] INFO:[/lens.info] {message}")

    # ------------------------------------------------------------------ #
    #  Tables and panels
    # ------------------------------------------------------------------ #

    def table(
        self,
        title: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        *,
        caption: str | None = None,
        styles: Sequence[str] | None = None,
    ) -> None:
        """Render a styled Rich table.

        Args:
            title:    Table title.
            columns:  Column header labels.
            rows:     Iterable of row tuples; each element is stringified.
            caption:  Optional footer caption.
            styles:   Optional per-column Rich style strings.
        """
        tbl = Table(
            title=title,
            caption=caption,
            border_style="bright_cyan",
            header_style="bold bright_magenta",
            padding=(0, 1),
        )
        for idx, col_name in enumerate(columns):
            style = styles[idx] if styles and idx < len(styles) else ""
            tbl.add_column(col_name, style=style)

        for row in rows:
            tbl.add_row(*(escape(str(cell)) for cell in row))

        self._console.print(tbl)

    def key_values(self, title: str, values: Mapping[str, Any]) -> None:
        """Render aligned ``key: value`` lines inside a panel."""
        width = max((len(key) for key in values), default=0)
        lines = [
            f"[lens.key]{key.ljust(width)}[/lens.key]  {escape(str(value))}"
            for key, value in values.items()
        ]
        self._console.print(
            Panel(
                "\n".join(lines) if lines else "[lens.dim]-[/lens.dim]",
                title=f"[bold bright_cyan]{title}[/bold bright_cyan]",
                border_style="bright_cyan",
            )
        )

    @contextmanager
    def status(self, message: str = "Working...") -> Generator[Any, None, None]:
        """Context-manager showing a spinner with a status message."""
        with self._console.status(
            f"[lens.info]{message}[/lens.info]",
            spinner="dots",
            spinner_style="bright_cyan",
        ) as status_obj:
            yield status_obj

    # ------------------------------------------------------------------ #
    #  Utility
    # ------------------------------------------------------------------ #

    def print(self, *args: Any, **kwargs: Any) -> None:
        """Proxy to :meth:`rich.console.Console.print`."""
        self._console.print(*args, **kwargs)

    def blank(self, count: int = 1) -> None:
        for _ in range(count):
            self._console.print()

    def divider(self, style: str = "dim") -> None:
        self._console.rule(style=style)
