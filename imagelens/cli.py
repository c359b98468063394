"""
ImageLens CLI
==============

Click-based command-line interface for the ImageLens image inspector.
Provides subcommands to classify a file by its magic bytes and to parse
and summarise a PE, ELF or Mach-O image.

Usage::

    python -m imagelens classify /usr/bin/ls
    python -m imagelens inspect /usr/bin/ls
    python -m imagelens inspect dump.bin --layout mapped --base 0x7ff6a0000000
    python -m imagelens inspect app.exe --json
    python -m imagelens --config config.toml inspect lib.dylib --output report.json

References:
    - Click Documentation. https://click.palletsprojects.com/
"""

from __future__ import annotations

from typing import Optional

import click
from rich.markup import escape

from shared.config import LensConfig
from shared.console import LensConsole
from shared.logger import LensLogger

from imagelens import __version__
from imagelens.core.engine import ImageInspector
from imagelens.core.errors import ImageError
from imagelens.core.memory import Image
from imagelens.output.console import LensConsoleOutput
from imagelens.output.report import LensReportGenerator


class _AddressType(click.ParamType):
    """An integer written in decimal, ``0x`` hex, ``0o`` octal or ``0b`` binary."""

    name = "address"

    def convert(self, value, param, ctx):
        if isinstance(value, int):
            return value
        try:
            address = int(value, 0)
        except ValueError:
            self.fail(f"{value!r} is not a valid address", param, ctx)
        if address < 0:
            self.fail(f"{value!r} is negative", param, ctx)
        return address


ADDRESS = _AddressType()


# ===================================================================== #
#  CLI Group
# ===================================================================== #

@click.group("imagelens")
@click.option(
    "--config", "-c",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to an ImageLens configuration file (TOML).",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging.",
)
@click.option(
    "--quiet", "-q",
    is_flag=True,
    default=False,
    help="Suppress the banner, informational output and console logging.",
)
@click.version_option(__version__, prog_name="imagelens")
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[str],
    verbose: bool,
    quiet: bool,
) -> None:
    """ImageLens -- PE / ELF / Mach-O image inspector.

    Classify executable images by their magic bytes and summarise their
    headers, sections, linked libraries and debug identifiers.
    """
    ctx.ensure_object(dict)

    lens_config = LensConfig.load(config)
    settings = lens_config.global_settings
    log_level = "DEBUG" if verbose or settings.debug else settings.log_level
    logger = LensLogger(
        "cli",
        log_level=log_level,
        log_file=settings.log_file or None,
        json_logs=settings.log_json,
        console_output=not quiet,
    )

    console = LensConsole(quiet=quiet)
    ctx.obj["config"] = lens_config
    ctx.obj["quiet"] = quiet
    ctx.obj["console"] = console
    ctx.obj["logger"] = logger
    ctx.obj["inspector"] = ImageInspector(lens_config, logger.child("engine"))
    ctx.obj["display"] = LensConsoleOutput(console)
    ctx.obj["reporter"] = LensReportGenerator()


# ===================================================================== #
#  Subcommands
# ===================================================================== #

@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def classify(ctx: click.Context, path: str) -> None:
    """Report the container format of PATH from its first four bytes."""
    inspector: ImageInspector = ctx.obj["inspector"]
    image = Image.from_file(path)
    click.echo(f"{image.name}: {inspector.classify(image).value}")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--layout", "-l",
    type=click.Choice(["file", "mapped"], case_sensitive=False),
    default=None,
    help="How the bytes are laid out: raw file or loader-mapped image.  "
         "Default: the configured default_layout.",
)
@click.option(
    "--base", "-b",
    type=ADDRESS,
    default=0,
    show_default=True,
    help="Address at which the image bytes are placed.",
)
@click.option(
    "--json/--console", "json_output",
    default=None,
    help="Print the summary as JSON to stdout, or render it for the "
         "terminal.  Default: the configured output_format.",
)
@click.option(
    "--output", "-o",
    "output_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write a JSON report to this file.",
)
@click.pass_context
def inspect(
    ctx: click.Context,
    path: str,
    layout: Optional[str],
    base: int,
    json_output: Optional[bool],
    output_path: Optional[str],
) -> None:
    """Parse PATH and summarise its headers, regions and libraries."""
    inspector: ImageInspector = ctx.obj["inspector"]
    console: LensConsole = ctx.obj["console"]
    logger: LensLogger = ctx.obj["logger"]
    reporter: LensReportGenerator = ctx.obj["reporter"]
    if json_output is None:
        json_output = ctx.obj["config"].global_settings.output_format == "json"

    try:
        with logger.operation("inspect"):
            parsed = inspector.inspect_file(path, layout=layout, base=base)
            summary = inspector.describe(parsed)
    except ImageError as exc:
        console.error(escape(str(exc)))
        logger.debug("Inspection of %s failed", path, exc_info=True)
        ctx.exit(1)

    if json_output:
        click.echo(reporter.render_json(summary))
    else:
        if not ctx.obj["quiet"]:
            console.banner(version=__version__)
        ctx.obj["display"].display(summary)

    if output_path:
        report_path = reporter.generate_json(summary, output_path)
        if not json_output:
            console.success(f"JSON report saved: {escape(report_path)}")


# ===================================================================== #
#  Entry Point
# ===================================================================== #

def main() -> None:
    """Main entry point for the ImageLens CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
