"""
Parser Base
============

State and helpers shared by the PE, ELF and Mach-O image objects: the
image being read, the structure registry, parser limits, the logger,
and the bookkeeping that turns an unreadable auxiliary table into an
explicit "absent" result.
"""

from __future__ import annotations

from typing import Callable, Hashable, Optional, TypeVar

from shared.config import ParserLimits
from shared.logger import LensLogger

from imagelens.core.errors import UnreadableRegionError
from imagelens.core.memory import Image, ImageLayout
from imagelens.core.reflection import StructRegistry, TypedView
from imagelens.core.streams import UnreadableHandler

T = TypeVar("T")


class ParsedImage:
    """Common base of :class:`PEImage`, :class:`ELFImage` and :class:`MachOImage`.

    Args:
        image: The image to read.
        registry: Structure registry (owned by the inspector).
        limits: Safety limits for table walks.
        logger: Logger for degraded-table warnings.
    """

    format_name: str = ""

    def __init__(
        self,
        image: Image,
        registry: StructRegistry,
        limits: ParserLimits,
        logger: LensLogger,
    ) -> None:
        self.image = image
        self.registry = registry
        self.limits = limits
        self.logger = logger
        self.byteorder: str = "<"
        self._degraded: list[str] = []

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.image.name or hex(self.image.space.base)}>"

    @property
    def base(self) -> int:
        return self.image.space.base

    @property
    def is_file_layout(self) -> bool:
        return self.image.space.layout is ImageLayout.FILE

    @property
    def degraded(self) -> list[str]:
        """Names of auxiliary tables that could not be read."""
        return list(self._degraded)

    def validate(self) -> None:
        """Read every mandatory header, raising on the first failure."""
        raise NotImplementedError

    def instantiate(self, kind: Hashable, address: int) -> TypedView:
        return self.registry.instantiate(kind, self.image.memory, address, self.byteorder)

    def read_cstring(self, address: int) -> str:
        return self.image.memory.read_string(address, max_length=self.limits.max_string_length)

    # ------------------------------------------------------------------ #
    #  Degradation of auxiliary tables
    # ------------------------------------------------------------------ #

    def _record_degraded(self, table: str, exc: UnreadableRegionError) -> None:
        if table not in self._degraded:
            self._degraded.append(table)
        self.logger.warning(
            "%s table of %s is unreadable, treating as absent: %s",
            table, self.image.name or "image", exc,
        )

    def degraded_handler(self, table: str) -> UnreadableHandler:
        """Handler for a stream that should end quietly on a bad read."""
        def handle(exc: UnreadableRegionError) -> None:
            self._record_degraded(table, exc)
        return handle

    def guarded(self, table: str, read: Callable[[], T], default: Optional[T] = None) -> Optional[T]:
        """Run *read*, converting an unreadable region into *default*."""
        try:
            return read()
        except UnreadableRegionError as exc:
            self._record_degraded(table, exc)
            return default
