"""
ImageLens Configuration Management
===================================

Centralized configuration for the ImageLens inspector using Python
dataclasses and TOML-based persistence.

Two sections are recognised:

    ``[global]``     logging and output preferences.
    ``[imagelens]``  default image layout and the safety limits applied to
                     every walk over counts or chains read from an image.

References:
    - Wiggins, A. (2011). The Twelve-Factor App. https://12factor.net/
    - PEP 681 -- Data Class Transforms (2022).
    - TOML v1.0.0 Specification. https://toml.io/en/v1.0.0
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


# ---------------------------------------------------------------------------
# Default configuration file path relative to the project root
# ---------------------------------------------------------------------------
_DEFAULT_CONFIG_PATH: Path = Path(__file__).resolve().parent.parent / "config.toml"

_LAYOUTS: tuple[str, ...] = ("file", "mapped")
_OUTPUT_FORMATS: tuple[str, ...] = ("console", "json")


# =========================== Parser Limits =================================


@dataclass(frozen=False, slots=True)
class ParserLimits:
    """Configuration for the ImageLens parsers.

    Every count, size or pointer chain read from an image is untrusted;
    these limits cap how far a single accessor will walk before it stops.
    """

    default_layout: str = "file"
    max_import_modules: int = 4096
    max_thunks_per_module: int = 65_536
    max_exports: int = 65_536
    max_resource_entries: int = 4096
    max_load_commands: int = 4096
    max_notes: int = 1024
    max_dynamic_entries: int = 8192
    max_link_map_entries: int = 4096
    max_string_length: int = 4096
    max_version_depth: int = 16

    def __post_init__(self) -> None:
        self.default_layout = str(self.default_layout).lower()
        if self.default_layout not in _LAYOUTS:
            raise ValueError(
                f"default_layout must be one of {', '.join(_LAYOUTS)}, "
                f"got {self.default_layout!r}"
            )


# =========================== Global Settings ===============================


@dataclass(frozen=False, slots=True)
class GlobalConfig:
    """Global settings: logging verbosity and output preferences."""

    log_level: str = "WARNING"
    log_file: str = ""
    log_json: bool = False
    output_format: str = "console"
    debug: bool = False

    def __post_init__(self) -> None:
        self.output_format = str(self.output_format).lower()
        if self.output_format not in _OUTPUT_FORMATS:
            raise ValueError(
                f"output_format must be one of {', '.join(_OUTPUT_FORMATS)}, "
                f"got {self.output_format!r}"
            )


# =========================== Master Config =================================


@dataclass(frozen=False, slots=True)
class LensConfig:
    """Master configuration aggregating global settings and parser limits.

    Usage:
        >>> config = LensConfig.load()                  # from default path
        >>> config = LensConfig.load("custom.toml")     # from custom path
        >>> config.imagelens.max_exports
        65536
    """

    global_settings: GlobalConfig = field(default_factory=GlobalConfig)
    imagelens: ParserLimits = field(default_factory=ParserLimits)

    # ------------------------------------------------------------------ #
    #  TOML Loading
    # ------------------------------------------------------------------ #

    @classmethod
    def load(cls, path: str | Path | None = None) -> LensConfig:
        """Load configuration from a TOML file.

        If *path* is ``None`` the loader looks for ``config.toml`` in the
        project root.  Missing keys fall back to dataclass defaults.

        Args:
            path: Filesystem path to a TOML configuration file.
                  Defaults to ``<project_root>/config.toml``.

        Returns:
            A fully-populated :class:`LensConfig` instance.

        Raises:
            FileNotFoundError: If the specified path does not exist
                *and* was explicitly provided by the caller.
        """
        config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH

        if not config_path.exists():
            if path is not None:
                raise FileNotFoundError(
                    f"Configuration file not found: {config_path}"
                )
            return cls()

        with open(config_path, "rb") as fh:
            raw: dict[str, Any] = tomllib.load(fh)

        return cls(
            global_settings=cls._build_section(GlobalConfig, raw.get("global", {})),
            imagelens=cls._build_section(ParserLimits, raw.get("imagelens", {})),
        )

    # ------------------------------------------------------------------ #
    #  Serialisation helpers
    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict[str, Any]:
        """Serialise the entire configuration tree to a plain dictionary."""
        return asdict(self)

    # ------------------------------------------------------------------ #
    #  Internal helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _build_section(cls: type, data: dict[str, Any]) -> Any:
        """Instantiate a dataclass *cls* using only the keys it declares.

        Unknown keys in the TOML source are ignored so that newer config
        files still load.
        """
        valid_keys = {f.name for f in cls.__dataclass_fields__.values()}  # type: ignore[attr-defined]
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        return cls(**filtered)


# ========================= Module-level convenience ========================

def get_config(path: str | Path | None = None) -> LensConfig:
    """Module-level convenience wrapper around :meth:`LensConfig.load`.

    Caches the result so that repeated calls share one instance.
    """
    if not hasattr(get_config, "_cached") or path is not None:
        get_config._cached = LensConfig.load(path)  # type: ignore[attr-defined]
    return get_config._cached  # type: ignore[attr-defined]
