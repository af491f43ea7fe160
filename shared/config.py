"""
Warden Configuration Management
================================

Centralized configuration for the Warden entitlement extractor using
Python dataclasses and TOML-based persistence.

Configuration lives apart from code: every tunable (log verbosity,
worker count, file-size limits, bundle-layout names) can be overridden
from a ``warden.toml`` file without touching the extractor itself.

References:
    - Wiggins, A. (2011). The Twelve-Factor App. https://12factor.net/
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
    import tomli as tomllib  # type: ignore[no-redef]


# ---------------------------------------------------------------------------
# Default configuration file path relative to the project root
# ---------------------------------------------------------------------------
_DEFAULT_CONFIG_PATH: Path = Path(__file__).resolve().parent.parent / "warden.toml"


# ========================== Section Configs ================================


@dataclass(frozen=False, slots=True)
class ExtractorConfig:
    """Configuration for bundle discovery and Mach-O entitlement extraction.

    Attributes:
        max_file_size: Largest bundle archive or bare binary accepted, in bytes.
        macho_size_threshold: Files at or below this size are never probed
            as Mach-O candidates when listing bundle binaries.
        metadata_name: File name of the bundle metadata descriptor.
        executable_dir: Directory preferred when searching for the executable.
    """

    max_file_size: int = 2_147_483_648  # 2 GiB
    macho_size_threshold: int = 1024
    metadata_name: str = "Info.plist"
    executable_dir: str = "MacOS"


@dataclass(frozen=False, slots=True)
class GlobalConfig:
    """Global settings: logging and batch parallelism."""

    log_level: str = "INFO"
    log_file: str | None = None
    log_json: bool = False
    max_workers: int = 4
    debug: bool = False


# =========================== Master Config =================================


@dataclass(frozen=False, slots=True)
class WardenConfig:
    """Master configuration aggregating global and extractor settings.

    Usage:
        >>> config = WardenConfig.load()                 # from default path
        >>> config = WardenConfig.load("custom.toml")    # from custom path
        >>> config.extractor.metadata_name
        'Info.plist'
    """

    global_settings: GlobalConfig = field(default_factory=GlobalConfig)
    extractor: ExtractorConfig = field(default_factory=ExtractorConfig)

    # ------------------------------------------------------------------ #
    #  TOML Loading
    # ------------------------------------------------------------------ #

    @classmethod
    def load(cls, path: str | Path | None = None) -> WardenConfig:
        """Load configuration from a TOML file.

        If *path* is ``None`` the loader looks for ``warden.toml`` in the
        project root.  Missing keys fall back to dataclass defaults.

        Args:
            path: Filesystem path to a TOML configuration file.

        Returns:
            A fully-populated :class:`WardenConfig` instance.

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
            extractor=cls._build_section(ExtractorConfig, raw.get("extractor", {})),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise the entire configuration tree to a plain dictionary."""
        return asdict(self)

    @staticmethod
    def _build_section(cls: type, data: dict[str, Any]) -> Any:
        """Instantiate a dataclass *cls* using only the keys it declares.

        Unknown keys in the TOML source are ignored so that newer config
        files keep loading in older releases.
        """
        valid_keys = {f.name for f in cls.__dataclass_fields__.values()}  # type: ignore[attr-defined]
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        return cls(**filtered)


# ========================= Module-level convenience ========================

def get_config(path: str | Path | None = None) -> WardenConfig:
    """Module-level convenience wrapper around :meth:`WardenConfig.load`.

    Caches the result so that repeated calls share one instance.
    """
    if not hasattr(get_config, "_cached") or path is not None:
        get_config._cached = WardenConfig.load(path)  # type: ignore[attr-defined]
    return get_config._cached  # type: ignore[attr-defined]
