"""Configuration loader for the RIP service.

Loads and validates ``rip.yaml`` into typed, frozen dataclasses.  Storage
locations, worker counts, separation multipliers and logging settings all
come from the config -- nothing is hardcoded in the pipeline.

Usage::

    from dtf_rip.configs.loader import load_config
    cfg = load_config()                      # default path
    cfg = load_config("/custom/rip.yaml")    # explicit path
    cfg = load_config(root=tmp_path)         # storage rooted elsewhere
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dtf_rip.errors import ConfigError
from dtf_rip.utils.fs import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "rip.yaml"


def default_data_dir() -> Path:
    """Per-user data directory: ``$XDG_DATA_HOME/dtf-rip`` or ``~/.local/share/dtf-rip``."""
    base = os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share"
    return Path(base).expanduser() / "dtf-rip"


# ---------------------------------------------------------------------------
# Dataclasses -- mirror the YAML structure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StorageConfig:
    """Absolute storage locations."""

    data_dir: Path
    output_dir: Path
    jobs_file: Path
    printers_file: Path
    profiles_file: Path
    profiles_dir: Path


@dataclass(frozen=True)
class ProcessingConfig:
    """Pipeline execution settings."""

    max_workers: int = 4
    parallel_stages: bool = True
    rows_per_band: int = 256
    separation_workers: int = 1
    pdf_scale: float = 2.0
    preview_max_px: int = 800


@dataclass(frozen=True)
class SeparationConfig:
    """Profile-driven C/M/Y multipliers keyed by profile id."""

    cmy_scale_by_profile: dict[str, float] = field(
        default_factory=lambda: {"vivid": 1.1, "muted": 0.9},
    )


@dataclass(frozen=True)
class DispatchConfig:
    """Printer dispatch settings."""

    simulated_print_s: float = 5.0


@dataclass(frozen=True)
class LoggingConfig:
    """Keyword arguments for ``setup_logging``."""

    level: str = "INFO"
    file: str | None = None
    json: bool = False
    color: bool = True
    rotate: dict[str, Any] | None = None

    def as_kwargs(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "file": self.file,
            "json": self.json,
            "color": self.color,
            "rotate": self.rotate,
        }


@dataclass(frozen=True)
class RipConfig:
    """Top-level configuration."""

    storage: StorageConfig
    processing: ProcessingConfig
    separation: SeparationConfig
    dispatch: DispatchConfig
    logging: LoggingConfig
    source_path: Path | None = None


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _resolve(base: Path, value: Any, key: str) -> Path:
    if not value:
        raise ConfigError(f"storage.{key} is required")
    p = Path(str(value)).expanduser()
    return p if p.is_absolute() else (base / p).resolve()


def _parse_storage(data: dict[str, Any], base: Path) -> StorageConfig:
    data_dir = _resolve(base, data.get("data_dir") or default_data_dir(), "data_dir")
    return StorageConfig(
        data_dir=data_dir,
        output_dir=_resolve(data_dir, data.get("output_dir", "jobs"), "output_dir"),
        jobs_file=_resolve(data_dir, data.get("jobs_file", "config/jobs.json"), "jobs_file"),
        printers_file=_resolve(
            data_dir, data.get("printers_file", "config/printers.json"), "printers_file",
        ),
        profiles_file=_resolve(
            data_dir, data.get("profiles_file", "config/color-profiles.json"), "profiles_file",
        ),
        profiles_dir=_resolve(data_dir, data.get("profiles_dir", "profiles"), "profiles_dir"),
    )


def _parse_processing(data: dict[str, Any]) -> ProcessingConfig:
    return ProcessingConfig(
        max_workers=int(data.get("max_workers", 4)),
        parallel_stages=bool(data.get("parallel_stages", True)),
        rows_per_band=int(data.get("rows_per_band", 256)),
        separation_workers=int(data.get("separation_workers", 1)),
        pdf_scale=float(data.get("pdf_scale", 2.0)),
        preview_max_px=int(data.get("preview_max_px", 800)),
    )


def _parse_separation(data: dict[str, Any]) -> SeparationConfig:
    raw = data.get("cmy_scale_by_profile", {"vivid": 1.1, "muted": 0.9}) or {}
    if not isinstance(raw, dict):
        raise ConfigError(
            f"separation.cmy_scale_by_profile must be a mapping, got {type(raw).__name__}"
        )
    return SeparationConfig(
        cmy_scale_by_profile={str(k): float(v) for k, v in raw.items()},
    )


def _validate_config(cfg: RipConfig) -> None:
    p = cfg.processing
    if p.max_workers < 1:
        raise ConfigError(f"processing.max_workers must be >= 1, got {p.max_workers}")
    if p.separation_workers < 1:
        raise ConfigError(
            f"processing.separation_workers must be >= 1, got {p.separation_workers}"
        )
    if p.rows_per_band < 1:
        raise ConfigError(f"processing.rows_per_band must be >= 1, got {p.rows_per_band}")
    if p.pdf_scale <= 0:
        raise ConfigError(f"processing.pdf_scale must be > 0, got {p.pdf_scale}")
    if p.preview_max_px < 1:
        raise ConfigError(f"processing.preview_max_px must be >= 1, got {p.preview_max_px}")

    for profile_id, scale in cfg.separation.cmy_scale_by_profile.items():
        if scale <= 0:
            raise ConfigError(
                f"separation.cmy_scale_by_profile[{profile_id!r}] must be > 0, got {scale}"
            )

    if cfg.dispatch.simulated_print_s < 0:
        raise ConfigError(
            f"dispatch.simulated_print_s must be >= 0, got {cfg.dispatch.simulated_print_s}"
        )

    level = cfg.logging.level.upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigError(f"logging.level is not a valid level: {cfg.logging.level}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    path: str | Path | None = None,
    *,
    root: str | Path | None = None,
) -> RipConfig:
    """Load and validate RIP configuration from YAML.

    Parameters
    ----------
    path : str | Path | None
        Path to ``rip.yaml``.  ``None`` loads the default shipped
        alongside this module.
    root : str | Path | None
        Overrides ``storage.data_dir``; all other storage paths are then
        resolved against it.

    Returns
    -------
    RipConfig
        Fully validated, frozen configuration object.

    Raises
    ------
    ConfigError
        If any field is missing or fails validation.
    FileNotFoundError
        If *path* does not exist.
    """
    path = DEFAULT_CONFIG_PATH if path is None else Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info("Loading configuration from %s", path)

    try:
        data = load_yaml(path)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    if data is None:
        raise ConfigError(f"Empty configuration file: {path}")

    try:
        storage_data = dict(data.get("storage") or {})
        if root is not None:
            storage_data["data_dir"] = str(Path(root).resolve())
        storage = _parse_storage(storage_data, path.parent.resolve())

        log_data = data.get("logging") or {}
        rotate = log_data.get("rotate")
        cfg = RipConfig(
            storage=storage,
            processing=_parse_processing(data.get("processing") or {}),
            separation=_parse_separation(data.get("separation") or {}),
            dispatch=DispatchConfig(
                simulated_print_s=float(
                    (data.get("dispatch") or {}).get("simulated_print_s", 5.0)
                ),
            ),
            logging=LoggingConfig(
                level=str(log_data.get("level", "INFO")),
                file=log_data.get("file"),
                json=bool(log_data.get("json", False)),
                color=bool(log_data.get("color", True)),
                rotate=dict(rotate) if rotate else None,
            ),
            source_path=path,
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value in {path}: {exc}") from exc

    _validate_config(cfg)
    logger.info("Configuration loaded successfully")
    return cfg
