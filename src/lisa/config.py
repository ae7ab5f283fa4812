#!/usr/bin/env python3
"""lisa.config

Shared configuration utilities for the LISA CLI subsystems.

This module provides the helpers used across lisa.registry and lisa.pipeline:
- strict YAML loading
- the PipelineConfig dataclass (defaults, overrides, validation)
- the storm-duration list loader
- bbox formatting for human-readable summaries

Design notes:
- YAML loading is strict: files must exist and be valid mappings.
- Numeric options are validated up front by PipelineConfig.validate(), so a bad
  buffer or oversample value is rejected before any basin is read.
- All functions are pure (no side effects on import).
"""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml


class ConfigError(ValueError):
    """Raised when configuration values are missing or inconsistent."""


# -----------------------------------------------------------------------------
# YAML loading
# -----------------------------------------------------------------------------

def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return as dict.

    Raises SystemExit on missing file or invalid format (non-mapping).
    Config errors should fail fast, before any raster is opened.
    """
    if not path.exists():
        raise SystemExit(f"Config not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SystemExit(f"Expected YAML mapping at {path}")
    return data


# -----------------------------------------------------------------------------
# Durations
# -----------------------------------------------------------------------------

DEFAULT_DURATIONS: Tuple[float, ...] = (6.0, 12.0, 24.0, 48.0)


def parse_durations(text: str) -> List[float]:
    """Parse storm durations (hours) from free text.

    Values may be separated by commas, whitespace or newlines. Anything after
    a '#' on a line is ignored.
    """
    values: List[float] = []
    for line in text.splitlines():
        line = line.split("#", 1)[0]
        for token in re.split(r"[,\s]+", line.strip()):
            if not token:
                continue
            try:
                value = float(token)
            except ValueError as e:
                raise ConfigError(f"Invalid duration value: {token!r}") from e
            if value <= 0:
                raise ConfigError(f"Durations must be positive hours, got {value}")
            values.append(value)
    return values


def load_durations(path: Optional[Path]) -> List[float]:
    """Load the duration list, falling back to DEFAULT_DURATIONS when absent."""
    if path is None or not path.exists():
        return list(DEFAULT_DURATIONS)
    values = parse_durations(path.read_text(encoding="utf-8"))
    if not values:
        raise ConfigError(f"Duration list is empty: {path}")
    return values


def duration_label(hours: float) -> str:
    """Format a duration for use in a column name ('6', '12.5')."""
    if float(hours).is_integer():
        return str(int(hours))
    return f"{hours:g}"


# -----------------------------------------------------------------------------
# Pipeline configuration
# -----------------------------------------------------------------------------

SEED_STRATEGIES = ("shared", "per_basin")
AGE_POLICIES = ("drop", "keep", "clip")
OUTPUT_FORMATS = ("csv", "parquet")


@dataclass(frozen=True)
class PipelineConfig:
    """Options recognised by the sampling pipeline.

    Distances (length_scale, buffers) are in the units of the elevation grids'
    CRS, which is expected to be projected in metres.
    """

    output_dir: Path = Path("data/processed/lisa")
    data_dir: Path = Path("data/raw")
    manifest: Path = Path("config/basins.csv")
    durations_file: Optional[Path] = None

    length_scale: float = 15.0
    inner_buffer: float = 30.0
    outer_buffer: float = 1500.0
    expansion_factor: float = 1.0
    oversample: float = 10.0

    seed: int = 42
    seed_strategy: str = "per_basin"
    workers: int = 1

    hydraulic_conductivity: float = 0.65  # m/h
    stand_age_reference_year: int = 2017
    stand_age_scale: float = 10.0
    age_policy: str = "drop"

    output_format: str = "csv"

    year_field: str = "year"
    date_range_field: str = "date_range"
    geology_field: str = "rock_class"

    geology: str = "geology.gpkg"
    roads: str = "roads.gpkg"
    stand_age: str = "stand_age.tif"

    def validate(self) -> "PipelineConfig":
        """Check option consistency. Returns self so calls can be chained."""
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, float) and not math.isfinite(value):
                raise ConfigError(f"{f.name} must be finite, got {value}")
        if self.inner_buffer <= 0:
            raise ConfigError(f"inner_buffer must be > 0, got {self.inner_buffer}")
        if self.outer_buffer <= self.inner_buffer:
            raise ConfigError(
                f"outer_buffer ({self.outer_buffer}) must be greater than "
                f"inner_buffer ({self.inner_buffer})"
            )
        if self.oversample < 0:
            raise ConfigError(f"oversample must be >= 0, got {self.oversample}")
        if self.expansion_factor < 1:
            raise ConfigError(f"expansion_factor must be >= 1, got {self.expansion_factor}")
        if self.length_scale <= 0:
            raise ConfigError(f"length_scale must be > 0, got {self.length_scale}")
        if self.hydraulic_conductivity <= 0:
            raise ConfigError(
                f"hydraulic_conductivity must be > 0, got {self.hydraulic_conductivity}"
            )
        if self.stand_age_scale <= 0:
            raise ConfigError(f"stand_age_scale must be > 0, got {self.stand_age_scale}")
        if self.workers < 1:
            raise ConfigError(f"workers must be >= 1, got {self.workers}")
        if self.seed_strategy not in SEED_STRATEGIES:
            raise ConfigError(f"seed_strategy must be one of {SEED_STRATEGIES}, got {self.seed_strategy!r}")
        if self.age_policy not in AGE_POLICIES:
            raise ConfigError(f"age_policy must be one of {AGE_POLICIES}, got {self.age_policy!r}")
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigError(f"output_format must be one of {OUTPUT_FORMATS}, got {self.output_format!r}")
        return self

    # --- derived paths ---

    def layer_path(self, name: str) -> Path:
        """Resolve a layer filename ('geology', 'roads', 'stand_age') under data_dir."""
        return self.data_dir / getattr(self, name)

    @property
    def cache_dir(self) -> Path:
        return self.output_dir / "cache"

    def durations(self) -> List[float]:
        return load_durations(self.durations_file)

    def with_overrides(self, **overrides: Any) -> "PipelineConfig":
        """Return a copy with non-None overrides applied (CLI flags)."""
        clean = {k: v for k, v in overrides.items() if v is not None}
        return _coerce(replace(self, **clean))

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        return {k: (str(v) if isinstance(v, Path) else v) for k, v in out.items()}


_PATH_FIELDS = {"output_dir", "data_dir", "manifest", "durations_file"}


def _coerce(cfg: PipelineConfig) -> PipelineConfig:
    """Normalise YAML scalars to the declared field types."""
    updates: Dict[str, Any] = {}
    for f in fields(cfg):
        value = getattr(cfg, f.name)
        if value is None:
            continue
        if f.name in _PATH_FIELDS:
            updates[f.name] = Path(value)
        elif isinstance(f.default, bool):
            updates[f.name] = bool(value)
        elif isinstance(f.default, int):
            updates[f.name] = int(value)
        elif isinstance(f.default, float):
            try:
                updates[f.name] = float(value)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"{f.name} must be numeric, got {value!r}") from e
        elif isinstance(f.default, str):
            updates[f.name] = str(value)
    return replace(cfg, **updates)


def config_from_mapping(data: Dict[str, Any]) -> PipelineConfig:
    """Build a PipelineConfig from a parsed YAML mapping.

    Unknown keys are rejected so a typo ('outer_bufer') does not silently fall
    back to the default. The optional 'cohorts' / 'cohort_rules' sections are
    consumed by lisa.temporal.cohorts and ignored here.
    """
    known = {f.name for f in fields(PipelineConfig)}
    ignored = {"cohorts", "cohort_rules", "logging"}
    unknown = sorted(set(data) - known - ignored)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {unknown}")
    values = {k: v for k, v in data.items() if k in known}
    return _coerce(PipelineConfig(**values))


def load_pipeline_config(path: Optional[Path]) -> Tuple[PipelineConfig, Dict[str, Any]]:
    """Load config YAML (if given) and return (config, raw mapping).

    The raw mapping is returned alongside so callers can pick up the optional
    cohort sections.
    """
    raw: Dict[str, Any] = load_yaml(path) if path is not None else {}
    return config_from_mapping(raw), raw


# -----------------------------------------------------------------------------
# Bounding box utilities
# -----------------------------------------------------------------------------

def union_bbox(
    bboxes: Sequence[Tuple[float, float, float, float]]
) -> Optional[Tuple[float, float, float, float]]:
    """Compute the bounding box that contains all input bboxes.

    Returns None if input is empty.
    """
    bboxes = list(bboxes)
    if not bboxes:
        return None
    xmin = min(b[0] for b in bboxes)
    ymin = min(b[1] for b in bboxes)
    xmax = max(b[2] for b in bboxes)
    ymax = max(b[3] for b in bboxes)
    return (xmin, ymin, xmax, ymax)


def format_bbox(b: Tuple[float, float, float, float], precision: int = 1) -> str:
    """Format a bbox tuple as a readable string."""
    return f"[{b[0]:.{precision}f}, {b[1]:.{precision}f}, {b[2]:.{precision}f}, {b[3]:.{precision}f}]"


# -----------------------------------------------------------------------------
# Default paths
# -----------------------------------------------------------------------------
# Centralized so all CLIs use the same defaults.

DEFAULT_CONFIG_YAML = Path("config/lisa.yaml")
DEFAULT_MANIFEST = Path("config/basins.csv")
