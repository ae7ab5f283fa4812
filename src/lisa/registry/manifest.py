#!/usr/bin/env python3
"""lisa.registry.manifest

Basin manifest loading and input verification.

The manifest is a CSV with a header row and one row per basin. The first
column is the path to the clipped elevation grid, the second the path to that
basin's initiation-point layer. Column names are not interpreted, only their
position. Paths must be absolute.

Each basin is identified by its elevation file stem. Colliding stems get a
numeric suffix in manifest order ("dem", "dem_2", ...), so ids stay stable as
long as the manifest order does.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Sequence

import pandas as pd

from lisa.config import ConfigError, PipelineConfig

LAYER_NAMES = ("geology", "roads", "stand_age")


@dataclass(frozen=True)
class Basin:
    basin_id: str
    elevation_path: Path
    points_path: Path


def _unique_ids(stems: Sequence[str]) -> List[str]:
    seen: Dict[str, int] = {}
    out: List[str] = []
    for stem in stems:
        n = seen.get(stem, 0) + 1
        seen[stem] = n
        out.append(stem if n == 1 else f"{stem}_{n}")
    return out


def load_manifest(path: Path) -> List[Basin]:
    """Read the basin manifest. Raises SystemExit if missing, ConfigError if malformed."""
    if not path.exists():
        raise SystemExit(f"Basin manifest not found: {path}")

    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    if df.shape[1] < 2:
        raise ConfigError(f"Manifest needs two columns (elevation, points), got {list(df.columns)}")

    dems: List[Path] = []
    points: List[Path] = []
    for i, row in enumerate(df.itertuples(index=False), start=2):
        dem, pts = str(row[0]).strip(), str(row[1]).strip()
        if not dem or not pts:
            raise ConfigError(f"{path}:{i}: empty path")
        for p in (dem, pts):
            if not Path(p).is_absolute():
                raise ConfigError(f"{path}:{i}: manifest paths must be absolute, got {p!r}")
        dems.append(Path(dem))
        points.append(Path(pts))

    ids = _unique_ids([p.stem for p in dems])
    return [Basin(basin_id=b, elevation_path=d, points_path=p) for b, d, p in zip(ids, dems, points)]


def verify_inputs(basins: Sequence[Basin], config: PipelineConfig) -> List[str]:
    """Return a list of problems (missing files). Empty list means ready to run."""
    problems: List[str] = []
    for name in LAYER_NAMES:
        path = config.layer_path(name)
        if not path.exists():
            problems.append(f"{name} layer not found: {path}")
    if config.durations_file is not None and not config.durations_file.exists():
        problems.append(f"durations file not found: {config.durations_file}")
    for b in basins:
        if not b.elevation_path.exists():
            problems.append(f"{b.basin_id}: elevation grid not found: {b.elevation_path}")
        if not b.points_path.exists():
            problems.append(f"{b.basin_id}: point layer not found: {b.points_path}")
    return problems
