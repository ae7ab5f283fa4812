#!/usr/bin/env python3
"""lisa.sampling.sampler

Seeded, without-replacement sampling of eligible cells.

The requested count is a target: when the eligible region holds fewer cells
than requested, every eligible cell is returned. Coordinates are cell
centres in the mask's CRS, ordered by raster position so the same inputs and
seed always give the same array.
"""

from __future__ import annotations

import math
import zlib

import numpy as np

from lisa.grid import Grid


def target_sample_count(positive_count: int, oversample_factor: float) -> int:
    """ceil(positive_count * oversample_factor)."""
    if oversample_factor < 0:
        raise ValueError(f"oversample_factor must be >= 0, got {oversample_factor}")
    if positive_count < 0:
        raise ValueError(f"positive_count must be >= 0, got {positive_count}")
    return int(math.ceil(positive_count * oversample_factor))


def derive_seed(base_seed: int, basin_id: str, cohort: str, strategy: str = "per_basin") -> int:
    """Seed for one (basin, cohort) sampling call.

    'shared' reuses base_seed everywhere: randomness is reproducible per basin
    but identical draws repeat across basins with the same mask layout.
    'per_basin' mixes a checksum of the basin and cohort names into the seed,
    which does not depend on execution order or worker count.
    """
    if strategy == "shared":
        return int(base_seed)
    if strategy == "per_basin":
        return zlib.adler32(f"{basin_id}:{cohort}".encode("utf-8")) % 10000 + int(base_seed)
    raise ValueError(f"Unknown seed strategy: {strategy!r}")


def sample_eligible_cells(mask: Grid, n: int, seed: int) -> np.ndarray:
    """Up to `n` distinct eligible cell centres as an (k, 2) array of x, y."""
    if n < 0:
        raise ValueError(f"n must be >= 0, got {n}")
    flat = np.flatnonzero(np.asarray(mask.data, dtype=bool).ravel())
    if n == 0 or flat.size == 0:
        return np.empty((0, 2), dtype="float64")

    if flat.size > n:
        rng = np.random.default_rng(seed)
        flat = np.sort(rng.choice(flat, size=n, replace=False))

    rows, cols = np.unravel_index(flat, mask.shape)
    xs, ys = mask.cell_centers(rows, cols)
    return np.column_stack([xs, ys])
