#!/usr/bin/env python3
"""lisa.terrain.derivatives

Default TerrainDerivativeProvider: finite-difference surface derivatives and
D8 contributing areas routed over a pit-filled copy of the elevation array.

Derivatives use lagged central differences. The lag k (in cells) is chosen so
that the difference stencil spans roughly `length_scale` map units:

    k = max(1, round(length_scale / (2 * cellsize)))

Cells within k of the grid edge (or next to nodata) get NaN.

With p, q the first derivatives, r, t the second derivatives and s the mixed
derivative (Zevenbergen & Thorne notation), the outputs are:

    gradient = sqrt(p^2 + q^2)                       (rise over run)
    profcurv = -(r p^2 + 2 s p q + t q^2) / (g (1+g)^1.5)
    tancurv  = -(r q^2 - 2 s p q + t p^2) / (g (1+g)^0.5)
    meancurv = -((1+q^2) r - 2 p q s + (1+p^2) t) / (2 (1+g)^1.5)

where g = p^2 + q^2. Positive curvature is convex. Profile and tangential
curvature are set to 0 on perfectly flat cells.

Partial contributing area for a storm of duration d hours uses a travel
distance of conductivity * d (conductivity in map units per hour), converted
to a number of D8 steps.
"""

from __future__ import annotations

import math
from typing import Dict, Sequence

import numpy as np

from lisa.config import duration_label
from lisa.grid import Grid
from lisa.terrain.accumulation import flow_routing, partial_accumulation


def _shift(z: np.ndarray, dr: int, dc: int) -> np.ndarray:
    """out[i, j] = z[i + dr, j + dc], NaN where that falls outside the array."""
    rows, cols = z.shape
    out = np.full(z.shape, np.nan, dtype="float64")
    if abs(dr) >= rows or abs(dc) >= cols:
        return out
    out[max(0, -dr):rows - max(0, dr), max(0, -dc):cols - max(0, dc)] = z[
        max(0, dr):rows - max(0, -dr), max(0, dc):cols - max(0, -dc)
    ]
    return out


def lag_cells(length_scale: float, cellsize: float) -> int:
    return max(1, int(round(length_scale / (2.0 * cellsize))))


def surface_derivatives(z: np.ndarray, dx: float, dy: float, k: int) -> Dict[str, np.ndarray]:
    """Gradient and curvature arrays for elevation `z` at lag `k` cells.

    Rows run north to south, so 'north' is a negative row offset.
    """
    east, west = _shift(z, 0, k), _shift(z, 0, -k)
    north, south = _shift(z, -k, 0), _shift(z, k, 0)
    ne, nw = _shift(z, -k, k), _shift(z, -k, -k)
    se, sw = _shift(z, k, k), _shift(z, k, -k)

    hx, hy = k * dx, k * dy
    p = (east - west) / (2.0 * hx)
    q = (north - south) / (2.0 * hy)
    r = (east - 2.0 * z + west) / hx**2
    t = (north - 2.0 * z + south) / hy**2
    s = (ne - nw - se + sw) / (4.0 * hx * hy)

    g = p**2 + q**2
    flat = g == 0
    safe_g = np.where(flat, 1.0, g)
    with np.errstate(invalid="ignore", divide="ignore"):
        prof = -(r * p**2 + 2.0 * s * p * q + t * q**2) / (safe_g * (1.0 + g) ** 1.5)
        tan = -(r * q**2 - 2.0 * s * p * q + t * p**2) / (safe_g * np.sqrt(1.0 + g))
        mean = -((1.0 + q**2) * r - 2.0 * p * q * s + (1.0 + p**2) * t) / (2.0 * (1.0 + g) ** 1.5)

    prof = np.where(flat, 0.0, prof)
    tan = np.where(flat, 0.0, tan)

    # NaN in g (edges, nodata) must survive the flat substitution above
    missing = ~np.isfinite(g) | ~np.isfinite(s) | ~np.isfinite(z)
    out = {
        "gradient": np.sqrt(g),
        "tancurv": tan,
        "profcurv": prof,
        "meancurv": mean,
    }
    for arr in out.values():
        arr[missing] = np.nan
    return out


class FiniteDifferenceTerrain:
    """TerrainDerivativeProvider backed by numpy finite differences."""

    def derive(
        self,
        dem: Grid,
        length_scale: float,
        durations: Sequence[float],
        conductivity: float,
    ) -> Dict[str, Grid]:
        z = dem.masked_values()
        dx, dy = dem.cellsize
        k = lag_cells(length_scale, (dx + dy) / 2.0)

        grids: Dict[str, Grid] = {}
        for name, arr in surface_derivatives(z, dx, dy, k).items():
            grids[name] = dem.like(arr, nodata=np.nan)

        cell_area = dx * dy
        receivers, counts = flow_routing(z, dem.transform)
        grids["total_accum"] = dem.like(counts * cell_area, nodata=np.nan)

        valid = np.isfinite(z)
        for d in durations:
            steps = int(math.floor(conductivity * d / ((dx + dy) / 2.0)))
            pca = partial_accumulation(valid, receivers, cell_area, steps)
            grids[f"pca_{duration_label(d)}"] = dem.like(pca, nodata=np.nan)
        return grids
