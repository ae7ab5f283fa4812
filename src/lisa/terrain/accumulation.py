#!/usr/bin/env python3
"""lisa.terrain.accumulation

D8 flow routing and contributing-area grids.

Routing runs on a hydrologically conditioned copy of the elevation grid
(pysheds: fill_pits -> fill_depressions -> resolve_flats), so single-cell
pits, closed depressions and flats pass flow on instead of ending it. The
conditioned surface is used for routing only; derivatives are computed on
the original elevations.

Flow directions use the ESRI D8 codes in DIRMAP. Cells without outflow
(nodata, grid edges, cells draining onto nodata) have no receiver.

Two accumulations come from the same flow directions:

- total contributing area: every upslope cell, in map units squared;
- partial contributing area: only cells within a fixed number of D8 steps of
  the target cell, which approximates the area able to deliver subsurface flow
  within a storm of a given duration.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np
from affine import Affine
from pysheds.grid import Grid as ShedGrid
from pysheds.sview import Raster, ViewFinder

# N, NE, E, SE, S, SW, W, NW
DIRMAP = (64, 128, 1, 2, 4, 8, 16, 32)
D8_OFFSETS = ((-1, 0), (-1, 1), (0, 1), (1, 1), (1, 0), (1, -1), (0, -1), (-1, -1))

NODATA = -9999.0


def receivers_from_flowdir(fdir: np.ndarray, valid: np.ndarray) -> np.ndarray:
    """Flat index of each cell's downslope neighbour, or -1 where there is none."""
    rows, cols = fdir.shape
    r_idx, c_idx = np.indices((rows, cols))
    receivers = np.full((rows, cols), -1, dtype="int64")
    for code, (dr, dc) in zip(DIRMAP, D8_OFFSETS):
        rr, cc = r_idx + dr, c_idx + dc
        hit = (fdir == code) & valid & (rr >= 0) & (rr < rows) & (cc >= 0) & (cc < cols)
        receivers[hit] = rr[hit] * cols + cc[hit]

    flat = receivers.ravel()
    into_nodata = flat >= 0
    into_nodata[into_nodata] = ~valid.ravel()[flat[into_nodata]]
    flat[into_nodata] = -1
    return flat


def flow_routing(elev: np.ndarray, transform: Affine) -> Tuple[np.ndarray, np.ndarray]:
    """Conditioned D8 routing of `elev` (NaN = nodata).

    Returns (receivers, cell_counts): flat receiver indices as in
    receivers_from_flowdir, and the number of cells draining through each
    cell including itself (NaN on nodata).
    """
    valid = np.isfinite(elev)
    if not valid.any():
        return np.full(elev.size, -1, dtype="int64"), np.full(elev.shape, np.nan)

    view = ViewFinder(affine=transform, shape=elev.shape, nodata=NODATA)
    grid = ShedGrid(viewfinder=view)
    dem = Raster(np.where(valid, elev, NODATA).astype("float64"), viewfinder=view)

    dem = grid.fill_pits(dem)
    dem = grid.fill_depressions(dem)
    dem = grid.resolve_flats(dem)
    fdir = grid.flowdir(dem, dirmap=DIRMAP, routing="d8")
    acc = grid.accumulation(fdir, dirmap=DIRMAP, routing="d8")

    counts = np.asarray(acc, dtype="float64").copy()
    counts[~valid] = np.nan
    return receivers_from_flowdir(np.asarray(fdir), valid), counts


def partial_accumulation(
    valid: np.ndarray, receivers: np.ndarray, cell_area: float, steps: int
) -> np.ndarray:
    """Area of cells reaching each cell within `steps` D8 moves."""
    base = np.where(valid.ravel(), cell_area, 0.0)
    donors = np.flatnonzero(receivers >= 0)
    targets = receivers[donors]

    acc = base.copy()
    for _ in range(min(int(steps), base.size)):
        nxt = base + np.bincount(targets, weights=acc[donors], minlength=base.size)
        if np.array_equal(nxt, acc):
            break
        acc = nxt

    acc[~valid.ravel()] = np.nan
    return acc.reshape(valid.shape)
