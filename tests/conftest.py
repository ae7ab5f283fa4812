#!/usr/bin/env python3

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest
from rasterio.transform import from_origin

# Ensure we can import from src/ without installing the package
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from lisa.grid import CovariateStack, Grid  # noqa: E402

CRS = "EPSG:32610"
CELL = 10.0


def make_grid(data, cell: float = CELL, crs: str = CRS) -> Grid:
    """Grid with its upper-left corner at (0, rows * cell)."""
    data = np.asarray(data)
    rows = data.shape[0]
    return Grid(data=data, transform=from_origin(0.0, rows * cell, cell, cell), nodata=np.nan, crs=crs)


def cell_xy(row: int, col: int, rows: int, cell: float = CELL):
    """Centre coordinates of (row, col) on a make_grid() grid."""
    return col * cell + cell / 2, rows * cell - row * cell - cell / 2


def make_stack(shape=(30, 30), durations=(6.0,), **overrides) -> CovariateStack:
    """Synthetic stack with every column the basin pipeline expects.

    gradient rises west to east (col / cols); curvatures are 0; the rest are
    constants unless overridden with an array.
    """
    from lisa.pipeline.basin import stack_columns

    rows, cols = shape
    defaults = {
        "gradient": np.tile(np.arange(cols, dtype="float64") / cols, (rows, 1)),
        "tancurv": np.zeros(shape),
        "profcurv": np.zeros(shape),
        "meancurv": np.zeros(shape),
        "dist_to_road": np.full(shape, 50.0),
        "total_accum": np.full(shape, 100.0),
        "stand_age_raw": np.full(shape, 300.0),
    }
    for d in durations:
        defaults[f"pca_{int(d)}"] = np.full(shape, 100.0)
    defaults.update(overrides)
    return CovariateStack({name: make_grid(defaults[name]) for name in stack_columns(durations)})


@pytest.fixture
def grid_factory():
    return make_grid
