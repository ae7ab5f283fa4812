#!/usr/bin/env python3
"""lisa.grid

Raster data model shared by every pipeline stage.

- Grid: one 2-D array plus its affine transform, nodata sentinel and CRS.
- CovariateStack: an ordered, read-only mapping of covariate name -> Grid,
  all co-registered cell-for-cell.
- read_grid / write_stack / read_stack: thin rasterio wrappers.

Design notes:
- Grid arrays are flagged read-only on construction. A stage that needs new
  values builds a new Grid with Grid.like().
- Missing values are represented as NaN in float grids; the nodata sentinel is
  kept for round-tripping to disk.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, Mapping, Optional, Tuple

import numpy as np
import rasterio
from affine import Affine
from pyproj import CRS


@dataclass(frozen=True)
class Grid:
    data: np.ndarray
    transform: Affine
    nodata: Optional[float] = None
    crs: Optional[str] = None

    def __post_init__(self) -> None:
        if self.data.ndim != 2:
            raise ValueError(f"Grid data must be 2-D, got shape {self.data.shape}")
        arr = np.array(self.data, copy=True)
        arr.flags.writeable = False
        object.__setattr__(self, "data", arr)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape  # type: ignore[return-value]

    @property
    def cellsize(self) -> Tuple[float, float]:
        """(dx, dy) as positive lengths."""
        return abs(self.transform.a), abs(self.transform.e)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        rows, cols = self.shape
        x0, y0 = self.transform * (0, 0)
        x1, y1 = self.transform * (cols, rows)
        return (min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1))

    def valid_mask(self) -> np.ndarray:
        """True where the cell holds a usable value."""
        if self.data.dtype == bool:
            return np.ones(self.shape, dtype=bool)
        valid = np.isfinite(self.data)
        if self.nodata is not None and not np.isnan(self.nodata):
            valid &= self.data != self.nodata
        return valid

    def masked_values(self) -> np.ndarray:
        """Float copy of the data with invalid cells set to NaN."""
        out = self.data.astype("float64", copy=True)
        out[~self.valid_mask()] = np.nan
        return out

    def cell_centers(self, rows: np.ndarray, cols: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Map row/col indices to cell-centre coordinates."""
        rows = np.asarray(rows, dtype="float64")
        cols = np.asarray(cols, dtype="float64")
        xs, ys = self.transform * (cols + 0.5, rows + 0.5)
        return np.asarray(xs, dtype="float64"), np.asarray(ys, dtype="float64")

    def like(self, data: np.ndarray, nodata: Optional[float] = None) -> "Grid":
        """New grid with the same geometry and different values."""
        if data.shape != self.shape:
            raise ValueError(f"Shape mismatch: {data.shape} vs {self.shape}")
        return Grid(data=data, transform=self.transform, nodata=nodata, crs=self.crs)

    def same_geometry(self, other: "Grid") -> bool:
        return (
            self.shape == other.shape
            and self.transform.almost_equals(other.transform)
            and _same_crs(self.crs, other.crs)
        )


def _same_crs(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return a is None and b is None
    if a == b:
        return True
    return CRS.from_user_input(a) == CRS.from_user_input(b)


class CovariateStack(Mapping[str, Grid]):
    """Ordered, read-only mapping of covariate name -> co-registered Grid."""

    def __init__(self, grids: Mapping[str, Grid]):
        items = list(grids.items())
        if not items:
            raise ValueError("CovariateStack needs at least one grid")
        ref_name, ref = items[0]
        for name, grid in items[1:]:
            if not grid.same_geometry(ref):
                raise ValueError(
                    f"Covariate '{name}' is not co-registered with '{ref_name}' "
                    f"(shape {grid.shape} vs {ref.shape})"
                )
        self._grids: Dict[str, Grid] = dict(items)

    def __getitem__(self, name: str) -> Grid:
        return self._grids[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._grids)

    def __len__(self) -> int:
        return len(self._grids)

    def __repr__(self) -> str:
        return f"CovariateStack({list(self._grids)}, shape={self.reference.shape})"

    @property
    def reference(self) -> Grid:
        return next(iter(self._grids.values()))

    def subset(self, names: Iterable[str]) -> "CovariateStack":
        return CovariateStack({n: self._grids[n] for n in names})


# -----------------------------------------------------------------------------
# Raster I/O
# -----------------------------------------------------------------------------

def read_grid(path: Path, band: int = 1) -> Grid:
    """Read one band as a float64 Grid with nodata cells set to NaN."""
    with rasterio.open(path) as src:
        if src.crs is None:
            raise ValueError(f"Raster has no CRS: {path}")
        data = src.read(band).astype("float64")
        nodata = src.nodata
        if nodata is not None and not np.isnan(nodata):
            data[data == nodata] = np.nan
        return Grid(data=data, transform=src.transform, nodata=np.nan, crs=src.crs.to_string())


def write_stack(stack: CovariateStack, path: Path) -> Path:
    """Write a stack as a multi-band float32 GeoTIFF with band descriptions."""
    ref = stack.reference
    rows, cols = ref.shape
    profile = {
        "driver": "GTiff",
        "height": rows,
        "width": cols,
        "count": len(stack),
        "dtype": "float32",
        "crs": ref.crs,
        "transform": ref.transform,
        "nodata": np.nan,
        "compress": "deflate",
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(path, "w", **profile) as dst:
        for i, (name, grid) in enumerate(stack.items(), start=1):
            dst.write(grid.masked_values().astype("float32"), i)
            dst.set_band_description(i, name)
    return path


def read_stack(path: Path) -> CovariateStack:
    """Read a stack written by write_stack (band descriptions become names)."""
    grids: Dict[str, Grid] = {}
    with rasterio.open(path) as src:
        crs = src.crs.to_string() if src.crs is not None else None
        for i, name in enumerate(src.descriptions, start=1):
            if not name:
                raise ValueError(f"Band {i} of {path} has no description")
            data = src.read(i).astype("float64")
            grids[name] = Grid(data=data, transform=src.transform, nodata=np.nan, crs=crs)
    return CovariateStack(grids)
