#!/usr/bin/env python3
"""lisa.providers

Capability interfaces the sampling core depends on but does not implement.

The pipeline only talks to terrain analysis and vector/raster overlay through
these two protocols. Default implementations live in lisa.terrain and
lisa.overlay; tests substitute in-memory fakes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Protocol, Sequence

import geopandas as gpd
import numpy as np
import pandas as pd

from lisa.grid import CovariateStack, Grid


class TerrainDerivativeProvider(Protocol):
    def derive(
        self,
        dem: Grid,
        length_scale: float,
        durations: Sequence[float],
        conductivity: float,
    ) -> Dict[str, Grid]:
        """Return gradient, tancurv, profcurv, meancurv, total_accum and one
        pca_<duration> grid per duration, all co-registered with `dem`."""
        ...


class VectorOverlayProvider(Protocol):
    def read_points(self, path: Path, crs: Optional[str]) -> gpd.GeoDataFrame:
        """Read a point layer, reprojected into `crs` when given."""
        ...

    def rock_class(self, points: gpd.GeoDataFrame, polygons: Path, field: str) -> pd.Series:
        """Point-in-polygon lookup of `field`; NaN where no polygon contains the point."""
        ...

    def road_distance(self, roads: Path, reference: Grid) -> Grid:
        """Distance from each cell to the nearest road line; all-NaN when none intersect."""
        ...

    def resample_to(self, raster: Path, reference: Grid) -> Grid:
        """Resample a raster onto the reference grid geometry."""
        ...

    def sample(self, stack: CovariateStack, x: np.ndarray, y: np.ndarray) -> pd.DataFrame:
        """Bilinear point sampling of every stack member; NaN when out of extent or nodata."""
        ...
