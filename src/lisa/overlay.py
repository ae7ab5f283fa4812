#!/usr/bin/env python3
"""lisa.overlay

Default VectorOverlayProvider built on geopandas, shapely and rasterio.

Responsibilities:
- read initiation points and reproject them into a basin's CRS
- point-in-polygon lookup of the geology (rock class) attribute
- distance-to-road grids (rasterize lines, Euclidean distance transform)
- window-read + resample of regional rasters (stand age) onto a basin grid
- bilinear point sampling of a CovariateStack

Design notes:
- Bilinear interpolation is between cell centres. A point is missing (NaN)
  when it falls outside the centre-to-centre envelope or when any neighbour
  with non-zero weight is nodata.
- Roads are only considered where they intersect the basin extent; a basin
  with no roads gets an all-NaN distance grid (logged as a warning).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import geopandas as gpd
import numpy as np
import pandas as pd
import rasterio
from affine import Affine
from rasterio.enums import Resampling
from rasterio.features import rasterize
from rasterio.warp import reproject, transform_bounds
from rasterio.windows import from_bounds
from scipy.ndimage import distance_transform_edt
from shapely.geometry import box

from lisa.grid import CovariateStack, Grid

log = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _make_valid(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Fix invalid polygon geometries and drop empties."""
    gdf = gdf[gdf.geometry.notna()].copy()
    if hasattr(gdf.geometry, "make_valid"):
        gdf["geometry"] = gdf.geometry.make_valid()
    else:
        gdf["geometry"] = gdf.geometry.buffer(0)
    return gdf[~gdf.geometry.is_empty]


def bilinear_sample(values: np.ndarray, transform: Affine, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Bilinear sampling of a float array (NaN = nodata) at map coordinates."""
    x = np.asarray(x, dtype="float64")
    y = np.asarray(y, dtype="float64")
    rows, cols = values.shape

    col_f, row_f = ~transform * (x, y)
    r = np.asarray(row_f, dtype="float64") - 0.5
    c = np.asarray(col_f, dtype="float64") - 0.5
    inside = np.isfinite(r) & np.isfinite(c) & (r >= 0) & (c >= 0) & (r <= rows - 1) & (c <= cols - 1)
    r = np.where(inside, r, 0.0)
    c = np.where(inside, c, 0.0)

    r0 = np.floor(r).astype("int64")
    c0 = np.floor(c).astype("int64")
    r1 = np.minimum(r0 + 1, rows - 1)
    c1 = np.minimum(c0 + 1, cols - 1)
    dr = r - r0
    dc = c - c0

    corners = (
        (values[r0, c0], (1 - dr) * (1 - dc)),
        (values[r1, c0], dr * (1 - dc)),
        (values[r0, c1], (1 - dr) * dc),
        (values[r1, c1], dr * dc),
    )
    total = np.zeros(x.shape, dtype="float64")
    missing = ~inside
    for v, w in corners:
        used = w > 0
        missing |= used & ~np.isfinite(v)
        total += np.where(used & np.isfinite(v), w * np.nan_to_num(v), 0.0)
    total[missing] = np.nan
    return total


# -----------------------------------------------------------------------------
# Provider
# -----------------------------------------------------------------------------

class GeoOverlay:
    """VectorOverlayProvider backed by geopandas / rasterio."""

    def read_points(self, path: Path, crs: Optional[str]) -> gpd.GeoDataFrame:
        gdf = gpd.read_file(path)
        if gdf.crs is None:
            raise ValueError(f"Point layer has no CRS: {path}")
        gdf = gdf[gdf.geometry.notna() & ~gdf.geometry.is_empty].copy()
        if not gdf.empty and not (gdf.geom_type == "Point").all():
            gdf = gdf.explode(index_parts=False)
            gdf = gdf[gdf.geom_type == "Point"].copy()
        if crs is not None:
            gdf = gdf.to_crs(crs)
        return gdf.reset_index(drop=True)

    def rock_class(self, points: gpd.GeoDataFrame, polygons: Path, field: str) -> pd.Series:
        polys = gpd.read_file(polygons)
        if field not in polys.columns:
            raise KeyError(f"Geology field '{field}' not found in {polygons}. Columns: {list(polys.columns)}")
        if polys.crs is None:
            raise ValueError(f"Geology layer has no CRS: {polygons}")
        polys = _make_valid(polys[[field, "geometry"]]).to_crs(points.crs)

        joined = gpd.sjoin(points[["geometry"]], polys, how="left", predicate="intersects")
        joined = joined[~joined.index.duplicated(keep="first")]
        return joined[field].reindex(points.index)

    def road_distance(self, roads: Path, reference: Grid) -> Grid:
        lines = gpd.read_file(roads)
        if lines.crs is None:
            raise ValueError(f"Road layer has no CRS: {roads}")
        lines = lines[lines.geometry.notna()].to_crs(reference.crs)
        local = lines[lines.intersects(box(*reference.bounds))]

        if local.empty:
            log.warning("No road features intersect grid %s; dist_to_road is missing", reference.bounds)
            return reference.like(np.full(reference.shape, np.nan), nodata=np.nan)

        burned = rasterize(
            [(g, 1) for g in local.geometry],
            out_shape=reference.shape,
            transform=reference.transform,
            fill=0,
            all_touched=True,
            dtype="uint8",
        )
        dx, dy = reference.cellsize
        dist = distance_transform_edt(burned == 0, sampling=(dy, dx))
        return reference.like(dist.astype("float64"), nodata=np.nan)

    def resample_to(self, raster: Path, reference: Grid) -> Grid:
        dst = np.full(reference.shape, np.nan, dtype="float64")
        with rasterio.open(raster) as src:
            if src.crs is None:
                raise ValueError(f"Raster has no CRS: {raster}")

            # read only the window covering the basin, in the source CRS
            bbox = transform_bounds(reference.crs, src.crs, *reference.bounds, densify_pts=21)
            win = from_bounds(*bbox, transform=src.transform)
            win = win.round_offsets().round_lengths()
            data = src.read(1, window=win, boundless=True, masked=True).astype("float64").filled(np.nan)

            reproject(
                source=data,
                destination=dst,
                src_transform=src.window_transform(win),
                src_crs=src.crs,
                src_nodata=np.nan,
                dst_transform=reference.transform,
                dst_crs=reference.crs,
                dst_nodata=np.nan,
                resampling=Resampling.nearest,
            )
        return reference.like(dst, nodata=np.nan)

    def sample(self, stack: CovariateStack, x: np.ndarray, y: np.ndarray) -> pd.DataFrame:
        columns = {
            name: bilinear_sample(grid.masked_values(), grid.transform, x, y)
            for name, grid in stack.items()
        }
        return pd.DataFrame(columns)
