#!/usr/bin/env python3
"""lisa.sampling.masks

Boolean grids that decide where negative (non-landslide) points may be drawn.

Two masks are intersected per basin:

1. Eligibility mask: cells whose boundary covariates all fall inside the
   global DomainRange (inclusive). This is a modeling assumption, not a
   physical law: landslides are assumed not to initiate outside the
   topographic envelope observed in the inventory. The envelope is estimated
   from the sample itself, so the mask carries sample-dependent bias that
   the design accepts.

2. Buffer mask: an annulus around the basin's positive points. Cells within
   `inner_buffer` of a known initiation point may be an unrecorded part of the
   same failure; cells beyond `outer_buffer` of every initiation point are
   assumed to lie outside the inventory's effective survey coverage. Both are
   excluded. Distances are to the nearest positive point of the same basin.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
from scipy.spatial import cKDTree

from lisa.grid import CovariateStack, Grid
from lisa.sampling.domain_range import DomainRange

# rows of cell centres queried against the KD-tree at once
_QUERY_ROWS = 256


def build_eligibility_mask(stack: CovariateStack, domain_range: DomainRange) -> Grid:
    """True where every boundary covariate lies within its [min, max]."""
    ref = stack.reference
    mask = np.ones(ref.shape, dtype=bool)
    for name, (lo, hi) in domain_range.bounds.items():
        if name not in stack:
            raise KeyError(f"Covariate '{name}' missing from stack {list(stack)}")
        values = stack[name].masked_values()
        with np.errstate(invalid="ignore"):
            mask &= np.isfinite(values) & (values >= lo) & (values <= hi)
    return ref.like(mask)


def nearest_distance(
    points_xy: np.ndarray,
    reference: Grid,
    chunk_rows: int = _QUERY_ROWS,
    max_distance: float = np.inf,
) -> np.ndarray:
    """Distance from every cell centre to the nearest point.

    inf where there are no points or the nearest lies beyond max_distance.
    """
    rows, cols = reference.shape
    out = np.full((rows, cols), np.inf, dtype="float64")
    pts = np.asarray(points_xy, dtype="float64").reshape(-1, 2)
    pts = pts[np.isfinite(pts).all(axis=1)]
    if len(pts) == 0:
        return out

    tree = cKDTree(pts)
    col_idx = np.arange(cols)
    for start in range(0, rows, chunk_rows):
        stop = min(start + chunk_rows, rows)
        rr, cc = np.meshgrid(np.arange(start, stop), col_idx, indexing="ij")
        xs, ys = reference.cell_centers(rr.ravel(), cc.ravel())
        dist, _ = tree.query(np.column_stack([xs, ys]), k=1, distance_upper_bound=max_distance)
        out[start:stop] = dist.reshape(stop - start, cols)
    return out


def build_buffer_mask(
    points_xy: np.ndarray,
    reference: Grid,
    inner_buffer: float,
    outer_buffer: float,
    valid: Optional[np.ndarray] = None,
) -> Grid:
    """True where inner_buffer < distance to nearest positive <= outer_buffer.

    `valid`, when given, is AND-ed in (e.g. the DEM's data footprint).
    """
    if inner_buffer <= 0:
        raise ValueError(f"inner_buffer must be > 0, got {inner_buffer}")
    if outer_buffer <= inner_buffer:
        raise ValueError(f"outer_buffer ({outer_buffer}) must exceed inner_buffer ({inner_buffer})")

    # nearest points past the outer buffer come back as inf
    dist = nearest_distance(points_xy, reference, max_distance=np.nextafter(outer_buffer, np.inf))
    mask = (dist > inner_buffer) & (dist <= outer_buffer)
    if valid is not None:
        mask &= valid
    return reference.like(mask)


def combine_masks(*masks: Grid) -> Grid:
    """Cell-wise AND of co-registered boolean grids."""
    if not masks:
        raise ValueError("combine_masks needs at least one mask")
    ref = masks[0]
    out = np.ones(ref.shape, dtype=bool)
    for m in masks:
        if not m.same_geometry(ref):
            raise ValueError("Masks are not co-registered")
        out &= m.data.astype(bool)
    return ref.like(out)
