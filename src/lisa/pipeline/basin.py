#!/usr/bin/env python3
"""lisa.pipeline.basin

Processing for one basin (one clipped elevation grid plus its initiation
points). Basins are independent: nothing computed here reads another basin's
grids or points.

Two phases, split by the global domain-range barrier:

1. prepare(): derive terrain grids, add distance-to-road and stand age, cache
   the CovariateStack to disk, extract positive-point covariates, look up
   geology and assign cohorts.
2. sample(): mask (eligibility AND buffer annulus), draw negatives per cohort,
   extract and filter their covariates, backdate ages, emit tables.

The pure pieces (build_records, sample_basin) take in-memory objects so they
can be tested without touching disk; BasinPipeline is the I/O wrapper.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd

from lisa.config import PipelineConfig, duration_label
from lisa.grid import CovariateStack, Grid, read_grid, read_stack, write_stack
from lisa.pipeline.aggregate import (
    LABEL_NEGATIVE,
    LABEL_POSITIVE,
    BasinResult,
    covariate_columns,
    table_columns,
)
from lisa.providers import TerrainDerivativeProvider, VectorOverlayProvider
from lisa.registry.manifest import Basin
from lisa.sampling.domain_range import BOUNDARY_COVARIATES, DomainRange
from lisa.sampling.masks import build_buffer_mask, build_eligibility_mask, combine_masks
from lisa.sampling.sampler import derive_seed, sample_eligible_cells, target_sample_count
from lisa.temporal.cohorts import CohortTable, classify_points
from lisa.temporal.stand_age import AGE_COLUMN, AgePolicy, apply_age_policy, backdate_stand_age

log = logging.getLogger(__name__)

STAND_AGE_RAW = "stand_age_raw"

SampleFn = Callable[[CovariateStack, np.ndarray, np.ndarray], pd.DataFrame]
GeologyFn = Callable[[np.ndarray, np.ndarray], np.ndarray]


def stack_columns(durations: Sequence[float]) -> List[str]:
    """Grid-valued covariates held in a basin's CovariateStack, in order."""
    return (
        list(BOUNDARY_COVARIATES)
        + ["dist_to_road", "total_accum"]
        + [f"pca_{duration_label(d)}" for d in durations]
        + [STAND_AGE_RAW]
    )


def geology_label(value) -> Optional[str]:
    """Rock class as a string ('3' rather than '3.0'); None when missing."""
    if value is None:
        return None
    if isinstance(value, float):
        if np.isnan(value):
            return None
        if value.is_integer():
            return str(int(value))
    return str(value)


# -----------------------------------------------------------------------------
# Record building
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class RecordStats:
    total: int
    missing: int
    negative_age: int
    retained: int


def build_records(
    frame: pd.DataFrame,
    basin_id: str,
    cohort: str,
    event_year: int,
    label: str,
    config: PipelineConfig,
    durations: Sequence[float],
) -> Tuple[pd.DataFrame, RecordStats]:
    """Turn sampled covariates into persisted rows for one cohort and label.

    Rows with any missing covariate (or unknown stand age) are dropped, then the
    negative-age policy is applied.
    """
    columns = table_columns(durations)
    out = frame.copy()
    out["basin_id"] = basin_id
    out["cohort"] = cohort
    out["label"] = label
    out[AGE_COLUMN] = backdate_stand_age(
        out[STAND_AGE_RAW].to_numpy(dtype="float64"),
        config.stand_age_reference_year,
        event_year,
        config.stand_age_scale,
    )
    out = out[columns]

    required = covariate_columns(durations) + [AGE_COLUMN, "x", "y"]
    complete = out[required].notna().all(axis=1)
    numeric = [c for c in required if c != "geology"]
    complete &= np.isfinite(out[numeric].to_numpy(dtype="float64")).all(axis=1)
    missing = int((~complete).sum())
    out = out[complete]

    out, negative_age = apply_age_policy(out, AgePolicy(config.age_policy))
    out = out.reset_index(drop=True)
    return out, RecordStats(total=len(frame), missing=missing, negative_age=negative_age, retained=len(out))


def extract_covariates(
    stack: CovariateStack,
    x: np.ndarray,
    y: np.ndarray,
    sample_fn: SampleFn,
    geology: Optional[np.ndarray] = None,
) -> pd.DataFrame:
    """Sample the stack at (x, y) and attach coordinates and geology."""
    values = sample_fn(stack, x, y).reset_index(drop=True)
    values.insert(0, "x", np.asarray(x, dtype="float64"))
    values.insert(1, "y", np.asarray(y, dtype="float64"))
    if geology is None:
        geology = np.full(len(values), None, dtype=object)
    values["geology"] = [geology_label(g) for g in geology]
    return values


def sample_basin(
    basin_id: str,
    stack: CovariateStack,
    positives: pd.DataFrame,
    domain_range: DomainRange,
    config: PipelineConfig,
    durations: Sequence[float],
    cohorts: CohortTable,
    sample_fn: SampleFn,
    geology_fn: GeologyFn,
) -> BasinResult:
    """Phase 2 for one basin: masks, per-cohort negatives, filtered records.

    `positives` holds every initiation point of the basin (x, y, covariates,
    geology, cohort). All of them define the buffer annulus; only retained
    positives of a cohort count toward that cohort's negative target.
    """
    eligible = build_eligibility_mask(stack.subset(domain_range.covariates), domain_range)
    buffer = build_buffer_mask(
        positives[["x", "y"]].to_numpy(dtype="float64"),
        stack.reference,
        config.inner_buffer,
        config.outer_buffer,
    )
    region = combine_masks(eligible, buffer)
    n_eligible = int(np.count_nonzero(region.data))
    log.info("Basin %s: %d eligible cells for negative sampling", basin_id, n_eligible)

    tables: Dict[Tuple[str, str], pd.DataFrame] = {}
    report: List[Dict] = []
    for cohort in cohorts.names():
        event_year = cohorts.event_year(cohort)
        subset = positives[positives["cohort"] == cohort]
        row: Dict = {"basin_id": basin_id, "cohort": cohort, "positives_total": len(subset)}
        if subset.empty:
            row["status"] = "no positives"
            report.append(row)
            continue

        pos, pos_stats = build_records(subset, basin_id, cohort, event_year, LABEL_POSITIVE, config, durations)
        row.update(
            positives_missing=pos_stats.missing,
            positives_negative_age=pos_stats.negative_age,
            positives_retained=pos_stats.retained,
        )
        if pos.empty:
            row["status"] = "no retained positives"
            report.append(row)
            continue

        n_target = target_sample_count(len(pos), config.oversample)
        seed = derive_seed(config.seed, basin_id, cohort, config.seed_strategy)
        xy = sample_eligible_cells(region, n_target, seed)
        drawn = extract_covariates(stack, xy[:, 0], xy[:, 1], sample_fn, geology_fn(xy[:, 0], xy[:, 1]))
        neg, neg_stats = build_records(drawn, basin_id, cohort, event_year, LABEL_NEGATIVE, config, durations)

        row.update(
            status="ok",
            eligible_cells=n_eligible,
            negatives_requested=n_target,
            negatives_sampled=len(xy),
            negatives_missing=neg_stats.missing,
            negatives_negative_age=neg_stats.negative_age,
            negatives_retained=neg_stats.retained,
            seed=seed,
        )
        if neg_stats.retained < n_target:
            log.info(
                "Basin %s cohort %s: requested %d negatives, retained %d",
                basin_id, cohort, n_target, neg_stats.retained,
            )
        report.append(row)
        tables[(cohort, LABEL_POSITIVE)] = pos
        tables[(cohort, LABEL_NEGATIVE)] = neg

    return BasinResult(basin_id=basin_id, tables=tables, report=tuple(report))


# -----------------------------------------------------------------------------
# I/O wrapper
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class PreparedBasin:
    """Phase-1 output: small enough to cross process boundaries."""

    basin_id: str
    stack_path: Path
    crs: Optional[str]
    positives: pd.DataFrame


class BasinPipeline:
    def __init__(
        self,
        basin: Basin,
        config: PipelineConfig,
        durations: Sequence[float],
        cohorts: CohortTable,
        terrain: TerrainDerivativeProvider,
        overlay: VectorOverlayProvider,
    ):
        self.basin = basin
        self.config = config
        self.durations = list(durations)
        self.cohorts = cohorts
        self.terrain = terrain
        self.overlay = overlay

    @property
    def stack_path(self) -> Path:
        return self.config.cache_dir / f"{self.basin.basin_id}_covariates.tif"

    def build_stack(self, dem: Grid) -> CovariateStack:
        grids = self.terrain.derive(
            dem,
            self.config.length_scale,
            self.durations,
            self.config.hydraulic_conductivity,
        )
        grids["dist_to_road"] = self.overlay.road_distance(self.config.layer_path("roads"), dem)
        grids[STAND_AGE_RAW] = self.overlay.resample_to(self.config.layer_path("stand_age"), dem)
        missing = [c for c in stack_columns(self.durations) if c not in grids]
        if missing:
            raise KeyError(f"Terrain/overlay providers did not produce: {missing}")
        return CovariateStack({name: grids[name] for name in stack_columns(self.durations)})

    def geology_lookup(self, crs: Optional[str]) -> GeologyFn:
        def lookup(x: np.ndarray, y: np.ndarray) -> np.ndarray:
            if len(x) == 0:
                return np.empty(0, dtype=object)
            pts = gpd.GeoDataFrame(geometry=gpd.points_from_xy(x, y), crs=crs)
            values = self.overlay.rock_class(pts, self.config.layer_path("geology"), self.config.geology_field)
            return values.to_numpy(dtype=object)
        return lookup

    def prepare(self) -> PreparedBasin:
        basin_id = self.basin.basin_id
        dem = read_grid(self.basin.elevation_path)
        log.info("Basin %s: DEM %s cells, CRS %s", basin_id, dem.shape, dem.crs)

        # positives are sampled from the cached (float32) values phase 2 will see
        write_stack(self.build_stack(dem), self.stack_path)
        stack = read_stack(self.stack_path)

        points = self.overlay.read_points(self.basin.points_path, dem.crs)
        log.info("Basin %s: %d initiation points", basin_id, len(points))
        x = points.geometry.x.to_numpy(dtype="float64")
        y = points.geometry.y.to_numpy(dtype="float64")
        positives = extract_covariates(stack, x, y, self.overlay.sample, self.geology_lookup(dem.crs)(x, y))
        positives["cohort"] = classify_points(
            points.reset_index(drop=True),
            self.config.year_field,
            self.config.date_range_field,
            self.cohorts,
        ).to_numpy()

        unassigned = int(positives["cohort"].isna().sum())
        if unassigned:
            log.info("Basin %s: %d points match no cohort rule", basin_id, unassigned)
        return PreparedBasin(basin_id=basin_id, stack_path=self.stack_path, crs=dem.crs, positives=positives)

    def sample(self, prepared: PreparedBasin, domain_range: DomainRange) -> BasinResult:
        stack = read_stack(prepared.stack_path)
        return sample_basin(
            prepared.basin_id,
            stack,
            prepared.positives,
            domain_range,
            self.config,
            self.durations,
            self.cohorts,
            self.overlay.sample,
            self.geology_lookup(prepared.crs),
        )
