#!/usr/bin/env python3
"""lisa.pipeline.run

Run orchestration: two parallel per-basin phases separated by one global step.

    phase 1 (per basin)   prepare(): stack -> cache, positives
    barrier               estimate_domain_range() over all positives
    phase 2 (per basin)   sample(): masks, negatives, records
    merge                 SampleTables, written once

Design notes:
- workers == 1 runs everything in-process, which is the debugging path and
  gives the same output as any other worker count.
- Worker entry points are module-level functions so they pickle.
- A basin that raises in either phase is logged and reported as failed; the
  run continues without it. A run where no basin yields positives stops at the
  barrier with ValueError.
"""

from __future__ import annotations

import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import pandas as pd

from lisa.config import PipelineConfig
from lisa.overlay import GeoOverlay
from lisa.pipeline.aggregate import BasinResult, SampleTables, table_columns, write_summary
from lisa.pipeline.basin import BasinPipeline, PreparedBasin
from lisa.providers import TerrainDerivativeProvider, VectorOverlayProvider
from lisa.registry.manifest import Basin
from lisa.sampling.domain_range import DomainRange, estimate_domain_range
from lisa.temporal.cohorts import CohortTable
from lisa.terrain.derivatives import FiniteDifferenceTerrain

log = logging.getLogger(__name__)


@dataclass
class RunContext:
    """Everything a worker needs besides its basin. Must be picklable."""

    config: PipelineConfig
    durations: List[float]
    cohorts: CohortTable
    terrain: TerrainDerivativeProvider
    overlay: VectorOverlayProvider

    def pipeline(self, basin: Basin) -> BasinPipeline:
        return BasinPipeline(basin, self.config, self.durations, self.cohorts, self.terrain, self.overlay)


@dataclass
class PhaseOneResult:
    prepared: List[PreparedBasin] = field(default_factory=list)
    failures: List[BasinResult] = field(default_factory=list)

    def positives(self) -> pd.DataFrame:
        frames = [p.positives for p in self.prepared if not p.positives.empty]
        if not frames:
            return pd.DataFrame()
        return pd.concat(frames, ignore_index=True)


@dataclass
class RunResult:
    domain_range: DomainRange
    tables: SampleTables
    basins: int
    failed: List[str]

    def summary(self, config: PipelineConfig, durations: Sequence[float], cohorts: CohortTable) -> Dict[str, Any]:
        return {
            "config": config.to_dict(),
            "durations": list(durations),
            "cohorts": {name: cohorts.event_year(name) for name in cohorts.names()},
            "basins": self.basins,
            "failed_basins": sorted(self.failed),
            "domain_range": {k: list(v) for k, v in self.domain_range.bounds.items()},
            "counts": self.tables.counts(),
        }


# -----------------------------------------------------------------------------
# Worker entry points
# -----------------------------------------------------------------------------

def _prepare_worker(basin: Basin, ctx: RunContext):
    try:
        return ctx.pipeline(basin).prepare()
    except Exception as e:
        log.exception("Basin %s failed while preparing covariates", basin.basin_id)
        return BasinResult.failed(basin.basin_id, f"{type(e).__name__}: {e}", "prepare")


def _sample_worker(item: Tuple[Basin, PreparedBasin], ctx: RunContext, domain_range: DomainRange) -> BasinResult:
    basin, prepared = item
    try:
        return ctx.pipeline(basin).sample(prepared, domain_range)
    except Exception as e:
        log.exception("Basin %s failed while sampling", basin.basin_id)
        return BasinResult.failed(basin.basin_id, f"{type(e).__name__}: {e}", "sample")


def _map(fn: Callable, items: Sequence, workers: int, *args) -> Iterator:
    """Yield fn(item, *args) for each item, in completion order."""
    if workers <= 1 or len(items) <= 1:
        for item in items:
            yield fn(item, *args)
        return
    with ProcessPoolExecutor(max_workers=workers) as ex:
        futures = [ex.submit(fn, item, *args) for item in items]
        for fut in as_completed(futures):
            yield fut.result()


# -----------------------------------------------------------------------------
# Phases
# -----------------------------------------------------------------------------

def make_context(
    config: PipelineConfig,
    cohorts: Optional[CohortTable] = None,
    terrain: Optional[TerrainDerivativeProvider] = None,
    overlay: Optional[VectorOverlayProvider] = None,
) -> RunContext:
    return RunContext(
        config=config.validate(),
        durations=config.durations(),
        cohorts=cohorts or CohortTable(),
        terrain=terrain or FiniteDifferenceTerrain(),
        overlay=overlay or GeoOverlay(),
    )


def run_phase_one(basins: Sequence[Basin], ctx: RunContext) -> PhaseOneResult:
    out = PhaseOneResult()
    for res in _map(_prepare_worker, list(basins), ctx.config.workers, ctx):
        if isinstance(res, BasinResult):
            out.failures.append(res)
        else:
            out.prepared.append(res)
    out.prepared.sort(key=lambda p: p.basin_id)
    log.info("Phase 1: %d basins prepared, %d failed", len(out.prepared), len(out.failures))
    return out


def estimate_run_domain_range(phase_one: PhaseOneResult, expansion_factor: float) -> DomainRange:
    positives = phase_one.positives()
    if positives.empty:
        raise ValueError("No positive points were extracted from any basin")
    return estimate_domain_range(positives, expansion_factor=expansion_factor)


def run_pipeline(
    config: PipelineConfig,
    basins: Sequence[Basin],
    cohorts: Optional[CohortTable] = None,
    terrain: Optional[TerrainDerivativeProvider] = None,
    overlay: Optional[VectorOverlayProvider] = None,
) -> RunResult:
    """Run both phases over `basins` and return the merged tables (not yet written)."""
    ctx = make_context(config, cohorts, terrain, overlay)
    phase_one = run_phase_one(basins, ctx)
    domain_range = estimate_run_domain_range(phase_one, ctx.config.expansion_factor)

    by_id = {b.basin_id: b for b in basins}
    items = [(by_id[p.basin_id], p) for p in phase_one.prepared]
    tables = SampleTables(table_columns(ctx.durations))
    failed: List[str] = []
    results = list(phase_one.failures)
    results.extend(_map(_sample_worker, items, ctx.config.workers, ctx, domain_range))
    for res in results:
        if res.error is not None:
            failed.append(res.basin_id)
        tables = tables.add(res)
    return RunResult(domain_range=domain_range, tables=tables, basins=len(basins), failed=failed)


def write_outputs(result: RunResult, config: PipelineConfig, durations: Sequence[float], cohorts: CohortTable) -> List[Path]:
    """Persist tables, report, domain range and run summary under output_dir."""
    out_dir = config.output_dir
    written = result.tables.write(out_dir, config.output_format)

    dr_path = out_dir / "domain_range.csv"
    result.domain_range.to_frame().to_csv(dr_path, index=False)
    written.append(dr_path)

    written.append(write_summary(out_dir / "run_summary.json", result.summary(config, durations, cohorts)))
    return written
