#!/usr/bin/env python3
"""lisa.pipeline.aggregate

Per-basin result objects and the merge that combines them into the final
per-cohort, per-label sample tables.

Design notes:
- A BasinResult is a pure value produced by one worker. Nothing is appended to
  shared state while basins run.
- SampleTables.merge is associative and commutative up to row order; tables are
  sorted on output, so file content does not depend on completion order.
- Every frame is checked against table_columns() before it is accepted, so
  all basins share one schema. Empty frames contribute nothing.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from lisa.config import duration_label
from lisa.sampling.domain_range import BOUNDARY_COVARIATES
from lisa.temporal.stand_age import AGE_COLUMN

LABEL_POSITIVE = "positive"
LABEL_NEGATIVE = "negative"
LABELS = (LABEL_POSITIVE, LABEL_NEGATIVE)

ID_COLUMNS = ["basin_id", "cohort", "x", "y"]
SORT_COLUMNS = ["basin_id", "label", "x", "y"]

REPORT_COLUMNS = [
    "basin_id",
    "cohort",
    "status",
    "positives_total",
    "positives_missing",
    "positives_negative_age",
    "positives_retained",
    "eligible_cells",
    "negatives_requested",
    "negatives_sampled",
    "negatives_missing",
    "negatives_negative_age",
    "negatives_retained",
    "seed",
    "error",
]

TableKey = Tuple[str, str]  # (cohort, label)


def covariate_columns(durations: Sequence[float]) -> List[str]:
    """Covariate columns in persisted order."""
    return (
        list(BOUNDARY_COVARIATES)
        + ["geology", "dist_to_road", "total_accum"]
        + [f"pca_{duration_label(d)}" for d in durations]
    )


def table_columns(durations: Sequence[float]) -> List[str]:
    return ID_COLUMNS + covariate_columns(durations) + [AGE_COLUMN, "label"]


@dataclass(frozen=True)
class BasinResult:
    basin_id: str
    tables: Mapping[TableKey, pd.DataFrame] = field(default_factory=dict)
    report: Tuple[Dict[str, Any], ...] = ()
    error: Optional[str] = None

    @classmethod
    def failed(cls, basin_id: str, error: str, phase: str) -> "BasinResult":
        row = {"basin_id": basin_id, "cohort": None, "status": f"failed ({phase})", "error": error}
        return cls(basin_id=basin_id, report=(row,), error=error)


class SampleTables:
    """Immutable collection of per-(cohort, label) tables plus report rows."""

    def __init__(
        self,
        columns: Sequence[str],
        frames: Optional[Mapping[TableKey, Tuple[pd.DataFrame, ...]]] = None,
        report: Tuple[Dict[str, Any], ...] = (),
    ):
        self.columns: Tuple[str, ...] = tuple(columns)
        self._frames: Dict[TableKey, Tuple[pd.DataFrame, ...]] = dict(frames or {})
        self.report: Tuple[Dict[str, Any], ...] = tuple(report)

    @classmethod
    def from_result(cls, result: BasinResult, columns: Sequence[str]) -> "SampleTables":
        frames: Dict[TableKey, Tuple[pd.DataFrame, ...]] = {}
        for key, frame in result.tables.items():
            if frame.empty:
                continue
            if list(frame.columns) != list(columns):
                raise ValueError(
                    f"Basin {result.basin_id} table {key} has columns {list(frame.columns)}, "
                    f"expected {list(columns)}"
                )
            frames[key] = (frame,)
        return cls(columns, frames, result.report)

    def merge(self, other: "SampleTables") -> "SampleTables":
        if self.columns != other.columns:
            raise ValueError("Cannot merge sample tables with different schemas")
        frames = dict(self._frames)
        for key, parts in other._frames.items():
            frames[key] = frames.get(key, ()) + parts
        return SampleTables(self.columns, frames, self.report + other.report)

    def add(self, result: BasinResult) -> "SampleTables":
        return self.merge(SampleTables.from_result(result, self.columns))

    # --- access ---

    def keys(self) -> List[TableKey]:
        return sorted(self._frames)

    def cohorts(self) -> List[str]:
        return sorted({cohort for cohort, _ in self._frames})

    def get(self, cohort: str, label: str) -> pd.DataFrame:
        parts = self._frames.get((cohort, label), ())
        if not parts:
            return pd.DataFrame(columns=list(self.columns))
        out = pd.concat(parts, ignore_index=True)
        return out.sort_values(SORT_COLUMNS, kind="mergesort").reset_index(drop=True)

    def counts(self) -> Dict[str, Dict[str, int]]:
        out: Dict[str, Dict[str, int]] = {}
        for cohort, label in self.keys():
            out.setdefault(cohort, {})[label] = int(sum(len(f) for f in self._frames[(cohort, label)]))
        return out

    def report_frame(self) -> pd.DataFrame:
        df = pd.DataFrame(list(self.report), columns=REPORT_COLUMNS)
        return df.sort_values(["basin_id", "cohort"], na_position="first", kind="mergesort").reset_index(drop=True)

    # --- persistence ---

    def write(self, out_dir: Path, fmt: str = "csv") -> List[Path]:
        out_dir.mkdir(parents=True, exist_ok=True)
        written: List[Path] = []
        for cohort in self.cohorts():
            for label in LABELS:
                df = self.get(cohort, label)
                if df.empty:
                    continue
                prefix = "positives" if label == LABEL_POSITIVE else "negatives"
                path = out_dir / f"{prefix}_{cohort}.{fmt}"
                if fmt == "parquet":
                    df.to_parquet(path, index=False)
                else:
                    df.to_csv(path, index=False)
                written.append(path)
        report_path = out_dir / "basin_report.csv"
        self.report_frame().to_csv(report_path, index=False)
        written.append(report_path)
        return written


def merge_all(results: Iterable[BasinResult], columns: Sequence[str]) -> SampleTables:
    tables = SampleTables(columns)
    for result in results:
        tables = tables.add(result)
    return tables


def write_summary(path: Path, payload: Dict[str, Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    return path
