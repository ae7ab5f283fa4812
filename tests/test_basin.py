#!/usr/bin/env python3

from __future__ import annotations

import math

import numpy as np
import pandas as pd
import pytest

from conftest import cell_xy, make_stack
from lisa.config import PipelineConfig
from lisa.overlay import GeoOverlay
from lisa.pipeline.aggregate import LABEL_NEGATIVE, LABEL_POSITIVE, covariate_columns, table_columns
from lisa.pipeline.basin import build_records, extract_covariates, geology_label, sample_basin
from lisa.sampling.domain_range import DomainRange
from lisa.temporal.cohorts import CohortTable

DURATIONS = [6.0]
ROWS = 30
CELLS = [(15, 10), (15, 12), (16, 11)]


def _geology(x, y):
    return np.array(["A"] * len(x), dtype=object)


def _positives(stack, cohort="2007"):
    xy = np.array([cell_xy(r, c, ROWS) for r, c in CELLS])
    pos = extract_covariates(stack, xy[:, 0], xy[:, 1], GeoOverlay().sample, _geology(xy[:, 0], xy[:, 1]))
    pos["cohort"] = cohort
    return pos


def _range():
    return DomainRange(
        {"gradient": (0.2, 0.6), "tancurv": (0.0, 0.0), "profcurv": (0.0, 0.0), "meancurv": (0.0, 0.0)}
    )


def _run(stack, positives, **cfg):
    options = {"inner_buffer": 15.0, "outer_buffer": 100.0, "oversample": 2.0}
    options.update(cfg)
    config = PipelineConfig(**options)
    return sample_basin(
        "elk", stack, positives, _range(), config, DURATIONS, CohortTable(), GeoOverlay().sample, _geology
    )


def test_geology_label():
    assert geology_label(3.0) == "3"
    assert geology_label(np.int64(3)) == "3"
    assert geology_label("basalt") == "basalt"
    assert geology_label(float("nan")) is None
    assert geology_label(None) is None


def test_negatives_respect_masks_and_target():
    stack = make_stack((ROWS, ROWS), DURATIONS)
    positives = _positives(stack)
    result = _run(stack, positives)

    pos = result.tables[("2007", LABEL_POSITIVE)]
    neg = result.tables[("2007", LABEL_NEGATIVE)]
    assert list(pos.columns) == list(neg.columns) == table_columns(DURATIONS)
    assert len(pos) == 3
    assert 0 < len(neg) <= math.ceil(len(pos) * 2.0)

    # annulus around every positive of the basin
    pxy = positives[["x", "y"]].to_numpy()
    for x, y in neg[["x", "y"]].to_numpy():
        d = np.min(np.hypot(pxy[:, 0] - x, pxy[:, 1] - y))
        assert 15.0 < d <= 100.0
    # inside the domain range
    assert neg["gradient"].between(0.2, 0.6).all()

    # no missing covariates in persisted rows
    assert not pos.isna().any().any()
    assert not neg.isna().any().any()
    assert (neg["label"] == LABEL_NEGATIVE).all()
    assert neg["age_at_event"].tolist() == [pytest.approx(20.0)] * len(neg)


def test_report_rows_per_cohort():
    stack = make_stack((ROWS, ROWS), DURATIONS)
    result = _run(stack, _positives(stack))
    report = {row["cohort"]: row for row in result.report}
    assert report["1996"]["status"] == "no positives"
    assert report["2011"]["status"] == "no positives"
    ok = report["2007"]
    assert ok["status"] == "ok"
    assert ok["negatives_requested"] == 6
    assert ok["negatives_retained"] <= ok["negatives_requested"]
    assert ok["eligible_cells"] >= ok["negatives_sampled"]
    assert ("1996", LABEL_POSITIVE) not in result.tables


def test_same_inputs_same_output():
    stack = make_stack((ROWS, ROWS), DURATIONS)
    a = _run(stack, _positives(stack))
    b = _run(stack, _positives(stack))
    pd.testing.assert_frame_equal(a.tables[("2007", LABEL_NEGATIVE)], b.tables[("2007", LABEL_NEGATIVE)])


def test_missing_covariates_drop_negatives():
    # roads unknown east of column 13: negatives drawn there are dropped
    road = np.full((ROWS, ROWS), 50.0)
    road[:, 14:] = np.nan
    stack = make_stack((ROWS, ROWS), DURATIONS, dist_to_road=road)
    result = _run(stack, _positives(stack), oversample=20.0)
    row = next(r for r in result.report if r["cohort"] == "2007")
    neg = result.tables[("2007", LABEL_NEGATIVE)]
    assert row["negatives_missing"] > 0
    assert row["negatives_retained"] == len(neg) == row["negatives_sampled"] - row["negatives_missing"]
    assert (neg["x"] < 140.0).all()


def test_negative_ages_dropped_by_default():
    # 5 years old in 2017: did not exist in 2007
    young = np.full((ROWS, ROWS), 50.0)
    stack = make_stack((ROWS, ROWS), DURATIONS, stand_age_raw=young)
    result = _run(stack, _positives(stack))
    row = next(r for r in result.report if r["cohort"] == "2007")
    assert row["status"] == "no retained positives"
    assert row["positives_negative_age"] == 3
    assert result.tables == {}


def test_clip_policy_keeps_young_stands():
    young = np.full((ROWS, ROWS), 50.0)
    stack = make_stack((ROWS, ROWS), DURATIONS, stand_age_raw=young)
    result = _run(stack, _positives(stack), age_policy="clip")
    neg = result.tables[("2007", LABEL_NEGATIVE)]
    assert (neg["age_at_event"] == 0.0).all()


def test_build_records_counts():
    stack = make_stack((ROWS, ROWS), DURATIONS)
    frame = _positives(stack)
    frame.loc[0, "total_accum"] = np.nan
    out, stats = build_records(frame, "elk", "2007", 2007, LABEL_POSITIVE, PipelineConfig(), DURATIONS)
    assert (stats.total, stats.missing, stats.negative_age, stats.retained) == (3, 1, 0, 2)
    assert list(out.columns) == table_columns(DURATIONS)
    assert not out[covariate_columns(DURATIONS)].isna().any().any()
