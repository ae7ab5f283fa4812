#!/usr/bin/env python3

from __future__ import annotations

import pickle

import numpy as np
import pandas as pd
import pytest

from lisa.sampling.domain_range import BOUNDARY_COVARIATES, DomainRange, estimate_domain_range


def _positives():
    return pd.DataFrame(
        {
            "gradient": [0.2, 0.8, 0.5, np.nan],
            "tancurv": [-0.01, 0.02, 0.0, 0.0],
            "profcurv": [-0.1, 0.1, 0.0, 0.0],
            "meancurv": [0.0, 0.04, 0.02, 0.0],
        }
    )


def test_observed_bounds_exclude_incomplete_rows():
    rng = estimate_domain_range(_positives())
    assert rng.covariates == BOUNDARY_COVARIATES
    assert rng["gradient"] == (0.2, 0.8)
    assert rng["tancurv"] == (-0.01, 0.02)
    assert rng.expansion_factor == 1.0


def test_expansion_widens_symmetrically():
    rng = estimate_domain_range(_positives(), expansion_factor=1.5)
    lo, hi = rng["gradient"]
    assert lo == pytest.approx(0.2 - 0.15)
    assert hi == pytest.approx(0.8 + 0.15)
    assert rng.observed["gradient"] == (0.2, 0.8)


def test_widening_is_monotonic():
    base = estimate_domain_range(_positives())
    previous = base
    for factor in (1.0, 1.1, 1.5, 2.0, 3.0):
        wider = base.expanded(factor)
        assert wider.contains(previous)
        assert wider.contains(base)
        previous = wider


def test_factor_below_one_rejected():
    with pytest.raises(ValueError):
        estimate_domain_range(_positives(), expansion_factor=0.5)
    with pytest.raises(ValueError):
        estimate_domain_range(_positives()).expanded(0.99)


def test_missing_column_and_empty_input():
    with pytest.raises(ValueError, match="meancurv"):
        estimate_domain_range(_positives().drop(columns=["meancurv"]))
    empty = pd.DataFrame({c: [np.nan] for c in BOUNDARY_COVARIATES})
    with pytest.raises(ValueError):
        estimate_domain_range(empty)


def test_range_is_immutable_and_picklable():
    rng = estimate_domain_range(_positives(), expansion_factor=1.2)
    with pytest.raises(TypeError):
        rng.bounds["gradient"] = (0.0, 1.0)  # type: ignore[index]
    clone = pickle.loads(pickle.dumps(rng))
    assert dict(clone.bounds) == dict(rng.bounds)
    assert clone.expansion_factor == 1.2


def test_to_frame_columns():
    df = estimate_domain_range(_positives()).to_frame()
    assert list(df.columns) == ["covariate", "observed_min", "observed_max", "min", "max", "expansion_factor"]
    assert list(df["covariate"]) == list(BOUNDARY_COVARIATES)


def test_contains_requires_every_covariate():
    a = DomainRange({"gradient": (0.0, 1.0)})
    b = DomainRange({"gradient": (0.2, 0.4), "tancurv": (0.0, 0.0)})
    assert not a.contains(b)
    assert b.contains(DomainRange({"gradient": (0.2, 0.3)}))
