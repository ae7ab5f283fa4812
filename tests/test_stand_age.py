#!/usr/bin/env python3

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from lisa.temporal.stand_age import AGE_COLUMN, AgePolicy, apply_age_policy, backdate_stand_age


def test_backdating_examples():
    assert backdate_stand_age(300, 2017, 2007) == pytest.approx(20.0)
    assert backdate_stand_age(90, 2017, 2007) == pytest.approx(-1.0)
    out = backdate_stand_age(np.array([300.0, np.nan]), 2017, 1996)
    assert out[0] == pytest.approx(9.0)
    assert np.isnan(out[1])


def _frame():
    return pd.DataFrame({"x": [1.0, 2.0, 3.0], AGE_COLUMN: [20.0, -1.0, 0.0]})


def test_drop_policy_removes_negative_ages():
    out, affected = apply_age_policy(_frame(), AgePolicy.DROP)
    assert affected == 1
    assert list(out["x"]) == [1.0, 3.0]


def test_keep_and_clip_policies():
    kept, affected = apply_age_policy(_frame(), "keep")
    assert affected == 1
    assert list(kept[AGE_COLUMN]) == [20.0, -1.0, 0.0]

    clipped, _ = apply_age_policy(_frame(), AgePolicy.CLIP)
    assert list(clipped[AGE_COLUMN]) == [20.0, 0.0, 0.0]


def test_unknown_policy_rejected():
    with pytest.raises(ValueError):
        apply_age_policy(_frame(), "fill")
