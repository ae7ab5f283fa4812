#!/usr/bin/env python3

from __future__ import annotations

import numpy as np
import pytest

from conftest import make_grid
from lisa.sampling.sampler import derive_seed, sample_eligible_cells, target_sample_count


def _mask(n_true: int, shape=(10, 10)):
    flat = np.zeros(shape[0] * shape[1], dtype=bool)
    flat[::3][:n_true] = True
    return make_grid(flat.reshape(shape))


def test_target_count_rounds_up():
    assert target_sample_count(3, 10) == 30
    assert target_sample_count(3, 2.5) == 8
    assert target_sample_count(0, 10) == 0
    with pytest.raises(ValueError):
        target_sample_count(3, -1)


def test_fewer_eligible_cells_than_requested_returns_all():
    mask = _mask(20)
    n = target_sample_count(3, 10)
    xy = sample_eligible_cells(mask, n, seed=42)
    assert xy.shape == (20, 2)

    rows, cols = np.nonzero(mask.data)
    xs, ys = mask.cell_centers(rows, cols)
    assert np.array_equal(xy, np.column_stack([xs, ys]))


def test_sampling_is_deterministic_and_without_replacement():
    mask = _mask(30)
    a = sample_eligible_cells(mask, 12, seed=7)
    b = sample_eligible_cells(mask, 12, seed=7)
    assert np.array_equal(a, b)
    assert len({tuple(p) for p in a}) == 12

    c = sample_eligible_cells(mask, 12, seed=8)
    assert not np.array_equal(a, c)


def test_samples_fall_on_eligible_cells():
    mask = _mask(30)
    xy = sample_eligible_cells(mask, 10, seed=1)
    cols, rows = ~mask.transform * (xy[:, 0], xy[:, 1])
    rows = np.floor(rows).astype(int)
    cols = np.floor(cols).astype(int)
    assert mask.data[rows, cols].all()


def test_empty_mask_or_zero_request():
    assert sample_eligible_cells(_mask(0), 5, seed=1).shape == (0, 2)
    assert sample_eligible_cells(_mask(10), 0, seed=1).shape == (0, 2)


def test_seed_strategies():
    assert derive_seed(42, "elk", "1996", "shared") == 42
    assert derive_seed(42, "mill", "2007", "shared") == 42

    a = derive_seed(42, "elk", "1996", "per_basin")
    assert a == derive_seed(42, "elk", "1996", "per_basin")
    assert a != derive_seed(42, "mill", "1996", "per_basin")
    assert 42 <= a < 42 + 10000

    with pytest.raises(ValueError):
        derive_seed(42, "elk", "1996", "global")
