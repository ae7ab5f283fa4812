#!/usr/bin/env python3

from __future__ import annotations

import numpy as np
import pytest

from conftest import cell_xy, make_grid
from lisa.grid import CovariateStack
from lisa.sampling.domain_range import DomainRange
from lisa.sampling.masks import build_buffer_mask, build_eligibility_mask, combine_masks, nearest_distance


def test_eligibility_bounds_are_inclusive():
    values = np.arange(10, dtype="float64").reshape(2, 5)
    values[1, 4] = np.nan
    stack = CovariateStack({"gradient": make_grid(values)})
    mask = build_eligibility_mask(stack, DomainRange({"gradient": (2.0, 6.0)}))
    expected = (values >= 2) & (values <= 6)
    assert mask.data.dtype == bool
    assert np.array_equal(mask.data, expected)
    assert not mask.data[1, 4]


def test_eligibility_needs_every_covariate():
    stack = CovariateStack({"gradient": make_grid(np.zeros((2, 2)))})
    with pytest.raises(KeyError):
        build_eligibility_mask(stack, DomainRange({"gradient": (0, 1), "tancurv": (0, 1)}))


def test_buffer_mask_is_an_annulus():
    ref = make_grid(np.zeros((10, 10)))
    pts = np.array([cell_xy(5, 5, 10)])
    mask = build_buffer_mask(pts, ref, inner_buffer=15.0, outer_buffer=30.0).data

    assert not mask[5, 5]   # 0 m
    assert not mask[5, 6]   # 10 m
    assert not mask[6, 6]   # 14.1 m
    assert mask[5, 7]       # 20 m
    assert mask[5, 8]       # 30 m, outer bound inclusive
    assert mask[7, 7]       # 28.3 m
    assert not mask[5, 9]   # 40 m

    dist = nearest_distance(pts, ref)
    assert np.array_equal(mask, (dist > 15.0) & (dist <= 30.0))


def test_buffer_uses_nearest_point():
    ref = make_grid(np.zeros((10, 10)))
    pts = np.array([cell_xy(0, 0, 10), cell_xy(9, 9, 10)])
    dist = nearest_distance(pts, ref, chunk_rows=3)
    assert dist[0, 0] == 0.0
    assert dist[9, 9] == 0.0
    assert dist[9, 8] == pytest.approx(10.0)


def test_capped_distance_is_inf_beyond_cap():
    ref = make_grid(np.zeros((10, 10)))
    pts = np.array([cell_xy(5, 5, 10)])
    full = nearest_distance(pts, ref)
    capped = nearest_distance(pts, ref, max_distance=25.0)
    near = full < 25.0
    assert np.array_equal(capped[near], full[near])
    assert np.isinf(capped[~near]).all()
    assert np.isinf(capped[5, 8])   # 30 m


def test_buffer_without_points_is_empty():
    ref = make_grid(np.zeros((4, 4)))
    mask = build_buffer_mask(np.empty((0, 2)), ref, 10.0, 50.0)
    assert not mask.data.any()


@pytest.mark.parametrize("inner,outer", [(0.0, 10.0), (20.0, 20.0), (30.0, 10.0)])
def test_buffer_rejects_bad_distances(inner, outer):
    ref = make_grid(np.zeros((4, 4)))
    with pytest.raises(ValueError):
        build_buffer_mask(np.array([[5.0, 5.0]]), ref, inner, outer)


def test_combine_masks_is_cellwise_and():
    a = make_grid(np.array([[True, True], [False, True]]))
    b = make_grid(np.array([[True, False], [True, True]]))
    assert np.array_equal(combine_masks(a, b).data, [[True, False], [False, True]])
    with pytest.raises(ValueError):
        combine_masks(a, make_grid(np.ones((3, 3), dtype=bool)))
