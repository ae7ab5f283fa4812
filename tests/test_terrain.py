#!/usr/bin/env python3

from __future__ import annotations

import numpy as np
import pytest

from conftest import make_grid
from lisa.terrain.accumulation import flow_routing, partial_accumulation, receivers_from_flowdir
from lisa.terrain.derivatives import FiniteDifferenceTerrain, lag_cells, surface_derivatives


def _plane(rows=12, cols=12, cell=10.0, a=0.1, b=0.05):
    """z = a * x + b * y on cell centres (y decreases with row)."""
    r, c = np.indices((rows, cols))
    x = c * cell + cell / 2
    y = rows * cell - r * cell - cell / 2
    return a * x + b * y


def test_lag_cells():
    assert lag_cells(15.0, 10.0) == 1
    assert lag_cells(60.0, 10.0) == 3
    assert lag_cells(1.0, 10.0) == 1


def test_plane_has_constant_gradient_and_no_curvature():
    z = _plane()
    out = surface_derivatives(z, 10.0, 10.0, k=2)
    inner = (slice(2, -2), slice(2, -2))
    assert np.allclose(out["gradient"][inner], np.hypot(0.1, 0.05))
    for name in ("tancurv", "profcurv", "meancurv"):
        assert np.allclose(out[name][inner], 0.0, atol=1e-9)
    assert np.isnan(out["gradient"][:2]).all()
    assert np.isnan(out["gradient"][:, -2:]).all()


def test_bowl_is_concave():
    r, c = np.indices((21, 21))
    z = ((r - 10) ** 2 + (c - 10) ** 2).astype("float64")
    out = surface_derivatives(z, 1.0, 1.0, k=1)
    assert out["meancurv"][10, 10] < 0
    assert out["gradient"][10, 10] == 0
    assert out["profcurv"][10, 10] == 0


def test_nodata_propagates():
    z = _plane()
    z[6, 6] = np.nan
    out = surface_derivatives(z, 10.0, 10.0, k=1)
    assert np.isnan(out["gradient"][6, 6])
    assert np.isnan(out["gradient"][6, 7])
    assert np.isfinite(out["gradient"][3, 3])


def test_receivers_from_flowdir():
    # W, W, E / S, nodata, N
    fdir = np.array([[16, 16, 1], [4, 0, 64]])
    valid = np.array([[True, True, True], [True, False, True]])
    recv = receivers_from_flowdir(fdir, valid).reshape(2, 3)
    assert recv[0, 0] == -1  # off the west edge
    assert recv[0, 1] == 0
    assert recv[0, 2] == -1  # off the east edge
    assert recv[1, 0] == -1  # off the south edge
    assert recv[1, 1] == -1  # nodata
    assert recv[1, 2] == 2


def test_partial_accumulation_is_step_limited():
    # 3 x 4 grid, every cell drains one column west
    c = np.tile(np.arange(4), (3, 1))
    r = np.indices((3, 4))[0]
    recv = np.where(c > 0, r * 4 + c - 1, -1).ravel()
    valid = np.ones((3, 4), dtype=bool)

    assert np.allclose(partial_accumulation(valid, recv, 100.0, 0), 100.0)
    assert np.allclose(partial_accumulation(valid, recv, 100.0, 1)[:, 0], 200.0)
    assert np.allclose(partial_accumulation(valid, recv, 100.0, 2)[:, 0], 300.0)
    full = partial_accumulation(valid, recv, 100.0, 50)
    assert np.allclose(full[:, 0], 400.0)
    assert np.allclose(full[:, 3], 100.0)


def test_pit_does_not_stop_flow():
    c = np.tile(np.arange(9, dtype="float64"), (7, 1))
    plain = 100.0 + 3.0 * c  # drains west
    pitted = plain.copy()
    pitted[3, 5] = 90.0
    transform = make_grid(plain).transform

    _, plain_counts = flow_routing(plain, transform)
    recv, pit_counts = flow_routing(pitted, transform)
    assert np.isfinite(pit_counts).all()
    assert pit_counts[3, 1] == plain_counts[3, 1]
    assert pit_counts[3, 1] > pit_counts[3, 5] >= 1
    assert recv.reshape(7, 9)[3, 5] >= 0


def test_flow_routing_skips_nodata():
    c = np.tile(np.arange(9, dtype="float64"), (7, 1))
    z = 100.0 + 3.0 * c
    z[3, 4] = np.nan
    recv, counts = flow_routing(z, make_grid(z).transform)
    assert np.isnan(counts[3, 4])
    assert recv[3 * 9 + 4] == -1
    assert not (recv == 3 * 9 + 4).any()
    assert np.isfinite(np.delete(counts.ravel(), 3 * 9 + 4)).all()


def test_finite_difference_provider_outputs():
    dem = make_grid(_plane())
    grids = FiniteDifferenceTerrain().derive(dem, 15.0, [6.0, 48.0], 0.65)
    assert set(grids) == {
        "gradient", "tancurv", "profcurv", "meancurv", "total_accum", "pca_6", "pca_48",
    }
    for g in grids.values():
        assert g.same_geometry(dem)
    assert grids["gradient"].data[5, 5] == pytest.approx(np.hypot(0.1, 0.05))
    # longer storms reach at least as much area
    assert np.all(grids["pca_48"].data >= grids["pca_6"].data)
    assert np.all(grids["total_accum"].data >= grids["pca_48"].data - 1e-9)
