#!/usr/bin/env python3
"""lisa.sampling.domain_range

Global topographic envelope of the landslide inventory.

The envelope is the observed min/max of each boundary covariate over every
positive point in every basin, optionally widened symmetrically:

    widened side = (expansion_factor - 1) / 2 * (max - min)

It is computed once per run, after all basins have extracted their positives,
and is immutable afterwards. Negative sampling is restricted to cells inside
the envelope (see lisa.sampling.masks).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Sequence, Tuple

import numpy as np
import pandas as pd

log = logging.getLogger(__name__)

BOUNDARY_COVARIATES: Tuple[str, ...] = ("gradient", "tancurv", "profcurv", "meancurv")

Bounds = Tuple[float, float]


@dataclass(frozen=True)
class DomainRange:
    bounds: Mapping[str, Bounds]
    observed: Mapping[str, Bounds] = field(default_factory=dict)
    expansion_factor: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "bounds", MappingProxyType(dict(self.bounds)))
        object.__setattr__(self, "observed", MappingProxyType(dict(self.observed or self.bounds)))

    def __reduce__(self):
        # mappingproxy is not picklable; workers receive plain dicts
        return (DomainRange, (dict(self.bounds), dict(self.observed), self.expansion_factor))

    @property
    def covariates(self) -> Tuple[str, ...]:
        return tuple(self.bounds)

    def __getitem__(self, name: str) -> Bounds:
        return self.bounds[name]

    def contains(self, other: "DomainRange") -> bool:
        """True when every interval of `other` lies inside this range."""
        for name, (lo, hi) in other.bounds.items():
            if name not in self.bounds:
                return False
            mine_lo, mine_hi = self.bounds[name]
            if lo < mine_lo or hi > mine_hi:
                return False
        return True

    def expanded(self, factor: float) -> "DomainRange":
        """Widen the observed bounds by `factor` (>= 1). Returns a new range."""
        if factor < 1:
            raise ValueError(f"expansion_factor must be >= 1, got {factor}")
        bounds = {}
        for name, (lo, hi) in self.observed.items():
            pad = (factor - 1.0) / 2.0 * (hi - lo)
            bounds[name] = (lo - pad, hi + pad)
        return DomainRange(bounds=bounds, observed=self.observed, expansion_factor=factor)

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for name, (lo, hi) in self.bounds.items():
            obs_lo, obs_hi = self.observed[name]
            rows.append({
                "covariate": name,
                "observed_min": obs_lo,
                "observed_max": obs_hi,
                "min": lo,
                "max": hi,
                "expansion_factor": self.expansion_factor,
            })
        return pd.DataFrame(rows)


def estimate_domain_range(
    samples: pd.DataFrame,
    covariates: Sequence[str] = BOUNDARY_COVARIATES,
    expansion_factor: float = 1.0,
) -> DomainRange:
    """Observed (optionally widened) covariate envelope of the positive points.

    Rows missing any of `covariates` are excluded, never filled.
    """
    if expansion_factor < 1:
        raise ValueError(f"expansion_factor must be >= 1, got {expansion_factor}")
    missing_cols = [c for c in covariates if c not in samples.columns]
    if missing_cols:
        raise ValueError(f"Positive samples lack boundary covariates: {missing_cols}")

    values = samples[list(covariates)].apply(pd.to_numeric, errors="coerce")
    complete = np.isfinite(values.to_numpy(dtype="float64")).all(axis=1)
    dropped = int((~complete).sum())
    if dropped:
        log.info("Domain range: excluded %d of %d positives with missing covariates", dropped, len(values))
    values = values[complete]
    if values.empty:
        raise ValueError("No positive point has a complete set of boundary covariates")

    observed = {c: (float(values[c].min()), float(values[c].max())) for c in covariates}
    rng = DomainRange(bounds=observed, observed=observed, expansion_factor=1.0)
    if expansion_factor != 1:
        rng = rng.expanded(expansion_factor)
    log.info("Domain range from %d positives: %s", len(values), dict(rng.bounds))
    return rng
