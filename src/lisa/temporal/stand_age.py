#!/usr/bin/env python3
"""lisa.temporal.stand_age

Backdate modeled stand age to the time of each cohort's events.

The stand-age raster describes the reference year (2017 by default) and stores
ages in tenths of a year. For a cohort with event year Y_event:

    age_at_event = raw / scale - (reference_year - Y_event)

A negative result means the stand did not exist yet at the event (or the
raster cannot tell us its age then). What happens to those rows is an
explicit policy, applied identically to positives and negatives:

- drop (default): remove the row. This skews the retained sample toward
  older stands; the bias is accepted and reported.
- keep: retain negative ages as-is.
- clip: set negative ages to 0.
"""

from __future__ import annotations

from enum import Enum
from typing import Tuple

import numpy as np
import pandas as pd

AGE_COLUMN = "age_at_event"


class AgePolicy(str, Enum):
    DROP = "drop"
    KEEP = "keep"
    CLIP = "clip"


def backdate_stand_age(raw, reference_year: int, event_year: int, scale: float = 10.0):
    """Age (years) at `event_year` from a raw reference-year raster value."""
    return np.asarray(raw, dtype="float64") / scale - (reference_year - event_year)


def apply_age_policy(frame: pd.DataFrame, policy: AgePolicy = AgePolicy.DROP) -> Tuple[pd.DataFrame, int]:
    """Apply the negative-age policy; returns (frame, rows affected)."""
    policy = AgePolicy(policy)
    negative = frame[AGE_COLUMN] < 0
    affected = int(negative.sum())
    if policy is AgePolicy.DROP:
        return frame[~negative].copy(), affected
    if policy is AgePolicy.CLIP:
        out = frame.copy()
        out.loc[negative, AGE_COLUMN] = 0.0
        return out, affected
    return frame, affected
