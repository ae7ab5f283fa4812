#!/usr/bin/env python3
"""lisa.temporal.cohorts

Assign initiation points to time-of-occurrence cohorts.

Exact event years are known for only a minority of inventory records; the
rest carry a hand-curated five-year window string ("1995-2000"). The mapping
from those fields to cohorts is a closed, curated table rather than something
inferred, so it is expressed as data:

    CohortRule(cohort, field, values)

Rules are evaluated in order and the first match wins. All year rules come
before all date-range rules. A point matching no rule is unassigned (None)
and is left out of every cohort-specific output.

Default table (see DEFAULT_RULES):

    year        1996         -> 1996
    year        2006, 2007   -> 2007
    year        2015         -> 2011   (kept as curated; see DESIGN.md)
    date_range  1995-2000, 1996-1997 -> 1996
    date_range  2005-2009            -> 2007
    date_range  2009-2011, 2011-2014 -> 2011

The table can be replaced from the pipeline YAML:

    cohorts:
      - {name: "1996", event_year: 1996}
    cohort_rules:
      - {cohort: "1996", field: year, values: [1996]}
      - {cohort: "1996", field: date_range, values: ["1995-2000"]}
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

RULE_FIELDS = ("year", "date_range")


@dataclass(frozen=True)
class Cohort:
    name: str
    event_year: int


@dataclass(frozen=True)
class CohortRule:
    cohort: str
    field: str
    values: Tuple[Any, ...]

    def __post_init__(self) -> None:
        if self.field not in RULE_FIELDS:
            raise ValueError(f"Rule field must be one of {RULE_FIELDS}, got {self.field!r}")
        if self.field == "year":
            norm = tuple(int(v) for v in self.values)
        else:
            norm = tuple(normalize_date_range(v) for v in self.values)
        object.__setattr__(self, "values", norm)

    def matches(self, year: Optional[int], date_range: str) -> bool:
        if self.field == "year":
            return year is not None and year in self.values
        return bool(date_range) and date_range in self.values


# -----------------------------------------------------------------------------
# Field normalisation
# -----------------------------------------------------------------------------

def normalize_date_range(x: Any) -> str:
    """Normalise a date-range string so '1995 - 2000' and '1995–2000' match.

    Returns empty string for missing inputs.
    """
    if x is None or (isinstance(x, float) and math.isnan(x)):
        return ""
    s = str(x).strip()
    s = re.sub(r"[\u2010-\u2015\u2212]", "-", s)
    return re.sub(r"\s+", "", s)


def parse_year(x: Any) -> Optional[int]:
    """Parse an occurrence year from int, float or numeric string.

    Zero, missing and unparseable values give None.
    """
    if x is None:
        return None
    try:
        value = float(str(x).strip())
    except ValueError:
        return None
    if math.isnan(value) or value <= 0 or not value.is_integer():
        return None
    return int(value)


# -----------------------------------------------------------------------------
# Rule table
# -----------------------------------------------------------------------------

DEFAULT_COHORTS: Tuple[Cohort, ...] = (
    Cohort("1996", 1996),
    Cohort("2007", 2007),
    Cohort("2011", 2011),
)

DEFAULT_RULES: Tuple[CohortRule, ...] = (
    CohortRule("1996", "year", (1996,)),
    CohortRule("2007", "year", (2006, 2007)),
    CohortRule("2011", "year", (2015,)),
    CohortRule("1996", "date_range", ("1995-2000", "1996-1997")),
    CohortRule("2007", "date_range", ("2005-2009",)),
    CohortRule("2011", "date_range", ("2009-2011", "2011-2014")),
)


class CohortTable:
    """Ordered rule set plus the cohort definitions it refers to."""

    def __init__(self, cohorts: Sequence[Cohort] = DEFAULT_COHORTS, rules: Sequence[CohortRule] = DEFAULT_RULES):
        self.cohorts: Dict[str, Cohort] = {c.name: c for c in cohorts}
        unknown = sorted({r.cohort for r in rules} - set(self.cohorts))
        if unknown:
            raise ValueError(f"Rules refer to undefined cohorts: {unknown}")
        # year rules are always evaluated before date-range rules
        self.rules: Tuple[CohortRule, ...] = tuple(
            [r for r in rules if r.field == "year"] + [r for r in rules if r.field == "date_range"]
        )

    def classify(self, year: Any, date_range: Any) -> Optional[str]:
        y = parse_year(year)
        dr = normalize_date_range(date_range)
        for rule in self.rules:
            if rule.matches(y, dr):
                return rule.cohort
        return None

    def event_year(self, cohort: str) -> int:
        return self.cohorts[cohort].event_year

    def names(self) -> List[str]:
        return list(self.cohorts)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "order": i,
                    "field": r.field,
                    "values": ", ".join(str(v) for v in r.values),
                    "cohort": r.cohort,
                    "event_year": self.event_year(r.cohort),
                }
                for i, r in enumerate(self.rules, start=1)
            ]
        )

    @classmethod
    def from_config(cls, raw: Dict[str, Any]) -> "CohortTable":
        """Build from optional 'cohorts' / 'cohort_rules' YAML sections."""
        cohorts = _parse_cohorts(raw.get("cohorts")) or DEFAULT_COHORTS
        rules = _parse_rules(raw.get("cohort_rules")) or DEFAULT_RULES
        return cls(cohorts=cohorts, rules=rules)


def _parse_cohorts(items: Optional[Iterable[Dict[str, Any]]]) -> Tuple[Cohort, ...]:
    if not items:
        return ()
    out = []
    for item in items:
        if not isinstance(item, dict) or "name" not in item or "event_year" not in item:
            raise ValueError(f"Cohort entries need 'name' and 'event_year': {item}")
        out.append(Cohort(str(item["name"]), int(item["event_year"])))
    return tuple(out)


def _parse_rules(items: Optional[Iterable[Dict[str, Any]]]) -> Tuple[CohortRule, ...]:
    if not items:
        return ()
    out = []
    for item in items:
        if not isinstance(item, dict) or not {"cohort", "field", "values"} <= set(item):
            raise ValueError(f"Cohort rules need 'cohort', 'field' and 'values': {item}")
        values = item["values"]
        if not isinstance(values, (list, tuple)):
            values = [values]
        out.append(CohortRule(str(item["cohort"]), str(item["field"]), tuple(values)))
    return tuple(out)


def classify_points(
    frame: pd.DataFrame,
    year_field: str,
    date_range_field: str,
    table: Optional[CohortTable] = None,
) -> pd.Series:
    """Cohort name (or None) for each row. Missing fields count as empty."""
    table = table or CohortTable()
    years = frame[year_field] if year_field in frame.columns else pd.Series(None, index=frame.index)
    ranges = frame[date_range_field] if date_range_field in frame.columns else pd.Series(None, index=frame.index)
    labels = [table.classify(y, d) for y, d in zip(years, ranges)]
    return pd.Series(labels, index=frame.index, dtype="object", name="cohort")
