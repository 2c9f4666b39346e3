"""
Statistics and area aggregation
===============================

Everything here is a pure function of the filtered records:

- `summarize` adds up the crash table's own casualty-count columns
  (Total Fats / Total SI / Total MI). They are authoritative; the
  casualty table is not re-counted.
- `area_counts` counts crashes per canonical council name, using the
  pre-computed fallback area when the LGA column is blank or N/A.
"""

from __future__ import annotations
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple
import heapq

from .areas import AdministrativeAreaIndex, is_placeholder
from .models import CrashRecord, Severity


@dataclass
class CrashStatistics:
    crashes: int = 0
    fatalities: int = 0
    serious: int = 0
    minor: int = 0
    by_severity: Dict[Severity, int] = field(default_factory=lambda: {s: 0 for s in Severity})
    without_coords: int = 0

    def as_dict(self) -> Dict[str, object]:
        return {
            "crashes": self.crashes,
            "fatalities": self.fatalities,
            "serious": self.serious,
            "minor": self.minor,
            "by_severity": {s.label: n for s, n in self.by_severity.items()},
            "without_coords": self.without_coords,
        }


def summarize(records: Iterable[CrashRecord]) -> CrashStatistics:
    """Totals for the statistics panel."""
    st = CrashStatistics()
    for r in records:
        st.crashes += 1
        st.fatalities += r.fatalities
        st.serious += r.serious
        st.minor += r.minor
        st.by_severity[r.severity] += 1
        if r.latlng is None:
            st.without_coords += 1
    return st


def effective_area(r: CrashRecord) -> Optional[str]:
    """The crash's area name, or its computed fallback, or None."""
    if not is_placeholder(r.area):
        return r.area
    if r.computed_area:
        return r.computed_area
    return None


def area_counts(records: Iterable[CrashRecord], areas: AdministrativeAreaIndex) -> Dict[str, int]:
    """Crash count per canonical area. Crashes with no area are skipped."""
    counts: Counter = Counter()
    for r in records:
        name = effective_area(r)
        if name is None:
            continue
        counts[areas.canonical(name)] += 1
    return dict(counts)


def top_areas(counts: Dict[str, int], n: int = 10) -> List[Tuple[str, int]]:
    """The `n` areas with the most crashes, largest first."""
    return heapq.nlargest(n, counts.items(), key=lambda kv: (kv[1], kv[0]))
