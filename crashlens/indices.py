"""
Indices and record linking
==========================

Two jobs happen here, both once per session:

1. Linking. Casualties and units are grouped by REPORT_ID in a single
   pass each (`group_by_report`), then every crash gets its groups
   attached along with its cached lat/lng. That is O(n) rather than a
   nested scan over 190K x 480K rows.

2. Domains. For every filterable attribute we collect the distinct
   non-empty values present in the data. The CLI lists them as filter
   options, and filter normalization uses them to recognise a selection
   that covers the whole domain (which means "no constraint").
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Iterable, List, Sequence, TypeVar
import logging

from .geo import to_latlng
from .models import CasualtyRecord, CrashRecord, UnitRecord

logger = logging.getLogger(__name__)

T = TypeVar("T", CasualtyRecord, UnitRecord)

YES, NO = "Yes", "No"

# crash-level set fields whose domain comes from the data
CRASH_DOMAIN_FIELDS = ("crash_type", "weather", "day_night", "area", "suburb",
                       "road_surface", "moisture", "rollover", "fire")
CASUALTY_DOMAIN_FIELDS = {
    "road_user": "casualty_type",
    "sex": "sex",
    "injury_extent": "injury_extent",
    "seat_belt": "seat_belt",
    "helmet": "helmet",
}
UNIT_DOMAIN_FIELDS = {
    "unit_type": "unit_type",
    "licence_type": "licence_type",
    "reg_state": "reg_state",
    "direction": "direction",
    "movement": "movement",
    "towing": "towing",
}


@dataclass
class Indices:
    """Distinct value domains plus a few counts gathered at link time."""
    domains: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    years_sorted: List[int] = field(default_factory=list)
    linked: int = 0
    without_coords: int = 0


def group_by_report(children: Iterable[T]) -> Dict[str, List[T]]:
    """Map report id -> list of child records, in one pass."""
    out: Dict[str, List[T]] = {}
    for c in children:
        out.setdefault(c.report_id, []).append(c)
    return out


def _flag_from_units(units: Sequence[UnitRecord], attr: str) -> str:
    if not units:
        return ""
    for u in units:
        if getattr(u, attr).strip().upper() in ("Y", "YES"):
            return YES
    return NO


def link_records(crashes: Sequence[CrashRecord],
                 casualties: Iterable[CasualtyRecord],
                 units: Iterable[UnitRecord]) -> List[CrashRecord]:
    """Attach children and cached coordinates to every crash.

    Crashes with no matching children get empty tuples; that is the
    common case, not an error. Crash-level rollover/fire are taken from
    the units when the crash table did not carry them.
    """
    cas_map = group_by_report(casualties)
    unit_map = group_by_report(units)

    out: List[CrashRecord] = []
    linked = 0
    bad_coords = 0
    for c in crashes:
        cas = tuple(cas_map.get(c.report_id, ()))
        uns = tuple(unit_map.get(c.report_id, ()))
        if cas or uns:
            linked += 1
        latlng = to_latlng(c.x, c.y)
        if latlng is None:
            bad_coords += 1
        out.append(replace(
            c,
            casualties=cas,
            units=uns,
            latlng=latlng,
            rollover=c.rollover or _flag_from_units(uns, "rollover"),
            fire=c.fire or _flag_from_units(uns, "fire"),
        ))

    logger.info("Data linking complete: %d of %d crashes have linked casualties/units", linked, len(out))
    if bad_coords:
        logger.info("%d crashes have unusable coordinates (kept for statistics only)", bad_coords)
    return out


def build_indices(records: Sequence[CrashRecord]) -> Indices:
    """Collect distinct value domains from linked records."""
    sets: Dict[str, set] = {}
    years = set()
    linked = 0
    without = 0

    def add(name: str, value: str) -> None:
        if value:
            sets.setdefault(name, set()).add(value)

    for r in records:
        if r.year is not None:
            years.add(r.year)
        if r.casualties or r.units:
            linked += 1
        if r.latlng is None:
            without += 1
        for f in CRASH_DOMAIN_FIELDS:
            add(f, getattr(r, f))
        for key, attr in CASUALTY_DOMAIN_FIELDS.items():
            for cas in r.casualties:
                add(key, getattr(cas, attr))
        for key, attr in UNIT_DOMAIN_FIELDS.items():
            for u in r.units:
                add(key, getattr(u, attr))

    return Indices(
        domains={k: frozenset(v) for k, v in sets.items()},
        years_sorted=sorted(years),
        linked=linked,
        without_coords=without,
    )
