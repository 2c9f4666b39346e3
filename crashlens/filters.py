"""
Filter specification
====================

`FilterSpecification` is the immutable description of what the user
asked for. Every set-valued attribute is either None ("no constraint")
or a non-empty frozenset of accepted values. Ranges are inclusive
`[from, to]` pairs where None means unbounded.

Rules enforced here:
- An empty selection is the same as no constraint (collapsed to None
  at construction).
- A selection equal to the full domain is also no constraint
  (`normalized(domains)` collapses it).
- `active_constraints()` is the canonical enumeration of every
  non-default value; the shareable text form in `query_lang` is built
  from it.

Bucket helpers (age group, vehicle year, occupants) live here too since
their labels are the accepted values of the corresponding filters.
"""

from __future__ import annotations
from dataclasses import dataclass, fields, replace
from datetime import date, datetime, time
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .models import Severity

YES_NO = frozenset({"Yes", "No"})

# Casualty age groups, inclusive bounds (None = open)
AGE_GROUPS: Tuple[Tuple[str, int, Optional[int]], ...] = (
    ("0-17", 0, 17),
    ("18-25", 18, 25),
    ("26-35", 26, 35),
    ("36-50", 36, 50),
    ("51-65", 51, 65),
    ("66+", 66, None),
)

VEHICLE_YEAR_BUCKETS: Tuple[Tuple[str, Optional[int], Optional[int]], ...] = (
    ("pre-2000", None, 1999),
    ("2000-2010", 2000, 2010),
    ("2011-2020", 2011, 2020),
    ("2021+", 2021, None),
)

OCCUPANT_BUCKETS: Tuple[Tuple[str, int, Optional[int]], ...] = (
    ("1", 1, 1),
    ("2", 2, 2),
    ("3", 3, 3),
    ("4", 4, 4),
    ("5+", 5, None),
)

# Unit types counted as heavy vehicles
HEAVY_VEHICLE_TYPES = frozenset({
    "Semi Trailer",
    "Rigid Truck Lge GE 4.5T",
    "RIGID TRUCK LGE GE 4.5T",
    "B-Double",
    "Road Train",
    "Omnibus",
    "Bus/Coach",
    "BDOUBLE - ROAD TRAIN",
    "Light Truck LT 4.5T",
    "Prime Mover",
})

FIXED_DOMAINS: Dict[str, FrozenSet[Any]] = {
    "severity": frozenset(Severity),
    "dui": YES_NO,
    "drugs": YES_NO,
    "heavy_vehicle": YES_NO,
    "age_group": frozenset(g[0] for g in AGE_GROUPS),
    "vehicle_year": frozenset(b[0] for b in VEHICLE_YEAR_BUCKETS),
    "occupants": frozenset(b[0] for b in OCCUPANT_BUCKETS),
}

CRASH_SET_FIELDS = ("severity", "crash_type", "weather", "day_night", "dui", "drugs",
                    "area", "suburb", "road_surface", "moisture", "rollover", "fire")
CASUALTY_SET_FIELDS = ("road_user", "age_group", "sex", "injury_extent", "seat_belt", "helmet")
UNIT_SET_FIELDS = ("unit_type", "vehicle_year", "occupants", "licence_type",
                   "reg_state", "direction", "movement")
UNIT_FLAG_FIELDS = ("towing", "heavy_vehicle")
SET_FIELDS = CRASH_SET_FIELDS + CASUALTY_SET_FIELDS + UNIT_SET_FIELDS + UNIT_FLAG_FIELDS


def _bucket(label_table, value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    for label, lo, hi in label_table:
        if (lo is None or value >= lo) and (hi is None or value <= hi):
            return label
    return None

def age_group_of(age: Optional[int]) -> Optional[str]:
    """Age-group label for an age, or None (unknown/negative)."""
    return _bucket(AGE_GROUPS, age)

def vehicle_year_bucket(year: Optional[int]) -> Optional[str]:
    return _bucket(VEHICLE_YEAR_BUCKETS, year)

def occupant_bucket(n: Optional[int]) -> Optional[str]:
    """Occupant bucket; zero or unknown occupants have no bucket."""
    return _bucket(OCCUPANT_BUCKETS, n)


def parse_time(value) -> time:
    """Parse 'HH:MM' (or a time object). Raises ValueError.

    Filter bounds are minute-precision; FilterSpecification drops seconds.
    """
    if isinstance(value, time):
        return value
    return datetime.strptime(str(value).strip(), "%H:%M").time()

def parse_date(value) -> date:
    """Parse an ISO 'YYYY-MM-DD' date (or a date object). Raises ValueError."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value).strip(), "%Y-%m-%d").date()


def _as_set(name: str, value) -> Optional[FrozenSet[Any]]:
    if value is None:
        return None
    if isinstance(value, (str, Severity)):
        value = [value]
    if name == "severity":
        out = frozenset(Severity.parse(v) for v in value)
    else:
        out = frozenset(str(v) for v in value if str(v) != "")
    if name in FIXED_DOMAINS and name != "severity":
        unknown = out - FIXED_DOMAINS[name]
        if unknown:
            raise ValueError(f"Unknown {name} value(s): {sorted(unknown)}. Allowed: {sorted(FIXED_DOMAINS[name])}")
    return out or None


@dataclass(frozen=True)
class FilterSpecification:
    """Every filterable attribute, None meaning "no constraint"."""
    # crash level
    severity: Optional[FrozenSet[Severity]] = None
    crash_type: Optional[FrozenSet[str]] = None
    weather: Optional[FrozenSet[str]] = None
    day_night: Optional[FrozenSet[str]] = None
    dui: Optional[FrozenSet[str]] = None
    drugs: Optional[FrozenSet[str]] = None
    area: Optional[FrozenSet[str]] = None
    suburb: Optional[FrozenSet[str]] = None
    road_surface: Optional[FrozenSet[str]] = None
    moisture: Optional[FrozenSet[str]] = None
    rollover: Optional[FrozenSet[str]] = None
    fire: Optional[FrozenSet[str]] = None
    # casualty level (one casualty must satisfy all)
    road_user: Optional[FrozenSet[str]] = None
    age_group: Optional[FrozenSet[str]] = None
    sex: Optional[FrozenSet[str]] = None
    injury_extent: Optional[FrozenSet[str]] = None
    seat_belt: Optional[FrozenSet[str]] = None
    helmet: Optional[FrozenSet[str]] = None
    # unit level (one unit must satisfy all)
    unit_type: Optional[FrozenSet[str]] = None
    vehicle_year: Optional[FrozenSet[str]] = None
    occupants: Optional[FrozenSet[str]] = None
    licence_type: Optional[FrozenSet[str]] = None
    reg_state: Optional[FrozenSet[str]] = None
    direction: Optional[FrozenSet[str]] = None
    movement: Optional[FrozenSet[str]] = None
    # unit flags, evaluated independently
    towing: Optional[FrozenSet[str]] = None
    heavy_vehicle: Optional[FrozenSet[str]] = None
    # ranges
    year_from: Optional[int] = None
    year_to: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    time_from: Optional[time] = None
    time_to: Optional[time] = None

    def __post_init__(self) -> None:
        for name in SET_FIELDS:
            object.__setattr__(self, name, _as_set(name, getattr(self, name)))
        for name in ("year_from", "year_to"):
            v = getattr(self, name)
            if v is not None:
                object.__setattr__(self, name, int(v))
        for name in ("date_from", "date_to"):
            v = getattr(self, name)
            if v is not None:
                object.__setattr__(self, name, parse_date(v))
        for name in ("time_from", "time_to"):
            v = getattr(self, name)
            if v is not None:
                object.__setattr__(self, name, parse_time(v).replace(second=0, microsecond=0))

    # ---------------- Group activity ----------------
    @property
    def has_date_constraint(self) -> bool:
        return self.date_from is not None or self.date_to is not None

    @property
    def has_time_constraint(self) -> bool:
        return self.time_from is not None or self.time_to is not None

    @property
    def casualty_active(self) -> bool:
        return any(getattr(self, f) is not None for f in CASUALTY_SET_FIELDS)

    @property
    def unit_active(self) -> bool:
        return any(getattr(self, f) is not None for f in UNIT_SET_FIELDS + UNIT_FLAG_FIELDS)

    def is_empty(self) -> bool:
        """True when no constraint is active at all."""
        return not self.active_constraints()

    # ---------------- Normalization / enumeration ----------------
    def normalized(self, domains: Optional[Mapping[str, FrozenSet[str]]] = None) -> "FilterSpecification":
        """Collapse selections that cover their whole domain to None.

        `domains` holds the data-dependent domains (from `Indices`);
        the fixed domains (severity, buckets, Yes/No) are always known.
        """
        changes: Dict[str, Any] = {}
        for name in SET_FIELDS:
            v = getattr(self, name)
            if v is None:
                continue
            dom = FIXED_DOMAINS.get(name)
            if dom is None and domains is not None:
                dom = domains.get(name)
            if dom and dom <= v:
                changes[name] = None
        return replace(self, **changes) if changes else self

    def active_constraints(self) -> List[Tuple[str, Any]]:
        """Canonical (field, value) list of all non-default settings.

        Order follows field declaration; values within a set are sorted.
        Ranges appear as ('year_from', 2015) etc.
        """
        out: List[Tuple[str, Any]] = []
        for f in fields(self):
            v = getattr(self, f.name)
            if v is None:
                continue
            if isinstance(v, frozenset):
                for item in sorted(v):
                    out.append((f.name, item))
            else:
                out.append((f.name, v))
        return out

    def count_active_groups(self) -> int:
        """Number of active filter attributes (the advanced-filter badge)."""
        return len({name for name, _ in self.active_constraints()})

    def with_values(self, **kwargs) -> "FilterSpecification":
        """Copy with some attributes replaced (validated again)."""
        return replace(self, **kwargs)


def from_constraints(pairs: Iterable[Tuple[str, Any]]) -> FilterSpecification:
    """Inverse of `FilterSpecification.active_constraints()`."""
    sets: Dict[str, List[Any]] = {}
    scalars: Dict[str, Any] = {}
    names = {f.name for f in fields(FilterSpecification)}
    for name, value in pairs:
        if name not in names:
            raise ValueError(f"Unknown filter field: {name}")
        if name in SET_FIELDS:
            sets.setdefault(name, []).append(value)
        else:
            scalars[name] = value
    return FilterSpecification(**sets, **scalars)
