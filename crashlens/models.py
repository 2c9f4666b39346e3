"""
Data model (crash / casualty / unit)
====================================

Each row of the three SA crash tables becomes one immutable record:

- `CrashRecord`    one row per crash event (owns its casualties and units)
- `CasualtyRecord` one row per injured/involved person
- `UnitRecord`     one row per vehicle or other involved entity

Records are `frozen=True`. The two derived fields on a crash
(`latlng` and `computed_area`) are filled in by producing a new record
with `dataclasses.replace`, once by the linker and once by the boundary
pre-computation. Filtering never edits records, it only selects them.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Tuple


class Severity(IntEnum):
    """Crash severity, ordered PDO < MI < SI < FATAL."""
    PDO = 1
    MI = 2
    SI = 3
    FATAL = 4

    @property
    def label(self) -> str:
        """Label as written in the crash table (e.g. '4: Fatal')."""
        return _SEVERITY_LABELS[self]

    @classmethod
    def parse(cls, value) -> "Severity":
        """Parse a dataset label, a digit, or a member name.

        Raises ValueError for anything unrecognised.
        """
        if isinstance(value, Severity):
            return value
        s = str(value).strip()
        if not s:
            raise ValueError("Empty severity")
        head = s.split(":", 1)[0].strip()
        if head.isdigit():
            try:
                return cls(int(head))
            except ValueError:
                raise ValueError(f"Unknown severity: {value!r}") from None
        key = s.split(":", 1)[-1].strip().upper()
        aliases = {"PDO": cls.PDO, "MI": cls.MI, "MINOR": cls.MI,
                   "SI": cls.SI, "SERIOUS": cls.SI, "FATAL": cls.FATAL}
        if key in aliases:
            return aliases[key]
        raise ValueError(f"Unknown severity: {value!r}")


_SEVERITY_LABELS = {
    Severity.PDO: "1: PDO",
    Severity.MI: "2: MI",
    Severity.SI: "3: SI",
    Severity.FATAL: "4: Fatal",
}


@dataclass(frozen=True)
class CasualtyRecord:
    """One casualty row, keyed to its crash by `report_id`."""
    report_id: str
    casualty_type: str
    age: Optional[int]
    sex: str
    injury_extent: str
    seat_belt: str
    helmet: str
    hospital: str = ""


@dataclass(frozen=True)
class UnitRecord:
    """One unit row (vehicle, pedestrian, fixed object, animal...)."""
    report_id: str
    unit_type: str
    vehicle_year: Optional[int]
    occupants: Optional[int]
    towing: str
    licence_type: str
    reg_state: str
    direction: str
    movement: str
    rollover: str = ""
    fire: str = ""


@dataclass(frozen=True)
class CrashRecord:
    """One crash row plus its attached children.

    `x`/`y` are the raw projected coordinate strings; `latlng` is the
    cached transform result (None when the coordinates are unusable).
    """
    report_id: str
    x: str
    y: str
    year: Optional[int]
    severity: Severity
    crash_type: str = ""
    weather: str = ""
    day_night: str = ""
    dui: str = ""
    drugs: str = ""
    road_surface: str = ""
    moisture: str = ""
    rollover: str = ""
    fire: str = ""
    area: str = ""
    suburb: str = ""
    postcode: str = ""
    fatalities: int = 0
    serious: int = 0
    minor: int = 0
    speed_limit: Optional[int] = None
    datetime_text: str = ""
    casualties: Tuple[CasualtyRecord, ...] = ()
    units: Tuple[UnitRecord, ...] = ()
    latlng: Optional[Tuple[float, float]] = None
    computed_area: Optional[str] = None

    @property
    def has_dui(self) -> bool:
        return bool(self.dui.strip())

    @property
    def has_drugs(self) -> bool:
        return bool(self.drugs.strip())
