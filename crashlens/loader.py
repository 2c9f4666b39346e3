"""
Dataset loader (CSV/Excel -> records)
=====================================

This module reads the three SA crash tables and converts each row into a
typed record (`CrashRecord`, `CasualtyRecord`, `UnitRecord`).

Key ideas:
- Every table is read with all-string dtype; conversion happens here, once.
- Header names are resolved once per table through an explicit
  field -> candidate-headers mapping. A missing required header is a
  KeyError at load time; a missing optional header is logged once and
  the field is left empty.
- Crash rows without both ACCLOC_X and ACCLOC_Y are dropped before linking.
- Children are returned flat; `indices.link_records` attaches them.
"""

from __future__ import annotations
from typing import Callable, Dict, List, Optional, Tuple
import logging
import os
import re
import zipfile

import pandas as pd

from .models import CasualtyRecord, CrashRecord, Severity, UnitRecord

logger = logging.getLogger(__name__)


class DataLoadError(RuntimeError):
    """A required dataset file could not be read at all."""


# field -> (candidate headers, required)
CRASH_COLUMNS: Dict[str, Tuple[Tuple[str, ...], bool]] = {
    "report_id": (("REPORT_ID", "Report ID"), True),
    "x": (("ACCLOC_X",), True),
    "y": (("ACCLOC_Y",), True),
    "year": (("Year",), False),
    "severity": (("CSEF Severity", "Severity"), False),
    "crash_type": (("Crash Type",), False),
    "weather": (("Weather Cond",), False),
    "day_night": (("DayNight", "Day Night"), False),
    "dui": (("DUI Involved",), False),
    "drugs": (("Drugs Involved",), False),
    "road_surface": (("Road Surface",), False),
    "moisture": (("Moisture Cond",), False),
    "rollover": (("Rollover",), False),
    "fire": (("Fire",), False),
    "area": (("LGA Name", "LGA"), False),
    "suburb": (("Suburb",), False),
    "postcode": (("Postcode",), False),
    "fatalities": (("Total Fats",), False),
    "serious": (("Total SI",), False),
    "minor": (("Total MI",), False),
    "speed_limit": (("Area Speed",), False),
    "datetime_text": (("Crash Date Time", "Crash Date"), False),
}

CASUALTY_COLUMNS: Dict[str, Tuple[Tuple[str, ...], bool]] = {
    "report_id": (("REPORT_ID", "Report ID"), True),
    "casualty_type": (("Casualty Type",), False),
    "age": (("AGE", "Age"), False),
    "sex": (("Sex",), False),
    "injury_extent": (("Injury Extent",), False),
    "seat_belt": (("Seat Belt",), False),
    "helmet": (("Helmet",), False),
    "hospital": (("Hospital",), False),
}

UNIT_COLUMNS: Dict[str, Tuple[Tuple[str, ...], bool]] = {
    "report_id": (("REPORT_ID", "Report ID"), True),
    "unit_type": (("Unit Type",), False),
    "vehicle_year": (("Veh Year",), False),
    "occupants": (("Number Occupants",), False),
    "towing": (("Towing",), False),
    "licence_type": (("Licence Type",), False),
    "reg_state": (("Veh Reg State",), False),
    "direction": (("Direction Of Travel",), False),
    "movement": (("Unit Movement",), False),
    "rollover": (("Rollover",), False),
    "fire": (("Fire",), False),
}


def _to_int(x) -> Optional[int]:
    """Convert a cell to int, returning None if missing/invalid."""
    if x is None or pd.isna(x): return None
    try: return int(float(x))
    except (TypeError, ValueError): return None

def _to_str(x) -> str:
    if x is None or pd.isna(x): return ""
    return str(x).strip()

def _norm(s: str) -> str:
    return re.sub(r"[^a-z0-9]+", "", str(s).lower())

def _col(df: pd.DataFrame, *names: str) -> Optional[str]:
    """Find the actual column for any of `names` (exact, then normalized)."""
    cols = list(df.columns)
    for n in names:
        if n in cols:
            return n
    norm_map = {_norm(c): c for c in cols}
    for n in names:
        nn = _norm(n)
        if nn in norm_map:
            return norm_map[nn]
    return None


def resolve_columns(df: pd.DataFrame, mapping: Dict[str, Tuple[Tuple[str, ...], bool]],
                    table: str) -> Dict[str, Optional[str]]:
    """Resolve every field of `mapping` to a header of `df`.

    Raises KeyError if a required header is missing. Missing optional
    headers are logged once here instead of on every row.
    """
    out: Dict[str, Optional[str]] = {}
    for fname, (candidates, required) in mapping.items():
        c = _col(df, *candidates)
        if c is None and required:
            raise KeyError(f"{table}: missing required column. Tried={candidates}. Available={list(df.columns)}")
        if c is None:
            logger.warning("%s: optional column not found, field %r left empty (tried %s)", table, fname, candidates)
        out[fname] = c
    return out


def read_table(path: str) -> pd.DataFrame:
    """Read a CSV or .xlsx table with every cell as a string."""
    if not os.path.exists(path):
        raise DataLoadError(f"Dataset file not found: {path}")
    if path.lower().endswith(".xls"):
        raise DataLoadError(f"Legacy .xls workbooks are not supported, save {path} as .xlsx or CSV")
    try:
        if path.lower().endswith(".xlsx"):
            df = pd.read_excel(path, engine="openpyxl", dtype=str, keep_default_na=False)
        else:
            df = pd.read_csv(path, dtype=str, keep_default_na=False, skip_blank_lines=True)
    except (OSError, ValueError, zipfile.BadZipFile) as e:
        raise DataLoadError(f"Could not read {path}: {e}") from e
    df.rename(columns={c: str(c).strip() for c in df.columns}, inplace=True)
    return df


def _getter(row: dict, cols: Dict[str, Optional[str]]) -> Callable[[str], str]:
    def get(fname: str) -> str:
        c = cols.get(fname)
        return _to_str(row.get(c)) if c else ""
    return get


def crashes_from_frame(df: pd.DataFrame) -> List[CrashRecord]:
    """Convert a crash DataFrame into CrashRecords (children not attached)."""
    cols = resolve_columns(df, CRASH_COLUMNS, "crash")
    crashes: List[CrashRecord] = []
    dropped = 0
    defaulted = 0
    for row in df.to_dict("records"):
        get = _getter(row, cols)
        x, y = get("x"), get("y")
        if not x or not y:
            dropped += 1
            continue
        try:
            severity = Severity.parse(get("severity"))
        except ValueError:
            severity = Severity.PDO
            defaulted += 1
        crashes.append(CrashRecord(
            report_id=get("report_id"),
            x=x,
            y=y,
            year=_to_int(get("year")),
            severity=severity,
            crash_type=get("crash_type"),
            weather=get("weather"),
            day_night=get("day_night"),
            dui=get("dui"),
            drugs=get("drugs"),
            road_surface=get("road_surface"),
            moisture=get("moisture"),
            rollover=get("rollover"),
            fire=get("fire"),
            area=get("area"),
            suburb=get("suburb"),
            postcode=get("postcode"),
            fatalities=_to_int(get("fatalities")) or 0,
            serious=_to_int(get("serious")) or 0,
            minor=_to_int(get("minor")) or 0,
            speed_limit=_to_int(get("speed_limit")),
            datetime_text=get("datetime_text"),
        ))
    if dropped:
        logger.info("Dropped %d crash rows without coordinates", dropped)
    if defaulted:
        logger.warning("%d crash rows had an unrecognised severity; treated as PDO", defaulted)
    return crashes


def casualties_from_frame(df: pd.DataFrame) -> List[CasualtyRecord]:
    cols = resolve_columns(df, CASUALTY_COLUMNS, "casualty")
    out: List[CasualtyRecord] = []
    for row in df.to_dict("records"):
        get = _getter(row, cols)
        out.append(CasualtyRecord(
            report_id=get("report_id"),
            casualty_type=get("casualty_type"),
            age=_to_int(get("age")),
            sex=get("sex"),
            injury_extent=get("injury_extent"),
            seat_belt=get("seat_belt"),
            helmet=get("helmet"),
            hospital=get("hospital"),
        ))
    return out


def units_from_frame(df: pd.DataFrame) -> List[UnitRecord]:
    cols = resolve_columns(df, UNIT_COLUMNS, "units")
    out: List[UnitRecord] = []
    for row in df.to_dict("records"):
        get = _getter(row, cols)
        out.append(UnitRecord(
            report_id=get("report_id"),
            unit_type=get("unit_type"),
            vehicle_year=_to_int(get("vehicle_year")),
            occupants=_to_int(get("occupants")),
            towing=get("towing"),
            licence_type=get("licence_type"),
            reg_state=get("reg_state"),
            direction=get("direction"),
            movement=get("movement"),
            rollover=get("rollover"),
            fire=get("fire"),
        ))
    return out


def load_tables(crash_path: str, casualty_path: str, units_path: str
                ) -> Tuple[List[CrashRecord], List[CasualtyRecord], List[UnitRecord]]:
    """Load all three tables. Any unreadable file raises DataLoadError."""
    logger.info("Loading crash data from %s", crash_path)
    crashes = crashes_from_frame(read_table(crash_path))
    logger.info("Crash data loaded: %d records with coordinates", len(crashes))

    logger.info("Loading casualty data from %s", casualty_path)
    casualties = casualties_from_frame(read_table(casualty_path))
    logger.info("Casualty data loaded: %d records", len(casualties))

    logger.info("Loading units data from %s", units_path)
    units = units_from_frame(read_table(units_path))
    logger.info("Units data loaded: %d records", len(units))
    return crashes, casualties, units
