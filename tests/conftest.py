"""
Shared pytest fixtures.

Records are built directly (no CSV round trip) with coordinates already
converted, so most tests do not depend on pyproj.
"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from crashlens.areas import AdministrativeAreaIndex
from crashlens.engine import CrashExplorer
from crashlens.indices import build_indices
from crashlens.models import CasualtyRecord, CrashRecord, Severity, UnitRecord


def make_casualty(report_id, casualty_type="Driver", age=30, sex="Male",
                  injury_extent="Minor", seat_belt="Worn", helmet="Not Applicable"):
    return CasualtyRecord(report_id=report_id, casualty_type=casualty_type, age=age, sex=sex,
                          injury_extent=injury_extent, seat_belt=seat_belt, helmet=helmet)


def make_unit(report_id, unit_type="Motor Cars - Sedan", vehicle_year=2015, occupants=1,
              towing="Not Towing", licence_type="Full", reg_state="SA",
              direction="North", movement="Straight Ahead"):
    return UnitRecord(report_id=report_id, unit_type=unit_type, vehicle_year=vehicle_year,
                      occupants=occupants, towing=towing, licence_type=licence_type,
                      reg_state=reg_state, direction=direction, movement=movement)


def make_crash(report_id, *, severity=Severity.PDO, year=2020, casualties=(), units=(),
               latlng=(-34.9, 138.6), **kw):
    return CrashRecord(report_id=report_id, x="1328000", y="1665000", year=year,
                       severity=severity, casualties=tuple(casualties), units=tuple(units),
                       latlng=latlng, **kw)


@pytest.fixture
def area_index():
    return AdministrativeAreaIndex.from_mapping(
        {"CITY OF MARION": ["CC MARION."], "CITY OF ADELAIDE": ["ADELAIDE CC."]},
        {"CC MARION.": "Marion", "CITY OF MARION": "Marion", "ADELAIDE CC.": "Adelaide"},
    )


@pytest.fixture
def records():
    """Four crashes covering the main predicate groups."""
    return [
        make_crash(
            "2020-1", severity=Severity.FATAL, year=2020, area="CC MARION.", suburb="MARION",
            crash_type="Hit Pedestrian", dui="Y", datetime_text="15/03/2020 23:30",
            fatalities=1,
            casualties=[make_casualty("2020-1", "Driver", 16),
                        make_casualty("2020-1", "Pedestrian", 40, injury_extent="Fatal")],
            units=[make_unit("2020-1", "Semi Trailer", 2005, 1, towing="Towing")],
        ),
        make_crash(
            "2018-2", severity=Severity.SI, year=2018, area="CITY OF MARION", suburb="OAKLANDS PARK",
            crash_type="Rear End", datetime_text="01/07/2018 08:15", serious=2,
            casualties=[make_casualty("2018-2", "Pedestrian", 16, injury_extent="Serious")],
            units=[make_unit("2018-2", occupants=0), make_unit("2018-2", occupants=3)],
        ),
        make_crash(
            "2015-3", severity=Severity.MI, year=2015, area="ADELAIDE CC.", suburb="ADELAIDE",
            crash_type="Rear End", datetime_text="", minor=1,
            casualties=[make_casualty("2015-3", "Passenger", 70)],
        ),
        make_crash(
            "2013-4", severity=Severity.PDO, year=2013, area="N/A", suburb="",
            crash_type="Hit Fixed Object", datetime_text="not a date", latlng=None,
        ),
    ]


@pytest.fixture
def explorer(records, area_index):
    return CrashExplorer(records=records, idx=build_indices(records), areas=area_index)
