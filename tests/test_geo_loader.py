"""
Tests for coordinate conversion, table loading and record linking.
"""

import pytest

from crashlens.geo import in_bounds, to_latlng
from crashlens.indices import build_indices, group_by_report, link_records
from crashlens.loader import DataLoadError, load_tables, read_table, crashes_from_frame
from crashlens.models import CasualtyRecord, Severity, UnitRecord

CRASH_CSV = """REPORT_ID,ACCLOC_X,ACCLOC_Y,Year,CSEF Severity,Crash Type,LGA Name,Suburb,Total Fats,Total SI,Total MI,DUI Involved,Crash Date Time
2020-1,1000000,2000000,2020,4: Fatal,Hit Pedestrian,CC MARION.,MARION,1,0,0,Y,15/03/2020 23:30
2020-2,,2000000,2020,1: PDO,Rear End,CC MARION.,MARION,0,0,0,,
2020-3,1000000,2000000,2020,unknown,Rear End,N/A,,0,0,1,,01/01/2020 10:00
2020-4,1000000,2000000,2020,2: MI,Rear End,N/A,,0,0,1,,
"""

CASUALTY_CSV = """REPORT_ID,Casualty Type,AGE,Sex,Injury Extent,Seat Belt,Helmet
2020-1,Driver,16,Male,Minor,Worn,Not Applicable
2020-1,Pedestrian,,Female,Fatal,Not Applicable,Not Applicable
"""

UNITS_CSV = """REPORT_ID,Unit Type,Veh Year,Number Occupants,Towing,Licence Type,Veh Reg State,Direction Of Travel,Unit Movement,Rollover
2020-1,Semi Trailer,2005,1,Towing,Full,SA,North,Straight Ahead,Y
2020-3,Motor Cars - Sedan,XXXX,2,Not Towing,Provisional 1,SA,South,Turning Right,
"""


@pytest.fixture
def data_dir(tmp_path):
    (tmp_path / "crash.csv").write_text(CRASH_CSV, encoding="utf-8")
    (tmp_path / "casualty.csv").write_text(CASUALTY_CSV, encoding="utf-8")
    (tmp_path / "units.csv").write_text(UNITS_CSV, encoding="utf-8")
    return tmp_path


def _load(d):
    return load_tables(str(d / "crash.csv"), str(d / "casualty.csv"), str(d / "units.csv"))


class TestCoordinates:

    def test_projection_origin(self):
        lat, lng = to_latlng(1000000, 2000000)
        assert lat == pytest.approx(-32.0, abs=1e-6)
        assert lng == pytest.approx(135.0, abs=1e-6)

    def test_string_inputs(self):
        assert to_latlng(" 1000000 ", "2000000") == to_latlng(1000000.0, 2000000.0)

    @pytest.mark.parametrize("x,y", [("", "2000000"), ("abc", "2000000"), ("nan", "2000000"),
                                     (1000000, float("inf")), (None, 1)])
    def test_unusable_inputs(self, x, y):
        assert to_latlng(x, y) is None

    def test_outside_sa_box(self):
        # about 18 degrees south of the projection origin
        assert to_latlng(1000000, 0) is None
        assert not in_bounds(-50.0, 135.0)
        assert in_bounds(-34.9, 138.6)


class TestLoader:

    def test_crash_rows(self, data_dir):
        crashes, casualties, units = _load(data_dir)
        assert [c.report_id for c in crashes] == ["2020-1", "2020-3", "2020-4"]
        first = crashes[0]
        assert first.severity == Severity.FATAL
        assert first.fatalities == 1
        assert first.has_dui
        assert first.datetime_text == "15/03/2020 23:30"
        assert crashes[1].severity == Severity.PDO
        assert crashes[1].minor == 1

    def test_optional_columns_left_empty(self, data_dir):
        crashes, casualties, units = _load(data_dir)
        assert crashes[0].weather == ""
        assert crashes[0].speed_limit is None
        assert casualties[0].hospital == ""
        assert units[0].fire == ""

    def test_child_rows(self, data_dir):
        crashes, casualties, units = _load(data_dir)
        assert casualties[0] == CasualtyRecord("2020-1", "Driver", 16, "Male", "Minor", "Worn", "Not Applicable")
        assert casualties[1].age is None
        assert units[1].vehicle_year is None
        assert units[1].occupants == 2

    def test_missing_required_column(self, tmp_path):
        path = tmp_path / "crash.csv"
        path.write_text("REPORT_ID,Year\n1,2020\n", encoding="utf-8")
        with pytest.raises(KeyError):
            crashes_from_frame(read_table(str(path)))

    def test_missing_file(self, tmp_path):
        with pytest.raises(DataLoadError):
            read_table(str(tmp_path / "nope.csv"))

    def test_legacy_xls_rejected(self, tmp_path):
        path = tmp_path / "crash.xls"
        path.write_bytes(b"\xd0\xcf\x11\xe0")
        with pytest.raises(DataLoadError):
            read_table(str(path))

    def test_corrupt_xlsx_is_load_error(self, tmp_path):
        path = tmp_path / "crash.xlsx"
        path.write_bytes(b"not a zip archive")
        with pytest.raises(DataLoadError):
            read_table(str(path))

    def test_header_matching_is_tolerant(self, tmp_path):
        path = tmp_path / "crash.csv"
        path.write_text("report id,ACCLOC_X,ACCLOC_Y,csef severity\n7,1,2,3: SI\n", encoding="utf-8")
        crashes = crashes_from_frame(read_table(str(path)))
        assert crashes[0].report_id == "7"
        assert crashes[0].severity == Severity.SI


class TestLinking:

    def test_group_by_report(self):
        u1 = UnitRecord("A", "Car", None, 1, "", "", "", "", "")
        u2 = UnitRecord("B", "Car", None, 1, "", "", "", "", "")
        u3 = UnitRecord("A", "Truck", None, 1, "", "", "", "", "")
        assert group_by_report([u1, u2, u3]) == {"A": [u1, u3], "B": [u2]}

    def test_link_records(self, data_dir):
        records = link_records(*_load(data_dir))
        by_id = {r.report_id: r for r in records}
        r1 = by_id["2020-1"]
        assert len(r1.casualties) == 2
        assert len(r1.units) == 1
        assert r1.latlng == pytest.approx((-32.0, 135.0), abs=1e-6)
        assert r1.rollover == "Yes"
        assert by_id["2020-3"].rollover == "No"
        assert by_id["2020-4"].casualties == ()
        assert by_id["2020-4"].rollover == ""

    def test_build_indices(self, data_dir):
        idx = build_indices(link_records(*_load(data_dir)))
        assert idx.domains["crash_type"] == frozenset({"Hit Pedestrian", "Rear End"})
        assert idx.domains["road_user"] == frozenset({"Driver", "Pedestrian"})
        assert idx.domains["towing"] == frozenset({"Towing", "Not Towing"})
        assert "weather" not in idx.domains
        assert idx.years_sorted == [2020]
        assert idx.linked == 2
        assert idx.without_coords == 0
