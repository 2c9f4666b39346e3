"""
Tests for area canonicalization, boundaries and the map projections.
"""

import json
import math

import pytest

from conftest import make_crash
from crashlens.areas import AdministrativeAreaIndex, is_placeholder, load_area_index
from crashlens.boundaries import (
    UNASSIGNED_AREA, Boundaries, area_name_from_properties, assign_missing_areas, load_boundaries,
)
from crashlens.models import Severity
from crashlens.projections import (
    COLOR_RAMP, NO_DATA_COLOR, RAMP_FLOOR_COLOR, choropleth, color_for_count, density_samples,
    intensity, iter_point_batches, point_feature,
)
from crashlens.stats import area_counts, effective_area, summarize, top_areas

SQUARE = {
    "type": "FeatureCollection",
    "features": [{
        "type": "Feature",
        "properties": {"LGA": "CC MARION.", "Shape_Area": "123"},
        "geometry": {"type": "Polygon",
                     "coordinates": [[[138.0, -35.0], [139.0, -35.0], [139.0, -34.0],
                                      [138.0, -34.0], [138.0, -35.0]]]},
    }],
}


class TestAreaIndex:

    def test_aliases_resolve_to_canonical(self, area_index):
        assert area_index.canonical("CC MARION.") == "CITY OF MARION"
        assert area_index.canonical("  cc marion. ") == "CITY OF MARION"
        assert area_index.canonical("CITY OF MARION") == "CITY OF MARION"

    def test_unknown_names_pass_through(self, area_index):
        assert area_index.canonical("Some Place ") == "SOME PLACE"
        assert area_index.display_name("Some Place") == "Some Place"

    def test_conflicting_alias_rejected(self):
        with pytest.raises(ValueError):
            AdministrativeAreaIndex.from_mapping({"A": ["X"], "B": ["X"]})

    def test_display_names(self, area_index):
        assert area_index.display_name("CC MARION.") == "Marion"
        assert area_index.sorted_by_display(["CC MARION.", "ADELAIDE CC."]) == ["ADELAIDE CC.", "CC MARION."]

    def test_packaged_assets(self):
        idx = load_area_index()
        assert idx.canonical("CC MARION.") == "CITY OF MARION"
        assert idx.display_name("CC MARION.") == "Marion"

    def test_placeholders(self):
        assert is_placeholder("N/A")
        assert is_placeholder(" ")
        assert is_placeholder(None)
        assert not is_placeholder("CC MARION.")


class TestBoundaries:

    def test_name_from_properties(self):
        assert area_name_from_properties({"abbname": "Marion", "LGA": "CC MARION."}) == "CC MARION."
        assert area_name_from_properties({"Shape_Area": "1", "Other": "X"}) == "X"
        assert area_name_from_properties({}) == "Unknown"

    def test_locate(self):
        b = Boundaries.from_geojson(SQUARE)
        assert len(b) == 1
        assert b.locate(-34.5, 138.5) == "CC MARION."
        assert b.locate(-30.0, 130.0) is None

    def test_assign_missing_areas(self):
        b = Boundaries.from_geojson(SQUARE)
        recs = [
            make_crash("in", area="N/A", latlng=(-34.5, 138.5)),
            make_crash("out", area="", latlng=(-30.0, 130.0)),
            make_crash("nocoords", area="N/A", latlng=None),
            make_crash("named", area="ADELAIDE CC.", latlng=(-34.5, 138.5)),
        ]
        out = {r.report_id: r for r in assign_missing_areas(recs, b)}
        assert out["in"].computed_area == "CC MARION."
        assert out["out"].computed_area == UNASSIGNED_AREA
        assert out["nocoords"].computed_area is None
        assert out["named"].computed_area is None

    def test_load_boundaries_failures(self, tmp_path):
        assert load_boundaries(None) is None
        assert load_boundaries(str(tmp_path / "missing.geojson")) is None
        bad = tmp_path / "bad.geojson"
        bad.write_text("{not json", encoding="utf-8")
        assert load_boundaries(str(bad)) is None

    def test_load_boundaries(self, tmp_path):
        path = tmp_path / "lga.geojson"
        path.write_text(json.dumps(SQUARE), encoding="utf-8")
        assert load_boundaries(str(path)).names == ["CC MARION."]


class TestStats:

    def test_effective_area_fallback(self):
        assert effective_area(make_crash("a", area="CC MARION.")) == "CC MARION."
        assert effective_area(make_crash("b", area="N/A", computed_area="X")) == "X"
        assert effective_area(make_crash("c", area="N/A")) is None

    def test_area_counts_and_top(self, records, area_index):
        counts = area_counts(records, area_index)
        assert counts == {"CITY OF MARION": 2, "CITY OF ADELAIDE": 1}
        assert top_areas(counts, 1) == [("CITY OF MARION", 2)]

    def test_summarize_empty(self):
        st = summarize([])
        assert st.crashes == 0
        assert st.as_dict()["by_severity"] == {"1: PDO": 0, "2: MI": 0, "3: SI": 0, "4: Fatal": 0}


class TestMarkersAndHeatmap:

    def test_point_feature(self, records):
        f = point_feature(records[0])
        assert f["geometry"]["coordinates"] == [138.6, -34.9]
        assert f["properties"]["severity"] == "4: Fatal"
        assert f["properties"]["color"] == "#8B0000"
        assert f["properties"]["casualties"]["count"] == 2
        assert f["properties"]["units"]["summary"] == {"Semi Trailer": 1}
        assert point_feature(records[3]) is None

    def test_batches(self, records):
        assert [len(b) for b in iter_point_batches(records, 2)] == [2, 1]
        assert [len(b) for b in iter_point_batches(records, 10)] == [3]
        with pytest.raises(ValueError):
            list(iter_point_batches(records, 0))

    def test_density_weights(self, records):
        assert [w for _, _, w in density_samples(records)] == [4, 3, 2]
        assert density_samples([]) == []


class TestChoropleth:

    def test_intensity_is_log_scaled_and_monotonic(self):
        assert intensity(0, 100) == 0.0
        assert intensity(5, 0) == 0.0
        assert intensity(100, 100) == pytest.approx(1.0)
        assert intensity(9, 99) == pytest.approx(math.log(10) / math.log(100))
        values = [intensity(c, 1000) for c in range(1, 1001)]
        assert values == sorted(values)

    def test_colors(self):
        assert color_for_count(0, 50) == NO_DATA_COLOR
        assert color_for_count(50, 50) == COLOR_RAMP[0][1]
        assert color_for_count(1, 10 ** 9) != NO_DATA_COLOR
        assert color_for_count(1, 10 ** 30) == RAMP_FLOOR_COLOR

    def test_boundary_mode(self, area_index):
        b = Boundaries.from_geojson(SQUARE)
        out = choropleth({"CITY OF MARION": 5, "CITY OF ADELAIDE": 9}, area_index, boundaries=b)
        assert out["mode"] == "boundaries"
        assert out["max_count"] == 9
        bucket = out["buckets"][0]
        assert bucket["area"] == "CITY OF MARION"
        assert bucket["display_name"] == "Marion"
        assert bucket["count"] == 5
        assert bucket["feature_index"] == 0
        assert bucket["color"] == color_for_count(5, 9)

    def test_boundary_without_crashes_gets_no_data_color(self, area_index):
        out = choropleth({}, area_index, boundaries=Boundaries.from_geojson(SQUARE))
        assert out["buckets"][0]["color"] == NO_DATA_COLOR

    def test_centroid_mode(self, records, area_index):
        counts = area_counts(records, area_index)
        out = choropleth(counts, area_index, records=records)
        assert out["mode"] == "centroids"
        by_area = {b["area"]: b for b in out["buckets"]}
        assert by_area["CITY OF MARION"]["count"] == 2
        assert by_area["CITY OF MARION"]["centroid"] == pytest.approx([-34.9, 138.6])
        assert by_area["CITY OF MARION"]["radius_m"] == pytest.approx(math.sqrt(2) * 500)
        assert by_area["CITY OF MARION"]["color"] == COLOR_RAMP[0][1]
