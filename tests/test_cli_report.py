"""
Tests for the REPL command handler, session building and the DOCX report.
"""

from pathlib import Path

import pytest

from crashlens.cli import build_explorer, handle, main
from crashlens.config import DataPaths, EngineConfig
from crashlens.models import Severity
from crashlens.report import ReportConfig, generate_docx_report


class TestSeverity:

    @pytest.mark.parametrize("raw,expected", [
        ("4: Fatal", Severity.FATAL), ("3: SI", Severity.SI), ("2", Severity.MI),
        ("pdo", Severity.PDO), ("Serious", Severity.SI), (Severity.MI, Severity.MI),
    ])
    def test_parse(self, raw, expected):
        assert Severity.parse(raw) == expected

    @pytest.mark.parametrize("raw", ["", "9: Worse", "bad"])
    def test_parse_rejects(self, raw):
        with pytest.raises(ValueError):
            Severity.parse(raw)

    def test_ordering_and_labels(self):
        assert Severity.PDO < Severity.MI < Severity.SI < Severity.FATAL
        assert Severity.FATAL.label == "4: Fatal"


class TestHandle:

    def test_filter_share_undo(self, explorer, capsys):
        handle(explorer, "filter severity FATAL SI")
        assert len(explorer.results) == 2
        handle(explorer, "year 2019 -")
        assert [r.report_id for r in explorer.results] == ["2020-1"]
        capsys.readouterr()

        handle(explorer, "share")
        assert capsys.readouterr().out.strip() == "severity IN (SI, FATAL) AND year >= 2019"

        handle(explorer, "undo")
        assert len(explorer.results) == 2
        handle(explorer, "clear severity")
        assert len(explorer.results) == 4

    def test_where(self, explorer):
        handle(explorer, 'where road_user == "Pedestrian" AND age_group == "0-17"')
        assert [r.report_id for r in explorer.results] == ["2018-2"]

    def test_time_command(self, explorer):
        handle(explorer, "time 22:00 02:00")
        assert [r.report_id for r in explorer.results] == ["2020-1"]

    def test_values(self, explorer, capsys):
        handle(explorer, "values crash_type")
        assert capsys.readouterr().out.split("\n")[:3] == ["Hit Fixed Object", "Hit Pedestrian", "Rear End"]
        handle(explorer, "values severity")
        assert "FATAL" in capsys.readouterr().out

    def test_unknown_field(self, explorer):
        with pytest.raises(ValueError):
            handle(explorer, "filter colour red")

    def test_layers_and_stats(self, explorer, capsys):
        handle(explorer, "layer choropleth")
        assert explorer.layers["choropleth"] is True
        handle(explorer, "layers")
        out = capsys.readouterr().out
        assert "markers: 3 points" in out
        assert "choropleth: 2 areas (centroids, max=2)" in out
        handle(explorer, "stats")
        assert "Crashes: 4 | Fatalities: 1" in capsys.readouterr().out

    def test_year_command_checks_configured_bounds(self, explorer):
        with pytest.raises(ValueError):
            handle(explorer, "year 1990 2000")
        with pytest.raises(ValueError):
            handle(explorer, "year 2015 2031")
        handle(explorer, "year 2015 2018")
        assert [r.report_id for r in explorer.results] == ["2018-2", "2015-3"]
        assert (explorer.state.spec.year_from, explorer.state.spec.year_to) == (2015, 2018)

    def test_stats_shows_year_range(self, explorer, capsys):
        handle(explorer, "stats")
        assert "Years in data: 2013-2020 | Year filter accepts: 2012-2024" in capsys.readouterr().out

    def test_heatmap_layer_summary(self, explorer, capsys):
        handle(explorer, "layer heatmap")
        capsys.readouterr()
        handle(explorer, "layers")
        assert "heatmap: 3 points (radius=20, blur=15)" in capsys.readouterr().out

    def test_report_cites_dataset_file(self, explorer, tmp_path, capsys):
        explorer.dataset_path = str(tmp_path / "2012-2024_DATA_SA_Crash.csv")
        out = tmp_path / "r.docx"
        handle(explorer, f'report "{out}" full')
        assert out.exists()
        assert "Report written" in capsys.readouterr().out

    def test_export(self, explorer, tmp_path):
        out = tmp_path / "sel.geojson"
        handle(explorer, f'export geojson "{out}"')
        assert out.exists()


class TestBuildAndMain:

    def _write(self, d: Path) -> DataPaths:
        (d / "c.csv").write_text("REPORT_ID,ACCLOC_X,ACCLOC_Y,Year,CSEF Severity,LGA Name\n"
                                 "1,1000000,2000000,2020,4: Fatal,CC MARION.\n", encoding="utf-8")
        (d / "p.csv").write_text("REPORT_ID,Casualty Type,AGE\n1,Driver,30\n", encoding="utf-8")
        (d / "u.csv").write_text("REPORT_ID,Unit Type\n1,Motor Cars - Sedan\n", encoding="utf-8")
        return DataPaths(crash=str(d / "c.csv"), casualty=str(d / "p.csv"),
                         units=str(d / "u.csv"), boundaries=str(d / "none.geojson"))

    def test_build_explorer(self, tmp_path):
        ex = build_explorer(self._write(tmp_path), EngineConfig())
        assert len(ex.records) == 1
        assert ex.boundaries is None
        assert ex.area_counts() == {"CITY OF MARION": 1}

    def test_build_explorer_records_dataset_and_years(self, tmp_path):
        paths = self._write(tmp_path)
        ex = build_explorer(paths, EngineConfig())
        assert ex.dataset_path == paths.crash
        assert (ex.config.year_min, ex.config.year_max) == (2012, 2024)

        (tmp_path / "c.csv").write_text("REPORT_ID,ACCLOC_X,ACCLOC_Y,Year,CSEF Severity\n"
                                       "1,1000000,2000000,2027,2: MI\n", encoding="utf-8")
        ex = build_explorer(paths, EngineConfig())
        assert ex.config.year_max == 2027
        handle(ex, "year 2027 2027")
        assert len(ex.results) == 1

    def test_main_exits_on_missing_data(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["--data-dir", str(tmp_path)])
        assert exc.value.code == 1
        assert "Error loading data" in capsys.readouterr().out


class TestReport:

    def test_generate_docx(self, records, area_index, tmp_path):
        out = tmp_path / "report.docx"
        cfg = ReportConfig(filter_expr="severity IN (SI, FATAL)", command_log=["filter severity FATAL SI"])
        path = generate_docx_report(records, str(out), areas=area_index, config=cfg)
        assert path == str(out)
        assert out.stat().st_size > 0

    def test_empty_selection(self, area_index, tmp_path):
        with pytest.raises(ValueError):
            generate_docx_report([], str(tmp_path / "r.docx"), areas=area_index)
