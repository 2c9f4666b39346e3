"""
CrashLens Command Line Interface (CLI)
======================================

This file provides the interactive terminal program you run like:

    crashlens --data-dir ./data
    python -m crashlens.cli --crash crash.csv --casualty casualty.csv --units units.csv

It demonstrates:
- Argument parsing (argparse) and logging setup
- A REPL loop (Read-Eval-Print Loop) for commands
- Mapping user commands to engine methods (filters, layers, export, report)

The CLI DOES NOT modify the CSV files. It loads them once and works on an
in-memory selection of crash records.
"""

from __future__ import annotations
from dataclasses import replace
from typing import List
import argparse
import asyncio
import logging
import os
import shlex
import sys

from .areas import load_area_index
from .boundaries import assign_missing_areas, load_boundaries
from .config import DataPaths, EngineConfig
from .engine import CrashExplorer, FilterProgress
from .filters import FIXED_DOMAINS, SET_FIELDS, FilterSpecification
from .indices import build_indices, link_records
from .loader import DataLoadError, load_tables
from .models import CrashRecord, Severity
from .query_lang import parse_filter, spec_to_expr
from .stats import top_areas


HELP = """
CrashLens commands (grouped)
----------------------------

1) View / Inspect
   help
   stats
   show [n]                          (first n crashes of the selection)
   values <field> [prefix]           (example: values weather)
   areas [n]                         (top n council areas)
   share                             (filter text of the current selection)

2) Filtering
   filter <field> <v1> [v2 ...]      (example: filter severity FATAL SI)
   filter road_user "Pedestrian"
   clear <field>                     (drop one filter)
   year <y1> <y2>                    (example: year 2015 2020; see 'stats' for the range)
   date <from> <to>                  (ISO dates, '-' for open: date 2020-01-01 -)
   time <from> <to>                  (HH:MM, wraps midnight: time 22:00 02:00)
   where <expr>                      (example: where severity IN (FATAL, SI) AND year >= 2018)
   reset

3) Layers
   layer <markers|heatmap|choropleth>   (toggle)
   layers                               (sizes of the active projections)

4) Export (current selection)
   export csv "<out.csv>"
   export geojson "<out.geojson>"
   export json "<out.json>"          (statistics + density + choropleth)

5) Report (DOCX)
   report "<out.docx>" [current|full]

6) History
   undo
   redo

7) Exit
   quit

Fields: """ + ", ".join(SET_FIELDS)


def _parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="crashlens", description="SA road crash filtering engine")
    ap.add_argument("--data-dir", default=".", help="Directory holding the three CSV files")
    ap.add_argument("--crash", help="Crash table (CSV or XLSX)")
    ap.add_argument("--casualty", help="Casualty table")
    ap.add_argument("--units", help="Units table")
    ap.add_argument("--boundaries", help="LGA boundary GeoJSON (optional)")
    ap.add_argument("--chunk-size", type=int, default=EngineConfig.chunk_size,
                    help="Records per filtering chunk")
    ap.add_argument("--log-level", default="INFO",
                    choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return ap.parse_args(argv)


def build_explorer(paths: DataPaths, config: EngineConfig) -> CrashExplorer:
    """Load, link and index the tables, then open a session over them.

    Raises DataLoadError if a table cannot be read.
    """
    crashes, casualties, units = load_tables(paths.crash, paths.casualty, paths.units)
    records = link_records(crashes, casualties, units)
    boundaries = load_boundaries(paths.boundaries)
    if boundaries is not None:
        records = assign_missing_areas(records, boundaries)
    idx = build_indices(records)
    if idx.years_sorted:
        config = replace(config, year_min=min(config.year_min, idx.years_sorted[0]),
                         year_max=max(config.year_max, idx.years_sorted[-1]))
    areas = load_area_index()
    return CrashExplorer(records=records, idx=idx, areas=areas, boundaries=boundaries,
                         config=config, dataset_path=paths.crash)


def main(argv=None):
    """Entry point for the CrashLens CLI.

    1) Load and link the dataset
    2) Start an interactive REPL
    """
    args = _parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(asctime)s - %(levelname)s - %(message)s")

    paths = DataPaths.from_dir(args.data_dir)
    if args.crash: paths.crash = args.crash
    if args.casualty: paths.casualty = args.casualty
    if args.units: paths.units = args.units
    if args.boundaries: paths.boundaries = args.boundaries

    print("Loading dataset...")
    try:
        engine = build_explorer(paths, EngineConfig(chunk_size=args.chunk_size))
    except (DataLoadError, KeyError) as e:
        print(f"Error loading data: {e}")
        sys.exit(1)

    print(f"Loaded {len(engine.records)} crashes. Type 'help' for commands.")
    while True:
        try:
            line = input("crashlens> ")
        except EOFError:
            break
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.lower() in ("quit", "exit"):
            break
        # Keep a lightweight log of state-changing commands for the report
        cmd0 = stripped.split()[0].lower()
        if cmd0 not in ("help", "show", "values", "stats", "areas", "share", "layers"):
            engine.command_log.append(stripped)
        try:
            handle(engine, stripped)
        except (ValueError, KeyError, OSError) as e:
            print(f"Error: {e}")


def _apply(engine: CrashExplorer, spec: FilterSpecification) -> None:
    """Run a filter through the cooperative path, printing progress."""
    def progress(p: FilterProgress) -> None:
        if p.total > engine.config.chunk_size:
            print(f"\r  filtering... {p.fraction:5.0%}", end="", flush=True)

    asyncio.run(engine.apply_async(spec, on_progress=progress))
    if len(engine.records) > engine.config.chunk_size:
        print()
    print(f"Size={len(engine.results)}")


def _opt(s: str):
    return None if s in ("-", "any", "*") else s


def _check_year(engine: CrashExplorer, y):
    if y is None:
        return None
    y = int(y)
    if not engine.config.year_min <= y <= engine.config.year_max:
        raise ValueError(f"Year must be within {engine.config.year_min}-{engine.config.year_max}")
    return y


def handle(engine: CrashExplorer, line: str) -> None:
    """Handle one CLI command line.

    This parses the command and calls the appropriate engine method.
    """
    # allow where without needing shell-style quoting
    if line.lower().startswith("where "):
        spec = parse_filter(line[len("where "):].strip())
        _apply(engine, spec)
        return

    parts = shlex.split(line)
    cmd = parts[0].lower()

    if cmd == "help":
        print(HELP)
        return

    if cmd == "stats":
        st = engine.statistics()
        print(f"Crashes: {st.crashes} | Fatalities: {st.fatalities} | Serious: {st.serious} | Minor: {st.minor}")
        print("By severity: " + ", ".join(f"{s.label}={n}" for s, n in st.by_severity.items()))
        print(f"Without coordinates: {st.without_coords} | Active filters: {engine.state.spec.count_active_groups()}")
        years = engine.idx.years_sorted
        if years:
            print(f"Years in data: {years[0]}-{years[-1]} | Year filter accepts: "
                  f"{engine.config.year_min}-{engine.config.year_max}")
        return

    if cmd == "reset":
        engine.reset()
        print("State reset.")
        return

    if cmd == "undo":
        print("Undone." if engine.undo() else "Nothing to undo.")
        return

    if cmd == "redo":
        print("Redone." if engine.redo() else "Nothing to redo.")
        return

    if cmd == "share":
        print(spec_to_expr(engine.state.spec) or "(no filters)")
        return

    if cmd == "values":
        if len(parts) < 2:
            raise ValueError("Usage: values <field> [prefix]")
        field = parts[1].lower()
        if field not in SET_FIELDS:
            raise ValueError(f"Unknown field: {field}")
        if field == "severity":
            vals = [s.name for s in Severity]
        elif field in FIXED_DOMAINS:
            vals = sorted(FIXED_DOMAINS[field])
        elif field == "area":
            vals = engine.areas.sorted_by_display(engine.idx.domains.get(field, ()))
        else:
            vals = sorted(engine.idx.domains.get(field, ()))
        if len(parts) >= 3:
            p = parts[2].lower()
            vals = [v for v in vals if v.lower().startswith(p)]
        for v in vals[:50]:
            print(v)
        if len(vals) > 50:
            print(f"... ({len(vals)} total, showing 50)")
        return

    if cmd == "filter":
        if len(parts) < 3:
            raise ValueError("Usage: filter <field> <value> [value ...]")
        field = parts[1].lower()
        if field not in SET_FIELDS:
            raise ValueError(f"Unknown field: {field}")
        _apply(engine, engine.state.spec.with_values(**{field: parts[2:]}))
        return

    if cmd == "clear":
        field = parts[1].lower() if len(parts) >= 2 else ""
        if field in SET_FIELDS:
            _apply(engine, engine.state.spec.with_values(**{field: None}))
            return
        if field in ("year", "date", "time"):
            _apply(engine, engine.state.spec.with_values(**{f"{field}_from": None, f"{field}_to": None}))
            return
        raise ValueError(f"Unknown field: {field!r}")

    if cmd in ("year", "date", "time"):
        if len(parts) != 3:
            raise ValueError(f"Usage: {cmd} <from> <to>  ('-' for open)")
        lo, hi = _opt(parts[1]), _opt(parts[2])
        if cmd == "year":
            lo, hi = _check_year(engine, lo), _check_year(engine, hi)
        _apply(engine, engine.state.spec.with_values(**{f"{cmd}_from": lo, f"{cmd}_to": hi}))
        return

    if cmd == "areas":
        n = int(parts[1]) if len(parts) >= 2 else 10
        for name, count in top_areas(engine.area_counts(), n):
            print(f"{engine.areas.display_name(name):<30} {count}")
        return

    if cmd == "layer":
        if len(parts) < 2:
            raise ValueError("Usage: layer <markers|heatmap|choropleth>")
        on = engine.toggle_layer(parts[1].lower())
        print(f"Layer {parts[1].lower()}: {'on' if on else 'off'}")
        return

    if cmd == "layers":
        proj = engine.projections()
        for name, on in engine.layers.items():
            if not on:
                print(f"{name}: off")
            elif name == "choropleth":
                ch = proj[name]
                print(f"{name}: {len(ch['buckets'])} areas ({ch['mode']}, max={ch['max_count']})")
            elif name == "heatmap":
                hm = proj[name]
                print(f"{name}: {len(hm['samples'])} points (radius={hm['radius']:g}, blur={hm['blur']:g})")
            else:
                print(f"{name}: {len(proj[name])} points")
        return

    if cmd == "report":
        from .report import DatasetCitation, ReportConfig, generate_docx_report
        if len(parts) < 2:
            raise ValueError('Usage: report "<out.docx>" [current|full]')
        path = parts[1]
        scope = parts[2].lower() if len(parts) >= 3 else "current"
        if scope not in ("current", "full"):
            raise ValueError("report scope must be: current | full")
        if scope == "full":
            recs, label, expr = engine.records, "Full Dataset", ""
        else:
            recs, label, expr = engine.results, "Current Result Set", spec_to_expr(engine.state.spec)
        p = engine.dataset_path
        cfg = ReportConfig(
            citation=DatasetCitation(file_name=os.path.basename(p) if p else None),
            filter_expr=expr,
            command_log=engine.command_log,
        )
        generate_docx_report(recs, path, areas=engine.areas, config=cfg, scope_label=label)
        print(f"Report written to {path}")
        return

    if cmd == "export":
        if len(parts) < 3:
            print('Usage: export csv|geojson|json "<path>"')
            return
        fmt = parts[1].lower()
        out_path = parts[2]
        if not engine.results:
            print("Nothing to export: current selection is empty.")
            return
        if fmt == "csv":
            engine.export_csv(out_path)
        elif fmt == "geojson":
            engine.export_geojson(out_path)
        elif fmt == "json":
            engine.export_json(out_path)
        else:
            print("Unknown export format. Use: csv, geojson or json")
            return
        print(f"Exported {fmt.upper()} to {out_path}")
        return

    if cmd == "show":
        n = int(parts[1]) if len(parts) >= 2 else 10
        _print_rows(engine.results[:n])
        return

    print("Unknown command. Type 'help'.")


def _print_rows(rows: List[CrashRecord]) -> None:
    for r in rows:
        where = f"{r.latlng[0]:.5f},{r.latlng[1]:.5f}" if r.latlng else "no coords"
        print(f"[{r.report_id}] {r.datetime_text or '?'} | {r.severity.label} | {r.crash_type} | "
              f"{r.suburb} ({r.area}) | cas={len(r.casualties)} units={len(r.units)} | {where}")


if __name__ == "__main__":
    main()
