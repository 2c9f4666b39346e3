from __future__ import annotations

"""
CrashLens report generator
--------------------------
This module generates a DOCX report from a list of CrashRecord objects
(normally the current filtered selection).

Design goals:
- Keep CrashLens usable even if report dependencies are missing (lazy imports).
- Report the same numbers the statistics panel shows: casualty totals come
  from the crash table's own Total Fats / Total SI / Total MI columns.
- Pick charts that say something about the selection. A selection inside a
  single council gets a suburb chart instead of a top-areas chart.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
from collections import Counter
import os
import tempfile

from .areas import AdministrativeAreaIndex
from .models import CrashRecord, Severity
from .projections import SEVERITY_COLORS
from .stats import area_counts, summarize, top_areas


# -----------------------------
# Configuration / citation types
# -----------------------------

@dataclass
class DatasetCitation:
    """Minimal dataset citation metadata for the DOCX report."""
    database_name: str = "Road Crash Data (2012-2024)"
    institutional_author: str = "Department for Infrastructure and Transport, South Australia"
    location: str = "Adelaide, Australia"
    access_date_iso: str = "2026-10-17"
    website: str = "https://data.sa.gov.au"
    file_name: Optional[str] = None
    file_note: Optional[str] = "Crash, casualty and units CSV extracts."


@dataclass
class ReportConfig:
    """High-level knobs to control how the report is written."""
    title: str = "CrashLens Analytical Report"
    subtitle: str = "SA road crash filtering engine (CLI)"
    dataset_name: str = "SA crash / casualty / units tables"
    citation: DatasetCitation = field(default_factory=DatasetCitation)

    # How many categories to show in bar charts / tables
    top_n: int = 10

    # How many rows to show in preview tables
    max_rows_preview: int = 15

    # Canonical filter text of the selection (query_lang form)
    filter_expr: str = ""

    # Optional: list of CLI commands used to create the current result set
    command_log: Optional[List[str]] = None


def _choose_bins(n: int) -> int:
    """Simple bin heuristic (keeps charts readable for small samples)."""
    if n <= 20:
        return 10
    if n <= 100:
        return 15
    return 30


# -----------------------------
# Main entry point used by CLI
# -----------------------------

def generate_docx_report(
    records: Sequence[CrashRecord],
    out_path: str,
    *,
    areas: AdministrativeAreaIndex,
    config: Optional[ReportConfig] = None,
    scope_label: str = "Current Result Set",
) -> str:
    """
    Generate a DOCX report + charts for a list of crashes.

    The source CSV files are never touched; the report describes the
    in-memory selection only.
    """
    config = config or ReportConfig()

    # Lazy imports: only required when "report" is used.
    try:
        from docx import Document
        from docx.shared import Pt, Inches
        from docx.enum.text import WD_ALIGN_PARAGRAPH
        from docx.oxml.ns import qn
    except ImportError as e:
        raise ImportError(
            "Missing dependency: python-docx.\n"
            "Install it with: python -m pip install python-docx"
        ) from e

    try:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
        import numpy as np
    except ImportError as e:
        raise ImportError(
            "Missing dependency: matplotlib (and numpy).\n"
            "Install with: python -m pip install matplotlib numpy"
        ) from e

    if not records:
        raise ValueError("No crashes to report on (result set is empty).")

    # -----------------------------
    # 1) Compute stats + category counts
    # -----------------------------
    st = summarize(records)
    counts = area_counts(records, areas)
    years = [r.year for r in records if r.year is not None]
    ages = [c.age for r in records for c in r.casualties if c.age is not None and c.age >= 0]
    c_type = Counter(r.crash_type for r in records if r.crash_type)
    c_suburb = Counter(r.suburb for r in records if r.suburb)

    year_min = min(years) if years else None
    year_max = max(years) if years else None

    # -----------------------------
    # 2) Create charts
    # -----------------------------
    tmpdir = tempfile.mkdtemp(prefix="crashlens_report_")
    # Each chart is: (title, file_path, what_it_shows)
    chart_paths: List[Tuple[str, str, str]] = []

    def _save(filename: str) -> str:
        path = os.path.join(tmpdir, filename)
        plt.tight_layout()
        plt.savefig(path, dpi=200)
        plt.close()
        return path

    def _bar(title: str, labels: List[str], values: List[int], note: str, filename: str,
             colors: Optional[List[str]] = None) -> None:
        plt.figure()
        plt.bar(labels, values, color=colors)
        plt.xticks(rotation=45, ha="right")
        plt.title(title)
        plt.ylabel("Crashes")
        chart_paths.append((title, _save(filename), note))

    sev = [s for s in Severity]
    _bar(
        f"Crashes by Severity ({scope_label})",
        [s.label for s in sev],
        [st.by_severity[s] for s in sev],
        "Severity uses the same colours as the map markers.",
        "bar_severity.png",
        colors=[SEVERITY_COLORS[s] for s in sev],
    )

    if years:
        ys = sorted(set(years))
        per_year = Counter(years)
        _bar(
            f"Crashes by Year ({scope_label})",
            [str(y) for y in ys],
            [per_year[y] for y in ys],
            "One bar per calendar year in the selection.",
            "bar_years.png",
        )

    if len(counts) > 1:
        top = top_areas(counts, config.top_n)
        _bar(
            f"Top {config.top_n} Council Areas by Crashes ({scope_label})",
            [areas.display_name(k) for k, _ in top],
            [v for _, v in top],
            "Area names are merged through the LGA alias table before counting.",
            "top_areas.png",
        )
    elif c_suburb:
        top_sub = c_suburb.most_common(config.top_n)
        _bar(
            f"Top {config.top_n} Suburbs by Crashes ({scope_label})",
            [k for k, _ in top_sub],
            [v for _, v in top_sub],
            "The selection sits in one council area, so suburbs are compared instead.",
            "top_suburbs.png",
        )

    if len(c_type) > 1:
        top_types = c_type.most_common(config.top_n)
        _bar(
            f"Top {config.top_n} Crash Types ({scope_label})",
            [k for k, _ in top_types],
            [v for _, v in top_types],
            "Crash type as recorded on the crash row.",
            "top_types.png",
        )

    if ages:
        x = np.array(ages, dtype=float)
        plt.figure()
        _, _, patches = plt.hist(x, bins=_choose_bins(len(x)), edgecolor="black", linewidth=0.8)
        for i, p in enumerate(patches):
            p.set_facecolor("C0" if i % 2 == 0 else "C1")
        plt.axvline(float(np.median(x)), color="black", linestyle="--", linewidth=1)
        title = f"Casualty Age Distribution ({scope_label})"
        plt.title(title)
        plt.xlabel("Age (dashed line: median)")
        plt.ylabel("Casualties")
        chart_paths.append((title, _save("hist_ages.png"),
                            "Ages of linked casualties; crashes without casualty rows add nothing."))

    # -----------------------------
    # 3) Build DOCX report
    # -----------------------------
    doc = Document()

    style = doc.styles["Normal"]
    style.font.name = "Calibri"
    style._element.rPr.rFonts.set(qn("w:eastAsia"), "Calibri")
    style.font.size = Pt(11)

    def _center_title(text: str, size: int, bold: bool = False, italic: bool = False) -> None:
        p = doc.add_paragraph()
        r = p.add_run(text)
        r.bold = bold
        r.italic = italic
        r.font.size = Pt(size)
        p.alignment = WD_ALIGN_PARAGRAPH.CENTER

    def _kv(key: str, value: str) -> None:
        p = doc.add_paragraph()
        r = p.add_run(f"{key}: ")
        r.bold = True
        p.add_run(value)

    _center_title(config.title, 22, bold=True)
    _center_title(config.subtitle, 12, italic=True)

    doc.add_paragraph("")
    _kv("Dataset", config.dataset_name)
    _kv("Scope", scope_label)
    _kv("Filter", config.filter_expr or "(none)")
    _kv("Total crashes in scope", str(st.crashes))
    if year_min is not None and year_max is not None:
        _kv("Year range", f"{year_min} to {year_max}")

    doc.add_paragraph("")
    doc.add_heading("Dataset citation", level=1)
    cit = config.citation
    if cit.file_name:
        doc.add_paragraph(f"Data file used: {cit.file_name}")
    if cit.file_note:
        doc.add_paragraph(f"File note: {cit.file_note}")
    doc.add_paragraph(
        f"{cit.institutional_author} (accessed {cit.access_date_iso}). "
        f"{cit.database_name}. {cit.location}. {cit.website}."
    )

    # Summary statistics
    doc.add_paragraph("")
    doc.add_heading("Summary statistics", level=1)
    t = doc.add_table(rows=1, cols=2)
    t.rows[0].cells[0].text = "Measure"
    t.rows[0].cells[1].text = "Value"
    rows = [
        ("Crashes", st.crashes),
        ("Fatalities (Total Fats)", st.fatalities),
        ("Serious injuries (Total SI)", st.serious),
        ("Minor injuries (Total MI)", st.minor),
        ("Crashes without usable coordinates", st.without_coords),
    ] + [(f"Severity {s.label}", st.by_severity[s]) for s in Severity]
    for k, v in rows:
        row = t.add_row().cells
        row[0].text = k
        row[1].text = f"{v:,}"

    # Area table
    if counts:
        doc.add_paragraph("")
        doc.add_heading("Crashes by council area", level=1)
        t2 = doc.add_table(rows=1, cols=2)
        t2.rows[0].cells[0].text = "Area"
        t2.rows[0].cells[1].text = "Crashes"
        for name, n in top_areas(counts, config.top_n):
            row = t2.add_row().cells
            row[0].text = areas.display_name(name)
            row[1].text = f"{n:,}"

    # Visualizations
    doc.add_paragraph("")
    doc.add_heading("Visualizations", level=1)
    for title, path, note in chart_paths:
        doc.add_paragraph(title)
        doc.add_picture(path, width=Inches(6.5))
        doc.add_paragraph(note)
        doc.add_paragraph("")

    # Most severe crashes
    worst = sorted(records, key=lambda r: (int(r.severity), r.fatalities, r.serious), reverse=True)
    worst = worst[:config.max_rows_preview]
    doc.add_heading("Most severe crashes in scope", level=1)
    t3 = doc.add_table(rows=1, cols=6)
    h = t3.rows[0].cells
    for i, name in enumerate(("Report ID", "Date/Time", "Severity", "Crash Type", "Suburb", "Fatalities")):
        h[i].text = name
    for r in worst:
        c = t3.add_row().cells
        c[0].text = r.report_id
        c[1].text = r.datetime_text or ""
        c[2].text = r.severity.label
        c[3].text = r.crash_type
        c[4].text = r.suburb
        c[5].text = str(r.fatalities)

    # -----------------------------
    # Reproducibility footer
    # -----------------------------
    doc.add_paragraph("")
    doc.add_heading("Reproducibility footer", level=1)

    from . import __version__ as crashlens_version
    from datetime import datetime as _dt
    generated_at = _dt.now().isoformat(timespec="seconds")

    doc.add_paragraph(f"CrashLens version: {crashlens_version}")
    doc.add_paragraph(f"Report generated at: {generated_at}")
    doc.add_paragraph(f"Crashes in scope: {len(records)}")
    if config.filter_expr:
        doc.add_paragraph(f"Filter text (paste into 'where' to reproduce): {config.filter_expr}")

    if config.command_log:
        doc.add_paragraph("Commands used (log):")
        for line in config.command_log:
            doc.add_paragraph(line, style="List Bullet")

    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    doc.save(out_path)
    return out_path
