"""
Core engine (CrashLens)
=======================

This is the heart of the project. CrashLens works like a small offline
analytics engine over the SA crash tables:

1) Load tables -> typed records (immutable)
2) Link casualties/units to crashes, cache coordinates, build domains
3) Evaluate a FilterSpecification against every crash
4) Keep the *current selection* (QueryState) plus undo/redo history
5) Hand the selection to the statistics and projection layers

Predicate groups and how they combine:
- crash-level fields are checked directly on the crash;
- date/time come from the combined 'Crash Date Time' field and fail
  closed when it is missing or malformed;
- casualty fields: ONE casualty must satisfy every active casualty
  predicate at the same time;
- unit fields: ONE unit must satisfy every active unit predicate at the
  same time; towing and heavy-vehicle are checked on their own.
A crash is kept only if all four groups pass.

Long loops run in chunks (`iter_filter_chunks`) so a host event loop can
repaint between them; `CrashExplorer.apply_async` drives that and drops
results that a newer request has superseded.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, time
from functools import lru_cache
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional, Sequence
import asyncio
import csv
import json
import logging

from .areas import AdministrativeAreaIndex
from .boundaries import Boundaries
from .config import EngineConfig
from .filters import (
    FilterSpecification, HEAVY_VEHICLE_TYPES,
    age_group_of, occupant_bucket, vehicle_year_bucket,
)
from .indices import Indices
from .models import CasualtyRecord, CrashRecord, UnitRecord
from . import projections, stats

logger = logging.getLogger(__name__)

# Day-first (Australian) formats of the combined date-time field
DATETIME_FORMATS = (
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %I:%M %p",
    "%d/%m/%Y %I:%M:%S %p",
)


@lru_cache(maxsize=65536)
def parse_crash_datetime(text: str) -> Optional[datetime]:
    """Parse the crash date-time field, None if absent or malformed."""
    s = (text or "").strip()
    if not s:
        return None
    for fmt in DATETIME_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    return None


def time_in_range(t: time, t_from: Optional[time], t_to: Optional[time]) -> bool:
    """Inclusive time-of-day check; from > to wraps past midnight."""
    if t_from is None and t_to is None:
        return True
    if t_from is None:
        return t <= t_to
    if t_to is None:
        return t >= t_from
    if t_from > t_to:
        return t >= t_from or t <= t_to
    return t_from <= t <= t_to


def _in(values, v) -> bool:
    return values is None or v in values


# ---------------- Predicate groups ----------------
def crash_level_matches(r: CrashRecord, spec: FilterSpecification) -> bool:
    if spec.year_from is not None or spec.year_to is not None:
        if r.year is None:
            return False
        if spec.year_from is not None and r.year < spec.year_from:
            return False
        if spec.year_to is not None and r.year > spec.year_to:
            return False
    if not _in(spec.severity, r.severity): return False
    if not _in(spec.crash_type, r.crash_type): return False
    if not _in(spec.weather, r.weather): return False
    if not _in(spec.day_night, r.day_night): return False
    if not _in(spec.dui, "Yes" if r.has_dui else "No"): return False
    if not _in(spec.drugs, "Yes" if r.has_drugs else "No"): return False
    if not _in(spec.area, r.area): return False
    if not _in(spec.suburb, r.suburb): return False
    if not _in(spec.road_surface, r.road_surface): return False
    if not _in(spec.moisture, r.moisture): return False
    if not _in(spec.rollover, r.rollover): return False
    if not _in(spec.fire, r.fire): return False
    return True


def datetime_matches(r: CrashRecord, spec: FilterSpecification) -> bool:
    if not (spec.has_date_constraint or spec.has_time_constraint):
        return True
    dt = parse_crash_datetime(r.datetime_text)
    if dt is None:
        return False
    if spec.has_date_constraint:
        d: date = dt.date()
        if spec.date_from is not None and d < spec.date_from:
            return False
        if spec.date_to is not None and d > spec.date_to:
            return False
    if spec.has_time_constraint:
        if not time_in_range(dt.time().replace(second=0), spec.time_from, spec.time_to):
            return False
    return True


def casualty_matches(c: CasualtyRecord, spec: FilterSpecification) -> bool:
    """Does this one casualty satisfy every active casualty predicate?"""
    if not _in(spec.road_user, c.casualty_type): return False
    if spec.age_group is not None and age_group_of(c.age) not in spec.age_group: return False
    if not _in(spec.sex, c.sex): return False
    if not _in(spec.injury_extent, c.injury_extent): return False
    if not _in(spec.seat_belt, c.seat_belt): return False
    if not _in(spec.helmet, c.helmet): return False
    return True


def unit_matches(u: UnitRecord, spec: FilterSpecification) -> bool:
    """Does this one unit satisfy every active multi-attribute unit predicate?"""
    if not _in(spec.unit_type, u.unit_type): return False
    if spec.vehicle_year is not None and vehicle_year_bucket(u.vehicle_year) not in spec.vehicle_year: return False
    if spec.occupants is not None and occupant_bucket(u.occupants) not in spec.occupants: return False
    if not _in(spec.licence_type, u.licence_type): return False
    if not _in(spec.reg_state, u.reg_state): return False
    if not _in(spec.direction, u.direction): return False
    if not _in(spec.movement, u.movement): return False
    return True


def is_heavy_vehicle(u: UnitRecord) -> bool:
    return u.unit_type in HEAVY_VEHICLE_TYPES


def casualties_match(r: CrashRecord, spec: FilterSpecification) -> bool:
    if not spec.casualty_active:
        return True
    return any(casualty_matches(c, spec) for c in r.casualties)


def units_match(r: CrashRecord, spec: FilterSpecification) -> bool:
    if not spec.unit_active:
        return True
    if not r.units:
        return False
    if any(getattr(spec, f) is not None for f in ("unit_type", "vehicle_year", "occupants", "licence_type",
                                                  "reg_state", "direction", "movement")):
        if not any(unit_matches(u, spec) for u in r.units):
            return False
    if spec.towing is not None and not any(u.towing in spec.towing for u in r.units):
        return False
    if spec.heavy_vehicle is not None:
        heavy = "Yes" if any(is_heavy_vehicle(u) for u in r.units) else "No"
        if heavy not in spec.heavy_vehicle:
            return False
    return True


def crash_matches(r: CrashRecord, spec: FilterSpecification) -> bool:
    """True if the crash passes all four predicate groups."""
    return (crash_level_matches(r, spec)
            and datetime_matches(r, spec)
            and casualties_match(r, spec)
            and units_match(r, spec))


# ---------------- Whole-collection evaluation ----------------
@dataclass(frozen=True)
class FilterProgress:
    done: int
    total: int

    @property
    def fraction(self) -> float:
        return self.done / self.total if self.total else 1.0


def iter_filter_chunks(records: Sequence[CrashRecord], spec: FilterSpecification,
                       chunk_size: int = 2000) -> Generator[FilterProgress, None, List[CrashRecord]]:
    """Evaluate `spec` chunk by chunk, yielding progress after each chunk.

    The matching records are the generator's return value, available
    only once every chunk has run.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    out: List[CrashRecord] = []
    total = len(records)
    errors = 0
    for start in range(0, total, chunk_size):
        for r in records[start:start + chunk_size]:
            try:
                ok = crash_matches(r, spec)
            except (TypeError, ValueError, AttributeError, KeyError, IndexError, ArithmeticError) as e:
                errors += 1
                logger.debug("Filter evaluation failed for %s: %s", getattr(r, "report_id", "?"), e)
                ok = False
            if ok:
                out.append(r)
        yield FilterProgress(done=min(start + chunk_size, total), total=total)
    if errors:
        logger.warning("%d records raised during filter evaluation and were treated as non-matching", errors)
    return out


def apply_filters(records: Sequence[CrashRecord], spec: FilterSpecification,
                  chunk_size: int = 2000,
                  on_progress: Optional[Callable[[FilterProgress], None]] = None) -> List[CrashRecord]:
    """Run `iter_filter_chunks` to completion and return the matches."""
    gen = iter_filter_chunks(records, spec, chunk_size)
    while True:
        try:
            p = next(gen)
        except StopIteration as stop:
            return stop.value
        if on_progress is not None:
            on_progress(p)


# ---------------- Session ----------------
@dataclass
class QueryState:
    """The active filter and the records it selected."""
    spec: FilterSpecification
    results: List[CrashRecord]


@dataclass
class CrashExplorer:
    """One analysis session over the linked crash records.

    Owns the records, the domains, the area alias index, the optional
    boundaries, the active filter, the layer toggles, and undo/redo
    stacks of previous filters. Filtering itself is the pure
    `apply_filters` above.
    """
    records: List[CrashRecord]
    idx: Indices
    areas: AdministrativeAreaIndex
    boundaries: Optional[Boundaries] = None
    config: EngineConfig = field(default_factory=EngineConfig)
    layers: Dict[str, bool] = field(default_factory=lambda: {"markers": True, "heatmap": False, "choropleth": False})
    dataset_path: Optional[str] = None
    command_log: List[str] = field(default_factory=list)
    state: QueryState = field(init=False)
    generation: int = field(default=0, init=False)

    _undo: List[FilterSpecification] = field(default_factory=list, init=False)
    _redo: List[FilterSpecification] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        self.state = QueryState(spec=FilterSpecification(), results=list(self.records))

    # ---------------- History (Stacks) ----------------
    def _push_history(self) -> None:
        self._undo.append(self.state.spec)
        self._redo.clear()

    def undo(self) -> bool:
        if not self._undo:
            return False
        self._redo.append(self.state.spec)
        self._run(self._undo.pop())
        return True

    def redo(self) -> bool:
        if not self._redo:
            return False
        self._undo.append(self.state.spec)
        self._run(self._redo.pop())
        return True

    # ---------------- Filters ----------------
    def _run(self, spec: FilterSpecification) -> None:
        self.generation += 1
        spec = spec.normalized(self.idx.domains)
        results = apply_filters(self.records, spec, self.config.chunk_size)
        self.state = QueryState(spec=spec, results=results)

    def apply(self, spec: FilterSpecification) -> List[CrashRecord]:
        """Apply a filter synchronously and make it the current state."""
        self._push_history()
        self._run(spec)
        return self.state.results

    async def apply_async(self, spec: FilterSpecification,
                          on_progress: Optional[Callable[[FilterProgress], None]] = None) -> bool:
        """Apply a filter cooperatively, yielding to the event loop per chunk.

        Returns False (and leaves the state untouched) when a newer
        request started before this one finished.
        """
        self.generation += 1
        my_gen = self.generation
        spec = spec.normalized(self.idx.domains)
        gen = iter_filter_chunks(self.records, spec, self.config.chunk_size)
        while True:
            try:
                p = next(gen)
            except StopIteration as stop:
                results = stop.value
                break
            if on_progress is not None:
                on_progress(p)
            await asyncio.sleep(0)
        if my_gen != self.generation:
            logger.debug("Discarding stale filter result (generation %d, current %d)", my_gen, self.generation)
            return False
        self._push_history()
        self.state = QueryState(spec=spec, results=results)
        return True

    def update(self, **kwargs) -> List[CrashRecord]:
        """Change some attributes of the current filter and re-apply."""
        return self.apply(self.state.spec.with_values(**kwargs))

    def reset(self) -> None:
        """Clear every filter."""
        self.apply(FilterSpecification())

    def toggle_layer(self, name: str) -> bool:
        if name not in self.layers:
            raise ValueError(f"Unknown layer: {name}. Layers: {sorted(self.layers)}")
        self.layers[name] = not self.layers[name]
        return self.layers[name]

    # ---------------- Output operations ----------------
    @property
    def results(self) -> List[CrashRecord]:
        return self.state.results

    def statistics(self) -> stats.CrashStatistics:
        return stats.summarize(self.state.results)

    def area_counts(self) -> Dict[str, int]:
        return stats.area_counts(self.state.results, self.areas)

    def projections(self, zoom: float = 10.0) -> Dict[str, Any]:
        """Projections for every active layer (inactive ones are skipped).

        `zoom` only affects the heatmap radius and blur hints.
        """
        out: Dict[str, Any] = {}
        if self.layers.get("markers"):
            out["markers"] = projections.point_features(self.state.results)
        if self.layers.get("heatmap"):
            out["heatmap"] = projections.heatmap_layer(self.state.results, zoom)
        if self.layers.get("choropleth"):
            out["choropleth"] = projections.choropleth(
                self.area_counts(), self.areas, boundaries=self.boundaries, records=self.state.results)
        return out

    def iter_marker_batches(self) -> Iterable[List[Dict[str, Any]]]:
        return projections.iter_point_batches(self.state.results, self.config.marker_batch_size)

    def export_csv(self, path: str) -> None:
        rows = self.state.results
        with open(path, "w", newline="", encoding="utf-8") as f:
            w = csv.writer(f)
            w.writerow(["report_id", "year", "severity", "crash_type", "area", "suburb",
                        "fatalities", "serious", "minor", "lat", "lng", "casualties", "units"])
            for r in rows:
                lat, lng = r.latlng if r.latlng else ("", "")
                w.writerow([r.report_id, r.year, r.severity.label, r.crash_type, r.area, r.suburb,
                            r.fatalities, r.serious, r.minor, lat, lng, len(r.casualties), len(r.units)])

    def export_geojson(self, path: str) -> None:
        """Write the point layer of the current selection as GeoJSON."""
        payload = {"type": "FeatureCollection", "features": projections.point_features(self.state.results)}
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False)

    def export_json(self, path: str) -> None:
        """Write statistics plus every projection (regardless of toggles)."""
        payload = {
            "filter": [[k, str(v)] for k, v in self.state.spec.active_constraints()],
            "statistics": self.statistics().as_dict(),
            "density": projections.density_samples(self.state.results),
            "choropleth": projections.choropleth(
                self.area_counts(), self.areas, boundaries=self.boundaries, records=self.state.results),
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
