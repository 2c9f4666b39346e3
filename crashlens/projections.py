"""
Map layer projections
=====================

Turns a filtered record set into the three shapes a map front end draws.
Each one is independent and only computed when its layer is on.

- Markers: one GeoJSON Feature per crash with valid coordinates, styled
  by severity colour, carrying the popup details. `iter_point_batches`
  hands them out in bounded batches so a renderer can draw
  progressively.
- Heatmap: (lat, lng, weight) samples, weight = severity ordinal 1..4.
- Choropleth: per-area colour from a logarithmic intensity
  `log(count+1) / log(max+1)` mapped onto a fixed colour ramp. Areas
  with no crashes get NO_DATA_COLOR, not the bottom of the ramp.

Crashes whose coordinates failed to convert are skipped by the first two
layers only; they still count in the choropleth through their area name.
"""

from __future__ import annotations
from collections import Counter
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple
import math

from .areas import AdministrativeAreaIndex
from .boundaries import Boundaries
from .models import CrashRecord, Severity
from .stats import effective_area

SEVERITY_COLORS = {
    Severity.PDO: "#808080",
    Severity.MI: "#FFA500",
    Severity.SI: "#FF4500",
    Severity.FATAL: "#8B0000",
}

NO_DATA_COLOR = "#0a0a0a"

# (intensity threshold, colour), checked top-down: first `intensity > t` wins
COLOR_RAMP: Tuple[Tuple[float, str], ...] = (
    (0.96, "#FF00FF"), (0.92, "#FF1AFF"), (0.88, "#FF33FF"), (0.84, "#FF4DCC"),
    (0.80, "#FF66B3"), (0.76, "#FF0066"), (0.72, "#FF0033"),
    (0.70, "#FF0000"), (0.69, "#FF0D00"), (0.68, "#FF1A00"), (0.67, "#FF2600"),
    (0.66, "#FF3300"), (0.65, "#FF4000"), (0.64, "#FF4D00"), (0.63, "#FF5900"),
    (0.62, "#FF6600"), (0.61, "#FF7000"), (0.60, "#FF7700"), (0.59, "#FF7F00"),
    (0.58, "#FF8800"), (0.57, "#FF9000"), (0.56, "#FF9900"), (0.55, "#FFA200"),
    (0.54, "#FFAA00"), (0.52, "#FFB300"),
    (0.48, "#FF8C00"), (0.44, "#FFA500"), (0.40, "#FFB700"), (0.36, "#FFCC00"),
    (0.32, "#FFE000"), (0.28, "#FFFF00"),
    (0.24, "#D4FF00"), (0.20, "#A8FF00"), (0.18, "#7CFC00"), (0.16, "#32CD32"),
    (0.14, "#00FF00"),
    (0.12, "#00E68A"), (0.10, "#00CED1"), (0.08, "#00BFFF"),
    (0.06, "#1E90FF"), (0.04, "#4169E1"), (0.02, "#6A5ACD"),
)
RAMP_FLOOR_COLOR = "#4B0082"

# Heatmap gradient stops for the consumer's density renderer
HEATMAP_GRADIENT = {0.0: "#0000ff", 0.3: "#00ffff", 0.5: "#00ff00",
                    0.7: "#ffff00", 0.9: "#ff0000", 1.0: "#8B0000"}

POPUP_DETAIL_LIMIT = 3


def severity_color(s: Severity) -> str:
    return SEVERITY_COLORS.get(s, "#808080")


def severity_weight(s: Severity) -> int:
    """Density weight: the severity ordinal (PDO=1 ... Fatal=4)."""
    return int(s)


# ---------------- Markers ----------------
def _casualty_summary(r: CrashRecord) -> Dict[str, Any]:
    groups = Counter(f"{c.casualty_type or 'Unknown'} - {c.injury_extent or 'Unknown'}" for c in r.casualties)
    details = [
        {"type": c.casualty_type or "Unknown", "age": c.age, "sex": c.sex or "?",
         "injury": c.injury_extent or "Unknown", "seat_belt": c.seat_belt, "helmet": c.helmet}
        for c in r.casualties[:POPUP_DETAIL_LIMIT]
    ]
    return {"count": len(r.casualties), "summary": dict(sorted(groups.items())), "details": details}


def _unit_summary(r: CrashRecord) -> Dict[str, Any]:
    groups = Counter(u.unit_type or "Unknown" for u in r.units)
    details = [
        {"type": u.unit_type or "Unknown", "year": u.vehicle_year, "occupants": u.occupants}
        for u in r.units[:POPUP_DETAIL_LIMIT]
    ]
    return {"count": len(r.units), "summary": dict(sorted(groups.items())), "details": details}


def point_feature(r: CrashRecord) -> Optional[Dict[str, Any]]:
    """GeoJSON Feature for one crash, or None without valid coordinates."""
    if r.latlng is None:
        return None
    lat, lng = r.latlng
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [lng, lat]},
        "properties": {
            "report_id": r.report_id,
            "severity": r.severity.label,
            "color": severity_color(r.severity),
            "date": r.datetime_text or "N/A",
            "suburb": r.suburb or "N/A",
            "postcode": r.postcode or "N/A",
            "crash_type": r.crash_type or "N/A",
            "weather": r.weather or "N/A",
            "day_night": r.day_night or "N/A",
            "speed_limit": r.speed_limit,
            "dui": r.has_dui,
            "casualties": _casualty_summary(r),
            "units": _unit_summary(r),
        },
    }


def point_features(records: Iterable[CrashRecord]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for r in records:
        f = point_feature(r)
        if f is not None:
            out.append(f)
    return out


def iter_point_batches(records: Iterable[CrashRecord], batch_size: int = 2000) -> Iterator[List[Dict[str, Any]]]:
    """Yield marker features in lists of at most `batch_size`."""
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    batch: List[Dict[str, Any]] = []
    for r in records:
        f = point_feature(r)
        if f is None:
            continue
        batch.append(f)
        if len(batch) >= batch_size:
            yield batch
            batch = []
    if batch:
        yield batch


# ---------------- Heatmap ----------------
def density_samples(records: Iterable[CrashRecord]) -> List[Tuple[float, float, int]]:
    return [(r.latlng[0], r.latlng[1], severity_weight(r.severity))
            for r in records if r.latlng is not None]


def heatmap_radius(zoom: float) -> float:
    """Kernel radius hint: larger when zoomed out."""
    return max(15.0, 35.0 - zoom * 1.5)


def heatmap_blur(zoom: float) -> float:
    return max(10.0, 25.0 - zoom * 1.0)


def heatmap_layer(records: Iterable[CrashRecord], zoom: float = 10.0) -> Dict[str, Any]:
    """Weighted samples plus the rendering hints for `zoom`."""
    return {
        "samples": density_samples(records),
        "gradient": dict(HEATMAP_GRADIENT),
        "radius": heatmap_radius(zoom),
        "blur": heatmap_blur(zoom),
    }



# ---------------- Choropleth ----------------
def intensity(count: int, max_count: int) -> float:
    """log(count+1) / log(max+1), 0 when there is nothing to scale by."""
    if count <= 0 or max_count <= 0:
        return 0.0
    return math.log(count + 1) / math.log(max_count + 1)


def color_for_count(count: int, max_count: int) -> str:
    if count <= 0:
        return NO_DATA_COLOR
    v = intensity(count, max_count)
    for threshold, color in COLOR_RAMP:
        if v > threshold:
            return color
    return RAMP_FLOOR_COLOR


def _bucket(name: str, count: int, max_count: int, areas: AdministrativeAreaIndex) -> Dict[str, Any]:
    return {
        "area": name,
        "display_name": areas.display_name(name),
        "count": count,
        "intensity": intensity(count, max_count),
        "color": color_for_count(count, max_count),
    }


def choropleth(counts: Dict[str, int], areas: AdministrativeAreaIndex,
               boundaries: Optional[Boundaries] = None,
               records: Optional[Sequence[CrashRecord]] = None) -> Dict[str, Any]:
    """Per-area colour buckets.

    With boundaries: one bucket per boundary feature (in feature order),
    matched through the canonical name. Without: centroid circles at the
    mean location of each area's crashes (needs `records`).
    """
    max_count = max(counts.values(), default=0)
    if boundaries is not None:
        buckets = []
        for i, raw in enumerate(boundaries.names):
            canon = areas.canonical(raw)
            b = _bucket(canon, counts.get(canon, 0), max_count, areas)
            b["feature_index"] = i
            b["boundary_name"] = raw
            buckets.append(b)
        return {"mode": "boundaries", "max_count": max_count, "buckets": buckets}

    sums: Dict[str, List[float]] = {}
    for r in records or ():
        name = effective_area(r)
        if name is None or r.latlng is None:
            continue
        acc = sums.setdefault(areas.canonical(name), [0.0, 0.0, 0])
        acc[0] += r.latlng[0]; acc[1] += r.latlng[1]; acc[2] += 1
    buckets = []
    for name, (lat_sum, lng_sum, n) in sorted(sums.items()):
        count = counts.get(name, 0)
        b = _bucket(name, count, max_count, areas)
        b["centroid"] = [lat_sum / n, lng_sum / n]
        b["radius_m"] = math.sqrt(count) * 500
        buckets.append(b)
    return {"mode": "centroids", "max_count": max_count, "buckets": buckets}
