"""
Area boundaries (GeoJSON)
=========================

The council boundary GeoJSON is optional reference data:

- the choropleth uses its features as the shapes to colour;
- crashes whose LGA column is blank or "N/A" get a fallback area from a
  one-off point-in-polygon pass (`assign_missing_areas`), run once after
  linking so nothing polygon-related happens during filtering.

If the file is missing or unreadable, `load_boundaries` returns None and
the rest of the system keeps working (the choropleth draws centroid
circles instead).
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence
import json
import logging
import os

from shapely.geometry import Point, shape
from shapely.prepared import prep

from .areas import is_placeholder
from .models import CrashRecord

logger = logging.getLogger(__name__)

UNASSIGNED_AREA = "Unassigned (No LGA boundary found)"

# Property names tried in order (full names before abbreviations)
NAME_PROPERTIES = (
    "lga", "LGA", "lga_name", "LGA_NAME", "LGAName",
    "NAME", "name", "council", "COUNCIL",
    "abbname", "ABB_NAME", "abbName",
)


def area_name_from_properties(properties: Dict[str, Any]) -> str:
    """Pick the council name out of a feature's properties."""
    for prop in NAME_PROPERTIES:
        v = properties.get(prop)
        if isinstance(v, str) and v.strip():
            return v
    for key, v in properties.items():
        k = key.lower()
        if "shape" in k or "area" in k or "length" in k:
            continue
        if isinstance(v, str) and v.strip():
            logger.warning("Using property %r as LGA name: %s", key, v)
            return v
    return "Unknown"


@dataclass
class Boundaries:
    """Raw GeoJSON plus shapely geometries, one per feature."""
    geojson: Dict[str, Any]
    names: List[str]
    geometries: List[Any]
    prepared: List[Any] = field(default_factory=list, init=False, repr=False)

    @classmethod
    def from_geojson(cls, data: Dict[str, Any]) -> "Boundaries":
        names: List[str] = []
        geoms: List[Any] = []
        for feat in data.get("features", []):
            names.append(area_name_from_properties(feat.get("properties") or {}))
            try:
                geoms.append(shape(feat["geometry"]))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("Skipping invalid boundary geometry for %s: %s", names[-1], e)
                geoms.append(None)
        return cls(geojson=data, names=names, geometries=geoms)

    def __len__(self) -> int:
        return len(self.names)

    def locate(self, lat: float, lng: float) -> Optional[str]:
        """Name of the first boundary containing the point, if any."""
        pt = Point(lng, lat)
        for name, g in zip(self.names, self._prepared()):
            if g is not None and g.contains(pt):
                return name
        return None

    def _prepared(self):
        if len(self.prepared) != len(self.geometries):
            self.prepared = [prep(g) if g is not None else None for g in self.geometries]
        return self.prepared


def load_boundaries(path: Optional[str]) -> Optional[Boundaries]:
    """Load the boundary GeoJSON, or None (with a warning) if unavailable."""
    if not path:
        return None
    if not os.path.exists(path):
        logger.warning("Could not load LGA boundaries: %s not found", path)
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Could not load LGA boundaries from %s: %s", path, e)
        return None
    b = Boundaries.from_geojson(data)
    logger.info("LGA boundaries loaded: %d areas", len(b))
    return b


def assign_missing_areas(records: Sequence[CrashRecord], boundaries: Boundaries) -> List[CrashRecord]:
    """Fill `computed_area` for crashes whose area is blank or N/A.

    Crashes without usable coordinates are left as they are. A crash
    that lies in no boundary gets UNASSIGNED_AREA.
    """
    out: List[CrashRecord] = []
    missing = 0
    assigned = 0
    for r in records:
        if not is_placeholder(r.area) or r.latlng is None:
            out.append(r)
            continue
        missing += 1
        name = boundaries.locate(*r.latlng)
        if name is not None:
            assigned += 1
        out.append(replace(r, computed_area=name or UNASSIGNED_AREA))
    logger.info("Pre-computed LGA assignments: %d/%d N/A crashes assigned to LGAs", assigned, missing)
    return out
