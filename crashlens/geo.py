"""
Coordinate transform (SA Lambert -> WGS84)
==========================================

Crash locations (ACCLOC_X / ACCLOC_Y) are stored in GDA94 / SA Lambert
(EPSG:3107), a Lambert Conformal Conic projection. Map layers need
latitude/longitude, so every crash is converted once at link time.

Bad coordinates are common in the source data. They are not errors:
`to_latlng` returns None and the crash simply never appears on the
spatial layers (it still counts in the statistics).
"""

from __future__ import annotations
from functools import lru_cache
from typing import Optional, Tuple
import logging
import math

from pyproj import Transformer

logger = logging.getLogger(__name__)

SOURCE_CRS = "EPSG:3107"
TARGET_CRS = "EPSG:4326"

# Sanity box around South Australia (lat, lng)
LAT_MIN, LAT_MAX = -39.0, -25.0
LNG_MIN, LNG_MAX = 128.0, 142.0

_transformer: Optional[Transformer] = None


def _get_transformer() -> Transformer:
    global _transformer
    if _transformer is None:
        _transformer = Transformer.from_crs(SOURCE_CRS, TARGET_CRS, always_xy=True)
    return _transformer


def _to_float(v) -> Optional[float]:
    if v is None:
        return None
    try:
        f = float(str(v).strip())
    except ValueError:
        return None
    return f if math.isfinite(f) else None


def in_bounds(lat: float, lng: float) -> bool:
    """True if (lat, lng) lies inside the fixed SA sanity box."""
    return LAT_MIN <= lat <= LAT_MAX and LNG_MIN <= lng <= LNG_MAX


@lru_cache(maxsize=None)
def _transform(x: float, y: float) -> Optional[Tuple[float, float]]:
    lng, lat = _get_transformer().transform(x, y)
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None
    if not in_bounds(lat, lng):
        logger.debug("Converted coordinates out of bounds: x=%s y=%s -> (%s, %s)", x, y, lat, lng)
        return None
    return (lat, lng)


def to_latlng(x, y) -> Optional[Tuple[float, float]]:
    """Convert a projected (x, y) pair into (lat, lng).

    Inputs may be strings or numbers. Returns None when either value is
    not a finite number or when the result falls outside the SA box.
    """
    xf = _to_float(x)
    yf = _to_float(y)
    if xf is None or yf is None:
        logger.debug("Invalid coordinates: %r, %r", x, y)
        return None
    return _transform(xf, yf)
