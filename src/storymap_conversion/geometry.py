"""Spatial-reference detection, extent reprojection and viewpoint heuristics."""

from __future__ import annotations

import math
from typing import Any, Optional

import numpy as np


EARTH_RADIUS = 6378137.0
WEB_MERCATOR_SR = {"wkid": 102100, "latestWkid": 3857}
GEOGRAPHIC_SR = {"wkid": 4326}
GEOGRAPHIC_WKIDS = (4326,)
GEOGRAPHIC_NAMES = ("WGS84", "WGS 84", "GCS_WGS_1984")

# Inclusive upper bounds of extent height [m] and the (scale, zoom) used for each bucket.
SCALE_LADDER_HEIGHTS = np.array(
    [500, 1_000, 5_000, 10_000, 50_000, 100_000, 500_000, 1_000_000, 5_000_000, 10_000_000],
    dtype=float,
)
SCALE_LADDER = (
    (500, 20),
    (1_000, 19),
    (5_000, 17),
    (10_000, 16),
    (50_000, 14),
    (100_000, 13),
    (500_000, 11),
    (1_000_000, 10),
    (5_000_000, 8),
    (10_000_000, 7),
    (25_000_000, 6),
)
ZOOM_ZERO_SCALE = 591657527.591555


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    out = float(value)
    return out if math.isfinite(out) else None


def is_geographic(spatial_reference: Any) -> bool:
    """Return True when a spatial reference names WGS84 geographic coordinates."""
    if not isinstance(spatial_reference, dict):
        return False
    for key in ("wkid", "latestWkid"):
        if spatial_reference.get(key) in GEOGRAPHIC_WKIDS:
            return True
    wkt = spatial_reference.get("wkt")
    if isinstance(wkt, str):
        return wkt.strip() in GEOGRAPHIC_NAMES or wkt.strip().startswith('GEOGCS["GCS_WGS_1984"')
    return False


def extent_bounds(extent: Any) -> Optional[np.ndarray]:
    """Return `[xmin, ymin, xmax, ymax]` when all four bounds are finite numbers."""
    if not isinstance(extent, dict):
        return None
    values = [_finite(extent.get(k)) for k in ("xmin", "ymin", "xmax", "ymax")]
    if any(v is None for v in values):
        return None
    return np.array(values, dtype=float)


def lonlat_to_mercator(lon: np.ndarray, lat: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    x = np.asarray(lon, dtype=float) * EARTH_RADIUS * math.pi / 180.0
    y = EARTH_RADIUS * np.log(np.tan(math.pi / 4.0 + np.asarray(lat, dtype=float) * math.pi / 360.0))
    return x, y


def mercator_to_geographic(x: float, y: float) -> Optional[tuple[float, float]]:
    """Inverse spherical Mercator; None when the result is not a valid lon/lat."""
    fx, fy = _finite(x), _finite(y)
    if fx is None or fy is None:
        return None
    lon = math.degrees(fx / EARTH_RADIUS)
    lat = math.degrees(2.0 * math.atan(math.exp(fy / EARTH_RADIUS)) - math.pi / 2.0)
    if abs(lon) > 180.0 or abs(lat) > 90.0:
        return None
    return lon, lat


def reproject_extent(extent: Any) -> Any:
    """Convert a WGS84 extent to Web Mercator; anything else is returned unchanged."""
    if not isinstance(extent, dict) or not is_geographic(extent.get("spatialReference")):
        return extent
    bounds = extent_bounds(extent)
    if bounds is None:
        return extent
    if np.any(np.abs(bounds[[1, 3]]) >= 90.0):
        return extent
    xs, ys = lonlat_to_mercator(bounds[[0, 2]], bounds[[1, 3]])
    if not (np.all(np.isfinite(xs)) and np.all(np.isfinite(ys))):
        return extent
    out = {k: v for k, v in extent.items() if k not in ("xmin", "ymin", "xmax", "ymax")}
    out.update(
        {
            "xmin": float(xs[0]),
            "ymin": float(ys[0]),
            "xmax": float(xs[1]),
            "ymax": float(ys[1]),
            "spatialReference": dict(WEB_MERCATOR_SR),
        }
    )
    return out


def extent_height(extent: Any) -> Optional[float]:
    bounds = extent_bounds(extent)
    if bounds is None:
        return None
    return float(abs(bounds[3] - bounds[1]))


def extent_center(extent: Any) -> Optional[dict[str, Any]]:
    """Midpoint of an extent, carrying its spatial reference (Web Mercator by default)."""
    bounds = extent_bounds(extent)
    if bounds is None:
        return None
    return {
        "x": float((bounds[0] + bounds[2]) / 2.0),
        "y": float((bounds[1] + bounds[3]) / 2.0),
        "spatialReference": dict(extent.get("spatialReference") or WEB_MERCATOR_SR),
    }


def scale_zoom_from_extent_height(extent: Any) -> Optional[tuple[int, int]]:
    """
    Bucket an extent height into a fixed (scale, zoom) ladder.

    Upper bounds are inclusive: a height of exactly 500 m maps to (500, 20), 501 m to
    (1000, 19). A bare number is treated as the height itself.
    """
    height = _finite(extent) if not isinstance(extent, dict) else extent_height(extent)
    if height is None:
        return None
    index = int(np.searchsorted(SCALE_LADDER_HEIGHTS, abs(height), side="left"))
    return SCALE_LADDER[index]


def zoom_from_scale(scale: Any) -> Optional[int]:
    value = _finite(scale)
    if value is None or value <= 0:
        return None
    zoom = round(math.log2(ZOOM_ZERO_SCALE / value))
    return int(min(24, max(0, zoom)))


def derive_viewpoint(extent: Any, center: Any = None) -> Optional[dict[str, Any]]:
    """Viewpoint targeting `center` (or the extent itself) at the bucketed scale."""
    scale_zoom = scale_zoom_from_extent_height(extent)
    if scale_zoom is None:
        return None
    target = center if center else extent
    return {"targetGeometry": target, "scale": scale_zoom[0]}


def normalize_center(center: Any) -> Any:
    """Turn `[x, y]` center arrays into point objects in WGS84."""
    if isinstance(center, (list, tuple)) and len(center) >= 2:
        x, y = _finite(center[0]), _finite(center[1])
        if x is not None and y is not None:
            return {"x": x, "y": y, "spatialReference": dict(GEOGRAPHIC_SR)}
    return center


def item_extent_to_envelope(item_extent: Any) -> Optional[dict[str, Any]]:
    """Convert portal item extents `[[xmin, ymin], [xmax, ymax]]` into an envelope."""
    if not isinstance(item_extent, list) or len(item_extent) != 2:
        return None
    lower, upper = item_extent
    if not (isinstance(lower, list) and isinstance(upper, list)) or len(lower) < 2 or len(upper) < 2:
        return None
    values = [_finite(lower[0]), _finite(lower[1]), _finite(upper[0]), _finite(upper[1])]
    if any(v is None for v in values):
        return None
    return {
        "xmin": values[0],
        "ymin": values[1],
        "xmax": values[2],
        "ymax": values[3],
        "spatialReference": dict(GEOGRAPHIC_SR),
    }
