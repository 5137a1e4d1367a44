"""
Spatial helpers for the record map.

This module flattens GeoJSON geometries into point lists, computes the
bounding box of plotted points and estimates the zoom level a map canvas
reaches when fitting those bounds.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, NamedTuple, Sequence

logger = logging.getLogger(__name__)

# Nesting depth of the coordinate arrays per geometry type
GEOMETRY_DEPTHS: Dict[str, int] = {
    "Point": 0,
    "LineString": 1,
    "MultiPoint": 1,
    "Polygon": 2,
    "MultiLineString": 2,
    "MultiPolygon": 3,
}

# Web Mercator latitude limit
MAX_MERCATOR_LAT = 85.0511287798
TILE_SIZE = 256


class LatLng(NamedTuple):
    lat: float
    lng: float


def extract_points(geometry: Any) -> List[LatLng]:
    """
    Flatten a GeoJSON geometry into the list of its coordinate points.

    Features and FeatureCollections are unwrapped, GeometryCollections are
    traversed per member geometry. Unknown geometry types yield no points.

    Args:
        geometry: Parsed GeoJSON object

    Returns:
        List of points, empty when the structure is malformed
    """
    try:
        return _extract(geometry)
    except (TypeError, ValueError, KeyError, IndexError) as e:
        logger.debug(f"Malformed geometry skipped for bounds: {e}")
        return []


def _extract(geometry: Any) -> List[LatLng]:
    if not isinstance(geometry, dict):
        return []

    kind = geometry.get("type")
    if kind == "Feature":
        return _extract(geometry.get("geometry"))
    if kind == "FeatureCollection":
        return [point for feature in geometry.get("features") or [] for point in _extract(feature)]
    if kind == "GeometryCollection":
        return [point for member in geometry.get("geometries") or [] for point in _extract(member)]

    depth = GEOMETRY_DEPTHS.get(kind)
    if depth is None:
        return []

    points: List[LatLng] = []
    _descend(geometry["coordinates"], depth, points)
    return points


def _descend(coordinates: Any, depth: int, points: List[LatLng]) -> None:
    if depth == 0:
        # GeoJSON positions are [lng, lat(, alt)]
        points.append(LatLng(float(coordinates[1]), float(coordinates[0])))
        return
    if isinstance(coordinates, (str, bytes, dict)):
        raise TypeError(f"Expected a coordinate array, got {type(coordinates).__name__}")
    for child in coordinates:
        _descend(child, depth - 1, points)


@dataclass(frozen=True)
class Bounds:
    """Axis-aligned lat/lng bounding box."""

    south: float
    west: float
    north: float
    east: float

    @classmethod
    def from_points(cls, points: Sequence[LatLng]) -> "Bounds":
        """
        Bounding box of a point set.

        Raises:
            ValueError: If no points are given
        """
        if not points:
            raise ValueError("Cannot compute bounds of an empty point set")
        lats = [p.lat for p in points]
        lngs = [p.lng for p in points]
        return cls(south=min(lats), west=min(lngs), north=max(lats), east=max(lngs))

    @property
    def center(self) -> LatLng:
        return LatLng((self.south + self.north) / 2, (self.west + self.east) / 2)

    def to_folium(self) -> List[List[float]]:
        return [[self.south, self.west], [self.north, self.east]]


def _mercator_y(lat: float) -> float:
    lat = max(min(lat, MAX_MERCATOR_LAT), -MAX_MERCATOR_LAT)
    sin = math.sin(math.radians(lat))
    return math.log((1 + sin) / (1 - sin)) / 2


def zoom_for_bounds(bounds: Bounds, width_px: int = 800, height_px: int = 600,
                    max_zoom: int = 20) -> int:
    """
    Largest integer zoom at which the bounds fit a viewport.

    Args:
        bounds: Box to fit
        width_px: Viewport width in pixels
        height_px: Viewport height in pixels
        max_zoom: Upper cap applied to the result

    Returns:
        Zoom level between 0 and max_zoom
    """
    lat_fraction = (_mercator_y(bounds.north) - _mercator_y(bounds.south)) / (2 * math.pi)
    lng_fraction = (bounds.east - bounds.west) / 360.0

    candidates = [max_zoom]
    if lat_fraction > 0:
        candidates.append(math.floor(math.log2(height_px / TILE_SIZE / lat_fraction)))
    if lng_fraction > 0:
        candidates.append(math.floor(math.log2(width_px / TILE_SIZE / lng_fraction)))
    return max(0, min(candidates))


GEOJSON_TYPES = set(GEOMETRY_DEPTHS) | {"GeometryCollection", "Feature", "FeatureCollection"}


def is_geojson_object(value: Any) -> bool:
    """True for a dict carrying one of the GeoJSON object types."""
    return isinstance(value, dict) and value.get("type") in GEOJSON_TYPES
