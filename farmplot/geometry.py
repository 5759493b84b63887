# farmplot/geometry.py
"""
GeoJSON <-> shapely conversion.

Everything here is WGS84 (SRID 4326) with GeoJSON's [longitude, latitude]
ordering: x is always longitude and y is always latitude.
"""
from __future__ import annotations

from typing import Optional, Sequence

from shapely.geometry import Point, Polygon, box

from farmplot.errors import ValidationFailedError

SRID = 4326

# a closed linear ring needs 3 distinct positions plus the closing one
MIN_RING_POSITIONS = 4


def _coordinates(dto):
    """Accept a pydantic geometry DTO, a plain GeoJSON dict, or None."""
    if dto is None:
        return None
    if isinstance(dto, dict):
        return dto.get("coordinates")
    return getattr(dto, "coordinates", None)


def _position(values: Sequence[float]) -> tuple[float, float]:
    # altitude, if present, is dropped
    return float(values[0]), float(values[1])


def _closed_ring(raw_ring) -> list[tuple[float, float]]:
    ring = []
    for index, p in enumerate(raw_ring or []):
        if p is None or len(p) < 2:
            raise ValidationFailedError(
                "Polygon position needs a longitude and a latitude.",
                [f"coordinates[{index}]: expected [lon, lat], got {p!r}"],
            )
        ring.append(_position(p))
    if ring and ring[0] != ring[-1]:
        ring.append(ring[0])
    return ring


def _usable_ring(ring) -> bool:
    return len(ring) >= MIN_RING_POSITIONS and len(set(ring)) >= 3


def decode_point(dto) -> Optional[Point]:
    """[lon, lat(, alt)] -> Point(lon, lat). None when input is missing or too short."""
    coords = _coordinates(dto)
    if coords is None or len(coords) < 2:
        return None
    return Point(_position(coords))


def encode_point(point: Optional[Point]) -> Optional[dict]:
    if point is None or point.is_empty:
        return None
    return {"type": "Point", "coordinates": [point.x, point.y]}


def decode_polygon(dto) -> Optional[Polygon]:
    """
    Build a Polygon from GeoJSON rings (first = shell, rest = holes).

    - unclosed rings are closed by repeating the first position
    - a shell with fewer than 4 positions (3 distinct) after closing -> None
    - a hole failing the same rule is dropped, the rest of the polygon is kept
    - a position without both longitude and latitude -> ValidationFailedError
    """
    rings = _coordinates(dto)
    if not rings:
        return None

    shell = _closed_ring(rings[0])
    if not _usable_ring(shell):
        return None

    holes = []
    for raw in rings[1:]:
        hole = _closed_ring(raw)
        if not _usable_ring(hole):
            continue
        holes.append(hole)
    return Polygon(shell, holes)


def _ring_positions(ring) -> list[list[float]]:
    return [[x, y] for x, y, *_ in ring.coords]


def encode_polygon(polygon: Optional[Polygon]) -> Optional[dict]:
    if polygon is None or polygon.is_empty:
        return None
    rings = [_ring_positions(polygon.exterior)]
    rings.extend(_ring_positions(interior) for interior in polygon.interiors)
    return {"type": "Polygon", "coordinates": rings}


def bbox_polygon(min_lon: float, min_lat: float, max_lon: float, max_lat: float) -> Polygon:
    if min_lon > max_lon or min_lat > max_lat:
        raise ValidationFailedError("Bounding box minimum must not exceed maximum.")
    if not (-180.0 <= min_lon <= 180.0 and -180.0 <= max_lon <= 180.0):
        raise ValidationFailedError("Bounding box longitude must be within [-180, 180].")
    if not (-90.0 <= min_lat <= 90.0 and -90.0 <= max_lat <= 90.0):
        raise ValidationFailedError("Bounding box latitude must be within [-90, 90].")
    return box(min_lon, min_lat, max_lon, max_lat)


def parse_bbox(text: Optional[str]) -> Polygon:
    """'minLon,minLat,maxLon,maxLat' -> filter polygon."""
    if not text:
        raise ValidationFailedError("Query parameter 'bbox' is required.")
    parts = [p.strip() for p in text.split(",")]
    if len(parts) != 4:
        raise ValidationFailedError("bbox must be 'minLon,minLat,maxLon,maxLat'.")
    try:
        values = [float(p) for p in parts]
    except ValueError:
        raise ValidationFailedError("bbox values must be numbers.") from None
    return bbox_polygon(*values)
