# Coordinate → derived geometry sync (single write path) + spherical helpers

import logging
import math
from typing import List, Tuple

from geoalchemy2 import WKBElement, WKTElement
from geoalchemy2.shape import to_shape
from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from geochat.errors import InvariantViolation, ValidationError
from geochat.models.spatial import SRID, SpatialMixin

logger = logging.getLogger(__name__)

# Mean earth radius used by PostGIS geography when use_spheroid=false
EARTH_RADIUS_M = 6371008.8

# Grid index: fixed 0.05° cells (~5.5 km of latitude). Changing it means
# recomputing geo_cell for every row.
GRID_CELL_DEG = 0.05
GRID_LAT_CELLS = 3600
GRID_LON_CELLS = 7200
# Widen query boxes a little so rounding never drops a boundary point
_BBOX_MARGIN_DEG = 1e-7

# Allowed drift between geom and raw columns (degrees)
_GEOMETRY_TOLERANCE = 1e-9

_SPATIAL_COLUMNS = ("latitude", "longitude", "geom", "geo_cell")


def validate_coordinate(latitude: float, longitude: float) -> None:
    """Latitude ∈ [-90, 90], longitude ∈ [-180, 180], both finite. Otherwise ValidationError."""
    if latitude is None or longitude is None:
        raise ValidationError("latitude and longitude are required")
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise ValidationError("latitude and longitude must be finite numbers")
    if not -90.0 <= latitude <= 90.0:
        raise ValidationError(f"latitude must be between -90 and 90 (got {latitude})")
    if not -180.0 <= longitude <= 180.0:
        raise ValidationError(f"longitude must be between -180 and 180 (got {longitude})")


def to_geography(latitude: float, longitude: float) -> WKTElement:
    # Point(lng, lat) order
    pt = Point(longitude, latitude)
    return WKTElement(pt.wkt, srid=SRID)


def point_of(geom) -> Point:
    """Decode whatever the geom column holds (WKT/WKB element, EWKT text, shapely) to a Point."""
    if isinstance(geom, BaseGeometry):
        return geom
    if isinstance(geom, str):
        geom = WKTElement(geom, extended=True) if geom.upper().startswith("SRID=") else WKBElement(geom, srid=SRID)
    return to_shape(geom)


def _lat_index(latitude: float) -> int:
    idx = int(math.floor((latitude + 90.0) / GRID_CELL_DEG))
    return min(max(idx, 0), GRID_LAT_CELLS - 1)


def _lon_index(longitude: float) -> int:
    idx = int(math.floor((longitude + 180.0) / GRID_CELL_DEG))
    return min(max(idx, 0), GRID_LON_CELLS - 1)


def grid_cell(latitude: float, longitude: float) -> int:
    """Bucket id; cells of one latitude row are consecutive integers."""
    return _lat_index(latitude) * GRID_LON_CELLS + _lon_index(longitude)


def grid_cell_ranges(latitude: float, longitude: float, radius_m: float) -> List[Tuple[int, int]]:
    """
    Inclusive geo_cell ranges covering every point within radius_m of the center.

    Uses the exact bounding box of a spherical cap: latitude ± r and
    longitude ± asin(sin r / cos lat). When the cap reaches a pole the box
    spans all longitudes; boxes crossing the antimeridian are split in two.
    """
    ang_deg = math.degrees(radius_m / EARTH_RADIUS_M) + _BBOX_MARGIN_DEG
    lat_lo = latitude - ang_deg
    lat_hi = latitude + ang_deg

    if lat_lo <= -90.0 or lat_hi >= 90.0:
        lon_spans = None
    else:
        ratio = math.sin(math.radians(ang_deg)) / math.cos(math.radians(latitude))
        dlon = math.degrees(math.asin(min(1.0, ratio))) + _BBOX_MARGIN_DEG
        lon_lo = longitude - dlon
        lon_hi = longitude + dlon
        if lon_hi - lon_lo >= 360.0:
            lon_spans = None
        elif lon_lo < -180.0:
            lon_spans = [(lon_lo + 360.0, 180.0), (-180.0, lon_hi)]
        elif lon_hi > 180.0:
            lon_spans = [(lon_lo, 180.0), (-180.0, lon_hi - 360.0)]
        else:
            lon_spans = [(lon_lo, lon_hi)]

    first_row = _lat_index(max(lat_lo, -90.0))
    last_row = _lat_index(min(lat_hi, 90.0))

    if lon_spans is None:
        # full rows are contiguous ids
        return [(first_row * GRID_LON_CELLS, last_row * GRID_LON_CELLS + GRID_LON_CELLS - 1)]

    ranges = []
    for row in range(first_row, last_row + 1):
        base = row * GRID_LON_CELLS
        for lo, hi in lon_spans:
            ranges.append((base + _lon_index(lo), base + _lon_index(hi)))
    return ranges


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in metres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    a = min(1.0, a)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def write_coordinate(entity: SpatialMixin, latitude: float, longitude: float) -> None:
    """
    The only way to set a coordinate.

    Validates, then sets latitude/longitude, geom and geo_cell together on the
    entity; the caller's transaction persists them as one unit. Nothing is
    touched when validation fails, and an unchanged coordinate is a no-op.

    This function does not commit/rollback (caller owns the transaction).
    """
    validate_coordinate(latitude, longitude)
    latitude, longitude = float(latitude), float(longitude)
    if (
        entity.geom is not None
        and entity.geo_cell is not None
        and entity.latitude == latitude
        and entity.longitude == longitude
    ):
        return
    entity.latitude = latitude
    entity.longitude = longitude
    entity.geom = to_geography(latitude, longitude)
    entity.geo_cell = grid_cell(latitude, longitude)


def check_geometry(entity: SpatialMixin) -> None:
    """InvariantViolation unless geom and geo_cell agree with the raw coordinate."""
    label = f"{type(entity).__name__}"
    if entity.latitude is None or entity.longitude is None or entity.geom is None or entity.geo_cell is None:
        raise InvariantViolation(f"{label} has a coordinate without derived geometry")
    pt = point_of(entity.geom)
    if (
        abs(pt.x - entity.longitude) > _GEOMETRY_TOLERANCE
        or abs(pt.y - entity.latitude) > _GEOMETRY_TOLERANCE
    ):
        raise InvariantViolation(
            f"{label} geometry POINT({pt.x} {pt.y}) does not match "
            f"({entity.longitude}, {entity.latitude})"
        )
    if entity.geo_cell != grid_cell(entity.latitude, entity.longitude):
        raise InvariantViolation(f"{label} geo_cell is stale")


def _coordinates_modified(entity) -> bool:
    attrs = inspect(entity).attrs
    return any(attrs[name].history.has_changes() for name in _SPATIAL_COLUMNS)


@event.listens_for(Session, "before_flush")
def _verify_spatial_rows(session, flush_context, instances) -> None:
    """Refuse to flush a coordinate whose derived values were not written with it."""
    for obj in list(session.new) + list(session.dirty):
        if not isinstance(obj, SpatialMixin):
            continue
        if obj in session.new or _coordinates_modified(obj):
            try:
                check_geometry(obj)
            except InvariantViolation as e:
                logger.error("Geometry sync violated: %s", e.message)
                raise
