# Point-radius proximity queries over groups / live user locations / activities

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence

from shapely.geometry import Point
from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from geochat import config
from geochat.errors import ValidationError
from geochat.models.group import Group
from geochat.models.location import LocationActivity, UserLocation
from geochat.services.geometry import grid_cell_ranges, haversine_m, point_of, validate_coordinate

logger = logging.getLogger(__name__)


class ProximityKind(str, Enum):
    GROUP = "group"
    USER_LOCATION = "user_location"
    ACTIVITY = "activity"


# kind → (model, primary key attribute name)
_TARGETS = {
    ProximityKind.GROUP: (Group, "group_id"),
    ProximityKind.USER_LOCATION: (UserLocation, "user_id"),
    ProximityKind.ACTIVITY: (LocationActivity, "activity_id"),
}


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class ProximityHit:
    entity: Any
    distance_m: float


def _sort_key(kind: ProximityKind):
    _, id_attr = _TARGETS[kind]
    return lambda hit: (hit.distance_m, getattr(hit.entity, id_attr))


class ProximityEngine:
    """
    find_within(center, radius) → hits with great-circle distance ≤ radius,
    ordered by (distance, entity id).

    Engines query the caller's session and refresh the rows they load
    (populate_existing), so hits reflect the latest committed positions plus
    the caller's own flushed writes.
    """

    name = "base"

    def find_within(
        self,
        db: Session,
        center: Coordinate,
        radius_m: float,
        kind: ProximityKind,
        limit: Optional[int] = None,
        filters: Sequence = (),
    ) -> List[ProximityHit]:
        """`filters` are extra WHERE criteria on the target model."""
        raise NotImplementedError


class PostgisProximityEngine(ProximityEngine):
    """ST_DWithin on the GiST-indexed geography column. PostgreSQL only."""

    name = "postgis"

    def find_within(self, db, center, radius_m, kind, limit=None, filters=()):
        model, id_attr = _TARGETS[kind]
        pt = Point(center.longitude, center.latitude)
        center_geog = func.ST_GeogFromText(f"SRID=4326;{pt.wkt}")
        # use_spheroid=false → same sphere as haversine_m
        distance_m = func.ST_Distance(model.geom, center_geog, False)

        q = (
            db.query(model, distance_m.label("distance_m"))
            .populate_existing()
            .filter(func.ST_DWithin(model.geom, center_geog, radius_m, False), *filters)
            .order_by(distance_m, getattr(model, id_attr))
        )
        if limit is not None:
            q = q.limit(limit)
        return [ProximityHit(entity=e, distance_m=float(d)) for e, d in q.all()]


class GridProximityEngine(ProximityEngine):
    """
    Portable index: geo_cell BETWEEN ranges (B-tree) narrow the candidates to
    the cap's bounding box, then the exact distance filters them.
    """

    name = "grid"

    def find_within(self, db, center, radius_m, kind, limit=None, filters=()):
        model, _ = _TARGETS[kind]
        ranges = grid_cell_ranges(center.latitude, center.longitude, radius_m)
        cell_filter = or_(*[and_(model.geo_cell >= lo, model.geo_cell <= hi) for lo, hi in ranges])

        hits = []
        for entity in db.query(model).filter(cell_filter, *filters).populate_existing():
            pt = point_of(entity.geom)
            d = haversine_m(center.latitude, center.longitude, pt.y, pt.x)
            if d <= radius_m:
                hits.append(ProximityHit(entity=entity, distance_m=d))
        hits.sort(key=_sort_key(kind))
        return hits if limit is None else hits[:limit]


class BruteForceProximityEngine(ProximityEngine):
    """Full scan over the raw columns. Reference implementation for tests, not for serving."""

    name = "brute_force"

    def find_within(self, db, center, radius_m, kind, limit=None, filters=()):
        model, _ = _TARGETS[kind]
        hits = []
        for entity in db.query(model).filter(*filters).populate_existing():
            d = haversine_m(center.latitude, center.longitude, entity.latitude, entity.longitude)
            if d <= radius_m:
                hits.append(ProximityHit(entity=entity, distance_m=d))
        hits.sort(key=_sort_key(kind))
        return hits if limit is None else hits[:limit]


_ENGINES = {
    PostgisProximityEngine.name: PostgisProximityEngine(),
    GridProximityEngine.name: GridProximityEngine(),
}


def get_proximity_engine(db: Session) -> ProximityEngine:
    """PROXIMITY_ENGINE=auto → PostGIS on PostgreSQL, grid elsewhere."""
    choice = config.PROXIMITY_ENGINE
    if choice == "auto":
        choice = "postgis" if db.get_bind().dialect.name == "postgresql" else "grid"
    engine = _ENGINES.get(choice)
    if engine is None:
        raise ValueError(f"Unknown PROXIMITY_ENGINE: {config.PROXIMITY_ENGINE}")
    return engine


def validate_radius(radius_m: float) -> None:
    if radius_m is None or radius_m != radius_m or radius_m < 0:
        raise ValidationError("radius must be a non-negative number of metres")
    if radius_m > config.MAX_SEARCH_RADIUS:
        raise ValidationError(
            f"radius {radius_m:g}m exceeds the maximum search radius of {config.MAX_SEARCH_RADIUS:g}m"
        )


def find_within(
    db: Session,
    center: Coordinate,
    radius_m: float,
    kind: ProximityKind,
    limit: Optional[int] = None,
    engine: Optional[ProximityEngine] = None,
    activity_types: Optional[Sequence[str]] = None,
) -> List[ProximityHit]:
    """
    Entities of `kind` within radius_m metres of center, nearest first.

    - ValidationError: center out of range, negative radius, radius > MAX_SEARCH_RADIUS,
      or activity_types given for a kind other than ACTIVITY.
    - activity_types: keep only activities of these types (None = all).
    - engine defaults to get_proximity_engine(db).
    """
    kind = ProximityKind(kind)
    validate_coordinate(center.latitude, center.longitude)
    validate_radius(radius_m)

    filters = []
    if activity_types is not None:
        if kind is not ProximityKind.ACTIVITY:
            raise ValidationError("activity types only apply to activity queries")
        filters.append(LocationActivity.activity_type.in_(list(activity_types)))

    engine = engine or get_proximity_engine(db)
    db.flush()
    hits = engine.find_within(db, center, float(radius_m), kind, limit=limit, filters=filters)
    logger.debug(
        "%s query (%s, %s) r=%sm via %s → %d hits",
        kind, center.latitude, center.longitude, radius_m, engine.name, len(hits),
    )
    return hits
