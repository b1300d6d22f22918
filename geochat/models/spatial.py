# Shared columns/types for coordinate-bearing tables

from geoalchemy2 import Geography, WKBElement, WKTElement
from shapely.geometry.base import BaseGeometry
from sqlalchemy import BigInteger, Column, Float, String
from sqlalchemy.types import TypeDecorator

SRID = 4326  # WGS84


class GeographyPoint(TypeDecorator):
    """
    Derived point column.

    PostgreSQL: PostGIS geography(POINT,4326), GiST-indexed, queried with ST_DWithin.
    Other backends (SQLite for tests/dev): EWKT text, queried through geo_cell.

    Binds WKTElement / shapely geometries as EWKT ("SRID=4326;POINT (lng lat)");
    loads as a geoalchemy2 element so `to_shape()` works on every backend.
    """

    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Geography(geometry_type="POINT", srid=SRID, spatial_index=False))
        return dialect.type_descriptor(String(96))

    def process_bind_param(self, value, dialect):
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, WKTElement):
            return value.data if value.extended else f"SRID={value.srid};{value.data}"
        if isinstance(value, BaseGeometry):
            return f"SRID={SRID};{value.wkt}"
        raise TypeError(f"Unsupported geometry value: {type(value).__name__}")

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, (WKBElement, WKTElement)):
            return value
        if isinstance(value, str):
            upper = value.upper()
            if upper.startswith("SRID="):
                return WKTElement(value, extended=True)
            if upper.startswith("POINT"):
                return WKTElement(value, srid=SRID)
            # hex EWKB as returned by PostGIS
            return WKBElement(value, srid=SRID, extended=True)
        return WKBElement(bytes(value), srid=SRID, extended=True)


class SpatialMixin:
    """
    Raw latitude/longitude plus the values derived from them.

    Only `geochat.services.geometry.write_coordinate` may set these four
    columns; a flush-time check rejects rows where they disagree.
    """

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    geom = Column(GeographyPoint(), nullable=False)
    geo_cell = Column(BigInteger, nullable=False, index=True)  # grid bucket, see geometry.grid_cell
