# Live location snapshot + location-tagged activity history

from sqlalchemy import CheckConstraint, Column, DateTime, Float, ForeignKey, Index, String, Text

from geochat.models.base import Base
from geochat.models.spatial import SpatialMixin
from geochat.models.timeutil import utcnow

ACTIVITY_LOCATION_UPDATE = "LOCATION_UPDATE"
ACTIVITY_CHECKIN = "USER_CHECKIN"


class UserLocation(SpatialMixin, Base):
    """Where a user is right now. One row per user, overwritten on every report."""

    __tablename__ = "user_locations"

    user_id = Column(String(64), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True)
    accuracy = Column(Float, nullable=True)  # metres
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    __table_args__ = (
        CheckConstraint("latitude BETWEEN -90 AND 90", name="ck_user_locations_latitude_range"),
        CheckConstraint("longitude BETWEEN -180 AND 180", name="ck_user_locations_longitude_range"),
        Index("idx_user_locations_geom", "geom", postgresql_using="gist"),
    )


class LocationActivity(SpatialMixin, Base):
    """Where a user has been. Append-only."""

    __tablename__ = "user_activities"

    activity_id = Column(String(36), primary_key=True)
    user_id = Column(String(64), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    activity_type = Column(String(50), nullable=False, index=True)
    activity_details = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    __table_args__ = (
        CheckConstraint("latitude BETWEEN -90 AND 90", name="ck_user_activities_latitude_range"),
        CheckConstraint("longitude BETWEEN -180 AND 180", name="ck_user_activities_longitude_range"),
        Index("idx_user_activities_geom", "geom", postgresql_using="gist"),
    )
