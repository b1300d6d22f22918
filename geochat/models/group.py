# Group + membership models

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text

from geochat.models.base import Base
from geochat.models.spatial import SpatialMixin
from geochat.models.timeutil import utcnow

ROLE_MEMBER = "member"
ROLE_ADMIN = "admin"
ROLES = (ROLE_MEMBER, ROLE_ADMIN)


class Group(SpatialMixin, Base):
    """
    Location-discoverable chat group.

    member_count always equals the number of group_members rows; group_crud
    changes it only together with a membership row, under the group row lock.
    """

    __tablename__ = "groups"

    group_id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    location_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    password_hash = Column(Text, nullable=True)  # bcrypt, NULL = open group
    creator_id = Column(String(64), ForeignKey("users.user_id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    member_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("latitude BETWEEN -90 AND 90", name="ck_groups_latitude_range"),
        CheckConstraint("longitude BETWEEN -180 AND 180", name="ck_groups_longitude_range"),
        CheckConstraint("member_count >= 0", name="ck_groups_member_count_non_negative"),
        Index("idx_groups_geom", "geom", postgresql_using="gist"),
    )


class GroupMembership(Base):
    """At most one row per (group, user); its existence is the membership."""

    __tablename__ = "group_members"

    group_id = Column(String(36), ForeignKey("groups.group_id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(64), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True, index=True)
    joined_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_active = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    role = Column(String(16), nullable=False, default=ROLE_MEMBER)
