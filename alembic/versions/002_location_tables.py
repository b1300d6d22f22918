"""user_locations (live snapshot) + user_activities (history)

Revision ID: 002
Revises: 001
Create Date: 2026-10-18 00:00:01.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from geoalchemy2 import Geography

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # one row per user, overwritten on every report
    op.create_table(
        "user_locations",
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("accuracy", sa.Float(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("geom", Geography(geometry_type="POINT", srid=4326, spatial_index=False), nullable=False),
        sa.Column("geo_cell", sa.BigInteger(), nullable=False),
        sa.CheckConstraint("latitude BETWEEN -90 AND 90", name="ck_user_locations_latitude_range"),
        sa.CheckConstraint("longitude BETWEEN -180 AND 180", name="ck_user_locations_longitude_range"),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index(op.f("ix_user_locations_updated_at"), "user_locations", ["updated_at"], unique=False)
    op.create_index(op.f("ix_user_locations_geo_cell"), "user_locations", ["geo_cell"], unique=False)
    op.create_index("idx_user_locations_geom", "user_locations", ["geom"], unique=False, postgresql_using="gist")

    # append-only history
    op.create_table(
        "user_activities",
        sa.Column("activity_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("activity_type", sa.String(length=50), nullable=False),
        sa.Column("activity_details", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("geom", Geography(geometry_type="POINT", srid=4326, spatial_index=False), nullable=False),
        sa.Column("geo_cell", sa.BigInteger(), nullable=False),
        sa.CheckConstraint("latitude BETWEEN -90 AND 90", name="ck_user_activities_latitude_range"),
        sa.CheckConstraint("longitude BETWEEN -180 AND 180", name="ck_user_activities_longitude_range"),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("activity_id"),
    )
    op.create_index(op.f("ix_user_activities_user_id"), "user_activities", ["user_id"], unique=False)
    op.create_index(op.f("ix_user_activities_activity_type"), "user_activities", ["activity_type"], unique=False)
    op.create_index(op.f("ix_user_activities_created_at"), "user_activities", ["created_at"], unique=False)
    op.create_index(op.f("ix_user_activities_geo_cell"), "user_activities", ["geo_cell"], unique=False)
    op.create_index("idx_user_activities_geom", "user_activities", ["geom"], unique=False, postgresql_using="gist")


def downgrade() -> None:
    op.drop_index("idx_user_activities_geom", table_name="user_activities")
    op.drop_index(op.f("ix_user_activities_geo_cell"), table_name="user_activities")
    op.drop_index(op.f("ix_user_activities_created_at"), table_name="user_activities")
    op.drop_index(op.f("ix_user_activities_activity_type"), table_name="user_activities")
    op.drop_index(op.f("ix_user_activities_user_id"), table_name="user_activities")
    op.drop_table("user_activities")
    op.drop_index("idx_user_locations_geom", table_name="user_locations")
    op.drop_index(op.f("ix_user_locations_geo_cell"), table_name="user_locations")
    op.drop_index(op.f("ix_user_locations_updated_at"), table_name="user_locations")
    op.drop_table("user_locations")
