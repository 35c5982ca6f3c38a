"""marked_waypoints (one per scope via partial unique indexes) + users active waypoint snapshot

Revision ID: 003
Revises: 002
Create Date: 2026-10-01 00:00:02.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "marked_waypoints",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("connection_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("scope", sa.String(length=20), nullable=False),
        sa.Column("scope_user_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("comment", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("distance", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("room_number", sa.String(length=20), nullable=True),
        sa.Column("images", sa.JSON(), nullable=False),
        sa.Column("marked_by", sa.Integer(), nullable=True),
        sa.Column("is_owner_marked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("marked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["connection_id"], ["connections.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["scope_user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["marked_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_marked_waypoints_id"), "marked_waypoints", ["id"], unique=False)
    op.create_index(op.f("ix_marked_waypoints_connection_id"), "marked_waypoints", ["connection_id"], unique=False)
    op.create_index(
        "uq_marked_waypoints_group",
        "marked_waypoints",
        ["connection_id", "type"],
        unique=True,
        postgresql_where=sa.text("scope = 'group'"),
        sqlite_where=sa.text("scope = 'group'"),
    )
    op.create_index(
        "uq_marked_waypoints_personal",
        "marked_waypoints",
        ["connection_id", "type", "scope_user_id"],
        unique=True,
        postgresql_where=sa.text("scope = 'personal'"),
        sqlite_where=sa.text("scope = 'personal'"),
    )

    op.add_column("users", sa.Column("active_bus_station", sa.JSON(), nullable=True))
    op.add_column("users", sa.Column("active_hotel", sa.JSON(), nullable=True))


def downgrade() -> None:
    op.drop_column("users", "active_hotel")
    op.drop_column("users", "active_bus_station")
    op.drop_index("uq_marked_waypoints_personal", table_name="marked_waypoints")
    op.drop_index("uq_marked_waypoints_group", table_name="marked_waypoints")
    op.drop_index(op.f("ix_marked_waypoints_connection_id"), table_name="marked_waypoints")
    op.drop_index(op.f("ix_marked_waypoints_id"), table_name="marked_waypoints")
    op.drop_table("marked_waypoints")
