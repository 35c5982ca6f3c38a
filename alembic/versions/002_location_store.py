"""connection_locations, member_locations, location_history

Revision ID: 002
Revises: 001
Create Date: 2026-10-01 00:00:01.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "connection_locations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("connection_id", sa.Integer(), nullable=False),
        sa.Column("active_user_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_samples", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_users", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_activity", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(["connection_id"], ["connections.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_connection_locations_id"), "connection_locations", ["id"], unique=False)
    op.create_index(
        op.f("ix_connection_locations_connection_id"), "connection_locations", ["connection_id"], unique=True
    )

    op.create_table(
        "member_locations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("connection_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("floor", sa.String(length=20), nullable=True),
        sa.Column("accuracy", sa.Float(), nullable=True),
        sa.Column("speed", sa.Float(), nullable=True),
        sa.Column("heading", sa.Float(), nullable=True),
        sa.Column("sampled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("online", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_samples", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=True),
        sa.Column("avg_speed", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("speed_samples", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_distance", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_sequence", sa.BigInteger(), nullable=True),
        sa.ForeignKeyConstraint(["connection_id"], ["connections.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("connection_id", "user_id", name="uq_member_location"),
    )
    op.create_index(op.f("ix_member_locations_id"), "member_locations", ["id"], unique=False)
    op.create_index(op.f("ix_member_locations_connection_id"), "member_locations", ["connection_id"], unique=False)
    op.create_index(op.f("ix_member_locations_user_id"), "member_locations", ["user_id"], unique=False)

    op.create_table(
        "location_history",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("member_location_id", sa.Integer(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("floor", sa.String(length=20), nullable=True),
        sa.Column("accuracy", sa.Float(), nullable=True),
        sa.Column("speed", sa.Float(), nullable=True),
        sa.Column("heading", sa.Float(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["member_location_id"], ["member_locations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_location_history_id"), "location_history", ["id"], unique=False)
    op.create_index(
        op.f("ix_location_history_member_location_id"), "location_history", ["member_location_id"], unique=False
    )
    op.create_index(op.f("ix_location_history_recorded_at"), "location_history", ["recorded_at"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_location_history_recorded_at"), table_name="location_history")
    op.drop_index(op.f("ix_location_history_member_location_id"), table_name="location_history")
    op.drop_index(op.f("ix_location_history_id"), table_name="location_history")
    op.drop_table("location_history")
    op.drop_index(op.f("ix_member_locations_user_id"), table_name="member_locations")
    op.drop_index(op.f("ix_member_locations_connection_id"), table_name="member_locations")
    op.drop_index(op.f("ix_member_locations_id"), table_name="member_locations")
    op.drop_table("member_locations")
    op.drop_index(op.f("ix_connection_locations_connection_id"), table_name="connection_locations")
    op.drop_index(op.f("ix_connection_locations_id"), table_name="connection_locations")
    op.drop_table("connection_locations")
