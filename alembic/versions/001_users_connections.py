"""users, connections, connection_members

Revision ID: 001
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_id"), "users", ["id"], unique=False)

    op.create_table(
        "connections",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_connections_id"), "connections", ["id"], unique=False)

    op.create_table(
        "connection_members",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("connection_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="member"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(["connection_id"], ["connections.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("connection_id", "user_id", name="uq_connection_member"),
    )
    op.create_index(op.f("ix_connection_members_id"), "connection_members", ["id"], unique=False)
    op.create_index(op.f("ix_connection_members_connection_id"), "connection_members", ["connection_id"], unique=False)
    op.create_index(op.f("ix_connection_members_user_id"), "connection_members", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_connection_members_user_id"), table_name="connection_members")
    op.drop_index(op.f("ix_connection_members_connection_id"), table_name="connection_members")
    op.drop_index(op.f("ix_connection_members_id"), table_name="connection_members")
    op.drop_table("connection_members")
    op.drop_index(op.f("ix_connections_id"), table_name="connections")
    op.drop_table("connections")
    op.drop_index(op.f("ix_users_id"), table_name="users")
    op.drop_table("users")
