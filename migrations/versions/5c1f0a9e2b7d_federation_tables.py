"""federation tables

Revision ID: 5c1f0a9e2b7d
Revises:
Create Date: 2026-10-18 09:12:44.318205

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5c1f0a9e2b7d"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

QUEUE_TABLES = ("inbox_items", "outbox_items")


def _queue_table(name: str) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("owner_actor_id", sa.String(length=32), nullable=False),
        sa.Column("activity_id", sa.String(length=512), nullable=True),
        sa.Column("activity_type", sa.String(length=64), nullable=False),
        sa.Column("raw_activity", sa.JSON(), nullable=False),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["owner_actor_id"], ["actors.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("owner_actor_id", "activity_id", "processed", "created_at"):
        op.create_index(f"ix_{name}_{column}", name, [column])


def upgrade() -> None:
    """Create actors, queue and relationship tables."""
    op.create_table(
        "actors",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("username", sa.String(length=64), nullable=True),
        sa.Column("actor_uri", sa.String(length=512), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("inbox_uri", sa.String(length=512), nullable=False),
        sa.Column("outbox_uri", sa.String(length=512), nullable=True),
        sa.Column("followers_uri", sa.String(length=512), nullable=True),
        sa.Column("following_uri", sa.String(length=512), nullable=True),
        sa.Column("public_key", sa.Text(), nullable=True),
        sa.Column("private_key", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
        sa.UniqueConstraint("actor_uri"),
    )

    for name in QUEUE_TABLES:
        _queue_table(name)

    op.create_table(
        "followers",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("subject_actor_id", sa.String(length=32), nullable=False),
        sa.Column("peer_actor_uri", sa.String(length=512), nullable=False),
        sa.Column("state", sa.String(length=16), nullable=False),
        sa.Column("follow_activity_id", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["subject_actor_id"], ["actors.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subject_actor_id", "peer_actor_uri", name="uq_followers_subject_peer"),
    )
    op.create_index("ix_followers_subject_actor_id", "followers", ["subject_actor_id"])

    op.create_table(
        "following",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("actor_id", sa.String(length=32), nullable=False),
        sa.Column("peer_actor_uri", sa.String(length=512), nullable=False),
        sa.Column("state", sa.String(length=16), nullable=False),
        sa.Column("follow_activity_id", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["actor_id"], ["actors.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("actor_id", "peer_actor_uri", name="uq_following_actor_peer"),
    )
    op.create_index("ix_following_actor_id", "following", ["actor_id"])
    op.create_index("ix_following_follow_activity_id", "following", ["follow_activity_id"])


def downgrade() -> None:
    """Drop all federation tables."""
    op.drop_table("following")
    op.drop_table("followers")
    for name in reversed(QUEUE_TABLES):
        op.drop_table(name)
    op.drop_table("actors")
