"""initial schema: trees, memberships, guarded entities, token ledger, audit

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _tree_fk() -> sa.Column:
    return sa.Column("tree_id", sa.String(), sa.ForeignKey("trees.id", ondelete="CASCADE"), nullable=False)


def _person_fk() -> sa.Column:
    return sa.Column("person_id", sa.String(), sa.ForeignKey("persons.id", ondelete="CASCADE"), nullable=False)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "trees",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_trees_owner_id", "trees", ["owner_id"], unique=False)

    # At most one membership per (tree, user); self-heal and invitations rely on it for idempotent inserts.
    op.create_table(
        "tree_members",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _tree_fk(),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("tree_id", "user_id", name="uq_tree_members_tree_user"),
    )
    op.create_index("ix_tree_members_user_id", "tree_members", ["user_id"], unique=False)

    op.create_table(
        "persons",
        sa.Column("id", sa.String(), primary_key=True),
        _tree_fk(),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_persons_tree_id", "persons", ["tree_id"], unique=False)
    op.create_table(
        "relationships",
        sa.Column("id", sa.String(), primary_key=True),
        _tree_fk(),
        sa.Column("person_1_id", sa.String(), sa.ForeignKey("persons.id", ondelete="CASCADE"), nullable=False),
        sa.Column("person_2_id", sa.String(), sa.ForeignKey("persons.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
    )
    op.create_index("ix_relationships_tree_id", "relationships", ["tree_id"], unique=False)

    op.create_table(
        "photos",
        sa.Column("id", sa.String(), primary_key=True),
        _person_fk(),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("caption", sa.String(), nullable=True),
    )
    op.create_index("ix_photos_person_id", "photos", ["person_id"], unique=False)
    op.create_table(
        "documents",
        sa.Column("id", sa.String(), primary_key=True),
        _person_fk(),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("url", sa.String(), nullable=False),
    )
    op.create_index("ix_documents_person_id", "documents", ["person_id"], unique=False)
    op.create_table(
        "life_events",
        sa.Column("id", sa.String(), primary_key=True),
        _person_fk(),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
    )
    op.create_index("ix_life_events_person_id", "life_events", ["person_id"], unique=False)

    op.create_table(
        "stories",
        sa.Column("id", sa.String(), primary_key=True),
        _tree_fk(),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
    )
    op.create_index("ix_stories_tree_id", "stories", ["tree_id"], unique=False)
    op.create_table(
        "albums",
        sa.Column("id", sa.String(), primary_key=True),
        _tree_fk(),
        sa.Column("name", sa.String(), nullable=False),
    )
    op.create_index("ix_albums_tree_id", "albums", ["tree_id"], unique=False)
    op.create_table(
        "comments",
        sa.Column("id", sa.String(), primary_key=True),
        _tree_fk(),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=False),
        sa.Column("resource_id", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
    )
    op.create_index("ix_comments_tree_id", "comments", ["tree_id"], unique=False)

    # The check constraint backs the conditional deduct: no statement may drive a balance negative.
    op.create_table(
        "token_balances",
        sa.Column("user_id", sa.String(), primary_key=True),
        sa.Column("balance", sa.Integer(), nullable=False),
        sa.Column("last_refill_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_token_balances_non_negative"),
    )
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("plan_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"], unique=False)
    op.create_table(
        "token_usage_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("feature_name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_token_usage_logs_user_id", "token_usage_logs", ["user_id"], unique=False)
    op.create_index("ix_token_usage_logs_created_at", "token_usage_logs", ["created_at"], unique=False)

    op.create_table(
        "audit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("tree_id", sa.String(), nullable=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=True),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("request_id", sa.String(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB().with_variant(sa.JSON(), "sqlite"), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
    )
    op.create_index("ix_audit_events_occurred_at", "audit_events", ["occurred_at"], unique=False)
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"], unique=False)
    op.create_index("ix_audit_events_actor_occurred", "audit_events", ["actor_id", "occurred_at"], unique=False)
    op.create_index("ix_audit_events_tree_occurred", "audit_events", ["tree_id", "occurred_at"], unique=False)


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("token_usage_logs")
    op.drop_table("subscriptions")
    op.drop_table("token_balances")
    op.drop_table("comments")
    op.drop_table("albums")
    op.drop_table("stories")
    op.drop_table("life_events")
    op.drop_table("documents")
    op.drop_table("photos")
    op.drop_table("relationships")
    op.drop_table("persons")
    op.drop_table("tree_members")
    op.drop_table("trees")
    op.drop_table("users")
