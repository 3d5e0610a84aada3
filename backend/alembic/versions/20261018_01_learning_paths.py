"""Learning-path catalog, schedule and progress schema."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261018_01_learning_paths"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "content_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("item_id", sa.String(length=128), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=True),
        sa.Column("module_id", sa.String(length=128), nullable=False),
        sa.Column("module_name", sa.Text(), nullable=False, server_default=""),
        sa.Column("chapter_id", sa.String(length=128), nullable=False),
        sa.Column("chapter_title", sa.Text(), nullable=False, server_default=""),
        sa.Column("difficulty", sa.String(length=16), nullable=False),
        sa.Column("content_type", sa.String(length=16), nullable=False),
        sa.Column("estimated_hours", sa.Float(), nullable=True),
        sa.Column("published", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("prerequisite_ids", sa.JSON(), nullable=False),
        sa.Column("company_tags", sa.JSON(), nullable=False),
        sa.Column("company_relevance", sa.JSON(), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_content_items_item_id", "content_items", ["item_id"], unique=True)
    op.create_index("ix_content_items_order", "content_items", ["order_index"])

    op.create_table(
        "path_templates",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("rule", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("name", name="uq_path_template_name"),
    )

    op.create_table(
        "learning_paths",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("title", sa.Text(), nullable=False, server_default=""),
        sa.Column("slug", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("target_duration_weeks", sa.Integer(), nullable=True),
        sa.Column("days_per_week", sa.Integer(), nullable=True),
        sa.Column(
            "template_id",
            sa.String(length=36),
            sa.ForeignKey("path_templates.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("is_dynamic", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_learning_paths_slug", "learning_paths", ["slug"], unique=True)

    op.create_table(
        "path_slots",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column(
            "path_id",
            sa.String(length=36),
            sa.ForeignKey("learning_paths.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "item_id",
            sa.String(length=128),
            sa.ForeignKey("content_items.item_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("week_number", sa.Integer(), nullable=False),
        sa.Column("day_number", sa.Integer(), nullable=False),
        sa.Column("order_in_day", sa.Integer(), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("estimated_hours", sa.Float(), nullable=False, server_default="1.0"),
        sa.UniqueConstraint("path_id", "week_number", "day_number", "order_in_day", name="uq_path_slot_position"),
    )
    op.create_index("ix_path_slots_path", "path_slots", ["path_id"])

    op.create_table(
        "learner_path_progress",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("learner_id", sa.String(length=128), nullable=False),
        sa.Column(
            "path_id",
            sa.String(length=36),
            sa.ForeignKey("learning_paths.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("current_week", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("current_day", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("completed_item_ids", sa.JSON(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_paused", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("target_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.UniqueConstraint("learner_id", "path_id", name="uq_learner_path_progress"),
    )
    op.create_index("ix_learner_path_progress_active", "learner_path_progress", ["learner_id", "is_active"])

    op.create_table(
        "completion_events",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("learner_id", sa.String(length=128), nullable=False),
        sa.Column("item_id", sa.String(length=128), nullable=False),
        sa.Column(
            "path_id",
            sa.String(length=36),
            sa.ForeignKey("learning_paths.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_completion_events_learner", "completion_events", ["learner_id", "completed_at"])

    op.create_table(
        "persistence_audit_events",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("learner_id", sa.String(length=128), nullable=True),
        sa.Column("path_id", sa.String(length=36), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("actor", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("persistence_audit_events")
    op.drop_index("ix_completion_events_learner", table_name="completion_events")
    op.drop_table("completion_events")
    op.drop_index("ix_learner_path_progress_active", table_name="learner_path_progress")
    op.drop_table("learner_path_progress")
    op.drop_index("ix_path_slots_path", table_name="path_slots")
    op.drop_table("path_slots")
    op.drop_index("ix_learning_paths_slug", table_name="learning_paths")
    op.drop_table("learning_paths")
    op.drop_table("path_templates")
    op.drop_index("ix_content_items_order", table_name="content_items")
    op.drop_index("ix_content_items_item_id", table_name="content_items")
    op.drop_table("content_items")
