"""ORM models backing the learning-path persistence layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class ContentItemModel(TimestampMixin, Base):
    __tablename__ = "content_items"
    __table_args__ = (
        Index("ix_content_items_item_id", "item_id", unique=True),
        Index("ix_content_items_order", "order_index"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[str] = mapped_column(String(128), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str | None] = mapped_column(String(255), nullable=True)
    module_id: Mapped[str] = mapped_column(String(128), nullable=False)
    module_name: Mapped[str] = mapped_column(Text, default="", nullable=False)
    chapter_id: Mapped[str] = mapped_column(String(128), nullable=False)
    chapter_title: Mapped[str] = mapped_column(Text, default="", nullable=False)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False)
    content_type: Mapped[str] = mapped_column(String(16), nullable=False)
    estimated_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    published: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    prerequisite_ids: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    company_tags: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    company_relevance: Mapped[dict[str, float]] = mapped_column(JSONType, default=dict, nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class PathTemplateModel(TimestampMixin, Base):
    __tablename__ = "path_templates"
    __table_args__ = (UniqueConstraint("name", name="uq_path_template_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    rule: Mapped[dict] = mapped_column(JSONType, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class LearningPathModel(TimestampMixin, Base):
    __tablename__ = "learning_paths"
    __table_args__ = (Index("ix_learning_paths_slug", "slug", unique=True),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title: Mapped[str] = mapped_column(Text, default="", nullable=False)
    slug: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    target_duration_weeks: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    days_per_week: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    template_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("path_templates.id", ondelete="SET NULL"), nullable=True
    )
    is_dynamic: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    template: Mapped[PathTemplateModel | None] = relationship()


class PathSlotModel(Base):
    __tablename__ = "path_slots"
    __table_args__ = (
        UniqueConstraint("path_id", "week_number", "day_number", "order_in_day", name="uq_path_slot_position"),
        Index("ix_path_slots_path", "path_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    path_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("learning_paths.id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("content_items.item_id", ondelete="CASCADE"), nullable=False
    )
    week_number: Mapped[int] = mapped_column(Integer, nullable=False)
    day_number: Mapped[int] = mapped_column(Integer, nullable=False)
    order_in_day: Mapped[int] = mapped_column(Integer, nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    estimated_hours: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)


class LearnerPathProgressModel(TimestampMixin, Base):
    __tablename__ = "learner_path_progress"
    __table_args__ = (
        UniqueConstraint("learner_id", "path_id", name="uq_learner_path_progress"),
        Index("ix_learner_path_progress_active", "learner_id", "is_active"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    learner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    path_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("learning_paths.id", ondelete="CASCADE"), nullable=False
    )
    current_week: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    current_day: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    completed_item_ids: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    target_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    current_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class CompletionEventModel(Base):
    __tablename__ = "completion_events"
    __table_args__ = (Index("ix_completion_events_learner", "learner_id", "completed_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    learner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    item_id: Mapped[str] = mapped_column(String(128), nullable=False)
    path_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("learning_paths.id", ondelete="SET NULL"), nullable=True
    )
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )


class PersistenceAuditEventModel(Base):
    __tablename__ = "persistence_audit_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    learner_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    path_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    actor: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


__all__ = [
    "CompletionEventModel",
    "ContentItemModel",
    "LearnerPathProgressModel",
    "LearningPathModel",
    "PathSlotModel",
    "PathTemplateModel",
    "PersistenceAuditEventModel",
]
