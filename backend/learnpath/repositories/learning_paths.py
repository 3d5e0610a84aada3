"""Database-backed repository for catalog content, schedules and learner progress."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..db.models import (
    CompletionEventModel,
    ContentItemModel,
    LearnerPathProgressModel,
    LearningPathModel,
    PathSlotModel,
    PathTemplateModel,
    PersistenceAuditEventModel,
)
from ..errors import (
    InvalidLearnerId,
    MigrationConflict,
    RecordNotFound,
    ScheduleNotFound,
    TemplateNotFound,
)
from ..models import (
    CompletionEvent,
    ContentItem,
    GenerationRule,
    LearnerProgressRecord,
    PathTemplate,
    Schedule,
    ScheduleSlot,
)
from ..scheduler import validate_slot_layout


def _normalize_learner_id(learner_id: str) -> str:
    normalized = learner_id.strip()
    if not normalized:
        raise InvalidLearnerId("Learner id cannot be empty.", details={"learner_id": learner_id})
    return normalized


class LearningPathRepository:
    """Logical persistence steps used by the service layer.

    Methods never commit; the caller's ``session_scope`` decides the
    transaction boundary.
    """

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def list_content(self, session: Session, *, published_only: bool = True) -> List[ContentItem]:
        stmt = select(ContentItemModel).order_by(ContentItemModel.order_index.asc(), ContentItemModel.id.asc())
        if published_only:
            stmt = stmt.where(ContentItemModel.published.is_(True))
        return [self._content_to_domain(model) for model in session.execute(stmt).scalars().all()]

    def upsert_content(self, session: Session, items: Iterable[ContentItem]) -> int:
        count = 0
        for item in items:
            stmt = select(ContentItemModel).where(ContentItemModel.item_id == item.item_id)
            model = session.execute(stmt).scalar_one_or_none()
            if model is None:
                model = ContentItemModel(item_id=item.item_id)
                session.add(model)
            model.title = item.title
            model.slug = item.slug
            model.module_id = item.module_id
            model.module_name = item.module_name
            model.chapter_id = item.chapter_id
            model.chapter_title = item.chapter_title
            model.difficulty = item.difficulty.value
            model.content_type = item.content_type.value
            model.estimated_hours = item.estimated_hours
            model.published = item.published
            model.prerequisite_ids = list(item.prerequisite_ids)
            model.company_tags = list(item.company_tags)
            model.company_relevance = dict(item.company_relevance)
            model.order_index = item.order_index
            count += 1
        session.flush()
        return count

    def get_content_items(self, session: Session, item_ids: Iterable[str]) -> Dict[str, ContentItem]:
        wanted = list(dict.fromkeys(item_ids))
        if not wanted:
            return {}
        stmt = select(ContentItemModel).where(ContentItemModel.item_id.in_(wanted))
        return {model.item_id: self._content_to_domain(model) for model in session.execute(stmt).scalars().all()}

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def create_template(self, session: Session, template: PathTemplate) -> PathTemplate:
        model = PathTemplateModel(
            name=template.name.strip(),
            description=template.description,
            rule=template.rule.model_dump(mode="json"),
            is_active=template.is_active,
        )
        session.add(model)
        session.flush()
        self._record_audit(session, "template_create", {"name": model.name}, path_id=None)
        return self._template_to_domain(model)

    def get_template(self, session: Session, template_id: str) -> PathTemplate:
        model = session.get(PathTemplateModel, template_id)
        if model is None:
            raise TemplateNotFound(f"Path template '{template_id}' does not exist.")
        return self._template_to_domain(model)

    def list_templates(self, session: Session, *, active_only: bool = False) -> List[PathTemplate]:
        stmt = select(PathTemplateModel).order_by(PathTemplateModel.name.asc())
        if active_only:
            stmt = stmt.where(PathTemplateModel.is_active.is_(True))
        return [self._template_to_domain(model) for model in session.execute(stmt).scalars().all()]

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    def create_schedule(self, session: Session, schedule: Schedule) -> Schedule:
        validate_slot_layout(schedule.slots)
        model = LearningPathModel(
            title=schedule.title,
            slug=self._unique_slug(session, schedule.slug) if schedule.slug else None,
            description=schedule.description,
            target_duration_weeks=schedule.target_duration_weeks,
            days_per_week=schedule.days_per_week,
            template_id=schedule.template_id,
            is_dynamic=schedule.is_dynamic,
            generated_at=schedule.generated_at,
        )
        session.add(model)
        session.flush()
        self._insert_slots(session, model.id, schedule.slots)
        session.flush()
        self._record_audit(session, "schedule_create", {"slot_count": len(schedule.slots)}, path_id=model.id)
        return self._load_schedule(session, model)

    def get_schedule(self, session: Session, path_id: str) -> Schedule:
        return self._load_schedule(session, self._require_path(session, path_id))

    def replace_slots(self, session: Session, path_id: str, slots: Sequence[ScheduleSlot]) -> Schedule:
        validate_slot_layout(slots)
        model = self._require_path(session, path_id)
        session.execute(delete(PathSlotModel).where(PathSlotModel.path_id == model.id))
        self._insert_slots(session, model.id, slots)
        session.flush()
        self._record_audit(session, "schedule_replace", {"slot_count": len(slots)}, path_id=model.id)
        return self._load_schedule(session, model)

    # ------------------------------------------------------------------
    # Learner progress
    # ------------------------------------------------------------------

    def find_record(self, session: Session, learner_id: str, path_id: str) -> Optional[LearnerProgressRecord]:
        model = self._find_record_model(session, learner_id, path_id)
        return self._record_to_domain(model) if model is not None else None

    def get_record(self, session: Session, learner_id: str, path_id: str) -> LearnerProgressRecord:
        record = self.find_record(session, learner_id, path_id)
        if record is None:
            raise RecordNotFound(f"No progress record for learner '{learner_id}' on path '{path_id}'.")
        return record

    def get_active_record(self, session: Session, learner_id: str) -> Optional[LearnerProgressRecord]:
        stmt = (
            select(LearnerPathProgressModel)
            .where(
                LearnerPathProgressModel.learner_id == _normalize_learner_id(learner_id),
                LearnerPathProgressModel.is_active.is_(True),
            )
            .order_by(LearnerPathProgressModel.updated_at.desc())
        )
        model = session.execute(stmt).scalars().first()
        return self._record_to_domain(model) if model is not None else None

    def save_record(self, session: Session, record: LearnerProgressRecord) -> LearnerProgressRecord:
        """Insert or update the record for ``(learner_id, path_id)``.

        Saving an active record while the learner already has a different
        active record raises :class:`MigrationConflict`.
        """
        learner_id = _normalize_learner_id(record.learner_id)
        self._require_path(session, record.path_id)
        if record.is_active:
            stmt = select(LearnerPathProgressModel.path_id).where(
                LearnerPathProgressModel.learner_id == learner_id,
                LearnerPathProgressModel.is_active.is_(True),
                LearnerPathProgressModel.path_id != record.path_id,
            )
            other = session.execute(stmt).scalars().first()
            if other is not None:
                raise MigrationConflict(
                    f"Learner '{learner_id}' already has an active record on path '{other}'.",
                    details={"active_path_id": other},
                )

        model = self._find_record_model(session, learner_id, record.path_id)
        event_type = "progress_update"
        if model is None:
            model = LearnerPathProgressModel(learner_id=learner_id, path_id=record.path_id)
            session.add(model)
            event_type = "progress_create"
        model.current_week = record.current_week
        model.current_day = record.current_day
        model.completed_item_ids = list(dict.fromkeys(record.completed_item_ids))
        model.started_at = record.started_at
        model.last_activity_at = record.last_activity_at
        model.completed_at = record.completed_at
        model.is_active = record.is_active
        model.is_paused = record.is_paused
        model.target_date = record.target_date
        model.current_streak = record.current_streak
        model.longest_streak = record.longest_streak
        session.flush()
        self._record_audit(
            session,
            event_type,
            {"completed": len(model.completed_item_ids), "is_active": model.is_active},
            path_id=record.path_id,
            learner_id=learner_id,
        )
        return self._record_to_domain(model)

    def deactivate_record(self, session: Session, learner_id: str, path_id: str) -> LearnerProgressRecord:
        model = self._find_record_model(session, learner_id, path_id)
        if model is None:
            raise RecordNotFound(f"No progress record for learner '{learner_id}' on path '{path_id}'.")
        model.is_active = False
        session.flush()
        self._record_audit(session, "progress_deactivate", {}, path_id=path_id, learner_id=model.learner_id)
        return self._record_to_domain(model)

    # ------------------------------------------------------------------
    # Completion events
    # ------------------------------------------------------------------

    def record_completion_event(
        self,
        session: Session,
        learner_id: str,
        item_id: str,
        completed_at: datetime,
        *,
        path_id: Optional[str] = None,
    ) -> CompletionEvent:
        model = CompletionEventModel(
            learner_id=_normalize_learner_id(learner_id),
            item_id=item_id,
            path_id=path_id,
            completed_at=completed_at,
        )
        session.add(model)
        session.flush()
        return CompletionEvent(item_id=model.item_id, completed_at=model.completed_at)

    def list_completion_events(
        self,
        session: Session,
        learner_id: str,
        *,
        item_ids: Optional[Iterable[str]] = None,
    ) -> List[CompletionEvent]:
        stmt = (
            select(CompletionEventModel)
            .where(CompletionEventModel.learner_id == _normalize_learner_id(learner_id))
            .order_by(CompletionEventModel.completed_at.desc())
        )
        if item_ids is not None:
            stmt = stmt.where(CompletionEventModel.item_id.in_(list(item_ids)))
        return [
            CompletionEvent(item_id=model.item_id, completed_at=model.completed_at)
            for model in session.execute(stmt).scalars().all()
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_path(self, session: Session, path_id: str) -> LearningPathModel:
        model = session.get(LearningPathModel, path_id)
        if model is None:
            raise ScheduleNotFound(f"Learning path '{path_id}' does not exist.")
        return model

    def _unique_slug(self, session: Session, slug: str) -> str:
        stmt = select(LearningPathModel.slug).where(LearningPathModel.slug.like(f"{slug}%"))
        taken = set(session.execute(stmt).scalars().all())
        candidate = slug
        suffix = 2
        while candidate in taken:
            candidate = f"{slug}-{suffix}"
            suffix += 1
        return candidate

    def _find_record_model(self, session: Session, learner_id: str, path_id: str) -> Optional[LearnerPathProgressModel]:
        stmt = select(LearnerPathProgressModel).where(
            LearnerPathProgressModel.learner_id == _normalize_learner_id(learner_id),
            LearnerPathProgressModel.path_id == path_id,
        )
        return session.execute(stmt).scalar_one_or_none()

    def _insert_slots(self, session: Session, path_id: str, slots: Iterable[ScheduleSlot]) -> None:
        for slot in slots:
            session.add(
                PathSlotModel(
                    path_id=path_id,
                    item_id=slot.item.item_id,
                    week_number=slot.week_number,
                    day_number=slot.day_number,
                    order_in_day=slot.order_in_day,
                    is_required=slot.is_required,
                    estimated_hours=slot.estimated_hours,
                )
            )

    def _load_schedule(self, session: Session, model: LearningPathModel) -> Schedule:
        stmt = (
            select(PathSlotModel)
            .where(PathSlotModel.path_id == model.id)
            .order_by(
                PathSlotModel.week_number.asc(),
                PathSlotModel.day_number.asc(),
                PathSlotModel.order_in_day.asc(),
            )
        )
        slot_models = session.execute(stmt).scalars().all()
        items = self.get_content_items(session, (slot.item_id for slot in slot_models))
        slots: List[ScheduleSlot] = []
        for slot in slot_models:
            item = items.get(slot.item_id)
            if item is None:
                raise ScheduleNotFound(
                    f"Learning path '{model.id}' references missing content item '{slot.item_id}'."
                )
            slots.append(
                ScheduleSlot(
                    item=item,
                    week_number=slot.week_number,
                    day_number=slot.day_number,
                    order_in_day=slot.order_in_day,
                    is_required=slot.is_required,
                    estimated_hours=slot.estimated_hours,
                )
            )
        return Schedule(
            path_id=model.id,
            title=model.title,
            slug=model.slug,
            description=model.description,
            target_duration_weeks=model.target_duration_weeks,
            days_per_week=model.days_per_week,
            template_id=model.template_id,
            is_dynamic=model.is_dynamic,
            generated_at=model.generated_at,
            slots=slots,
        )

    @staticmethod
    def _content_to_domain(model: ContentItemModel) -> ContentItem:
        return ContentItem(
            item_id=model.item_id,
            title=model.title,
            slug=model.slug,
            module_id=model.module_id,
            module_name=model.module_name,
            chapter_id=model.chapter_id,
            chapter_title=model.chapter_title,
            difficulty=model.difficulty,
            content_type=model.content_type,
            estimated_hours=model.estimated_hours,
            published=model.published,
            prerequisite_ids=list(model.prerequisite_ids or []),
            company_tags=list(model.company_tags or []),
            company_relevance=dict(model.company_relevance or {}),
            order_index=model.order_index,
        )

    @staticmethod
    def _template_to_domain(model: PathTemplateModel) -> PathTemplate:
        return PathTemplate(
            template_id=model.id,
            name=model.name,
            description=model.description,
            rule=GenerationRule.model_validate(model.rule),
            is_active=model.is_active,
        )

    @staticmethod
    def _record_to_domain(model: LearnerPathProgressModel) -> LearnerProgressRecord:
        return LearnerProgressRecord(
            record_id=model.id,
            learner_id=model.learner_id,
            path_id=model.path_id,
            current_week=model.current_week,
            current_day=model.current_day,
            completed_item_ids=list(model.completed_item_ids or []),
            started_at=model.started_at,
            last_activity_at=model.last_activity_at,
            completed_at=model.completed_at,
            is_active=model.is_active,
            is_paused=model.is_paused,
            target_date=model.target_date,
            current_streak=model.current_streak,
            longest_streak=model.longest_streak,
        )

    def _record_audit(
        self,
        session: Session,
        event_type: str,
        payload: Dict[str, Any],
        *,
        path_id: Optional[str],
        learner_id: Optional[str] = None,
    ) -> None:
        session.add(
            PersistenceAuditEventModel(
                learner_id=learner_id,
                path_id=path_id,
                event_type=event_type,
                payload=payload,
                actor="system",
            )
        )


learning_paths = LearningPathRepository()

__all__ = ["LearningPathRepository", "learning_paths"]
