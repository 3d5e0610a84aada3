"""Caller-facing operations tying the engine to persistence.

Every multi-step write runs inside a single ``session_scope`` so a failure
part way through leaves no partial state behind.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import datetime, tzinfo
from typing import Any, Dict, Generator, Iterable, List, Mapping, Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .cache import ScheduleCache
from .catalog import DatabaseCatalog
from .config import Settings, get_settings
from .db.session import session_scope
from .errors import MigrationConflict, PathEngineError, RecordNotFound, TransactionFailure
from .generator import PathGenerator
from .migration import PathMigrationMapper, estimate_position
from .models import (
    ContentItem,
    GeneratedPath,
    GenerationRule,
    LearnerProgressRecord,
    PathTemplate,
    ProgressSnapshot,
    Schedule,
    ScheduleSlot,
    ensure_utc,
    utcnow,
)
from .progress import ProgressTracker, apply_completion, pause_record, resume_record
from .repositories.learning_paths import LearningPathRepository, learning_paths
from .scheduler import sort_slots, validate_slot_layout
from .telemetry import emit_event

logger = logging.getLogger(__name__)

RuleInput = Union[GenerationRule, Mapping[str, Any]]


def _coerce_rule(rule: RuleInput) -> GenerationRule:
    if isinstance(rule, GenerationRule):
        return rule.ensure_valid()
    return GenerationRule.from_payload(rule)


class LearningPathService:
    def __init__(
        self,
        *,
        session_factory: Optional[sessionmaker[Session]] = None,
        repository: Optional[LearningPathRepository] = None,
        cache: Optional[ScheduleCache] = None,
        generator: Optional[PathGenerator] = None,
        tracker: Optional[ProgressTracker] = None,
        mapper: Optional[PathMigrationMapper] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        if cache is None:
            cache = ScheduleCache((settings or get_settings()).schedule_cache_ttl_seconds)
        if mapper is None:
            mapper = PathMigrationMapper(reference_weekly_pace=(settings or get_settings()).migration_reference_pace)
        self._session_factory = session_factory
        self._repository = repository or learning_paths
        self._cache = cache
        self._generator = generator or PathGenerator()
        self._tracker = tracker or ProgressTracker()
        self._mapper = mapper

    @property
    def cache(self) -> ScheduleCache:
        return self._cache

    @contextmanager
    def _transaction(self, operation: str, *, commit: bool = True) -> Generator[Session, None, None]:
        try:
            with session_scope(commit=commit, factory=self._session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            logger.exception("Persistence failure during %s", operation)
            emit_event(
                "persistence_failure",
                operation=operation,
                exception_type=exc.__class__.__name__,
            )
            raise TransactionFailure(
                f"{operation} failed and was rolled back.",
                details={"operation": operation},
            ) from exc

    # ------------------------------------------------------------------
    # Catalog and templates
    # ------------------------------------------------------------------

    def import_content(self, items: Iterable[ContentItem]) -> int:
        with self._transaction("import_content") as session:
            count = self._repository.upsert_content(session, items)
        logger.info("Imported %s catalog item(s)", count)
        return count

    def content_items(self, item_ids: Iterable[str]) -> Dict[str, ContentItem]:
        with self._transaction("content_items", commit=False) as session:
            return self._repository.get_content_items(session, item_ids)

    def create_template(self, template: PathTemplate) -> PathTemplate:
        template.rule.ensure_valid()
        with self._transaction("create_template") as session:
            return self._repository.create_template(session, template)

    def list_templates(self, *, active_only: bool = False) -> List[PathTemplate]:
        with self._transaction("list_templates", commit=False) as session:
            return self._repository.list_templates(session, active_only=active_only)

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    def generate_schedule(
        self,
        rule: RuleInput,
        *,
        preview: bool = True,
        title: Optional[str] = None,
        description: str = "",
        template_id: Optional[str] = None,
    ) -> GeneratedPath:
        """Select and lay out content for ``rule``.

        With ``preview`` the layout is returned without touching the stored
        paths; otherwise the schedule is persisted and its id returned.
        """
        parsed = _coerce_rule(rule)
        if preview:
            with self._transaction("generate_schedule_preview", commit=False) as session:
                catalog = DatabaseCatalog(session, self._repository).fetch_available_content()
            layout = self._generator.generate(catalog, parsed)
            return GeneratedPath(preview=True, template_id=template_id, layout=layout)

        with self._transaction("generate_schedule") as session:
            catalog = DatabaseCatalog(session, self._repository).fetch_available_content()
            layout = self._generator.generate(catalog, parsed)
            schedule = self._generator.to_schedule(
                layout,
                parsed,
                title=title or "",
                description=description,
                template_id=template_id,
            )
            saved = self._repository.create_schedule(session, schedule)
        if saved.path_id is None:
            raise TransactionFailure(
                "generate_schedule stored a path without an id.",
                details={"operation": "generate_schedule"},
            )
        self._remember(saved.path_id, saved)
        logger.info("Persisted learning path %s with %s slots", saved.path_id, saved.total_slots)
        return GeneratedPath(preview=False, path_id=saved.path_id, template_id=template_id, layout=layout)

    def generate_from_template(
        self,
        template_id: str,
        *,
        preview: bool = True,
        title: Optional[str] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> GeneratedPath:
        with self._transaction("load_template", commit=False) as session:
            template = self._repository.get_template(session, template_id)
        rule = template.rule_with_overrides(overrides)
        return self.generate_schedule(
            rule,
            preview=preview,
            title=title or template.name,
            description=template.description,
            template_id=template.template_id,
        )

    def get_schedule(self, path_id: str) -> Schedule:
        cached = self._cache.get(path_id)
        if cached is not None:
            return cached
        with self._transaction("get_schedule", commit=False) as session:
            schedule = self._repository.get_schedule(session, path_id)
        self._remember(path_id, schedule)
        return schedule

    def _remember(self, path_id: str, schedule: Schedule) -> None:
        evicted = self._cache.evict_expired()
        if evicted:
            logger.debug("Evicted %s expired schedule(s) from the cache", evicted)
        self._cache.set(path_id, schedule)

    def replace_schedule(self, path_id: str, slots: Sequence[ScheduleSlot]) -> Schedule:
        ordered = sort_slots(slots)
        validate_slot_layout(ordered)
        try:
            with self._transaction("replace_schedule") as session:
                schedule = self._repository.replace_slots(session, path_id, ordered)
        finally:
            self._cache.invalidate(path_id)
        emit_event(
            "schedule_replace",
            path_id=path_id,
            slot_count=schedule.total_slots,
            week_count=schedule.week_count,
        )
        return schedule

    def clear_cache(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------------
    # Learner progress
    # ------------------------------------------------------------------

    def enroll(
        self,
        learner_id: str,
        path_id: str,
        *,
        target_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> LearnerProgressRecord:
        moment = ensure_utc(now) or utcnow()
        with self._transaction("enroll") as session:
            existing = self._repository.find_record(session, learner_id, path_id)
            if existing is not None and existing.is_active:
                return existing
            if existing is not None:
                update: Dict[str, Any] = {"is_active": True}
                if target_date is not None:
                    update["target_date"] = target_date
                record = existing.model_copy(update=update)
            else:
                record = LearnerProgressRecord(
                    learner_id=learner_id,
                    path_id=path_id,
                    started_at=moment,
                    target_date=target_date,
                )
            saved = self._repository.save_record(session, record)
        emit_event("learner_enroll", learner_id=learner_id, path_id=path_id, resumed=existing is not None)
        return saved

    def record_completion(
        self,
        learner_id: str,
        path_id: str,
        item_id: str,
        *,
        completed_at: Optional[datetime] = None,
        tz: Optional[tzinfo] = None,
    ) -> LearnerProgressRecord:
        moment = ensure_utc(completed_at) or utcnow()
        schedule = self.get_schedule(path_id)
        with self._transaction("record_completion") as session:
            record = self._repository.get_record(session, learner_id, path_id)
            if not record.is_active:
                raise MigrationConflict(
                    f"Learner '{learner_id}' is no longer active on path '{path_id}'.",
                    details={"learner_id": learner_id, "path_id": path_id},
                )
            if item_id in record.completed_item_ids:
                return record
            self._repository.record_completion_event(session, learner_id, item_id, moment, path_id=path_id)
            # A completion on a paused path resumes it.
            resumed = record.is_paused
            if resumed:
                record = record.model_copy(update={"is_paused": False})
            updated = apply_completion(record, item_id, moment, schedule, tz=tz)
            if updated is not record or resumed:
                record = self._repository.save_record(session, updated)
        emit_event(
            "lesson_completion",
            learner_id=learner_id,
            path_id=path_id,
            item_id=item_id,
            completed=len(record.completed_item_ids),
            total_slots=schedule.total_slots,
            path_completed=record.completed_at is not None,
        )
        return record

    def active_record(self, learner_id: str) -> LearnerProgressRecord:
        with self._transaction("active_record", commit=False) as session:
            record = self._repository.get_active_record(session, learner_id)
        if record is None:
            raise RecordNotFound(f"Learner '{learner_id}' has no active learning path.")
        return record

    def pause(self, learner_id: str, path_id: str) -> LearnerProgressRecord:
        with self._transaction("pause") as session:
            record = self._repository.get_record(session, learner_id, path_id)
            return self._repository.save_record(session, pause_record(record))

    def resume(self, learner_id: str, path_id: str, *, at: Optional[datetime] = None) -> LearnerProgressRecord:
        with self._transaction("resume") as session:
            record = self._repository.get_record(session, learner_id, path_id)
            return self._repository.save_record(session, resume_record(record, ensure_utc(at) or utcnow()))

    def get_progress_snapshot(
        self,
        learner_id: str,
        path_id: str,
        now: Optional[datetime] = None,
        *,
        tz: Optional[tzinfo] = None,
    ) -> ProgressSnapshot:
        start = time.perf_counter()
        moment = ensure_utc(now) or utcnow()
        schedule = self.get_schedule(path_id)
        with self._transaction("get_progress_snapshot", commit=False) as session:
            record = self._repository.get_record(session, learner_id, path_id)
            events = self._repository.list_completion_events(session, learner_id)
        snapshot = self._tracker.snapshot(record, schedule, moment, events, tz=tz)
        emit_event(
            "progress_snapshot",
            learner_id=learner_id,
            path_id=path_id,
            progress_percentage=snapshot.progress_percentage,
            expected_progress=snapshot.expected_progress,
            risk_level=snapshot.risk_level,
            pace_status=snapshot.pace_status,
            duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
        )
        return snapshot

    def switch_path(
        self,
        learner_id: str,
        from_path_id: str,
        to_path_id: str,
        preserve_progress: bool = True,
        *,
        now: Optional[datetime] = None,
    ) -> LearnerProgressRecord:
        """Move a learner's active record to another path in one transaction."""
        if from_path_id == to_path_id:
            raise MigrationConflict(
                "Source and target paths are the same.",
                details={"path_id": from_path_id},
            )
        moment = ensure_utc(now) or utcnow()
        mapped_count = 0
        unmatched_count = 0
        try:
            with self._transaction("switch_path") as session:
                source_record = self._repository.find_record(session, learner_id, from_path_id)
                if source_record is None or not source_record.is_active:
                    raise MigrationConflict(
                        f"Learner '{learner_id}' has no active record on path '{from_path_id}'.",
                        details={"learner_id": learner_id, "path_id": from_path_id},
                    )
                source = self._repository.get_schedule(session, from_path_id)
                target = self._repository.get_schedule(session, to_path_id)
                if target.total_slots == 0:
                    raise MigrationConflict(
                        f"Target path '{to_path_id}' has no slots.",
                        details={"path_id": to_path_id},
                    )

                self._repository.deactivate_record(session, learner_id, from_path_id)
                existing = self._repository.find_record(session, learner_id, to_path_id)
                completed_ids: List[str] = []
                if preserve_progress:
                    if existing is not None:
                        on_target = set(target.item_ids)
                        completed_ids = [i for i in existing.completed_item_ids if i in on_target]
                    completed = self._completed_items(session, source_record, source)
                    result = self._mapper.migrate(completed, source, target)
                    mapped_count = len(result.mapped_completed_ids)
                    unmatched_count = len(result.unmatched_item_ids)
                    completed_ids = list(dict.fromkeys([*completed_ids, *result.mapped_completed_ids]))
                week, day = estimate_position(len(completed_ids), self._mapper.reference_weekly_pace)

                record = LearnerProgressRecord(
                    record_id=existing.record_id if existing is not None else None,
                    learner_id=learner_id,
                    path_id=to_path_id,
                    current_week=week,
                    current_day=day,
                    completed_item_ids=completed_ids,
                    started_at=existing.started_at if existing is not None else moment,
                    last_activity_at=source_record.last_activity_at,
                    is_active=True,
                    target_date=source_record.target_date,
                    current_streak=source_record.current_streak,
                    longest_streak=max(
                        source_record.longest_streak,
                        existing.longest_streak if existing is not None else 0,
                    ),
                )
                saved = self._repository.save_record(session, record)
        except PathEngineError as exc:
            emit_event(
                "path_switch",
                status="error",
                learner_id=learner_id,
                from_path_id=from_path_id,
                to_path_id=to_path_id,
                error=exc.message,
                exception_type=exc.__class__.__name__,
            )
            raise
        emit_event(
            "path_switch",
            status="success",
            learner_id=learner_id,
            from_path_id=from_path_id,
            to_path_id=to_path_id,
            preserve_progress=preserve_progress,
            mapped=mapped_count,
            unmatched=unmatched_count,
        )
        return saved

    def _completed_items(
        self,
        session: Session,
        record: LearnerProgressRecord,
        source: Schedule,
    ) -> List[ContentItem]:
        on_source = {item.item_id: item for item in source.items}
        missing = [item_id for item_id in record.completed_item_ids if item_id not in on_source]
        extra = self._repository.get_content_items(session, missing) if missing else {}
        completed: List[ContentItem] = []
        for item_id in record.completed_item_ids:
            item = on_source.get(item_id) or extra.get(item_id)
            if item is not None:
                completed.append(item)
        return completed


__all__ = ["LearningPathService"]
