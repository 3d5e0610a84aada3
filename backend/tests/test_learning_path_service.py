"""Service-level tests against a temporary SQLite database."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional, Tuple

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from learnpath.cache import ScheduleCache
from learnpath.db.models import LearningPathModel, PersistenceAuditEventModel
from learnpath.db.session import build_engine, create_schema, make_session_factory, session_scope
from learnpath.errors import (
    InvalidSchedule,
    MigrationConflict,
    RecordNotFound,
    ScheduleNotFound,
    TemplateNotFound,
    TransactionFailure,
)
from learnpath.migration import PathMigrationMapper
from learnpath.models import (
    ContentItem,
    GenerationRule,
    LearnerProgressRecord,
    PathTemplate,
    RiskLevel,
    Schedule,
    ScheduleSlot,
)
from learnpath.repositories.learning_paths import LearningPathRepository, learning_paths
from learnpath.scheduler import slot_position
from learnpath.service import LearningPathService
from learnpath.telemetry import capture_events

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
RULE: dict[str, Any] = {
    "target_duration_weeks": 2,
    "lessons_per_day": 2,
    "days_per_week": 5,
    "estimated_hours_per_day": 2.0,
}


def _catalog() -> list[ContentItem]:
    items = [
        ContentItem(
            item_id=f"a{index}",
            title=f"Arrays lesson {index}",
            module_id="arrays",
            module_name="Arrays",
            chapter_id=f"arrays-{index // 4 + 1}",
            order_index=index,
        )
        for index in range(8)
    ]
    items.extend(
        ContentItem(
            item_id=f"g{index}",
            title=f"Graphs lesson {index}",
            module_id="graphs",
            module_name="Graphs",
            chapter_id="graphs-1",
            order_index=8 + index,
        )
        for index in range(4)
    )
    items.append(
        ContentItem(
            item_id="draft",
            title="Unpublished draft",
            module_id="arrays",
            chapter_id="arrays-9",
            published=False,
            order_index=99,
        )
    )
    return items


def _service(
    tmp_path: Path,
    repository: Optional[LearningPathRepository] = None,
) -> Tuple[LearningPathService, sessionmaker[Session]]:
    engine = build_engine(f"sqlite:///{tmp_path / 'paths.db'}")
    create_schema(engine)
    factory = make_session_factory(engine)
    service = LearningPathService(
        session_factory=factory,
        repository=repository,
        cache=ScheduleCache(60),
        mapper=PathMigrationMapper(),
    )
    service.import_content(_catalog())
    return service, factory


def _commit(service: LearningPathService, title: str, **overrides: Any) -> str:
    result = service.generate_schedule({**RULE, **overrides}, preview=False, title=title)
    assert result.path_id is not None
    return result.path_id


def _find(factory: sessionmaker[Session], learner_id: str, path_id: str) -> Optional[LearnerProgressRecord]:
    with session_scope(commit=False, factory=factory) as session:
        return learning_paths.find_record(session, learner_id, path_id)


def test_preview_does_not_persist(tmp_path: Path) -> None:
    service, factory = _service(tmp_path)

    result = service.generate_schedule(RULE)

    assert result.preview
    assert result.path_id is None
    assert result.layout.total_lessons == 12
    with session_scope(commit=False, factory=factory) as session:
        assert session.execute(select(func.count()).select_from(LearningPathModel)).scalar_one() == 0


def test_commit_persists_schedule_and_caches_it(tmp_path: Path) -> None:
    service, factory = _service(tmp_path)

    result = service.generate_schedule(RULE, preview=False, title="Arrays and Graphs")
    assert result.path_id is not None
    assert len(service.cache) == 1

    service.cache.clear()
    schedule = service.get_schedule(result.path_id)
    assert schedule.slug == "arrays-and-graphs"
    assert schedule.is_dynamic
    assert schedule.total_slots == 12
    assert [slot.position for slot in schedule.slots] == [slot.position for slot in result.layout.slots]
    assert schedule.items[0].title == "Arrays lesson 0"
    assert "draft" not in schedule.item_ids

    with session_scope(commit=False, factory=factory) as session:
        stmt = select(func.count()).select_from(PersistenceAuditEventModel).where(
            PersistenceAuditEventModel.event_type == "schedule_create"
        )
        assert session.execute(stmt).scalar_one() == 1


def test_unknown_schedule_raises(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)
    with pytest.raises(ScheduleNotFound):
        service.get_schedule("missing")


def test_replace_schedule_swaps_slots_and_invalidates_cache(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)
    path_id = _commit(service, "Replace me")
    items = service.get_schedule(path_id).items[:4]

    slots = []
    for index, item in enumerate(items):
        week, day, order = slot_position(index, 1, 5)
        slots.append(ScheduleSlot(item=item, week_number=week, day_number=day, order_in_day=order))
    replaced = service.replace_schedule(path_id, list(reversed(slots)))

    assert replaced.item_ids == ["a0", "a1", "a2", "a3"]
    reloaded = service.get_schedule(path_id)
    assert reloaded.total_slots == 4
    assert reloaded.week_count == 1


def test_replace_schedule_rejects_duplicates_and_keeps_existing(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)
    path_id = _commit(service, "Keep me")
    first, second = service.get_schedule(path_id).items[:2]

    with pytest.raises(InvalidSchedule):
        service.replace_schedule(
            path_id,
            [
                ScheduleSlot(item=first, week_number=1, day_number=1, order_in_day=1),
                ScheduleSlot(item=second, week_number=1, day_number=1, order_in_day=1),
            ],
        )
    assert service.get_schedule(path_id).total_slots == 12

    with pytest.raises(ScheduleNotFound):
        service.replace_schedule("missing", [])


def test_templates_generate_with_overrides(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)
    template = service.create_template(
        PathTemplate(name="Arrays focus", rule=GenerationRule.from_payload({**RULE, "include_modules": ["arrays"]}))
    )
    assert template.template_id is not None

    preview = service.generate_from_template(template.template_id, overrides={"lessons_per_day": 4})
    assert preview.preview
    assert preview.template_id == template.template_id
    assert preview.layout.total_lessons == 8
    assert preview.layout.actual_duration_weeks == 1

    first = service.generate_from_template(template.template_id, preview=False)
    second = service.generate_from_template(template.template_id, preview=False)
    assert first.path_id is not None and second.path_id is not None
    assert service.get_schedule(first.path_id).slug == "arrays-focus"
    assert service.get_schedule(second.path_id).slug == "arrays-focus-2"
    assert service.get_schedule(first.path_id).template_id == template.template_id

    assert [entry.name for entry in service.list_templates()] == ["Arrays focus"]
    with pytest.raises(TemplateNotFound):
        service.generate_from_template("missing")


def test_enroll_complete_and_snapshot(tmp_path: Path) -> None:
    service, factory = _service(tmp_path)
    path_id = _commit(service, "Tracked")

    record = service.enroll("ada", path_id, now=NOW)
    assert record.is_active
    assert record.started_at == NOW

    updated = service.record_completion("ada", path_id, "a0", completed_at=NOW)
    assert updated.completed_item_ids == ["a0"]
    assert updated.current_streak == 1
    assert (updated.current_week, updated.current_day) == (1, 1)

    again = service.record_completion("ada", path_id, "a0", completed_at=NOW + timedelta(hours=1))
    assert again.completed_item_ids == ["a0"]

    snapshot = service.get_progress_snapshot("ada", path_id, now=NOW)
    assert snapshot.completed_count == 1
    assert snapshot.progress_percentage == 8.33
    assert snapshot.study_streak == 1
    assert snapshot.risk_level == RiskLevel.LOW

    with session_scope(commit=False, factory=factory) as session:
        assert len(learning_paths.list_completion_events(session, "ada")) == 1


def test_fresh_enrollment_round_trip(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)
    path_id = _commit(service, "Fresh")
    service.enroll("ada", path_id, now=NOW)

    snapshot = service.get_progress_snapshot("ada", path_id, now=NOW)

    assert snapshot.progress_percentage == 0.0
    assert snapshot.risk_level == RiskLevel.LOW
    assert snapshot.next_slot is not None and snapshot.next_slot.item.item_id == "a0"


def test_snapshot_for_unknown_learner_raises(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)
    path_id = _commit(service, "Nobody")
    with pytest.raises(RecordNotFound):
        service.get_progress_snapshot("ghost", path_id, now=NOW)


def test_enroll_is_idempotent_and_blocks_second_active_path(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)
    first = _commit(service, "First")
    second = _commit(service, "Second")

    record = service.enroll("ada", first, now=NOW)
    assert service.enroll("ada", first, now=NOW + timedelta(days=1)).record_id == record.record_id

    with pytest.raises(MigrationConflict):
        service.enroll("ada", second, now=NOW)


def test_switch_path_preserves_matched_credit(tmp_path: Path) -> None:
    service, factory = _service(tmp_path)
    source = _commit(service, "Full")
    target = _commit(service, "Arrays only", include_modules=["arrays"])
    service.enroll("ada", source, now=NOW - timedelta(days=3))
    for item_id in ("a0", "a1", "g0"):
        service.record_completion("ada", source, item_id, completed_at=NOW - timedelta(days=1))

    with capture_events("path_switch") as events:
        record = service.switch_path("ada", source, target, True, now=NOW)

    assert record.path_id == target
    assert record.is_active
    assert record.completed_item_ids == ["a0", "a1"]
    assert (record.current_week, record.current_day) == (1, 3)
    assert record.started_at == NOW

    old = _find(factory, "ada", source)
    assert old is not None and not old.is_active
    with session_scope(commit=False, factory=factory) as session:
        active = learning_paths.get_active_record(session, "ada")
    assert active is not None and active.path_id == target

    switch = events[-1]
    assert switch.payload["status"] == "success"
    assert switch.payload["mapped"] == 2
    assert switch.payload["unmatched"] == 1


def test_switch_without_preserving_progress_starts_fresh(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)
    source = _commit(service, "Full")
    target = _commit(service, "Arrays only", include_modules=["arrays"])
    service.enroll("ada", source, now=NOW)
    service.record_completion("ada", source, "a0", completed_at=NOW)

    record = service.switch_path("ada", source, target, False, now=NOW)

    assert record.completed_item_ids == []
    assert (record.current_week, record.current_day) == (1, 1)


def test_switch_path_conflicts(tmp_path: Path) -> None:
    service, factory = _service(tmp_path)
    source = _commit(service, "Full")
    target = _commit(service, "Arrays only", include_modules=["arrays"])

    with pytest.raises(MigrationConflict):
        service.switch_path("ada", source, source, True)
    with pytest.raises(MigrationConflict):
        service.switch_path("ada", source, target, True)

    service.enroll("ada", source, now=NOW)
    service.replace_schedule(target, [])
    with pytest.raises(MigrationConflict):
        service.switch_path("ada", source, target, True)

    record = _find(factory, "ada", source)
    assert record is not None and record.is_active


class _FailingRepository(LearningPathRepository):
    def save_record(self, session: Session, record: LearnerProgressRecord) -> LearnerProgressRecord:
        raise OperationalError("UPDATE learner_path_progress", {}, Exception("disk I/O error"))


def test_switch_path_rolls_back_on_persistence_failure(tmp_path: Path) -> None:
    service, factory = _service(tmp_path)
    source = _commit(service, "Full")
    target = _commit(service, "Arrays only", include_modules=["arrays"])
    service.enroll("ada", source, now=NOW)
    service.record_completion("ada", source, "a0", completed_at=NOW)

    failing = LearningPathService(
        session_factory=factory,
        repository=_FailingRepository(),
        cache=ScheduleCache(0),
        mapper=PathMigrationMapper(),
    )
    with pytest.raises(TransactionFailure):
        failing.switch_path("ada", source, target, True, now=NOW)

    record = _find(factory, "ada", source)
    assert record is not None
    assert record.is_active
    assert record.completed_item_ids == ["a0"]
    assert _find(factory, "ada", target) is None


def test_stale_progress_update_is_rejected(tmp_path: Path) -> None:
    service, factory = _service(tmp_path)
    path_id = _commit(service, "Versioned")
    service.enroll("ada", path_id, now=NOW)

    first = factory()
    second = factory()
    try:
        assert learning_paths.find_record(second, "ada", path_id) is not None
        learning_paths.deactivate_record(first, "ada", path_id)
        first.commit()

        stale = learning_paths.find_record(second, "ada", path_id)
        assert stale is not None
        with pytest.raises(StaleDataError):
            learning_paths.save_record(second, stale.model_copy(update={"current_day": 2}))
    finally:
        first.close()
        second.rollback()
        second.close()


def test_pause_and_resume(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)
    path_id = _commit(service, "Pausable")
    service.enroll("ada", path_id, now=NOW)

    assert service.pause("ada", path_id).is_paused
    resumed = service.resume("ada", path_id, at=NOW + timedelta(days=2))
    assert not resumed.is_paused
    assert resumed.last_activity_at == NOW + timedelta(days=2)


def test_completion_after_pause_resumes_the_record(tmp_path: Path) -> None:
    service, factory = _service(tmp_path)
    path_id = _commit(service, "Pausable")
    service.enroll("ada", path_id, now=NOW)
    service.pause("ada", path_id)

    record = service.record_completion("ada", path_id, "a0", completed_at=NOW)

    assert not record.is_paused
    assert record.completed_item_ids == ["a0"]
    stored = _find(factory, "ada", path_id)
    assert stored is not None and not stored.is_paused


def test_completion_on_inactive_record_is_refused(tmp_path: Path) -> None:
    service, factory = _service(tmp_path)
    source = _commit(service, "Full")
    target = _commit(service, "Arrays only", include_modules=["arrays"])
    service.enroll("ada", source, now=NOW)
    service.switch_path("ada", source, target, True, now=NOW)

    with pytest.raises(MigrationConflict):
        service.record_completion("ada", source, "a1", completed_at=NOW)

    record = _find(factory, "ada", source)
    assert record is not None
    assert not record.is_active
    assert record.completed_item_ids == []
    with session_scope(commit=False, factory=factory) as session:
        assert learning_paths.list_completion_events(session, "ada") == []


def test_active_record_lookup(tmp_path: Path) -> None:
    service, _ = _service(tmp_path)
    with pytest.raises(RecordNotFound):
        service.active_record("ada")

    path_id = _commit(service, "Active")
    service.enroll("ada", path_id, now=NOW)

    assert service.active_record(" ada ").path_id == path_id


class _NoIdRepository(LearningPathRepository):
    def create_schedule(self, session: Session, schedule: Schedule) -> Schedule:
        return super().create_schedule(session, schedule).model_copy(update={"path_id": None})


def test_persisted_schedule_without_id_is_a_transaction_failure(tmp_path: Path) -> None:
    service, _ = _service(tmp_path, repository=_NoIdRepository())

    with pytest.raises(TransactionFailure):
        service.generate_schedule(RULE, preview=False, title="Anonymous")
    assert len(service.cache) == 0


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_expired_schedules_are_evicted_on_store(tmp_path: Path) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'evict.db'}")
    create_schema(engine)
    clock = _Clock()
    service = LearningPathService(
        session_factory=make_session_factory(engine),
        cache=ScheduleCache(10, clock=clock),
        mapper=PathMigrationMapper(),
    )
    service.import_content(_catalog())

    _commit(service, "First")
    assert len(service.cache) == 1
    clock.now += 11
    second = _commit(service, "Second")

    assert len(service.cache) == 1
    assert service.cache.get(second) is not None
