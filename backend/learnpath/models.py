"""Domain models for catalog content, generation rules, schedules and learner progress."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidRule

_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    return _SLUG_PATTERN.sub("-", value.strip().lower()).strip("-")


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Difficulty(str, Enum):
    BEGINNER = "BEGINNER"
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"

    @property
    def rank(self) -> int:
        return _DIFFICULTY_ORDER.index(self)


_DIFFICULTY_ORDER = [Difficulty.BEGINNER, Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD]


class ContentType(str, Enum):
    THEORY = "theory"
    PRACTICE = "practice"
    MIXED = "mixed"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class PaceStatus(str, Enum):
    AHEAD = "AHEAD"
    ON_TRACK = "ON_TRACK"
    BEHIND = "BEHIND"


class ContentItem(BaseModel):
    """Read-only catalog entry for a single lesson."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    title: str
    slug: Optional[str] = None
    module_id: str
    module_name: str = ""
    chapter_id: str
    chapter_title: str = ""
    difficulty: Difficulty = Difficulty.MEDIUM
    content_type: ContentType = ContentType.MIXED
    estimated_hours: Optional[float] = Field(default=None, ge=0.0)
    published: bool = True
    prerequisite_ids: List[str] = Field(default_factory=list)
    company_tags: List[str] = Field(default_factory=list)
    company_relevance: Dict[str, float] = Field(default_factory=dict)
    order_index: int = 0

    @property
    def resolved_slug(self) -> str:
        return self.slug or slugify(self.title)

    def in_module(self, names: List[str]) -> bool:
        return self.module_name in names or self.module_id in names


class GenerationRule(BaseModel):
    """Typed description of the schedule a caller wants generated.

    Pace fields are optional at the type level so that a missing value surfaces
    as :class:`InvalidRule` from :meth:`ensure_valid` rather than as a generic
    validation error deep inside the pipeline.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    target_duration_weeks: Optional[int] = None
    lessons_per_day: Optional[int] = None
    days_per_week: Optional[int] = None
    estimated_hours_per_day: Optional[float] = None
    min_difficulty: Optional[Difficulty] = None
    max_difficulty: Optional[Difficulty] = None
    include_modules: List[str] = Field(default_factory=list)
    exclude_modules: List[str] = Field(default_factory=list)
    balance_theory_practice: bool = False
    company_focus: List[str] = Field(default_factory=list)
    optional_item_ids: List[str] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "GenerationRule":
        try:
            rule = cls.model_validate(dict(payload))
        except ValidationError as exc:
            raise InvalidRule(
                "Generation rule payload is malformed.",
                details={"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
            ) from exc
        return rule.ensure_valid()

    def ensure_valid(self) -> "GenerationRule":
        missing: List[str] = []
        for field in ("lessons_per_day", "days_per_week", "estimated_hours_per_day", "target_duration_weeks"):
            value = getattr(self, field)
            if value is None or value <= 0:
                missing.append(field)
        if missing:
            raise InvalidRule(
                f"Generation rule requires positive values for: {', '.join(missing)}.",
                details={"fields": missing},
            )
        if self.days_per_week is not None and self.days_per_week > 7:
            raise InvalidRule("days_per_week cannot exceed 7.", details={"fields": ["days_per_week"]})
        if (
            self.min_difficulty is not None
            and self.max_difficulty is not None
            and self.min_difficulty.rank > self.max_difficulty.rank
        ):
            raise InvalidRule(
                "min_difficulty cannot be harder than max_difficulty.",
                details={"fields": ["min_difficulty", "max_difficulty"]},
            )
        return self

    @property
    def lessons_per_week(self) -> int:
        self.ensure_valid()
        return int(self.lessons_per_day) * int(self.days_per_week)  # type: ignore[arg-type]


class ScheduleSlot(BaseModel):
    """Binding of one content item to a (week, day, order) position."""

    item: ContentItem
    week_number: int = Field(ge=1)
    day_number: int = Field(ge=1)
    order_in_day: int = Field(ge=1)
    is_required: bool = True
    estimated_hours: float = Field(default=1.0, ge=0.0)

    @property
    def position(self) -> tuple[int, int, int]:
        return (self.week_number, self.day_number, self.order_in_day)


class Schedule(BaseModel):
    """A learning path instance: an ordered slot sequence."""

    path_id: Optional[str] = None
    title: str = ""
    slug: Optional[str] = None
    description: str = ""
    target_duration_weeks: Optional[int] = None
    days_per_week: Optional[int] = None
    template_id: Optional[str] = None
    is_dynamic: bool = False
    generated_at: datetime = Field(default_factory=utcnow)
    slots: List[ScheduleSlot] = Field(default_factory=list)

    @field_validator("generated_at")
    @classmethod
    def normalize_generated_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)  # type: ignore[return-value]

    @property
    def items(self) -> List[ContentItem]:
        return [slot.item for slot in self.slots]

    @property
    def item_ids(self) -> List[str]:
        return [slot.item.item_id for slot in self.slots]

    @property
    def total_slots(self) -> int:
        return len(self.slots)

    @property
    def total_estimated_hours(self) -> float:
        return round(sum(slot.estimated_hours for slot in self.slots), 4)

    @property
    def week_count(self) -> int:
        return max((slot.week_number for slot in self.slots), default=0)


class DayLoad(BaseModel):
    week_number: int
    day_number: int
    lesson_count: int
    total_hours: float
    budget_hours: float

    @property
    def delta_hours(self) -> float:
        return round(self.total_hours - self.budget_hours, 4)

    @property
    def over_budget(self) -> bool:
        return self.delta_hours > 0


class ContentSummary(BaseModel):
    by_module: Dict[str, int] = Field(default_factory=dict)
    by_difficulty: Dict[str, int] = Field(default_factory=dict)
    by_type: Dict[str, int] = Field(default_factory=dict)


class LayoutResult(BaseModel):
    """Scheduler output, including the mismatch against the rule's target."""

    slots: List[ScheduleSlot] = Field(default_factory=list)
    total_lessons: int = 0
    total_estimated_hours: float = 0.0
    actual_duration_weeks: int = 0
    target_duration_weeks: Optional[int] = None
    duration_mismatch_weeks: int = 0
    day_loads: List[DayLoad] = Field(default_factory=list)
    content_summary: ContentSummary = Field(default_factory=ContentSummary)

    @property
    def matches_target(self) -> bool:
        return self.duration_mismatch_weeks == 0

    @property
    def over_budget_days(self) -> List[DayLoad]:
        return [load for load in self.day_loads if load.over_budget]


class GeneratedPath(BaseModel):
    preview: bool
    path_id: Optional[str] = None
    template_id: Optional[str] = None
    layout: LayoutResult


class CompletionEvent(BaseModel):
    item_id: str
    completed_at: datetime

    @field_validator("completed_at")
    @classmethod
    def normalize_completed_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)  # type: ignore[return-value]


class LearnerProgressRecord(BaseModel):
    """Per (learner, path) progress state."""

    record_id: Optional[str] = None
    learner_id: str
    path_id: str
    current_week: int = Field(default=1, ge=1)
    current_day: int = Field(default=1, ge=1)
    completed_item_ids: List[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    last_activity_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    is_active: bool = True
    is_paused: bool = False
    target_date: Optional[datetime] = None
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)

    @field_validator("started_at", "last_activity_at", "completed_at", "target_date")
    @classmethod
    def normalize_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class WeeklyProgress(BaseModel):
    week_number: int
    total: int
    completed: int
    percentage: float


class ProgressSnapshot(BaseModel):
    """Derived view of a learner's adherence; recomputed on demand."""

    learner_id: str
    path_id: str
    computed_at: datetime
    completed_count: int
    total_slots: int
    progress_percentage: float
    days_elapsed: int
    days_remaining: Optional[int] = None
    total_planned_days: Optional[int] = None
    expected_progress: float
    is_on_track: bool
    pace_status: PaceStatus
    risk_level: RiskLevel
    completion_probability: float
    learning_velocity: float
    projected_completion_date: datetime
    buffer_days: Optional[int] = None
    study_streak: int = 0
    longest_streak: int = 0
    weekly_progress: List[WeeklyProgress] = Field(default_factory=list)
    next_slot: Optional[ScheduleSlot] = None


class MigrationMatch(BaseModel):
    source_item_id: str
    target_item_id: str
    matched_by: Literal["title", "slug", "chapter"]


class MigrationResult(BaseModel):
    mapped_completed_ids: List[str] = Field(default_factory=list)
    unmatched_item_ids: List[str] = Field(default_factory=list)
    matches: List[MigrationMatch] = Field(default_factory=list)
    estimated_week: int = 1
    estimated_day: int = 1


class PathTemplate(BaseModel):
    """Reusable, named generation rule."""

    template_id: Optional[str] = None
    name: str
    description: str = ""
    rule: GenerationRule
    is_active: bool = True

    def rule_with_overrides(self, overrides: Optional[Mapping[str, Any]] = None) -> GenerationRule:
        if not overrides:
            return self.rule.ensure_valid()
        merged = self.rule.model_dump()
        merged.update(overrides)
        return GenerationRule.from_payload(merged)


__all__ = [
    "CompletionEvent",
    "ContentItem",
    "ContentSummary",
    "ContentType",
    "DayLoad",
    "Difficulty",
    "GeneratedPath",
    "GenerationRule",
    "LayoutResult",
    "LearnerProgressRecord",
    "MigrationMatch",
    "MigrationResult",
    "PaceStatus",
    "PathTemplate",
    "ProgressSnapshot",
    "RiskLevel",
    "Schedule",
    "ScheduleSlot",
    "WeeklyProgress",
    "ensure_utc",
    "slugify",
    "utcnow",
]
