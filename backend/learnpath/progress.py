"""Learner adherence tracking against an assigned schedule.

Everything here is a pure function of its inputs; callers pass ``now``
explicitly so the tracker can be exercised with synthetic clocks.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta, tzinfo
from typing import Dict, Iterable, List, Optional, Sequence

from .models import (
    CompletionEvent,
    LearnerProgressRecord,
    PaceStatus,
    ProgressSnapshot,
    RiskLevel,
    Schedule,
    ScheduleSlot,
    WeeklyProgress,
    ensure_utc,
)

logger = logging.getLogger(__name__)

TOLERANCE_BAND = 5.0
HIGH_RISK_DEFICIT = 15.0
MEDIUM_RISK_DEFICIT = 5.0
MIN_VELOCITY_PER_DAY = 0.1
SECONDS_PER_DAY = 86_400


def _ceil_days(later: datetime, earlier: datetime) -> int:
    return math.ceil((later - earlier).total_seconds() / SECONDS_PER_DAY)


def _local_date(moment: datetime, tz: Optional[tzinfo]) -> date:
    moment = ensure_utc(moment)  # type: ignore[assignment]
    return moment.astimezone(tz).date() if tz is not None else moment.date()


def classify_risk(progress_percentage: float, expected_progress: float) -> RiskLevel:
    if progress_percentage < expected_progress - HIGH_RISK_DEFICIT:
        return RiskLevel.HIGH
    if progress_percentage < expected_progress - MEDIUM_RISK_DEFICIT:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def completion_probability(
    progress_percentage: float,
    days_elapsed: int,
    days_remaining: Optional[int],
) -> float:
    """Ratio of the learner's daily rate to the rate needed to finish on time."""
    if days_remaining is None or progress_percentage >= 100:
        return 100.0
    actual_rate = progress_percentage / max(days_elapsed, 1)
    required_rate = (100.0 - progress_percentage) / max(days_remaining, 1)
    return round(min(100.0, actual_rate / required_rate * 100.0), 2)


def compute_study_streak(
    completion_times: Iterable[datetime],
    today: date,
    *,
    tz: Optional[tzinfo] = None,
) -> int:
    """Count consecutive study days ending today or yesterday."""
    days = {_local_date(moment, tz) for moment in completion_times}
    if today in days:
        cursor = today
    elif today - timedelta(days=1) in days:
        cursor = today - timedelta(days=1)
    else:
        return 0
    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def longest_study_streak(completion_times: Iterable[datetime], *, tz: Optional[tzinfo] = None) -> int:
    days = sorted({_local_date(moment, tz) for moment in completion_times})
    longest = 0
    run = 0
    previous: Optional[date] = None
    for day in days:
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
        longest = max(longest, run)
        previous = day
    return longest


def weekly_progress(slots: Sequence[ScheduleSlot], completed_ids: Iterable[str]) -> List[WeeklyProgress]:
    completed = set(completed_ids)
    totals: Dict[int, List[int]] = {}
    for slot in slots:
        bucket = totals.setdefault(slot.week_number, [0, 0])
        bucket[0] += 1
        if slot.item.item_id in completed:
            bucket[1] += 1
    return [
        WeeklyProgress(
            week_number=week,
            total=total,
            completed=done,
            percentage=round(done / total * 100.0, 2) if total else 0.0,
        )
        for week, (total, done) in sorted(totals.items())
    ]


def next_open_slot(slots: Sequence[ScheduleSlot], completed_ids: Iterable[str]) -> Optional[ScheduleSlot]:
    completed = set(completed_ids)
    return next((slot for slot in slots if slot.item.item_id not in completed), None)


class ProgressTracker:
    """Computes :class:`ProgressSnapshot` values from a record and its schedule."""

    def snapshot(
        self,
        record: LearnerProgressRecord,
        schedule: Schedule,
        now: datetime,
        completion_events: Sequence[CompletionEvent] = (),
        *,
        tz: Optional[tzinfo] = None,
    ) -> ProgressSnapshot:
        now = ensure_utc(now)  # type: ignore[assignment]
        scheduled_ids = set(schedule.item_ids)
        completed_ids = list(dict.fromkeys(i for i in record.completed_item_ids if i in scheduled_ids))
        total_slots = schedule.total_slots
        completed_count = len(completed_ids)

        progress = completed_count / total_slots * 100.0 if total_slots else 0.0
        progress = round(min(max(progress, 0.0), 100.0), 2)

        days_elapsed = max(_ceil_days(now, record.started_at), 0)
        days_remaining: Optional[int] = None
        total_planned_days: Optional[int] = None
        expected = 0.0
        if record.target_date is not None:
            days_remaining = _ceil_days(record.target_date, now)
            total_planned_days = _ceil_days(record.target_date, record.started_at)
            if total_planned_days > 0:
                expected = min(days_elapsed / total_planned_days * 100.0, 100.0)
            else:
                expected = 100.0
        expected = round(expected, 2)

        is_on_track = progress >= expected - TOLERANCE_BAND
        if progress > expected + TOLERANCE_BAND:
            pace_status = PaceStatus.AHEAD
        elif is_on_track:
            pace_status = PaceStatus.ON_TRACK
        else:
            pace_status = PaceStatus.BEHIND

        velocity = completed_count / max(days_elapsed, 1)
        remaining_items = total_slots - completed_count
        if remaining_items <= 0:
            projected = record.completed_at or now
        else:
            projected = now + timedelta(days=math.ceil(remaining_items / max(velocity, MIN_VELOCITY_PER_DAY)))

        buffer_days: Optional[int] = None
        if days_remaining is not None:
            daily_percent = max(progress / max(days_elapsed, 1), 1.0)
            days_needed = math.ceil((100.0 - progress) / daily_percent)
            buffer_days = max(0, days_remaining - days_needed)

        today = _local_date(now, tz)
        if completion_events:
            times = [event.completed_at for event in completion_events]
            streak = compute_study_streak(times, today, tz=tz)
            longest = max(record.longest_streak, longest_study_streak(times, tz=tz))
        else:
            streak = record.current_streak
            if record.last_activity_at is None or (today - _local_date(record.last_activity_at, tz)).days > 1:
                streak = 0
            longest = record.longest_streak
        longest = max(longest, streak)

        return ProgressSnapshot(
            learner_id=record.learner_id,
            path_id=record.path_id,
            computed_at=now,
            completed_count=completed_count,
            total_slots=total_slots,
            progress_percentage=progress,
            days_elapsed=days_elapsed,
            days_remaining=days_remaining,
            total_planned_days=total_planned_days,
            expected_progress=expected,
            is_on_track=is_on_track,
            pace_status=pace_status,
            risk_level=classify_risk(progress, expected),
            completion_probability=completion_probability(progress, days_elapsed, days_remaining),
            learning_velocity=round(velocity, 2),
            projected_completion_date=projected,
            buffer_days=buffer_days,
            study_streak=streak,
            longest_streak=longest,
            weekly_progress=weekly_progress(schedule.slots, completed_ids),
            next_slot=next_open_slot(schedule.slots, completed_ids),
        )


def apply_completion(
    record: LearnerProgressRecord,
    item_id: str,
    completed_at: datetime,
    schedule: Schedule,
    *,
    tz: Optional[tzinfo] = None,
) -> LearnerProgressRecord:
    """Return ``record`` updated for one completion; duplicates are no-ops."""
    completed_at = ensure_utc(completed_at)  # type: ignore[assignment]
    if item_id in record.completed_item_ids:
        return record
    if item_id not in set(schedule.item_ids):
        logger.debug("Ignoring completion of %s; not on path %s", item_id, record.path_id)
        return record

    streak = 1
    if record.last_activity_at is not None:
        gap = (_local_date(completed_at, tz) - _local_date(record.last_activity_at, tz)).days
        if gap <= 0:
            streak = max(record.current_streak, 1)
        elif gap == 1:
            streak = record.current_streak + 1

    completed_ids = [*record.completed_item_ids, item_id]
    update: Dict[str, object] = {
        "completed_item_ids": completed_ids,
        "last_activity_at": max(completed_at, record.last_activity_at or completed_at),
        "current_streak": streak,
        "longest_streak": max(record.longest_streak, streak),
    }
    upcoming = next_open_slot(schedule.slots, completed_ids)
    if upcoming is not None:
        update["current_week"] = upcoming.week_number
        update["current_day"] = upcoming.day_number
    elif record.completed_at is None:
        update["completed_at"] = completed_at
    return record.model_copy(update=update)


def pause_record(record: LearnerProgressRecord) -> LearnerProgressRecord:
    return record.model_copy(update={"is_paused": True})


def resume_record(record: LearnerProgressRecord, at: datetime) -> LearnerProgressRecord:
    return record.model_copy(update={"is_paused": False, "last_activity_at": ensure_utc(at)})


__all__ = [
    "HIGH_RISK_DEFICIT",
    "MEDIUM_RISK_DEFICIT",
    "ProgressTracker",
    "TOLERANCE_BAND",
    "apply_completion",
    "classify_risk",
    "completion_probability",
    "compute_study_streak",
    "longest_study_streak",
    "next_open_slot",
    "pause_record",
    "resume_record",
    "weekly_progress",
]
