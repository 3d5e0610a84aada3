"""Week/day/slot layout of selected content."""

from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Dict, Iterable, List, Sequence, Tuple

from .errors import EmptyContentSet, InvalidSchedule
from .models import (
    ContentItem,
    ContentSummary,
    DayLoad,
    GenerationRule,
    LayoutResult,
    ScheduleSlot,
)

logger = logging.getLogger(__name__)


def slot_position(index: int, lessons_per_day: int, days_per_week: int) -> Tuple[int, int, int]:
    """Return the 1-based ``(week, day, order)`` for the ``index``-th item."""
    day_index = index // lessons_per_day
    week_number = day_index // days_per_week + 1
    day_number = day_index % days_per_week + 1
    order_in_day = index % lessons_per_day + 1
    return week_number, day_number, order_in_day


def sort_slots(slots: Iterable[ScheduleSlot]) -> List[ScheduleSlot]:
    return sorted(slots, key=lambda slot: slot.position)


def validate_slot_layout(slots: Sequence[ScheduleSlot]) -> None:
    """Raise :class:`InvalidSchedule` unless positions are unique and non-decreasing."""
    seen: Dict[Tuple[int, int, int], str] = {}
    previous: Tuple[int, int] | None = None
    for index, slot in enumerate(slots):
        position = slot.position
        if position in seen:
            raise InvalidSchedule(
                f"Slot position week {position[0]} day {position[1]} order {position[2]} is used twice.",
                details={"position": list(position), "item_ids": [seen[position], slot.item.item_id]},
            )
        seen[position] = slot.item.item_id
        week_day = (slot.week_number, slot.day_number)
        if previous is not None and week_day < previous:
            raise InvalidSchedule(
                f"Slot {index} moves back from week {previous[0]} day {previous[1]} "
                f"to week {week_day[0]} day {week_day[1]}.",
                details={"index": index},
            )
        previous = week_day


def summarize_content(items: Iterable[ContentItem]) -> ContentSummary:
    by_module: Counter[str] = Counter()
    by_difficulty: Counter[str] = Counter()
    by_type: Counter[str] = Counter()
    for item in items:
        by_module[item.module_name or item.module_id] += 1
        by_difficulty[item.difficulty.value] += 1
        by_type[item.content_type.value] += 1
    return ContentSummary(
        by_module=dict(by_module),
        by_difficulty=dict(by_difficulty),
        by_type=dict(by_type),
    )


class Scheduler:
    """Lays ordered content into a fixed-pace week/day grid.

    Items are never dropped or padded to hit the rule's target duration; the
    difference is reported on the result for the caller to act on.
    """

    def layout(self, items: Sequence[ContentItem], rule: GenerationRule) -> LayoutResult:
        rule.ensure_valid()
        if not items:
            raise EmptyContentSet("Cannot lay out a schedule without content.")

        lessons_per_day = int(rule.lessons_per_day)  # type: ignore[arg-type]
        days_per_week = int(rule.days_per_week)  # type: ignore[arg-type]
        hours_per_day = float(rule.estimated_hours_per_day)  # type: ignore[arg-type]
        default_slot_hours = hours_per_day / lessons_per_day
        optional_ids = set(rule.optional_item_ids)

        slots: List[ScheduleSlot] = []
        day_totals: Dict[Tuple[int, int], List[float]] = {}
        for index, item in enumerate(items):
            week_number, day_number, order_in_day = slot_position(index, lessons_per_day, days_per_week)
            hours = item.estimated_hours if item.estimated_hours is not None else default_slot_hours
            slots.append(
                ScheduleSlot(
                    item=item,
                    week_number=week_number,
                    day_number=day_number,
                    order_in_day=order_in_day,
                    is_required=item.item_id not in optional_ids,
                    estimated_hours=round(hours, 4),
                )
            )
            day_totals.setdefault((week_number, day_number), []).append(hours)

        day_loads = [
            DayLoad(
                week_number=week_number,
                day_number=day_number,
                lesson_count=len(hours),
                total_hours=round(sum(hours), 4),
                budget_hours=hours_per_day,
            )
            for (week_number, day_number), hours in day_totals.items()
        ]

        actual_weeks = math.ceil(len(items) / rule.lessons_per_week)
        target_weeks = int(rule.target_duration_weeks)  # type: ignore[arg-type]
        mismatch = actual_weeks - target_weeks
        if mismatch:
            logger.info(
                "Layout spans %s weeks against a %s week target (%+d).",
                actual_weeks,
                target_weeks,
                mismatch,
            )

        return LayoutResult(
            slots=slots,
            total_lessons=len(slots),
            total_estimated_hours=round(sum(slot.estimated_hours for slot in slots), 4),
            actual_duration_weeks=actual_weeks,
            target_duration_weeks=target_weeks,
            duration_mismatch_weeks=mismatch,
            day_loads=day_loads,
            content_summary=summarize_content(items),
        )


__all__ = [
    "Scheduler",
    "slot_position",
    "sort_slots",
    "summarize_content",
    "validate_slot_layout",
]
