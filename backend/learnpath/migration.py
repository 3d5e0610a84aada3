"""Credit mapping when a learner moves between two schedules."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .models import ContentItem, MigrationMatch, MigrationResult, Schedule

logger = logging.getLogger(__name__)

DEFAULT_REFERENCE_WEEKLY_PACE = 5

_MATCHERS: Tuple[Tuple[str, Callable[[ContentItem], str]], ...] = (
    ("title", lambda item: item.title.strip().casefold()),
    ("slug", lambda item: item.resolved_slug),
    ("chapter", lambda item: item.chapter_id),
)


def estimate_position(completed_count: int, reference_pace: int = DEFAULT_REFERENCE_WEEKLY_PACE) -> Tuple[int, int]:
    """Week/day estimate at a fixed items-per-week pace, one item per day."""
    pace = max(int(reference_pace), 1)
    return completed_count // pace + 1, completed_count % pace + 1


class PathMigrationMapper:
    """Maps completed items on one schedule onto equivalents on another."""

    def __init__(self, *, reference_weekly_pace: int = DEFAULT_REFERENCE_WEEKLY_PACE) -> None:
        self._reference_pace = max(int(reference_weekly_pace), 1)

    @property
    def reference_weekly_pace(self) -> int:
        return self._reference_pace

    def migrate(
        self,
        completed: Sequence[ContentItem],
        source_schedule: Schedule,
        target_schedule: Schedule,
    ) -> MigrationResult:
        ordered = self._in_source_order(completed, source_schedule)
        pool: List[Optional[ContentItem]] = list(self._distinct(target_schedule.items))

        mapped: List[str] = []
        unmatched: List[str] = []
        matches: List[MigrationMatch] = []
        for item in ordered:
            hit = self._claim(item, pool)
            if hit is None:
                unmatched.append(item.item_id)
                continue
            target, reason = hit
            mapped.append(target.item_id)
            matches.append(
                MigrationMatch(source_item_id=item.item_id, target_item_id=target.item_id, matched_by=reason)  # type: ignore[arg-type]
            )

        if unmatched:
            logger.info(
                "Dropping credit for %s completed item(s) with no equivalent on path %s",
                len(unmatched),
                target_schedule.path_id,
            )
        week, day = estimate_position(len(mapped), self._reference_pace)
        return MigrationResult(
            mapped_completed_ids=mapped,
            unmatched_item_ids=unmatched,
            matches=matches,
            estimated_week=week,
            estimated_day=day,
        )

    @staticmethod
    def _claim(item: ContentItem, pool: List[Optional[ContentItem]]) -> Optional[Tuple[ContentItem, str]]:
        for reason, key in _MATCHERS:
            wanted = key(item)
            if not wanted:
                continue
            for index, candidate in enumerate(pool):
                if candidate is not None and key(candidate) == wanted:
                    pool[index] = None
                    return candidate, reason
        return None

    @staticmethod
    def _distinct(items: Sequence[ContentItem]) -> List[ContentItem]:
        seen: Dict[str, ContentItem] = {}
        for item in items:
            seen.setdefault(item.item_id, item)
        return list(seen.values())

    def _in_source_order(self, completed: Sequence[ContentItem], source: Schedule) -> List[ContentItem]:
        rank = {item_id: index for index, item_id in reversed(list(enumerate(source.item_ids)))}
        distinct = self._distinct(completed)
        return sorted(distinct, key=lambda item: (item.item_id not in rank, rank.get(item.item_id, 0)))


__all__ = ["DEFAULT_REFERENCE_WEEKLY_PACE", "PathMigrationMapper", "estimate_position"]
