"""Selection plus layout: the path generation pipeline."""

from __future__ import annotations

import logging
import time
from typing import Optional, Sequence

from .constraints import ConstraintEvaluator
from .errors import EmptyContentSet
from .models import ContentItem, GenerationRule, LayoutResult, Schedule, slugify
from .scheduler import Scheduler
from .telemetry import emit_event

logger = logging.getLogger(__name__)


class PathGenerator:
    """Runs the constraint evaluator and scheduler over a catalog snapshot."""

    def __init__(
        self,
        *,
        evaluator: Optional[ConstraintEvaluator] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self._evaluator = evaluator or ConstraintEvaluator()
        self._scheduler = scheduler or Scheduler()

    def generate(self, catalog: Sequence[ContentItem], rule: GenerationRule) -> LayoutResult:
        rule.ensure_valid()
        start = time.perf_counter()
        try:
            selected = self._evaluator.select(catalog, rule)
        except EmptyContentSet as exc:
            emit_event(
                "schedule_generation",
                status="empty",
                catalog_size=len(catalog),
                duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
                error=exc.message,
            )
            raise
        layout = self._scheduler.layout(selected, rule)
        emit_event(
            "schedule_generation",
            status="success",
            catalog_size=len(catalog),
            total_lessons=layout.total_lessons,
            total_estimated_hours=layout.total_estimated_hours,
            actual_duration_weeks=layout.actual_duration_weeks,
            target_duration_weeks=layout.target_duration_weeks,
            duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
        )
        return layout

    @staticmethod
    def to_schedule(
        layout: LayoutResult,
        rule: GenerationRule,
        *,
        title: str = "",
        description: str = "",
        template_id: Optional[str] = None,
    ) -> Schedule:
        return Schedule(
            title=title,
            slug=slugify(title) if title else None,
            description=description,
            target_duration_weeks=rule.target_duration_weeks,
            days_per_week=rule.days_per_week,
            template_id=template_id,
            is_dynamic=True,
            slots=[slot.model_copy() for slot in layout.slots],
        )


__all__ = ["PathGenerator"]
