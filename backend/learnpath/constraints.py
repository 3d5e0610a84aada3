"""Catalog filtering and ordering against a generation rule."""

from __future__ import annotations

import heapq
import logging
from typing import Dict, Iterable, List, Sequence, Set, Tuple

from .errors import EmptyContentSet
from .models import ContentItem, ContentType, GenerationRule

logger = logging.getLogger(__name__)

COMPANY_RELEVANCE_THRESHOLD = 0.5


def matches_company_focus(item: ContentItem, focus: Iterable[str]) -> bool:
    wanted = {tag.strip().lower() for tag in focus if tag and tag.strip()}
    if not wanted:
        return False
    if any(tag.strip().lower() in wanted for tag in item.company_tags):
        return True
    return any(
        company.strip().lower() in wanted and score > COMPANY_RELEVANCE_THRESHOLD
        for company, score in item.company_relevance.items()
    )


class ConstraintEvaluator:
    """Selects and orders catalog items for a generation rule.

    The output is a pure function of ``(catalog, rule)``: every tie is broken
    by catalog position so previews are reproducible.
    """

    def select(self, catalog: Sequence[ContentItem], rule: GenerationRule) -> List[ContentItem]:
        rule.ensure_valid()
        filtered = self.filter_content(catalog, rule)
        if not filtered:
            raise EmptyContentSet(
                "No published content matches the generation rule.",
                details={
                    "catalog_size": len(catalog),
                    "include_modules": list(rule.include_modules),
                    "exclude_modules": list(rule.exclude_modules),
                    "min_difficulty": rule.min_difficulty.value if rule.min_difficulty else None,
                    "max_difficulty": rule.max_difficulty.value if rule.max_difficulty else None,
                },
            )
        ordered = self.order_content(filtered, rule)
        ordered = self._order_prerequisites_first(ordered)
        if rule.balance_theory_practice:
            ordered = self.balance_theory_practice(ordered)
        logger.debug("Selected %s of %s catalog items", len(ordered), len(catalog))
        return ordered

    def filter_content(self, catalog: Sequence[ContentItem], rule: GenerationRule) -> List[ContentItem]:
        filtered = [item for item in catalog if item.published]

        if rule.include_modules:
            filtered = [item for item in filtered if item.in_module(rule.include_modules)]
        if rule.exclude_modules:
            filtered = [item for item in filtered if not item.in_module(rule.exclude_modules)]

        if rule.min_difficulty is not None:
            floor = rule.min_difficulty.rank
            filtered = [item for item in filtered if item.difficulty.rank >= floor]
        if rule.max_difficulty is not None:
            ceiling = rule.max_difficulty.rank
            filtered = [item for item in filtered if item.difficulty.rank <= ceiling]

        return filtered

    def order_content(self, items: Sequence[ContentItem], rule: GenerationRule) -> List[ContentItem]:
        module_rank: Dict[str, int] = {}
        for item in items:
            module_rank.setdefault(item.module_id, len(module_rank))

        def sort_key(entry: Tuple[int, ContentItem]) -> Tuple[int, int, int, int]:
            position, item = entry
            focus_miss = 0 if matches_company_focus(item, rule.company_focus) else 1
            return (module_rank[item.module_id], item.difficulty.rank, focus_miss, position)

        return [item for _, item in sorted(enumerate(items), key=sort_key)]

    def _order_prerequisites_first(self, items: List[ContentItem]) -> List[ContentItem]:
        position = {item.item_id: index for index, item in enumerate(items)}
        dependants: Dict[str, Set[str]] = {item.item_id: set() for item in items}
        indegree: Dict[str, int] = {item.item_id: 0 for item in items}

        for item in items:
            for prerequisite in item.prerequisite_ids:
                if prerequisite == item.item_id:
                    logger.warning("Content item %s lists itself as a prerequisite; skipping.", item.item_id)
                    continue
                if prerequisite not in position:
                    continue
                if item.item_id in dependants[prerequisite]:
                    continue
                dependants[prerequisite].add(item.item_id)
                indegree[item.item_id] += 1

        if not any(indegree.values()):
            return items

        available: List[Tuple[int, str]] = []
        for item_id, degree in indegree.items():
            if degree == 0:
                heapq.heappush(available, (position[item_id], item_id))

        ordered_ids: List[str] = []
        while available:
            _, item_id = heapq.heappop(available)
            ordered_ids.append(item_id)
            for dependant in dependants[item_id]:
                indegree[dependant] -= 1
                if indegree[dependant] == 0:
                    heapq.heappush(available, (position[dependant], dependant))

        if len(ordered_ids) != len(items):
            unresolved = sorted(item_id for item_id, degree in indegree.items() if degree > 0)
            logger.warning(
                "Detected prerequisite cycle involving %s; keeping catalog order.",
                ", ".join(unresolved),
            )
            return items

        by_id = {item.item_id: item for item in items}
        return [by_id[item_id] for item_id in ordered_ids]

    @staticmethod
    def balance_theory_practice(items: Sequence[ContentItem]) -> List[ContentItem]:
        theory = [item for item in items if item.content_type == ContentType.THEORY]
        practice = [item for item in items if item.content_type == ContentType.PRACTICE]
        mixed = [item for item in items if item.content_type == ContentType.MIXED]

        balanced: List[ContentItem] = []
        for index in range(max(len(theory), len(practice))):
            if index < len(theory):
                balanced.append(theory[index])
            if index < len(practice):
                balanced.append(practice[index])
        balanced.extend(mixed)
        return balanced


__all__ = ["COMPANY_RELEVANCE_THRESHOLD", "ConstraintEvaluator", "matches_company_focus"]
