"""Content selection and ordering for generation rules."""

from __future__ import annotations

import logging
from typing import Any

import pytest

from learnpath.constraints import ConstraintEvaluator, matches_company_focus
from learnpath.errors import EmptyContentSet
from learnpath.models import ContentItem, ContentType, Difficulty, GenerationRule


def _item(
    item_id: str,
    *,
    module: str = "arrays",
    difficulty: Difficulty = Difficulty.EASY,
    content_type: ContentType = ContentType.MIXED,
    **extra: Any,
) -> ContentItem:
    return ContentItem(
        item_id=item_id,
        title=f"Lesson {item_id}",
        module_id=module,
        module_name=module.title(),
        chapter_id=f"{module}-ch1",
        difficulty=difficulty,
        content_type=content_type,
        **extra,
    )


def _rule(**overrides: Any) -> GenerationRule:
    payload: dict[str, Any] = {
        "target_duration_weeks": 2,
        "lessons_per_day": 2,
        "days_per_week": 5,
        "estimated_hours_per_day": 2.0,
    }
    payload.update(overrides)
    return GenerationRule.from_payload(payload)


def _ids(items: list[ContentItem]) -> list[str]:
    return [item.item_id for item in items]


def test_select_drops_unpublished_and_out_of_band_difficulty() -> None:
    catalog = [
        _item("a", difficulty=Difficulty.BEGINNER),
        _item("b", difficulty=Difficulty.EASY),
        _item("c", difficulty=Difficulty.MEDIUM),
        _item("d", difficulty=Difficulty.HARD),
        _item("e", difficulty=Difficulty.EASY, published=False),
    ]
    selected = ConstraintEvaluator().select(catalog, _rule(min_difficulty="EASY", max_difficulty="MEDIUM"))
    assert _ids(selected) == ["b", "c"]


def test_include_and_exclude_modules_match_id_or_name() -> None:
    catalog = [
        _item("a1", module="arrays"),
        _item("g1", module="graphs"),
        _item("d1", module="dp"),
        _item("a2", module="arrays"),
    ]
    rule = _rule(include_modules=["arrays", "Graphs"], exclude_modules=["graphs"])
    assert _ids(ConstraintEvaluator().select(catalog, rule)) == ["a1", "a2"]


def test_empty_selection_raises_with_filter_details() -> None:
    catalog = [_item("a1"), _item("a2")]
    with pytest.raises(EmptyContentSet) as excinfo:
        ConstraintEvaluator().select(catalog, _rule(include_modules=["nope"]))
    assert isinstance(excinfo.value, ValueError)
    assert excinfo.value.details["include_modules"] == ["nope"]
    assert excinfo.value.details["catalog_size"] == 2


def test_modules_keep_first_appearance_and_sort_by_difficulty_within() -> None:
    catalog = [
        _item("x1", module="graphs", difficulty=Difficulty.HARD),
        _item("x2", module="arrays", difficulty=Difficulty.EASY),
        _item("x3", module="graphs", difficulty=Difficulty.BEGINNER),
        _item("x4", module="arrays", difficulty=Difficulty.BEGINNER),
    ]
    assert _ids(ConstraintEvaluator().select(catalog, _rule())) == ["x3", "x1", "x4", "x2"]


def test_company_focus_items_lead_their_difficulty_band() -> None:
    catalog = [
        _item("p1"),
        _item("p2", company_tags=["Google"]),
        _item("p3", company_relevance={"google": 0.8}),
        _item("p4", company_relevance={"google": 0.3}),
    ]
    selected = ConstraintEvaluator().select(catalog, _rule(company_focus=["google"]))
    assert _ids(selected) == ["p2", "p3", "p1", "p4"]


def test_matches_company_focus_threshold() -> None:
    assert matches_company_focus(_item("a", company_relevance={"meta": 0.51}), ["Meta"])
    assert not matches_company_focus(_item("b", company_relevance={"meta": 0.5}), ["meta"])
    assert not matches_company_focus(_item("c", company_tags=["meta"]), [])


def test_prerequisites_are_scheduled_first() -> None:
    catalog = [
        _item("q1", difficulty=Difficulty.EASY, prerequisite_ids=["q2"]),
        _item("q2", difficulty=Difficulty.MEDIUM),
        _item("q3", difficulty=Difficulty.HARD, prerequisite_ids=["missing"]),
    ]
    assert _ids(ConstraintEvaluator().select(catalog, _rule())) == ["q2", "q1", "q3"]


def test_prerequisite_cycle_keeps_catalog_order(caplog: pytest.LogCaptureFixture) -> None:
    catalog = [
        _item("r1", prerequisite_ids=["r2"]),
        _item("r2", prerequisite_ids=["r1"]),
    ]
    with caplog.at_level(logging.WARNING, logger="learnpath.constraints"):
        selected = ConstraintEvaluator().select(catalog, _rule())
    assert _ids(selected) == ["r1", "r2"]
    assert "prerequisite cycle" in caplog.text


def test_theory_practice_balance_interleaves_and_appends_mixed() -> None:
    catalog = [
        _item("t1", content_type=ContentType.THEORY),
        _item("p1", content_type=ContentType.PRACTICE),
        _item("m1", content_type=ContentType.MIXED),
        _item("t2", content_type=ContentType.THEORY),
    ]
    selected = ConstraintEvaluator().select(catalog, _rule(balance_theory_practice=True))
    assert _ids(selected) == ["t1", "p1", "t2", "m1"]


def test_selection_is_deterministic() -> None:
    catalog = [
        _item(f"i{index}", module=("arrays", "graphs")[index % 2], difficulty=list(Difficulty)[index % 4])
        for index in range(20)
    ]
    rule = _rule(company_focus=["amazon"], balance_theory_practice=True)
    evaluator = ConstraintEvaluator()
    assert _ids(evaluator.select(catalog, rule)) == _ids(evaluator.select(list(catalog), rule))
