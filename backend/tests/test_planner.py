"""
Tests for the slot planner.

All tests run fully offline.
"""
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from codecraft.core.errors import PlannerInvariantError
from codecraft.models.spec import ActivitySpec, DifficultyCount, rescale_difficulty_plan
from codecraft.services.planner import expand_difficulties, plan


def _spec(plan_items, topics=("arrays",), language="python", count=None):
    items = tuple(DifficultyCount(difficulty=d, count=c) for d, c in plan_items)
    return ActivitySpec.model_construct(
        language=language,
        problem_count=count if count is not None else sum(c for _, c in plan_items),
        difficulty_plan=items,
        topic_tags=tuple(topics),
        problem_style="return",
        constraints="c",
        generation_focus=None,
    )


class TestPlan:
    def test_one_slot_per_problem_in_difficulty_order(self):
        slots = plan(_spec([("hard", 1), ("easy", 2)]))
        assert [s.difficulty for s in slots] == ["easy", "easy", "hard"]
        assert [s.index for s in slots] == [0, 1, 2]

    def test_topics_cycle_by_index(self):
        slots = plan(_spec([("easy", 2), ("medium", 2)], topics=("strings", "graphs", "dp")))
        assert [s.topic for s in slots] == ["strings", "graphs", "dp", "strings"]

    def test_uniform_language_and_style(self):
        slots = plan(_spec([("easy", 3)], language="cpp"))
        assert {s.language for s in slots} == {"cpp"}
        assert {s.problem_style for s in slots} == {"return"}

    def test_deterministic(self):
        spec = _spec([("easy", 1), ("medium", 2), ("hard", 1)], topics=("a", "b"))
        assert plan(spec) == plan(spec)

    def test_sum_mismatch_raises(self):
        with pytest.raises(PlannerInvariantError):
            plan(_spec([("easy", 2)], count=3))

    def test_no_topics_raises(self):
        with pytest.raises(PlannerInvariantError):
            plan(_spec([("easy", 1)], topics=()))

    def test_expand_merges_duplicate_tiers(self):
        assert expand_difficulties(_spec([("medium", 1), ("easy", 1), ("medium", 1)])) == [
            "easy", "medium", "medium",
        ]


class TestRescale:
    def test_unchanged_when_sum_matches(self):
        items = [DifficultyCount(difficulty="easy", count=3)]
        assert rescale_difficulty_plan(items, 3) == items

    def test_ties_go_to_easier_tier(self):
        items = [DifficultyCount(difficulty="easy", count=1), DifficultyCount(difficulty="hard", count=1)]
        assert rescale_difficulty_plan(items, 3) == [
            DifficultyCount(difficulty="easy", count=2),
            DifficultyCount(difficulty="hard", count=1),
        ]

    def test_zero_tiers_dropped(self):
        items = [DifficultyCount(difficulty="easy", count=5), DifficultyCount(difficulty="hard", count=1)]
        assert rescale_difficulty_plan(items, 1) == [DifficultyCount(difficulty="easy", count=1)]
