"""
Tests for thread lifecycle rules, draft completeness and language profiles.

All tests run fully offline.
"""
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from pydantic import ValidationError

from codecraft.core.errors import InvalidTransitionError
from codecraft.models.language import get_profile, normalize_language
from codecraft.models.problem import Problem
from codecraft.models.spec import DifficultyCount, SpecificationDraft
from codecraft.models.thread import Thread, ThreadState


class TestThreadTransitions:
    def test_chat_then_generate_then_save(self):
        thread = Thread(id="t")
        for state in (ThreadState.CLARIFYING, ThreadState.READY, ThreadState.GENERATING, ThreadState.SAVED):
            thread.transition_to(state)
        assert thread.state == ThreadState.SAVED

    def test_terminal_states_are_final(self):
        thread = Thread(id="t", state=ThreadState.FAILED)
        with pytest.raises(InvalidTransitionError):
            thread.transition_to(ThreadState.READY)

    def test_generating_cannot_go_back_to_chat(self):
        thread = Thread(id="t", state=ThreadState.GENERATING)
        with pytest.raises(InvalidTransitionError):
            thread.transition_to(ThreadState.CLARIFYING)

    def test_commit_is_idempotent(self):
        thread = Thread(id="t")
        thread.commit("language")
        thread.commit("language")
        assert thread.commitments == ["language"]


class TestDraftCompleteness:
    def test_missing_fields_in_priority_order(self):
        assert SpecificationDraft(topic_tags=["x"]).missing_fields() == [
            "language", "problem_count", "difficulty_plan", "problem_style", "constraints",
        ]

    def test_freeze_requires_every_field(self):
        with pytest.raises(ValidationError):
            SpecificationDraft(language="python").freeze()

    def test_freeze_is_immutable(self):
        frozen = SpecificationDraft(
            language="java",
            problem_count=2,
            difficulty_plan=[DifficultyCount(difficulty="easy", count=2)],
            topic_tags=["loops"],
            problem_style="stdout",
            constraints="Java 17",
        ).freeze()
        assert frozen.topic_tags == ("loops",)
        with pytest.raises(ValidationError):
            frozen.language = "python"


class TestProblemModel:
    def test_problem_refuses_reference_fields(self):
        with pytest.raises(ValidationError):
            Problem(
                id="p", title="t", description="d", language="python", difficulty="easy",
                topic_tag="x", problem_style="return", constraints="c", samples=[],
                test_suite="s", reference_solution="secret",
            )


class TestLanguages:
    def test_aliases(self):
        assert normalize_language(" Python3 ") == "python"
        assert normalize_language("sqlite") == "sql"
        assert normalize_language("rust") is None
        assert normalize_language(3) is None

    def test_java_names_follow_class(self):
        profile = get_profile("java")
        assert profile.solution_name_for("public class Counter {}") == "Counter.java"
        assert profile.test_name_for("class CounterTest {}", "Counter.java") == "CounterTest.java"
        assert profile.test_name_for("// no class", "Counter.java") == "CounterTest.java"
