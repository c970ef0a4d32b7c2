"""
Tests for guided-mode scaffolding.

All tests run fully offline (pure AST post-processing).
"""
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import ast

from codecraft.models.problem import GenerationSlot
from codecraft.services.contract_validator import validate_problem_draft
from codecraft.services.scaffold import (
    TODO_BEGIN,
    TODO_END,
    apply_guided_scaffold,
    pedagogy_for,
    scaffold_python,
)

from fakes import make_python_draft, make_sql_draft

SOURCE = '''import math


def area(r):
    """Circle area."""
    return math.pi * r * r


def _helper(x):
    return x + 1


class Stack:
    def __init__(self):
        self.items = []

    def push(self, x):
        self.items.append(x)

    def _peek(self):
        return self.items[-1]
'''


def _slot(language="python", difficulty="easy"):
    return GenerationSlot(index=0, difficulty=difficulty, topic="math", language=language, problem_style="return")


class TestScaffoldPython:
    def test_public_bodies_replaced(self):
        out = scaffold_python(SOURCE)
        assert out.count(TODO_BEGIN) == 3
        assert out.count(TODO_END) == 3
        assert "math.pi" not in out
        assert "self.items.append" not in out

    def test_docstrings_and_private_helpers_kept(self):
        out = scaffold_python(SOURCE)
        assert '"""Circle area."""' in out
        assert "return x + 1" in out
        assert "return self.items[-1]" in out

    def test_output_still_parses(self):
        ast.parse(scaffold_python(SOURCE))

    def test_syntax_error_returns_none(self):
        assert scaffold_python("def broken(:\n") is None

    def test_nothing_public_returns_none(self):
        assert scaffold_python("def _only():\n    return 1\n") is None

    def test_one_line_function_left_alone(self):
        assert scaffold_python("def f(): return 1\n") is None


class TestGuidedScaffold:
    def test_python_starter_replaced(self):
        draft = validate_problem_draft(make_python_draft(), _slot())
        guided = apply_guided_scaffold(draft)
        assert TODO_BEGIN in guided.starter_code
        assert guided.reference_solution == draft.reference_solution
        assert guided.pedagogy.scaffold_level == 80
        assert guided.pedagogy.hints_enabled

    def test_sql_keeps_starter(self):
        draft = validate_problem_draft(make_sql_draft(), _slot(language="sql"))
        guided = apply_guided_scaffold(draft)
        assert guided.starter_code == draft.starter_code
        assert guided.pedagogy is not None

    def test_hard_problems_have_less_scaffold(self):
        draft = validate_problem_draft(make_python_draft(), _slot(difficulty="hard"))
        pedagogy = pedagogy_for(draft)
        assert pedagogy.scaffold_level == 20
        assert not pedagogy.hints_enabled
