"""
Tests for the contract validator (spec patches and problem drafts).

All tests run fully offline against pure functions.
"""
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import json

from codecraft.models.problem import GenerationSlot, ProblemDraft
from codecraft.models.spec import DifficultyCount, SpecificationDraft
from codecraft.services.contract_validator import (
    DraftRejected,
    Invalid,
    Unset,
    Valid,
    solution_files_for,
    sql_read_only_issues,
    validate_problem_draft,
    validate_spec_patch,
)

from fakes import make_python_draft, make_sql_draft, make_sql_suite

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _slot(language="python", style="return", difficulty="easy", topic="math", index=0):
    return GenerationSlot(
        index=index,
        difficulty=difficulty,
        topic=topic,
        language=language,
        problem_style=style,
    )


# ---------------------------------------------------------------------------
# Spec patches
# ---------------------------------------------------------------------------


class TestSpecPatchFields:
    def test_absent_fields_are_unset(self):
        patch = validate_spec_patch({"language": "python"})
        assert isinstance(patch.get("language"), Valid)
        assert isinstance(patch.get("problem_count"), Unset)
        assert isinstance(patch.get("topic_tags"), Unset)

    def test_language_aliases_normalise(self):
        assert validate_spec_patch({"language": "py"}).valid_values()["language"] == "python"
        assert validate_spec_patch({"language": "C++"}).valid_values()["language"] == "cpp"

    def test_unknown_language_is_invalid(self):
        patch = validate_spec_patch({"language": "cobol"})
        assert isinstance(patch.get("language"), Invalid)
        assert "language" in patch.rejected()

    def test_count_out_of_range_is_invalid(self):
        assert isinstance(validate_spec_patch({"problem_count": 0}).get("problem_count"), Invalid)
        assert isinstance(validate_spec_patch({"problem_count": 8}).get("problem_count"), Invalid)

    def test_count_accepts_numeric_string(self):
        assert validate_spec_patch({"problem_count": "3"}).valid_values()["problem_count"] == 3

    def test_bool_is_not_a_count(self):
        assert isinstance(validate_spec_patch({"problem_count": True}).get("problem_count"), Invalid)

    def test_topic_tags_deduplicated_and_trimmed(self):
        values = validate_spec_patch({"topic_tags": ["  arrays ", "Arrays", "hash   maps"]}).valid_values()
        assert values["topic_tags"] == ["arrays", "hash maps"]

    def test_style_aliases(self):
        assert validate_spec_patch({"problem_style": "print"}).valid_values()["problem_style"] == "stdout"
        assert isinstance(validate_spec_patch({"problem_style": "poem"}).get("problem_style"), Invalid)

    def test_unknown_keys_are_dropped(self):
        patch = validate_spec_patch({"language": "java", "colour": "blue"})
        assert patch.dropped == ("colour",)
        assert set(patch.valid_values()) == {"language"}

    def test_non_dict_candidate_is_all_unset(self):
        patch = validate_spec_patch(["not", "a", "dict"])
        assert patch.is_empty()
        assert not patch.rejected()

    def test_empty_constraints_invalid(self):
        assert isinstance(validate_spec_patch({"constraints": "   "}).get("constraints"), Invalid)


class TestSpecPatchPlan:
    def test_plan_matching_count_is_valid(self):
        patch = validate_spec_patch({
            "problem_count": 3,
            "difficulty_plan": [{"difficulty": "easy", "count": 2}, {"difficulty": "hard", "count": 1}],
        })
        plan = patch.valid_values()["difficulty_plan"]
        assert plan == [DifficultyCount(difficulty="easy", count=2), DifficultyCount(difficulty="hard", count=1)]

    def test_plan_sum_mismatch_is_invalid(self):
        patch = validate_spec_patch({
            "problem_count": 3,
            "difficulty_plan": [{"difficulty": "easy", "count": 2}],
        })
        assert patch.rejected()["difficulty_plan"] == "difficulty_plan sums to 2 but problem_count is 3"
        assert patch.valid_values()["problem_count"] == 3

    def test_plan_checked_against_current_count(self):
        current = SpecificationDraft(problem_count=4)
        patch = validate_spec_patch(
            {"difficulty_plan": [{"difficulty": "medium", "count": 2}]}, current=current
        )
        assert isinstance(patch.get("difficulty_plan"), Invalid)

    def test_plan_without_any_count_is_valid(self):
        patch = validate_spec_patch({"difficulty_plan": [{"difficulty": "medium", "count": 2}]})
        assert isinstance(patch.get("difficulty_plan"), Valid)

    def test_plan_above_maximum_is_invalid(self):
        patch = validate_spec_patch({"difficulty_plan": [{"difficulty": "easy", "count": 9}]})
        assert "above the maximum" in patch.rejected()["difficulty_plan"]

    def test_plan_entries_merge_and_sort(self):
        patch = validate_spec_patch({
            "difficulty_plan": [
                {"difficulty": "hard", "count": 1},
                {"difficulty": "easy", "count": 1},
                {"difficulty": "easy", "count": 1},
            ]
        })
        plan = patch.valid_values()["difficulty_plan"]
        assert [(p.difficulty, p.count) for p in plan] == [("easy", 2), ("hard", 1)]

    def test_plan_as_mapping(self):
        patch = validate_spec_patch({"difficulty_plan": {"easy": 1, "medium": 1}})
        assert len(patch.valid_values()["difficulty_plan"]) == 2

    def test_unknown_difficulty_invalid(self):
        patch = validate_spec_patch({"difficulty_plan": [{"difficulty": "insane", "count": 1}]})
        assert isinstance(patch.get("difficulty_plan"), Invalid)


# ---------------------------------------------------------------------------
# Problem drafts
# ---------------------------------------------------------------------------


class TestPythonDrafts:
    def test_valid_draft_accepted(self):
        result = validate_problem_draft(make_python_draft(), _slot())
        assert isinstance(result, ProblemDraft)
        assert result.reference_solution
        assert [s.input for s in result.samples] == ["2"]

    def test_slot_metadata_overrides_model_claims(self):
        result = validate_problem_draft(
            make_python_draft(difficulty="hard", topic_tag="graphs"),
            _slot(difficulty="medium", topic="recursion"),
        )
        assert isinstance(result, ProblemDraft)
        assert result.difficulty == "medium"
        assert result.topic_tag == "recursion"

    def test_missing_required_field(self):
        draft = make_python_draft()
        del draft["title"]
        result = validate_problem_draft(draft, _slot())
        assert isinstance(result, DraftRejected)
        assert "missing or empty field: title" in result.issues

    def test_wrong_test_count_rejected(self):
        suite = "from solution import double\n\n" + "\n".join(
            f"def test_case_{i}():\n    assert double({i}) == {2 * i}\n" for i in range(1, 6)
        )
        result = validate_problem_draft(make_python_draft(test_suite=suite), _slot())
        assert isinstance(result, DraftRejected)
        assert any("exactly 8 tests" in issue for issue in result.issues)

    def test_sample_length_mismatch_rejected(self):
        result = validate_problem_draft(
            make_python_draft(sample_inputs=["1", "2"], sample_outputs=["2"]), _slot()
        )
        assert isinstance(result, DraftRejected)

    def test_stdout_style_needs_capsys(self):
        result = validate_problem_draft(make_python_draft(), _slot(style="stdout"))
        assert isinstance(result, DraftRejected)
        assert any("capsys" in issue for issue in result.issues)

    def test_return_style_needs_return(self):
        result = validate_problem_draft(
            make_python_draft(reference_solution="def double(n):\n    print(n * 2)\n"), _slot()
        )
        assert isinstance(result, DraftRejected)

    def test_non_dict_rejected(self):
        assert isinstance(validate_problem_draft(None, _slot()), DraftRejected)

    def test_solution_files_use_profile_name(self):
        draft = validate_problem_draft(make_python_draft(), _slot())
        files = solution_files_for(draft)
        assert list(files) == ["solution.py"]


class TestWorkspaceDrafts:
    def _workspace(self, paths, entry="main.py"):
        return {
            "files": [{"path": p, "role": "entry" if p == entry else "support", "content": "x = 1\n"} for p in paths],
            "entrypoint": entry,
        }

    def test_workspace_pair_accepted(self):
        draft = make_python_draft(
            starter_code=None,
            reference_solution=None,
            workspace=self._workspace(["main.py", "util.py"]),
            reference_workspace={
                "files": [
                    {"path": "main.py", "role": "entry", "content": "def double(n):\n    return n * 2\n"},
                    {"path": "util.py", "role": "support", "content": "X = 1\n"},
                ],
                "entrypoint": "main.py",
            },
        )
        result = validate_problem_draft(draft, _slot())
        assert isinstance(result, ProblemDraft)
        assert result.reference_workspace is not None
        assert result.reference_solution is None

    def test_mismatched_paths_rejected(self):
        draft = make_python_draft(
            starter_code=None,
            reference_solution=None,
            workspace=self._workspace(["main.py"]),
            reference_workspace=self._workspace(["main.py", "extra.py"]),
        )
        result = validate_problem_draft(draft, _slot())
        assert isinstance(result, DraftRejected)
        assert any("same files" in issue for issue in result.issues)


class TestSqlDrafts:
    def test_valid_sql_draft(self):
        result = validate_problem_draft(make_sql_draft(), _slot(language="sql"))
        assert isinstance(result, ProblemDraft)

    def test_mutating_reference_rejected(self):
        result = validate_problem_draft(
            make_sql_draft(reference_solution="DELETE FROM t;"), _slot(language="sql")
        )
        assert isinstance(result, DraftRejected)

    def test_suite_must_be_json(self):
        result = validate_problem_draft(make_sql_draft(test_suite="not json"), _slot(language="sql"))
        assert isinstance(result, DraftRejected)
        assert "test_suite must be valid JSON" in result.issues

    def test_suite_case_count(self):
        result = validate_problem_draft(
            make_sql_draft(test_suite=make_sql_suite(cases=7)), _slot(language="sql")
        )
        assert isinstance(result, DraftRejected)

    def test_suite_expected_shape(self):
        suite = json.loads(make_sql_suite())
        suite["cases"][0]["expected"] = {"rows": []}
        result = validate_problem_draft(
            make_sql_draft(test_suite=json.dumps(suite)), _slot(language="sql")
        )
        assert isinstance(result, DraftRejected)


class TestSqlReadOnly:
    def test_select_ok(self):
        assert sql_read_only_issues("SELECT * FROM t") == []

    def test_with_ok(self):
        assert sql_read_only_issues("WITH x AS (SELECT 1) SELECT * FROM x;") == []

    def test_keyword_inside_string_ignored(self):
        assert sql_read_only_issues("SELECT 'DROP TABLE t' AS s") == []

    def test_replace_string_function_ok(self):
        assert sql_read_only_issues("SELECT REPLACE(name, 'a', 'b') AS n FROM t ORDER BY n;") == []
        assert sql_read_only_issues("SELECT replace (name, 'a', 'b') FROM t") == []

    def test_replace_statement_rejected(self):
        issues = sql_read_only_issues("REPLACE INTO t (id) VALUES (1)")
        assert "reference_solution uses forbidden keyword REPLACE" in issues
        issues = sql_read_only_issues("WITH x AS (SELECT 1) REPLACE INTO t SELECT * FROM x")
        assert "reference_solution uses forbidden keyword REPLACE" in issues

    def test_multiple_statements(self):
        issues = sql_read_only_issues("SELECT 1; SELECT 2;")
        assert any("single statement" in i for i in issues)

    def test_pragma_rejected(self):
        issues = sql_read_only_issues("PRAGMA table_info(t)")
        assert any("SELECT or WITH" in i for i in issues)


class TestOtherLanguages:
    def test_cpp_main_rejected(self):
        suite = '#include "solution.cpp"\n' + "\n".join(
            f'RUN_TEST("test_case_{i}", [] {{ return true; }});' for i in range(1, 9)
        )
        draft = make_python_draft(
            test_suite=suite,
            reference_solution="int solve() { return 1; }\nint main() { return 0; }\n",
            starter_code="int solve() { return 0; }\n",
        )
        result = validate_problem_draft(draft, _slot(language="cpp"))
        assert isinstance(result, DraftRejected)
        assert any("main()" in i for i in result.issues)

    def test_java_package_rejected(self):
        suite = "import org.junit.jupiter.api.Test;\nclass SolutionTest {\n" + "\n".join(
            f"  @Test\n  void test_case_{i}() {{ }}" for i in range(1, 9)
        ) + "\n}\n"
        draft = make_python_draft(
            test_suite=suite,
            reference_solution="package a.b;\npublic class Solution { int f() { return 1; } }\n",
            starter_code="public class Solution { }\n",
        )
        result = validate_problem_draft(draft, _slot(language="java"))
        assert isinstance(result, DraftRejected)
        assert "Java sources must not declare a package" in result.issues
