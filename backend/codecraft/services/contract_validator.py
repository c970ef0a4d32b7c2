"""
Contract checks for untrusted model output.

Two shapes:
  validate_spec_patch()    -> per-field Unset | Invalid(reason) | Valid(value)
  validate_problem_draft() -> ProblemDraft | DraftRejected

Both are pure. Malformed input yields a structured result; an exception only
means the rule table itself is broken.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from pydantic import ValidationError

from codecraft.core.errors import ContractDefinitionError
from codecraft.models.language import TEST_CASE_NAMES, get_profile, normalize_language
from codecraft.models.problem import GenerationSlot, ProblemDraft, Workspace
from codecraft.models.spec import (
    DIFFICULTY_ORDER,
    MAX_CONSTRAINTS_LENGTH,
    MAX_FOCUS_LENGTH,
    MAX_PROBLEMS,
    MAX_TOPIC_LENGTH,
    MAX_TOPIC_TAGS,
    MIN_PROBLEMS,
    SPEC_FIELDS,
    DifficultyCount,
    SpecificationDraft,
    plan_total,
)


# ════════════════════════════════════════════════════════════
# A) Spec patches
# ════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Unset:
    pass


@dataclass(frozen=True)
class Invalid:
    reason: str


@dataclass(frozen=True)
class Valid:
    value: Any


FieldPatch = Union[Unset, Invalid, Valid]
UNSET = Unset()


@dataclass(frozen=True)
class SpecPatch:
    fields: dict[str, FieldPatch]
    dropped: tuple[str, ...] = ()

    def get(self, name: str) -> FieldPatch:
        return self.fields.get(name, UNSET)

    def valid_values(self) -> dict[str, Any]:
        return {k: v.value for k, v in self.fields.items() if isinstance(v, Valid)}

    def rejected(self) -> dict[str, str]:
        return {k: v.reason for k, v in self.fields.items() if isinstance(v, Invalid)}

    def is_empty(self) -> bool:
        return not self.valid_values()


STYLE_ALIASES = {
    "return": "return",
    "returns": "return",
    "stdout": "stdout",
    "print": "stdout",
    "printing": "stdout",
    "mixed": "mixed",
    "both": "mixed",
}


def _check_language(value):
    lang = normalize_language(value)
    if lang is None:
        raise ValueError("language must be one of java, python, cpp, sql")
    return lang


def _as_int(value) -> int:
    if isinstance(value, bool):
        raise ValueError("not an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValueError("not an integer")


def _check_problem_count(value):
    count = _as_int(value)
    if not MIN_PROBLEMS <= count <= MAX_PROBLEMS:
        raise ValueError(f"problem_count must be between {MIN_PROBLEMS} and {MAX_PROBLEMS}")
    return count


def _check_difficulty_plan(value):
    if isinstance(value, dict):
        items = [{"difficulty": k, "count": v} for k, v in value.items()]
    elif isinstance(value, list):
        items = value
    else:
        raise ValueError("difficulty_plan must be a list")

    merged: dict[str, int] = {}
    for item in items:
        if isinstance(item, DifficultyCount):
            item = item.model_dump()
        if not isinstance(item, dict):
            raise ValueError("difficulty_plan entries must be objects")
        difficulty = str(item.get("difficulty", "")).strip().lower()
        if difficulty not in DIFFICULTY_ORDER:
            raise ValueError(f"unknown difficulty {difficulty!r}")
        count = _as_int(item.get("count"))
        if count < 0:
            raise ValueError("difficulty counts must be non-negative")
        if count:
            merged[difficulty] = merged.get(difficulty, 0) + count

    if not merged:
        raise ValueError("difficulty_plan must not be empty")
    total = sum(merged.values())
    if total > MAX_PROBLEMS:
        raise ValueError(f"difficulty_plan sums to {total}, above the maximum of {MAX_PROBLEMS}")
    return [DifficultyCount(difficulty=d, count=merged[d]) for d in DIFFICULTY_ORDER if d in merged]


def _check_topic_tags(value):
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        raise ValueError("topic_tags must be a list of strings")
    tags: list[str] = []
    seen: set[str] = set()
    for raw in value:
        if not isinstance(raw, str):
            continue
        tag = " ".join(raw.split())[:MAX_TOPIC_LENGTH]
        if tag and tag.lower() not in seen:
            seen.add(tag.lower())
            tags.append(tag)
    if not tags:
        raise ValueError("topic_tags must contain at least one topic")
    return tags[:MAX_TOPIC_TAGS]


def _check_problem_style(value):
    style = STYLE_ALIASES.get(str(value).strip().lower()) if isinstance(value, str) else None
    if style is None:
        raise ValueError("problem_style must be return, stdout or mixed")
    return style


def _text_rule(name: str, limit: int) -> Callable[[Any], str]:
    def check(value):
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"{name} must be non-empty text")
        text = value.strip()
        if len(text) > limit:
            raise ValueError(f"{name} is longer than {limit} characters")
        return text
    return check


_FIELD_RULES: dict[str, Callable[[Any], Any]] = {
    "language": _check_language,
    "problem_count": _check_problem_count,
    "difficulty_plan": _check_difficulty_plan,
    "topic_tags": _check_topic_tags,
    "problem_style": _check_problem_style,
    "constraints": _text_rule("constraints", MAX_CONSTRAINTS_LENGTH),
    "generation_focus": _text_rule("generation_focus", MAX_FOCUS_LENGTH),
}


def _check_rule_table() -> None:
    if set(_FIELD_RULES) != set(SPEC_FIELDS):
        missing = sorted(set(SPEC_FIELDS) - set(_FIELD_RULES))
        extra = sorted(set(_FIELD_RULES) - set(SPEC_FIELDS))
        raise ContractDefinitionError(f"field rule table mismatch: missing={missing} extra={extra}")


def validate_spec_patch(candidate, current: SpecificationDraft | None = None) -> SpecPatch:
    """Check each present field on its own, then the count/plan sum.

    Unknown keys are dropped. A plan is checked against the patch's own count
    when it has one, otherwise against the count already in `current`.
    """
    _check_rule_table()
    if not isinstance(candidate, dict):
        return SpecPatch(fields={name: UNSET for name in SPEC_FIELDS})

    fields: dict[str, FieldPatch] = {}
    for name in SPEC_FIELDS:
        raw = candidate.get(name)
        if raw is None:
            fields[name] = UNSET
            continue
        try:
            fields[name] = Valid(_FIELD_RULES[name](raw))
        except (ValueError, TypeError) as e:
            fields[name] = Invalid(str(e))

    plan = fields["difficulty_plan"]
    if isinstance(plan, Valid):
        count = fields["problem_count"]
        target = None
        if isinstance(count, Valid):
            target = count.value
        elif isinstance(count, Unset) and current is not None:
            target = current.problem_count
        total = plan_total(plan.value)
        if target is not None and total != target:
            fields["difficulty_plan"] = Invalid(
                f"difficulty_plan sums to {total} but problem_count is {target}"
            )

    dropped = tuple(sorted(k for k in candidate if k not in SPEC_FIELDS))
    return SpecPatch(fields=fields, dropped=dropped)


# ════════════════════════════════════════════════════════════
# B) Problem drafts
# ════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DraftRejected:
    reason: str
    issues: tuple[str, ...] = field(default_factory=tuple)


_PY_TEST_RE = re.compile(r"^\s*def\s+(test_[A-Za-z0-9_]+)\s*\(", re.MULTILINE)
_JAVA_TEST_RE = re.compile(r"\bvoid\s+(test_[A-Za-z0-9_]+)\s*\(")
_CPP_TEST_RE = re.compile(r"RUN_TEST\(\s*\"(test_[A-Za-z0-9_]+)\"")
_JAVA_PACKAGE_RE = re.compile(r"^\s*package\s+[\w.]+\s*;", re.MULTILINE)
_CPP_MAIN_RE = re.compile(r"\bint\s+main\s*\(")
_RETURN_RE = re.compile(r"\breturn\b")

# REPLACE( is the string function, not the statement.
_SQL_FORBIDDEN = re.compile(
    r"\b(INSERT|UPDATE|DELETE|REPLACE(?!\s*\()|CREATE|DROP|ALTER|TRUNCATE|ATTACH|DETACH|PRAGMA|VACUUM)\b",
    re.IGNORECASE,
)
_SQL_COMMENT = re.compile(r"--[^\n]*|/\*.*?\*/", re.DOTALL)
_SQL_STRING = re.compile(r"'(?:[^']|'')*'")


def _strip_sql(sql: str) -> str:
    return _SQL_STRING.sub("''", _SQL_COMMENT.sub(" ", sql)).strip()


def sql_read_only_issues(sql: str, *, label: str = "reference_solution") -> list[str]:
    body = _strip_sql(sql).rstrip(";").strip()
    if not body:
        return [f"{label} is empty"]
    issues = []
    if ";" in body:
        issues.append(f"{label} must be a single statement")
    first = body.split(None, 1)[0].upper()
    if first not in ("SELECT", "WITH"):
        issues.append(f"{label} must start with SELECT or WITH")
    m = _SQL_FORBIDDEN.search(body)
    if m:
        issues.append(f"{label} uses forbidden keyword {m.group(1).upper()}")
    return issues


def _names_issue(found: list[str]) -> list[str]:
    if sorted(found) != sorted(TEST_CASE_NAMES):
        return [
            f"test_suite must define exactly {len(TEST_CASE_NAMES)} tests named "
            f"test_case_1..test_case_{len(TEST_CASE_NAMES)} (found {len(found)})"
        ]
    return []


def _sql_suite_issues(test_suite: str) -> list[str]:
    try:
        suite = json.loads(test_suite)
    except json.JSONDecodeError:
        return ["test_suite must be valid JSON"]
    if not isinstance(suite, dict):
        return ["test_suite must be a JSON object"]
    issues = []
    if not isinstance(suite.get("schema_sql"), str) or not suite["schema_sql"].strip():
        issues.append("test_suite.schema_sql must be non-empty")
    cases = suite.get("cases")
    if not isinstance(cases, list):
        return issues + ["test_suite.cases must be a list"]
    names = []
    for case in cases:
        if not isinstance(case, dict):
            issues.append("test_suite.cases entries must be objects")
            continue
        names.append(str(case.get("name", "")))
        if not isinstance(case.get("seed_sql"), str):
            issues.append(f"{case.get('name')}: seed_sql must be a string")
        expected = case.get("expected")
        if (
            not isinstance(expected, dict)
            or not isinstance(expected.get("columns"), list)
            or not expected["columns"]
            or not isinstance(expected.get("rows"), list)
            or not all(isinstance(r, list) for r in expected["rows"])
        ):
            issues.append(f"{case.get('name')}: expected must have columns and rows")
        if "order_matters" in case and not isinstance(case["order_matters"], bool):
            issues.append(f"{case.get('name')}: order_matters must be a boolean")
    return issues + _names_issue(names)


def _language_issues(slot: GenerationSlot, test_suite: str, reference: str) -> list[str]:
    issues: list[str] = []
    lang = slot.language
    if lang == "python":
        issues += _names_issue(_PY_TEST_RE.findall(test_suite))
        if "from solution import" not in test_suite and "import solution" not in test_suite:
            issues.append("test_suite must import from solution")
        if slot.problem_style in ("stdout", "mixed") and "capsys" not in test_suite:
            issues.append("stdout-style tests must capture output with capsys")
    elif lang == "java":
        issues += _names_issue(_JAVA_TEST_RE.findall(test_suite))
        if "@Test" not in test_suite:
            issues.append("test_suite must use JUnit 5 @Test methods")
        if _JAVA_PACKAGE_RE.search(test_suite) or _JAVA_PACKAGE_RE.search(reference):
            issues.append("Java sources must not declare a package")
    elif lang == "cpp":
        issues += _names_issue(_CPP_TEST_RE.findall(test_suite))
        if '#include "solution.cpp"' not in test_suite:
            issues.append('test_suite must #include "solution.cpp"')
        if _CPP_MAIN_RE.search(reference):
            issues.append("reference solution must not define main()")
    elif lang == "sql":
        issues += _sql_suite_issues(test_suite)
        issues += sql_read_only_issues(reference)
    else:
        raise ContractDefinitionError(f"no draft rules for language {lang!r}")

    if lang != "sql" and slot.problem_style in ("return", "mixed") and not _RETURN_RE.search(reference):
        issues.append("return-style reference must return a value")
    return issues


def _text(candidate: dict, key: str) -> str:
    value = candidate.get(key)
    return value.strip() if isinstance(value, str) else ""


def validate_problem_draft(candidate, slot: GenerationSlot) -> ProblemDraft | DraftRejected:
    if not isinstance(candidate, dict):
        return DraftRejected("Output was not a JSON object", ("output was not a JSON object",))

    issues: list[str] = []
    for key in ("id", "title", "description", "test_suite", "constraints"):
        if not _text(candidate, key):
            issues.append(f"missing or empty field: {key}")

    inputs, outputs = candidate.get("sample_inputs"), candidate.get("sample_outputs")
    if not isinstance(inputs, list) or not isinstance(outputs, list):
        issues.append("sample_inputs and sample_outputs must be lists")
        samples = []
    elif not inputs or len(inputs) != len(outputs):
        issues.append("sample_inputs and sample_outputs must be non-empty and the same length")
        samples = []
    elif not all(isinstance(s, str) for s in inputs + outputs):
        issues.append("samples must be strings")
        samples = []
    else:
        samples = [{"input": i, "output": o} for i, o in zip(inputs, outputs)]

    workspace = reference_workspace = None
    starter_code = _text(candidate, "starter_code")
    reference_solution = _text(candidate, "reference_solution")
    if candidate.get("workspace") is not None or candidate.get("reference_workspace") is not None:
        if slot.language == "sql":
            issues.append("SQL problems use starter_code and reference_solution")
        try:
            workspace = Workspace.model_validate(candidate.get("workspace"))
            reference_workspace = Workspace.model_validate(candidate.get("reference_workspace"))
        except ValidationError:
            issues.append("workspace and reference_workspace must both be valid file sets")
        else:
            paths = {f.path for f in workspace.files}
            if paths != {f.path for f in reference_workspace.files}:
                issues.append("reference_workspace must contain the same files as workspace")
            if workspace.entrypoint not in paths:
                issues.append("workspace.entrypoint must name one of its files")
            reference_solution = "\n".join(f.content for f in reference_workspace.files)
    else:
        if not starter_code:
            issues.append("missing or empty field: starter_code")
        if not reference_solution:
            issues.append("missing or empty field: reference_solution")

    test_suite = _text(candidate, "test_suite")
    if test_suite and reference_solution:
        issues += _language_issues(slot, test_suite, reference_solution)
        if slot.language == "sql" and starter_code and _SQL_FORBIDDEN.search(_strip_sql(starter_code)):
            issues.append("starter_code must not contain mutating statements")

    if issues:
        return DraftRejected(reason="; ".join(issues), issues=tuple(issues))

    try:
        return ProblemDraft(
            id=_text(candidate, "id"),
            title=_text(candidate, "title"),
            description=_text(candidate, "description"),
            language=slot.language,
            difficulty=slot.difficulty,
            topic_tag=slot.topic,
            problem_style=slot.problem_style,
            constraints=_text(candidate, "constraints"),
            samples=samples,
            starter_code=starter_code or None,
            workspace=workspace,
            test_suite=test_suite,
            reference_solution=None if reference_workspace else reference_solution,
            reference_workspace=reference_workspace,
        )
    except ValidationError as e:
        return DraftRejected(reason="draft failed schema checks", issues=(str(e.errors()[0]["msg"]),))


def solution_files_for(draft: ProblemDraft) -> dict[str, str]:
    """Files the sandbox should see for the draft's reference."""
    profile = get_profile(draft.language)
    name = profile.solution_name_for(draft.reference_solution or "")
    return draft.solution_files(name)
