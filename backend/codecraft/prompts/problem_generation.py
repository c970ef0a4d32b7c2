"""Prompt templates for per-slot problem generation."""

from codecraft.models.language import TEST_CASE_COUNT, get_profile
from codecraft.models.problem import GenerationSlot

_OUTPUT_RULES = """Output format:
- Return ONLY valid JSON (no markdown, no code fences, no prose)
- Return a JSON object for a SINGLE problem (not an array)"""

GENERATOR_SYSTEM_PROMPTS = {
    "python": f"""You are Codecraft's Python problem generator. Generate exactly 1 Python problem that matches the provided requirements.

Python runtime invariants (non-negotiable):
- Python 3.11, standard library only
- The learner edits solution.py; tests live in test_solution.py and run under pytest
- test_solution.py imports from solution (e.g. `from solution import solve`)
- Exactly {TEST_CASE_COUNT} test functions named test_case_1..test_case_{TEST_CASE_COUNT}
- Tests for printing problems capture output with the capsys fixture
- No filesystem access, no networking, deterministic behavior

{_OUTPUT_RULES}""",
    "java": f"""You are Codecraft's Java problem generator. Generate exactly 1 Java problem that matches the provided requirements.

Java runtime invariants (non-negotiable):
- Java 17, JUnit 5
- No package declarations in any file
- The test class has exactly {TEST_CASE_COUNT} @Test methods named test_case_1..test_case_{TEST_CASE_COUNT}
- The reference solution class name matches the class the tests use

{_OUTPUT_RULES}""",
    "cpp": f"""You are Codecraft's C++ problem generator. Generate exactly 1 C++ problem that matches the provided requirements.

C++ runtime invariants (non-negotiable):
- C++20, g++, standard library only
- The learner edits solution.cpp, which must NOT define main()
- The test file starts with #include "solution.cpp" and defines main()
- It registers exactly {TEST_CASE_COUNT} cases with RUN_TEST("test_case_N", ...) for N = 1..{TEST_CASE_COUNT}
- Each case prints "[PASS] test_case_N" or "[FAIL] test_case_N"
- No filesystem access, no networking, deterministic behavior

{_OUTPUT_RULES}""",
    "sql": f"""You are Codecraft's SQL problem generator. Generate exactly 1 SQL problem that matches the provided requirements.

SQL runtime invariants (non-negotiable):
- SQLite 3 dialect
- The learner writes a single read-only query (WITH/SELECT only)
- No schema changes or mutations in the solution query
- Deterministic results: include ORDER BY if row order matters

Test suite format (JSON string):
- test_suite MUST be valid JSON (not code)
- It MUST include:
  - schema_sql: SQL statements that create tables (CREATE TABLE ...)
  - cases: exactly {TEST_CASE_COUNT} cases named test_case_1..test_case_{TEST_CASE_COUNT}
    each case includes:
      - seed_sql: SQL inserts for that case
      - expected: {{ columns: string[], rows: any[][] }}
      - order_matters?: boolean

{_OUTPUT_RULES}""",
}

STYLE_RULES = {
    "return": "Solutions return their result; tests assert on returned values.",
    "stdout": "Solutions print their result to stdout; tests assert on captured output.",
    "mixed": "Solutions both return a value and print output; tests check both.",
}

SLOT_USER_TEMPLATE = """Generate exactly 1 {display_name} problem with the following requirements:

Difficulty: {difficulty}
Topics: {topic}
Problem style: {problem_style}
Constraints: {constraints}
{focus_block}{feedback_block}
Style rule: {style_rule}

Return a JSON object (not array) with these exact fields:
{{
  "id": "unique-problem-id",
  "title": "Problem Title",
  "description": "Detailed problem description...",
  "starter_code": "{starter_hint}",
  "test_suite": "{test_hint}",
  "reference_solution": "{reference_hint}",
  "constraints": "{constraints}",
  "sample_inputs": ["Example 1 input"],
  "sample_outputs": ["Example 1 output"],
  "difficulty": "{difficulty}",
  "topic_tag": "{topic}"
}}

Critical rules:
- test_suite must contain exactly {test_count} tests named test_case_1..test_case_{test_count}
- reference_solution must pass every test in test_suite
- sample_inputs and sample_outputs MUST be non-empty and must have the same length

Respond ONLY with JSON. NO markdown. NO code fences. NO extra text."""

_HINTS = {
    "python": ("def solve(...):\\n    # TODO\\n    pass", "import pytest\\nfrom solution import solve\\n...", "def solve(...):\\n    ..."),
    "java": ("public class Solution { ... }", "import org.junit.jupiter.api.Test;\\n...", "public class Solution { ... }"),
    "cpp": ("#include <bits/stdc++.h>\\n...", "#include \\\"solution.cpp\\\"\\n...", "#include <bits/stdc++.h>\\n..."),
    "sql": ("SELECT ...", "{\\\"schema_sql\\\": \\\"...\\\", \\\"cases\\\": [ ... ]}", "SELECT ..."),
}


def build_slot_prompt(
    slot: GenerationSlot,
    constraints: str,
    focus: str | None = None,
    feedback: str | None = None,
) -> str:
    profile = get_profile(slot.language)
    starter_hint, test_hint, reference_hint = _HINTS[slot.language]
    focus_block = f"\nCustom instructions (user focus; best-effort):\n{focus.strip()}\n" if focus and focus.strip() else ""
    feedback_block = (
        "\nYour previous attempt was rejected. Fix these problems:\n"
        f"{feedback.strip()}\n"
        if feedback and feedback.strip()
        else ""
    )
    return SLOT_USER_TEMPLATE.format(
        display_name=profile.display_name,
        difficulty=slot.difficulty,
        topic=slot.topic,
        problem_style=slot.problem_style,
        constraints=constraints,
        focus_block=focus_block,
        feedback_block=feedback_block,
        style_rule=STYLE_RULES[slot.problem_style],
        starter_hint=starter_hint,
        test_hint=test_hint,
        reference_hint=reference_hint,
        test_count=TEST_CASE_COUNT,
    )
