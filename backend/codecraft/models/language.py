"""Per-language runtime rules shared by prompts, the contract and the sandbox."""
import re
from dataclasses import dataclass

TEST_CASE_COUNT = 8
TEST_CASE_NAMES: tuple[str, ...] = tuple(f"test_case_{i}" for i in range(1, TEST_CASE_COUNT + 1))

_CLASS_RE = re.compile(r"\bclass\s+([A-Za-z_][A-Za-z0-9_]*)")


def infer_java_class(source: str, fallback: str) -> str:
    m = _CLASS_RE.search(source or "")
    return m.group(1) if m else fallback


@dataclass(frozen=True)
class LanguageProfile:
    id: str
    display_name: str
    solution_filename: str
    test_filename: str
    default_constraints: str
    judge_image: str

    def solution_name_for(self, source: str) -> str:
        if self.id == "java":
            return f"{infer_java_class(source, 'Solution')}.java"
        return self.solution_filename

    def test_name_for(self, test_suite: str, solution_name: str) -> str:
        if self.id == "java":
            stem = solution_name.rsplit(".", 1)[0]
            return f"{infer_java_class(test_suite, stem + 'Test')}.java"
        return self.test_filename


LANGUAGE_PROFILES: dict[str, LanguageProfile] = {
    "python": LanguageProfile(
        id="python",
        display_name="Python",
        solution_filename="solution.py",
        test_filename="test_solution.py",
        default_constraints=(
            "Python 3.11, pytest, standard library only, no filesystem access, "
            "no networking, time limit enforced."
        ),
        judge_image="codecraft-python-judge",
    ),
    "java": LanguageProfile(
        id="java",
        display_name="Java",
        solution_filename="Solution.java",
        test_filename="SolutionTest.java",
        default_constraints="Java 17, JUnit 5, no package declarations.",
        judge_image="codecraft-java-judge",
    ),
    "cpp": LanguageProfile(
        id="cpp",
        display_name="C++",
        solution_filename="solution.cpp",
        test_filename="test.cpp",
        default_constraints=(
            "C++20, g++ (GNU), standard library only, no filesystem access, "
            "no networking, deterministic behavior."
        ),
        judge_image="codecraft-cpp-judge",
    ),
    "sql": LanguageProfile(
        id="sql",
        display_name="SQL",
        solution_filename="solution.sql",
        test_filename="test_suite.json",
        default_constraints=(
            "SQLite 3 (SQL dialect), read-only queries only, deterministic results "
            "(explicit ORDER BY when needed)."
        ),
        judge_image="codecraft-sql-judge",
    ),
}


def get_profile(language: str) -> LanguageProfile:
    return LANGUAGE_PROFILES[language]


def default_constraints(language: str) -> str:
    return LANGUAGE_PROFILES[language].default_constraints


LANGUAGE_ALIASES: dict[str, str] = {
    "python": "python",
    "python3": "python",
    "py": "python",
    "java": "java",
    "cpp": "cpp",
    "c++": "cpp",
    "cplusplus": "cpp",
    "sql": "sql",
    "sqlite": "sql",
    "sqlite3": "sql",
}


def normalize_language(value) -> str | None:
    if not isinstance(value, str):
        return None
    return LANGUAGE_ALIASES.get(value.strip().lower())
