from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ActivityLanguage = Literal["java", "python", "cpp", "sql"]
Difficulty = Literal["easy", "medium", "hard"]
ProblemStyle = Literal["return", "stdout", "mixed"]

LANGUAGES: tuple[str, ...] = ("java", "python", "cpp", "sql")
DIFFICULTY_ORDER: tuple[str, ...] = ("easy", "medium", "hard")
PROBLEM_STYLES: tuple[str, ...] = ("return", "stdout", "mixed")

MIN_PROBLEMS = 1
MAX_PROBLEMS = 7
MAX_TOPIC_TAGS = 12
MAX_TOPIC_LENGTH = 48
MAX_CONSTRAINTS_LENGTH = 2000
MAX_FOCUS_LENGTH = 4000

SPEC_FIELDS: tuple[str, ...] = (
    "language",
    "problem_count",
    "difficulty_plan",
    "topic_tags",
    "problem_style",
    "constraints",
    "generation_focus",
)

# Asked in this order; constraints are derived from the language.
REQUIRED_FIELD_ORDER: tuple[str, ...] = (
    "language",
    "problem_count",
    "difficulty_plan",
    "topic_tags",
    "problem_style",
)

HARD_FIELDS: frozenset[str] = frozenset({"language", "problem_count", "difficulty_plan"})
COUPLED_FIELDS: frozenset[str] = frozenset({"problem_count", "difficulty_plan"})


class DifficultyCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    difficulty: Difficulty
    count: int = Field(ge=1)


class SpecificationDraft(BaseModel):
    """Activity settings agreed so far. Absent fields are None."""

    language: ActivityLanguage | None = None
    problem_count: int | None = None
    difficulty_plan: list[DifficultyCount] | None = None
    topic_tags: list[str] | None = None
    problem_style: ProblemStyle | None = None
    constraints: str | None = None
    generation_focus: str | None = None

    def missing_fields(self) -> list[str]:
        missing = [f for f in REQUIRED_FIELD_ORDER if not getattr(self, f)]
        if not self.constraints:
            missing.append("constraints")
        return missing

    def is_complete(self) -> bool:
        return not self.missing_fields()

    def merge(self, values: dict) -> "SpecificationDraft":
        return SpecificationDraft.model_validate({**self.model_dump(), **values})

    def freeze(self) -> "ActivitySpec":
        return ActivitySpec.model_validate(self.model_dump())


class ActivitySpec(BaseModel):
    """A complete, immutable activity spec handed to the planner."""

    model_config = ConfigDict(frozen=True)

    language: ActivityLanguage
    problem_count: int = Field(ge=MIN_PROBLEMS, le=MAX_PROBLEMS)
    difficulty_plan: tuple[DifficultyCount, ...] = Field(min_length=1)
    topic_tags: tuple[str, ...] = Field(min_length=1)
    problem_style: ProblemStyle
    constraints: str = Field(min_length=1)
    generation_focus: str | None = None


def plan_total(plan) -> int:
    return sum(item.count for item in plan)


def rescale_difficulty_plan(plan: list[DifficultyCount], target: int) -> list[DifficultyCount]:
    """Scale counts proportionally so they sum to `target`.

    Largest remainder wins the leftover units; ties go to the easier tier.
    Tiers that scale down to zero are dropped.
    """
    total = plan_total(plan)
    if total == target:
        return list(plan)
    if total <= 0 or target <= 0:
        return []

    merged: dict[str, int] = {}
    for item in plan:
        merged[item.difficulty] = merged.get(item.difficulty, 0) + item.count

    exact = {d: merged[d] * target / total for d in merged}
    counts = {d: int(exact[d]) for d in merged}
    leftover = target - sum(counts.values())
    by_remainder = sorted(
        merged,
        key=lambda d: (-(exact[d] - counts[d]), DIFFICULTY_ORDER.index(d)),
    )
    for d in by_remainder[:leftover]:
        counts[d] += 1

    return [
        DifficultyCount(difficulty=d, count=counts[d])
        for d in DIFFICULTY_ORDER
        if counts.get(d)
    ]
