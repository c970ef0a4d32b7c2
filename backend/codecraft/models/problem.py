from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from codecraft.models.spec import ActivityLanguage, Difficulty, ProblemStyle

FileRole = Literal["entry", "support", "readonly"]
ActivityStatus = Literal["DRAFT", "PUBLISHED"]

# Keys that must never reach storage or a learner.
REFERENCE_KEYS: frozenset[str] = frozenset({"reference_solution", "reference_workspace"})


class GenerationSlot(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    difficulty: Difficulty
    topic: str
    language: ActivityLanguage
    problem_style: ProblemStyle


class WorkspaceFile(BaseModel):
    path: str
    role: FileRole = "support"
    content: str


class Workspace(BaseModel):
    files: list[WorkspaceFile] = Field(min_length=1)
    entrypoint: str

    def as_file_map(self) -> dict[str, str]:
        return {f.path: f.content for f in self.files}


class SampleCase(BaseModel):
    input: str
    output: str


class Pedagogy(BaseModel):
    scaffold_level: int = Field(ge=0, le=100)
    learning_goal: str
    hints_enabled: bool = True


class ProblemBase(BaseModel):
    id: str
    title: str
    description: str
    language: ActivityLanguage
    difficulty: Difficulty
    topic_tag: str
    problem_style: ProblemStyle
    constraints: str
    samples: list[SampleCase]
    starter_code: str | None = None
    workspace: Workspace | None = None
    test_suite: str
    pedagogy: Pedagogy | None = None


class ProblemDraft(ProblemBase):
    """Generator output that passed the contract. Still carries the answer."""

    reference_solution: str | None = None
    reference_workspace: Workspace | None = None

    def solution_files(self, solution_filename: str) -> dict[str, str]:
        if self.reference_workspace is not None:
            return self.reference_workspace.as_file_map()
        return {solution_filename: self.reference_solution or ""}

    def to_problem(self) -> "Problem":
        return Problem.model_validate(self.model_dump(exclude=set(REFERENCE_KEYS)))


class Problem(ProblemBase):
    """Learner-facing problem. Has no reference fields at all."""

    model_config = ConfigDict(extra="forbid")


class Activity(BaseModel):
    id: str
    thread_id: str | None = None
    title: str
    prompt: str = ""
    problems: list[Problem]
    status: ActivityStatus = "DRAFT"
    time_limit_seconds: int | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
