from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from codecraft.core.errors import InvalidTransitionError
from codecraft.models.spec import SpecificationDraft

LearningMode = Literal["practice", "guided"]


class ThreadState(str, Enum):
    DRAFT = "DRAFT"
    CLARIFYING = "CLARIFYING"
    READY = "READY"
    GENERATING = "GENERATING"
    SAVED = "SAVED"
    FAILED = "FAILED"


ALLOWED_TRANSITIONS: dict[ThreadState, frozenset[ThreadState]] = {
    ThreadState.DRAFT: frozenset({ThreadState.CLARIFYING, ThreadState.READY}),
    ThreadState.CLARIFYING: frozenset(
        {ThreadState.CLARIFYING, ThreadState.READY, ThreadState.FAILED}
    ),
    ThreadState.READY: frozenset(
        {ThreadState.CLARIFYING, ThreadState.READY, ThreadState.GENERATING, ThreadState.FAILED}
    ),
    ThreadState.GENERATING: frozenset({ThreadState.SAVED, ThreadState.FAILED}),
    ThreadState.SAVED: frozenset(),
    ThreadState.FAILED: frozenset(),
}

CHAT_STATES = frozenset({ThreadState.DRAFT, ThreadState.CLARIFYING, ThreadState.READY})


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ThreadMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    created_at: datetime = Field(default_factory=_now)


class PendingPatch(BaseModel):
    """A hard-field change waiting for an explicit yes."""

    fields: dict[str, Any]
    question: str
    question_key: str


class Thread(BaseModel):
    id: str
    state: ThreadState = ThreadState.DRAFT
    learning_mode: LearningMode = "practice"
    spec: SpecificationDraft = Field(default_factory=SpecificationDraft)
    messages: list[ThreadMessage] = []
    commitments: list[str] = []
    pending: PendingPatch | None = None
    activity_id: str | None = None
    last_error: str | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def transition_to(self, state: ThreadState) -> None:
        if state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(f"{self.state.value} -> {state.value} is not allowed")
        self.state = state

    def commit(self, field: str) -> None:
        if field not in self.commitments:
            self.commitments.append(field)

    def add_message(self, role: str, content: str) -> None:
        self.messages.append(ThreadMessage(role=role, content=content))

    def summary(self) -> dict:
        last = self.messages[-1] if self.messages else None
        return {
            "id": self.id,
            "state": self.state.value,
            "learning_mode": self.learning_mode,
            "activity_id": self.activity_id,
            "message_count": len(self.messages),
            "last_message": last.content if last else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
