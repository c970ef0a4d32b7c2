"""Progress events streamed to clients.

Payloads carry structured metadata only: slot index, stage, attempt number and
a short single-line error. Prompt text, raw model output and reference
solutions never appear here.
"""
import re
import time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SHORT_ERROR_MAX = 160

_WS = re.compile(r"\s+")


def sanitize_error(message: str | None, fallback: str = "Unknown error") -> str:
    text = _WS.sub(" ", message or "").strip()
    if not text:
        return fallback
    if len(text) > SHORT_ERROR_MAX:
        text = text[: SHORT_ERROR_MAX - 3].rstrip() + "..."
    return text


class ProgressEvent(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: str
    ts: float = Field(default_factory=time.time)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class GenerationStarted(ProgressEvent):
    type: Literal["generation_started"] = "generation_started"
    total_slots: int
    run: int


class SlotEvent(ProgressEvent):
    slot_index: int


class SlotStarted(SlotEvent):
    type: Literal["slot_started"] = "slot_started"
    difficulty: str
    topic: str
    language: str


class SlotLlmAttemptStarted(SlotEvent):
    type: Literal["slot_llm_attempt_started"] = "slot_llm_attempt_started"
    attempt: int


class SlotContractValidated(SlotEvent):
    type: Literal["slot_contract_validated"] = "slot_contract_validated"


class SlotContractFailed(SlotEvent):
    type: Literal["slot_contract_failed"] = "slot_contract_failed"
    short_error: str


class SlotDockerValidationStarted(SlotEvent):
    type: Literal["slot_docker_validation_started"] = "slot_docker_validation_started"


class SlotDockerValidationFailed(SlotEvent):
    type: Literal["slot_docker_validation_failed"] = "slot_docker_validation_failed"
    short_error: str
    timed_out: bool = False


class SlotCompleted(SlotEvent):
    type: Literal["slot_completed"] = "slot_completed"
    attempts: int


class SlotFailed(SlotEvent):
    type: Literal["slot_failed"] = "slot_failed"
    attempts: int
    short_error: str


class GenerationFailed(ProgressEvent):
    type: Literal["generation_failed"] = "generation_failed"
    error: str
    slot_index: int | None = None


class GenerationCompleted(ProgressEvent):
    type: Literal["generation_completed"] = "generation_completed"
    activity_id: str
    problem_count: int


class Heartbeat(ProgressEvent):
    type: Literal["heartbeat"] = "heartbeat"
