"""
Slot generation pipeline.

Per slot:
  QUEUED -> DRAFTING -> CONTRACT_CHECK -> SANDBOX_CHECK -> DONE
with FAILED once MAX_SLOT_ATTEMPTS drafting attempts are spent. A failure at
either check sends the slot back to DRAFTING with the reason as corrective
feedback; contract and sandbox failures share one attempt budget.

SlotState is immutable. The transition functions below are pure, and
run_slot() is the only place that performs I/O (gateway, sandbox, events).
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable

from codecraft.core.errors import (
    CompletionError,
    InvalidTransitionError,
    RunFailedError,
    SandboxError,
)
from codecraft.models.language import TEST_CASE_COUNT
from codecraft.models.problem import GenerationSlot, Problem, ProblemDraft
from codecraft.models.progress import (
    ProgressEvent,
    SlotCompleted,
    SlotContractFailed,
    SlotContractValidated,
    SlotDockerValidationFailed,
    SlotDockerValidationStarted,
    SlotFailed,
    SlotLlmAttemptStarted,
    SlotStarted,
    sanitize_error,
)
from codecraft.models.spec import ActivitySpec
from codecraft.prompts.problem_generation import GENERATOR_SYSTEM_PROMPTS, build_slot_prompt
from codecraft.services.completion_gateway import CompletionGateway
from codecraft.services.contract_validator import (
    DraftRejected,
    solution_files_for,
    validate_problem_draft,
)
from codecraft.services.sandbox import JudgeResult, SandboxExecutor
from codecraft.services.scaffold import apply_guided_scaffold
from codecraft.utils.json_extract import parse_json_object

logger = logging.getLogger("codecraft.slot_pipeline")

MAX_SLOT_ATTEMPTS = 3
MAX_BACKOFF_SECONDS = 8.0
GENERATION_TEMPERATURE = 0.4
GENERATION_MAX_TOKENS = 6000
MAX_FEEDBACK_CHARS = 1500

Publish = Callable[[ProgressEvent], None]


class SlotStage(str, Enum):
    QUEUED = "QUEUED"
    DRAFTING = "DRAFTING"
    CONTRACT_CHECK = "CONTRACT_CHECK"
    SANDBOX_CHECK = "SANDBOX_CHECK"
    DONE = "DONE"
    FAILED = "FAILED"


TERMINAL_STAGES = frozenset({SlotStage.DONE, SlotStage.FAILED})


@dataclass(frozen=True)
class SlotState:
    slot: GenerationSlot
    stage: SlotStage = SlotStage.QUEUED
    attempt: int = 0
    feedback: str | None = None
    last_error: str | None = None
    timed_out: bool = False
    draft: ProblemDraft | None = None
    problem: Problem | None = None


# ════════════════════════════════════════════════════════════
# A) Pure transitions
# ════════════════════════════════════════════════════════════

def _expect(state: SlotState, *stages: SlotStage) -> None:
    if state.stage not in stages:
        raise InvalidTransitionError(
            f"slot {state.slot.index}: {state.stage.value} is not one of "
            f"{', '.join(s.value for s in stages)}"
        )


def start_drafting(state: SlotState) -> SlotState:
    _expect(state, SlotStage.QUEUED)
    return replace(state, stage=SlotStage.DRAFTING, attempt=1)


def to_contract_check(state: SlotState) -> SlotState:
    _expect(state, SlotStage.DRAFTING)
    return replace(state, stage=SlotStage.CONTRACT_CHECK)


def to_sandbox_check(state: SlotState, draft: ProblemDraft) -> SlotState:
    _expect(state, SlotStage.CONTRACT_CHECK)
    return replace(state, stage=SlotStage.SANDBOX_CHECK, draft=draft)


def attempt_failed(
    state: SlotState,
    error: str,
    feedback: str | None = None,
    timed_out: bool = False,
) -> SlotState:
    """Back to DRAFTING for the next attempt, or FAILED when none are left."""
    _expect(state, SlotStage.DRAFTING, SlotStage.CONTRACT_CHECK, SlotStage.SANDBOX_CHECK)
    if state.attempt >= MAX_SLOT_ATTEMPTS:
        return replace(
            state, stage=SlotStage.FAILED, last_error=error, timed_out=timed_out, draft=None
        )
    return replace(
        state,
        stage=SlotStage.DRAFTING,
        attempt=state.attempt + 1,
        feedback=feedback,
        last_error=error,
        timed_out=timed_out,
        draft=None,
    )


def complete(state: SlotState, problem: Problem) -> SlotState:
    _expect(state, SlotStage.SANDBOX_CHECK)
    return replace(state, stage=SlotStage.DONE, draft=None, problem=problem, last_error=None)


def backoff_delay(base_seconds: float, attempt: int) -> float:
    return min(base_seconds * 2 ** (attempt - 1), MAX_BACKOFF_SECONDS)


# ════════════════════════════════════════════════════════════
# B) Failure descriptions
# ════════════════════════════════════════════════════════════

def describe_judge_failure(result: JudgeResult) -> str:
    if result.timed_out:
        return "Reference solution timed out"
    if result.failed:
        return f"Reference solution failed {len(result.failed)} of {TEST_CASE_COUNT} tests"
    return "Reference solution did not compile or crashed"


def _judge_feedback(result: JudgeResult) -> str:
    lines = [describe_judge_failure(result) + "."]
    if result.failed:
        lines.append("Failing tests: " + ", ".join(result.failed))
    detail = (result.stderr or result.stdout or "").strip()
    if detail:
        lines.append("Runner output (truncated):\n" + detail[-MAX_FEEDBACK_CHARS:])
    lines.append("Fix the reference solution or the tests so that all tests pass.")
    return "\n".join(lines)


def _contract_feedback(rejected: DraftRejected) -> str:
    issues = rejected.issues or (rejected.reason,)
    return "\n".join(f"- {issue}" for issue in issues)[:MAX_FEEDBACK_CHARS]


# ════════════════════════════════════════════════════════════
# C) Pipeline
# ════════════════════════════════════════════════════════════

def finalize_problem(draft: ProblemDraft, learning_mode: str) -> Problem:
    """Scaffold (guided mode) then strip reference material."""
    if learning_mode == "guided":
        draft = apply_guided_scaffold(draft)
    return draft.to_problem()


def make_ids_unique(problems: list[Problem]) -> list[Problem]:
    seen: set[str] = set()
    out = []
    for i, problem in enumerate(problems):
        pid = problem.id
        n = i + 1
        while pid in seen:
            pid = f"{problem.id}-{n}"
            n += 1
        seen.add(pid)
        out.append(problem if pid == problem.id else problem.model_copy(update={"id": pid}))
    return out


class SlotPipeline:
    def __init__(
        self,
        gateway: CompletionGateway,
        sandbox: SandboxExecutor,
        *,
        backoff_seconds: float = 0.5,
        concurrency: int = 2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.sandbox = sandbox
        self.backoff_seconds = backoff_seconds
        self.concurrency = max(1, concurrency)
        self._sleep = sleep

    async def _draft(self, state: SlotState, spec: ActivitySpec) -> str:
        prompt = build_slot_prompt(
            state.slot,
            constraints=spec.constraints,
            focus=spec.generation_focus,
            feedback=state.feedback,
        )
        return await self.gateway.complete(
            GENERATOR_SYSTEM_PROMPTS[state.slot.language],
            prompt,
            temperature=GENERATION_TEMPERATURE,
            max_output_tokens=GENERATION_MAX_TOKENS,
        )

    async def run_slot(
        self,
        slot: GenerationSlot,
        spec: ActivitySpec,
        publish: Publish,
        learning_mode: str = "practice",
    ) -> SlotState:
        idx = slot.index
        publish(SlotStarted(slot_index=idx, difficulty=slot.difficulty, topic=slot.topic, language=slot.language))
        state = start_drafting(SlotState(slot=slot))

        while state.stage == SlotStage.DRAFTING:
            if state.attempt > 1 and self.backoff_seconds > 0:
                await self._sleep(backoff_delay(self.backoff_seconds, state.attempt - 1))
            publish(SlotLlmAttemptStarted(slot_index=idx, attempt=state.attempt))

            try:
                raw = await self._draft(state, spec)
            except CompletionError as e:
                logger.warning("Slot %d attempt %d: model call failed (%s)", idx + 1, state.attempt, e)
                state = attempt_failed(state, "Model request failed", feedback=state.feedback)
                publish(SlotContractFailed(slot_index=idx, short_error=state.last_error))
                continue

            state = to_contract_check(state)
            checked = validate_problem_draft(parse_json_object(raw), slot)
            if isinstance(checked, DraftRejected):
                logger.warning(
                    "Slot %d attempt %d contract issues: %s", idx + 1, state.attempt, checked.issues
                )
                state = attempt_failed(
                    state,
                    sanitize_error(f"Contract check failed: {checked.issues[0] if checked.issues else checked.reason}"),
                    feedback=_contract_feedback(checked),
                )
                publish(SlotContractFailed(slot_index=idx, short_error=state.last_error))
                continue

            publish(SlotContractValidated(slot_index=idx))
            state = to_sandbox_check(state, checked)
            publish(SlotDockerValidationStarted(slot_index=idx))

            try:
                result = await self.sandbox.judge(
                    slot.language, solution_files_for(checked), checked.test_suite
                )
            except SandboxError as e:
                logger.error("Slot %d attempt %d: sandbox error: %s", idx + 1, state.attempt, e)
                state = attempt_failed(state, "Sandbox unavailable", feedback=state.feedback)
                publish(SlotDockerValidationFailed(slot_index=idx, short_error=state.last_error))
                continue

            if not result.success or result.timed_out:
                message = describe_judge_failure(result)
                logger.warning("Slot %d attempt %d: %s", idx + 1, state.attempt, message)
                state = attempt_failed(
                    state, message, feedback=_judge_feedback(result), timed_out=result.timed_out
                )
                publish(
                    SlotDockerValidationFailed(
                        slot_index=idx, short_error=message, timed_out=result.timed_out
                    )
                )
                continue

            state = complete(state, finalize_problem(checked, learning_mode))

        if state.stage == SlotStage.DONE:
            logger.info("Slot %d done after %d attempt(s)", idx + 1, state.attempt)
            publish(SlotCompleted(slot_index=idx, attempts=state.attempt))
        else:
            logger.warning("Slot %d failed after %d attempts: %s", idx + 1, state.attempt, state.last_error)
            publish(
                SlotFailed(
                    slot_index=idx,
                    attempts=state.attempt,
                    short_error=sanitize_error(state.last_error),
                )
            )
        return state

    async def run(
        self,
        slots: list[GenerationSlot],
        spec: ActivitySpec,
        publish: Publish,
        learning_mode: str = "practice",
    ) -> list[SlotState]:
        """Run every slot; all must reach DONE.

        Raises RunFailedError when a slot fails. Slots not yet started at that
        point are skipped; slots already in flight finish. Defects propagate.
        """
        semaphore = asyncio.Semaphore(self.concurrency)
        failed = asyncio.Event()

        async def guarded(slot: GenerationSlot) -> SlotState | None:
            async with semaphore:
                if failed.is_set():
                    logger.info("Slot %d skipped after an earlier failure", slot.index + 1)
                    return None
                state = await self.run_slot(slot, spec, publish, learning_mode)
                if state.stage == SlotStage.FAILED:
                    failed.set()
                return state

        results = await asyncio.gather(*(guarded(s) for s in slots), return_exceptions=True)

        for r in results:
            if isinstance(r, BaseException):
                raise r

        failures = [s for s in results if s is not None and s.stage == SlotStage.FAILED]
        if failures:
            first = min(failures, key=lambda s: s.slot.index)
            raise RunFailedError(
                sanitize_error(f"Problem {first.slot.index + 1} failed: {first.last_error}"),
                slot_index=first.slot.index,
            )

        states = list(results)
        problems = make_ids_unique([s.problem for s in states])
        return [replace(s, problem=p) for s, p in zip(states, problems)]
