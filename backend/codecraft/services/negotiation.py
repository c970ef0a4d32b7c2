"""
Activity negotiation: one chat turn in, one validated thread update out.

The model only ever proposes. Its patch goes through the contract validator,
explicit user shorthand overrides it, and changes to hard fields (language,
count, difficulty plan) wait for an explicit yes unless the user stated them
and they don't contradict an earlier commitment. The next question is chosen
by a fixed priority order, never by the model.
"""

import asyncio
import json
import logging
from typing import Any, Literal

from pydantic import BaseModel

from codecraft.core.errors import CompletionError, FatalPipelineError, ThreadNotFoundError
from codecraft.models.language import LANGUAGE_PROFILES, default_constraints
from codecraft.models.spec import (
    COUPLED_FIELDS,
    HARD_FIELDS,
    MAX_PROBLEMS,
    SPEC_FIELDS,
    DifficultyCount,
    SpecificationDraft,
    plan_total,
    rescale_difficulty_plan,
)
from codecraft.models.thread import CHAT_STATES, PendingPatch, Thread, ThreadState
from codecraft.prompts.negotiation import (
    CONFIRM_TEMPLATE,
    DIALOGUE_SYSTEM_PROMPT,
    DIALOGUE_USER_TEMPLATE,
    FIELD_QUESTIONS,
    OVER_LIMIT_QUESTION,
    READY_MESSAGE,
)
from codecraft.services.completion_gateway import CompletionGateway
from codecraft.services.contract_validator import Unset, Valid, validate_spec_patch
from codecraft.services.shorthand import is_affirmative, parse_shorthand
from codecraft.services.stores import ThreadStore
from codecraft.utils.json_extract import parse_json_object

logger = logging.getLogger("codecraft.negotiation")

HISTORY_TURNS = 10
DIALOGUE_TEMPERATURE = 0.2
DIALOGUE_MAX_TOKENS = 800

NextAction = Literal["ask", "confirm", "ready", "none"]


class TurnResult(BaseModel):
    accepted: bool
    state: ThreadState
    next_prompt: str | None = None
    question_key: str | None = None
    next_action: NextAction = "none"
    spec: SpecificationDraft
    done: bool = False
    assistant_message: str | None = None
    error: str | None = None
    echo: str | None = None


# ── Spec helpers ─────────────────────────────────────────────────────────────

def describe_value(field: str, value: Any) -> str:
    if field == "difficulty_plan":
        return ", ".join(f"{item.count} {item.difficulty}" for item in value)
    if field == "topic_tags":
        return ", ".join(value)
    if field == "language":
        return LANGUAGE_PROFILES[value].display_name
    return str(value)


def describe_spec(spec: SpecificationDraft) -> str:
    parts = []
    if spec.problem_count and spec.language:
        parts.append(f"{spec.problem_count} {describe_value('language', spec.language)} problem(s)")
    if spec.difficulty_plan:
        parts.append(describe_value("difficulty_plan", spec.difficulty_plan))
    if spec.topic_tags:
        parts.append("topics: " + describe_value("topic_tags", spec.topic_tags))
    if spec.problem_style:
        parts.append(f"{spec.problem_style} style")
    return "; ".join(parts)


def apply_values(spec: SpecificationDraft, values: dict[str, Any]) -> SpecificationDraft:
    """Merge validated values, keeping count and plan consistent."""
    updates = dict(values)

    new_count = updates.get("problem_count")
    if (
        new_count is not None
        and "difficulty_plan" not in updates
        and spec.difficulty_plan
        and plan_total(spec.difficulty_plan) != new_count
    ):
        updates["difficulty_plan"] = rescale_difficulty_plan(spec.difficulty_plan, new_count)

    new_language = updates.get("language")
    if new_language and "constraints" not in updates:
        old_default = default_constraints(spec.language) if spec.language else None
        if spec.constraints is None or spec.constraints == old_default:
            updates["constraints"] = default_constraints(new_language)

    return spec.merge(updates)


def next_question(spec: SpecificationDraft, *, count_deferred: bool = False, requested: int | None = None):
    """(question, key) for the first missing field in fixed priority order."""
    missing = spec.missing_fields()
    if count_deferred:
        return OVER_LIMIT_QUESTION.format(max_problems=MAX_PROBLEMS, requested=requested), "problem_count"
    if not missing:
        return None, None
    key = missing[0]
    question = FIELD_QUESTIONS[key].format(
        max_problems=MAX_PROBLEMS,
        count=spec.problem_count or "",
    )
    return question, key


# ── Negotiator ───────────────────────────────────────────────────────────────

class SpecNegotiator:
    def __init__(self, gateway: CompletionGateway, threads: ThreadStore):
        self.gateway = gateway
        self.threads = threads

    def _load(self, thread_id: str) -> Thread:
        thread = self.threads.get(thread_id)
        if thread is None:
            raise ThreadNotFoundError(thread_id)
        return thread

    def _rejected(self, thread: Thread, message: str, error: str) -> TurnResult:
        return TurnResult(
            accepted=False,
            state=thread.state,
            spec=thread.spec,
            done=thread.state == ThreadState.READY,
            error=error,
            echo=message,
        )

    async def handle_turn(self, thread_id: str, message: str) -> TurnResult:
        thread = await asyncio.to_thread(self._load, thread_id)
        text = (message or "").strip()
        if not text:
            return self._rejected(thread, message, "Message is empty.")
        if thread.state not in CHAT_STATES:
            return self._rejected(
                thread, message, f"This thread is {thread.state.value} and no longer accepts messages."
            )

        thread.add_message("user", text)
        try:
            result = await self._negotiate(thread, text)
        except FatalPipelineError as e:
            logger.exception("[negotiation] thread %s: fatal error", thread.id)
            if thread.state != ThreadState.DRAFT:
                thread.transition_to(ThreadState.FAILED)
            thread.last_error = f"Internal error: {e.__class__.__name__}"
            thread.pending = None
            await asyncio.to_thread(self.threads.save, thread)
            raise

        await asyncio.to_thread(self.threads.save, thread)
        return result

    async def _propose(self, thread: Thread, text: str) -> tuple[str | None, dict]:
        history = "\n".join(f"{m.role}: {m.content}" for m in thread.messages[-HISTORY_TURNS:-1])
        user_prompt = DIALOGUE_USER_TEMPLATE.format(
            spec_json=json.dumps(thread.spec.model_dump(mode="json"), indent=2),
            missing=", ".join(thread.spec.missing_fields()) or "none",
            history=history or "(none)",
            message=text,
        )
        try:
            raw = await self.gateway.complete(
                DIALOGUE_SYSTEM_PROMPT,
                user_prompt,
                temperature=DIALOGUE_TEMPERATURE,
                max_output_tokens=DIALOGUE_MAX_TOKENS,
            )
        except CompletionError as e:
            logger.warning("[negotiation] thread %s: proposal unavailable (%s)", thread.id, e)
            return None, {}

        data = parse_json_object(raw)
        if data is None:
            logger.warning("[negotiation] thread %s: proposal was not JSON", thread.id)
            return None, {}
        patch = data.get("proposedPatch") or data.get("proposed_patch") or {}
        ack = data.get("acknowledgement")
        return (ack.strip() if isinstance(ack, str) and ack.strip() else None), (
            patch if isinstance(patch, dict) else {}
        )

    async def _negotiate(self, thread: Thread, text: str) -> TurnResult:
        # 1. Outstanding confirmation
        if thread.pending is not None:
            pending, thread.pending = thread.pending, None
            if is_affirmative(text):
                values = self._revalidate(pending.fields, thread.spec)
                thread.spec = apply_values(thread.spec, values)
                for name in values:
                    if name in HARD_FIELDS:
                        thread.commit(name)
                changes = ", ".join(f"{k} = {describe_value(k, v)}" for k, v in values.items())
                return self._finish(thread, ack=f"Updated {changes}." if changes else None)
            logger.info("[negotiation] thread %s: pending %s discarded", thread.id, pending.question_key)

        # 2. Shorthand, then the advisory proposal
        shorthand = parse_shorthand(text)
        ack, proposal = await self._propose(thread, text)

        candidate = {k: v for k, v in proposal.items() if k in SPEC_FIELDS}
        candidate.update(shorthand.values)
        explicit = set(shorthand.explicit_fields)
        if shorthand.count_deferred:
            candidate.pop("problem_count", None)
            candidate.pop("difficulty_plan", None)

        # 3. Contract
        patch = validate_spec_patch(candidate, current=thread.spec)
        if patch.rejected():
            logger.info("[negotiation] thread %s: dropped fields %s", thread.id, patch.rejected())
        values = patch.valid_values()

        if (
            "difficulty_plan" in values
            and isinstance(patch.get("problem_count"), Unset)
            and thread.spec.problem_count is None
        ):
            values["problem_count"] = plan_total(values["difficulty_plan"])
            if "difficulty_plan" in explicit:
                explicit.add("problem_count")

        # 4. Hard-field gating
        confirm: dict[str, Any] = {}
        for name in SPEC_FIELDS:
            if name not in HARD_FIELDS or name not in values:
                continue
            current = getattr(thread.spec, name)
            if values[name] == current:
                values.pop(name)
                if name in explicit:
                    thread.commit(name)
                continue
            committed = name in thread.commitments
            if committed or name not in explicit:
                confirm[name] = values[name]

        if confirm.keys() & COUPLED_FIELDS:
            for name in COUPLED_FIELDS:
                if name in values:
                    confirm[name] = values[name]
        for name in confirm:
            values.pop(name, None)

        # 5. Apply the rest
        thread.spec = apply_values(thread.spec, values)
        for name in values:
            if name in HARD_FIELDS and name in explicit:
                thread.commit(name)

        if confirm:
            ordered = [n for n in SPEC_FIELDS if n in confirm]
            changes = " and ".join(f"{n.replace('_', ' ')} to {describe_value(n, confirm[n])}" for n in ordered)
            thread.pending = PendingPatch(
                fields={n: self._dump(confirm[n]) for n in ordered},
                question=CONFIRM_TEMPLATE.format(changes=changes),
                question_key="confirm:" + ",".join(ordered),
            )

        # 6. Completeness
        return self._finish(
            thread,
            ack=ack,
            count_deferred=shorthand.count_deferred,
            requested=shorthand.requested_count,
        )

    @staticmethod
    def _dump(value: Any) -> Any:
        if isinstance(value, list) and value and isinstance(value[0], DifficultyCount):
            return [item.model_dump() for item in value]
        return value

    def _revalidate(self, fields: dict[str, Any], spec: SpecificationDraft) -> dict[str, Any]:
        patch = validate_spec_patch(fields, current=spec)
        return {k: v.value for k, v in patch.fields.items() if isinstance(v, Valid)}

    def _finish(
        self,
        thread: Thread,
        *,
        ack: str | None,
        count_deferred: bool = False,
        requested: int | None = None,
    ) -> TurnResult:
        if thread.spec.language and not thread.spec.constraints:
            thread.spec = thread.spec.merge({"constraints": default_constraints(thread.spec.language)})

        if thread.pending is not None:
            state, action = ThreadState.CLARIFYING, "confirm"
            prompt, key = thread.pending.question, thread.pending.question_key
        elif thread.spec.is_complete() and not count_deferred:
            state, action = ThreadState.READY, "ready"
            prompt, key = None, None
        else:
            state, action = ThreadState.CLARIFYING, "ask"
            prompt, key = next_question(thread.spec, count_deferred=count_deferred, requested=requested)

        thread.transition_to(state)
        thread.last_error = None

        if state == ThreadState.READY:
            reply = READY_MESSAGE.format(summary=describe_spec(thread.spec))
        else:
            reply = prompt
        if ack:
            reply = f"{ack}\n\n{reply}"
        thread.add_message("assistant", reply)

        logger.info(
            "[negotiation] thread %s -> %s (key=%s, committed=%s)",
            thread.id, state.value, key, thread.commitments,
        )
        return TurnResult(
            accepted=True,
            state=state,
            next_prompt=prompt,
            question_key=key,
            next_action=action,
            spec=thread.spec,
            done=state == ThreadState.READY,
            assistant_message=reply,
        )
