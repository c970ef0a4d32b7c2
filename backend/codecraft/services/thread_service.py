"""
Thread lifecycle: create, chat, generate, stream progress.

Generation runs as its own task so a client going away never interrupts it;
the only terminal outcomes are SAVED (with an activity id) or FAILED (with a
reason).
"""

import asyncio
import contextlib
import logging
import time
import uuid

from pydantic import BaseModel, ValidationError

from codecraft.core.errors import (
    InvalidThreadStateError,
    RunFailedError,
    ThreadNotFoundError,
)
from codecraft.models.progress import GenerationCompleted, GenerationFailed, GenerationStarted, sanitize_error
from codecraft.models.thread import LearningMode, Thread, ThreadState
from codecraft.prompts.negotiation import INITIAL_PROMPT
from codecraft.services.negotiation import SpecNegotiator, TurnResult
from codecraft.services.persistence import persist_activity
from codecraft.services.planner import plan
from codecraft.services.progress_bus import ProgressBus, Subscription
from codecraft.services.slot_pipeline import SlotPipeline
from codecraft.services.stores import ActivityStore, ThreadStore
from codecraft.services.telemetry import record_generation

logger = logging.getLogger("codecraft.threads")

INTERNAL_FAILURE = "Generation failed due to an internal error."


class CreatedThread(BaseModel):
    thread_id: str
    state: ThreadState
    learning_mode: LearningMode
    initial_prompt: str


class GenerationResult(BaseModel):
    activity_id: str
    problem_count: int


class ThreadService:
    def __init__(
        self,
        *,
        threads: ThreadStore,
        activities: ActivityStore,
        negotiator: SpecNegotiator,
        pipeline: SlotPipeline,
        bus: ProgressBus,
        heartbeat_interval: float = 10.0,
    ):
        self.threads = threads
        self.activities = activities
        self.negotiator = negotiator
        self.pipeline = pipeline
        self.bus = bus
        self.heartbeat_interval = heartbeat_interval
        self._running: dict[str, asyncio.Task] = {}

    # ── Threads ──────────────────────────────────────────────────────────────

    def create_thread(self, learning_mode: LearningMode = "practice") -> CreatedThread:
        thread = Thread(id=str(uuid.uuid4()), learning_mode=learning_mode)
        thread.add_message("assistant", INITIAL_PROMPT)
        self.threads.save(thread)
        logger.info("Created thread %s (%s)", thread.id, learning_mode)
        return CreatedThread(
            thread_id=thread.id,
            state=thread.state,
            learning_mode=thread.learning_mode,
            initial_prompt=INITIAL_PROMPT,
        )

    def get_thread(self, thread_id: str) -> Thread:
        thread = self.threads.get(thread_id)
        if thread is None:
            raise ThreadNotFoundError(thread_id)
        return thread

    def list_threads(self, limit: int = 50) -> list[Thread]:
        return self.threads.list(limit=limit)

    async def post_message(self, thread_id: str, message: str) -> TurnResult:
        return await self.negotiator.handle_turn(thread_id, message)

    # ── Generation ───────────────────────────────────────────────────────────

    async def trigger_generation(self, thread_id: str) -> GenerationResult:
        thread = await asyncio.to_thread(self.get_thread, thread_id)
        state = ThreadState.GENERATING if thread_id in self._running else thread.state
        if state != ThreadState.READY:
            raise InvalidThreadStateError(
                f"Generation needs a READY thread; this one is {state.value}."
            )
        try:
            spec = thread.spec.freeze()
        except ValidationError as e:
            raise InvalidThreadStateError("The activity spec is incomplete.") from e

        thread.transition_to(ThreadState.GENERATING)
        # registered before any await so a second trigger sees it
        task = asyncio.create_task(self._run(thread, spec))
        self._running[thread_id] = task
        task.add_done_callback(lambda _: self._running.pop(thread_id, None))
        return await asyncio.shield(task)

    async def _run(self, thread: Thread, spec) -> GenerationResult:
        thread_id = thread.id
        await asyncio.to_thread(self.threads.save, thread)
        run_no = self.bus.start_run(thread_id)

        def publish(event):
            self.bus.publish(thread_id, event)

        def elapsed_ms() -> int:
            return int((time.perf_counter() - started) * 1000)

        started = time.perf_counter()
        slot_count = spec.problem_count
        heartbeat = asyncio.create_task(self.bus.run_heartbeats(thread_id, self.heartbeat_interval))
        try:
            slots = plan(spec)
            publish(GenerationStarted(total_slots=len(slots), run=run_no))
            logger.info("Thread %s run %d: %d slot(s)", thread_id, run_no, len(slots))

            states = await self.pipeline.run(slots, spec, publish, thread.learning_mode)
            activity_id = await asyncio.to_thread(
                persist_activity, thread_id, states, threads=self.threads, activities=self.activities
            )
        except RunFailedError as e:
            await self._mark_failed(thread_id, e.reason, e.slot_index)
            record_generation(thread_id, run_no, ok=False, slot_count=slot_count,
                              latency_ms=elapsed_ms(), failed_slot=e.slot_index,
                              error_type="RunFailedError")
            raise
        except Exception as e:
            logger.exception("Thread %s run %d: unrecoverable error", thread_id, run_no)
            await self._mark_failed(thread_id, INTERNAL_FAILURE, None)
            record_generation(thread_id, run_no, ok=False, slot_count=slot_count,
                              latency_ms=elapsed_ms(), error_type=e.__class__.__name__)
            raise
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat

        record_generation(thread_id, run_no, ok=True, slot_count=len(states),
                          latency_ms=elapsed_ms(), activity_id=activity_id)
        publish(GenerationCompleted(activity_id=activity_id, problem_count=len(states)))
        return GenerationResult(activity_id=activity_id, problem_count=len(states))

    async def _mark_failed(self, thread_id: str, reason: str, slot_index: int | None) -> None:
        reason = sanitize_error(reason)
        await asyncio.to_thread(self._record_failure, thread_id, reason)
        self.bus.publish(thread_id, GenerationFailed(error=reason, slot_index=slot_index))

    def _record_failure(self, thread_id: str, reason: str) -> None:
        thread = self.threads.get(thread_id)
        if thread is not None and thread.state == ThreadState.GENERATING:
            thread.transition_to(ThreadState.FAILED)
            thread.last_error = reason
            self.threads.save(thread)

    def is_running(self, thread_id: str) -> bool:
        return thread_id in self._running

    # ── Progress ─────────────────────────────────────────────────────────────

    def subscribe_progress(self, thread_id: str) -> Subscription:
        self.get_thread(thread_id)
        return self.bus.subscribe(thread_id)

    async def open_progress(self, thread_id: str) -> Subscription:
        await asyncio.to_thread(self.get_thread, thread_id)
        return self.bus.subscribe(thread_id)
