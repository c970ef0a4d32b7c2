"""
Persistence boundary: the only code that creates an Activity.

persist_activity() re-checks what the pipeline already guarantees (every slot
DONE, no reference material) instead of trusting the caller.
"""

import logging
import uuid

from codecraft.core.errors import PersistenceInvariantError, ThreadNotFoundError
from codecraft.models.problem import REFERENCE_KEYS, Activity, Problem
from codecraft.models.thread import ThreadState
from codecraft.services.slot_pipeline import SlotStage, SlotState
from codecraft.services.stores import ActivityStore, ThreadStore

logger = logging.getLogger("codecraft.persistence")


def _strip_reference(problem) -> Problem:
    data = problem.model_dump()
    leaked = REFERENCE_KEYS & set(data)
    if leaked:
        logger.warning("Problem %s reached persistence with %s; stripping", problem.id, sorted(leaked))
    return Problem.model_validate({k: v for k, v in data.items() if k not in REFERENCE_KEYS})


def build_title(language: str, topics: list[str]) -> str:
    names = {"python": "Python", "java": "Java", "cpp": "C++", "sql": "SQL"}
    topic_text = ", ".join(topics[:3]) if topics else "practice"
    return f"{names.get(language, language)} practice: {topic_text}"


def persist_activity(
    thread_id: str,
    verified_slots: list[SlotState],
    *,
    threads: ThreadStore,
    activities: ActivityStore,
) -> str:
    if not verified_slots:
        raise PersistenceInvariantError("cannot persist an activity with no problems")
    not_done = [s.slot.index for s in verified_slots if s.stage != SlotStage.DONE or s.problem is None]
    if not_done:
        raise PersistenceInvariantError(f"slots not DONE: {not_done}")

    thread = threads.get(thread_id)
    if thread is None:
        raise ThreadNotFoundError(thread_id)

    ordered = sorted(verified_slots, key=lambda s: s.slot.index)
    problems = [_strip_reference(s.problem) for s in ordered]
    topics = list(dict.fromkeys(p.topic_tag for p in problems))

    prompt = next((m.content for m in thread.messages if m.role == "user"), "")
    activity = Activity(
        id=str(uuid.uuid4()),
        thread_id=thread.id,
        title=build_title(problems[0].language, topics),
        prompt=prompt,
        problems=problems,
    )

    thread.transition_to(ThreadState.SAVED)
    thread.activity_id = activity.id
    thread.last_error = None
    activities.commit_generation(activity, thread)

    logger.info("Persisted activity %s (%d problems) for thread %s", activity.id, len(problems), thread_id)
    return activity.id
