"""Read/modify operations on finished activities. Creation lives in persistence."""

from codecraft.core.errors import ActivityLockedError, ActivityNotFoundError
from codecraft.models.problem import Activity
from codecraft.services.stores import ActivityStore

MAX_TIME_LIMIT_SECONDS = 8 * 60 * 60


def clamp_time_limit(seconds: int | None) -> int | None:
    if seconds is None:
        return None
    return max(0, min(int(seconds), MAX_TIME_LIMIT_SECONDS))


def get_activity(store: ActivityStore, activity_id: str) -> Activity:
    activity = store.get(activity_id)
    if activity is None:
        raise ActivityNotFoundError(activity_id)
    return activity


def list_activities(store: ActivityStore, limit: int = 50) -> list[Activity]:
    return store.list(limit=limit)


_UNCHANGED = object()


def patch_activity(
    store: ActivityStore,
    activity_id: str,
    *,
    title: str | None = None,
    time_limit_seconds=_UNCHANGED,
) -> Activity:
    activity = get_activity(store, activity_id)
    if activity.status != "DRAFT":
        raise ActivityLockedError("Published activities cannot be edited.")
    if title is not None and title.strip():
        activity.title = title.strip()[:200]
    if time_limit_seconds is not _UNCHANGED:
        activity.time_limit_seconds = clamp_time_limit(time_limit_seconds)
    return store.update(activity)


def publish_activity(store: ActivityStore, activity_id: str) -> Activity:
    activity = get_activity(store, activity_id)
    if activity.status == "PUBLISHED":
        return activity
    activity.status = "PUBLISHED"
    return store.update(activity)
