import logging
from datetime import datetime, timezone

from codecraft.core.errors import PersistenceInvariantError
from codecraft.models.problem import Activity
from codecraft.models.thread import Thread

logger = logging.getLogger("codecraft.stores")


class ThreadStore:
    def get(self, thread_id: str) -> Thread | None:
        raise NotImplementedError

    def save(self, thread: Thread) -> Thread:
        raise NotImplementedError

    def list(self, limit: int = 50) -> list[Thread]:
        raise NotImplementedError


class ActivityStore:
    def get(self, activity_id: str) -> Activity | None:
        raise NotImplementedError

    def list(self, limit: int = 50) -> list[Activity]:
        raise NotImplementedError

    def update(self, activity: Activity) -> Activity:
        raise NotImplementedError

    def commit_generation(self, activity: Activity, thread: Thread) -> None:
        """Write a new activity and its SAVED thread as one logical step."""
        raise NotImplementedError


class InMemoryThreadStore(ThreadStore):
    def __init__(self):
        self._data: dict[str, Thread] = {}

    def get(self, thread_id: str) -> Thread | None:
        thread = self._data.get(thread_id)
        return thread.model_copy(deep=True) if thread else None

    def save(self, thread: Thread) -> Thread:
        thread.updated_at = datetime.now(timezone.utc)
        self._data[thread.id] = thread.model_copy(deep=True)
        return thread

    def list(self, limit: int = 50) -> list[Thread]:
        threads = sorted(self._data.values(), key=lambda t: t.updated_at, reverse=True)
        return [t.model_copy(deep=True) for t in threads[:limit]]


class InMemoryActivityStore(ActivityStore):
    def __init__(self, threads: InMemoryThreadStore):
        self.threads = threads
        self._data: dict[str, Activity] = {}

    def get(self, activity_id: str) -> Activity | None:
        activity = self._data.get(activity_id)
        return activity.model_copy(deep=True) if activity else None

    def list(self, limit: int = 50) -> list[Activity]:
        items = sorted(self._data.values(), key=lambda a: a.created_at, reverse=True)
        return [a.model_copy(deep=True) for a in items[:limit]]

    def update(self, activity: Activity) -> Activity:
        if activity.id not in self._data:
            raise PersistenceInvariantError(f"update of unknown activity {activity.id}")
        self._data[activity.id] = activity.model_copy(deep=True)
        return activity

    def commit_generation(self, activity: Activity, thread: Thread) -> None:
        if activity.id in self._data:
            raise PersistenceInvariantError(f"activity {activity.id} already exists")
        self._data[activity.id] = activity.model_copy(deep=True)
        self.threads.save(thread)


class SupabaseThreadStore(ThreadStore):
    def __init__(self, supabase_client):
        self.sb = supabase_client

    def get(self, thread_id: str) -> Thread | None:
        r = self.sb.table("threads").select("*").eq("id", thread_id).maybe_single().execute()
        data = getattr(r, "data", None) if r is not None else None
        if not data:
            return None
        return Thread.model_validate(data)

    def save(self, thread: Thread) -> Thread:
        thread.updated_at = datetime.now(timezone.utc)
        self.sb.table("threads").upsert(thread.model_dump(mode="json"), on_conflict="id").execute()
        return thread

    def list(self, limit: int = 50) -> list[Thread]:
        r = (
            self.sb.table("threads")
            .select("*")
            .order("updated_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [Thread.model_validate(d) for d in (getattr(r, "data", None) or [])]


class SupabaseActivityStore(ActivityStore):
    def __init__(self, supabase_client, threads: SupabaseThreadStore):
        self.sb = supabase_client
        self.threads = threads

    def get(self, activity_id: str) -> Activity | None:
        r = self.sb.table("activities").select("*").eq("id", activity_id).maybe_single().execute()
        data = getattr(r, "data", None) if r is not None else None
        if not data:
            return None
        return Activity.model_validate(data)

    def list(self, limit: int = 50) -> list[Activity]:
        r = (
            self.sb.table("activities")
            .select("*")
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [Activity.model_validate(d) for d in (getattr(r, "data", None) or [])]

    def update(self, activity: Activity) -> Activity:
        payload = activity.model_dump(mode="json", include={"title", "status", "time_limit_seconds"})
        self.sb.table("activities").update(payload).eq("id", activity.id).execute()
        return activity

    def commit_generation(self, activity: Activity, thread: Thread) -> None:
        self.sb.table("activities").insert(activity.model_dump(mode="json")).execute()
        try:
            self.threads.save(thread)
        except Exception:
            logger.exception("[stores.commit_generation] thread update failed; removing activity %s", activity.id)
            self.sb.table("activities").delete().eq("id", activity.id).execute()
            raise
