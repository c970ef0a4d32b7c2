from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from codecraft.core.deps import get_activity_store
from codecraft.core.errors import ActivityLockedError, ActivityNotFoundError
from codecraft.models.problem import Activity
from codecraft.services import activity_service
from codecraft.services.stores import ActivityStore
from codecraft.services.telemetry import instrument

router = APIRouter(prefix="/api/activities", tags=["activities"])


class PatchActivityRequest(BaseModel):
    title: str | None = None
    time_limit_seconds: int | None = None


@router.get("")
@instrument(route="/api/activities", version="v1")
def list_activities(limit: int = 50, store: ActivityStore = Depends(get_activity_store)):
    limit = max(1, min(limit, 200))
    return {
        "activities": [
            {
                "id": a.id,
                "title": a.title,
                "status": a.status,
                "problem_count": len(a.problems),
                "time_limit_seconds": a.time_limit_seconds,
                "created_at": a.created_at,
            }
            for a in activity_service.list_activities(store, limit=limit)
        ]
    }


@router.get("/{activity_id}", response_model=Activity)
@instrument(route="/api/activities/{id}", version="v1")
def get_activity(activity_id: str, store: ActivityStore = Depends(get_activity_store)):
    try:
        return activity_service.get_activity(store, activity_id)
    except ActivityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/{activity_id}", response_model=Activity)
@instrument(route="/api/activities/{id}:patch", version="v1")
def patch_activity(
    activity_id: str,
    req: PatchActivityRequest,
    store: ActivityStore = Depends(get_activity_store),
):
    kwargs = {"title": req.title}
    if "time_limit_seconds" in req.model_fields_set:
        kwargs["time_limit_seconds"] = req.time_limit_seconds
    try:
        return activity_service.patch_activity(store, activity_id, **kwargs)
    except ActivityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ActivityLockedError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{activity_id}/publish", response_model=Activity)
@instrument(route="/api/activities/{id}/publish", version="v1")
def publish_activity(activity_id: str, store: ActivityStore = Depends(get_activity_store)):
    try:
        return activity_service.publish_activity(store, activity_id)
    except ActivityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
