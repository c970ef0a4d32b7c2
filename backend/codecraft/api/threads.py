import asyncio
import json
import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, field_validator

from codecraft.core.deps import get_thread_service
from codecraft.core.errors import (
    InvalidThreadStateError,
    RunFailedError,
    ThreadNotFoundError,
)
from codecraft.services.negotiation import TurnResult
from codecraft.services.progress_bus import TERMINAL_TYPES
from codecraft.services.telemetry import instrument
from codecraft.services.thread_service import CreatedThread, GenerationResult, ThreadService

logger = logging.getLogger("codecraft.api.threads")
router = APIRouter(prefix="/api/threads", tags=["threads"])

MAX_MESSAGE_LENGTH = 8000


class CreateThreadRequest(BaseModel):
    learning_mode: Literal["practice", "guided"] = "practice"


class PostMessageRequest(BaseModel):
    message: str

    @field_validator("message")
    @classmethod
    def _limit(cls, v: str) -> str:
        if len(v) > MAX_MESSAGE_LENGTH:
            raise ValueError(f"message must be at most {MAX_MESSAGE_LENGTH} characters")
        return v


def _thread_not_found(e: ThreadNotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(e))


@router.post("", response_model=CreatedThread)
@instrument(route="/api/threads", version="v1")
def create_thread(req: CreateThreadRequest, service: ThreadService = Depends(get_thread_service)):
    return service.create_thread(req.learning_mode)


@router.get("")
@instrument(route="/api/threads:list", version="v1")
def list_threads(limit: int = 50, service: ThreadService = Depends(get_thread_service)):
    limit = max(1, min(limit, 200))
    return {"threads": [t.summary() for t in service.list_threads(limit=limit)]}


@router.get("/{thread_id}")
@instrument(route="/api/threads/{id}", version="v1")
def get_thread(thread_id: str, service: ThreadService = Depends(get_thread_service)):
    try:
        thread = service.get_thread(thread_id)
    except ThreadNotFoundError as e:
        raise _thread_not_found(e)
    data = thread.model_dump(mode="json")
    data["generating"] = service.is_running(thread_id)
    return data


@router.post("/{thread_id}/messages", response_model=TurnResult)
@instrument(route="/api/threads/{id}/messages", version="v1")
async def post_message(
    thread_id: str,
    req: PostMessageRequest,
    service: ThreadService = Depends(get_thread_service),
):
    try:
        return await service.post_message(thread_id, req.message)
    except ThreadNotFoundError as e:
        raise _thread_not_found(e)


@router.post("/{thread_id}/generate", response_model=GenerationResult)
@instrument(route="/api/threads/{id}/generate", version="v1")
async def generate(thread_id: str, service: ThreadService = Depends(get_thread_service)):
    try:
        return await service.trigger_generation(thread_id)
    except ThreadNotFoundError as e:
        raise _thread_not_found(e)
    except InvalidThreadStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except RunFailedError as e:
        raise HTTPException(
            status_code=502,
            detail={"detail": e.reason, "slot_index": e.slot_index},
        )


@router.get("/{thread_id}/progress")
async def stream_progress(
    thread_id: str,
    request: Request,
    service: ThreadService = Depends(get_thread_service),
):
    """Server-sent events: buffered events for the current run, then live ones."""
    try:
        sub = await service.open_progress(thread_id)
    except ThreadNotFoundError as e:
        raise _thread_not_found(e)

    async def event_stream():
        try:
            while True:
                try:
                    event = await sub.get(timeout=service.heartbeat_interval)
                except asyncio.TimeoutError:
                    if await request.is_disconnected():
                        break
                    yield ": keep-alive\n\n"
                    continue
                yield "data: " + json.dumps(event.to_wire(), ensure_ascii=False) + "\n\n"
                if event.type in TERMINAL_TYPES:
                    break
        finally:
            sub.unsubscribe()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
