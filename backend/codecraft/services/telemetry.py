"""
Structured usage events.

Every event is logged as one `telemetry={...}` JSON line on the
`codecraft.telemetry` logger. With ENABLE_TELEMETRY_DB=1 the same row is also
inserted into the Supabase `telemetry_events` table.
"""
import asyncio
import contextlib
import json
import logging
import os
import time
from functools import wraps
from typing import Any, Optional

logger = logging.getLogger("codecraft.telemetry")

TELEMETRY_TABLE = "telemetry_events"


def emit_event(event: str, *, route: str, version: str = "v1", **fields: Any) -> dict:
    """Log one event and return the payload that was written."""
    payload = {"event": event, "route": route, "version": version}
    payload.update({k: v for k, v in fields.items() if v is not None})
    payload["ts"] = time.time()
    logger.info("telemetry=%s", json.dumps(payload, separators=(",", ":"), default=str))

    if os.getenv("ENABLE_TELEMETRY_DB", "0") == "1":
        _store(payload)
    return payload


def _store(payload: dict) -> None:
    try:
        from codecraft.core.deps import get_supabase_client
        row = {k: v for k, v in payload.items() if k != "ts"}
        get_supabase_client().table(TELEMETRY_TABLE).insert(row).execute()
    except Exception as e:
        logger.error("[telemetry._store] %s", e, exc_info=True)


@contextlib.contextmanager
def timed(event: str, *, route: str, version: str = "v1", **fields: Any):
    """Time the block and emit `event` when it exits, successful or not.

    The yielded dict can be filled with extra fields from inside the block.
    """
    extra: dict[str, Any] = dict(fields)
    started = time.perf_counter()
    try:
        yield extra
    except Exception as e:
        extra["ok"] = False
        extra["error_type"] = e.__class__.__name__
        raise
    else:
        extra.setdefault("ok", True)
    finally:
        extra["latency_ms"] = int((time.perf_counter() - started) * 1000)
        emit_event(event, route=route, version=version, **extra)


def record_generation(thread_id: str, run: int, *, ok: bool, slot_count: int,
                      latency_ms: int, activity_id: Optional[str] = None,
                      failed_slot: Optional[int] = None, error_type: Optional[str] = None) -> dict:
    return emit_event(
        "generation_run",
        route="pipeline",
        thread_id=thread_id,
        run=run,
        ok=ok,
        slot_count=slot_count,
        latency_ms=latency_ms,
        activity_id=activity_id,
        failed_slot=failed_slot,
        error_type=error_type,
    )


def _ids(kwargs: dict) -> dict:
    return {"thread_id": kwargs.get("thread_id"), "activity_id": kwargs.get("activity_id")}


def instrument(route: str, version: str):
    """Emit an `api_call` event with latency and outcome for each route call."""
    def deco(fn):
        if asyncio.iscoroutinefunction(fn):
            @wraps(fn)
            async def wrapped_async(*args, **kwargs):
                with timed("api_call", route=route, version=version, **_ids(kwargs)):
                    return await fn(*args, **kwargs)
            return wrapped_async

        @wraps(fn)
        def wrapped(*args, **kwargs):
            with timed("api_call", route=route, version=version, **_ids(kwargs)):
                return fn(*args, **kwargs)
        return wrapped
    return deco
