import logging
from functools import lru_cache

from supabase import Client, create_client

from codecraft.core.config import LlmConfigHolder, get_settings
from codecraft.services.completion_gateway import CompletionGateway
from codecraft.services.negotiation import SpecNegotiator
from codecraft.services.progress_bus import ProgressBus
from codecraft.services.sandbox import DockerSandboxExecutor, SandboxExecutor
from codecraft.services.slot_pipeline import SlotPipeline
from codecraft.services.stores import (
    ActivityStore,
    InMemoryActivityStore,
    InMemoryThreadStore,
    SupabaseActivityStore,
    SupabaseThreadStore,
    ThreadStore,
)
from codecraft.services.thread_service import ThreadService

logger = logging.getLogger("codecraft.deps")


@lru_cache
def get_supabase_client() -> Client:
    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_service_key:
        raise RuntimeError("Supabase env vars missing")
    return create_client(settings.supabase_url, settings.supabase_service_key)


@lru_cache
def get_llm_config() -> LlmConfigHolder:
    # starts empty; the gateway falls back to Settings until reconfigured
    return LlmConfigHolder()


@lru_cache
def get_gateway() -> CompletionGateway:
    return CompletionGateway(get_llm_config(), get_settings())


@lru_cache
def get_sandbox() -> SandboxExecutor:
    return DockerSandboxExecutor(get_settings())


@lru_cache
def get_stores() -> tuple[ThreadStore, ActivityStore]:
    settings = get_settings()
    if settings.supabase_url and settings.supabase_service_key:
        sb = get_supabase_client()
        threads = SupabaseThreadStore(sb)
        logger.info("Using Supabase stores")
        return threads, SupabaseActivityStore(sb, threads)
    threads = InMemoryThreadStore()
    return threads, InMemoryActivityStore(threads)


def get_activity_store() -> ActivityStore:
    return get_stores()[1]


@lru_cache
def get_progress_bus() -> ProgressBus:
    return ProgressBus(buffer_size=get_settings().progress_buffer_size)


@lru_cache
def get_thread_service() -> ThreadService:
    settings = get_settings()
    threads, activities = get_stores()
    gateway = get_gateway()
    return ThreadService(
        threads=threads,
        activities=activities,
        negotiator=SpecNegotiator(gateway, threads),
        pipeline=SlotPipeline(
            gateway,
            get_sandbox(),
            backoff_seconds=settings.generation_backoff_seconds,
            concurrency=settings.generation_concurrency,
        ),
        bus=get_progress_bus(),
        heartbeat_interval=settings.heartbeat_interval_seconds,
    )
