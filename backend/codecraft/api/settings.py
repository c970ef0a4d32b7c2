from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from codecraft.core.config import LlmConfigHolder, LlmProvider
from codecraft.core.deps import get_gateway, get_llm_config
from codecraft.core.errors import CompletionError
from codecraft.services.completion_gateway import CompletionGateway
from codecraft.services.telemetry import instrument

router = APIRouter(prefix="/api/settings", tags=["settings"])


class LlmSettingsUpdate(BaseModel):
    provider: LlmProvider | None = None
    api_key: str | None = None
    base_url: str | None = None
    model: str | None = None


class LlmSettingsResponse(BaseModel):
    provider: str | None
    model: str | None
    base_url: str | None
    has_api_key: bool
    updated_at: datetime | None
    active_provider: str | None
    active_model: str | None


def _describe(holder: LlmConfigHolder, gateway: CompletionGateway) -> LlmSettingsResponse:
    cfg = holder.current()
    try:
        resolved = gateway.resolve()
        active_provider, active_model = resolved.provider, resolved.model
    except CompletionError:
        active_provider = active_model = None
    return LlmSettingsResponse(
        provider=cfg.provider,
        model=cfg.model,
        base_url=cfg.base_url,
        has_api_key=bool(cfg.api_key),
        updated_at=cfg.updated_at,
        active_provider=active_provider,
        active_model=active_model,
    )


@router.get("/llm", response_model=LlmSettingsResponse)
@instrument(route="/api/settings/llm", version="v1")
def get_llm_settings(
    holder: LlmConfigHolder = Depends(get_llm_config),
    gateway: CompletionGateway = Depends(get_gateway),
):
    return _describe(holder, gateway)


@router.put("/llm", response_model=LlmSettingsResponse)
@instrument(route="/api/settings/llm:put", version="v1")
def put_llm_settings(
    req: LlmSettingsUpdate,
    holder: LlmConfigHolder = Depends(get_llm_config),
    gateway: CompletionGateway = Depends(get_gateway),
):
    changes = {name: getattr(req, name) for name in req.model_fields_set}
    holder.reconfigure(**changes)
    return _describe(holder, gateway)
