"""
Uniform text-completion interface over the configured LLM provider.

No retries here: callers decide what a failure means. Every provider error is
raised as CompletionError so callers handle one exception type.
"""

import asyncio
import logging
import os

import requests
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from codecraft.core.config import LlmConfigHolder, Settings
from codecraft.core.errors import CompletionError

logger = logging.getLogger("codecraft.completion_gateway")
_prompt_logger = logging.getLogger("codecraft.llm_prompts")

PROVIDER_ORDER = ("openai", "anthropic", "gemini")

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-latest",
    "gemini": "gemini-2.5-flash",
    "ollama": "llama3.1",
}

REQUEST_TIMEOUT_SECONDS = 120


class ResolvedProvider:
    def __init__(self, provider: str, api_key: str | None, base_url: str | None, model: str):
        self.provider = provider
        self.api_key = api_key
        self.base_url = base_url
        self.model = model


class CompletionGateway:
    def __init__(self, holder: LlmConfigHolder, settings: Settings):
        self.holder = holder
        self.settings = settings
        self._clients: dict[str, tuple[tuple, object]] = {}

    def _settings_key(self, provider: str) -> str:
        return {
            "openai": self.settings.openai_api_key,
            "anthropic": self.settings.anthropic_api_key,
            "gemini": self.settings.gemini_api_key,
        }.get(provider, "")

    def resolve(self) -> ResolvedProvider:
        runtime = self.holder.current()

        provider = runtime.provider or self.settings.llm_provider or None
        if provider is None:
            provider = next((p for p in PROVIDER_ORDER if self._settings_key(p)), None)
        if provider is None and self.settings.ollama_model:
            provider = "ollama"
        if provider is None:
            raise CompletionError("none", "No LLM provider is configured")
        if provider not in DEFAULT_MODELS:
            raise CompletionError(provider, "Unknown LLM provider")

        api_key = runtime.api_key or self._settings_key(provider) or None
        if provider != "ollama" and not api_key:
            raise CompletionError(provider, "API key is not configured")

        base_url = runtime.base_url
        if provider == "ollama":
            base_url = base_url or self.settings.ollama_base_url

        model = runtime.model
        if not model and provider == "ollama":
            model = self.settings.ollama_model
        if not model and provider == (self.settings.llm_provider or provider):
            model = self.settings.llm_model
        return ResolvedProvider(provider, api_key, base_url, model or DEFAULT_MODELS[provider])

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.3,
        max_output_tokens: int = 4096,
    ) -> str:
        target = self.resolve()

        if os.environ.get("DEBUG_LLM_PROMPTS", "").lower() in ("1", "true"):
            _prompt_logger.warning(
                "\n\n%s\n"
                "── SYSTEM ──────────────────────────────────────────────\n%s\n"
                "── USER ────────────────────────────────────────────────\n%s\n"
                "── CONFIG ──────────────────────────────────────────────\n"
                "  provider=%s  model=%s  temp=%s  max_tokens=%s\n"
                "%s",
                "=" * 60,
                system_prompt or "(none)",
                user_prompt,
                target.provider,
                target.model,
                temperature,
                max_output_tokens,
                "=" * 60,
            )

        call = {
            "openai": self._call_openai,
            "anthropic": self._call_anthropic,
            "gemini": self._call_gemini,
            "ollama": self._call_ollama,
        }[target.provider]

        try:
            text = await call(target, system_prompt, user_prompt, temperature, max_output_tokens)
        except CompletionError:
            raise
        except Exception as e:
            logger.warning("[completion] %s call failed: %s", target.provider, e.__class__.__name__)
            raise CompletionError(target.provider, str(e) or e.__class__.__name__) from e

        if not text or not text.strip():
            raise CompletionError(target.provider, "Empty response")
        return text

    # ── Provider adapters ────────────────────────────────────────────────────

    async def _client(self, target: ResolvedProvider, factory):
        """One SDK client per provider, rebuilt when its key or base URL changes."""
        identity = (target.api_key, target.base_url)
        cached = self._clients.get(target.provider)
        if cached is not None and cached[0] == identity:
            return cached[1]
        client = factory()
        self._clients[target.provider] = (identity, client)
        if cached is not None:
            await cached[1].close()
        return client

    async def aclose(self) -> None:
        clients, self._clients = self._clients, {}
        for _, client in clients.values():
            await client.close()

    async def _call_openai(self, target, system_prompt, user_prompt, temperature, max_tokens) -> str:
        client = await self._client(target, lambda: AsyncOpenAI(
            api_key=target.api_key,
            base_url=target.base_url or None,
            timeout=REQUEST_TIMEOUT_SECONDS,
        ))
        response = await client.chat.completions.create(
            model=target.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return response.choices[0].message.content or ""

    async def _call_anthropic(self, target, system_prompt, user_prompt, temperature, max_tokens) -> str:
        client = await self._client(target, lambda: AsyncAnthropic(
            api_key=target.api_key,
            base_url=target.base_url or None,
            timeout=REQUEST_TIMEOUT_SECONDS,
        ))
        resp = await client.messages.create(
            model=target.model,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        parts = [getattr(b, "text", "") for b in (resp.content or []) if getattr(b, "type", None) == "text"]
        return "\n".join(p for p in parts if p).strip()

    async def _call_gemini(self, target, system_prompt, user_prompt, temperature, max_tokens) -> str:
        from google import genai
        from google.genai import types

        client = genai.Client(api_key=target.api_key)
        config = types.GenerateContentConfig(
            system_instruction=system_prompt or None,
            temperature=temperature,
            max_output_tokens=max_tokens,
            response_mime_type="application/json",
            # No thinking: keeps preamble text out of the JSON
            thinking_config=types.ThinkingConfig(thinking_budget=0),
        )
        response = await client.aio.models.generate_content(
            model=target.model,
            contents=user_prompt,
            config=config,
        )
        return response.text or ""

    async def _call_ollama(self, target, system_prompt, user_prompt, temperature, max_tokens) -> str:
        url = target.base_url.rstrip("/") + "/api/chat"
        payload = {
            "model": target.model,
            "stream": False,
            "format": "json",
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }

        def _post() -> dict:
            resp = requests.post(url, json=payload, timeout=REQUEST_TIMEOUT_SECONDS)
            resp.raise_for_status()
            return resp.json()

        data = await asyncio.to_thread(_post)
        return (data.get("message") or {}).get("content") or ""
