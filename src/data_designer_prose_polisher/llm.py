"""OpenAI-compatible chat-completion client.

Implements both ``Generator`` and ``EnvironmentBinder``: binding a role
switches the base URL, model, and sampling preset used by the next
``generate`` call, and ``release`` returns to the default binding.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Mapping

import httpx
from pydantic import BaseModel, ConfigDict, Field

from data_designer_prose_polisher.errors import GenerationError
from data_designer_prose_polisher.settings import RoleBinding

logger = logging.getLogger(__name__)

PROVIDER_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "groq": "https://api.groq.com/openai/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "mistralai": "https://api.mistral.ai/v1",
    "xai": "https://api.x.ai/v1",
    "google": "https://generativelanguage.googleapis.com/v1beta/openai",
}

_RETRY_STATUSES = (429, 500, 502, 503, 504)


class ChatCompletionConfig(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    timeout_sec: float = 75.0
    max_retry_attempts: int = Field(default=4, ge=1, le=6)
    retry_backoff_base_sec: float = Field(default=1.5, ge=0.0)
    system_prompt: str = "You are a helpful creative writing assistant."
    presets: dict[str, dict[str, Any]] = Field(
        default_factory=lambda: {"Default": {"temperature": 0.9, "max_tokens": 1200, "top_p": 0.95}}
    )


def _api_key_for(api: str) -> str | None:
    return os.getenv(f"PROSE_POLISHER_{api.upper()}_API_KEY") or os.getenv("PROSE_POLISHER_API_KEY")


def _retry_after(response: httpx.Response) -> float | None:
    raw = response.headers.get("retry-after", "")
    try:
        return float(raw) if raw else None
    except ValueError:
        return None


class ChatCompletionClient:
    def __init__(
        self,
        default: RoleBinding,
        config: ChatCompletionConfig | None = None,
        *,
        api_keys: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.default = default
        self.config = config or ChatCompletionConfig()
        self.api_keys = dict(api_keys or {})
        self._transport = transport
        self._active = default

    @property
    def active(self) -> RoleBinding:
        return self._active

    def base_url_for(self, binding: RoleBinding) -> str | None:
        if binding.custom_url:
            return binding.custom_url.rstrip("/")
        return PROVIDER_BASE_URLS.get(binding.api.lower())

    async def bind(self, binding: RoleBinding) -> bool:
        if self.base_url_for(binding) is None:
            logger.warning(f"No endpoint known for api {binding.api!r} and no custom URL set")
            return False
        if not binding.model:
            logger.warning(f"Binding {binding.describe()} has no model")
            return False
        self._active = binding
        return True

    async def release(self) -> None:
        self._active = self.default

    def _payload(self, binding: RoleBinding, instruction: str) -> dict[str, Any]:
        presets = self.config.presets
        params = presets.get(binding.preset) or presets.get("Default", {})
        if binding.preset and binding.preset not in presets:
            logger.warning(f"Unknown preset {binding.preset!r}; using Default sampling parameters")
        payload: dict[str, Any] = {
            "model": binding.model,
            "messages": [
                {"role": "system", "content": self.config.system_prompt},
                {"role": "user", "content": instruction},
            ],
            **params,
        }
        if binding.source and binding.api.lower() == "openrouter":
            payload["provider"] = {"order": [binding.source]}
        return payload

    def _headers(self, binding: RoleBinding) -> dict[str, str]:
        key = self.api_keys.get(binding.api.lower()) or _api_key_for(binding.api or "custom")
        headers = {"Content-Type": "application/json"}
        if key:
            headers["Authorization"] = f"Bearer {key}"
        return headers

    async def generate(self, instruction: str) -> str:
        binding = self._active
        base_url = self.base_url_for(binding)
        if base_url is None:
            raise GenerationError(f"No endpoint configured for {binding.describe()}")

        url = f"{base_url}/chat/completions"
        payload = self._payload(binding, instruction)
        attempts = self.config.max_retry_attempts
        async with httpx.AsyncClient(timeout=self.config.timeout_sec, transport=self._transport) as client:
            for attempt in range(attempts):
                try:
                    response = await client.post(url, json=payload, headers=self._headers(binding))
                except httpx.HTTPError as exc:
                    if attempt < attempts - 1:
                        await asyncio.sleep(self.config.retry_backoff_base_sec * (attempt + 1))
                        continue
                    raise GenerationError(f"Request to {binding.describe()} failed: {exc}") from exc

                if response.status_code == 200:
                    try:
                        choices = response.json().get("choices") or []
                    except ValueError as exc:
                        raise GenerationError(f"{binding.describe()} returned invalid JSON") from exc
                    content = (choices[0].get("message") or {}).get("content") if choices else None
                    if not content:
                        raise GenerationError(f"{binding.describe()} returned no content")
                    return content.strip()

                if response.status_code in _RETRY_STATUSES and attempt < attempts - 1:
                    backoff = self.config.retry_backoff_base_sec * (2**attempt)
                    if response.status_code == 429:
                        backoff = max(backoff, _retry_after(response) or 0.0)
                    logger.info(
                        f"Retrying {binding.describe()} after http={response.status_code} "
                        f"(attempt {attempt + 1}, backoff {backoff:.1f}s)"
                    )
                    await asyncio.sleep(backoff)
                    continue

                raise GenerationError(
                    f"{binding.describe()} failed with http={response.status_code}: {response.text[:200]}"
                )
        raise GenerationError(f"{binding.describe()} failed after {attempts} attempts")
