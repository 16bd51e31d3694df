import json

import httpx
import pytest

from data_designer_prose_polisher.errors import GenerationError
from data_designer_prose_polisher.llm import ChatCompletionClient, ChatCompletionConfig
from data_designer_prose_polisher.settings import RoleBinding

DEFAULT = RoleBinding(api="openai", model="gpt-test")


def _ok(content="Hello there."):
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


class _Handler:
    """Serves queued responses and records every request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def _client(handler, attempts=3, **kwargs) -> ChatCompletionClient:
    config = ChatCompletionConfig(max_retry_attempts=attempts, retry_backoff_base_sec=0)
    return ChatCompletionClient(DEFAULT, config, transport=httpx.MockTransport(handler), **kwargs)


class TestGenerate:
    @pytest.mark.asyncio
    async def test_posts_chat_completion(self):
        handler = _Handler(_ok("  Hello there.  "))
        client = _client(handler, api_keys={"openai": "sk-test"})

        assert await client.generate("Write a line.") == "Hello there."

        request = handler.requests[0]
        assert str(request.url) == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["model"] == "gpt-test"
        assert body["messages"][-1] == {"role": "user", "content": "Write a line."}
        assert body["temperature"] == 0.9

    @pytest.mark.asyncio
    async def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.delenv("PROSE_POLISHER_OPENAI_API_KEY", raising=False)
        monkeypatch.setenv("PROSE_POLISHER_API_KEY", "sk-env")
        handler = _Handler(_ok())
        await _client(handler).generate("hi")
        assert handler.requests[0].headers["Authorization"] == "Bearer sk-env"

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        handler = _Handler(httpx.Response(503), httpx.Response(429, headers={"retry-after": "0"}), _ok())
        assert await _client(handler).generate("hi") == "Hello there."
        assert len(handler.requests) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        handler = _Handler(httpx.Response(500), httpx.Response(500))
        with pytest.raises(GenerationError, match="http=500"):
            await _client(handler, attempts=2).generate("hi")
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        handler = _Handler(httpx.Response(400, text="bad request"))
        with pytest.raises(GenerationError, match="http=400"):
            await _client(handler).generate("hi")
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_empty_choices(self):
        handler = _Handler(httpx.Response(200, json={"choices": []}))
        with pytest.raises(GenerationError):
            await _client(handler).generate("hi")


class TestBinding:
    @pytest.mark.asyncio
    async def test_bind_switches_endpoint_and_release_restores(self):
        handler = _Handler(_ok(), _ok())
        client = _client(handler)

        assert await client.bind(RoleBinding(custom_url="http://localhost:8080/v1/", model="local"))
        await client.generate("hi")
        await client.release()
        await client.generate("hi")

        assert str(handler.requests[0].url) == "http://localhost:8080/v1/chat/completions"
        assert json.loads(handler.requests[0].content)["model"] == "local"
        assert str(handler.requests[1].url) == "https://api.openai.com/v1/chat/completions"
        assert client.active == DEFAULT

    @pytest.mark.asyncio
    async def test_unknown_api_or_missing_model_fails_to_bind(self):
        client = _client(_Handler())
        assert not await client.bind(RoleBinding(api="nowhere", model="x"))
        assert not await client.bind(RoleBinding(api="openai"))
        assert client.active == DEFAULT

    @pytest.mark.asyncio
    async def test_openrouter_source_sets_provider_order(self):
        handler = _Handler(_ok())
        client = _client(handler)
        await client.bind(RoleBinding(api="openrouter", model="meta/llama", source="Together"))
        await client.generate("hi")
        assert json.loads(handler.requests[0].content)["provider"] == {"order": ["Together"]}

    @pytest.mark.asyncio
    async def test_unknown_preset_uses_default_parameters(self):
        handler = _Handler(_ok())
        client = _client(handler)
        await client.bind(RoleBinding(api="openai", model="gpt-test", preset="Spicy"))
        await client.generate("hi")
        assert json.loads(handler.requests[0].content)["temperature"] == 0.9
