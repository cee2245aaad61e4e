"""
Tests for the LLM client wrappers

The OpenAI-compatible client runs against an httpx mock transport.
"""

import json
from types import SimpleNamespace

import httpx
import pytest
from anthropic import APIConnectionError, BadRequestError

from mangaflow.config import config
from mangaflow.exceptions import ConfigurationError, GenerationError
from mangaflow.services.anthropic import AnthropicClient
from mangaflow.services.llm import create_llm_client
from mangaflow.services.openai_compat import OpenAICompatibleClient
from mangaflow.streaming import consume_stream


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _client(handler, **kwargs) -> OpenAICompatibleClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAICompatibleClient(
        api_key="test-key",
        base_url="https://llm.example.com/v1/",
        model="test-model",
        max_retries=3,
        retry_delay=0,
        http_client=http,
        **kwargs,
    )


class TestOpenAICompatibleClient:
    """Tests for the chat-completion client."""

    @pytest.mark.asyncio
    async def test_create_message(self):
        """Test the request shape and the returned text."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=_completion("1. Mika wakes up"))

        client = _client(handler)
        text = await client.create_message("Plan the story", max_tokens=100, system="Be brief")
        await client.aclose()

        assert text == "1. Mika wakes up"
        request = requests[0]
        assert str(request.url) == "https://llm.example.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer test-key"
        body = json.loads(request.content)
        assert body["model"] == "test-model"
        assert body["stream"] is False
        assert body["messages"] == [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "Plan the story"},
        ]

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        """Test that a 503 is retried."""
        statuses = iter([503, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            status = next(statuses)
            if status == 503:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json=_completion("ok"))

        client = _client(handler)

        assert await client.create_message("hi") == "ok"

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        """Test that a 400 fails at once."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, text="bad request")

        client = _client(handler)

        with pytest.raises(GenerationError, match="400"):
            await client.create_message("hi")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        """Test a server that keeps failing."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502)

        client = _client(handler)

        with pytest.raises(GenerationError, match="502"):
            await client.create_message("hi")

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        """Test a reply without choices."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"unexpected": True})

        client = _client(handler)

        with pytest.raises(GenerationError, match="Malformed"):
            await client.create_message("hi")

    @pytest.mark.asyncio
    async def test_complete_wraps_errors(self):
        """Test the non-raising result shape."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text="no")

        client = _client(handler)

        result = await client.complete("hi")

        assert not result.success
        assert "401" in result.error

    @pytest.mark.asyncio
    async def test_stream_through_sse_parser(self):
        """Test streaming raw SSE lines into text."""
        lines = [
            "data: " + json.dumps({"choices": [{"delta": {"role": "assistant"}}]}),
            "data: " + json.dumps({"choices": [{"delta": {"content": "Rain "}}]}),
            ": keep-alive",
            "data: " + json.dumps({"choices": [{"delta": {"content": "falls"}}]}),
            "data: [DONE]",
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["stream"] is True
            return httpx.Response(200, content="\n\n".join(lines).encode("utf-8"))

        client = _client(handler)

        outcome = await consume_stream(client.stream_message("hi"), parser=client.fragment_parser)

        assert outcome.is_complete
        assert outcome.content == "Rain falls"

    @pytest.mark.asyncio
    async def test_stream_http_error(self):
        """Test that a failed stream request surfaces as a stream error."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="oops")

        client = _client(handler)

        outcome = await consume_stream(client.stream_message("hi"), parser=client.fragment_parser)

        assert not outcome.is_complete
        assert outcome.error == "API request failed: 500"

    def test_missing_api_key(self, monkeypatch):
        """Test that a client cannot be built without a key."""
        monkeypatch.setattr(config, "openai_compat_api_key", "")

        with pytest.raises(ConfigurationError):
            OpenAICompatibleClient()


class TestAnthropicClient:
    """Tests for the Claude client retry loop."""

    REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")

    def _client_with_replies(self, monkeypatch, replies):
        client = AnthropicClient(api_key="sk-test", model="claude-test", max_retries=3, retry_delay=0)
        calls = []

        async def create(**payload):
            calls.append(payload)
            reply = replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply

        monkeypatch.setattr(client._client.messages, "create", create)
        return client, calls

    def test_sdk_retries_are_disabled(self):
        """Test that only our own loop retries."""
        client = AnthropicClient(api_key="sk-test")

        assert client._client.max_retries == 0

    @pytest.mark.asyncio
    async def test_retries_dropped_connection(self, monkeypatch):
        reply = SimpleNamespace(content=[SimpleNamespace(type="text", text="ok")])
        client, calls = self._client_with_replies(
            monkeypatch, [APIConnectionError(request=self.REQUEST), reply]
        )

        assert await client.create_message("hello", system="be brief") == "ok"
        assert len(calls) == 2
        assert calls[0]["system"] == "be brief"
        assert calls[0]["model"] == "claude-test"

    @pytest.mark.asyncio
    async def test_bad_request_is_not_retried(self, monkeypatch):
        error = BadRequestError(
            "bad request", response=httpx.Response(400, request=self.REQUEST), body=None
        )
        client, calls = self._client_with_replies(monkeypatch, [error])

        with pytest.raises(GenerationError):
            await client.create_message("hello")
        assert len(calls) == 1


class TestCreateLLMClient:
    """Tests for the client factory."""

    def test_unknown_provider(self):
        """Test an unsupported provider name."""
        with pytest.raises(ConfigurationError):
            create_llm_client("carrier-pigeon")

    def test_openai_compatible_provider(self, monkeypatch):
        """Test building the OpenAI-compatible client from configuration."""
        monkeypatch.setattr(config, "openai_compat_api_key", "key")
        monkeypatch.setattr(config, "openai_compat_model", "deepseek-chat")

        client = create_llm_client("openai-compatible")

        assert isinstance(client, OpenAICompatibleClient)
        assert client.model == "deepseek-chat"

    def test_anthropic_needs_key(self, monkeypatch):
        """Test that the Anthropic client checks for its key."""
        monkeypatch.setattr(config, "anthropic_api_key", "")

        with pytest.raises(ConfigurationError):
            create_llm_client("anthropic")
