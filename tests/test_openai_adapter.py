"""Tests for the OpenAI-compatible adapter."""

from __future__ import annotations

import json

import httpx
import pytest

from switchboard.context.parts import PromptParts
from switchboard.exceptions import ModelConnectionError
from switchboard.models.base import AdapterOptions
from switchboard.models.descriptor import CloudModel, ServerModel
from switchboard.models.openai_adapter import OpenAICompatibleAdapter

LMSTUDIO = ServerModel(id="qwen", provider="lmstudio", model="qwen3-8b", server="http://lm.test:1234")
CLOUD = CloudModel(id="gpt", provider="openai", model="gpt-4o-mini")


def _parts() -> PromptParts:
    return PromptParts.build(
        system_prompt="Sys",
        new_message="Hi",
        recent_messages=[{"role": "user", "content": "a"}, {"role": "assistant", "content": "b"}],
    )


def _adapter(handler) -> OpenAICompatibleAdapter:
    return OpenAICompatibleAdapter(transport=httpx.MockTransport(handler))


class TestBaseUrl:
    def test_server_gets_v1(self):
        assert OpenAICompatibleAdapter.base_url_for(LMSTUDIO) == "http://lm.test:1234/v1"

    def test_cloud_default(self):
        assert OpenAICompatibleAdapter.base_url_for(CLOUD) == "https://api.openai.com/v1"

    def test_does_not_handle_anthropic(self):
        adapter = OpenAICompatibleAdapter()
        assert not adapter.can_handle(CloudModel(id="c", provider="anthropic"))
        assert adapter.can_handle(CLOUD)


async def test_chat_completion():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={
            "model": "qwen3-8b",
            "choices": [{
                "message": {"content": "Hello", "reasoning_content": "pondering"},
                "finish_reason": "stop",
            }],
            "usage": {"prompt_tokens": 9, "completion_tokens": 1, "total_tokens": 10},
        })

    adapter = _adapter(handler)
    result = await adapter.chat(LMSTUDIO, _parts(), AdapterOptions(max_tokens=50, top_k=10))

    assert seen["url"] == "http://lm.test:1234/v1/chat/completions"
    assert seen["auth"] is None
    body = seen["body"]
    assert body["max_tokens"] == 50
    assert body["top_k"] == 10
    assert [m["role"] for m in body["messages"]] == ["system", "user", "assistant", "user"]
    assert result.content == "Hello"
    assert result.thinking == "pondering"
    assert result.usage.total_tokens == 10
    assert result.finish_reason == "stop"


async def test_cloud_sends_key_and_drops_top_k():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    adapter = _adapter(handler)
    result = await adapter.chat(CLOUD, _parts(), AdapterOptions(api_key="sk-1", top_k=10))
    assert seen["auth"] == "Bearer sk-1"
    assert "top_k" not in seen["body"]
    assert result.model == "gpt-4o-mini"


async def test_streaming():
    events = [
        {"choices": [{"delta": {"reasoning_content": "hmm"}}]},
        {"choices": [{"delta": {"content": "Hel"}}]},
        {"choices": [{"delta": {"content": "lo"}, "finish_reason": "stop"}]},
        {"choices": [], "usage": {"prompt_tokens": 3, "completion_tokens": 2}},
    ]
    body = "".join(f"data: {json.dumps(e)}\n\n" for e in events) + "data: [DONE]\n\n"

    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        assert payload["stream"] is True
        assert payload["stream_options"] == {"include_usage": True}
        return httpx.Response(200, content=body.encode())

    chunks: list[str] = []
    thoughts: list[str] = []
    adapter = _adapter(handler)
    result = await adapter.chat(LMSTUDIO, _parts(), AdapterOptions(
        on_stream=chunks.append, on_thinking_stream=thoughts.append,
    ))
    assert chunks == ["Hel", "lo"]
    assert thoughts == ["hmm"]
    assert result.content == "Hello"
    assert result.usage.output_tokens == 2
    assert result.finish_reason == "stop"


async def test_error_status():
    adapter = _adapter(lambda request: httpx.Response(500, text="overloaded"))
    with pytest.raises(ModelConnectionError, match="HTTP 500"):
        await adapter.chat(LMSTUDIO, _parts(), AdapterOptions())


async def test_timeout_is_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    adapter = _adapter(handler)
    with pytest.raises(ModelConnectionError, match="timed out"):
        await adapter.chat(LMSTUDIO, _parts(), AdapterOptions())


async def test_list_models():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/models"
        return httpx.Response(200, json={"data": [{"id": "qwen3-8b"}]})

    adapter = _adapter(handler)
    assert await adapter.list_models("http://lm.test:1234") == [{"id": "qwen3-8b"}]
