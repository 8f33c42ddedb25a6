"""Anthropic adapter.

Uses the Messages API with prompt caching: the system prompt and the
past-subject block go out as separate cache-annotated system blocks so an
unchanged prefix is served from cache. Streams text and thinking deltas
over SSE.
"""

from __future__ import annotations

import logging

import httpx

from switchboard.context.formatting import format_with_cache_blocks
from switchboard.context.parts import PromptParts
from switchboard.exceptions import AdapterError, ModelConnectionError
from switchboard.models.base import (
    AdapterCapabilities,
    AdapterOptions,
    ChatResult,
    ConnectionCheck,
    TokenUsage,
)
from switchboard.models.descriptor import CloudModel, ModelDescriptor
from switchboard.models.http import HTTPAdapter, http_error_body, iter_sse_data

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.anthropic.com"
API_VERSION = "2023-06-01"


class AnthropicAdapter(HTTPAdapter):
    """Adapter for the Anthropic Messages API."""

    provider_tags = ("anthropic",)
    handles = (CloudModel,)
    label = "Anthropic API"
    default_timeout = 120.0

    @property
    def adapter_id(self) -> str:
        return "anthropic"

    @property
    def display_name(self) -> str:
        return "Anthropic"

    @property
    def capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities(streaming=True, thinking=True, prompt_caching=True)

    def can_handle(self, descriptor: ModelDescriptor) -> bool:
        return super().can_handle(descriptor) and descriptor.provider == "anthropic"

    @staticmethod
    def _headers(api_key: str) -> dict:
        return {
            "x-api-key": api_key,
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }

    def _status_message(self, status: int, body: str) -> str:
        if status == 401:
            return f"Invalid Anthropic API key: {body}"
        if status == 429:
            return f"Anthropic rate limit exceeded: {body}"
        return f"Anthropic returned HTTP {status}: {body}"

    def _body(
        self, descriptor: ModelDescriptor, parts: PromptParts, options: AdapterOptions,
    ) -> dict:
        formatted = format_with_cache_blocks(parts, cache_recent=parts.recent_messages.cacheable)
        body: dict = {
            "model": descriptor.backend_model,
            "max_tokens": options.max_tokens,
            "messages": formatted["messages"],
            "stream": options.streaming,
        }
        if formatted["system"]:
            body["system"] = formatted["system"]
        body["temperature"] = options.temperature
        if options.top_p is not None:
            body["top_p"] = options.top_p
        if options.top_k is not None:
            body["top_k"] = options.top_k
        return body

    @staticmethod
    def _usage(data: dict | None, usage: TokenUsage | None = None) -> TokenUsage:
        usage = usage or TokenUsage()
        data = data or {}
        usage.input_tokens = data.get("input_tokens", usage.input_tokens) or 0
        usage.output_tokens = data.get("output_tokens", usage.output_tokens) or 0
        usage.cache_read_tokens = (
            data.get("cache_read_input_tokens", usage.cache_read_tokens) or 0
        )
        usage.cache_write_tokens = (
            data.get("cache_creation_input_tokens", usage.cache_write_tokens) or 0
        )
        usage.total_tokens = usage.input_tokens + usage.output_tokens
        return usage

    async def chat(
        self,
        descriptor: ModelDescriptor,
        parts: PromptParts,
        options: AdapterOptions,
    ) -> ChatResult:
        if not options.api_key:
            raise AdapterError(f"Anthropic API key not provided for model {descriptor.id!r}")
        base_url = descriptor.endpoint or DEFAULT_BASE_URL
        client = self._client(base_url)
        body = self._body(descriptor, parts, options)
        headers = self._headers(options.api_key)
        try:
            if options.streaming:
                result = await self._stream(client, body, headers, options)
            else:
                response = await client.post(
                    "/v1/messages",
                    json=body,
                    headers=headers,
                    timeout=self._request_timeout(options.timeout),
                )
                if response.is_error:
                    raise await self._status_error(response)
                result = self._parse(response.json())
        except httpx.HTTPError as e:
            raise self._connection_error(e, base_url, descriptor.backend_model) from e
        result.model = result.model or descriptor.backend_model
        if result.usage.cache_read_tokens:
            logger.debug(
                "Anthropic cache hit for %s: %d tokens read from cache",
                descriptor.id, result.usage.cache_read_tokens,
            )
        return result

    def _parse(self, data: dict) -> ChatResult:
        content: list[str] = []
        thinking: list[str] = []
        for block in data.get("content", []):
            if block.get("type") == "text":
                content.append(block.get("text", ""))
            elif block.get("type") == "thinking":
                thinking.append(block.get("thinking", ""))
        return ChatResult(
            content="".join(content),
            thinking="".join(thinking),
            usage=self._usage(data.get("usage")),
            finish_reason=data.get("stop_reason") or "",
            model=data.get("model", ""),
            raw=data,
        )

    async def _stream(
        self,
        client: httpx.AsyncClient,
        body: dict,
        headers: dict,
        options: AdapterOptions,
    ) -> ChatResult:
        content: list[str] = []
        thinking: list[str] = []
        result = ChatResult()
        async with client.stream(
            "POST", "/v1/messages", json=body, headers=headers,
            timeout=self._request_timeout(options.timeout),
        ) as response:
            if response.is_error:
                raise await self._status_error(response)
            async for event in iter_sse_data(response):
                event_type = event.get("type", "")
                if event_type == "message_start":
                    message = event.get("message", {})
                    result.model = message.get("model", "")
                    result.usage = self._usage(message.get("usage"), result.usage)
                elif event_type == "content_block_delta":
                    delta = event.get("delta", {})
                    if delta.get("type") == "text_delta":
                        text = delta.get("text", "")
                        content.append(text)
                        options.emit(text)
                    elif delta.get("type") == "thinking_delta":
                        thought = delta.get("thinking", "")
                        thinking.append(thought)
                        options.emit_thinking(thought)
                elif event_type == "message_delta":
                    result.finish_reason = event.get("delta", {}).get("stop_reason") or ""
                    result.usage = self._usage(event.get("usage"), result.usage)
                elif event_type == "error":
                    error = event.get("error", {})
                    raise ModelConnectionError(
                        f"Anthropic stream error: {error.get('message', error)}"
                    )
                elif event_type == "message_stop":
                    break
        result.content = "".join(content)
        result.thinking = "".join(thinking)
        return result

    async def test_connection(
        self, descriptor: ModelDescriptor, api_key: str | None = None,
    ) -> ConnectionCheck:
        """List models with ``api_key`` to verify the key and reachability."""
        if not api_key:
            return ConnectionCheck(ok=False, detail="Anthropic API key not provided")
        base_url = descriptor.endpoint or DEFAULT_BASE_URL
        client = self._client(base_url)
        try:
            response = await client.get("/v1/models", headers=self._headers(api_key))
        except httpx.HTTPError as e:
            return ConnectionCheck(ok=False, detail=str(self._connection_error(e, base_url, "")))
        if response.is_error:
            body = await http_error_body(response)
            return ConnectionCheck(
                ok=False, detail=self._status_message(response.status_code, body),
            )
        names = [m.get("id", "") for m in response.json().get("data", [])]
        return ConnectionCheck(ok=True, detail=f"{len(names)} model(s)", models=names)
