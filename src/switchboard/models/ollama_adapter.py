"""Ollama adapter.

Talks to Ollama's native ``/api/chat`` endpoint. Streams NDJSON, keeping
the model's thinking separate from the visible answer, and passes the
backend's continuation context through so a topic can resume cheaply.
"""

from __future__ import annotations

import logging
import time

import httpx

from switchboard.context.formatting import format_standard
from switchboard.context.parts import PromptParts
from switchboard.models.base import (
    AdapterCapabilities,
    AdapterOptions,
    ChatResult,
    ConnectionCheck,
    TokenUsage,
)
from switchboard.models.descriptor import ModelDescriptor, ServerModel
from switchboard.models.http import HTTPAdapter, iter_ndjson

logger = logging.getLogger(__name__)


class OllamaAdapter(HTTPAdapter):
    """Adapter for Ollama model servers."""

    provider_tags = ("ollama",)
    handles = (ServerModel,)
    label = "Ollama"

    @property
    def adapter_id(self) -> str:
        return "ollama"

    @property
    def display_name(self) -> str:
        return "Ollama"

    @property
    def capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities(
            streaming=True,
            structured_output=True,
            thinking=True,
            continuation=True,
        )

    @staticmethod
    def _headers(descriptor: ModelDescriptor) -> dict:
        token = getattr(descriptor, "auth_token", "")
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _payload(
        self, descriptor: ModelDescriptor, parts: PromptParts, options: AdapterOptions,
    ) -> dict:
        sampling: dict = {
            "temperature": options.temperature,
            "num_predict": options.max_tokens,
        }
        if options.top_p is not None:
            sampling["top_p"] = options.top_p
        if options.top_k is not None:
            sampling["top_k"] = options.top_k
        payload: dict = {
            "model": descriptor.backend_model,
            "messages": format_standard(parts)["messages"],
            "stream": options.streaming,
            "options": sampling,
        }
        if options.response_format:
            # Ollama takes either "json" or a JSON schema
            schema = options.response_format.get("schema")
            payload["format"] = schema or options.response_format.get("type", "json")
        if options.continuation:
            payload["context"] = options.continuation
        return payload

    @staticmethod
    def _usage(data: dict) -> TokenUsage:
        prompt = data.get("prompt_eval_count", 0) or 0
        output = data.get("eval_count", 0) or 0
        return TokenUsage(input_tokens=prompt, output_tokens=output, total_tokens=prompt + output)

    async def chat(
        self,
        descriptor: ModelDescriptor,
        parts: PromptParts,
        options: AdapterOptions,
    ) -> ChatResult:
        base_url = descriptor.endpoint
        client = self._client(base_url)
        payload = self._payload(descriptor, parts, options)
        start = time.monotonic()
        try:
            if options.streaming:
                result = await self._stream(
                    client, payload, options, self._headers(descriptor),
                )
            else:
                response = await client.post(
                    "/api/chat",
                    json=payload,
                    headers=self._headers(descriptor),
                    timeout=self._request_timeout(options.timeout),
                )
                if response.is_error:
                    raise await self._status_error(response)
                result = self._parse(response.json())
        except httpx.HTTPError as e:
            raise self._connection_error(e, base_url, descriptor.backend_model) from e

        result.model = descriptor.backend_model
        logger.debug(
            "Ollama %s answered in %dms (%d output tokens)",
            descriptor.backend_model,
            int((time.monotonic() - start) * 1000),
            result.usage.output_tokens,
        )
        return result

    def _parse(self, data: dict) -> ChatResult:
        message = data.get("message", {})
        return ChatResult(
            content=message.get("content") or "",
            thinking=message.get("thinking") or "",
            usage=self._usage(data),
            finish_reason=data.get("done_reason", "stop"),
            continuation=data.get("context"),
            raw=data,
        )

    async def _stream(
        self,
        client: httpx.AsyncClient,
        payload: dict,
        options: AdapterOptions,
        headers: dict,
    ) -> ChatResult:
        content: list[str] = []
        thinking: list[str] = []
        result = ChatResult()
        async with client.stream(
            "POST", "/api/chat", json=payload, headers=headers,
            timeout=self._request_timeout(options.timeout),
        ) as response:
            if response.is_error:
                raise await self._status_error(response)
            async for data in iter_ndjson(response):
                message = data.get("message", {})
                thought = message.get("thinking") or ""
                if thought:
                    thinking.append(thought)
                    options.emit_thinking(thought)
                text = message.get("content") or ""
                if text:
                    content.append(text)
                    options.emit(text)
                if data.get("done"):
                    result.usage = self._usage(data)
                    result.finish_reason = data.get("done_reason", "stop")
                    result.continuation = data.get("context")
                    result.raw = data
                    break
        result.content = "".join(content)
        result.thinking = "".join(thinking)
        return result

    async def list_models(self, endpoint: str) -> list[dict]:
        data = await self._get_json(endpoint, "/api/tags")
        return list(data.get("models", []))

    async def test_connection(
        self, descriptor: ModelDescriptor, api_key: str | None = None,
    ) -> ConnectionCheck:
        try:
            models = await self.list_models(descriptor.endpoint)
        except Exception as e:
            return ConnectionCheck(ok=False, detail=str(e))
        names = [str(m.get("name", "")) for m in models]
        wanted = descriptor.backend_model
        if wanted not in names and f"{wanted}:latest" not in names:
            return ConnectionCheck(
                ok=False, detail=f"model {wanted!r} not found on server", models=names,
            )
        return ConnectionCheck(ok=True, detail=f"{len(names)} model(s)", models=names)
