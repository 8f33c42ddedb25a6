"""OpenAI-compatible adapter.

Serves the OpenAI cloud API and self-hosted servers exposing the same
``/v1/chat/completions`` surface (LM Studio, vLLM). Streams over SSE;
``reasoning_content`` deltas are treated as thinking.
"""

from __future__ import annotations

import logging

import httpx

from switchboard.context.formatting import format_standard
from switchboard.context.parts import PromptParts
from switchboard.models.base import (
    AdapterCapabilities,
    AdapterOptions,
    ChatResult,
    TokenUsage,
)
from switchboard.models.descriptor import CloudModel, ModelDescriptor, ServerModel
from switchboard.models.http import HTTPAdapter, iter_sse_data

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"


class OpenAICompatibleAdapter(HTTPAdapter):
    """Adapter for any endpoint implementing the OpenAI chat completions API."""

    provider_tags = ("openai", "lmstudio", "vllm", "openai_compatible")
    handles = (ServerModel, CloudModel)
    label = "OpenAI-compatible server"

    @property
    def adapter_id(self) -> str:
        return "openai"

    @property
    def display_name(self) -> str:
        return "OpenAI-compatible"

    @property
    def capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities(streaming=True, structured_output=True, thinking=True)

    def can_handle(self, descriptor: ModelDescriptor) -> bool:
        # Anthropic speaks its own Messages API
        return super().can_handle(descriptor) and descriptor.provider != "anthropic"

    @staticmethod
    def base_url_for(descriptor: ModelDescriptor) -> str:
        if isinstance(descriptor, CloudModel):
            return descriptor.endpoint or OPENAI_BASE_URL
        root = descriptor.endpoint
        return root if root.endswith("/v1") else f"{root}/v1"

    @staticmethod
    def _headers(descriptor: ModelDescriptor, options: AdapterOptions) -> dict:
        key = options.api_key or getattr(descriptor, "auth_token", "")
        return {"Authorization": f"Bearer {key}"} if key else {}

    @staticmethod
    def _payload(
        descriptor: ModelDescriptor, parts: PromptParts, options: AdapterOptions,
    ) -> dict:
        payload: dict = {
            "model": descriptor.backend_model,
            "messages": format_standard(parts)["messages"],
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "stream": options.streaming,
        }
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.top_k is not None and not isinstance(descriptor, CloudModel):
            payload["top_k"] = options.top_k
        if options.response_format:
            payload["response_format"] = options.response_format
        if options.streaming:
            payload["stream_options"] = {"include_usage": True}
        return payload

    @staticmethod
    def _usage(data: dict | None) -> TokenUsage:
        data = data or {}
        prompt = data.get("prompt_tokens", 0) or 0
        output = data.get("completion_tokens", 0) or 0
        return TokenUsage(
            input_tokens=prompt,
            output_tokens=output,
            total_tokens=data.get("total_tokens", prompt + output) or 0,
        )

    async def chat(
        self,
        descriptor: ModelDescriptor,
        parts: PromptParts,
        options: AdapterOptions,
    ) -> ChatResult:
        base_url = self.base_url_for(descriptor)
        client = self._client(base_url)
        payload = self._payload(descriptor, parts, options)
        headers = self._headers(descriptor, options)
        try:
            if options.streaming:
                result = await self._stream(client, payload, headers, options)
            else:
                response = await client.post(
                    "/chat/completions",
                    json=payload,
                    headers=headers,
                    timeout=self._request_timeout(options.timeout),
                )
                if response.is_error:
                    raise await self._status_error(response)
                result = self._parse(response.json())
        except httpx.HTTPError as e:
            raise self._connection_error(e, base_url, descriptor.backend_model) from e
        result.model = result.model or descriptor.backend_model
        return result

    def _parse(self, data: dict) -> ChatResult:
        choices = data.get("choices") or [{}]
        message = choices[0].get("message", {})
        return ChatResult(
            content=message.get("content") or "",
            thinking=message.get("reasoning_content") or "",
            usage=self._usage(data.get("usage")),
            finish_reason=choices[0].get("finish_reason") or "",
            model=data.get("model", ""),
            raw=data,
        )

    async def _stream(
        self,
        client: httpx.AsyncClient,
        payload: dict,
        headers: dict,
        options: AdapterOptions,
    ) -> ChatResult:
        content: list[str] = []
        thinking: list[str] = []
        result = ChatResult()
        async with client.stream(
            "POST", "/chat/completions", json=payload, headers=headers,
            timeout=self._request_timeout(options.timeout),
        ) as response:
            if response.is_error:
                raise await self._status_error(response)
            async for data in iter_sse_data(response):
                if data.get("usage"):
                    result.usage = self._usage(data["usage"])
                result.model = data.get("model", result.model)
                for choice in data.get("choices") or []:
                    delta = choice.get("delta", {})
                    thought = delta.get("reasoning_content") or ""
                    if thought:
                        thinking.append(thought)
                        options.emit_thinking(thought)
                    text = delta.get("content") or ""
                    if text:
                        content.append(text)
                        options.emit(text)
                    if choice.get("finish_reason"):
                        result.finish_reason = choice["finish_reason"]
        result.content = "".join(content)
        result.thinking = "".join(thinking)
        return result

    async def list_models(self, endpoint: str) -> list[dict]:
        root = endpoint.rstrip("/") or OPENAI_BASE_URL
        base_url = root if root.endswith("/v1") else f"{root}/v1"
        data = await self._get_json(base_url, "/models")
        return list(data.get("data", []))
