"""Abstract adapter interface.

Every backend (on-device inference, HTTP model servers, cloud APIs) is
wrapped by a ModelAdapter that turns fitted prompt parts into one chat
call and a normalized ChatResult.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar

from switchboard.context.parts import PromptParts
from switchboard.models.descriptor import ModelDescriptor

StreamCallback = Callable[[str], None]


@dataclass
class TokenUsage:
    """Token usage statistics for one backend call."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0


@dataclass(frozen=True)
class AdapterCapabilities:
    """What an adapter's backend supports."""

    chat: bool = True
    streaming: bool = False
    structured_output: bool = False
    thinking: bool = False
    prompt_caching: bool = False
    continuation: bool = False


@dataclass
class AdapterOptions:
    """Per-call settings after merging descriptor defaults and overrides."""

    temperature: float = 0.7
    max_tokens: int = 4096
    top_p: float | None = None
    top_k: int | None = None
    on_stream: StreamCallback | None = None
    on_thinking_stream: StreamCallback | None = None
    api_key: str | None = None
    response_format: dict | None = None
    timeout: float | None = None
    continuation: Any = None
    topic_id: str = ""

    @property
    def streaming(self) -> bool:
        return self.on_stream is not None or self.on_thinking_stream is not None

    def emit(self, chunk: str) -> None:
        if chunk and self.on_stream is not None:
            self.on_stream(chunk)

    def emit_thinking(self, chunk: str) -> None:
        if chunk and self.on_thinking_stream is not None:
            self.on_thinking_stream(chunk)


@dataclass
class ChatResult:
    """Normalized response of one chat call."""

    content: str = ""
    thinking: str = ""
    tool_results: list[dict] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str = ""
    model: str = ""
    continuation: Any = None
    raw: str | dict = ""

    def __str__(self) -> str:
        return self.content


@dataclass
class ConnectionCheck:
    ok: bool
    detail: str = ""
    models: list[str] = field(default_factory=list)


class ModelAdapter(ABC):
    """Base class for all backend adapters.

    ``provider_tags`` lists the descriptor provider tags this adapter is
    registered under; ``handles`` lists the descriptor variants it can
    serve at all.
    """

    provider_tags: ClassVar[tuple[str, ...]] = ()
    handles: ClassVar[tuple[type[ModelDescriptor], ...]] = ()

    @property
    @abstractmethod
    def adapter_id(self) -> str:
        ...

    @property
    def display_name(self) -> str:
        return self.adapter_id

    @property
    def capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities()

    def can_handle(self, descriptor: ModelDescriptor) -> bool:
        return isinstance(descriptor, self.handles)

    @abstractmethod
    async def chat(
        self,
        descriptor: ModelDescriptor,
        parts: PromptParts,
        options: AdapterOptions,
    ) -> ChatResult:
        """Run one chat call. Streams through ``options`` when callbacks are set."""
        ...

    async def list_models(self, endpoint: str) -> list[dict]:
        """Models offered at ``endpoint``. Empty when the backend cannot say."""
        return []

    async def test_connection(
        self, descriptor: ModelDescriptor, api_key: str | None = None,
    ) -> ConnectionCheck:
        try:
            models = await self.list_models(descriptor.endpoint)
        except Exception as e:
            return ConnectionCheck(ok=False, detail=str(e))
        names = [str(m.get("name") or m.get("id") or "") for m in models]
        return ConnectionCheck(ok=True, detail=f"{len(names)} model(s)", models=names)

    async def close(self) -> None:
        """Release network resources."""
