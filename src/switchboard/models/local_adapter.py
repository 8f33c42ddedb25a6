"""On-device inference adapter.

The weights and the runtime live outside Switchboard; an embedding
application supplies a LocalInferenceBackend that runs the model.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from switchboard.context.formatting import format_standard
from switchboard.context.parts import PromptParts
from switchboard.exceptions import AdapterError
from switchboard.models.base import (
    AdapterCapabilities,
    AdapterOptions,
    ChatResult,
    ConnectionCheck,
    ModelAdapter,
)
from switchboard.models.descriptor import ModelDescriptor, OnDeviceModel


class LocalInferenceBackend(ABC):
    """Runs an on-device model. Must call the options' stream callbacks in order."""

    @abstractmethod
    async def generate(
        self,
        descriptor: OnDeviceModel,
        messages: list[dict],
        options: AdapterOptions,
    ) -> ChatResult:
        ...

    async def available_models(self) -> list[dict]:
        return []


class OnDeviceAdapter(ModelAdapter):
    provider_tags = ("transformers", "local")
    handles = (OnDeviceModel,)

    def __init__(self, backend: LocalInferenceBackend | None = None):
        self._backend = backend

    @property
    def adapter_id(self) -> str:
        return "transformers"

    @property
    def display_name(self) -> str:
        return "On-device"

    @property
    def capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities(streaming=True)

    def _require_backend(self, descriptor: ModelDescriptor) -> LocalInferenceBackend:
        if self._backend is None:
            raise AdapterError(
                f"No on-device inference backend configured for model {descriptor.id!r}"
            )
        return self._backend

    async def chat(
        self,
        descriptor: ModelDescriptor,
        parts: PromptParts,
        options: AdapterOptions,
    ) -> ChatResult:
        backend = self._require_backend(descriptor)
        result = await backend.generate(descriptor, format_standard(parts)["messages"], options)
        result.model = result.model or descriptor.backend_model
        return result

    async def list_models(self, endpoint: str) -> list[dict]:
        if self._backend is None:
            return []
        return await self._backend.available_models()

    async def test_connection(
        self, descriptor: ModelDescriptor, api_key: str | None = None,
    ) -> ConnectionCheck:
        if self._backend is None:
            return ConnectionCheck(ok=False, detail="no on-device backend configured")
        return ConnectionCheck(ok=True, detail="on-device backend ready")
