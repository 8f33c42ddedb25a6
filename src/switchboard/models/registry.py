"""Adapter registry: maps a model descriptor to the adapter serving it.

Resolution order:
1. The adapter registered under the descriptor's provider tag
2. The candidates for the descriptor's variant (on-device, server, cloud)
3. Any adapter whose ``can_handle`` accepts the descriptor
"""

from __future__ import annotations

import logging

from switchboard.exceptions import AdapterError
from switchboard.models.base import ModelAdapter
from switchboard.models.descriptor import (
    CloudModel,
    ModelDescriptor,
    OnDeviceModel,
    ServerModel,
)

logger = logging.getLogger(__name__)

_VARIANT_CANDIDATES: dict[type[ModelDescriptor], tuple[str, ...]] = {
    OnDeviceModel: ("transformers", "local"),
    ServerModel: ("ollama", "lmstudio", "vllm", "openai"),
    CloudModel: ("anthropic", "openai", "google"),
}


class AdapterRegistry:
    """Adapters by provider tag, owned by one dispatcher."""

    def __init__(self, adapters: list[ModelAdapter] | None = None):
        self._adapters: list[ModelAdapter] = []
        self._by_tag: dict[str, ModelAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: ModelAdapter, tags: tuple[str, ...] | None = None) -> None:
        """Register ``adapter`` under its provider tags (or ``tags``)."""
        for tag in tags or adapter.provider_tags or (adapter.adapter_id,):
            replaced = self._by_tag.get(tag)
            if replaced is not None and replaced is not adapter:
                logger.debug(
                    "Adapter %s replaces %s for provider %s",
                    adapter.adapter_id, replaced.adapter_id, tag,
                )
            self._by_tag[tag] = adapter
        if adapter not in self._adapters:
            self._adapters.append(adapter)

    def get(self, tag: str) -> ModelAdapter | None:
        return self._by_tag.get(tag)

    def has_adapter(self, tag: str) -> bool:
        return tag in self._by_tag

    def all_adapters(self) -> list[ModelAdapter]:
        return list(self._adapters)

    @staticmethod
    def candidates_for(descriptor: ModelDescriptor) -> tuple[str, ...]:
        for variant, tags in _VARIANT_CANDIDATES.items():
            if isinstance(descriptor, variant):
                return tags
        return ()

    def resolve(self, descriptor: ModelDescriptor) -> ModelAdapter:
        exact = self._by_tag.get(descriptor.provider)
        if exact is not None and exact.can_handle(descriptor):
            return exact

        for tag in self.candidates_for(descriptor):
            adapter = self._by_tag.get(tag)
            if adapter is not None and adapter.can_handle(descriptor):
                logger.debug(
                    "Resolved %s via %s candidates to %s",
                    descriptor.id, descriptor.inference_style.value, adapter.adapter_id,
                )
                return adapter

        for adapter in self._adapters:
            if adapter.can_handle(descriptor):
                return adapter

        raise AdapterError(
            f"No adapter can serve model {descriptor.id!r} "
            f"(provider {descriptor.provider!r}, {descriptor.inference_style.value})"
        )

    def clear(self) -> None:
        self._adapters.clear()
        self._by_tag.clear()

    async def close(self) -> None:
        for adapter in self._adapters:
            await adapter.close()
