"""Model descriptors, the catalog, and the backend adapters."""

from __future__ import annotations

from switchboard.models.anthropic_adapter import AnthropicAdapter
from switchboard.models.base import (
    AdapterCapabilities,
    AdapterOptions,
    ChatResult,
    ConnectionCheck,
    ModelAdapter,
    TokenUsage,
)
from switchboard.models.catalog import ModelCatalog, ModelEntry
from switchboard.models.descriptor import (
    CloudModel,
    InferenceStyle,
    ModelDescriptor,
    OnDeviceModel,
    SamplingDefaults,
    ServerModel,
    descriptor_from_config,
)
from switchboard.models.local_adapter import LocalInferenceBackend, OnDeviceAdapter
from switchboard.models.ollama_adapter import OllamaAdapter
from switchboard.models.openai_adapter import OpenAICompatibleAdapter
from switchboard.models.registry import AdapterRegistry


def create_default_adapters(
    local_backend: LocalInferenceBackend | None = None,
    transport=None,
) -> AdapterRegistry:
    """Registry with the bundled adapters. ``transport`` is for tests."""
    return AdapterRegistry([
        OnDeviceAdapter(local_backend),
        OllamaAdapter(transport=transport),
        OpenAICompatibleAdapter(transport=transport),
        AnthropicAdapter(transport=transport),
    ])


__all__ = [
    "AdapterCapabilities",
    "AdapterOptions",
    "AdapterRegistry",
    "AnthropicAdapter",
    "ChatResult",
    "CloudModel",
    "ConnectionCheck",
    "InferenceStyle",
    "LocalInferenceBackend",
    "ModelAdapter",
    "ModelCatalog",
    "ModelDescriptor",
    "ModelEntry",
    "OllamaAdapter",
    "OnDeviceAdapter",
    "OnDeviceModel",
    "OpenAICompatibleAdapter",
    "SamplingDefaults",
    "ServerModel",
    "TokenUsage",
    "create_default_adapters",
    "descriptor_from_config",
]
