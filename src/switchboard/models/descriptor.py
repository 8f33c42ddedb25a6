"""Model descriptors.

A descriptor identifies one servable model. The three variants carry only
the fields their inference style needs; adapters and concurrency policy
select behaviour by variant type. Descriptors are immutable: a changed
configuration produces a new descriptor that supersedes the old one.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import ClassVar

from switchboard.config import ModelConfig

DEFAULT_SERVER = "http://localhost:11434"
DEFAULT_CONTEXT_WINDOW = 8192


class InferenceStyle(Enum):
    ON_DEVICE = "ondevice"
    SERVER = "server"
    CLOUD = "cloud"


_PROVIDER_STYLES: dict[str, InferenceStyle] = {
    "transformers": InferenceStyle.ON_DEVICE,
    "local": InferenceStyle.ON_DEVICE,
    "ollama": InferenceStyle.SERVER,
    "lmstudio": InferenceStyle.SERVER,
    "vllm": InferenceStyle.SERVER,
    "openai_compatible": InferenceStyle.SERVER,
    "anthropic": InferenceStyle.CLOUD,
    "openai": InferenceStyle.CLOUD,
    "google": InferenceStyle.CLOUD,
}


def inference_for_provider(provider: str) -> InferenceStyle:
    """Default inference style for a provider tag (unknown tags are servers)."""
    return _PROVIDER_STYLES.get(provider.lower(), InferenceStyle.SERVER)


@dataclass(frozen=True)
class SamplingDefaults:
    temperature: float = 0.7
    max_tokens: int = 4096
    top_p: float | None = None
    top_k: int | None = None


@dataclass(frozen=True)
class ModelDescriptor:
    """Fields shared by every variant. Use a subclass, never this directly."""

    id: str
    provider: str
    model: str = ""
    name: str = ""
    context_window: int = DEFAULT_CONTEXT_WINDOW
    sampling: SamplingDefaults = field(default_factory=SamplingDefaults)
    variant_of: str = ""

    inference_style: ClassVar[InferenceStyle]

    @property
    def backend_model(self) -> str:
        """Model name sent to the backend."""
        return self.model or self.id

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def endpoint(self) -> str:
        return ""

    @property
    def is_variant(self) -> bool:
        """Variants (e.g. private copies) never count as failover candidates."""
        return bool(self.variant_of) or self.id.endswith("-private")

    def superseded_by(self, **changes) -> ModelDescriptor:
        return replace(self, **changes)


@dataclass(frozen=True)
class OnDeviceModel(ModelDescriptor):
    model_path: str = ""

    inference_style: ClassVar[InferenceStyle] = InferenceStyle.ON_DEVICE

    @property
    def endpoint(self) -> str:
        return self.model_path


@dataclass(frozen=True)
class ServerModel(ModelDescriptor):
    server: str = DEFAULT_SERVER
    auth_token: str = ""

    inference_style: ClassVar[InferenceStyle] = InferenceStyle.SERVER

    @property
    def endpoint(self) -> str:
        return self.server.rstrip("/")

    def __repr__(self) -> str:
        token_display = f"***{self.auth_token[-4:]}" if self.auth_token else ""
        return (
            f"ServerModel(id={self.id!r}, provider={self.provider!r}, "
            f"model={self.backend_model!r}, server={self.endpoint!r}, "
            f"auth_token={token_display!r})"
        )


@dataclass(frozen=True)
class CloudModel(ModelDescriptor):
    base_url: str = ""

    inference_style: ClassVar[InferenceStyle] = InferenceStyle.CLOUD

    @property
    def endpoint(self) -> str:
        return self.base_url.rstrip("/")


def descriptor_from_config(model_id: str, cfg: ModelConfig) -> ModelDescriptor:
    """Build the descriptor variant a ``[models.<id>]`` table describes."""
    style = (
        InferenceStyle(cfg.inference) if cfg.inference
        else inference_for_provider(cfg.provider)
    )
    common = dict(
        id=model_id,
        provider=cfg.provider,
        model=cfg.model,
        name=cfg.name,
        context_window=cfg.context_window,
        sampling=SamplingDefaults(
            temperature=cfg.temperature,
            max_tokens=cfg.max_tokens,
            top_p=cfg.top_p,
            top_k=cfg.top_k,
        ),
        variant_of=cfg.variant_of,
    )
    if style is InferenceStyle.ON_DEVICE:
        return OnDeviceModel(model_path=cfg.model_path, **common)
    if style is InferenceStyle.CLOUD:
        return CloudModel(base_url=cfg.base_url, **common)
    return ServerModel(
        server=cfg.server or cfg.base_url or DEFAULT_SERVER,
        auth_token=cfg.auth_token,
        **common,
    )
