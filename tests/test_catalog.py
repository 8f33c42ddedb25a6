"""Tests for the model catalog and descriptors."""

from __future__ import annotations

import pytest

from switchboard.config import Config, ModelConfig
from switchboard.events import types as events
from switchboard.exceptions import ModelNotFoundError
from switchboard.models.catalog import ModelCatalog
from switchboard.models.descriptor import (
    CloudModel,
    InferenceStyle,
    OnDeviceModel,
    ServerModel,
    descriptor_from_config,
    inference_for_provider,
)


class TestDescriptors:
    def test_variant_from_provider(self):
        assert isinstance(descriptor_from_config("a", ModelConfig(provider="ollama")), ServerModel)
        assert isinstance(descriptor_from_config("b", ModelConfig(provider="anthropic")), CloudModel)
        assert isinstance(
            descriptor_from_config("c", ModelConfig(provider="transformers")), OnDeviceModel,
        )

    def test_explicit_inference_style_wins(self):
        cfg = ModelConfig(provider="openai", inference="server", base_url="http://localhost:1234")
        descriptor = descriptor_from_config("lm", cfg)
        assert isinstance(descriptor, ServerModel)
        assert descriptor.endpoint == "http://localhost:1234"

    def test_unknown_provider_is_a_server(self):
        assert inference_for_provider("mystery") is InferenceStyle.SERVER

    def test_sampling_and_names(self):
        cfg = ModelConfig(provider="ollama", model="llama3.2", temperature=0.1, top_k=20)
        descriptor = descriptor_from_config("llama", cfg)
        assert descriptor.backend_model == "llama3.2"
        assert descriptor.display_name == "llama"
        assert descriptor.sampling.temperature == 0.1
        assert descriptor.sampling.top_k == 20

    def test_variants(self):
        assert ServerModel(id="m-private", provider="ollama").is_variant
        assert ServerModel(id="m2", provider="ollama", variant_of="m").is_variant
        assert not ServerModel(id="m", provider="ollama").is_variant

    def test_descriptors_are_immutable(self):
        descriptor = ServerModel(id="m", provider="ollama")
        with pytest.raises(AttributeError):
            descriptor.server = "http://elsewhere"
        updated = descriptor.superseded_by(server="http://elsewhere")
        assert updated.endpoint == "http://elsewhere"
        assert descriptor.endpoint == "http://localhost:11434"

    def test_repr_masks_token(self):
        descriptor = ServerModel(id="m", provider="ollama", auth_token="secret-abcd")
        assert "secret" not in repr(descriptor)


class TestModelCatalog:
    def test_register_and_require(self, events_bus):
        catalog = ModelCatalog(events_bus)
        catalog.register(ServerModel(id="m", provider="ollama"))
        assert "m" in catalog
        assert len(catalog) == 1
        assert catalog.require("m").id == "m"
        assert catalog.get("x") is None
        with pytest.raises(ModelNotFoundError, match="Available: m"):
            catalog.require("x")
        assert events_bus.recent_events()[-1].event_type == events.MODEL_DISCOVERED

    def test_reregister_supersedes(self, events_bus):
        catalog = ModelCatalog(events_bus)
        catalog.register(ServerModel(id="m", provider="ollama"), source="discovered", server_id="s")
        catalog.mark_unavailable("m")
        catalog.register(ServerModel(id="m", provider="ollama", server="http://other"))
        entry = catalog.entry("m")
        assert entry.descriptor.endpoint == "http://other"
        assert entry.available
        assert entry.server_id == "s"
        assert events_bus.recent_events()[-1].event_type == events.MODEL_UPDATED

    def test_unavailable_models_are_hidden(self, events_bus):
        catalog = ModelCatalog(events_bus)
        catalog.register(ServerModel(id="a", provider="ollama"))
        catalog.register(ServerModel(id="b", provider="ollama"))
        catalog.mark_unavailable("a")
        catalog.mark_unavailable("a")
        assert [d.id for d in catalog.available()] == ["b"]
        assert [d.id for d in catalog.all()] == ["a", "b"]
        assert len(events_bus.recent_events(event_type=events.MODEL_LOST)) == 1
        catalog.mark_verified("a")
        assert catalog.entry("a").available

    def test_unregister_and_clear(self, events_bus):
        catalog = ModelCatalog(events_bus)
        catalog.register(ServerModel(id="a", provider="ollama"))
        assert catalog.unregister("a")
        assert not catalog.unregister("a")
        catalog.register(ServerModel(id="b", provider="ollama"))
        catalog.clear()
        assert len(catalog) == 0
        assert events_bus.recent_events()[-1].event_type == events.CATALOG_CLEARED

    def test_from_config(self):
        config = Config(models={
            "llama": ModelConfig(provider="ollama"),
            "claude": ModelConfig(provider="anthropic"),
        })
        catalog = ModelCatalog.from_config(config)
        assert [d.id for d in catalog.all()] == ["llama", "claude"]
