"""Shared test fixtures for Switchboard."""

from __future__ import annotations

import asyncio

import pytest

from switchboard.engine.dispatcher import ChatDispatcher
from switchboard.events import EventBus
from switchboard.models.base import AdapterOptions, ChatResult, ModelAdapter, TokenUsage
from switchboard.models.catalog import ModelCatalog
from switchboard.models.descriptor import CloudModel, OnDeviceModel, ServerModel
from switchboard.models.registry import AdapterRegistry


class ScriptedAdapter(ModelAdapter):
    """Adapter that replays scripted replies and records every call.

    A reply is a string (streamed word by word when callbacks are set) or
    an exception instance to raise. While ``gate`` is set to an unset
    asyncio.Event, calls block until it is released.
    """

    provider_tags = ("fake",)
    handles = (ServerModel, CloudModel, OnDeviceModel)

    def __init__(self, replies: list | None = None):
        self.replies = list(replies or [])
        self.calls: list[tuple] = []
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()

    @property
    def adapter_id(self) -> str:
        return "fake"

    async def chat(self, descriptor, parts, options: AdapterOptions) -> ChatResult:
        self.calls.append((descriptor, parts, options))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        reply = self.replies.pop(0) if self.replies else "ok"
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, ChatResult):
            return reply
        for word in reply.split(" "):
            options.emit(word)
        return ChatResult(
            content=reply,
            model=descriptor.backend_model,
            usage=TokenUsage(output_tokens=len(reply.split())),
        )

    async def list_models(self, endpoint: str) -> list[dict]:
        return [{"name": "alpha"}, {"name": "beta"}]


@pytest.fixture
def events_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def catalog(events_bus) -> ModelCatalog:
    catalog = ModelCatalog(events_bus)
    catalog.register(ServerModel(id="local-a", provider="fake", server="http://localhost:11434"))
    catalog.register(ServerModel(id="local-b", provider="fake", server="http://localhost:1234"))
    catalog.register(CloudModel(id="cloud-c", provider="fake"))
    catalog.register(CloudModel(id="cloud-c-private", provider="fake"))
    return catalog


@pytest.fixture
def adapter() -> ScriptedAdapter:
    return ScriptedAdapter()


@pytest.fixture
def dispatcher(catalog, adapter, events_bus) -> ChatDispatcher:
    return ChatDispatcher(catalog, AdapterRegistry([adapter]), events_bus=events_bus)
