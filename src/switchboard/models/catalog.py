"""Model catalog: the registered descriptors and their discovery metadata.

Owned by one dispatcher instance. Re-registering an id supersedes the
old descriptor rather than mutating it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace

from switchboard.config import Config
from switchboard.events import EventBus
from switchboard.events import types as events
from switchboard.exceptions import ModelNotFoundError
from switchboard.models.descriptor import ModelDescriptor, descriptor_from_config

logger = logging.getLogger(__name__)


@dataclass
class ModelEntry:
    descriptor: ModelDescriptor
    source: str = "config"  # "config" | "discovered" | "manual"
    server_id: str = ""
    discovered_at: float = field(default_factory=time.time)
    last_verified_at: float = 0.0
    available: bool = True


class ModelCatalog:
    def __init__(self, events_bus: EventBus | None = None):
        self._entries: dict[str, ModelEntry] = {}
        self._events = events_bus

    @classmethod
    def from_config(cls, config: Config, events_bus: EventBus | None = None) -> ModelCatalog:
        catalog = cls(events_bus)
        for model_id, model_config in config.models.items():
            catalog.register(descriptor_from_config(model_id, model_config))
        return catalog

    def _publish(self, event_type: str, **data) -> None:
        if self._events is not None:
            self._events.publish(event_type, **data)

    def register(
        self,
        descriptor: ModelDescriptor,
        source: str = "config",
        server_id: str = "",
    ) -> ModelEntry:
        previous = self._entries.get(descriptor.id)
        if previous is not None:
            entry = replace(
                previous,
                descriptor=descriptor,
                source=source,
                server_id=server_id or previous.server_id,
                available=True,
            )
            self._entries[descriptor.id] = entry
            logger.debug("Superseded model %s", descriptor.id)
            self._publish(events.MODEL_UPDATED, model_id=descriptor.id, source=source)
            return entry

        entry = ModelEntry(descriptor=descriptor, source=source, server_id=server_id)
        self._entries[descriptor.id] = entry
        logger.debug("Registered model %s (%s)", descriptor.id, descriptor.provider)
        self._publish(events.MODEL_DISCOVERED, model_id=descriptor.id, source=source)
        return entry

    def unregister(self, model_id: str) -> bool:
        if self._entries.pop(model_id, None) is None:
            return False
        self._publish(events.MODEL_LOST, model_id=model_id)
        return True

    def get(self, model_id: str) -> ModelDescriptor | None:
        entry = self._entries.get(model_id)
        return entry.descriptor if entry else None

    def require(self, model_id: str) -> ModelDescriptor:
        descriptor = self.get(model_id)
        if descriptor is None:
            raise ModelNotFoundError(model_id, list(self._entries))
        return descriptor

    def entry(self, model_id: str) -> ModelEntry | None:
        return self._entries.get(model_id)

    def all(self) -> list[ModelDescriptor]:
        """Every registered descriptor, in registration order."""
        return [e.descriptor for e in self._entries.values()]

    def available(self) -> list[ModelDescriptor]:
        return [e.descriptor for e in self._entries.values() if e.available]

    def mark_verified(self, model_id: str) -> None:
        entry = self._entries.get(model_id)
        if entry is not None:
            entry.last_verified_at = time.time()
            entry.available = True

    def mark_unavailable(self, model_id: str) -> None:
        entry = self._entries.get(model_id)
        if entry is not None and entry.available:
            entry.available = False
            self._publish(events.MODEL_LOST, model_id=model_id)

    def clear(self) -> None:
        self._entries.clear()
        self._publish(events.CATALOG_CLEARED)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
