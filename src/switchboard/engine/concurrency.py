"""Concurrency manager: per-resource-group slots with priority queues.

A resource group is one physical backend ("this Ollama instance can serve
one request at a time"). Acquiring a slot in a full group suspends the
caller; waiters are served highest priority first, FIFO within a
priority. Releasing never suspends and is idempotent.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urlparse

from switchboard.config import ConcurrencyConfig
from switchboard.models.descriptor import (
    CloudModel,
    ModelDescriptor,
    OnDeviceModel,
    ServerModel,
)

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 5
_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}


class ResourceType(Enum):
    REMOTE_API = "remote_api"
    REMOTE_SERVER = "remote_server"
    LOCAL_SERVER = "local_server"
    ON_DEVICE = "on_device"


@dataclass(frozen=True)
class ConcurrencyPolicy:
    """Which group a model belongs to and how many requests it allows."""

    group: str
    resource_type: ResourceType
    max_concurrent: int | None  # None = unlimited


@dataclass
class ConcurrencySlot:
    """Permission to run one request in one group."""

    slot_id: int
    group: str
    model_id: str
    topic_id: str = ""
    priority: int = DEFAULT_PRIORITY
    acquired_at: float = 0.0
    released: bool = False


@dataclass
class ConcurrencyStats:
    active_by_group: dict[str, int] = field(default_factory=dict)
    pending_by_group: dict[str, int] = field(default_factory=dict)
    total_active: int = 0
    total_pending: int = 0


@dataclass(order=True)
class _Waiter:
    sort_key: tuple[int, int]
    slot: ConcurrencySlot = field(compare=False)
    future: asyncio.Future = field(compare=False)


@dataclass
class _Group:
    limit: int | None
    active: dict[int, ConcurrencySlot] = field(default_factory=dict)
    waiters: list[_Waiter] = field(default_factory=list)

    def has_capacity(self) -> bool:
        return self.limit is None or len(self.active) < self.limit


def is_local_url(url: str) -> bool:
    host = urlparse(url if "://" in url else f"http://{url}").hostname or ""
    return host in _LOCAL_HOSTS


class ConcurrencyManager:
    def __init__(self, config: ConcurrencyConfig | None = None):
        self._config = config or ConcurrencyConfig()
        self._groups: dict[str, _Group] = {}
        self._explicit: set[str] = set()
        self._ids = itertools.count(1)
        self._seq = itertools.count()

        for group, limit in self._config.groups.items():
            self.configure_group(group, limit or None)

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def policy_for(self, descriptor: ModelDescriptor) -> ConcurrencyPolicy:
        """Infer the resource group of ``descriptor``.

        Cloud APIs and remote servers handle their own limits; local
        servers and on-device runtimes get the configured small limits.
        """
        provider = descriptor.provider
        if isinstance(descriptor, CloudModel):
            policy = ConcurrencyPolicy(
                f"remote-api-{provider}", ResourceType.REMOTE_API, None,
            )
        elif isinstance(descriptor, ServerModel):
            url = descriptor.endpoint
            if is_local_url(url):
                policy = ConcurrencyPolicy(
                    f"local-{provider}-{url}",
                    ResourceType.LOCAL_SERVER,
                    self._config.local_server_limit,
                )
            else:
                policy = ConcurrencyPolicy(
                    f"remote-{provider}-{url}", ResourceType.REMOTE_SERVER, None,
                )
        elif isinstance(descriptor, OnDeviceModel):
            policy = ConcurrencyPolicy(
                f"ondevice-{provider}",
                ResourceType.ON_DEVICE,
                self._config.on_device_limit,
            )
        else:
            policy = ConcurrencyPolicy(
                f"local-unknown-{provider}",
                ResourceType.LOCAL_SERVER,
                self._config.default_limit,
            )

        if policy.group in self._explicit:
            return ConcurrencyPolicy(
                policy.group, policy.resource_type, self._groups[policy.group].limit,
            )
        if policy.group not in self._groups:
            self._groups[policy.group] = _Group(limit=policy.max_concurrent)
        return policy

    def configure_group(self, group: str, max_concurrent: int | None) -> None:
        """Set the limit of ``group``; None means unlimited."""
        state = self._groups.get(group)
        if state is None:
            self._groups[group] = _Group(limit=max_concurrent)
        else:
            state.limit = max_concurrent
            self._wake(state)
        self._explicit.add(group)

    def _group(self, group: str) -> _Group:
        state = self._groups.get(group)
        if state is None:
            state = _Group(limit=self._config.default_limit)
            self._groups[group] = state
        return state

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------

    async def acquire(
        self,
        model_id: str,
        group: str,
        priority: int = DEFAULT_PRIORITY,
        topic_id: str = "",
    ) -> ConcurrencySlot:
        """Wait for a slot in ``group``. Cancelling while queued leaves no trace."""
        state = self._group(group)
        slot = ConcurrencySlot(
            slot_id=next(self._ids),
            group=group,
            model_id=model_id,
            topic_id=topic_id,
            priority=priority,
        )
        if not state.waiters and state.has_capacity():
            self._activate(state, slot)
            return slot

        waiter = _Waiter(
            sort_key=(-priority, next(self._seq)),
            slot=slot,
            future=asyncio.get_running_loop().create_future(),
        )
        heapq.heappush(state.waiters, waiter)
        logger.info(
            "Queued %s in %s (%d active, %d waiting, priority %d)",
            model_id, group, len(state.active), len(state.waiters), priority,
        )
        try:
            await waiter.future
        except asyncio.CancelledError:
            if waiter.future.done() and not waiter.future.cancelled():
                # Granted just before the cancellation landed
                self.release(slot)
            elif waiter in state.waiters:
                state.waiters.remove(waiter)
                heapq.heapify(state.waiters)
            raise
        return slot

    def release(self, slot: ConcurrencySlot) -> None:
        if slot.released:
            return
        slot.released = True
        state = self._groups.get(slot.group)
        if state is None or state.active.pop(slot.slot_id, None) is None:
            return
        self._wake(state)

    def _activate(self, state: _Group, slot: ConcurrencySlot) -> None:
        slot.acquired_at = time.time()
        state.active[slot.slot_id] = slot

    def _wake(self, state: _Group) -> None:
        while state.waiters and state.has_capacity():
            waiter = heapq.heappop(state.waiters)
            if waiter.future.done():
                continue
            self._activate(state, waiter.slot)
            waiter.future.set_result(waiter.slot)

    @asynccontextmanager
    async def slot(
        self,
        model_id: str,
        group: str,
        priority: int = DEFAULT_PRIORITY,
        topic_id: str = "",
    ) -> AsyncIterator[ConcurrencySlot]:
        acquired = await self.acquire(model_id, group, priority, topic_id)
        try:
            yield acquired
        finally:
            self.release(acquired)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def active_count(self, group: str) -> int:
        state = self._groups.get(group)
        return len(state.active) if state else 0

    def pending_count(self, group: str) -> int:
        state = self._groups.get(group)
        return len(state.waiters) if state else 0

    def can_run_immediately(self, group: str) -> bool:
        state = self._groups.get(group)
        if state is None:
            return self._config.default_limit > 0
        return not state.waiters and state.has_capacity()

    def active_slots(self, topic_id: str | None = None) -> list[ConcurrencySlot]:
        return [
            slot
            for state in self._groups.values()
            for slot in state.active.values()
            if topic_id is None or slot.topic_id == topic_id
        ]

    def stats(self) -> ConcurrencyStats:
        stats = ConcurrencyStats()
        for name, state in self._groups.items():
            stats.active_by_group[name] = len(state.active)
            stats.pending_by_group[name] = len(state.waiters)
        stats.total_active = sum(stats.active_by_group.values())
        stats.total_pending = sum(stats.pending_by_group.values())
        return stats
