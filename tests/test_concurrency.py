"""Tests for the concurrency manager."""

from __future__ import annotations

import asyncio

import pytest

from switchboard.config import ConcurrencyConfig
from switchboard.engine.concurrency import ConcurrencyManager, ResourceType, is_local_url
from switchboard.models.descriptor import CloudModel, OnDeviceModel, ServerModel


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


class TestPolicy:
    def test_cloud_is_unlimited(self):
        policy = ConcurrencyManager().policy_for(CloudModel(id="c", provider="anthropic"))
        assert policy.group == "remote-api-anthropic"
        assert policy.resource_type is ResourceType.REMOTE_API
        assert policy.max_concurrent is None

    def test_local_server_gets_limit_one(self):
        model = ServerModel(id="m", provider="ollama", server="http://localhost:11434/")
        policy = ConcurrencyManager().policy_for(model)
        assert policy.group == "local-ollama-http://localhost:11434"
        assert policy.resource_type is ResourceType.LOCAL_SERVER
        assert policy.max_concurrent == 1

    def test_remote_server_is_unlimited(self):
        model = ServerModel(id="m", provider="vllm", server="http://gpu-box:8000")
        policy = ConcurrencyManager().policy_for(model)
        assert policy.group == "remote-vllm-http://gpu-box:8000"
        assert policy.max_concurrent is None

    def test_on_device(self):
        policy = ConcurrencyManager().policy_for(OnDeviceModel(id="d", provider="transformers"))
        assert policy.resource_type is ResourceType.ON_DEVICE
        assert policy.max_concurrent == 1

    def test_models_on_one_server_share_a_group(self):
        manager = ConcurrencyManager()
        a = manager.policy_for(ServerModel(id="a", provider="ollama"))
        b = manager.policy_for(ServerModel(id="b", provider="ollama"))
        assert a.group == b.group

    def test_configured_group_overrides_inferred_limit(self):
        group = "local-ollama-http://localhost:11434"
        manager = ConcurrencyManager(ConcurrencyConfig(groups={group: 3}))
        policy = manager.policy_for(ServerModel(id="a", provider="ollama"))
        assert policy.max_concurrent == 3

    def test_configured_zero_means_unlimited(self):
        group = "local-ollama-http://localhost:11434"
        manager = ConcurrencyManager(ConcurrencyConfig(groups={group: 0}))
        assert manager.policy_for(ServerModel(id="a", provider="ollama")).max_concurrent is None

    @pytest.mark.parametrize("url,local", [
        ("http://localhost:11434", True),
        ("http://127.0.0.1:8080", True),
        ("localhost:1234", True),
        ("https://api.example.com", False),
    ])
    def test_is_local_url(self, url, local):
        assert is_local_url(url) is local


class TestAcquireRelease:
    async def test_immediate_grant(self):
        manager = ConcurrencyManager()
        manager.configure_group("g", 2)
        slot = await manager.acquire("m", "g")
        assert manager.active_count("g") == 1
        assert manager.can_run_immediately("g")
        manager.release(slot)
        assert manager.active_count("g") == 0

    async def test_limit_is_enforced(self):
        manager = ConcurrencyManager()
        manager.configure_group("g", 1)
        first = await manager.acquire("m", "g")
        waiter = asyncio.create_task(manager.acquire("m", "g"))
        await _settle()
        assert not waiter.done()
        assert manager.pending_count("g") == 1
        assert not manager.can_run_immediately("g")

        manager.release(first)
        second = await waiter
        assert manager.active_count("g") == 1
        assert manager.pending_count("g") == 0
        manager.release(second)

    async def test_bounded_limit_is_never_exceeded(self):
        manager = ConcurrencyManager()
        manager.configure_group("g", 2)
        peak = 0
        finished = []

        async def worker(index: int):
            nonlocal peak
            async with manager.slot(f"m{index}", "g", priority=index % 3 * 4):
                peak = max(peak, manager.active_count("g"))
                await asyncio.sleep(0)
            finished.append(index)

        await asyncio.gather(*(worker(i) for i in range(20)))
        assert peak == 2
        assert sorted(finished) == list(range(20))
        assert manager.active_count("g") == 0
        assert manager.pending_count("g") == 0

    async def test_unlimited_group(self):
        manager = ConcurrencyManager()
        manager.configure_group("g", None)
        slots = [await manager.acquire("m", "g") for _ in range(10)]
        assert manager.active_count("g") == 10
        for slot in slots:
            manager.release(slot)

    async def test_priority_then_fifo(self):
        manager = ConcurrencyManager()
        manager.configure_group("g", 1)
        holder = await manager.acquire("m", "g")
        order: list[str] = []

        async def waiter(name: str, priority: int):
            slot = await manager.acquire(name, "g", priority=priority)
            order.append(name)
            manager.release(slot)

        tasks = [
            asyncio.create_task(waiter("low", 1)),
            asyncio.create_task(waiter("high-1", 9)),
            asyncio.create_task(waiter("mid", 5)),
            asyncio.create_task(waiter("high-2", 9)),
        ]
        await _settle()
        manager.release(holder)
        await asyncio.gather(*tasks)
        assert order == ["high-1", "high-2", "mid", "low"]

    async def test_release_is_idempotent(self):
        manager = ConcurrencyManager()
        manager.configure_group("g", 1)
        first = await manager.acquire("m", "g")
        manager.release(first)
        second = await manager.acquire("m", "g")
        manager.release(first)
        assert manager.active_count("g") == 1
        manager.release(second)
        assert manager.active_count("g") == 0

    async def test_cancelled_waiter_leaves_no_trace(self):
        manager = ConcurrencyManager()
        manager.configure_group("g", 1)
        holder = await manager.acquire("m", "g")
        waiter = asyncio.create_task(manager.acquire("m", "g"))
        await _settle()
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert manager.pending_count("g") == 0
        manager.release(holder)
        assert manager.active_count("g") == 0
        assert manager.can_run_immediately("g")

    async def test_slot_context_manager_releases_on_error(self):
        manager = ConcurrencyManager()
        manager.configure_group("g", 1)
        with pytest.raises(RuntimeError):
            async with manager.slot("m", "g"):
                assert manager.active_count("g") == 1
                raise RuntimeError("boom")
        assert manager.active_count("g") == 0

    async def test_raising_limit_wakes_waiters(self):
        manager = ConcurrencyManager()
        manager.configure_group("g", 1)
        holder = await manager.acquire("m", "g")
        waiter = asyncio.create_task(manager.acquire("m", "g"))
        await _settle()
        manager.configure_group("g", 2)
        slot = await waiter
        assert manager.active_count("g") == 2
        manager.release(holder)
        manager.release(slot)


class TestStats:
    async def test_stats_and_active_slots(self):
        manager = ConcurrencyManager()
        manager.configure_group("a", 1)
        manager.configure_group("b", 5)
        slot_a = await manager.acquire("m1", "a", topic_id="t1")
        slot_b = await manager.acquire("m2", "b", topic_id="t2")
        waiter = asyncio.create_task(manager.acquire("m1", "a"))
        await _settle()

        stats = manager.stats()
        assert stats.active_by_group == {"a": 1, "b": 1}
        assert stats.pending_by_group == {"a": 1, "b": 0}
        assert stats.total_active == 2
        assert stats.total_pending == 1
        assert [s.model_id for s in manager.active_slots("t1")] == ["m1"]

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        manager.release(slot_a)
        manager.release(slot_b)
