import asyncio
import json

import pytest

from jsonpipe.domain.context.context_manager import ContextManager
from jsonpipe.domain.context.memory.cache_memory_store import CacheMemoryStore
from jsonpipe.domain.context.memory.runtime_cache import runtime_key
from jsonpipe.domain.models.context_state import Entry

from conftest import FailingMessageStore


class BrokenCache(CacheMemoryStore):
    async def get(self, key):
        raise ConnectionError("cache down")

    async def set(self, key, value, ttl=None):
        raise ConnectionError("cache down")


def payloads(entries):
    return [entry.payload for entry in entries]


def test_runtime_key_defaults_run():
    assert runtime_key("c1") == "c1:no-run"
    assert runtime_key("c1", "r9") == "c1:r9"


@pytest.mark.asyncio
async def test_load_history_builds_entries_from_persisted_messages(manager):
    entries = await manager.load_history("convo-1", "run-1")

    assert payloads(entries) == [
        {"customer": "alice", "total": 12.5},
        {"order": {"id": 17, "status": "open"}},
    ]
    assert [entry.message_id for entry in entries] == ["m2", "m2"]


@pytest.mark.asyncio
async def test_second_load_uses_runtime_cache(manager, message_store):
    first = await manager.load_history("convo-1", "run-1")
    second = await manager.load_history("convo-1", "run-1")

    assert first == second
    assert message_store.calls == 1


@pytest.mark.asyncio
async def test_empty_cached_list_is_still_a_hit(manager, message_store):
    await manager.set_runtime_cached_entries("convo-1", "run-1", [])

    assert await manager.load_history("convo-1", "run-1") == []
    assert message_store.calls == 0


@pytest.mark.asyncio
async def test_runs_are_cached_independently(manager, message_store):
    await manager.load_history("convo-1", "run-1")
    await manager.add_runtime_cached_entry("convo-1", "run-1", '{"step": 1}')

    other = await manager.load_history("convo-1", "run-2")

    assert {"step": 1} not in payloads(other)
    assert message_store.calls == 2


@pytest.mark.asyncio
async def test_tool_results_are_appended_after_seeding(manager):
    await manager.load_history("convo-1", "run-1")

    added = await manager.add_runtime_cached_entry(
        "convo-1", "run-1", [{"type": "text", "text": json.dumps({"status": "shipped"})}]
    )
    entries = await manager.load_history("convo-1", "run-1")

    assert added == 1
    assert entries[-1].payload == {"status": "shipped"}
    assert entries[-1].message_id is None
    assert manager.evaluate_placeholders("${{ $[-1].status }}", entries) == "shipped"


@pytest.mark.asyncio
async def test_append_without_seed_is_a_noop(manager, message_store):
    added = await manager.add_runtime_cached_entry("convo-1", "run-1", '{"lost": true}')

    assert added == 0
    entries = await manager.load_history("convo-1", "run-1")
    assert {"lost": True} not in payloads(entries)
    assert message_store.calls == 1


@pytest.mark.asyncio
async def test_concurrent_appends_to_one_run_are_all_kept(manager):
    await manager.set_runtime_cached_entries("convo-1", None, [])

    await asyncio.gather(*[
        manager.add_runtime_cached_entry("convo-1", None, json.dumps({"n": n}))
        for n in range(20)
    ])
    entries = await manager.load_history("convo-1")

    assert sorted(entry.payload["n"] for entry in entries) == list(range(20))


@pytest.mark.asyncio
async def test_clear_run_forces_rebuild(manager, message_store):
    await manager.load_history("convo-1", "run-1")

    assert await manager.clear_run("convo-1", "run-1") is True
    assert await manager.clear_run("convo-1", "run-1") is False

    await manager.load_history("convo-1", "run-1")
    assert message_store.calls == 2


@pytest.mark.asyncio
async def test_set_runtime_cached_entries_overwrites(manager):
    await manager.load_history("convo-1", "run-1")
    await manager.set_runtime_cached_entries("convo-1", "run-1", [Entry(json={"only": 1})])

    assert payloads(await manager.load_history("convo-1", "run-1")) == [{"only": 1}]


@pytest.mark.asyncio
async def test_message_store_failure_degrades_to_empty_list():
    manager = ContextManager(FailingMessageStore())

    assert await manager.load_history("convo-1", "run-1") == []


@pytest.mark.asyncio
async def test_cache_failure_degrades_gracefully(message_store):
    manager = ContextManager(message_store, cache_store=BrokenCache())

    assert await manager.load_history("convo-1") == []
    assert await manager.add_runtime_cached_entry("convo-1", None, '{"a": 1}') == 0
    assert await manager.set_runtime_cached_entries("convo-1", None, []) is False


@pytest.mark.asyncio
async def test_cached_runs_expire_with_ttl(manager, message_store, clock):
    await manager.load_history("convo-1", "run-1")
    clock.advance(301)

    await manager.load_history("convo-1", "run-1")

    assert message_store.calls == 2


@pytest.mark.asyncio
async def test_render_loads_history_and_evaluates(manager):
    body = {
        "customer": "${{ $[0].customer }}",
        "summary": "Order ${{ $[1].order.id }} is ${{ $[1].order.status }}",
        "total": "${{ $[0].total }}",
    }

    rendered = await manager.render(body, "convo-1", "run-1")

    assert rendered == {"customer": "alice", "summary": "Order 17 is open", "total": 12.5}


@pytest.mark.asyncio
async def test_context_summary(manager):
    assert (await manager.get_context_summary("convo-1", "run-1"))["status"] == "no_context"

    await manager.load_history("convo-1", "run-1")
    summary = await manager.get_context_summary("convo-1", "run-1")

    assert summary["status"] == "cached"
    assert summary["count"] == 2
    assert summary["last_updated"].startswith("2025-01-01T12:01")


@pytest.mark.asyncio
async def test_malformed_persisted_message_does_not_empty_the_history(manager, message_store):
    message_store.conversations["convo-1"].insert(0, {"messageId": "m0", "content": None, "text": None})
    message_store.conversations["convo-1"].insert(1, {"messageId": "bad", "content": "not-a-list"})

    entries = await manager.load_history("convo-1", "run-1")

    assert payloads(entries) == [
        {"customer": "alice", "total": 12.5},
        {"order": {"id": 17, "status": "open"}},
    ]


@pytest.mark.asyncio
async def test_key_locks_are_released_after_use(manager, clock):
    for n in range(50):
        await manager.load_history(f"convo-{n}", "run-1")
        await manager.add_runtime_cached_entry(f"convo-{n}", "run-1", '{"n": 1}')
    clock.advance(301)
    await manager.cache_store.clear_expired()

    assert manager.runtime_cache._key_locks == {}


@pytest.mark.asyncio
async def test_key_lock_survives_while_a_writer_waits(manager):
    runtime_cache = manager.runtime_cache
    await manager.set_runtime_cached_entries("convo-1", "run-1", [])

    async with runtime_cache._locked(runtime_key("convo-1", "run-1")):
        waiting = asyncio.create_task(
            manager.add_runtime_cached_entry("convo-1", "run-1", '{"late": true}')
        )
        await asyncio.sleep(0)
        deleted = asyncio.create_task(manager.clear_run("convo-1", "run-1"))
        await asyncio.sleep(0)
        assert runtime_key("convo-1", "run-1") in runtime_cache._key_locks

    assert await waiting == 1
    assert await deleted is True
    assert runtime_cache._key_locks == {}
    assert await runtime_cache.get_entries("convo-1", "run-1") is None


@pytest.mark.asyncio
async def test_summary_degrades_when_cache_fails(message_store):
    manager = ContextManager(message_store, cache_store=BrokenCache())

    summary = await manager.get_context_summary("convo-1", "run-1")

    assert summary["status"] == "unavailable"
