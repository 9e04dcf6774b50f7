import json
from datetime import datetime, timedelta, timezone

import pytest

from jsonpipe.domain.context.context_manager import ContextManager
from jsonpipe.domain.context.memory.cache_memory_store import CacheMemoryStore
from jsonpipe.domain.context.memory.message_store import InMemoryMessageStore
from jsonpipe.domain.models.context_state import MessageRecord


class CountingMessageStore(InMemoryMessageStore):
    """In-memory store that remembers how often it was queried"""

    def __init__(self):
        super().__init__()
        self.calls = 0

    async def get_messages(self, conversation_id):
        self.calls += 1
        return await super().get_messages(conversation_id)


class FailingMessageStore(InMemoryMessageStore):
    async def get_messages(self, conversation_id):
        raise RuntimeError("message store unavailable")


class FakeClock:
    def __init__(self):
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def tool_call_part(output, nested=True):
    """Content part carrying a tool call whose output is ``output``"""
    if not isinstance(output, str):
        output = json.dumps(output)
    if nested:
        return {"type": "tool_call", "tool_call": {"id": "call_1", "name": "lookup", "output": output}}
    return {"type": "tool_call", "function": {"name": "lookup", "output": output}}


def text_parts_output(*payloads):
    """MCP-style tool output: a list of text parts, each holding JSON"""
    return json.dumps([{"type": "text", "text": json.dumps(p)} for p in payloads])


def make_message(message_id, text=None, content=None, sender="assistant", minute=0):
    return MessageRecord(
        message_id=message_id,
        conversation_id="convo-1",
        sender=sender,
        text=text,
        content=content or [],
        created_at=datetime(2025, 1, 1, 12, minute, tzinfo=timezone.utc),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def message_store():
    store = CountingMessageStore()
    store.conversations["convo-1"].extend([
        make_message("m1", text="Look up the order", sender="user", minute=0),
        make_message(
            "m2",
            text="Found it:\n```json\n{\"order\": {\"id\": 17, \"status\": \"open\"}}\n```",
            content=[tool_call_part(text_parts_output({"customer": "alice", "total": 12.5}))],
            minute=1,
        ),
    ])
    return store


@pytest.fixture
def manager(message_store, clock):
    return ContextManager(message_store, cache_store=CacheMemoryStore(clock=clock))
