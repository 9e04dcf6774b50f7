from typing import AsyncIterator, Dict, List, Optional
import asyncio
from contextlib import asynccontextmanager
import structlog

from jsonpipe.domain.models.context_state import Entry
from .cache_memory_store import CacheMemoryStore

logger = structlog.get_logger(__name__)

NO_RUN = "no-run"


def runtime_key(conversation_id: str, run_id: Optional[str] = None) -> str:
    """Cache key for one conversation/run pair"""
    return f"{conversation_id}:{run_id or NO_RUN}"


class RuntimeCacheStore:
    """Entry lists of in-progress runs, kept in a TTL cache.

    Writes to one key are serialized with a per-key lock so concurrent tool
    results for the same run are never lost. A key's lock lives only while
    some coroutine holds or waits on it.
    """

    def __init__(self, cache: Optional[CacheMemoryStore] = None, ttl: Optional[int] = None):
        self.cache = cache or CacheMemoryStore()
        self.ttl = ttl
        self._key_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[None]:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = self._key_locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._key_locks[key]

    async def get_entries(self, conversation_id: str, run_id: Optional[str] = None) -> Optional[List[Entry]]:
        """Cached entries for the run, None when nothing is cached"""

        entries = await self.cache.get(runtime_key(conversation_id, run_id))
        if not isinstance(entries, list):
            return None

        logger.info("Loaded runtime cached entries",
                   conversation_id=conversation_id, run_id=run_id, count=len(entries))
        return list(entries)

    async def set_entries(self, conversation_id: str, run_id: Optional[str], entries: List[Entry]) -> None:
        """Replace the run's entry list"""

        key = runtime_key(conversation_id, run_id)
        async with self._locked(key):
            await self.cache.set(key, list(entries), ttl=self.ttl)

        logger.info("Set runtime cached entries",
                   conversation_id=conversation_id, run_id=run_id, count=len(entries))

    async def append(self, conversation_id: str, run_id: Optional[str], entries: List[Entry]) -> Optional[int]:
        """Append to an existing list; returns the new length, None when the run is not cached"""

        key = runtime_key(conversation_id, run_id)
        async with self._locked(key):
            existing = await self.cache.get(key)
            if not isinstance(existing, list):
                return None
            updated = existing + list(entries)
            await self.cache.set(key, updated, ttl=self.ttl)
            return len(updated)

    async def delete(self, conversation_id: str, run_id: Optional[str] = None) -> bool:
        key = runtime_key(conversation_id, run_id)
        async with self._locked(key):
            return await self.cache.delete(key)
