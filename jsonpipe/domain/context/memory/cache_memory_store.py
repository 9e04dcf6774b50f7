from typing import Any, Callable, Dict, List, Optional
import asyncio
from datetime import datetime, timedelta, timezone

DEFAULT_TTL_SECONDS = 300
RUNTIME_NAMESPACE = "mcp_jsonpipe_runtime"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CacheMemoryStore:
    """Namespaced in-memory cache with per-key expiry.

    Values are stored by reference; callers that mutate a cached list must
    write it back with ``set`` to refresh its TTL.
    """

    def __init__(
        self,
        namespace: str = RUNTIME_NAMESPACE,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = _now
    ):
        self.namespace = namespace
        self.default_ttl = default_ttl
        self._clock = clock
        self._items: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _expired(self, item: Dict[str, Any], now: datetime) -> bool:
        return now > item["expires_at"]

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store a value; ``ttl`` in seconds, the namespace default when omitted"""

        seconds = self.default_ttl if ttl is None else ttl
        async with self._lock:
            self._items[self._key(key)] = {
                "value": value,
                "expires_at": self._clock() + timedelta(seconds=seconds)
            }

    async def get(self, key: str) -> Optional[Any]:
        """Return the live value for a key, None when missing or expired"""

        async with self._lock:
            full_key = self._key(key)
            item = self._items.get(full_key)
            if item is None:
                return None
            if self._expired(item, self._clock()):
                del self._items[full_key]
                return None
            return item["value"]

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._items.pop(self._key(key), None) is not None

    async def keys(self) -> List[str]:
        """Live keys in this namespace, without the namespace prefix"""

        async with self._lock:
            now = self._clock()
            prefix = f"{self.namespace}:"
            return [
                full_key[len(prefix):] for full_key, item in self._items.items()
                if not self._expired(item, now)
            ]

    async def clear_expired(self) -> int:
        """Drop expired items and return how many went"""

        async with self._lock:
            now = self._clock()
            expired = [k for k, item in self._items.items() if self._expired(item, now)]
            for full_key in expired:
                del self._items[full_key]
            return len(expired)

    async def get_stats(self) -> Dict[str, Any]:
        async with self._lock:
            now = self._clock()
            active = sum(1 for item in self._items.values() if not self._expired(item, now))
            return {
                "namespace": self.namespace,
                "total_keys": len(self._items),
                "active_keys": active,
                "expired_keys": len(self._items) - active
            }
