from typing import Any, Dict, List, Optional
import structlog

from jsonpipe.domain.models.context_state import Entry
from jsonpipe.infrastructure.config.settings import Settings
from .history_loader import HistoryLoader
from .memory.cache_memory_store import CacheMemoryStore
from .memory.message_store import MessageStore
from .memory.runtime_cache import RuntimeCacheStore
from .placeholder_evaluator import evaluate_placeholders

logger = structlog.get_logger(__name__)


class ContextManager:
    """Owns the JSON context of chat runs: message store, runtime cache and evaluator.

    Build one per application (or per test); nothing here is module-global.
    """

    def __init__(
        self,
        message_store: MessageStore,
        cache_store: Optional[CacheMemoryStore] = None,
        settings: Optional[Settings] = None
    ):
        self.settings = settings or Settings()
        self.cache_store = cache_store or CacheMemoryStore(default_ttl=self.settings.runtime_cache_ttl)
        self.runtime_cache = RuntimeCacheStore(self.cache_store)
        self.history_loader = HistoryLoader(
            message_store,
            self.runtime_cache,
            whole_text_fallback=self.settings.whole_text_fallback
        )

    async def load_history(self, conversation_id: str, run_id: Optional[str] = None) -> List[Entry]:
        return await self.history_loader.load_history(conversation_id, run_id)

    async def add_runtime_cached_entry(self, conversation_id: str, run_id: Optional[str], result: Any) -> int:
        return await self.history_loader.add_runtime_cached_entry(conversation_id, run_id, result)

    async def set_runtime_cached_entries(self, conversation_id: str, run_id: Optional[str], entries: List[Entry]) -> bool:
        return await self.history_loader.set_runtime_cached_entries(conversation_id, run_id, entries)

    async def clear_run(self, conversation_id: str, run_id: Optional[str] = None) -> bool:
        return await self.history_loader.clear_run(conversation_id, run_id)

    def evaluate_placeholders(self, value: Any, entries: Optional[List[Entry]]) -> Any:
        return evaluate_placeholders(value, entries)

    async def render(self, value: Any, conversation_id: str, run_id: Optional[str] = None) -> Any:
        """Load the run's entries and evaluate every placeholder in ``value``"""

        entries = await self.load_history(conversation_id, run_id)
        logger.info("Rendering placeholders",
                   conversation_id=conversation_id, run_id=run_id, entries=len(entries))
        return evaluate_placeholders(value, entries)

    async def get_context_summary(self, conversation_id: str, run_id: Optional[str] = None) -> Dict[str, Any]:
        """What is cached for a run, without triggering a rebuild"""

        try:
            entries = await self.runtime_cache.get_entries(conversation_id, run_id)
        except Exception as e:
            logger.warning("Failed to read context summary",
                          conversation_id=conversation_id, run_id=run_id, error=str(e))
            return {"conversation_id": conversation_id, "run_id": run_id, "status": "unavailable"}

        if entries is None:
            return {"conversation_id": conversation_id, "run_id": run_id, "status": "no_context"}

        return {
            "conversation_id": conversation_id,
            "run_id": run_id,
            "status": "cached",
            "count": len(entries),
            "last_updated": entries[-1].time.isoformat() if entries else None
        }
