from typing import Any, List, Optional
import structlog

from jsonpipe.domain.models.context_state import Entry
from jsonpipe.infrastructure.observability.logging import context_logger
from .entry_extractor import build_entries_from_messages, entries_from_tool_result
from .memory.message_store import MessageStore
from .memory.runtime_cache import RuntimeCacheStore

logger = structlog.get_logger(__name__)


class HistoryLoader:
    """Loads the entry list of a conversation run, runtime cache first.

    Failures never propagate: a broken message store or cache degrades to an
    empty list, or to a no-op for writes.
    """

    def __init__(
        self,
        message_store: MessageStore,
        runtime_cache: RuntimeCacheStore,
        whole_text_fallback: bool = False
    ):
        self.message_store = message_store
        self.runtime_cache = runtime_cache
        self.whole_text_fallback = whole_text_fallback

    async def load_history(self, conversation_id: str, run_id: Optional[str] = None) -> List[Entry]:
        """Cached entries for the run, or a rebuild from persisted messages that seeds the cache"""

        try:
            entries = await self.runtime_cache.get_entries(conversation_id, run_id)
            if entries is not None:
                context_logger.log_history_loaded(conversation_id, run_id, len(entries), "runtime_cache")
                return entries

            messages = await self.message_store.get_messages(conversation_id) or []
            result = build_entries_from_messages(messages, whole_text_fallback=self.whole_text_fallback)
            await self.runtime_cache.set_entries(conversation_id, run_id, result.entries)

            context_logger.log_history_loaded(conversation_id, run_id, len(result.entries), "persisted")
            return list(result.entries)
        except Exception as e:
            logger.warning("Failed to load history",
                          conversation_id=conversation_id, run_id=run_id, error=str(e))
            return []

    async def add_runtime_cached_entry(self, conversation_id: str, run_id: Optional[str], result: Any) -> int:
        """Append entries from a live tool result; returns how many were added"""

        try:
            extracted = entries_from_tool_result(result)
            length = await self.runtime_cache.append(conversation_id, run_id, extracted.entries)
            if length is None:
                logger.warning("No runtime cached entry found",
                              conversation_id=conversation_id, run_id=run_id)
                return 0

            logger.info("Added runtime cached entry",
                       conversation_id=conversation_id, run_id=run_id,
                       added=len(extracted.entries), total=length)
            return len(extracted.entries)
        except Exception as e:
            logger.warning("Failed to cache runtime entry",
                          conversation_id=conversation_id, run_id=run_id, error=str(e))
            return 0

    async def set_runtime_cached_entries(self, conversation_id: str, run_id: Optional[str], entries: List[Entry]) -> bool:
        """Overwrite the run's cached entries"""

        try:
            await self.runtime_cache.set_entries(conversation_id, run_id, entries)
            return True
        except Exception as e:
            logger.warning("Failed to set runtime cached entries",
                          conversation_id=conversation_id, run_id=run_id, error=str(e))
            return False

    async def clear_run(self, conversation_id: str, run_id: Optional[str] = None) -> bool:
        """Forget the run's cached entries so the next load rebuilds them"""

        try:
            return await self.runtime_cache.delete(conversation_id, run_id)
        except Exception as e:
            logger.warning("Failed to clear runtime cached entries",
                          conversation_id=conversation_id, run_id=run_id, error=str(e))
            return False
