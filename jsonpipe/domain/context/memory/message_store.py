from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Union
import asyncio
from collections import defaultdict

from jsonpipe.domain.models.context_state import MessageRecord


class MessageStore(ABC):
    """Read access to persisted chat messages"""

    @abstractmethod
    async def get_messages(self, conversation_id: str) -> List[MessageRecord]:
        """Messages of a conversation, oldest first"""
        pass


class InMemoryMessageStore(MessageStore):
    """Message store kept in process memory, for local runs and tests"""

    def __init__(self):
        self.conversations: Dict[str, List[MessageRecord]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def add_message(self, conversation_id: str, message: Union[MessageRecord, Mapping[str, Any]]) -> MessageRecord:
        """Persist a message at the end of the conversation"""

        record = message if isinstance(message, MessageRecord) else MessageRecord.model_validate(message)
        if record.conversation_id is None:
            record = record.model_copy(update={"conversation_id": conversation_id})

        async with self._lock:
            self.conversations[conversation_id].append(record)
        return record

    async def get_messages(self, conversation_id: str) -> List[MessageRecord]:
        async with self._lock:
            return list(self.conversations.get(conversation_id, []))
