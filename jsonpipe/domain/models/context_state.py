from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JsonKind(str, Enum):
    """Shape of a decoded JSON value"""
    SCALAR = "scalar"
    OBJECT = "object"
    ARRAY = "array"


class ParsedJson(BaseModel):
    """Tagged result of decoding a JSON string"""
    kind: JsonKind
    value: Any = None


class Entry(BaseModel):
    """One JSON object extracted from a message or a tool-call output"""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    payload: Dict[str, Any] = Field(alias="json", description="Object exposed to path queries")
    time: datetime = Field(default_factory=utcnow, description="Source message creation time")
    message_id: Optional[str] = Field(None, description="Source message, None for live tool results")
    role: Optional[str] = Field(None, description="Sender of the source message")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the payload under the `json` key"""
        return self.model_dump(mode="json", by_alias=True)


class MessageRecord(BaseModel):
    """A persisted chat message as handed out by the message store"""
    model_config = ConfigDict(populate_by_name=True)

    message_id: Optional[str] = Field(None, alias="messageId")
    conversation_id: Optional[str] = Field(None, alias="conversationId")
    sender: Optional[str] = None
    text: Optional[str] = None
    content: List[Any] = Field(default_factory=list, description="Ordered content parts")
    created_at: Optional[datetime] = Field(None, alias="createdAt")

    @field_validator("content", mode="before")
    @classmethod
    def _content_or_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class ExtractionAction(str, Enum):
    """Outcome of one extraction decision"""
    ADDED = "added"
    SKIPPED = "skipped"


class ExtractionSource(str, Enum):
    """Where an extraction decision was made"""
    TOOL_CALL = "tool_call"
    TEXT_BLOCK = "text_block"
    PART_BLOCK = "part_block"
    WHOLE_TEXT = "whole_text"
    LIVE_TOOL_RESULT = "live_tool_result"
    MESSAGE = "message"


class ExtractionEvent(BaseModel):
    """Structured record of why an entry was added or skipped"""
    action: ExtractionAction
    source: ExtractionSource
    reason: Optional[str] = None
    message_id: Optional[str] = None
    message_index: Optional[int] = None
    count: int = 0


class ExtractionResult(BaseModel):
    """Entries produced by an extraction call, with the decisions behind them"""
    entries: List[Entry] = Field(default_factory=list)
    events: List[ExtractionEvent] = Field(default_factory=list)

    def extend(self, other: "ExtractionResult") -> None:
        self.entries.extend(other.entries)
        self.events.extend(other.events)

    def skipped(self) -> List[ExtractionEvent]:
        return [e for e in self.events if e.action == ExtractionAction.SKIPPED]
