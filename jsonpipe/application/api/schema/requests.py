from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class RenderRequest(BaseModel):
    """Value whose ${{ ... }} placeholders should be evaluated"""
    run_id: Optional[str] = Field(None, description="Run whose cached entries to use")
    value: Any = Field(None, description="String, list or object to render")


class RenderResponse(BaseModel):
    value: Any = None


class RuntimeEntryRequest(BaseModel):
    """A tool result that arrived during an in-progress run"""
    run_id: Optional[str] = None
    result: Any = Field(description="Tool output: JSON string, list of parts or object")


class RuntimeEntryResponse(BaseModel):
    added: int


class EntriesResponse(BaseModel):
    entries: List[Dict[str, Any]] = Field(default_factory=list)
    count: int = 0


class ClearRunResponse(BaseModel):
    cleared: bool


class WebhookRenderRequest(BaseModel):
    """Conversation whose context fills a configured webhook prompt"""
    conversation_id: str
    run_id: Optional[str] = None


class WebhookRenderResponse(BaseModel):
    agent_id: str
    user: str
    prompt: Any = None


class JobsResponse(BaseModel):
    jobs: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
