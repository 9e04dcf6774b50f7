from typing import Optional
from fastapi import APIRouter, Depends, Request
import structlog

from jsonpipe.domain.context.context_manager import ContextManager
from ..schema.requests import (
    ClearRunResponse, EntriesResponse, RenderRequest, RenderResponse,
    RuntimeEntryRequest, RuntimeEntryResponse
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/context", tags=["context"])


def get_context_manager(request: Request) -> ContextManager:
    return request.app.state.context_manager


@router.post("/{conversation_id}/render", response_model=RenderResponse)
async def render_value(
    conversation_id: str,
    body: RenderRequest,
    manager: ContextManager = Depends(get_context_manager)
):
    """Evaluate placeholders in a value against the run's JSON context"""
    with structlog.contextvars.bound_contextvars(conversation_id=conversation_id, run_id=body.run_id):
        value = await manager.render(body.value, conversation_id, body.run_id)
    return RenderResponse(value=value)


@router.post("/{conversation_id}/runtime-entries", response_model=RuntimeEntryResponse)
async def add_runtime_entry(
    conversation_id: str,
    body: RuntimeEntryRequest,
    manager: ContextManager = Depends(get_context_manager)
):
    with structlog.contextvars.bound_contextvars(conversation_id=conversation_id, run_id=body.run_id):
        added = await manager.add_runtime_cached_entry(conversation_id, body.run_id, body.result)
    return RuntimeEntryResponse(added=added)


@router.get("/{conversation_id}/entries", response_model=EntriesResponse)
async def list_entries(
    conversation_id: str,
    run_id: Optional[str] = None,
    manager: ContextManager = Depends(get_context_manager)
):
    """Entries of a run with provenance, loading history when not cached"""
    entries = await manager.load_history(conversation_id, run_id)
    return EntriesResponse(entries=[e.to_dict() for e in entries], count=len(entries))


@router.get("/{conversation_id}/summary")
async def context_summary(
    conversation_id: str,
    run_id: Optional[str] = None,
    manager: ContextManager = Depends(get_context_manager)
):
    return await manager.get_context_summary(conversation_id, run_id)


@router.delete("/{conversation_id}/runs", response_model=ClearRunResponse)
async def clear_run(
    conversation_id: str,
    run_id: Optional[str] = None,
    manager: ContextManager = Depends(get_context_manager)
):
    cleared = await manager.clear_run(conversation_id, run_id)
    logger.info("Cleared run context", conversation_id=conversation_id, run_id=run_id, cleared=cleared)
    return ClearRunResponse(cleared=cleared)
