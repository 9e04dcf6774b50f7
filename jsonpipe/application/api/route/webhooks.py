from fastapi import APIRouter, Depends, HTTPException, Request
import structlog

from jsonpipe.domain.context.context_manager import ContextManager
from jsonpipe.infrastructure.config.custom_config import CustomConfig
from ..schema.requests import JobsResponse, WebhookRenderRequest, WebhookRenderResponse
from .context import get_context_manager

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["webhooks"])


def get_custom_config(request: Request) -> CustomConfig:
    config = getattr(request.app.state, "custom_config", None)
    if config is None:
        raise HTTPException(status_code=404, detail="No custom config loaded")
    return config


@router.post("/webhooks/{server}/{hook}/render", response_model=WebhookRenderResponse)
async def render_webhook_prompt(
    server: str,
    hook: str,
    body: WebhookRenderRequest,
    config: CustomConfig = Depends(get_custom_config),
    manager: ContextManager = Depends(get_context_manager)
):
    """Fill a configured webhook prompt from the conversation's JSON context"""
    webhook = config.get_webhook(server, hook)
    if webhook is None:
        raise HTTPException(status_code=404, detail=f"Webhook {server}/{hook} not configured")

    with structlog.contextvars.bound_contextvars(conversation_id=body.conversation_id, run_id=body.run_id):
        prompt = await manager.render(webhook.prompt, body.conversation_id, body.run_id)
        logger.info("Rendered webhook prompt", server=server, hook=hook, agent_id=webhook.agent_id)

    return WebhookRenderResponse(agent_id=webhook.agent_id, user=webhook.user, prompt=prompt)


@router.get("/jobs", response_model=JobsResponse)
async def list_enabled_jobs(config: CustomConfig = Depends(get_custom_config)):
    return JobsResponse(jobs={
        name: job.model_dump() for name, job in config.enabled_jobs().items()
    })
