from typing import Optional
from fastapi import FastAPI
import structlog

from jsonpipe.domain.context.context_manager import ContextManager
from jsonpipe.domain.context.memory.message_store import InMemoryMessageStore
from jsonpipe.infrastructure.config.custom_config import CustomConfig, load_custom_config
from jsonpipe.infrastructure.config.settings import Settings
from jsonpipe.infrastructure.observability.logging import setup_logging
from .route.context import router as context_router
from .route.webhooks import router as webhooks_router

logger = structlog.get_logger(__name__)


def create_app(
    context_manager: Optional[ContextManager] = None,
    settings: Optional[Settings] = None,
    configure_logging: bool = True,
    custom_config: Optional[CustomConfig] = None
) -> FastAPI:
    """Build the HTTP app around one ContextManager.

    The custom config is read from ``settings.config_path`` unless one is
    passed in; a broken file raises ConfigError here, at startup.
    """

    settings = settings or Settings.from_env()
    if configure_logging:
        setup_logging(settings.log_level, settings.log_format, settings.service_name)

    if custom_config is None and settings.config_path:
        custom_config = load_custom_config(settings.config_path)

    app = FastAPI(title="JSON Context Server")
    app.state.settings = settings
    app.state.custom_config = custom_config
    app.state.context_manager = context_manager or ContextManager(InMemoryMessageStore(), settings=settings)

    app.include_router(context_router)
    app.include_router(webhooks_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    logger.info("JSON context server created",
               service=settings.service_name, custom_config=custom_config is not None)
    return app
