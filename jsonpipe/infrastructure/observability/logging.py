import structlog
import logging
import sys
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "jsonpipe"
) -> None:
    """Setup structured logging configuration"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to all log entries"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    context = structlog.contextvars.get_contextvars()

    # Conversation and run ids are bound per request by the API layer
    for key in ("conversation_id", "run_id"):
        if key not in event_dict and context.get(key):
            event_dict[key] = context[key]

    return event_dict


class ContextLogger:
    """Specialized logger for JSON context operations"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_extraction_event(self, event: Any) -> None:
        """Log one extraction decision (an ExtractionEvent)"""

        self.logger.info(
            "extraction_event",
            action=event.action.value,
            source=event.source.value,
            reason=event.reason,
            message_id=event.message_id,
            message_index=event.message_index,
            count=event.count
        )

    def log_placeholder_evaluated(
        self,
        expression: str,
        result: Any,
        whole_string: bool
    ) -> None:
        """Log a single placeholder evaluation"""

        self.logger.info(
            "placeholder_evaluated",
            expression=expression,
            result_type=type(result).__name__,
            whole_string=whole_string
        )

    def log_history_loaded(
        self,
        conversation_id: str,
        run_id: Optional[str],
        count: int,
        source: str
    ) -> None:
        """Log where a run's entry list came from"""

        self.logger.info(
            "history_loaded",
            conversation_id=conversation_id,
            run_id=run_id,
            count=count,
            source=source
        )


context_logger = ContextLogger("jsonpipe")
