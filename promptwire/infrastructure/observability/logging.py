import structlog
import logging
import sys
from typing import Dict, Any, Optional
from datetime import datetime, timezone

from promptwire.infrastructure.config import get_settings


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    service_name: Optional[str] = None
) -> None:
    """Setup structured logging configuration"""

    settings = get_settings()
    log_level = log_level or settings.log_level
    log_format = log_format or settings.log_format
    service_name = service_name or settings.service_name

    # Configure Python logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    # Processors for structlog
    processors = [
        structlog.contextvars.merge_contextvars,
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

    # Add appropriate renderer based on format
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
        environment=settings.environment
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to all log entries"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    # Decode sessions bind their id while feeding
    session_id = structlog.contextvars.get_contextvars().get("decode_session")
    if session_id:
        event_dict["decode_session"] = session_id

    return event_dict


class ProtocolLogger:
    """Specialized logger for encode/decode events"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_tag_dispatch(self, session_id: str, tag: str, index: int, length: int):
        """Log a completed tag handed to its handler"""

        self.logger.debug(
            "tag_dispatch",
            session_id=session_id,
            tag=tag,
            index=index,
            length=length
        )

    def log_decode_error(self, session_id: str, tag: str, index: int, error: str):
        """Log tag content that failed to decode"""

        self.logger.warning(
            "decode_error",
            session_id=session_id,
            tag=tag,
            index=index,
            error=error
        )

    def log_incomplete_stream(self, session_id: str, tag: str, buffered: int):
        """Log a stream that ended inside an open tag"""

        self.logger.warning(
            "incomplete_stream",
            session_id=session_id,
            tag=tag,
            buffered=buffered
        )

    def log_session_closed(
        self,
        session_id: str,
        dispatched: int,
        errors: int,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log the end of a decode session"""

        self.logger.info(
            "decode_session_closed",
            session_id=session_id,
            dispatched=dispatched,
            errors=errors,
            details=details or {}
        )


# Global logger instance
protocol_logger = ProtocolLogger("promptwire")
