from typing import Dict, Any, Optional, List, Callable, Awaitable
import structlog

from promptwire.domain.streaming.tag_parser import TagParser, ParseSession, ParseResult

logger = structlog.get_logger(__name__)

EventHandler = Callable[[str, Any], Awaitable[None]]


class StreamingHandler:
    """Routes streamed model tokens to one decode session per conversation"""

    STREAM_FINISHED = "stream_finished"
    STREAM_INCOMPLETE = "stream_incomplete"
    DECODE_ERROR = "decode_error"

    def __init__(self, parser: TagParser):
        self.parser = parser
        self.event_handlers: Dict[str, List[EventHandler]] = {}
        self.streaming_sessions: Dict[str, ParseSession] = {}

    async def stream_token(self, session_id: str, token: str) -> ParseSession:
        """Feed a single token (or chunk) into the session's decoder"""

        # Get or create decode session
        if session_id not in self.streaming_sessions:
            self.streaming_sessions[session_id] = self.parser.session()
            logger.debug("Opened decode session", session_id=session_id)

        session = self.streaming_sessions[session_id]
        session.feed(token)
        return session

    def get_state(self, session_id: str) -> Optional[Any]:
        """Peek at the partially decoded state of a running stream"""

        session = self.streaming_sessions.get(session_id)
        return session.state if session else None

    async def flush_stream(self, session_id: str) -> Optional[ParseResult]:
        """Close the stream and hand the result to listeners"""

        session = self.streaming_sessions.pop(session_id, None)
        if session is None:
            return None

        result = session.close()

        for error in result.errors:
            await self.emit_custom_event(session_id, self.DECODE_ERROR, error)
        if result.incomplete:
            await self.emit_custom_event(session_id, self.STREAM_INCOMPLETE, result.incomplete)
        await self.emit_custom_event(session_id, self.STREAM_FINISHED, result)

        return result

    async def cancel_stream(self, session_id: str) -> bool:
        """Abandon a stream, discarding its state"""

        if self.streaming_sessions.pop(session_id, None) is None:
            return False
        logger.info("Cancelled decode session", session_id=session_id)
        return True

    def register_event_handler(self, event_type: str, handler: EventHandler):
        """Register a custom event handler"""

        if event_type not in self.event_handlers:
            self.event_handlers[event_type] = []
        self.event_handlers[event_type].append(handler)

    async def emit_custom_event(self, session_id: str, event_type: str, data: Any):
        """Emit a custom event to registered handlers"""

        if event_type in self.event_handlers:
            for handler in self.event_handlers[event_type]:
                try:
                    await handler(session_id, data)
                except Exception as e:
                    logger.error("Error in event handler",
                                 event_type=event_type,
                                 error=str(e))
