from typing import Dict, Any, List, Optional, Callable, Generic, Iterable, AsyncIterable, Tuple, TypeVar, Union
from collections import defaultdict
from enum import Enum
import re
import uuid
import structlog
from pydantic import BaseModel, ConfigDict, Field

from promptwire.domain.errors import (
    DecodeValidationError, IncompleteStreamWarning,
    ParserConfigurationError, SessionClosedError
)
from promptwire.domain.models.records import is_valid_tag_name
from promptwire.infrastructure.config import get_settings
from promptwire.infrastructure.observability.logging import protocol_logger

logger = structlog.get_logger(__name__)

S = TypeVar("S")

_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_:.\-]*")
_ATTRIBUTE = re.compile(r"""([A-Za-z_][A-Za-z0-9_:.\-]*)\s*=\s*("[^"]*"|'[^']*')""")
_MARKER_BREAK = " \t\r\n/>"

# Returned by the opening marker matcher when more input is needed
_UNDECIDED = object()


class ParserMode(str, Enum):
    """Scanner position relative to recognized tags"""
    OUTSIDE = "outside"
    IN_TAG = "in_tag"


class TagElement(BaseModel):
    """A closed occurrence of a recognized tag"""
    model_config = ConfigDict(frozen=True)

    tag: str
    content: str
    attributes: Dict[str, str] = Field(default_factory=dict)
    index: int = Field(0, description="Occurrence number of this tag within the session")


Handler = Callable[[Any, TagElement], None]


class ParseResult(BaseModel, Generic[S]):
    """Decoded state together with the problems met while decoding"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    state: Any
    errors: List[DecodeValidationError] = Field(default_factory=list)
    incomplete: List[IncompleteStreamWarning] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and not self.incomplete


def _unescape(value: str) -> str:
    return (
        value.replace("&quot;", '"')
        .replace("&lt;", "<")
        .replace("&gt;", ">")
        .replace("&amp;", "&")
    )


def _find_marker_end(text: str, position: int, limit: int) -> Optional[int]:
    """Locate the `>` closing an opening marker, skipping quoted values.

    Returns -1 when the text runs out before the marker ends and None when
    the marker would run past limit.
    """

    quote = None
    for index in range(position, min(len(text), limit)):
        char = text[index]
        if quote:
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char == ">":
            return index
    return -1 if len(text) < limit else None


class ParseSession(Generic[S]):
    """Single-writer decode session owning one parser state"""

    def __init__(self, parser: "TagParser[S]", state: S):
        self.id = uuid.uuid4().hex[:12]
        self.state = state
        self.errors: List[DecodeValidationError] = []
        self.incomplete: List[IncompleteStreamWarning] = []

        self._handlers = parser.handlers
        self._tags = tuple(parser.handlers)
        self._max_marker_length = parser.max_marker_length
        self._mode = ParserMode.OUTSIDE
        self._pending = ""
        self._tag: Optional[str] = None
        self._attributes: Dict[str, str] = {}
        self._content: List[str] = []
        self._occurrences: Dict[str, int] = defaultdict(int)
        self._dispatched = 0
        self._closed = False

    @property
    def mode(self) -> ParserMode:
        return self._mode

    @property
    def current_tag(self) -> Optional[str]:
        """Name of the tag being buffered, if any"""
        return self._tag if self._mode == ParserMode.IN_TAG else None

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, chunk: str) -> None:
        """Consume the next piece of model output"""

        if self._closed:
            raise SessionClosedError(f"Decode session {self.id} is closed")
        if not chunk:
            return

        self._pending += chunk

        with structlog.contextvars.bound_contextvars(decode_session=self.id):
            while True:
                if self._mode == ParserMode.OUTSIDE:
                    progressed = self._scan_outside()
                else:
                    progressed = self._scan_in_tag()
                if not progressed:
                    break

    def close(self) -> ParseResult[S]:
        """End the stream and return the decoded result"""

        if self._closed:
            raise SessionClosedError(f"Decode session {self.id} is already closed")
        self._closed = True

        with structlog.contextvars.bound_contextvars(decode_session=self.id):
            if self._mode == ParserMode.IN_TAG:
                buffered = "".join(self._content) + self._pending
                self.incomplete.append(IncompleteStreamWarning(self._tag, buffered))
                protocol_logger.log_incomplete_stream(self.id, self._tag, len(buffered))
                self._mode = ParserMode.OUTSIDE
                self._tag = None
                self._content = []

            self._pending = ""

            protocol_logger.log_session_closed(
                self.id,
                dispatched=self._dispatched,
                errors=len(self.errors),
                details={"incomplete": [warning.tag for warning in self.incomplete]}
            )

        return self.result()

    def result(self) -> ParseResult[S]:
        """Snapshot of the session outcome so far"""

        return ParseResult(
            state=self.state,
            errors=list(self.errors),
            incomplete=list(self.incomplete)
        )

    def _scan_outside(self) -> bool:
        text = self._pending
        position = 0

        while True:
            start = text.find("<", position)
            if start < 0:
                # Prose outside recognized tags is ignored
                self._pending = ""
                return False

            match = self._match_opening(text, start)

            if match is _UNDECIDED:
                if len(text) - start <= self._max_marker_length:
                    self._pending = text[start:]
                    return False
                match = None

            if match is None:
                position = start + 1
                continue

            tag, attributes, end, self_closing = match
            self._pending = text[end:]

            if self_closing:
                self._dispatch(tag, "", attributes)
            else:
                self._mode = ParserMode.IN_TAG
                self._tag = tag
                self._attributes = attributes
                self._content = []
            return True

    def _scan_in_tag(self) -> bool:
        closing = f"</{self._tag}>"
        position = self._pending.find(closing)

        if position >= 0:
            self._content.append(self._pending[:position])
            self._pending = self._pending[position + len(closing):]

            tag, attributes, content = self._tag, self._attributes, "".join(self._content)
            self._mode = ParserMode.OUTSIDE
            self._tag = None
            self._attributes = {}
            self._content = []

            self._dispatch(tag, content, attributes)
            return True

        # Hold back a tail that may be the start of a split closing marker
        keep = len(closing) - 1
        if len(self._pending) > keep:
            self._content.append(self._pending[:-keep])
            self._pending = self._pending[-keep:]
        return False

    def _match_opening(self, text: str, start: int) -> Union[None, object, Tuple[str, Dict[str, str], int, bool]]:
        """Match a recognized opening marker at text[start]"""

        name_match = _NAME.match(text, start + 1)
        if not name_match:
            return _UNDECIDED if len(text) == start + 1 else None

        name = name_match.group(0)
        end = name_match.end()

        if end == len(text):
            # The name may continue in the next chunk
            if any(tag.startswith(name) for tag in self._tags):
                return _UNDECIDED
            return None

        if name not in self._handlers or text[end] not in _MARKER_BREAK:
            return None

        close = _find_marker_end(text, end, start + self._max_marker_length)
        if close is None:
            return None
        if close < 0:
            return _UNDECIDED

        inner = text[end:close].rstrip()
        self_closing = inner.endswith("/")
        if self_closing:
            inner = inner[:-1]

        attributes = {
            key: _unescape(quoted[1:-1])
            for key, quoted in _ATTRIBUTE.findall(inner)
        }

        return name, attributes, close + 1, self_closing

    def _dispatch(self, tag: str, content: str, attributes: Dict[str, str]) -> None:
        index = self._occurrences[tag]
        self._occurrences[tag] += 1

        element = TagElement(tag=tag, content=content, attributes=attributes, index=index)
        protocol_logger.log_tag_dispatch(self.id, tag, index, len(content))

        try:
            self._handlers[tag](self.state, element)
        except DecodeValidationError as e:
            if e.tag is None:
                e.tag = tag
            if e.index is None:
                e.index = index
            if e.content is None:
                e.content = content
            self._record_error(e)
        except ValueError as e:
            # Includes pydantic validation errors and malformed JSON
            error = DecodeValidationError(
                f"Failed to decode <{tag}> #{index}: {e}",
                tag=tag,
                index=index,
                content=content
            )
            error.__cause__ = e
            self._record_error(error)

        self._dispatched += 1

    def _record_error(self, error: DecodeValidationError) -> None:
        self.errors.append(error)
        protocol_logger.log_decode_error(self.id, error.tag, error.index, str(error))


class TagParser(Generic[S]):
    """Decodes recognized tags in model output into a per-session state"""

    def __init__(
        self,
        initial_state: Callable[[], S],
        handlers: Dict[str, Handler],
        tags: Optional[Iterable[str]] = None,
        max_marker_length: Optional[int] = None
    ):
        if not callable(initial_state):
            raise ParserConfigurationError("initial_state must be a callable returning a fresh state")
        if not handlers:
            raise ParserConfigurationError("At least one tag handler is required")

        for name, handler in handlers.items():
            if not is_valid_tag_name(name):
                raise ParserConfigurationError(f"Invalid tag name for handler: {name!r}")
            if not callable(handler):
                raise ParserConfigurationError(f"Handler for <{name}> is not callable")

        if tags is not None:
            declared = set(tags)
            unknown = sorted(set(handlers) - declared)
            unhandled = sorted(declared - set(handlers))
            if unknown:
                raise ParserConfigurationError(f"Handlers registered for undeclared tags: {', '.join(unknown)}")
            if unhandled:
                raise ParserConfigurationError(f"Declared tags without a handler: {', '.join(unhandled)}")

        if max_marker_length is None:
            max_marker_length = get_settings().max_marker_length
        elif max_marker_length <= 0:
            raise ParserConfigurationError(f"max_marker_length must be positive, got {max_marker_length}")

        self.initial_state = initial_state
        self.handlers: Dict[str, Handler] = dict(handlers)
        self.max_marker_length = max_marker_length

    @property
    def tags(self) -> Tuple[str, ...]:
        return tuple(self.handlers)

    def session(self) -> ParseSession[S]:
        """Start a decode session with a fresh state"""

        session = ParseSession(self, self.initial_state())
        logger.debug("Decode session started", session_id=session.id, tags=list(self.handlers))
        return session

    def parse(self, text: str) -> ParseResult[S]:
        """Decode a complete response"""

        session = self.session()
        session.feed(text)
        return session.close()

    def parse_stream(self, chunks: Iterable[str]) -> ParseResult[S]:
        """Decode a response delivered in chunks"""

        session = self.session()
        for chunk in chunks:
            session.feed(chunk)
        return session.close()

    async def aparse_stream(self, chunks: AsyncIterable[str]) -> ParseResult[S]:
        """Decode a response streamed by an async model client"""

        session = self.session()
        async for chunk in chunks:
            session.feed(chunk)
        return session.close()


def create_parser(
    initial_state: Callable[[], S],
    handlers: Dict[str, Handler],
    tags: Optional[Iterable[str]] = None
) -> TagParser[S]:
    """Build a parser from a state factory and a tag-to-handler mapping"""

    return TagParser(initial_state, handlers, tags=tags)
