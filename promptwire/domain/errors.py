"""
Exception types for the tagged-text protocol
"""

from typing import Any, List, Optional


class ProtocolError(Exception):
    """Base exception for all protocol errors"""
    pass


class EncodingError(ProtocolError):
    """A value could not be encoded into tagged text"""
    pass


class TemplateBindingError(ProtocolError):
    """A prompt template and its projection do not agree"""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = missing or []


class DecodeValidationError(ProtocolError):
    """Content of a single tag occurrence failed to decode"""

    def __init__(
        self,
        message: str,
        tag: Optional[str] = None,
        index: Optional[int] = None,
        content: Optional[str] = None,
        details: Optional[List[Any]] = None
    ):
        super().__init__(message)
        self.tag = tag
        self.index = index
        self.content = content
        self.details = details or []


class ParserError(ProtocolError):
    """Base exception for streaming parser misuse"""
    pass


class ParserConfigurationError(ParserError):
    """Parser was created with an invalid handler set"""
    pass


class SessionClosedError(ParserError):
    """A decode session was used after it was closed"""
    pass


class IncompleteStreamWarning(UserWarning):
    """Stream ended while a recognized tag was still open

    Recorded on the parse result, never raised.
    """

    def __init__(self, tag: str, content: str):
        super().__init__(f"Stream ended inside <{tag}> after {len(content)} characters")
        self.tag = tag
        self.content = content
