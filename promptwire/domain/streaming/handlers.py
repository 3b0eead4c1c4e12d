from typing import Any, Optional
from collections.abc import MutableMapping

from promptwire.domain.schema.structured_codec import StructuredCodec
from promptwire.domain.streaming.tag_parser import Handler, TagElement


def assign(state: Any, field: str, value: Any) -> None:
    """Set a field on a dict-like or attribute-based state"""

    if isinstance(state, MutableMapping):
        state[field] = value
    else:
        setattr(state, field, value)


def text_handler(field: Optional[str] = None, strip: bool = True) -> Handler:
    """Store the raw tag content, e.g. a reasoning block"""

    def handle(state: Any, element: TagElement) -> None:
        content = element.content.strip() if strip else element.content
        assign(state, field or element.tag, content)

    return handle


def structured_output_handler(schema: Any, field: str = "output") -> Handler:
    """Decode JSON tag content against a schema and store the value"""

    codec = StructuredCodec(schema)

    def handle(state: Any, element: TagElement) -> None:
        value = codec.decode(element.content, tag=element.tag, index=element.index)
        assign(state, field, value)

    return handle


def collecting_handler(field: str, schema: Any = None) -> Handler:
    """Append every occurrence of a tag to a list on the state"""

    codec = StructuredCodec(schema) if schema is not None else None

    def handle(state: Any, element: TagElement) -> None:
        value = codec.decode(element.content, tag=element.tag, index=element.index) if codec else element.content
        items = state.get(field) if isinstance(state, MutableMapping) else getattr(state, field, None)
        if items is None:
            items = []
            assign(state, field, items)
        items.append(value)

    return handle
