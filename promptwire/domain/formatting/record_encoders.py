from typing import Dict, Any, List, Optional, Callable, Iterable, Mapping
import structlog
from pydantic_core import to_json, PydanticSerializationError

from promptwire.domain.errors import EncodingError
from promptwire.domain.models.records import (
    NodeDescription, AttributeValue, BaseRecord, RECORD_TYPES,
    InputRecord, OutputRecord, ThoughtRecord,
    ActionInvocationRecord, ActionResultRecord, CapabilityDescriptor,
    ContextSnapshot
)
from promptwire.domain.formatting.tag_formatter import format_node, format_tag
from promptwire.domain.schema.schema_converter import to_descriptor

logger = structlog.get_logger(__name__)


def to_structured_text(value: Any) -> str:
    """Serialize a value to compact JSON"""

    try:
        return to_json(value, by_alias=True).decode("utf-8")
    except PydanticSerializationError as e:
        raise EncodingError(f"Cannot serialize {type(value).__name__}: {e}") from e


def format_value(value: Any) -> str:
    """Inline text as-is, serialize anything else"""

    if isinstance(value, str):
        return value
    return to_structured_text(value)


def _message_attributes(params: Mapping[str, str], role: str) -> Dict[str, AttributeValue]:
    attributes: Dict[str, AttributeValue] = dict(params)
    attributes["role"] = role
    return attributes


def _encode_input(record: InputRecord) -> NodeDescription:
    return NodeDescription(
        tag="msg",
        attributes=_message_attributes(record.source_params, "user"),
        content=format_value(record.payload)
    )


def _encode_output(record: OutputRecord) -> NodeDescription:
    return NodeDescription(
        tag="msg",
        attributes=_message_attributes(record.source_params, "assistant"),
        content=format_value(record.payload)
    )


def _encode_thought(record: ThoughtRecord) -> NodeDescription:
    return NodeDescription(
        tag="reflection",
        attributes={"role": "assistant"},
        content=record.content
    )


def _encode_action_call(record: ActionInvocationRecord) -> NodeDescription:
    return NodeDescription(
        tag="action_call",
        attributes={"id": record.id, "name": record.name},
        content=to_structured_text(record.arguments)
    )


def _encode_action_result(record: ActionResultRecord) -> NodeDescription:
    return NodeDescription(
        tag="action_result",
        attributes={"name": record.name, "callId": record.call_id},
        content=to_structured_text(record.result)
    )


def _encode_capability(record: CapabilityDescriptor) -> NodeDescription:
    children: List[Optional[NodeDescription]] = [
        NodeDescription(tag="description", content=record.description)
        if record.description else None,
        NodeDescription(tag="instructions", content=record.instructions)
        if record.instructions else None,
        NodeDescription(tag="schema", content=to_descriptor(record.data_schema, record.kind.value))
        if record.data_schema is not None else None,
    ]

    return NodeDescription(
        tag=record.kind.value,
        attributes={"name": record.name},
        content=children
    )


_ENCODERS: Dict[type, Callable[[Any], NodeDescription]] = {
    InputRecord: _encode_input,
    OutputRecord: _encode_output,
    ThoughtRecord: _encode_thought,
    ActionInvocationRecord: _encode_action_call,
    ActionResultRecord: _encode_action_result,
    CapabilityDescriptor: _encode_capability,
}

_uncovered = [record_type.__name__ for record_type in RECORD_TYPES if record_type not in _ENCODERS]
if _uncovered:
    raise EncodingError(f"No encoder registered for record types: {', '.join(_uncovered)}")


def record_to_node(record: BaseRecord) -> NodeDescription:
    """Map a record onto its node description"""

    encoder = _ENCODERS.get(type(record))
    if encoder is None:
        raise EncodingError(f"Unknown record kind: {type(record).__name__}")
    return encoder(record)


def encode_record(record: BaseRecord) -> str:
    """Encode a record into tagged text"""

    return format_node(record_to_node(record))


def encode_records(records: Iterable[BaseRecord]) -> str:
    """Encode a sequence of records, one block per line"""

    return "\n".join(encode_record(record) for record in records)


def format_msg(role: str, content: Any, **params: AttributeValue) -> str:
    """Format a chat message with the given role and extra attributes"""

    attributes: Dict[str, AttributeValue] = {"role": role}
    attributes.update(params)
    return format_tag("msg", attributes, format_value(content))


def format_input_ref(record: InputRecord) -> str:
    """Format a raw inbound event as an input block"""

    return format_tag(
        "input",
        {"name": record.source, **record.source_params},
        format_value(record.payload)
    )


def format_output_ref(record: OutputRecord) -> str:
    """Format a raw outbound event as an output block"""

    return format_tag(
        "output",
        {"name": record.source, **record.source_params},
        format_value(record.payload)
    )


def format_structured(
    tag: str,
    value: Any,
    attributes: Optional[Mapping[str, AttributeValue]] = None
) -> str:
    """Embed a structured value as JSON inside a tag"""

    return format_tag(tag, attributes, to_structured_text(value))


def _render_entry(value: Any) -> str:
    if isinstance(value, BaseRecord):
        return encode_record(value)
    if isinstance(value, NodeDescription):
        return format_node(value)
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)) and value and all(isinstance(v, BaseRecord) for v in value):
        return encode_records(value)
    return to_structured_text(value)


def format_context(snapshot: ContextSnapshot) -> str:
    """Render a read-only view of a context and its keyed sub-records"""

    children: List[Optional[NodeDescription]] = [
        NodeDescription(tag="description", content=snapshot.description)
        if snapshot.description else None,
        NodeDescription(tag="instructions", content=snapshot.instructions)
        if snapshot.instructions else None,
    ]

    for key, value in snapshot.entries.items():
        children.append(
            NodeDescription(tag="entry", attributes={"key": key}, content=_render_entry(value))
        )

    logger.debug("Formatting context", type=snapshot.type, key=snapshot.key, entries=len(snapshot.entries))

    return format_node(
        NodeDescription(
            tag="context",
            attributes={"type": snapshot.type, "key": snapshot.key},
            content=children
        )
    )


def format_contexts(snapshots: Iterable[ContextSnapshot]) -> str:
    """Render several contexts one after another"""

    return "\n".join(format_context(snapshot) for snapshot in snapshots)
