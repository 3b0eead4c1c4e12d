from typing import Dict, Any, List, Optional, Union, Literal, Annotated
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from enum import Enum
import re

from promptwire.domain.errors import EncodingError


TAG_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_:.\-]*$")

AttributeValue = Union[str, int, float, bool, None]


def is_valid_tag_name(name: str) -> bool:
    """Check whether a string can be used as a tag or attribute name"""
    return isinstance(name, str) and bool(TAG_NAME_PATTERN.match(name))


class NodeDescription(BaseModel):
    """Declarative description of a tagged text fragment"""
    tag: str = Field(description="Tag name")
    attributes: Dict[str, AttributeValue] = Field(
        default_factory=dict,
        description="Ordered attributes, None values are omitted when rendered"
    )
    content: Union[str, List[Optional[Union["NodeDescription", str]]], None] = Field(
        None,
        description="Text, nested nodes or pre-rendered fragments; None renders a self-closing tag"
    )

    @field_validator("tag")
    @classmethod
    def _check_tag(cls, value: str) -> str:
        if not is_valid_tag_name(value):
            raise EncodingError(f"Invalid tag name: {value!r}")
        return value

    @field_validator("attributes")
    @classmethod
    def _check_attribute_names(cls, value: Dict[str, AttributeValue]) -> Dict[str, AttributeValue]:
        for key in value:
            if not is_valid_tag_name(key):
                raise EncodingError(f"Invalid attribute name: {key!r}")
        return value


class RecordRef(str, Enum):
    """Record kinds exchanged with the model"""
    INPUT = "input"
    OUTPUT = "output"
    THOUGHT = "thought"
    ACTION_CALL = "action_call"
    ACTION_RESULT = "action_result"
    CAPABILITY = "capability"


class CapabilityKind(str, Enum):
    """What a capability descriptor describes"""
    ACTION = "action"
    OUTPUT = "output"


class BaseRecord(BaseModel):
    """Immutable unit of agent/model exchange"""
    model_config = ConfigDict(frozen=True)


class InputRecord(BaseRecord):
    """Event received by the agent, rendered as a user message"""
    ref: Literal[RecordRef.INPUT] = RecordRef.INPUT
    source: Optional[str] = Field(None, description="Input name, e.g. discord:message")
    source_params: Dict[str, str] = Field(default_factory=dict)
    payload: Any = None


class OutputRecord(BaseRecord):
    """Event produced by the agent, rendered as an assistant message"""
    ref: Literal[RecordRef.OUTPUT] = RecordRef.OUTPUT
    source: Optional[str] = Field(None, description="Output name, e.g. discord:message")
    source_params: Dict[str, str] = Field(default_factory=dict)
    payload: Any = None


class ThoughtRecord(BaseRecord):
    """Reasoning note captured from the model"""
    ref: Literal[RecordRef.THOUGHT] = RecordRef.THOUGHT
    content: str


class ActionInvocationRecord(BaseRecord):
    """Call of an action requested by the model"""
    ref: Literal[RecordRef.ACTION_CALL] = RecordRef.ACTION_CALL
    id: str = Field(description="Call identifier")
    name: str = Field(description="Action name")
    arguments: Any = None


class ActionResultRecord(BaseRecord):
    """Result of a previously invoked action"""
    ref: Literal[RecordRef.ACTION_RESULT] = RecordRef.ACTION_RESULT
    name: str = Field(description="Action name")
    call_id: str = Field(description="Identifier of the originating call")
    result: Any = None


class CapabilityDescriptor(BaseRecord):
    """Description of an action or output the model may use"""
    ref: Literal[RecordRef.CAPABILITY] = RecordRef.CAPABILITY
    kind: CapabilityKind
    name: str
    description: Optional[str] = None
    instructions: Optional[str] = None
    data_schema: Any = Field(
        None,
        description="Pydantic model, type or JSON schema dict describing arguments or output"
    )


Record = Annotated[
    Union[
        InputRecord,
        OutputRecord,
        ThoughtRecord,
        ActionInvocationRecord,
        ActionResultRecord,
        CapabilityDescriptor,
    ],
    Field(discriminator="ref")
]

RECORD_TYPES = (
    InputRecord,
    OutputRecord,
    ThoughtRecord,
    ActionInvocationRecord,
    ActionResultRecord,
    CapabilityDescriptor,
)

_record_adapter = TypeAdapter(Record)


def parse_record(data: Dict[str, Any]) -> BaseRecord:
    """Validate a plain mapping into the matching record variant"""
    return _record_adapter.validate_python(data)


class ContextSnapshot(BaseModel):
    """Read-only view of a context owned by the agent loop"""
    model_config = ConfigDict(frozen=True)

    type: str = Field(description="Context type, e.g. discord:channel")
    key: str = Field(description="Context instance key")
    description: Optional[str] = None
    instructions: Optional[str] = None
    entries: Dict[str, Any] = Field(
        default_factory=dict,
        description="Keyed sub-records, one per conversation or resource"
    )
