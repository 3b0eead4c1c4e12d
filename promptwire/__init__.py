from promptwire.domain.errors import (
    ProtocolError,
    EncodingError,
    TemplateBindingError,
    DecodeValidationError,
    ParserError,
    ParserConfigurationError,
    SessionClosedError,
    IncompleteStreamWarning,
)
from promptwire.domain.models.records import (
    NodeDescription,
    RecordRef,
    CapabilityKind,
    InputRecord,
    OutputRecord,
    ThoughtRecord,
    ActionInvocationRecord,
    ActionResultRecord,
    CapabilityDescriptor,
    ContextSnapshot,
    parse_record,
)
from promptwire.domain.formatting.tag_formatter import format_node, format_tag
from promptwire.domain.formatting.record_encoders import (
    encode_record,
    encode_records,
    record_to_node,
    format_msg,
    format_input_ref,
    format_output_ref,
    format_context,
    format_contexts,
    format_structured,
    format_value,
)
from promptwire.domain.prompting.prompt_compiler import PromptTemplate, create_prompt
from promptwire.domain.schema.schema_converter import to_json_schema, to_descriptor
from promptwire.domain.schema.structured_codec import StructuredCodec
from promptwire.domain.streaming.tag_parser import (
    TagElement,
    TagParser,
    ParseSession,
    ParseResult,
    create_parser,
)
from promptwire.domain.streaming.streaming_handler import StreamingHandler
from promptwire.domain.streaming.handlers import (
    text_handler,
    structured_output_handler,
    collecting_handler,
)

__version__ = "0.1.0"
