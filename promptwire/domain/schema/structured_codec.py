from typing import Any, Generic, Optional, TypeVar
import re
from pydantic import TypeAdapter, ValidationError

from promptwire.domain.errors import DecodeValidationError, EncodingError

T = TypeVar("T")

_CODE_FENCE = re.compile(r"^```[\w-]*\s*(.*?)\s*```$", re.DOTALL)


def strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code fence, if any"""

    stripped = text.strip()
    match = _CODE_FENCE.match(stripped)
    if match:
        return match.group(1)
    return stripped


class StructuredCodec(Generic[T]):
    """Serialize and deserialize structured values bound to a declared shape"""

    def __init__(self, schema: Any):
        self.schema = schema
        self._adapter: TypeAdapter = TypeAdapter(schema)

    def encode(self, value: Any) -> str:
        """Validate a value against the schema and dump it as compact JSON"""

        try:
            validated = self._adapter.validate_python(value)
        except ValidationError as e:
            raise EncodingError(f"Value does not match schema: {e}") from e

        return self._adapter.dump_json(validated, by_alias=True).decode("utf-8")

    def decode(self, text: str, tag: Optional[str] = None, index: Optional[int] = None) -> T:
        """Parse JSON text and validate it against the schema"""

        payload = strip_code_fence(text)

        try:
            return self._adapter.validate_json(payload)
        except ValidationError as e:
            raise DecodeValidationError(
                f"Content does not match schema: {e.error_count()} error(s)",
                tag=tag,
                index=index,
                content=text,
                details=e.errors(include_url=False)
            ) from e
