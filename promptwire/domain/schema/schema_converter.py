from typing import Dict, Any, Optional
from functools import lru_cache
import copy
import json
import structlog
from pydantic import BaseModel, TypeAdapter, PydanticUserError

from promptwire.domain.errors import EncodingError

logger = structlog.get_logger(__name__)


@lru_cache(maxsize=256)
def _generate_schema(schema: Any, name: Optional[str]) -> Dict[str, Any]:
    """Build the JSON schema of a type once per (type, name) pair"""

    try:
        if isinstance(schema, type) and issubclass(schema, BaseModel):
            generated = schema.model_json_schema()
        else:
            generated = TypeAdapter(schema).json_schema()
    except (PydanticUserError, TypeError) as e:
        raise EncodingError(f"Cannot describe schema {schema!r}: {e}") from e

    if name:
        generated["title"] = name

    logger.debug("Generated capability schema", schema=getattr(schema, "__name__", repr(schema)))

    return generated


def to_json_schema(schema: Any, name: Optional[str] = None) -> Dict[str, Any]:
    """Convert a pydantic model, type or JSON schema dict into a JSON schema dict"""

    if isinstance(schema, dict):
        described = copy.deepcopy(schema)
        if name:
            described["title"] = name
        return described

    try:
        generated = _generate_schema(schema, name)
    except TypeError as e:
        # Unhashable schema objects cannot go through the cache
        raise EncodingError(f"Cannot describe schema {schema!r}: {e}") from e

    return copy.deepcopy(generated)


def to_descriptor(schema: Any, name: Optional[str] = None) -> str:
    """Render a schema as compact JSON text for embedding in prompts"""

    return json.dumps(
        to_json_schema(schema, name),
        separators=(",", ":"),
        ensure_ascii=False
    )
