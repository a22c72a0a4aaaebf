"""Request body encoding and response body decoding.

Request bodies are sent as text. Strings pass through unchanged; anything
else is serialized to compact JSON with pydantic_core, which handles plain
JSON values as well as pydantic models, dataclasses and datetimes.

Response bodies are decoded on demand by consumers (ResponseCapture.body_to).
Decoding never raises: any failure yields the caller's default.
"""

from __future__ import annotations

from typing import Any

from pydantic import TypeAdapter
from pydantic_core import to_json


class BodySerializationError(ValueError):
    """Raised when a request body cannot be converted to text."""


# ---------------------------------------------------------------------------
# Python value → body text  (request encoding)
# ---------------------------------------------------------------------------


def serialize_body(body: Any) -> str | None:
    """Convert a request body to the text that goes on the wire.

    Args:
        body: None, a str (sent as-is), UTF-8 bytes, or any JSON-serializable
            value.

    Returns:
        Body text, or None if there is no body.

    Raises:
        BodySerializationError: If the body cannot be represented as text.
    """
    if body is None:
        return None
    if isinstance(body, str):
        return body
    if isinstance(body, (bytes, bytearray)):
        try:
            return bytes(body).decode("utf-8")
        except UnicodeDecodeError as e:
            raise BodySerializationError(f"Body bytes are not valid UTF-8: {e}") from e
    try:
        return to_json(body).decode("utf-8")
    except (ValueError, TypeError) as e:
        # PydanticSerializationError is a ValueError
        raise BodySerializationError(
            f"Cannot serialize body of type {type(body).__name__} to JSON: {e}"
        ) from e


def is_blank(text: str | None) -> bool:
    """True for None, empty, or whitespace-only text."""
    return text is None or not text.strip()


# ---------------------------------------------------------------------------
# Body text → Python value  (response decoding)
# ---------------------------------------------------------------------------


def deserialize_body(text: str | None, type_: Any, default: Any = None) -> Any:
    """Parse JSON text and validate it as type_.

    Returns default if text is None, is not valid JSON, does not validate
    as type_, or type_ is not something pydantic can build a validator for.
    """
    if text is None:
        return default
    try:
        return TypeAdapter(type_).validate_json(text)
    except (ValueError, TypeError):
        # ValidationError is a ValueError; schema generation errors are TypeErrors
        return default
