"""JSON serialization utilities for persisted records and tokens.

Run-state records, cache entries and continuation tokens are all JSON. This
module centralizes how Python values are turned into JSON text and back, and
handles the special types stages commonly produce.

Special Type Handling:
    - datetime/date/time: Converted to ISO format strings
    - Decimal: Converted to float
    - UUID: Converted to string
    - bytes: Base64 encoded
    - set/tuple: Converted to list
    - pydantic models: Dumped with their aliases

Usage:
    from agentpipe.cache.serializer import serialize_json, deserialize_json

    text = serialize_json({"storedAt": datetime.now(timezone.utc)}, pretty=True)
    record = deserialize_json(text)
"""

import base64
import json
import logging
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Union
from uuid import UUID

from pydantic import BaseModel

logger = logging.getLogger(__name__)


def _json_default(obj: Any) -> Any:
    """
    Custom JSON encoder for special types.

    Args:
        obj: Object to encode

    Returns:
        JSON-serializable representation

    Raises:
        TypeError: If object type is not supported
    """
    if isinstance(obj, (datetime, date, time)):
        return obj.isoformat()

    if isinstance(obj, Decimal):
        return float(obj)

    if isinstance(obj, UUID):
        return str(obj)

    if isinstance(obj, bytes):
        return base64.b64encode(obj).decode("utf-8")

    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)

    if isinstance(obj, Enum):
        return obj.value

    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", by_alias=True)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def serialize_json(data: Any, pretty: bool = False) -> str:
    """
    Serialize data to a JSON string.

    Args:
        data: Python object to serialize
        pretty: Indent with two spaces (used for files on disk)

    Returns:
        JSON string

    Raises:
        ValueError: If serialization fails

    Example:
        >>> serialize_json({"key": "value", "count": 42})
        '{"key":"value","count":42}'
    """
    try:
        if pretty:
            return json.dumps(data, default=_json_default, indent=2, ensure_ascii=False)
        return json.dumps(data, default=_json_default, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        logger.error(f"JSON serialization failed: {e}")
        raise ValueError(f"Failed to serialize to JSON: {e}") from e


def deserialize_json(data: Union[str, bytes]) -> Any:
    """
    Deserialize data from a JSON string.

    Args:
        data: JSON string or UTF-8 bytes

    Returns:
        Deserialized Python object

    Raises:
        ValueError: If the input is not valid UTF-8 JSON

    Example:
        >>> deserialize_json('{"key":"value","count":42}')["count"]
        42
    """
    try:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.debug(f"JSON deserialization failed: {e}")
        raise ValueError(f"Failed to deserialize from JSON: {e}") from e

