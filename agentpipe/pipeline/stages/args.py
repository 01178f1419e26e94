"""Helpers for reading CLI-style stage arguments."""

import json
from typing import Any, Dict, List, Mapping, Optional

from ...cache.keys import state_key_filename
from ...errors import ConfigurationError


def positional(args: Mapping[str, Any]) -> List[str]:
    """Positional arguments (``_``) as a list of strings."""
    raw = args.get("_") or []
    if isinstance(raw, str):
        return [raw]
    return [str(v) for v in raw]


def require_key(args: Mapping[str, Any], stage_name: str) -> str:
    """State key from ``key`` or the first positional argument."""
    key = args.get("key")
    if not key:
        rest = positional(args)
        key = rest[0] if rest else None
    if not key or not str(key).strip():
        raise ConfigurationError(f"{stage_name} requires a key")
    key = str(key).strip()
    try:
        state_key_filename(key)
    except ValueError as e:
        raise ConfigurationError(f"{stage_name}: {e}") from e
    return key


def _load(raw: Any, label: str, expected: str) -> Any:
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except ValueError as e:
        raise ConfigurationError(f"{label} must be a JSON {expected}") from e


def parse_json_array(raw: Any, label: str) -> List[Any]:
    """Parse a JSON array argument (string or already-parsed list)."""
    if raw is None or raw == "":
        return []
    parsed = _load(raw, label, "array")
    if not isinstance(parsed, list):
        raise ConfigurationError(f"{label} must be a JSON array")
    return parsed


def parse_json_object(raw: Any, label: str) -> Optional[Dict[str, Any]]:
    """Parse a JSON object argument (string or already-parsed dict)."""
    if raw is None or raw == "":
        return None
    parsed = _load(raw, label, "object")
    if not isinstance(parsed, dict):
        raise ConfigurationError(f"{label} must be a JSON object")
    return parsed
