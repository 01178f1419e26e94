"""Cache key derivation for external calls and state keys.

This module computes stable content hashes identifying "this call is
semantically identical to a previous one", plus filesystem-safe names for
caller-chosen run-state keys.

Key Derivation:
    - Only semantically significant fields participate (prompt, model,
      schema version, artifact hashes, output schema)
    - Never timestamps, retry counters or attempt numbers
    - Objects are hashed in canonical form (keys sorted recursively), so
      field order never changes the key
    - Artifacts are hashed individually first; only their hashes enter
      the call key

Usage:
    from agentpipe.cache.keys import compute_cache_key, hash_artifact

    hashes = [hash_artifact(a) for a in artifacts]
    key = compute_cache_key(
        prompt="Summarize",
        model="claude-3-sonnet",
        schema_version="v1",
        artifact_hashes=hashes,
        output_schema=None,
    )
"""

import hashlib
import json
import logging
import re
from typing import Any, Dict, List, Optional

from ..config import ROUTER_DEFAULT_MODEL

logger = logging.getLogger(__name__)

# Length of a sha256 hex digest
DIGEST_LENGTH = 64


# ============================================================================
# Canonical form
# ============================================================================


def canonical_json(value: Any) -> str:
    """
    Serialize a JSON-compatible value with object keys sorted recursively.

    Args:
        value: Any JSON-compatible value

    Returns:
        Compact JSON string that is identical for semantically equal values

    Example:
        >>> canonical_json({"b": 1, "a": {"d": 2, "c": 3}})
        '{"a":{"c":3,"d":2},"b":1}'
    """
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_hex(text: str) -> str:
    """Return the sha256 hex digest of a UTF-8 string."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


# ============================================================================
# Artifacts
# ============================================================================


def normalize_artifact(raw: Any) -> Dict[str, Any]:
    """
    Coerce an input item into an artifact object.

    Args:
        raw: Item from the input stream or from --artifacts-json

    Returns:
        - dicts unchanged
        - strings as {"kind": "text", "text": raw}
        - numbers / booleans as text artifacts
        - anything else as {"kind": "json", "data": raw}

    Example:
        >>> normalize_artifact("doc")
        {'kind': 'text', 'text': 'doc'}
    """
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        return {"kind": "text", "text": raw}
    if isinstance(raw, bool):
        return {"kind": "text", "text": "true" if raw else "false"}
    if isinstance(raw, (int, float)):
        return {"kind": "text", "text": str(raw)}
    return {"kind": "json", "data": raw}


def hash_artifact(artifact: Any) -> str:
    """
    Hash a single artifact over its canonical form.

    Args:
        artifact: Normalized artifact

    Returns:
        64-character hex digest
    """
    return sha256_hex(canonical_json(artifact))


# ============================================================================
# Call keys
# ============================================================================


def compute_cache_key(
    prompt: str,
    model: Optional[str],
    schema_version: str,
    artifact_hashes: List[str],
    output_schema: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Derive the content-addressed cache key for an llm-task call.

    Args:
        prompt: Primary prompt
        model: Model identifier; empty means the router default
        schema_version: Logical schema version string
        artifact_hashes: Per-artifact hashes, in input order
        output_schema: Optional JSON schema the output must satisfy

    Returns:
        64-character hex digest

    Example:
        >>> a = compute_cache_key("p", "m", "v1", [], {"type": "object", "required": []})
        >>> b = compute_cache_key("p", "m", "v1", [], {"required": [], "type": "object"})
        >>> a == b
        True
    """
    payload = {
        "prompt": prompt,
        "model": model or ROUTER_DEFAULT_MODEL,
        "schemaVersion": schema_version,
        "artifactHashes": list(artifact_hashes),
        "outputSchema": output_schema,
    }
    key = sha256_hex(canonical_json(payload))
    logger.debug(f"Derived cache key {key[:12]}... from {len(artifact_hashes)} artifact(s)")
    return key


# ============================================================================
# State keys
# ============================================================================

_UNSAFE_CHARS = re.compile(r"[^a-z0-9._-]+")
_REPEATED_UNDERSCORES = re.compile(r"_+")


def state_key_filename(key: str) -> str:
    """
    Map a caller-chosen state key to a safe file name.

    Args:
        key: Arbitrary state key (e.g. "Email Triage/2024-01-08")

    Returns:
        Lower-cased file name ending in ".json"

    Raises:
        ValueError: If the key is empty after sanitization

    Example:
        >>> state_key_filename("Email Triage/2024-01-08")
        'email_triage_2024-01-08.json'
    """
    safe = _UNSAFE_CHARS.sub("_", str(key).lower())
    safe = _REPEATED_UNDERSCORES.sub("_", safe).strip("_")
    if not safe:
        raise ValueError("state key is empty/invalid")
    return f"{safe}.json"


def is_cache_key(value: str) -> bool:
    """True when value looks like a derived cache key (64 lowercase hex chars)."""
    return bool(re.fullmatch(r"[0-9a-f]{%d}" % DIGEST_LENGTH, value or ""))
