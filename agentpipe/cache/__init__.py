"""Cache layer for idempotent external calls.

This package provides cache-key derivation, JSON serialization and the two
persistence tiers consulted before any external call.

Key Modules:
    - keys: Canonical hashing of call payloads and artifacts
    - serializer: JSON serialization for records and tokens
    - store: Run-state store (by caller key) and result cache (by hash)

Example:
    from agentpipe.cache import ResultCache, compute_cache_key

    cache = ResultCache(Path(".agentpipe-cache"))
    entry = await cache.get(compute_cache_key("Summarize", "m", "v1", []))
"""

from .keys import (
    canonical_json,
    compute_cache_key,
    hash_artifact,
    normalize_artifact,
    state_key_filename,
)
from .serializer import deserialize_json, serialize_json
from .store import CacheEntry, ResultCache, RunStateRecord, StateStore

__all__ = [
    # Key derivation
    "canonical_json",
    "compute_cache_key",
    "hash_artifact",
    "normalize_artifact",
    "state_key_filename",
    # Serialization
    "serialize_json",
    "deserialize_json",
    # Stores
    "CacheEntry",
    "ResultCache",
    "RunStateRecord",
    "StateStore",
]
