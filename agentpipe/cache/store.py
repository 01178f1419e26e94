"""File-backed run-state store and content-addressed result cache.

Two keyed namespaces, each a directory of one JSON file per key:

    <state_dir>/<sanitized-key>.json                 run-state by caller key
    <cache_dir>/llm_task.invoke/<cache-key>.json     cache by derived hash

Writes replace whole files (temp file + rename), so readers never observe a
partial record. Concurrent writers of the same cache key write identical
content, so the last rename wins harmlessly.
"""

import asyncio
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .keys import is_cache_key, state_key_filename
from .serializer import deserialize_json, serialize_json

logger = logging.getLogger(__name__)

RUN_STATE_TYPE = "llm_task.invoke"
RUN_STATE_VERSION = 1
CACHE_NAMESPACE = "llm_task.invoke"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CacheEntry(_Record):
    """Immutable cached result of one validated call."""

    cache_key: str
    items: List[Dict[str, Any]]
    stored_at: str = Field(default_factory=_utcnow)


class RunStateRecord(_Record):
    """Result of one logical run, keyed by a caller-chosen key."""

    type: str = RUN_STATE_TYPE
    version: int = RUN_STATE_VERSION
    key: Optional[str] = None
    cache_key: str
    items: List[Dict[str, Any]]
    stored_at: str = Field(default_factory=_utcnow)


def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


class StateStore:
    """Keyed JSON values under a state directory."""

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)

    def path_for(self, key: str) -> Path:
        return self.state_dir / state_key_filename(key)

    async def read(self, key: str) -> Any:
        """
        Read the JSON value stored under key.

        Returns:
            The stored value, or None when the key has never been written

        Raises:
            ValueError: If the key is invalid or the file is not valid JSON
        """
        path = self.path_for(key)
        text = await asyncio.to_thread(_read_text, path)
        if text is None:
            return None
        return deserialize_json(text)

    async def write(self, key: str, value: Any) -> Path:
        """Replace the value stored under key."""
        path = self.path_for(key)
        await asyncio.to_thread(_write_atomic, path, serialize_json(value, pretty=True) + "\n")
        logger.debug(f"Wrote state key '{key}' to {path}")
        return path

    async def read_run_state(self, key: str, cache_key: str) -> Optional[RunStateRecord]:
        """
        Look up a reusable run-state record.

        A record is only reused when it was written by an invocation and its
        stored cache key matches the freshly derived one, which guards against
        a caller reusing a run key for a different request.
        """
        try:
            stored = await self.read(key)
        except ValueError as e:
            logger.warning(f"Ignoring unreadable run-state '{key}': {e}")
            return None

        if not isinstance(stored, dict) or stored.get("type") != RUN_STATE_TYPE:
            return None
        try:
            record = RunStateRecord.model_validate(stored)
        except ValidationError:
            logger.warning(f"Ignoring malformed run-state record '{key}'")
            return None
        if record.cache_key != cache_key:
            logger.info(f"Run-state '{key}' belongs to a different request, not reusing")
            return None
        return record

    async def write_run_state(
        self, key: str, cache_key: str, items: List[Dict[str, Any]]
    ) -> RunStateRecord:
        record = RunStateRecord(key=key, cache_key=cache_key, items=items)
        await self.write(key, record.model_dump(mode="json", by_alias=True))
        return record


class ResultCache:
    """Content-addressed cache of validated call results."""

    def __init__(self, cache_dir: Path, namespace: str = CACHE_NAMESPACE):
        self.cache_dir = Path(cache_dir)
        self.namespace = namespace

    def path_for(self, cache_key: str) -> Path:
        if not is_cache_key(cache_key):
            raise ValueError(f"Invalid cache key: {cache_key!r}")
        return self.cache_dir / self.namespace / f"{cache_key}.json"

    async def get(self, cache_key: str) -> Optional[CacheEntry]:
        """Return the cached entry, or None on miss."""
        text = await asyncio.to_thread(_read_text, self.path_for(cache_key))
        if text is None:
            return None
        try:
            return CacheEntry.model_validate(deserialize_json(text))
        except (ValueError, ValidationError) as e:
            logger.warning(f"Treating unreadable cache entry {cache_key[:12]}... as a miss: {e}")
            return None

    async def put(self, cache_key: str, items: List[Dict[str, Any]]) -> CacheEntry:
        entry = CacheEntry(cache_key=cache_key, items=items)
        text = serialize_json(entry.model_dump(mode="json", by_alias=True), pretty=True)
        await asyncio.to_thread(_write_atomic, self.path_for(cache_key), text)
        logger.debug(f"Cached {len(items)} item(s) under {cache_key[:12]}...")
        return entry
