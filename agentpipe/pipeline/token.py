"""Continuation token codec.

A continuation token is the transportable form of a halt descriptor: URL-safe
base64 (unpadded) of a compact, versioned JSON record::

    {"protocolVersion": 1, "v": 1, "stageIndex": 1, "resumeAtIndex": 2,
     "items": [...], "prompt": "Send?", "pipeline": [{"name": ..., "args": {...}}]}

Indices are always absolute positions in the original full pipeline, so a
caller holding only the latest token of a chain of approvals knows exactly
which original stage to resume at.

Tokens are an operational resumption handle, not a security boundary: they are
neither signed nor encrypted, and anyone holding one can read the pending items
and resume the run. Integrators must not put secrets in pending items and must
treat tokens from untrusted parties as untrusted input.
"""

import base64
import binascii
import logging
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..cache.serializer import deserialize_json, serialize_json
from ..errors import InvalidTokenError
from .base import StageSpec

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1


class HaltDescriptor(BaseModel):
    """Where and why a pipeline paused."""

    model_config = ConfigDict(frozen=True)

    stage_index: int = Field(ge=0)
    resume_index: int = Field(ge=1)
    pending_items: List[Any] = Field(default_factory=list)
    prompt: Optional[str] = None

    @model_validator(mode="after")
    def _resume_follows_halt(self) -> "HaltDescriptor":
        if self.resume_index != self.stage_index + 1:
            raise ValueError("resume_index must equal stage_index + 1")
        return self

    @classmethod
    def at(cls, stage_index: int, pending_items: List[Any], prompt: Optional[str] = None) -> "HaltDescriptor":
        return cls(
            stage_index=stage_index,
            resume_index=stage_index + 1,
            pending_items=list(pending_items),
            prompt=prompt,
        )


class ContinuationToken(BaseModel):
    """Decoded token payload (wire field names via aliases)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    protocol_version: Literal[1] = Field(alias="protocolVersion")
    v: Literal[1]
    stage_index: int = Field(alias="stageIndex", ge=0)
    resume_at_index: int = Field(alias="resumeAtIndex", ge=1)
    items: List[Any] = Field(default_factory=list)
    prompt: Optional[str] = None
    pipeline: Optional[List[StageSpec]] = None

    @model_validator(mode="after")
    def _consistent_indices(self) -> "ContinuationToken":
        if self.resume_at_index != self.stage_index + 1:
            raise ValueError("resumeAtIndex must equal stageIndex + 1")
        if self.pipeline is not None and self.resume_at_index > len(self.pipeline):
            raise ValueError("resumeAtIndex is past the end of the embedded pipeline")
        return self

    @property
    def halt(self) -> HaltDescriptor:
        return HaltDescriptor(
            stage_index=self.stage_index,
            resume_index=self.resume_at_index,
            pending_items=self.items,
            prompt=self.prompt,
        )

    @classmethod
    def from_halt(
        cls, halt: HaltDescriptor, pipeline: Optional[List[StageSpec]] = None
    ) -> "ContinuationToken":
        return cls(
            protocol_version=PROTOCOL_VERSION,
            v=PROTOCOL_VERSION,
            stage_index=halt.stage_index,
            resume_at_index=halt.resume_index,
            items=list(halt.pending_items),
            prompt=halt.prompt,
            pipeline=list(pipeline) if pipeline is not None else None,
        )


def encode_token(halt: HaltDescriptor, pipeline: Optional[List[StageSpec]] = None) -> str:
    """
    Encode a halt descriptor (optionally with the full stage list) into a token.

    Args:
        halt: Halt descriptor with absolute indices
        pipeline: Full original stage list, for single-token resumption

    Returns:
        URL-safe base64 string without padding
    """
    token = ContinuationToken.from_halt(halt, pipeline)
    payload = token.model_dump(mode="json", by_alias=True, exclude_none=True)
    raw = serialize_json(payload).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_token(token: str) -> ContinuationToken:
    """
    Decode and validate a continuation token. All-or-nothing.

    Raises:
        InvalidTokenError: For any malformed, truncated, non-JSON or
            unsupported-version token
    """
    if not isinstance(token, str) or not token.strip():
        raise InvalidTokenError("Invalid token: empty")

    text = token.strip()
    try:
        raw = base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
        payload = deserialize_json(raw)
    except (binascii.Error, ValueError) as e:
        raise InvalidTokenError("Invalid token: not base64url-encoded JSON") from e

    if not isinstance(payload, dict):
        raise InvalidTokenError("Invalid token: payload is not an object")
    if "v" not in payload or "protocolVersion" not in payload:
        raise InvalidTokenError("Invalid token: missing version")

    try:
        return ContinuationToken.model_validate(payload)
    except ValidationError as e:
        logger.debug(f"Token validation failed: {e}")
        raise InvalidTokenError(f"Invalid token: {e.error_count()} validation error(s)") from e
