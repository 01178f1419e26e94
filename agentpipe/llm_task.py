"""Validated invocation loop for the llm-task service.

One call goes through these steps:

    1. Run-state lookup by caller key (reused only when its cache key matches)
    2. Content cache lookup by derived cache key
    3. Payload shape check
    4. Transport call, envelope check, optional output-schema check with
       bounded retries that tell the callee what was wrong
    5. Persist to run-state and cache, then return

Transport-level failures (bad status, bad body, bad envelope, reported
errors) are never retried. Only schema validation failures are.

Usage:
    from agentpipe.llm_task import InvocationRequest, invoke_llm_task

    items = await invoke_llm_task(
        InvocationRequest(prompt="Summarize", artifacts=["doc text"]),
        InvokeSettings.from_env(ctx.env),
        state_store=ctx.state_store,
        cache=ctx.result_cache,
    )
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional

import httpx
from jsonschema.exceptions import SchemaError
from jsonschema.validators import validator_for
from pydantic import (
    BaseModel,
    ConfigDict,
    StrictBool,
    StrictStr,
    StringConstraints,
    ValidationError,
)
from pydantic.alias_generators import to_camel

from .cache.keys import compute_cache_key, hash_artifact, normalize_artifact, state_key_filename
from .cache.store import ResultCache, StateStore
from .config import DEFAULT_MAX_VALIDATION_RETRIES, InvokeSettings
from .errors import (
    ConfigurationError,
    EnvelopeInvalidError,
    PayloadInvalidError,
    RemoteError,
    SchemaValidationFailedError,
)
from .providers import BaseTransport, select_transport

logger = logging.getLogger(__name__)

RESULT_KIND = "llm_task.invoke"

SOURCE_REMOTE = "remote"
SOURCE_CACHE = "cache"
SOURCE_RUN_STATE = "run_state"


# ============================================================================
# Payload shape
# ============================================================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Artifact(_CamelModel):
    """One attachment; known fields are type-checked, others pass through."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    kind: Optional[StrictStr] = None
    role: Optional[StrictStr] = None
    name: Optional[StrictStr] = None
    mime_type: Optional[StrictStr] = None
    text: Optional[StrictStr] = None
    data: Any = None
    uri: Optional[StrictStr] = None


class RetryContext(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    attempt: int
    validation_errors: Optional[List[StrictStr]] = None


class InvocationPayload(_CamelModel):
    """Static shape every outbound call payload must match."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    prompt: Annotated[StrictStr, StringConstraints(min_length=1)]
    model: Optional[Annotated[StrictStr, StringConstraints(min_length=1)]] = None
    artifacts: List[Artifact]
    artifact_hashes: List[Annotated[StrictStr, StringConstraints(min_length=10)]]
    schema_version: Optional[StrictStr] = None
    metadata: Optional[Dict[str, Any]] = None
    output_schema: Optional[Dict[str, Any]] = None
    temperature: Optional[float] = None
    max_output_tokens: Optional[float] = None
    retry_context: Optional[RetryContext] = None


# ============================================================================
# Response envelope
# ============================================================================


class TaskOutput(BaseModel):
    model_config = ConfigDict(extra="allow")

    text: Optional[StrictStr] = None
    data: Any = None
    format: Optional[StrictStr] = None


class TaskResponse(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    run_id: Optional[StrictStr] = None
    model: Optional[StrictStr] = None
    prompt: Optional[StrictStr] = None
    status: Optional[StrictStr] = None
    output: TaskOutput
    usage: Optional[Dict[str, Any]] = None
    warnings: Optional[List[StrictStr]] = None
    metadata: Optional[Dict[str, Any]] = None
    diagnostics: Optional[Dict[str, Any]] = None


class ResponseEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    ok: StrictBool
    result: Optional[TaskResponse] = None
    error: Optional[Dict[str, Any]] = None


# ============================================================================
# Request
# ============================================================================


@dataclass
class InvocationRequest:
    """Semantic inputs of one call (configuration lives in InvokeSettings)."""

    prompt: str
    artifacts: List[Any] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None
    output_schema: Optional[Dict[str, Any]] = None
    temperature: Optional[float] = None
    max_output_tokens: Optional[float] = None


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _with_provenance(items: List[Dict[str, Any]], source: str) -> List[Dict[str, Any]]:
    return [{**item, "source": source, "cached": True} for item in items]


def _build_validator(schema: Dict[str, Any]):
    cls = validator_for(schema)
    try:
        cls.check_schema(schema)
    except SchemaError as e:
        raise ConfigurationError(f"Output schema is not a valid JSON schema: {e.message}") from e
    return cls(schema)


def collect_validation_errors(validator, instance: Any) -> List[str]:
    """Validation errors as "<json-pointer> <message>" strings, in path order."""
    errors = sorted(validator.iter_errors(instance), key=lambda e: [str(p) for p in e.absolute_path])
    messages = []
    for error in errors:
        pointer = "/" + "/".join(str(p) for p in error.absolute_path)
        messages.append(f"{pointer} {error.message}".strip())
    return messages


def normalize_result(
    envelope: ResponseEnvelope,
    cache_key: str,
    schema_version: str,
    artifact_hashes: List[str],
    transport: str,
    attempt: int,
) -> List[Dict[str, Any]]:
    """Canonical result item, whatever transport produced it."""
    result = envelope.result
    output = result.output if result is not None else TaskOutput()
    data = output.data
    item = {
        "kind": RESULT_KIND,
        "runId": result.run_id if result else None,
        "prompt": result.prompt if result else None,
        "model": result.model if result else None,
        "schemaVersion": schema_version,
        "status": (result.status if result else None) or "completed",
        "cacheKey": cache_key,
        "artifactHashes": list(artifact_hashes),
        "output": {
            "format": output.format or ("json" if data is not None else "text"),
            "text": output.text,
            "data": data,
        },
        "usage": result.usage if result else None,
        "metadata": result.metadata if result else None,
        "warnings": result.warnings if result else None,
        "diagnostics": result.diagnostics if result else None,
        "createdAt": _utcnow(),
        "source": SOURCE_REMOTE,
        "transport": transport,
        "cached": False,
        "attemptCount": attempt,
    }
    return [item]


def _parse_envelope(raw: Any) -> ResponseEnvelope:
    try:
        envelope = ResponseEnvelope.model_validate(raw)
    except ValidationError as e:
        logger.debug(f"Envelope validation failed: {e}")
        raise EnvelopeInvalidError(
            f"llm_task.invoke received invalid response envelope ({e.error_count()} error(s))"
        ) from e
    if not envelope.ok:
        message = (envelope.error or {}).get("message")
        raise RemoteError(f"llm_task.invoke remote error: {message or 'llm-task returned an error'}")
    return envelope


# ============================================================================
# Invocation loop
# ============================================================================


async def invoke_llm_task(
    request: InvocationRequest,
    settings: InvokeSettings,
    state_store: StateStore,
    cache: ResultCache,
    client: Optional[httpx.AsyncClient] = None,
    transport: Optional[BaseTransport] = None,
) -> List[Dict[str, Any]]:
    """
    Perform one idempotent, contract-checked llm-task call.

    Args:
        request: Prompt, artifacts and optional output schema
        settings: Endpoints, credentials and cache flags
        state_store: Run-state store
        cache: Content-addressed result cache
        client: Optional httpx client for the transport
        transport: Optional ready transport (overrides settings selection)

    Returns:
        List with one normalized result item

    Raises:
        ConfigurationError: No transport, no model in direct mode, bad state key
            or bad schema
        PayloadInvalidError: Payload does not match the static shape
        TransportFailureError: HTTP-level failure
        EnvelopeInvalidError: Response body has the wrong shape
        RemoteError: Response reports failure
        SchemaValidationFailedError: Output never satisfied the schema
    """
    transport_id = settings.transport
    if not request.prompt:
        raise ConfigurationError("llm_task.invoke requires --prompt or positional text")
    if not settings.model and transport_id == "direct":
        raise ConfigurationError("llm_task.invoke requires --model (or LLM_TASK_MODEL) in direct mode")
    if settings.state_key:
        try:
            state_key_filename(settings.state_key)
        except ValueError as e:
            raise ConfigurationError(f"llm_task.invoke state key {settings.state_key!r} is invalid: {e}") from e

    artifacts = [normalize_artifact(a) for a in request.artifacts]
    artifact_hashes = [hash_artifact(a) for a in artifacts]
    cache_key = compute_cache_key(
        prompt=request.prompt,
        model=settings.model,
        schema_version=settings.schema_version,
        artifact_hashes=artifact_hashes,
        output_schema=request.output_schema,
    )

    if settings.state_key and not settings.force_refresh:
        record = await state_store.read_run_state(settings.state_key, cache_key)
        if record is not None:
            logger.info(f"Reusing run-state '{settings.state_key}' ({len(record.items)} item(s))")
            return _with_provenance(record.items, SOURCE_RUN_STATE)

    if not settings.disable_cache and not settings.force_refresh:
        entry = await cache.get(cache_key)
        if entry is not None:
            logger.info(f"Cache hit for {cache_key[:12]}...")
            return _with_provenance(entry.items, SOURCE_CACHE)

    payload: Dict[str, Any] = {
        "prompt": request.prompt,
        "artifacts": artifacts,
        "artifactHashes": artifact_hashes,
        "schemaVersion": settings.schema_version,
    }
    if settings.model:
        payload["model"] = settings.model
    if request.metadata is not None:
        payload["metadata"] = request.metadata
    if request.output_schema is not None:
        payload["outputSchema"] = request.output_schema
    if request.max_output_tokens is not None:
        payload["maxOutputTokens"] = request.max_output_tokens
    if request.temperature is not None:
        payload["temperature"] = request.temperature

    try:
        InvocationPayload.model_validate(payload)
    except ValidationError as e:
        raise PayloadInvalidError(f"llm_task.invoke payload invalid: {e}") from e

    validator = _build_validator(request.output_schema) if request.output_schema is not None else None
    if validator is None:
        max_retries = 0
    elif settings.max_validation_retries is None:
        max_retries = DEFAULT_MAX_VALIDATION_RETRIES
    else:
        max_retries = settings.max_validation_retries
    total_attempts = max_retries + 1

    transport = transport or select_transport(settings, client=client)
    logger.info(f"Invoking llm-task via {transport_id} (cache key {cache_key[:12]}..., up to {total_attempts} attempt(s))")

    validation_errors: List[str] = []
    for attempt in range(1, total_attempts + 1):
        if attempt > 1:
            retry_context: Dict[str, Any] = {"attempt": attempt}
            if validation_errors:
                retry_context["validationErrors"] = validation_errors
            payload["retryContext"] = retry_context

        logger.debug(f"llm-task attempt {attempt}/{total_attempts}")
        envelope = _parse_envelope(await transport.invoke(payload))
        items = normalize_result(
            envelope, cache_key, settings.schema_version, artifact_hashes, transport_id, attempt
        )

        if validator is not None:
            structured = items[0]["output"]["data"]
            validation_errors = collect_validation_errors(validator, structured)
            if validation_errors:
                logger.warning(
                    f"Attempt {attempt}/{total_attempts} failed schema validation: {'; '.join(validation_errors)}"
                )
                continue

        if settings.state_key:
            await state_store.write_run_state(settings.state_key, cache_key, items)
        if not settings.disable_cache:
            await cache.put(cache_key, items)
        return items

    raise SchemaValidationFailedError(validation_errors, total_attempts)
