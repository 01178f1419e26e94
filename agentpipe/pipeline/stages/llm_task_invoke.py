"""llm_task.invoke stage: argument adapter onto the validated invocation loop."""

import logging
from typing import Any, AsyncIterator, Dict, Optional

from ...config import InvokeSettings, parse_optional_number
from ...llm_task import InvocationRequest, invoke_llm_task
from ..base import ExternalCallStage, StageResult
from ..context import ExecutionContext
from ..stream import collect, stream_of
from .args import parse_json_array, parse_json_object, positional

logger = logging.getLogger(__name__)


def extract_prompt(args: Dict[str, Any]) -> str:
    if args.get("prompt"):
        return str(args["prompt"])
    return " ".join(positional(args))


def _as_token_count(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return int(value) if float(value).is_integer() else value


class LlmTaskInvokeStage(ExternalCallStage):
    """
    Call the llm-task service with caching and optional schema enforcement.

    Input items become artifacts ahead of any ``artifacts-json`` entries.

    Args (stage):
        prompt / _: Primary prompt
        url, token, model: Endpoint overrides (else environment)
        artifacts-json, metadata-json, output-schema: JSON strings or values
        schema-version, max-validation-retries, temperature, max-output-tokens
        state-key, refresh, disable-cache: Idempotency controls
    """

    description = "Call the llm-task tool with typed payloads, caching and schema validation"

    def __init__(self, client=None):
        # Optional httpx.AsyncClient, mostly for tests
        self._client = client

    @property
    def name(self) -> str:
        return "llm_task.invoke"

    async def run(
        self, input: AsyncIterator[Any], args: Dict[str, Any], ctx: ExecutionContext
    ) -> StageResult:
        settings = InvokeSettings.from_env(ctx.env, args)

        artifacts = await collect(input)
        artifacts.extend(parse_json_array(args.get("artifacts-json"), "llm_task.invoke --artifacts-json"))

        request = InvocationRequest(
            prompt=extract_prompt(args),
            artifacts=artifacts,
            metadata=parse_json_object(args.get("metadata-json"), "llm_task.invoke --metadata-json"),
            output_schema=parse_json_object(args.get("output-schema"), "llm_task.invoke --output-schema"),
            temperature=parse_optional_number(args.get("temperature")),
            max_output_tokens=_as_token_count(parse_optional_number(args.get("max-output-tokens"))),
        )

        items = await invoke_llm_task(
            request,
            settings,
            state_store=ctx.state_store,
            cache=ctx.result_cache,
            client=self._client,
        )
        return StageResult(output=stream_of(items))
