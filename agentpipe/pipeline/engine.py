"""Pipeline engine: the entry point callers use to run and resume pipelines.

Per invocation the engine goes ``Running -> Completed | Halted | Failed``.
Halted is terminal for that invocation only; ``resume`` starts a fresh run at
the stage after the gate. Failures are raised, never returned: callers get
either a complete result (possibly a halt) or an exception.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from ..errors import ConfigurationError, InvalidTokenError, PipelineError
from .base import Pipeline, StageSpec
from .context import ExecutionContext
from .registry import StageRegistry
from .stream import compose
from .token import PROTOCOL_VERSION, HaltDescriptor, decode_token, encode_token

logger = logging.getLogger(__name__)

APPROVAL_REQUEST_TYPE = "approval_request"


class RunStatus(str, Enum):
    OK = "ok"
    NEEDS_APPROVAL = "needs_approval"
    CANCELLED = "cancelled"


@dataclass
class RunResult:
    """Outcome of one engine invocation (tagged by ``status``)."""

    status: RunStatus
    items: List[Any] = field(default_factory=list)
    halt: Optional[HaltDescriptor] = None
    resume_token: Optional[str] = None

    @property
    def halted(self) -> bool:
        return self.status is RunStatus.NEEDS_APPROVAL

    @property
    def cancelled(self) -> bool:
        return self.status is RunStatus.CANCELLED

    @classmethod
    def completed(cls, items: List[Any]) -> "RunResult":
        return cls(status=RunStatus.OK, items=items)

    @classmethod
    def cancellation(cls) -> "RunResult":
        return cls(status=RunStatus.CANCELLED)

    def to_envelope(self) -> Dict[str, Any]:
        """Tool-mode JSON envelope."""
        requires_approval = None
        if self.halt is not None:
            requires_approval = {
                "prompt": self.halt.prompt,
                "items": self.halt.pending_items,
                "resumeToken": self.resume_token,
            }
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "ok": True,
            "status": self.status.value,
            "output": self.items,
            "requiresApproval": requires_approval,
        }


def error_envelope(error: PipelineError) -> Dict[str, Any]:
    """Tool-mode JSON envelope for a failed run or resume."""
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "ok": False,
        "status": "error",
        "error": error.to_dict(),
    }


PipelineLike = Union[Pipeline, Sequence[Union[StageSpec, Dict[str, Any]]]]


def _as_pipeline(pipeline: PipelineLike) -> Pipeline:
    return pipeline if isinstance(pipeline, Pipeline) else Pipeline(pipeline)


def build_halt(stage_index: int, items: List[Any]) -> HaltDescriptor:
    """
    Turn the output of a halting stage into a halt descriptor.

    A gate emits a single ``approval_request`` item carrying its prompt and the
    items awaiting approval. Any other halting output is kept verbatim as the
    pending items.
    """
    if len(items) == 1 and isinstance(items[0], dict) and items[0].get("type") == APPROVAL_REQUEST_TYPE:
        request = items[0]
        return HaltDescriptor.at(stage_index, list(request.get("items") or []), request.get("prompt"))
    return HaltDescriptor.at(stage_index, items)


class PipelineEngine:
    """Runs pipelines resolved against an explicit stage registry."""

    def __init__(self, registry: StageRegistry, embed_pipeline: bool = True):
        """
        Args:
            registry: Stage registry used to resolve stage names
            embed_pipeline: Include the full stage list in resume tokens so
                callers can resume from the token alone
        """
        self.registry = registry
        self.embed_pipeline = embed_pipeline

    def _bind(self, ctx: Optional[ExecutionContext]) -> ExecutionContext:
        ctx = ctx or ExecutionContext()
        if ctx.registry is not self.registry:
            ctx = ctx.with_registry(self.registry)
        return ctx

    async def run(
        self,
        pipeline: PipelineLike,
        initial_items: Any = None,
        ctx: Optional[ExecutionContext] = None,
    ) -> RunResult:
        """
        Run a pipeline from its first stage.

        Args:
            pipeline: Ordered stage specs
            initial_items: Input for the first stage
            ctx: Execution context (defaults to tool mode over os.environ)

        Returns:
            RunResult with status ``ok`` or ``needs_approval``

        Raises:
            UnknownStageError: Before any stage runs, if a name is unregistered
            PipelineError: Whatever a stage raises, unchanged
        """
        return await self._run_from(_as_pipeline(pipeline), 0, initial_items, self._bind(ctx))

    async def resume(
        self,
        token: str,
        approved: bool,
        ctx: Optional[ExecutionContext] = None,
        pipeline: Optional[PipelineLike] = None,
    ) -> RunResult:
        """
        Resume a halted pipeline from its continuation token.

        Args:
            token: Token from a previous ``needs_approval`` result
            approved: False cancels without running any stage
            ctx: Execution context
            pipeline: Full original pipeline; required when the token does
                not embed one, preferred over the embedded one when given

        Returns:
            RunResult (``cancelled`` when not approved)

        Raises:
            InvalidTokenError: If the token cannot be decoded or does not fit
                the pipeline
            ConfigurationError: If no pipeline is available to resume
        """
        decoded = decode_token(token)
        if not approved:
            logger.info(f"Resume at stage {decoded.resume_at_index} not approved, cancelling")
            return RunResult.cancellation()

        if pipeline is not None:
            full = _as_pipeline(pipeline)
        elif decoded.pipeline is not None:
            full = Pipeline(decoded.pipeline)
        else:
            raise ConfigurationError("Token does not embed a pipeline; pass the original pipeline to resume")

        if decoded.resume_at_index > len(full):
            raise InvalidTokenError(
                f"Invalid token: resume index {decoded.resume_at_index} exceeds pipeline length {len(full)}"
            )

        logger.info(f"Resuming at stage {decoded.resume_at_index} with {len(decoded.items)} pending item(s)")
        return await self._run_from(full, decoded.resume_at_index, decoded.items, self._bind(ctx))

    async def _run_from(
        self, full: Pipeline, start_index: int, items: Any, ctx: ExecutionContext
    ) -> RunResult:
        remaining = full.slice_from(start_index)
        resolved = self.registry.resolve(remaining)

        outcome = await compose(resolved, ctx, input=items, start_index=start_index)
        if outcome.halted_at is None:
            return RunResult.completed(outcome.items)

        halt = build_halt(outcome.halted_at, outcome.items)
        token = encode_token(halt, full.stages if self.embed_pipeline else None)
        return RunResult(status=RunStatus.NEEDS_APPROVAL, halt=halt, resume_token=token)
