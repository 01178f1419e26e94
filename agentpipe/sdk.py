"""Fluent workflow builder for embedding pipelines in Python code.

A workflow is a list of steps. A step is a built-in stage name, a Stage
instance, or a plain callable::

    workflow = (
        Workflow()
        .pipe(lambda items, ctx: [e for e in items if "UNREAD" in e["labels"]])
        .pipe("approve", prompt="Send replies?")
        .pipe(send_replies)
    )

    envelope = await workflow.run(emails)
    if envelope["status"] == "needs_approval":
        token = envelope["requiresApproval"]["resumeToken"]
        envelope = await workflow.resume(token, approved=True)

Runs use ``sdk`` mode, so ``approve`` always halts. Callables and stage
objects cannot be serialized, so tokens never embed the pipeline: resume
with the same workflow (or a clone of it).
"""

import inspect
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from .errors import PipelineError
from .pipeline.base import Pipeline, Stage, StageResult, TransformStage
from .pipeline.context import ExecutionContext, ExecutionMode
from .pipeline.engine import PipelineEngine, error_envelope
from .pipeline.registry import StageRegistry, create_default_registry
from .pipeline.stream import collect, to_async_iterator

logger = logging.getLogger(__name__)

Step = Union[str, Stage, Callable[..., Any]]


class FunctionStage(TransformStage):
    """
    Wrap a callable as a transform stage.

    Async generator functions receive the input stream and the context and
    yield items lazily. Any other callable receives the collected input list
    and the context. It may be sync or async and may return a list, another
    iterable, an async iterable, a single item, or None.
    """

    description = "Python callable"

    def __init__(self, name: str, func: Callable[..., Any]):
        self._name = name
        self.func = func

    @property
    def name(self) -> str:
        return self._name

    async def run(self, input, args, ctx) -> StageResult:
        if inspect.isasyncgenfunction(self.func):
            return StageResult(output=self.func(input, ctx))

        items = await collect(input)
        output = self.func(items, ctx)
        if inspect.isawaitable(output):
            output = await output
        return StageResult(output=to_async_iterator(output))


class _BoundStage(Stage):
    """A stage object registered under a workflow-private name."""

    def __init__(self, name: str, stage: Stage):
        self._name = name
        self.stage = stage
        self.kind = stage.kind
        self.description = stage.description

    @property
    def name(self) -> str:
        return self._name

    async def run(self, input, args, ctx) -> StageResult:
        return await self.stage.run(input, args, ctx)


class Workflow:
    """
    Builder over PipelineEngine for steps defined in code.

    ``pipe`` appends in place and returns the workflow for chaining; use
    ``clone`` to branch a variant. Built-in stages stay reachable through
    ``ctx.registry``, so e.g. ``email.triage`` can still delegate to
    ``llm_task.invoke``.
    """

    def __init__(
        self,
        env: Optional[Mapping[str, str]] = None,
        state_dir: Optional[Path] = None,
        cache_dir: Optional[Path] = None,
        cwd: Optional[Path] = None,
        registry: Optional[StageRegistry] = None,
    ):
        """
        Args:
            env: Environment bag for stages (defaults to a copy of os.environ)
            state_dir: State directory override
            cache_dir: Cache directory override
            cwd: Working directory (defaults to the current one)
            registry: Stages that string steps resolve against (defaults to
                the built-in stages)
        """
        self.env = dict(os.environ if env is None else env)
        self.state_dir = state_dir
        self.cache_dir = cache_dir
        self.cwd = cwd or Path.cwd()
        self.library = registry or create_default_registry()
        self._steps: List[Tuple[Stage, Dict[str, Any], bool]] = []

    def pipe(self, step: Step, **args: Any) -> "Workflow":
        """
        Append a step.

        Args:
            step: Registered stage name, Stage instance, or callable
            **args: Stage arguments (ignored for callables)

        Raises:
            UnknownStageError: If a stage name is not registered
            TypeError: If the step is none of the accepted kinds
        """
        if isinstance(step, str):
            self._steps.append((self.library.require(step), args, True))
        elif isinstance(step, Stage):
            self._steps.append((step, args, False))
        elif callable(step):
            label = getattr(step, "__name__", type(step).__name__)
            self._steps.append((FunctionStage(label, step), args, False))
        else:
            raise TypeError(f"A step must be a stage name, a Stage or a callable, got {step!r}")
        return self

    def clone(self) -> "Workflow":
        """Copy with the same options and steps."""
        copy = Workflow(
            env=self.env,
            state_dir=self.state_dir,
            cache_dir=self.cache_dir,
            cwd=self.cwd,
            registry=self.library,
        )
        copy._steps = list(self._steps)
        return copy

    def __len__(self) -> int:
        return len(self._steps)

    def _compile(self) -> Tuple[PipelineEngine, Pipeline]:
        registry = StageRegistry(self.library.require(name) for name in self.library.list())
        pipeline = Pipeline()
        for index, (stage, args, builtin) in enumerate(self._steps):
            name = stage.name
            if not builtin:
                name = f"{index}:{stage.name}"
                registry.register(_BoundStage(name, stage))
            pipeline = pipeline.with_stage(name, **args)
        return PipelineEngine(registry, embed_pipeline=False), pipeline

    def _context(self) -> ExecutionContext:
        return ExecutionContext(
            env=self.env,
            cwd=self.cwd,
            mode=ExecutionMode.SDK,
            state_dir=self.state_dir,
            cache_dir=self.cache_dir,
        )

    async def run(self, initial_items: Any = None) -> Dict[str, Any]:
        """
        Run the workflow from its first step.

        Returns:
            The tool-mode envelope: status ``ok`` or ``needs_approval``, or an
            error envelope when a PipelineError was raised
        """
        engine, pipeline = self._compile()
        try:
            result = await engine.run(pipeline, initial_items=initial_items, ctx=self._context())
        except PipelineError as e:
            logger.warning(f"Workflow failed: {e.kind}: {e.message}")
            return error_envelope(e)
        return result.to_envelope()

    async def resume(self, token: str, approved: bool) -> Dict[str, Any]:
        """
        Resume after an approval halt.

        Args:
            token: ``resumeToken`` from a ``needs_approval`` envelope
            approved: False cancels without running any step

        Returns:
            The envelope of the resumed run (``cancelled`` when not approved)
        """
        engine, pipeline = self._compile()
        try:
            result = await engine.resume(token, approved=approved, ctx=self._context(), pipeline=pipeline)
        except PipelineError as e:
            logger.warning(f"Workflow resume failed: {e.kind}: {e.message}")
            return error_envelope(e)
        return result.to_envelope()
