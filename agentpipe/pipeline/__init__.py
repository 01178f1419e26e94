"""Pipeline abstraction for resumable, approval-gated agent workflows.

This package provides the core pipeline machinery: stages compose over async
item streams, a gate stage can halt the run pending approval, and a
continuation token lets a later call resume exactly where the run stopped.

Key Components:
    - Stage: Abstract base class for pipeline stages
    - Pipeline: Ordered list of stage specs
    - ExecutionContext: Read-mostly values shared by all stages
    - StageRegistry: Explicit name -> stage mapping
    - PipelineEngine: run() / resume() entry points

Example:
    from agentpipe.pipeline import Pipeline, PipelineEngine, create_default_registry

    engine = PipelineEngine(create_default_registry())
    pipeline = Pipeline().with_stage("email.triage").with_stage("approve", prompt="Send?")

    result = await engine.run(pipeline, initial_items=emails)
    if result.halted:
        result = await engine.resume(result.resume_token, approved=True)
"""

from .base import (
    ExternalCallStage,
    GateStage,
    Pipeline,
    SourceStage,
    Stage,
    StageKind,
    StageResult,
    StageSpec,
    TransformStage,
)
from .context import ExecutionContext, ExecutionMode
from .engine import PipelineEngine, RunResult, RunStatus, error_envelope
from .loader import load_pipeline, parse_pipeline
from .registry import StageRegistry, create_default_registry
from .token import PROTOCOL_VERSION, ContinuationToken, HaltDescriptor, decode_token, encode_token

__all__ = [
    # Base classes
    "Stage",
    "StageKind",
    "StageResult",
    "StageSpec",
    "SourceStage",
    "TransformStage",
    "GateStage",
    "ExternalCallStage",
    "Pipeline",
    # Context
    "ExecutionContext",
    "ExecutionMode",
    # Registry
    "StageRegistry",
    "create_default_registry",
    # Engine
    "PipelineEngine",
    "RunResult",
    "RunStatus",
    "error_envelope",
    # Tokens
    "PROTOCOL_VERSION",
    "ContinuationToken",
    "HaltDescriptor",
    "encode_token",
    "decode_token",
    # Loading
    "load_pipeline",
    "parse_pipeline",
]
