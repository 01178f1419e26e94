"""Built-in stages registered by create_default_registry()."""

from .approve import ApproveStage
from .diff_last import DiffLastStage
from .email_triage import EmailTriageStage
from .llm_task_invoke import LlmTaskInvokeStage
from .state import StateGetStage, StateSetStage

DEFAULT_STAGES = [
    ApproveStage,
    LlmTaskInvokeStage,
    EmailTriageStage,
    StateGetStage,
    StateSetStage,
    DiffLastStage,
]

__all__ = [
    "ApproveStage",
    "DiffLastStage",
    "EmailTriageStage",
    "LlmTaskInvokeStage",
    "StateGetStage",
    "StateSetStage",
    "DEFAULT_STAGES",
]
