"""Execution context shared by every stage of a pipeline run."""

import os
import sys
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping, Optional, TextIO

from ..cache.store import ResultCache, StateStore
from ..config import get_cache_dir, get_state_dir

if TYPE_CHECKING:
    from .registry import StageRegistry


class ExecutionMode(str, Enum):
    """How the pipeline is being driven."""

    HUMAN = "human"  # interactive terminal
    TOOL = "tool"  # headless, driven by an agent; JSON envelope output
    SDK = "sdk"  # embedded in Python code


@dataclass(frozen=True)
class ExecutionContext:
    """
    Read-mostly values passed by reference to every stage.

    The context is frozen: stages never mutate it for another stage's
    benefit. Cross-stage communication happens only through the item stream
    or the state store. ``with_env`` and ``with_registry`` return new
    contexts.
    """

    env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType(dict(os.environ)))
    cwd: Path = field(default_factory=Path.cwd)
    mode: ExecutionMode = ExecutionMode.TOOL
    registry: Optional["StageRegistry"] = None
    stdin: Optional[TextIO] = None
    state_dir: Optional[Path] = None
    cache_dir: Optional[Path] = None

    def __post_init__(self):
        if not isinstance(self.env, MappingProxyType):
            object.__setattr__(self, "env", MappingProxyType(dict(self.env)))
        if not isinstance(self.mode, ExecutionMode):
            object.__setattr__(self, "mode", ExecutionMode(self.mode))

    @property
    def is_interactive(self) -> bool:
        """True only for human mode attached to a TTY."""
        if self.mode is not ExecutionMode.HUMAN:
            return False
        stream = self.stdin if self.stdin is not None else sys.stdin
        isatty = getattr(stream, "isatty", None)
        return bool(isatty and isatty())

    @property
    def state_store(self) -> StateStore:
        return StateStore(self.state_dir or get_state_dir(self.env))

    @property
    def result_cache(self) -> ResultCache:
        return ResultCache(self.cache_dir or get_cache_dir(self.env, self.cwd))

    def get_env(self, name: str, default: Any = None) -> Any:
        return self.env.get(name, default)

    def with_env(self, **overrides: str) -> "ExecutionContext":
        """Return a new context with extra environment values."""
        merged = dict(self.env)
        merged.update(overrides)
        return replace(self, env=MappingProxyType(merged))

    def with_registry(self, registry: "StageRegistry") -> "ExecutionContext":
        return replace(self, registry=registry)
