"""Stage registry: maps stage names to stage implementations."""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import UnknownStageError
from .base import Pipeline, Stage, StageKind, StageSpec

logger = logging.getLogger(__name__)


class StageRegistry:
    """
    Registry for pipeline stages.

    Constructed explicitly at startup and handed to the engine and the
    execution context; there is no module-level registry.
    """

    def __init__(self, stages: Optional[Iterable[Stage]] = None):
        self._stages: Dict[str, Stage] = {}
        for stage in stages or []:
            self.register(stage)

    def register(self, stage: Stage) -> None:
        """
        Register a stage under its name.

        Args:
            stage: Stage instance

        Raises:
            ValueError: If the name is already taken or the kind is not one
                of the known stage variants
        """
        if not isinstance(stage, Stage):
            raise ValueError(f"Not a stage: {stage!r}")
        if not isinstance(stage.kind, StageKind):
            raise ValueError(f"Stage '{stage.name}' has unknown kind: {stage.kind!r}")
        if stage.name in self._stages:
            raise ValueError(f"Stage already registered: {stage.name}")
        self._stages[stage.name] = stage
        logger.debug(f"Registered stage: {stage.name} ({stage.kind.value})")

    def get(self, name: str) -> Optional[Stage]:
        return self._stages.get(name)

    def require(self, name: str) -> Stage:
        """Get a stage by name, raising UnknownStageError when absent."""
        stage = self._stages.get(name)
        if stage is None:
            raise UnknownStageError(name)
        return stage

    def resolve(self, pipeline: Pipeline) -> List[Tuple[Stage, StageSpec]]:
        """
        Resolve every stage of a pipeline before any of them runs.

        Returns:
            (stage, spec) pairs in pipeline order

        Raises:
            UnknownStageError: For the first unregistered name
        """
        return [(self.require(spec.name), spec) for spec in pipeline]

    def list(self) -> List[str]:
        return sorted(self._stages)

    def describe(self) -> List[Dict[str, str]]:
        return [
            {"name": name, "kind": self._stages[name].kind.value, "description": self._stages[name].description}
            for name in self.list()
        ]

    def __contains__(self, name: str) -> bool:
        return name in self._stages

    def __len__(self) -> int:
        return len(self._stages)


def create_default_registry() -> StageRegistry:
    """Registry holding the built-in stages."""
    from .stages import DEFAULT_STAGES

    return StageRegistry(stage_cls() for stage_cls in DEFAULT_STAGES)
