from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from .context import ExecutionContext


class StageKind(str, Enum):
    """Closed set of stage variants the composer dispatches on."""

    SOURCE = "source"  # ignores its input
    TRANSFORM = "transform"
    GATE = "gate"  # may halt pending approval
    EXTERNAL_CALL = "external_call"


@dataclass
class StageResult:
    """Output of one stage: a lazily produced item stream plus an optional halt flag."""

    output: AsyncIterator[Any]
    halt: bool = False


class Stage(ABC):
    """Base class for all pipeline stages. Stateless between invocations."""

    kind: StageKind = StageKind.TRANSFORM
    description: str = ""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def run(
        self, input: AsyncIterator[Any], args: Dict[str, Any], ctx: "ExecutionContext"
    ) -> StageResult:
        """
        Consume the input stream and return this stage's result.

        Failures are signalled by raising a PipelineError subclass; the engine
        does not catch them.
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, kind={self.kind.value})"


class SourceStage(Stage):
    kind = StageKind.SOURCE


class TransformStage(Stage):
    kind = StageKind.TRANSFORM


class GateStage(Stage):
    kind = StageKind.GATE


class ExternalCallStage(Stage):
    kind = StageKind.EXTERNAL_CALL


class StageSpec(BaseModel):
    """One (stage-name, arguments) pair of a pipeline."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    args: Dict[str, Any] = Field(default_factory=dict)


class Pipeline:
    """Ordered, immutable list of stage specs. with_stage() returns a new pipeline."""

    def __init__(self, stages: Optional[Iterable[Union[StageSpec, Dict[str, Any]]]] = None):
        self.stages: List[StageSpec] = [
            s if isinstance(s, StageSpec) else StageSpec.model_validate(s) for s in (stages or [])
        ]

    def with_stage(self, name: str, **args: Any) -> "Pipeline":
        """
        Return new pipeline with stage appended.

        Creates a new pipeline, leaves the original unchanged.
        """
        return Pipeline(self.stages + [StageSpec(name=name, args=args)])

    def slice_from(self, index: int) -> "Pipeline":
        return Pipeline(self.stages[index:])

    def to_list(self) -> List[Dict[str, Any]]:
        return [s.model_dump() for s in self.stages]

    def __len__(self) -> int:
        return len(self.stages)

    def __iter__(self):
        return iter(self.stages)

    def __getitem__(self, index: int) -> StageSpec:
        return self.stages[index]

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Pipeline) and self.stages == other.stages

    def __repr__(self) -> str:
        stage_names = [s.name for s in self.stages]
        return f"Pipeline(stages={stage_names})"
