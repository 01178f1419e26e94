"""Stream composition: chain stages so each one's output feeds the next.

Streams are async iterators. The composer never materializes intermediate
output itself; a stage that needs its whole input (an aggregation or a gate)
drains the stream on its own. Items keep production order end to end and
stages run strictly one after another.
"""

import logging
from collections import abc
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Iterable, List, Optional, Sequence, Tuple

from .base import Stage, StageKind, StageSpec
from .context import ExecutionContext

logger = logging.getLogger(__name__)


# ============================================================================
# Stream helpers
# ============================================================================


async def stream_of(items: Iterable[Any]) -> AsyncIterator[Any]:
    """Yield each item of a finite iterable."""
    for item in items:
        yield item


async def empty_stream() -> AsyncIterator[Any]:
    return
    yield  # pragma: no cover


def to_async_iterator(value: Any) -> AsyncIterator[Any]:
    """
    Coerce a value into an item stream.

    Args:
        value: None, an async iterable, a list/tuple/generator of items, or a
            single item (dicts and strings count as single items)

    Returns:
        AsyncIterator over the items
    """
    if value is None:
        return empty_stream()
    if isinstance(value, abc.AsyncIterator):
        return value
    if isinstance(value, abc.AsyncIterable):
        return value.__aiter__()
    if isinstance(value, (str, bytes, dict)):
        return stream_of([value])
    if isinstance(value, abc.Iterable):
        return stream_of(value)
    return stream_of([value])


async def collect(stream: AsyncIterable[Any]) -> List[Any]:
    """Materialize a stream into a list."""
    items = []
    async for item in stream:
        items.append(item)
    return items


async def drain(stream: AsyncIterable[Any]) -> int:
    """Consume and discard a stream, returning how many items it held."""
    count = 0
    async for _ in stream:
        count += 1
    return count


# ============================================================================
# Composer
# ============================================================================


@dataclass
class ComposeOutcome:
    """Final items of a composed run, or the output of the stage that halted."""

    items: List[Any]
    halted_at: Optional[int] = None  # absolute pipeline index of the halting stage
    halted_stage: Optional[str] = None

    @property
    def halted(self) -> bool:
        return self.halted_at is not None


async def compose(
    stages: Sequence[Tuple[Stage, StageSpec]],
    ctx: ExecutionContext,
    input: Any = None,
    start_index: int = 0,
) -> ComposeOutcome:
    """
    Drive resolved stages in order, feeding each output into the next input.

    Args:
        stages: (stage, spec) pairs already resolved against the registry
        ctx: Execution context passed to every stage
        input: Initial items (list, async iterator, or None)
        start_index: Absolute pipeline index of ``stages[0]``; halts are
            reported relative to the full pipeline

    Returns:
        ComposeOutcome. When a stage halts, later stages never run and the
        outcome carries that stage's own output.
    """
    stream = to_async_iterator(input)

    for offset, (stage, spec) in enumerate(stages):
        index = start_index + offset
        logger.debug(f"Running stage {index} '{spec.name}' ({stage.kind.value})")

        if stage.kind is StageKind.SOURCE:
            await drain(stream)
            stream = empty_stream()

        result = await stage.run(stream, dict(spec.args), ctx)
        stream = to_async_iterator(result.output)

        if result.halt:
            logger.info(f"Stage {index} '{spec.name}' halted the pipeline")
            return ComposeOutcome(
                items=await collect(stream),
                halted_at=index,
                halted_stage=spec.name,
            )

    return ComposeOutcome(items=await collect(stream))
