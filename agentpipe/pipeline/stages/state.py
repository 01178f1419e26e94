"""Persistent state stages: read and write JSON values by key."""

import logging
from typing import Any, AsyncIterator, Dict

from ..base import SourceStage, StageResult, TransformStage
from ..context import ExecutionContext
from ..stream import collect, stream_of
from .args import require_key

logger = logging.getLogger(__name__)


def single_or_list(items):
    """One item stays an item; anything else is stored as the list."""
    return items[0] if len(items) == 1 else items


class StateGetStage(SourceStage):
    """Emit the value stored under a key (None when missing)."""

    description = "Read a JSON value from the state directory"

    @property
    def name(self) -> str:
        return "state.get"

    async def run(
        self, input: AsyncIterator[Any], args: Dict[str, Any], ctx: ExecutionContext
    ) -> StageResult:
        key = require_key(args, self.name)
        value = await ctx.state_store.read(key)
        logger.debug(f"state.get '{key}': {'hit' if value is not None else 'missing'}")
        return StageResult(output=stream_of([value]))


class StateSetStage(TransformStage):
    """Store the input under a key and pass the stored value through."""

    description = "Write the input as a JSON value to the state directory"

    @property
    def name(self) -> str:
        return "state.set"

    async def run(
        self, input: AsyncIterator[Any], args: Dict[str, Any], ctx: ExecutionContext
    ) -> StageResult:
        key = require_key(args, self.name)
        value = single_or_list(await collect(input))
        await ctx.state_store.write(key, value)
        return StageResult(output=stream_of([value]))
