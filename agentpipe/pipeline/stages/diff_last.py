"""diff.last stage: compare the input with the value stored last time."""

import logging
from typing import Any, AsyncIterator, Dict

from ...cache.keys import canonical_json
from ...config import parse_flag
from ..base import StageResult, TransformStage
from ..context import ExecutionContext
from ..stream import collect, stream_of
from .args import require_key
from .state import single_or_list

logger = logging.getLogger(__name__)

KIND = "diff.last"


class DiffLastStage(TransformStage):
    """
    Report whether the input changed since the previous run, then store it.

    Values are compared in canonical form, so key order does not count as a
    change. With ``changes-only`` an unchanged value yields a suppressed
    marker instead of the full diff.
    """

    description = "Compare input against the last stored value for a key"

    @property
    def name(self) -> str:
        return KIND

    async def run(
        self, input: AsyncIterator[Any], args: Dict[str, Any], ctx: ExecutionContext
    ) -> StageResult:
        key = require_key(args, self.name)
        changes_only = parse_flag(args.get("changes-only"))

        value = single_or_list(await collect(input))
        store = ctx.state_store
        before = await store.read(key)
        changed = canonical_json(before) != canonical_json(value)
        await store.write(key, value)

        logger.debug(f"diff.last '{key}': changed={changed}")
        if changes_only and not changed:
            return StageResult(output=stream_of([{"kind": KIND, "key": key, "changed": False, "suppressed": True}]))

        return StageResult(
            output=stream_of([{"kind": KIND, "key": key, "changed": changed, "before": before, "after": value}])
        )
