"""Approval gate."""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict

import click

from ...config import parse_flag
from ...errors import ApprovalDeniedError
from ..base import GateStage, StageResult
from ..context import ExecutionContext
from ..stream import collect, stream_of

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = "Approve?"


class ApproveStage(GateStage):
    """
    Require confirmation before later stages run.

    Headless runs (tool or sdk mode, no TTY, or ``emit``) halt with a single
    ``approval_request`` item. Interactive human runs ask on the terminal and
    pass the items through when confirmed.
    """

    description = "Require confirmation to continue (halts in tool mode)"

    @property
    def name(self) -> str:
        return "approve"

    async def run(
        self, input: AsyncIterator[Any], args: Dict[str, Any], ctx: ExecutionContext
    ) -> StageResult:
        prompt = str(args.get("prompt") or DEFAULT_PROMPT)
        items = await collect(input)

        if parse_flag(args.get("emit")) or not ctx.is_interactive:
            logger.info(f"Requesting approval for {len(items)} item(s): {prompt}")
            request = {
                "type": "approval_request",
                "prompt": prompt,
                "items": items,
                "itemCount": len(items),
            }
            return StageResult(output=stream_of([request]), halt=True)

        approved = await asyncio.to_thread(click.confirm, prompt, default=False, err=True)
        if not approved:
            raise ApprovalDeniedError("Not approved")
        return StageResult(output=stream_of(items))
