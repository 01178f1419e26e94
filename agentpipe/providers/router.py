"""Router llm-task transport: wraps the payload as a tool call to /tools/invoke."""

import logging
from typing import Any, Dict

from ..errors import RemoteError
from .base import BaseTransport

logger = logging.getLogger(__name__)

ROUTER_TOOL = "llm-task"
ROUTER_ACTION = "invoke"


def _error_message(error: Any, default: str) -> str:
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str) and error:
        return error
    return default


class RouterTransport(BaseTransport):
    """Tool-router gateway exposing llm-task as a routed tool."""

    @property
    def endpoint(self) -> str:
        base = self.config.base_url.rstrip("/")
        return f"{base}/tools/invoke"

    async def invoke(self, payload: Dict[str, Any]) -> Any:
        body = {"tool": ROUTER_TOOL, "action": ROUTER_ACTION, "args": payload}
        logger.debug(f"POST {self.endpoint} (tool={ROUTER_TOOL})")
        parsed = await self.post_json(body)

        if not isinstance(parsed, dict) or "ok" not in parsed:
            # No router envelope: the body is the tool's raw result
            return {"ok": True, "result": parsed}
        if parsed["ok"] is not True:
            raise RemoteError(_error_message(parsed.get("error"), "Tool router reported failure"))

        # The router wraps the tool's own envelope: {ok, result: {ok, result}}
        inner = parsed.get("result")
        if isinstance(inner, dict) and "ok" in inner:
            return inner
        return {"ok": True, "result": inner}
