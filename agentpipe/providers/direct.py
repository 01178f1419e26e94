"""Direct llm-task transport: posts the raw payload to <base>/tool/invoke."""

import logging
from typing import Any, Dict

from .base import BaseTransport

logger = logging.getLogger(__name__)


class DirectTransport(BaseTransport):
    """Standalone llm-task service."""

    @property
    def endpoint(self) -> str:
        base = self.config.base_url.rstrip("/")
        return f"{base}/tool/invoke"

    async def invoke(self, payload: Dict[str, Any]) -> Any:
        logger.debug(f"POST {self.endpoint}")
        parsed = await self.post_json(payload)
        if parsed is None:
            return {"ok": True, "result": {}}
        return parsed
