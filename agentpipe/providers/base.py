"""Base abstract class for llm-task transports."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .. import http_pool
from ..cache.serializer import deserialize_json
from ..errors import TransportFailureError

logger = logging.getLogger(__name__)

# Response bodies are truncated to this many characters in error messages
ERROR_BODY_PREVIEW = 400


@dataclass
class TransportConfig:
    """Configuration for a transport."""

    transport_id: str
    base_url: str
    token: Optional[str] = None
    timeout: float = 120.0


class BaseTransport(ABC):
    """
    Abstract base class for the interchangeable llm-task transports.

    Subclasses build the endpoint and the request body, and turn the parsed
    response into a ``{ok, result, error}`` envelope. The HTTP exchange itself
    is shared.
    """

    def __init__(self, config: TransportConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

    @property
    @abstractmethod
    def endpoint(self) -> str:
        """Absolute URL requests are posted to."""
        pass

    @abstractmethod
    async def invoke(self, payload: Dict[str, Any]) -> Any:
        """
        Send one call payload.

        Args:
            payload: Validated call payload

        Returns:
            Response envelope (a dict for well-behaved servers; shape is
            validated by the caller)

        Raises:
            TransportFailureError: Non-2xx status, network error, non-JSON body
            RemoteError: When the transport itself reports a failure
        """
        pass

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    async def post_json(self, body: Dict[str, Any]) -> Any:
        """
        POST a JSON body and parse the JSON response.

        Returns:
            Parsed JSON, or None for an empty body
        """
        client = self._client or http_pool.get_shared_client()
        try:
            if client is not None:
                response = await client.post(self.endpoint, headers=self.headers(), json=body)
            else:
                async with httpx.AsyncClient(timeout=self.config.timeout) as owned:
                    response = await owned.post(self.endpoint, headers=self.headers(), json=body)
        except httpx.HTTPError as e:
            raise TransportFailureError(f"{self.config.transport_id} request failed: {e}") from e

        text = response.text
        if not response.is_success:
            raise TransportFailureError(
                f"{response.status_code} {response.reason_phrase}: {text[:ERROR_BODY_PREVIEW]}",
                status_code=response.status_code,
            )

        if not text.strip():
            return None
        try:
            return deserialize_json(text)
        except ValueError as e:
            raise TransportFailureError("Response was not JSON", status_code=response.status_code) from e

    def __repr__(self) -> str:
        return f"{type(self).__name__}(endpoint={self.endpoint!r})"
