"""Transport selection for llm-task invocation."""

import logging
from typing import Dict, Optional, Type

import httpx

from ..config import InvokeSettings
from .base import BaseTransport, TransportConfig
from .direct import DirectTransport
from .router import RouterTransport

logger = logging.getLogger(__name__)

TRANSPORTS: Dict[str, Type[BaseTransport]] = {
    "direct": DirectTransport,
    "router": RouterTransport,
}


def select_transport(
    settings: InvokeSettings, client: Optional[httpx.AsyncClient] = None
) -> BaseTransport:
    """
    Create the transport the settings call for. Direct wins when both are set.

    Args:
        settings: Resolved invocation settings
        client: Optional client to use instead of the shared pool

    Returns:
        Transport instance

    Raises:
        ConfigurationError: If neither transport is configured
    """
    transport_id = settings.transport
    base_url = settings.direct_url if transport_id == "direct" else settings.router_url
    config = TransportConfig(transport_id=transport_id, base_url=base_url, token=settings.token or None)
    transport = TRANSPORTS[transport_id](config, client=client)
    logger.debug(f"Selected {transport!r}")
    return transport
