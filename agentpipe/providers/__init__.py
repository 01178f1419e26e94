"""Transports that carry llm-task calls to a remote service."""

from .base import BaseTransport, TransportConfig
from .direct import DirectTransport
from .registry import TRANSPORTS, select_transport
from .router import RouterTransport

__all__ = [
    "BaseTransport",
    "TransportConfig",
    "DirectTransport",
    "RouterTransport",
    "TRANSPORTS",
    "select_transport",
]
