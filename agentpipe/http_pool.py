"""HTTP client pool management using httpx with connection pooling.

This module provides a shared httpx.AsyncClient for llm-task transports.
Reusing one client across the stages of a run avoids a TCP handshake and TLS
negotiation per external call.

Architecture:
    - One process-wide client, created explicitly and closed explicitly
    - Transports fall back to a short-lived client when no pool is initialized
    - Configurable timeouts and pool limits

Usage:
    # At CLI / application startup
    await init_http_client()

    # In transport code
    client = get_shared_client()  # None when no pool is initialized

    # At shutdown
    await close_http_client()

Environment Variables:
    Connection pool settings:
        HTTP_MAX_CONNECTIONS: Max connections (default: 100)
        HTTP_MAX_KEEPALIVE_CONNECTIONS: Max keepalive connections (default: 20)
        HTTP_KEEPALIVE_EXPIRY: Keepalive expiry in seconds (default: 5.0)

    Timeout settings:
        HTTP_CONNECT_TIMEOUT: Connection timeout in seconds (default: 10.0)
        HTTP_READ_TIMEOUT: Read timeout in seconds (default: 120.0)
        HTTP_WRITE_TIMEOUT: Write timeout in seconds (default: 30.0)
        HTTP_POOL_TIMEOUT: Pool acquire timeout in seconds (default: 10.0)

    Protocol settings:
        HTTP2_ENABLED: Enable HTTP/2 support (default: false, needs the h2 extra)
"""

import logging
import os
from typing import Any, Dict, Mapping, Optional

import httpx
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


class HttpClientConfig:
    """Configuration for httpx.AsyncClient connection pooling.

    Loads settings from environment variables with sensible defaults.
    """

    def __init__(self, env: Optional[Mapping[str, str]] = None):
        """Initialize HTTP client configuration from environment variables."""
        env = os.environ if env is None else env

        # Connection pool settings
        self.max_connections = int(env.get("HTTP_MAX_CONNECTIONS", "100"))
        self.max_keepalive_connections = int(env.get("HTTP_MAX_KEEPALIVE_CONNECTIONS", "20"))
        self.keepalive_expiry = float(env.get("HTTP_KEEPALIVE_EXPIRY", "5.0"))

        # Timeout settings (all in seconds); model calls are slow to answer
        self.connect_timeout = float(env.get("HTTP_CONNECT_TIMEOUT", "10.0"))
        self.read_timeout = float(env.get("HTTP_READ_TIMEOUT", "120.0"))
        self.write_timeout = float(env.get("HTTP_WRITE_TIMEOUT", "30.0"))
        self.pool_timeout = float(env.get("HTTP_POOL_TIMEOUT", "10.0"))

        # Protocol settings
        self.http2_enabled = env.get("HTTP2_ENABLED", "false").lower() == "true"

    def get_limits(self) -> dict:
        """
        Get httpx Limits configuration.

        Returns:
            dict: Configuration dict for httpx.Limits()
        """
        return {
            "max_connections": self.max_connections,
            "max_keepalive_connections": self.max_keepalive_connections,
            "keepalive_expiry": self.keepalive_expiry,
        }

    def get_timeout(self) -> dict:
        """
        Get httpx Timeout configuration.

        Returns:
            dict: Configuration dict for httpx.Timeout()
        """
        return {
            "connect": self.connect_timeout,
            "read": self.read_timeout,
            "write": self.write_timeout,
            "pool": self.pool_timeout,
        }

    def __repr__(self) -> str:
        return (
            f"HttpClientConfig("
            f"max_connections={self.max_connections}, "
            f"max_keepalive={self.max_keepalive_connections}, "
            f"connect_timeout={self.connect_timeout}s, "
            f"read_timeout={self.read_timeout}s, "
            f"http2={self.http2_enabled})"
        )


# Global HTTP client singleton
_client: Optional[httpx.AsyncClient] = None
_config: Optional[HttpClientConfig] = None


async def init_http_client(config: Optional[HttpClientConfig] = None) -> httpx.AsyncClient:
    """
    Initialize the global HTTP client.

    Args:
        config: Pool configuration (defaults to one read from the environment)

    Returns:
        httpx.AsyncClient: The shared client

    Notes:
        - Safe to call multiple times (returns the existing client)
    """
    global _client, _config

    if _client is not None and not _client.is_closed:
        logger.debug("HTTP client already initialized, returning existing client")
        return _client

    _config = config or HttpClientConfig()
    logger.info(f"Initializing HTTP client with config: {_config}")

    try:
        _client = httpx.AsyncClient(
            limits=httpx.Limits(**_config.get_limits()),
            timeout=httpx.Timeout(**_config.get_timeout()),
            http2=_config.http2_enabled,
            follow_redirects=True,
        )
    except ImportError:
        # http2=True without the h2 package installed
        logger.error("HTTP/2 requested but h2 is not installed", exc_info=True)
        _client = None
        _config = None
        raise

    return _client


def get_http_client() -> httpx.AsyncClient:
    """
    Get the global HTTP client.

    Raises:
        RuntimeError: If the client has not been initialized
    """
    if _client is None:
        raise RuntimeError("HTTP client not initialized. Call init_http_client() first.")
    return _client


def get_shared_client() -> Optional[httpx.AsyncClient]:
    """The global HTTP client when it is initialized and open, else None."""
    if _client is None or _client.is_closed:
        return None
    return _client


async def close_http_client() -> None:
    """
    Close the global HTTP client and release its connections.

    Safe to call multiple times.
    """
    global _client, _config

    if _client is None:
        logger.debug("HTTP client not initialized, nothing to close")
        return

    try:
        await _client.aclose()
        logger.info("HTTP client closed")
    finally:
        _client = None
        _config = None


def get_config() -> Optional[HttpClientConfig]:
    """The current HTTP client configuration, or None before initialization."""
    return _config


def check_http_client_health() -> Dict[str, Any]:
    """
    Report the status of the shared HTTP client.

    Returns:
        dict: ``status`` is "healthy" or "unavailable"
    """
    if _client is None or _client.is_closed:
        return {"status": "unavailable", "error": "HTTP client not initialized"}
    return {
        "status": "healthy",
        "http2": _config.http2_enabled if _config else None,
        "max_connections": _config.max_connections if _config else None,
    }
