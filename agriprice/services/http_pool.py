"""
Shared httpx client for the price provider.

Provider calls reuse one pooled AsyncClient. Per-request timeouts are passed by
the provider; the client defaults only bound a stalled connection.
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from .. import __version__

logger = logging.getLogger(__name__)

# data.gov.in throttles well below this
POOL_LIMITS = httpx.Limits(max_connections=20, max_keepalive_connections=10, keepalive_expiry=5.0)
POOL_TIMEOUT = httpx.Timeout(30.0, connect=10.0, pool=5.0)


class HTTPClientPool:
    """Lazily created, process-wide AsyncClient. Recreated after close()."""

    _client: Optional[httpx.AsyncClient] = None

    @classmethod
    def get_client(cls) -> httpx.AsyncClient:
        if cls._client is None or cls._client.is_closed:
            cls._client = httpx.AsyncClient(
                limits=POOL_LIMITS,
                timeout=POOL_TIMEOUT,
                http2=True,
                follow_redirects=True,
                headers={"User-Agent": f"agriprice/{__version__}", "Accept": "application/json"},
            )
            logger.info("Provider HTTP client created")
        return cls._client

    @classmethod
    async def close(cls) -> None:
        if cls._client is not None:
            await cls._client.aclose()
            cls._client = None
            logger.info("Provider HTTP client closed")


def get_http_client() -> httpx.AsyncClient:
    """The shared client; do not create AsyncClient instances per call."""
    return HTTPClientPool.get_client()


async def close_http_pool() -> None:
    await HTTPClientPool.close()
