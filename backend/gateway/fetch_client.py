"""
Fetch Client - one HTTP call to one upstream URL

Every failure mode is mapped onto a typed UpstreamError so the failover layer
can treat timeouts, bad statuses and broken payloads the same way.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from .errors import (
    UpstreamConnectionError,
    UpstreamHTTPError,
    UpstreamPayloadError,
    UpstreamTimeout,
)

logger = logging.getLogger(__name__)


class FetchClient:
    """
    Thin wrapper around a pooled httpx.AsyncClient.

    No retries here: a failed call is reported once and the caller decides
    whether another candidate should be tried.
    """

    def __init__(
        self,
        user_agent: str = "SolanaDataGateway/1.0",
        default_timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._user_agent = user_agent
        self._default_timeout = default_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        self._stats = {
            "requests": 0,
            "failures": 0,
        }

    def _get_client(self) -> httpx.AsyncClient:
        """Lazily create the shared client so the gateway can be built outside a loop."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._default_timeout,
                limits=httpx.Limits(
                    max_keepalive_connections=20,
                    max_connections=50,
                    keepalive_expiry=30.0
                ),
                headers={
                    "User-Agent": self._user_agent,
                    "Accept": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict] = None,
        json: Any = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Perform one call and return the decoded JSON body.

        Raises:
            UpstreamTimeout: the call exceeded `timeout`
            UpstreamHTTPError: non-2xx status
            UpstreamConnectionError: DNS, connect or protocol failure
            UpstreamPayloadError: body is not JSON
        """
        self._stats["requests"] += 1
        timeout = self._default_timeout if timeout is None else timeout
        client = self._get_client()

        try:
            # httpx timeouts are per phase; wait_for bounds the whole call, body included
            response = await asyncio.wait_for(
                client.request(method, url, params=params, json=json, timeout=timeout),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            self._stats["failures"] += 1
            raise UpstreamTimeout(url, timeout)
        except httpx.HTTPError as e:
            self._stats["failures"] += 1
            raise UpstreamConnectionError(url, e)

        if not response.is_success:
            self._stats["failures"] += 1
            raise UpstreamHTTPError(url, response.status_code)

        try:
            return response.json()
        except ValueError as e:
            self._stats["failures"] += 1
            raise UpstreamPayloadError(url, f"not JSON: {e}")

    def get_stats(self) -> Dict:
        return dict(self._stats)
