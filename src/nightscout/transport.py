"""HTTP transport collaborator for the Nightscout client.

The transport executes one fully formed request and reports either the
response body or a typed failure.  It knows nothing about retries, filters
or authentication: those live in ``NightscoutAPI``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from src.nightscout.errors import BadStatusCodeError, NetworkError
from src.nightscout.query import QueryParams

logger = logging.getLogger("nightsync.nightscout.transport")


@dataclass(frozen=True)
class NightscoutRequest:
    """A request ready to be sent.

    Attributes:
        method:  HTTP verb.
        url:     Absolute URL without query string.
        params:  Ordered query parameters; keys may repeat.
        headers: Request headers (auth and content type included).
        body:    Encoded JSON body, if any.
        timeout: Whole-request timeout in seconds.
        allows_constrained_network: Whether the request may go over a
            data-saving / low-priority link.  Sync requests never do.
    """

    method: str
    url: str
    params: QueryParams = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None
    timeout: float = 60.0
    allows_constrained_network: bool = False


class NightscoutTransport:
    """Send ``NightscoutRequest`` objects over httpx."""

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        """Initialize the transport.

        Args:
            http_client: Optional pre-configured httpx client (for testing or
                connection sharing).  When omitted, each request opens and
                closes its own client.
        """
        self._http_client = http_client

    async def send(self, request: NightscoutRequest) -> bytes:
        """Execute the request and return the response body.

        Raises:
            BadStatusCodeError: On non-2xx responses.
            NetworkError:       On connectivity failures and timeouts.
        """
        if self._http_client:
            response = await self._send(self._http_client, request)
        else:
            async with httpx.AsyncClient() as client:
                response = await self._send(client, request)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise BadStatusCodeError(response.status_code, request.url) from exc
        return response.content

    @staticmethod
    async def _send(client: httpx.AsyncClient, request: NightscoutRequest) -> httpx.Response:
        logger.debug("%s %s params=%s", request.method, request.url, request.params)
        try:
            return await client.request(
                request.method,
                request.url,
                params=request.params or None,
                headers=request.headers,
                content=request.body,
                timeout=request.timeout,
            )
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Timed out after {request.timeout}s: {request.url}") from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"Network failure for {request.url}: {exc}") from exc
