"""
aiohttp transport for ANAF REST calls.

One shared ClientSession per transport; callers own its lifetime and call
close() on shutdown.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import aiohttp

from anafguard.config import HttpSettings
from anafguard.transport.types import PreparedRequest, RawResponse, TransportError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from anafguard.credentials.models import Credential

logger = logging.getLogger(__name__)

USER_AGENT = "anafguard/0.1"


class Transport(Protocol):
    """Sends a prepared request and returns the raw response."""

    async def send(self, request: PreparedRequest) -> RawResponse: ...


class AiohttpTransport:
    """Transport backed by aiohttp.ClientSession."""

    def __init__(self, settings: HttpSettings | None = None) -> None:
        self._settings = settings or HttpSettings()
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(
                total=self._settings.timeout_s,
                connect=self._settings.connect_timeout_s,
            )
            self._session = aiohttp.ClientSession(timeout=timeout, headers={"User-Agent": USER_AGENT})
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def send(self, request: PreparedRequest) -> RawResponse:
        """
        Perform one HTTP exchange.

        Any HTTP status is returned as a RawResponse; classification is the
        executor's job.

        Raises:
            TransportError: When no response was obtained (connection
                failures, timeouts, redirect loops, malformed URLs).
        """
        session = await self._get_session()
        try:
            async with session.request(
                request.method,
                request.url,
                params=request.params or None,
                headers=request.headers,
                data=request.data,
            ) as response:
                body = await response.read()
                return RawResponse(
                    status=response.status,
                    body=body,
                    headers=dict(response.headers),
                )
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.warning(
                "Transport failure",
                extra={"method": request.method, "url": request.url, "error": type(e).__name__},
            )
            raise TransportError(f"{request.method} request failed: {type(e).__name__}", cause=str(e)) from e

    def bind(self, request: PreparedRequest) -> Callable[[Credential], Awaitable[RawResponse]]:
        """Return a perform_transport callable that sends request with the given credential."""

        async def perform(credential: Credential) -> RawResponse:
            return await self.send(request.with_authorization(credential))

        return perform
