"""
ANAF OAuth 2.0 token exchange.

Implements the RefreshExchange contract used by TokenLifecycleManager, plus
the authorization-code half of the flow for applications that onboard new
accounts:
- Authorization URL generation with optional base64-JSON state
- Code exchange and refresh via form POST to the token endpoint

Stateless: storing the returned credentials is the caller's job.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import urlencode

import aiohttp
import orjson

from anafguard.clock import Clock, SystemClock
from anafguard.config import HttpSettings
from anafguard.credentials.models import Credential
from anafguard.errors import AuthenticationError, AuthFailureReason

if TYPE_CHECKING:
    from anafguard.config import OAuthSettings

logger = logging.getLogger(__name__)


class RefreshExchange(Protocol):
    """Performs the refresh-token round trip."""

    async def refresh(self, refresh_token: str) -> Credential: ...


class AnafOAuthClient:
    """Async client for logincert.anaf.ro OAuth endpoints."""

    def __init__(
        self,
        oauth: OAuthSettings,
        http: HttpSettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        """
        Args:
            oauth: Client credentials and endpoint URLs.
            http: Timeouts (defaults to HttpSettings()).
            clock: Time source used to compute expires_at.

        Raises:
            AuthenticationError: If client_id, client_secret or redirect_uri is missing.
        """
        for name in ("client_id", "client_secret", "redirect_uri"):
            if not getattr(oauth, name):
                raise AuthenticationError(
                    f"Missing required OAuth configuration: {name}",
                    reason=AuthFailureReason.EXCHANGE_FAILED,
                )
        self._oauth = oauth
        self._http = http or HttpSettings()
        self._clock = clock or SystemClock()
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(
                total=self._http.timeout_s,
                connect=self._http.connect_timeout_s,
            )
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def authorization_url(self, state: dict[str, Any] | None = None, scope: str | None = None) -> str:
        """Build the URL that sends a user to ANAF's login page."""
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self._oauth.client_id,
            "redirect_uri": self._oauth.redirect_uri,
        }
        if scope is not None:
            params["scope"] = scope
        if state is not None:
            params["state"] = base64.b64encode(orjson.dumps(state)).decode("ascii")
        return f"{self._oauth.authorize_url}?{urlencode(params)}"

    @staticmethod
    def decode_state(encoded: str) -> dict[str, Any]:
        """
        Decode the state echoed back on the OAuth callback.

        Callers must still compare it against what they stored before the
        redirect (CSRF protection).

        Raises:
            AuthenticationError: If the state is empty or not base64 JSON object.
        """
        if not encoded:
            raise AuthenticationError(
                "State parameter is required for CSRF protection",
                reason=AuthFailureReason.EXCHANGE_FAILED,
            )
        try:
            decoded = orjson.loads(base64.b64decode(encoded, validate=True))
        except (binascii.Error, orjson.JSONDecodeError) as e:
            raise AuthenticationError(
                f"Invalid state parameter: {type(e).__name__}",
                reason=AuthFailureReason.EXCHANGE_FAILED,
            ) from e
        if not isinstance(decoded, dict):
            raise AuthenticationError(
                "Invalid state parameter: expected JSON object",
                reason=AuthFailureReason.EXCHANGE_FAILED,
            )
        return decoded

    async def exchange_code(self, code: str) -> Credential:
        """Exchange an authorization code for the first credential of an account."""
        if not code:
            raise AuthenticationError(
                "Authorization code is required",
                reason=AuthFailureReason.EXCHANGE_FAILED,
            )
        data = await self._post_token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._oauth.redirect_uri,
                "client_id": self._oauth.client_id,
                "client_secret": self._oauth.client_secret,
            },
            "Token exchange failed",
        )
        return Credential.from_token_response(data, self._clock.now())

    async def refresh(self, refresh_token: str) -> Credential:
        """Trade a refresh token for a new credential. ANAF rotates refresh tokens."""
        if not refresh_token:
            raise AuthenticationError(
                "Refresh token is required",
                reason=AuthFailureReason.EXCHANGE_FAILED,
            )
        data = await self._post_token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self._oauth.client_id,
                "client_secret": self._oauth.client_secret,
            },
            "Token refresh failed",
        )
        return Credential.from_token_response(data, self._clock.now())

    async def _post_token_request(self, form: dict[str, str], error_prefix: str) -> dict[str, Any]:
        """
        POST a form to the token endpoint and return the validated JSON payload.

        Raises:
            AuthenticationError: On transport failure, HTTP error, non-JSON body
                or a payload missing access_token/refresh_token.
        """
        grant_type = form["grant_type"]
        try:
            session = await self._get_session()
            async with session.post(
                self._oauth.token_url,
                data=form,
                headers={"Accept": "application/json"},
            ) as response:
                status = response.status
                body = await response.read()
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error(
                "ANAF OAuth token request failed",
                extra={"error": type(e).__name__, "grant_type": grant_type},
            )
            raise AuthenticationError(
                f"Failed to communicate with ANAF OAuth server: {type(e).__name__}",
                reason=AuthFailureReason.EXCHANGE_FAILED,
            ) from e

        try:
            data = orjson.loads(body) if body else None
        except orjson.JSONDecodeError:
            data = None

        if status >= 400:
            message = _extract_error_message(data, status)
            logger.error(error_prefix, extra={"status": status, "error": message})
            raise AuthenticationError(
                f"{error_prefix}: {message}",
                reason=AuthFailureReason.EXCHANGE_FAILED,
                context={"status": status},
            )

        if not isinstance(data, dict):
            logger.error(
                f"{error_prefix}: non-JSON response from OAuth server",
                extra={"status": status, "body_length": len(body)},
            )
            raise AuthenticationError(
                f"{error_prefix}: OAuth server returned non-JSON response",
                reason=AuthFailureReason.EXCHANGE_FAILED,
            )

        for required in ("access_token", "refresh_token"):
            if not data.get(required):
                logger.error(f"{error_prefix}: missing {required} in response")
                raise AuthenticationError(
                    f"{error_prefix}: response did not contain {required.replace('_', ' ')}",
                    reason=AuthFailureReason.EXCHANGE_FAILED,
                )

        return data


def _extract_error_message(data: Any, status: int) -> str:
    """Pick the OAuth or ANAF-specific error text from an error body."""
    if not isinstance(data, dict):
        return f"HTTP {status} error"
    if "error" in data:
        message = str(data["error"])
        if "error_description" in data:
            message += f": {data['error_description']}"
        return message
    for key in ("eroare", "mesaj"):
        if key in data:
            return str(data[key])
    return f"HTTP {status} error"
