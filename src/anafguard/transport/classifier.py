"""
Maps transport outcomes to error kinds and typed errors.

An outcome is either the RawResponse of an attempt or the exception the
transport raised. Classification is total over HTTP statuses; exceptions
that are not recognizable transport failures are left unclassified and
propagate unchanged.
"""

from __future__ import annotations

import contextlib
from typing import Any

import aiohttp
import orjson

from anafguard.errors import (
    AuthenticationError,
    AuthFailureReason,
    ClientError,
    EFacturaError,
    ErrorKind,
    NetworkError,
    NotFoundError,
    RemoteRateLimitError,
    ServerError,
    ValidationError,
)
from anafguard.transport.types import RawResponse, TransportError

RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset({ErrorKind.NETWORK, ErrorKind.SERVER})

_NETWORK_EXCEPTIONS: tuple[type[BaseException], ...] = (
    TransportError,
    aiohttp.ClientConnectionError,
    TimeoutError,
    ConnectionError,
)

_TOKEN_MARKERS = ("token", "expir")
_VALIDATION_MARKERS = ("eroare", "errors", "errormessage", "invalid")
_MESSAGE_KEYS = ("message", "eroare", "error")
_DETAILS_LIMIT = 500


def classify_exception(exc: BaseException) -> ErrorKind | None:
    """NETWORK for transport failures, None for anything else."""
    if isinstance(exc, _NETWORK_EXCEPTIONS):
        return ErrorKind.NETWORK
    return None


def classify_response(response: RawResponse) -> ErrorKind | None:
    """Error kind of an HTTP response, or None for success."""
    status = response.status
    if status < 400:
        return None
    if status >= 500:
        return ErrorKind.SERVER
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status == 401 and _is_token_rejection(response):
        return ErrorKind.AUTH_EXPIRED
    if status in (400, 422) and _has_validation_markers(response):
        return ErrorKind.VALIDATION
    return ErrorKind.CLIENT


def classify(outcome: RawResponse | BaseException) -> ErrorKind | None:
    """
    Classify an attempt outcome.

    Returns:
        The ErrorKind, or None if the outcome is a successful response or an
        exception this layer does not recognize.
    """
    if isinstance(outcome, BaseException):
        return classify_exception(outcome)
    return classify_response(outcome)


def _is_token_rejection(response: RawResponse) -> bool:
    challenge = (response.header("WWW-Authenticate") or "").lower()
    if "invalid_token" in challenge:
        return True
    text = response.text().strip().lower()
    if not text:
        return True
    return any(marker in text for marker in _TOKEN_MARKERS)


def _has_validation_markers(response: RawResponse) -> bool:
    text = response.text().lower()
    return any(marker in text for marker in _VALIDATION_MARKERS)


def extract_error_message(response: RawResponse) -> str:
    """Human-readable error text from an ANAF error body."""
    data: Any = None
    with contextlib.suppress(orjson.JSONDecodeError):
        data = response.json() if response.body else None
    if isinstance(data, dict):
        for key in _MESSAGE_KEYS:
            value = data.get(key)
            if value:
                return str(value)
    return f"HTTP {response.status} error"


def parse_retry_after(value: str | None) -> int | None:
    """Retry-After in whole seconds (delta-seconds form only)."""
    if value is None:
        return None
    try:
        seconds = int(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def error_for_response(
    kind: ErrorKind,
    response: RawResponse,
    context: dict[str, Any] | None = None,
) -> EFacturaError:
    """Build the typed error surfaced for a classified failure response."""
    message = extract_error_message(response)
    details = response.text()[:_DETAILS_LIMIT] or None
    status = response.status
    ctx = {**(context or {}), "status": status}

    if kind == ErrorKind.SERVER:
        return ServerError(f"ANAF server error: {message}", status, details, ctx)
    if kind == ErrorKind.AUTH_EXPIRED:
        return AuthenticationError(
            f"Access token rejected: {message}",
            reason=AuthFailureReason.TOKEN_REJECTED,
            context=ctx,
        )
    if status == 401:
        # 401 without a token marker: terminal, no replay
        return AuthenticationError(
            f"Authentication failed: {message}",
            reason=AuthFailureReason.TOKEN_REJECTED,
            context=ctx,
        )
    if kind == ErrorKind.RATE_LIMITED:
        return RemoteRateLimitError(
            f"ANAF rate limit exceeded: {message}",
            status,
            details,
            retry_after_seconds=parse_retry_after(response.header("Retry-After")),
            context=ctx,
        )
    if kind == ErrorKind.VALIDATION:
        return ValidationError(f"ANAF rejected the request: {message}", status, details, ctx)
    if status == 404:
        return NotFoundError(f"Resource not found: {message}", status, details, ctx)
    return ClientError(f"ANAF client error: {message}", status, details, ctx)


def error_for_exception(exc: BaseException, context: dict[str, Any] | None = None) -> EFacturaError:
    """NetworkError wrapping a transport failure."""
    return NetworkError(f"Network failure: {type(exc).__name__}", context=dict(context or {}))
