"""
Error taxonomy for ANAF e-Factura calls.

Every error carries a human-readable message and a context dict safe for
logging. Token material is never placed in either.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Classification of a failed transport attempt."""

    NETWORK = "NETWORK"  # connection refused/reset, timeouts
    SERVER = "SERVER"  # remote status >= 500
    AUTH_EXPIRED = "AUTH_EXPIRED"  # 401 about the bearer token
    RATE_LIMITED = "RATE_LIMITED"  # remote 429
    CLIENT = "CLIENT"  # other 4xx
    VALIDATION = "VALIDATION"  # remote rejected the payload
    PARSE = "PARSE"  # body could not be decoded


class AuthFailureReason(str, Enum):
    """Why a credential could not be produced or was rejected."""

    NO_CREDENTIAL = "NO_CREDENTIAL"
    REFRESH_FAILED = "REFRESH_FAILED"
    TOKEN_REJECTED = "TOKEN_REJECTED"
    EXCHANGE_FAILED = "EXCHANGE_FAILED"


class EFacturaError(Exception):
    """Base class for every error raised by anafguard."""

    kind: ErrorKind | None = None

    def __init__(self, message: str = "", context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}


class AuthenticationError(EFacturaError):
    """Raised when no usable credential exists or the remote side rejected it."""

    def __init__(
        self,
        message: str = "Authentication failed. Check your credentials or token.",
        reason: AuthFailureReason = AuthFailureReason.TOKEN_REJECTED,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.reason = reason

    @property
    def kind(self) -> ErrorKind | None:  # type: ignore[override]
        if self.reason == AuthFailureReason.TOKEN_REJECTED:
            return ErrorKind.AUTH_EXPIRED
        return None


class RateLimitExceededError(EFacturaError):
    """
    Raised when a local quota scope denies an operation.

    Attributes:
        scope: Name of the first scope that denied the operation.
        retry_after_seconds: Whole seconds until that scope's window resets.
        remaining: Slots left in the scope (always 0 on denial).
    """

    def __init__(
        self,
        message: str,
        scope: str,
        retry_after_seconds: int,
        remaining: int = 0,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.scope = scope
        self.retry_after_seconds = retry_after_seconds
        self.remaining = remaining

    @staticmethod
    def seconds_from(retry_after: float) -> int:
        """Round a fractional wait up to whole seconds."""
        return max(0, math.ceil(retry_after))


class NetworkError(EFacturaError):
    """Raised when the remote side could not be reached."""

    kind = ErrorKind.NETWORK


class ParseError(EFacturaError):
    """Raised when a response body cannot be decoded."""

    kind = ErrorKind.PARSE

    def __init__(
        self,
        message: str,
        raw_response: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.raw_response = raw_response


class ApiError(EFacturaError):
    """
    Raised when ANAF answered with a non-success status.

    Attributes:
        status_code: HTTP status of the final attempt.
        details: Truncated response body for diagnostics.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        details: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.status_code = status_code
        self.details = details


class ServerError(ApiError):
    """Remote status >= 500."""

    kind = ErrorKind.SERVER


class ClientError(ApiError):
    """Remote 4xx that is not an authentication or validation failure."""

    kind = ErrorKind.CLIENT


class NotFoundError(ClientError):
    """Remote 404: the message, upload or document does not exist."""


class RemoteRateLimitError(ClientError):
    """Remote 429. Distinct from local quota denials; never retried."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: str,
        status_code: int = 429,
        details: str | None = None,
        retry_after_seconds: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, status_code, details, context)
        self.retry_after_seconds = retry_after_seconds


class ValidationError(ApiError):
    """Remote side signalled a malformed payload."""

    kind = ErrorKind.VALIDATION
