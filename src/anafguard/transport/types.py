"""
Transport-level request and response types.

RawResponse is what one attempt produced; the executor classifies it before
anything is decoded. PreparedRequest is an immutable description of an HTTP
call that still lacks its Authorization header.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

import orjson

if TYPE_CHECKING:
    from anafguard.credentials.models import Credential


class TransportError(Exception):
    """Raised by a transport when no HTTP response was obtained."""

    def __init__(self, message: str, cause: str | None = None) -> None:
        super().__init__(message)
        self.cause = cause


@dataclass(frozen=True)
class RawResponse:
    """Status, headers and undecoded body of one HTTP exchange."""

    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    @property
    def content_type(self) -> str:
        return (self.header("Content-Type") or "").split(";")[0].strip().lower()

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """
        Decode the body as JSON.

        Raises:
            orjson.JSONDecodeError: If the body is not valid JSON.
        """
        return orjson.loads(self.body)


@dataclass(frozen=True)
class PreparedRequest:
    """
    HTTP call description handed to a Transport.

    Attributes:
        method: HTTP verb.
        url: Absolute URL without query string.
        params: Query parameters.
        headers: Request headers (Authorization is added per attempt).
        data: Raw request body.
    """

    method: str
    url: str
    params: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    data: bytes | None = None

    def with_authorization(self, credential: Credential) -> PreparedRequest:
        headers = dict(self.headers)
        headers["Authorization"] = credential.authorization_header()
        return replace(self, headers=headers)

    def __repr__(self) -> str:
        # Headers may carry a bearer token
        return f"PreparedRequest(method={self.method!r}, url={self.url!r}, params={self.params!r})"
