"""
OAuth credential model.

A credential with no expires_at never expires locally; only a remote
rejection can retire it.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Credential(BaseModel):
    """
    Access/refresh token pair for one account.

    Token strings are excluded from repr so a logged or printed credential
    never leaks them.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    access_token: str = Field(min_length=1, repr=False)
    refresh_token: str = Field(min_length=1, repr=False)
    expires_at: datetime | None = None
    token_type: str = "Bearer"

    @field_validator("expires_at")
    @classmethod
    def _aware(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            raise ValueError("expires_at must be timezone-aware")
        return v

    @classmethod
    def from_token_response(cls, payload: dict[str, Any], now: datetime) -> Credential:
        """
        Build from an OAuth token endpoint response.

        Args:
            payload: Decoded JSON with access_token, refresh_token and
                optionally expires_in (seconds) and token_type.
            now: Instant the response was received.
        """
        expires_at = None
        if payload.get("expires_in") is not None:
            expires_at = now + timedelta(seconds=int(payload["expires_in"]))
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload["refresh_token"],
            expires_at=expires_at,
            token_type=payload.get("token_type") or "Bearer",
        )

    def expires_within(self, buffer: timedelta, now: datetime) -> bool:
        """True if the token is expired or expires within buffer of now."""
        if self.expires_at is None:
            return False
        return self.expires_at - buffer <= now

    def authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token}"
