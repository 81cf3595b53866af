"""
Configuration for the ANAF governance layer.

All settings are frozen pydantic models with documented defaults. Quota
defaults are 50% of ANAF's published limits:

- Global: 1000 calls/minute
- Upload (RASP): 1000/day/CUI
- Status queries: 100/day/message
- Simple list: 1500/day/CUI
- Paginated list: 100,000/day/CUI
- Downloads: 10/day/message

A quota limit <= 0 disables that scope.
"""

from __future__ import annotations

import os
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

API_BASE_URLS: dict[str, str] = {
    "test": "https://api.anaf.ro/test/FCTEL/rest",
    "production": "https://api.anaf.ro/prod/FCTEL/rest",
}
OAUTH_AUTHORIZE_URL = "https://logincert.anaf.ro/anaf-oauth2/v1/authorize"
OAUTH_TOKEN_URL = "https://logincert.anaf.ro/anaf-oauth2/v1/token"
VALIDATE_URL = "https://webservicesp.anaf.ro/prod/FCTEL/rest/validare"
TRANSFORM_URL = "https://webservicesp.anaf.ro/prod/FCTEL/rest/transformare"


class OAuthSettings(BaseModel):
    """OAuth application registered with ANAF."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    client_id: str = ""
    client_secret: str = Field(default="", repr=False)
    redirect_uri: str = ""
    authorize_url: str = OAUTH_AUTHORIZE_URL
    token_url: str = OAUTH_TOKEN_URL

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)


class HttpSettings(BaseModel):
    """Transport timeouts and retry policy."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    timeout_s: float = Field(default=30.0, gt=0, description="Total request timeout")
    connect_timeout_s: float = Field(default=10.0, gt=0, description="Connect timeout")
    retry_times: int = Field(default=3, ge=1, description="Max attempts per call")
    retry_delay_ms: int = Field(default=100, ge=0, description="Linear backoff base")


class CredentialSettings(BaseModel):
    """Token lifecycle settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    expiry_buffer_s: float = Field(
        default=30.0,
        ge=0,
        description="Refresh tokens expiring within this many seconds",
    )


class QuotaSettings(BaseModel):
    """Per-scope quota limits. Non-positive limits disable a scope."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    timezone: str = Field(default="UTC", description="Timezone of calendar-day resets")
    global_per_minute: int = 500
    upload_per_day_account: int = 500
    status_per_day_message: int = 50
    list_per_day_account: int = 750
    paginated_list_per_day_account: int = 50000
    download_per_day_message: int = 5

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class EFacturaSettings(BaseModel):
    """Top-level settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    sandbox: bool = True
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    credentials: CredentialSettings = Field(default_factory=CredentialSettings)
    quotas: QuotaSettings = Field(default_factory=QuotaSettings)

    @property
    def api_base_url(self) -> str:
        return API_BASE_URLS["test" if self.sandbox else "production"]

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> EFacturaSettings:
        """
        Load settings from EFACTURA_* environment variables.

        Unset variables keep their defaults.

        Args:
            environ: Mapping to read instead of os.environ (for tests).

        Raises:
            pydantic.ValidationError: If a value is out of range or malformed.
        """
        env = os.environ if environ is None else environ

        def pick(mapping: dict[str, str]) -> dict[str, Any]:
            return {field: env[var] for var, field in mapping.items() if env.get(var, "") != ""}

        data: dict[str, Any] = {
            "oauth": pick(
                {
                    "EFACTURA_CLIENT_ID": "client_id",
                    "EFACTURA_CLIENT_SECRET": "client_secret",
                    "EFACTURA_REDIRECT_URI": "redirect_uri",
                }
            ),
            "http": pick(
                {
                    "EFACTURA_TIMEOUT": "timeout_s",
                    "EFACTURA_CONNECT_TIMEOUT": "connect_timeout_s",
                    "EFACTURA_RETRY_TIMES": "retry_times",
                    "EFACTURA_RETRY_DELAY_MS": "retry_delay_ms",
                }
            ),
            "credentials": pick({"EFACTURA_TOKEN_EXPIRY_BUFFER": "expiry_buffer_s"}),
            "quotas": pick(
                {
                    "EFACTURA_RATE_LIMIT_ENABLED": "enabled",
                    "EFACTURA_RATE_LIMIT_TIMEZONE": "timezone",
                    "EFACTURA_RATE_LIMIT_GLOBAL": "global_per_minute",
                    "EFACTURA_RATE_LIMIT_RASP_UPLOAD": "upload_per_day_account",
                    "EFACTURA_RATE_LIMIT_STATUS": "status_per_day_message",
                    "EFACTURA_RATE_LIMIT_SIMPLE_LIST": "list_per_day_account",
                    "EFACTURA_RATE_LIMIT_PAGINATED_LIST": "paginated_list_per_day_account",
                    "EFACTURA_RATE_LIMIT_DOWNLOAD": "download_per_day_message",
                }
            ),
        }
        if env.get("EFACTURA_SANDBOX", "") != "":
            data["sandbox"] = env["EFACTURA_SANDBOX"]
        return cls.model_validate(data)
