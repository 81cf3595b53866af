"""
Token lifecycle manager.

Hands out a usable credential per account, refreshing it through a
RefreshExchange when it is about to expire.

Refreshes are single-flight per account: concurrent callers share one
in-flight task. ANAF rotates refresh tokens, so a second exchange with the
same refresh token would fail; the per-account lock and the store re-read
inside it prevent that even across waves of callers.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from anafguard.clock import Clock, SystemClock
from anafguard.errors import AuthenticationError, AuthFailureReason

if TYPE_CHECKING:
    from anafguard.credentials.models import Credential
    from anafguard.credentials.oauth import RefreshExchange
    from anafguard.credentials.store import CredentialStore
    from anafguard.metrics import GovernanceMetrics

logger = logging.getLogger(__name__)


class TokenLifecycleManager:
    """Per-account credential cache with single-flight refresh."""

    def __init__(
        self,
        store: CredentialStore,
        exchange: RefreshExchange,
        clock: Clock | None = None,
        expiry_buffer: timedelta = timedelta(seconds=30),
        metrics: GovernanceMetrics | None = None,
    ) -> None:
        """
        Args:
            store: Where credentials are read from and persisted to.
            exchange: Performs the refresh-token round trip.
            clock: Time source (defaults to SystemClock).
            expiry_buffer: Credentials expiring within this window are refreshed.
            metrics: Optional refresh counters.
        """
        self._store = store
        self._exchange = exchange
        self._clock = clock or SystemClock()
        self._expiry_buffer = expiry_buffer
        self._metrics = metrics
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._in_flight: dict[str, asyncio.Future[Credential]] = {}

    @property
    def expiry_buffer(self) -> timedelta:
        return self._expiry_buffer

    async def obtain(self, account_key: str, *, rejected: Credential | None = None) -> Credential:
        """
        Return a usable credential for the account.

        Args:
            account_key: Account identifier (CUI).
            rejected: Credential the remote side just refused. Forces a refresh
                unless the store already holds a different access token.

        Returns:
            The cached credential, or a freshly refreshed and persisted one.

        Raises:
            AuthenticationError: NO_CREDENTIAL if the account has never been
                authorized, REFRESH_FAILED if the exchange failed.
        """
        credential = await self._store.get(account_key)
        if credential is None:
            raise AuthenticationError(
                f"No credential stored for account {account_key}",
                reason=AuthFailureReason.NO_CREDENTIAL,
                context={"account_key": account_key},
            )

        if not self._needs_refresh(credential, rejected):
            return credential

        task = self._in_flight.get(account_key)
        if task is None:
            task = asyncio.ensure_future(self._refresh(account_key, rejected))
            self._in_flight[account_key] = task
            task.add_done_callback(lambda t, key=account_key: self._forget(key, t))

        # Shield so a cancelled waiter does not cancel the shared refresh
        refreshed = await asyncio.shield(task)
        if rejected is not None and refreshed.access_token == rejected.access_token:
            # Joined a refresh started without the rejection; run our own
            return await self._refresh(account_key, rejected)
        return refreshed

    def _needs_refresh(self, credential: Credential, rejected: Credential | None) -> bool:
        if rejected is not None and credential.access_token == rejected.access_token:
            return True
        return credential.expires_within(self._expiry_buffer, self._clock.now())

    def _forget(self, account_key: str, task: asyncio.Future[Credential]) -> None:
        if self._in_flight.get(account_key) is task:
            del self._in_flight[account_key]
        # Retrieve the exception so an unawaited failure is not reported as lost
        if not task.cancelled():
            task.exception()

    async def _refresh(self, account_key: str, rejected: Credential | None) -> Credential:
        lock = self._locks.setdefault(account_key, asyncio.Lock())
        self._lock_users[account_key] = self._lock_users.get(account_key, 0) + 1
        try:
            async with lock:
                return await self._refresh_locked(account_key, rejected)
        finally:
            self._release_lock(account_key)

    def _release_lock(self, account_key: str) -> None:
        # Drop the lock once no caller holds or waits on it
        self._lock_users[account_key] -= 1
        if not self._lock_users[account_key]:
            del self._lock_users[account_key]
            del self._locks[account_key]

    async def _refresh_locked(self, account_key: str, rejected: Credential | None) -> Credential:
        credential = await self._store.get(account_key)
        if credential is None:
            raise AuthenticationError(
                f"No credential stored for account {account_key}",
                reason=AuthFailureReason.NO_CREDENTIAL,
                context={"account_key": account_key},
            )
        if not self._needs_refresh(credential, rejected):
            return credential

        logger.info(
            "Refreshing access token",
            extra={
                "account_key": account_key,
                "expires_at": credential.expires_at.isoformat() if credential.expires_at else None,
                "forced": rejected is not None,
            },
        )
        try:
            refreshed = await self._exchange.refresh(credential.refresh_token)
        except Exception as e:
            if self._metrics is not None:
                self._metrics.record_refresh("failure")
            logger.warning(
                "Token refresh failed",
                extra={"account_key": account_key, "error": type(e).__name__},
            )
            raise AuthenticationError(
                f"Failed to refresh access token for account {account_key}",
                reason=AuthFailureReason.REFRESH_FAILED,
                context={"account_key": account_key},
            ) from e

        await self._store.put(account_key, refreshed)
        if self._metrics is not None:
            self._metrics.record_refresh("success")
        logger.info(
            "Access token refreshed",
            extra={
                "account_key": account_key,
                "expires_at": refreshed.expires_at.isoformat() if refreshed.expires_at else None,
            },
        )
        return refreshed
