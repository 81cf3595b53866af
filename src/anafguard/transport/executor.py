"""
Retrying request executor.

Composes the token lifecycle manager, the quota ledger and the error
classifier around a caller-supplied transport callable:

1. Obtain a credential for the operation's account.
2. Admit the operation against the quota ledger (fail fast on denial).
3. Attempt; on a retryable failure wait base_delay * attempt and try again.
   A rejected token triggers one re-authentication and a replay that neither
   consumes an attempt nor re-checks quota.

Quota is consumed once per call at admission. Admitted counters are never
rolled back, whatever happens afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any, TypeVar

from anafguard.errors import EFacturaError, ErrorKind, ParseError, RateLimitExceededError
from anafguard.quota.ledger import Denied
from anafguard.transport.classifier import (
    RETRYABLE_KINDS,
    classify_exception,
    classify_response,
    error_for_exception,
    error_for_response,
)

if TYPE_CHECKING:
    from anafguard.credentials.manager import TokenLifecycleManager
    from anafguard.credentials.models import Credential
    from anafguard.metrics import GovernanceMetrics
    from anafguard.operations import OperationDescriptor
    from anafguard.quota.ledger import QuotaLedger
    from anafguard.transport.types import RawResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")

PerformTransport = Callable[["Credential"], Awaitable["RawResponse"]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded linear backoff.

    Attributes:
        max_attempts: Total attempts per call, including the first.
        base_delay: Wait before attempt n+1 is base_delay * n.
        retryable_kinds: Error kinds that may be retried.
    """

    max_attempts: int = 3
    base_delay: timedelta = timedelta(milliseconds=100)
    retryable_kinds: frozenset[ErrorKind] = RETRYABLE_KINDS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < timedelta(0):
            raise ValueError("base_delay must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number attempt (1-based)."""
        return self.base_delay.total_seconds() * attempt


class RequestExecutor:
    """Runs one governed ANAF call."""

    def __init__(
        self,
        tokens: TokenLifecycleManager,
        ledger: QuotaLedger,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics: GovernanceMetrics | None = None,
    ) -> None:
        """
        Args:
            tokens: Credential source.
            ledger: Quota ledger consulted once per call.
            policy: Retry policy (defaults to RetryPolicy()).
            sleep: Backoff sleep; injectable for deterministic tests.
            metrics: Optional attempt and retry counters.
        """
        self._tokens = tokens
        self._ledger = ledger
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._metrics = metrics

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def execute(
        self,
        operation: OperationDescriptor,
        perform_transport: PerformTransport,
        *,
        parse: Callable[[RawResponse], T] | None = None,
        timeout: float | None = None,
    ) -> T | RawResponse:
        """
        Execute a governed call.

        Args:
            operation: What is being done and for which account/message.
            perform_transport: Sends the request with the given credential.
            parse: Optional decoder for the successful response.
            timeout: Upper bound in seconds for the whole call, including
                token refresh and backoff waits.

        Returns:
            parse(response) if parse is given, otherwise the response.

        Raises:
            AuthenticationError: No usable credential, or the token was
                rejected again after re-authentication.
            RateLimitExceededError: A local quota scope denied the call.
            NetworkError / ServerError: Retries exhausted.
            ClientError / ValidationError / RemoteRateLimitError: Terminal remote failure.
            ParseError: parse failed on a successful response.
            TimeoutError: timeout elapsed.
        """
        if timeout is None:
            return await self._execute(operation, perform_transport, parse)
        async with asyncio.timeout(timeout):
            return await self._execute(operation, perform_transport, parse)

    async def _execute(
        self,
        operation: OperationDescriptor,
        perform_transport: PerformTransport,
        parse: Callable[[RawResponse], T] | None,
    ) -> T | RawResponse:
        account_key = operation.account_key
        credential = await self._tokens.obtain(account_key)

        decision = self._ledger.admit(operation)
        if isinstance(decision, Denied):
            retry_after_seconds = RateLimitExceededError.seconds_from(decision.retry_after.total_seconds())
            raise RateLimitExceededError(
                f"Rate limit exceeded for {decision.scope}. Retry after {retry_after_seconds} seconds.",
                scope=decision.scope,
                retry_after_seconds=retry_after_seconds,
                context={"operation": operation.operation_class.value, "quota_key": decision.key},
            )

        context = {"operation": operation.operation_class.value, "account_key": account_key}
        attempt = 1
        reauthenticated = False

        while True:
            try:
                response = await perform_transport(credential)
            except Exception as e:
                kind = classify_exception(e)
                if kind is None:
                    raise
                error: EFacturaError = error_for_exception(e, context)
                cause: BaseException | None = e
            else:
                kind = classify_response(response)
                if kind is None:
                    self._record_attempt("ok")
                    return self._parse(response, parse, context)
                error = error_for_response(kind, response, context)
                cause = None

            self._record_attempt(kind.value)

            if kind == ErrorKind.AUTH_EXPIRED and not reauthenticated:
                reauthenticated = True
                logger.info("Access token rejected, re-authenticating", extra={**context, "attempt": attempt})
                credential = await self._tokens.obtain(account_key, rejected=credential)
                continue

            if kind in self._policy.retryable_kinds and attempt < self._policy.max_attempts:
                delay = self._policy.delay_for(attempt)
                logger.warning(
                    "Attempt failed, retrying",
                    extra={**context, "kind": kind.value, "attempt": attempt, "delay_s": delay},
                )
                if self._metrics is not None:
                    self._metrics.record_retry()
                await self._sleep(delay)
                attempt += 1
                continue

            logger.error(
                "Request failed",
                extra={**context, "kind": kind.value, "attempt": attempt},
            )
            raise error from cause

    @staticmethod
    def _parse(
        response: RawResponse,
        parse: Callable[[RawResponse], T] | None,
        context: dict[str, Any],
    ) -> T | RawResponse:
        if parse is None:
            return response
        try:
            return parse(response)
        except EFacturaError:
            raise
        except Exception as e:
            raise ParseError(
                f"Failed to parse response: {type(e).__name__}",
                raw_response=response.text()[:500],
                context=context,
            ) from e

    def _record_attempt(self, kind: str) -> None:
        if self._metrics is not None:
            self._metrics.record_attempt(kind)
