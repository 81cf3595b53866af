"""
Multi-scope quota ledger.

Counts admissions per (scope, key) and admits an operation only if every
applicable scope has room. The check and the increments happen in one
critical section: the per-counter locks are taken in scope order and held
until all counters are updated, so no interleaving can push a counter past
its limit. The section contains no await; threading locks make a single
ledger safe to share across event loops and threads.

State is in memory only and is lost on restart.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from anafguard.clock import Clock, SystemClock
from anafguard.quota.scopes import SCOPES_BY_CLASS, QuotaScope, build_default_scopes

if TYPE_CHECKING:
    from anafguard.config import QuotaSettings
    from anafguard.metrics import GovernanceMetrics
    from anafguard.operations import OperationDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Admitted:
    """Operation admitted; every listed scope was incremented."""

    scopes: tuple[str, ...] = ()


@dataclass(frozen=True)
class Denied:
    """
    Operation denied; no counter changed.

    Attributes:
        scope: First scope (in check order) that had no room.
        key: Counter key within that scope.
        retry_after: Time until that scope's window resets.
    """

    scope: str
    key: str
    retry_after: timedelta


@dataclass(frozen=True)
class QuotaSnapshot:
    """Point-in-time view of one counter."""

    limit: int
    remaining: int
    resets_in: timedelta | None


@dataclass
class _Counter:
    """Admissions within the current window. Mutated only under lock."""

    count: int = 0
    window_start: datetime | None = None
    window_end: datetime | None = None
    retired: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def expired(self, now: datetime) -> bool:
        return self.window_end is None or now >= self.window_end


class QuotaLedger:
    """Admit/deny decisions over a fixed, ordered set of quota scopes."""

    def __init__(
        self,
        scopes: Sequence[QuotaScope],
        clock: Clock | None = None,
        *,
        enabled: bool = True,
        metrics: GovernanceMetrics | None = None,
    ) -> None:
        """
        Args:
            scopes: Scopes in check order. Names must be unique.
            clock: Time source (defaults to SystemClock).
            enabled: When False every operation is admitted without counting.
            metrics: Optional admission counters.
        """
        names = [scope.name for scope in scopes]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate scope names: {names}")
        self._scopes: dict[str, QuotaScope] = {scope.name: scope for scope in scopes}
        self._order = {name: i for i, name in enumerate(names)}
        self._clock = clock or SystemClock()
        self._enabled = enabled
        self._metrics = metrics
        self._counters: dict[tuple[str, str], _Counter] = {}
        self._registry_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: QuotaSettings,
        clock: Clock | None = None,
        metrics: GovernanceMetrics | None = None,
    ) -> QuotaLedger:
        return cls(build_default_scopes(settings), clock, enabled=settings.enabled, metrics=metrics)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def scope(self, name: str) -> QuotaScope:
        try:
            return self._scopes[name]
        except KeyError:
            raise ValueError(f"Unknown quota scope: {name}") from None

    def applicable_scopes(self, operation: OperationDescriptor) -> list[QuotaScope]:
        """Enabled scopes governing the operation, in check order."""
        if not self._enabled:
            return []
        names = [n for n in SCOPES_BY_CLASS[operation.operation_class] if n in self._scopes]
        names.sort(key=self._order.__getitem__)
        return [self._scopes[n] for n in names if self._scopes[n].enabled]

    def _counter(self, scope_name: str, key: str) -> _Counter:
        with self._registry_lock:
            counter = self._counters.get((scope_name, key))
            if counter is None:
                counter = _Counter()
                self._counters[(scope_name, key)] = counter
            return counter

    def admit(self, operation: OperationDescriptor) -> Admitted | Denied:
        """
        Admit the operation against every applicable scope, or deny it.

        On denial the first failing scope is reported with the time until its
        window resets, and no counter is touched.
        """
        scopes = self.applicable_scopes(operation)
        if not scopes:
            return Admitted()
        keys = [scope.key_for(operation) for scope in scopes]

        while True:
            entries = [
                (scope, key, self._counter(scope.name, key))
                for scope, key in zip(scopes, keys, strict=True)
            ]
            with ExitStack() as stack:
                for _, _, counter in entries:
                    stack.enter_context(counter.lock)
                if any(counter.retired for _, _, counter in entries):
                    # Pruned between lookup and lock; look up again
                    continue
                return self._check_and_increment(entries, self._clock.now())

    def _check_and_increment(
        self,
        entries: list[tuple[QuotaScope, str, _Counter]],
        now: datetime,
    ) -> Admitted | Denied:
        """Runs with every entry's lock held."""
        for scope, key, counter in entries:
            count = 0 if counter.expired(now) else counter.count
            if count + 1 > scope.limit:
                assert counter.window_end is not None
                retry_after = max(counter.window_end - now, timedelta(0))
                if self._metrics is not None:
                    self._metrics.record_admission(scope.name, "denied")
                logger.warning(
                    "Quota exceeded",
                    extra={
                        "scope": scope.name,
                        "quota_key": key,
                        "limit": scope.limit,
                        "retry_after_s": retry_after.total_seconds(),
                    },
                )
                return Denied(scope=scope.name, key=key, retry_after=retry_after)

        for scope, _, counter in entries:
            if counter.expired(now):
                counter.count = 0
                counter.window_start = now
                counter.window_end = scope.window.end_of(now)
            counter.count += 1
            if self._metrics is not None:
                self._metrics.record_admission(scope.name, "admitted")
        return Admitted(scopes=tuple(scope.name for scope, _, _ in entries))

    def remaining(self, scope_name: str, key: str) -> QuotaSnapshot:
        """Slots left for one counter without consuming any."""
        scope = self.scope(scope_name)
        with self._registry_lock:
            counter = self._counters.get((scope_name, key))
        if counter is None:
            return QuotaSnapshot(limit=scope.limit, remaining=max(scope.limit, 0), resets_in=None)
        with counter.lock:
            now = self._clock.now()
            if counter.expired(now):
                return QuotaSnapshot(limit=scope.limit, remaining=max(scope.limit, 0), resets_in=None)
            assert counter.window_end is not None
            return QuotaSnapshot(
                limit=scope.limit,
                remaining=max(scope.limit - counter.count, 0),
                resets_in=counter.window_end - now,
            )

    def clear(self, scope_name: str, key: str | None = None) -> int:
        """
        Drop counters of a scope (one key, or all keys when key is None).

        Returns:
            Number of counters removed.
        """
        self.scope(scope_name)
        with self._registry_lock:
            doomed = [k for k in self._counters if k[0] == scope_name and (key is None or k[1] == key)]
            for k in doomed:
                self._counters.pop(k).retired = True
        return len(doomed)

    def prune(self) -> int:
        """
        Drop counters whose window has expired.

        Returns:
            Number of counters removed.
        """
        now = self._clock.now()
        removed = 0
        with self._registry_lock:
            for k, counter in list(self._counters.items()):
                # Skip counters held by an in-progress admission
                if not counter.lock.acquire(blocking=False):
                    continue
                try:
                    if counter.expired(now):
                        counter.retired = True
                        del self._counters[k]
                        removed += 1
                finally:
                    counter.lock.release()
        if removed:
            logger.debug("Pruned expired quota counters", extra={"removed": removed})
        return removed

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._counters)
