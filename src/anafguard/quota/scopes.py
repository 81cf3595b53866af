"""
Quota scopes mirroring ANAF's published usage limits.

Each scope is an independent limit dimension: a window, a limit and a rule
deriving the counter key from an operation. Scopes are checked in a fixed
order, global first, so a denial always names the same scope for the same
state.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta, tzinfo
from enum import Enum
from typing import TYPE_CHECKING

from anafguard.operations import OperationClass, OperationDescriptor

if TYPE_CHECKING:
    from anafguard.config import QuotaSettings

GLOBAL = "global"
UPLOAD_PER_ACCOUNT_DAY = "upload_per_account_day"
STATUS_PER_MESSAGE_DAY = "status_per_message_day"
LIST_PER_ACCOUNT_DAY = "list_per_account_day"
PAGINATED_LIST_PER_ACCOUNT_DAY = "paginated_list_per_account_day"
DOWNLOAD_PER_MESSAGE_DAY = "download_per_message_day"

SCOPE_ORDER: tuple[str, ...] = (
    GLOBAL,
    UPLOAD_PER_ACCOUNT_DAY,
    STATUS_PER_MESSAGE_DAY,
    LIST_PER_ACCOUNT_DAY,
    PAGINATED_LIST_PER_ACCOUNT_DAY,
    DOWNLOAD_PER_MESSAGE_DAY,
)

SCOPES_BY_CLASS: dict[OperationClass, tuple[str, ...]] = {
    OperationClass.UPLOAD: (GLOBAL, UPLOAD_PER_ACCOUNT_DAY),
    OperationClass.STATUS: (GLOBAL, STATUS_PER_MESSAGE_DAY),
    OperationClass.LIST: (GLOBAL, LIST_PER_ACCOUNT_DAY),
    OperationClass.PAGINATED_LIST: (GLOBAL, PAGINATED_LIST_PER_ACCOUNT_DAY),
    OperationClass.DOWNLOAD: (GLOBAL, DOWNLOAD_PER_MESSAGE_DAY),
    OperationClass.OTHER: (GLOBAL,),
}


class WindowKind(str, Enum):
    """How a counter window is measured."""

    FIXED = "FIXED"  # fixed duration from the first admission
    CALENDAR_DAY = "CALENDAR_DAY"  # until the next local midnight


@dataclass(frozen=True)
class QuotaWindow:
    """Span over which a counter accumulates before resetting."""

    kind: WindowKind
    duration: timedelta | None = None
    tz: tzinfo = UTC

    def __post_init__(self) -> None:
        if self.kind == WindowKind.FIXED and (self.duration is None or self.duration <= timedelta(0)):
            raise ValueError("Fixed windows need a positive duration")

    @classmethod
    def fixed(cls, duration: timedelta) -> QuotaWindow:
        return cls(WindowKind.FIXED, duration=duration)

    @classmethod
    def calendar_day(cls, tz: tzinfo = UTC) -> QuotaWindow:
        return cls(WindowKind.CALENDAR_DAY, tz=tz)

    def end_of(self, start: datetime) -> datetime:
        """
        Instant at which a window opened at start expires.

        Calendar-day windows end at the first local midnight after start,
        resolved through the timezone so DST days are 23 or 25 hours long.
        """
        if self.kind == WindowKind.FIXED:
            assert self.duration is not None
            return start + self.duration
        local = start.astimezone(self.tz)
        next_day = local.date() + timedelta(days=1)
        return datetime.combine(next_day, time(0), tzinfo=self.tz)


def _global_key(operation: OperationDescriptor) -> str:
    return "global"


def _account_key(prefix: str) -> Callable[[OperationDescriptor], str]:
    def key_for(operation: OperationDescriptor) -> str:
        return f"{prefix}:{operation.account_key}"

    return key_for


def _message_key(prefix: str) -> Callable[[OperationDescriptor], str]:
    def key_for(operation: OperationDescriptor) -> str:
        if operation.message_key is None:
            raise ValueError(f"Operation {operation.operation_class.value} has no message key")
        return f"{prefix}:{operation.message_key}"

    return key_for


@dataclass(frozen=True)
class QuotaScope:
    """
    One limit dimension.

    Attributes:
        name: Stable scope name reported on denial.
        window: Window rule for this scope's counters.
        limit: Maximum admissions per window. Non-positive disables the scope.
        key_fn: Derives the counter key from an operation.
    """

    name: str
    window: QuotaWindow
    limit: int
    key_fn: Callable[[OperationDescriptor], str]

    @property
    def enabled(self) -> bool:
        return self.limit > 0

    def key_for(self, operation: OperationDescriptor) -> str:
        return self.key_fn(operation)


def build_default_scopes(settings: QuotaSettings) -> list[QuotaScope]:
    """Build the six ANAF scopes, in check order, from settings."""
    day = QuotaWindow.calendar_day(settings.tzinfo)
    return [
        QuotaScope(GLOBAL, QuotaWindow.fixed(timedelta(minutes=1)), settings.global_per_minute, _global_key),
        QuotaScope(UPLOAD_PER_ACCOUNT_DAY, day, settings.upload_per_day_account, _account_key("upload")),
        QuotaScope(STATUS_PER_MESSAGE_DAY, day, settings.status_per_day_message, _message_key("status")),
        QuotaScope(LIST_PER_ACCOUNT_DAY, day, settings.list_per_day_account, _account_key("list")),
        QuotaScope(
            PAGINATED_LIST_PER_ACCOUNT_DAY,
            day,
            settings.paginated_list_per_day_account,
            _account_key("list_paginated"),
        ),
        QuotaScope(
            DOWNLOAD_PER_MESSAGE_DAY,
            day,
            settings.download_per_day_message,
            _message_key("download"),
        ),
    ]
