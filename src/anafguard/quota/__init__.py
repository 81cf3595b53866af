"""Local quota accounting for ANAF usage limits."""

from anafguard.quota.ledger import Admitted, Denied, QuotaLedger, QuotaSnapshot
from anafguard.quota.scopes import (
    DOWNLOAD_PER_MESSAGE_DAY,
    GLOBAL,
    LIST_PER_ACCOUNT_DAY,
    PAGINATED_LIST_PER_ACCOUNT_DAY,
    SCOPE_ORDER,
    SCOPES_BY_CLASS,
    STATUS_PER_MESSAGE_DAY,
    UPLOAD_PER_ACCOUNT_DAY,
    QuotaScope,
    QuotaWindow,
    WindowKind,
    build_default_scopes,
)

__all__ = [
    "DOWNLOAD_PER_MESSAGE_DAY",
    "GLOBAL",
    "LIST_PER_ACCOUNT_DAY",
    "PAGINATED_LIST_PER_ACCOUNT_DAY",
    "SCOPES_BY_CLASS",
    "SCOPE_ORDER",
    "STATUS_PER_MESSAGE_DAY",
    "UPLOAD_PER_ACCOUNT_DAY",
    "Admitted",
    "Denied",
    "QuotaLedger",
    "QuotaScope",
    "QuotaSnapshot",
    "QuotaWindow",
    "WindowKind",
    "build_default_scopes",
]
