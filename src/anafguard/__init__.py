"""anafguard - credential, quota and retry governance for the ANAF e-Factura API."""

from anafguard.client import (
    DocumentStandardType,
    EFacturaClient,
    MessageFilter,
    StandardType,
    build_executor,
)
from anafguard.clock import Clock, ManualClock, SystemClock
from anafguard.config import EFacturaSettings
from anafguard.credentials import Credential, InMemoryCredentialStore, TokenLifecycleManager
from anafguard.errors import (
    ApiError,
    AuthenticationError,
    AuthFailureReason,
    EFacturaError,
    ErrorKind,
    NetworkError,
    ParseError,
    RateLimitExceededError,
)
from anafguard.operations import OperationClass, OperationDescriptor
from anafguard.quota import QuotaLedger
from anafguard.transport import RequestExecutor, RetryPolicy

__version__ = "0.1.0"

__all__ = [
    "ApiError",
    "AuthFailureReason",
    "AuthenticationError",
    "Clock",
    "Credential",
    "DocumentStandardType",
    "EFacturaClient",
    "EFacturaError",
    "EFacturaSettings",
    "ErrorKind",
    "InMemoryCredentialStore",
    "ManualClock",
    "MessageFilter",
    "NetworkError",
    "OperationClass",
    "OperationDescriptor",
    "ParseError",
    "QuotaLedger",
    "RateLimitExceededError",
    "RequestExecutor",
    "RetryPolicy",
    "StandardType",
    "SystemClock",
    "TokenLifecycleManager",
    "__version__",
]
