"""HTTP transport, outcome classification and the retrying executor."""

from anafguard.transport.classifier import RETRYABLE_KINDS, classify, classify_exception, classify_response
from anafguard.transport.executor import RequestExecutor, RetryPolicy
from anafguard.transport.http import AiohttpTransport, Transport
from anafguard.transport.types import PreparedRequest, RawResponse, TransportError

__all__ = [
    "RETRYABLE_KINDS",
    "AiohttpTransport",
    "PreparedRequest",
    "RawResponse",
    "RequestExecutor",
    "RetryPolicy",
    "Transport",
    "TransportError",
    "classify",
    "classify_exception",
    "classify_response",
]
