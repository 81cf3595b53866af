"""
ANAF e-Factura API client.

Every operation validates its arguments locally, describes itself as an
OperationDescriptor and a PreparedRequest, and runs through the
RequestExecutor, which supplies the credential, the quota admission and the
retries. Argument errors raise ValueError before any quota is consumed.

Usage:
    settings = EFacturaSettings.from_env()
    store = InMemoryCredentialStore({"12345678": credential})
    async with EFacturaClient.from_settings(settings, store, "12345678") as client:
        result = await client.upload_document(xml)
        status = await client.get_status(result.upload_id)
"""

from __future__ import annotations

import logging
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from anafguard.config import TRANSFORM_URL, VALIDATE_URL
from anafguard.credentials.manager import TokenLifecycleManager
from anafguard.credentials.oauth import AnafOAuthClient
from anafguard.errors import ApiError
from anafguard.operations import OperationDescriptor
from anafguard.quota.ledger import QuotaLedger
from anafguard.responses import (
    DownloadResult,
    MessageList,
    PaginatedMessageList,
    StatusResult,
    UploadResult,
    ValidationResult,
)
from anafguard.transport.classifier import extract_error_message
from anafguard.transport.executor import RequestExecutor, RetryPolicy
from anafguard.transport.http import AiohttpTransport
from anafguard.transport.types import PreparedRequest

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from anafguard.clock import Clock
    from anafguard.config import EFacturaSettings
    from anafguard.credentials.oauth import RefreshExchange
    from anafguard.credentials.store import CredentialStore
    from anafguard.metrics import GovernanceMetrics
    from anafguard.transport.http import Transport
    from anafguard.transport.types import RawResponse

logger = logging.getLogger(__name__)

MIN_DAYS_MESSAGES = 1
MAX_DAYS_MESSAGES = 60
_MAX_RANGE_MS = MAX_DAYS_MESSAGES * 24 * 60 * 60 * 1000

_XML_HEADERS = {"Content-Type": "text/plain", "Accept": "application/json"}


class StandardType(str, Enum):
    """Document standard accepted by upload."""

    UBL = "UBL"
    CN = "CN"  # credit note
    CII = "CII"
    RASP = "RASP"  # buyer response message


class DocumentStandardType(str, Enum):
    """Document standard for the validation and PDF services."""

    FACT1 = "FACT1"  # invoice
    FCN = "FCN"  # credit note


class MessageFilter(str, Enum):
    """filtru parameter of the list endpoints."""

    INVOICE_SENT = "T"
    INVOICE_RECEIVED = "P"
    INVOICE_ERRORS = "E"
    BUYER_MESSAGE = "R"


def _require_xml(xml: str) -> bytes:
    if not xml or not xml.strip():
        raise ValueError("XML content cannot be empty")
    return xml.encode("utf-8")


def _require_numeric_id(value: str, label: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{label} cannot be empty")
    if not value.isascii() or not value.isdigit():
        raise ValueError(f"{label} must be a numeric string")
    return value


def _require_days(days: int) -> None:
    if not MIN_DAYS_MESSAGES <= days <= MAX_DAYS_MESSAGES:
        raise ValueError(f"Days must be between {MIN_DAYS_MESSAGES} and {MAX_DAYS_MESSAGES}")


def _require_time_range(start_ms: int, end_ms: int) -> None:
    if start_ms <= 0:
        raise ValueError("Start time must be a positive timestamp in milliseconds")
    if end_ms <= 0:
        raise ValueError("End time must be a positive timestamp in milliseconds")
    if start_ms >= end_ms:
        raise ValueError("Start time must be before end time")
    if end_ms - start_ms > _MAX_RANGE_MS:
        raise ValueError(f"Time range cannot exceed {MAX_DAYS_MESSAGES} days")


def _require_page(page: int) -> None:
    if page < 1:
        raise ValueError("Page number must be at least 1")


def build_executor(
    settings: EFacturaSettings,
    store: CredentialStore,
    *,
    exchange: RefreshExchange | None = None,
    clock: Clock | None = None,
    metrics: GovernanceMetrics | None = None,
) -> RequestExecutor:
    """
    Wire the default collaborators from settings.

    Args:
        settings: Loaded settings.
        store: Credential store shared by every client of these accounts.
        exchange: Refresh exchange (defaults to AnafOAuthClient from settings.oauth).
        clock: Time source for credentials and quotas.
        metrics: Optional Prometheus counters.
    """
    if exchange is None:
        exchange = AnafOAuthClient(settings.oauth, settings.http, clock)
    tokens = TokenLifecycleManager(
        store,
        exchange,
        clock,
        expiry_buffer=timedelta(seconds=settings.credentials.expiry_buffer_s),
        metrics=metrics,
    )
    ledger = QuotaLedger.from_settings(settings.quotas, clock, metrics)
    policy = RetryPolicy(
        max_attempts=settings.http.retry_times,
        base_delay=timedelta(milliseconds=settings.http.retry_delay_ms),
    )
    return RequestExecutor(tokens, ledger, policy, metrics=metrics)


class EFacturaClient:
    """Governed client for one account (CUI)."""

    def __init__(
        self,
        executor: RequestExecutor,
        transport: Transport,
        account_key: str,
        *,
        base_url: str,
        validate_url: str = VALIDATE_URL,
        transform_url: str = TRANSFORM_URL,
        timeout: float | None = None,
    ) -> None:
        """
        Args:
            executor: Governs every call.
            transport: Sends prepared requests.
            account_key: CUI/CIF of the account; sent as cif on upload and list calls.
            base_url: e-Factura REST base (test or production).
            validate_url: XML validation service.
            transform_url: XML to PDF service.
            timeout: Optional upper bound in seconds for each whole call.
        """
        if not account_key:
            raise ValueError("account_key is required")
        self._executor = executor
        self._transport = transport
        self._account_key = account_key
        self._base_url = base_url.rstrip("/")
        self._validate_url = validate_url.rstrip("/")
        self._transform_url = transform_url.rstrip("/")
        self._timeout = timeout
        self._closeables: list[Any] = []

    @classmethod
    def from_settings(
        cls,
        settings: EFacturaSettings,
        store: CredentialStore,
        account_key: str,
        *,
        clock: Clock | None = None,
        metrics: GovernanceMetrics | None = None,
        timeout: float | None = None,
    ) -> EFacturaClient:
        """
        Client with the default aiohttp transport and ANAF OAuth exchange.

        Raises:
            AuthenticationError: If the OAuth settings are incomplete.
        """
        oauth = AnafOAuthClient(settings.oauth, settings.http, clock)
        transport = AiohttpTransport(settings.http)
        client = cls(
            build_executor(settings, store, exchange=oauth, clock=clock, metrics=metrics),
            transport,
            account_key,
            base_url=settings.api_base_url,
            timeout=timeout,
        )
        client._closeables.extend((transport, oauth))
        return client

    @property
    def account_key(self) -> str:
        return self._account_key

    async def close(self) -> None:
        """Close the HTTP sessions created by from_settings."""
        for resource in self._closeables:
            await resource.close()

    async def __aenter__(self) -> EFacturaClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def _run(
        self,
        operation: OperationDescriptor,
        request: PreparedRequest,
        parse: Callable[[RawResponse], Any],
    ) -> Any:
        logger.debug(
            "Dispatching ANAF call",
            extra={
                "operation": operation.operation_class.value,
                "method": request.method,
                "url": request.url,
            },
        )
        return await self._executor.execute(
            operation,
            lambda credential: self._transport.send(request.with_authorization(credential)),
            parse=parse,
            timeout=self._timeout,
        )

    async def upload_document(
        self,
        xml: str,
        *,
        standard: StandardType = StandardType.UBL,
        extern: bool = False,
        self_billed: bool = False,
        enforcement: bool = False,
        b2c: bool = False,
    ) -> UploadResult:
        """
        Upload an invoice, credit note or buyer message.

        Args:
            xml: Document body.
            standard: Document standard.
            extern: Buyer is outside Romania (extern=DA).
            self_billed: Self-billed invoice (autofactura=DA).
            enforcement: Issued under enforcement (executare=DA).
            b2c: Use the B2C endpoint (/uploadb2c).
        """
        body = _require_xml(xml)
        params = {"standard": standard.value, "cif": self._account_key}
        if extern:
            params["extern"] = "DA"
        if self_billed:
            params["autofactura"] = "DA"
        if enforcement:
            params["executare"] = "DA"
        route = "/uploadb2c" if b2c else "/upload"
        request = PreparedRequest("POST", f"{self._base_url}{route}", params, dict(_XML_HEADERS), body)
        result: UploadResult = await self._run(
            OperationDescriptor.upload(self._account_key), request, UploadResult.from_response
        )
        logger.info(
            "Document uploaded",
            extra={"standard": standard.value, "b2c": b2c, "successful": result.is_successful},
        )
        return result

    async def get_status(self, upload_id: str) -> StatusResult:
        """Processing state of an upload (stareMesaj)."""
        _require_numeric_id(upload_id, "Upload ID")
        request = PreparedRequest(
            "GET",
            f"{self._base_url}/stareMesaj",
            {"id_incarcare": upload_id},
            {"Accept": "application/json"},
        )
        return await self._run(
            OperationDescriptor.status(self._account_key, upload_id), request, StatusResult.from_response
        )

    async def list_messages(
        self,
        days: int = MAX_DAYS_MESSAGES,
        filter: MessageFilter | None = None,
    ) -> MessageList:
        """Messages of the last days days (listaMesajeFactura)."""
        _require_days(days)
        params = {"cif": self._account_key, "zile": str(days)}
        if filter is not None:
            params["filtru"] = filter.value
        request = PreparedRequest(
            "GET", f"{self._base_url}/listaMesajeFactura", params, {"Accept": "application/json"}
        )
        return await self._run(
            OperationDescriptor.list_messages(self._account_key), request, MessageList.from_response
        )

    async def list_messages_paginated(
        self,
        start_ms: int,
        end_ms: int,
        page: int = 1,
        filter: MessageFilter | None = None,
    ) -> PaginatedMessageList:
        """One page of messages in [start_ms, end_ms] (listaMesajePaginatieFactura)."""
        _require_time_range(start_ms, end_ms)
        _require_page(page)
        params = {
            "cif": self._account_key,
            "startTime": str(start_ms),
            "endTime": str(end_ms),
            "pagina": str(page),
        }
        if filter is not None:
            params["filtru"] = filter.value
        request = PreparedRequest(
            "GET", f"{self._base_url}/listaMesajePaginatieFactura", params, {"Accept": "application/json"}
        )
        return await self._run(
            OperationDescriptor.paginated_list(self._account_key), request, PaginatedMessageList.from_response
        )

    async def download(self, download_id: str) -> DownloadResult:
        """ZIP archive with the document and its signature (descarcare)."""
        _require_numeric_id(download_id, "Download ID")
        request = PreparedRequest(
            "GET",
            f"{self._base_url}/descarcare",
            {"id": download_id},
            {"Accept": "application/octet-stream, application/zip, application/json"},
        )
        return await self._run(
            OperationDescriptor.download(self._account_key, download_id),
            request,
            DownloadResult.from_response,
        )

    async def validate_xml(
        self,
        xml: str,
        standard: DocumentStandardType = DocumentStandardType.FACT1,
    ) -> ValidationResult:
        """Check a document against ANAF's schema and business rules."""
        body = _require_xml(xml)
        request = PreparedRequest(
            "POST", f"{self._validate_url}/{standard.value}", {}, dict(_XML_HEADERS), body
        )
        return await self._run(
            OperationDescriptor.other(self._account_key), request, ValidationResult.from_response
        )

    async def convert_to_pdf(
        self,
        xml: str,
        standard: DocumentStandardType = DocumentStandardType.FACT1,
        validate: bool = False,
    ) -> bytes:
        """
        Render a document as PDF.

        Args:
            xml: Document body.
            standard: Document standard.
            validate: Validate before rendering; otherwise the /DA route
                skips validation.

        Raises:
            ApiError: If the service answered with a JSON error instead of a PDF.
        """
        body = _require_xml(xml)
        endpoint = standard.value if validate else f"{standard.value}/DA"
        request = PreparedRequest(
            "POST",
            f"{self._transform_url}/{endpoint}",
            {},
            {"Content-Type": "text/plain", "Accept": "application/pdf, application/json"},
            body,
        )
        return await self._run(OperationDescriptor.other(self._account_key), request, _pdf_body)


def _pdf_body(raw: RawResponse) -> bytes:
    if "application/json" in raw.content_type:
        message = extract_error_message(raw)
        if message.startswith("HTTP "):
            message = "PDF conversion failed"
        raise ApiError(message, raw.status, raw.text()[:500])
    return raw.body
