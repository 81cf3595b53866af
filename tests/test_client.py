"""
Tests for EFacturaClient.

Covers:
- Request routes, params and headers per operation
- Argument validation before any quota is consumed
- Response parsing through the executor
- Resource ownership for clients built from settings
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import orjson
import pytest

from anafguard.client import (
    DocumentStandardType,
    EFacturaClient,
    MessageFilter,
    StandardType,
    build_executor,
)
from anafguard.clock import ManualClock
from anafguard.config import EFacturaSettings, OAuthSettings, QuotaSettings
from anafguard.credentials import AnafOAuthClient, Credential, InMemoryCredentialStore, TokenLifecycleManager
from anafguard.errors import ApiError, AuthenticationError, RateLimitExceededError
from anafguard.quota import GLOBAL, QuotaLedger
from anafguard.transport import AiohttpTransport, PreparedRequest, RawResponse, RequestExecutor

ACCOUNT = "12345678"
BASE_URL = "https://api.anaf.ro/test/FCTEL/rest"
XML = "<Invoice/>"


class RecordingTransport:
    """Transport that records requests and answers from a queue."""

    def __init__(self, *responses: RawResponse) -> None:
        self.responses = list(responses) or [RawResponse(200, b"{}")]
        self.requests: list[PreparedRequest] = []

    async def send(self, request: PreparedRequest) -> RawResponse:
        self.requests.append(request)
        return self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]

    @property
    def last(self) -> PreparedRequest:
        return self.requests[-1]


def _json(payload: object, status: int = 200) -> RawResponse:
    return RawResponse(status, orjson.dumps(payload), {"Content-Type": "application/json"})


def _client(
    transport: RecordingTransport,
    quotas: QuotaSettings | None = None,
) -> tuple[EFacturaClient, QuotaLedger]:
    clock = ManualClock()
    store = InMemoryCredentialStore({ACCOUNT: Credential(access_token="access-0", refresh_token="refresh-0")})
    ledger = QuotaLedger.from_settings(quotas or QuotaSettings(), clock)
    executor = RequestExecutor(TokenLifecycleManager(store, AsyncMock(), clock), ledger, sleep=AsyncMock())
    return EFacturaClient(executor, transport, ACCOUNT, base_url=BASE_URL), ledger


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_request(self) -> None:
        transport = RecordingTransport(
            RawResponse(200, b'<header ExecutionStatus="0" index_incarcare="5001"/>')
        )
        client, _ = _client(transport)

        result = await client.upload_document(XML)

        assert result.is_successful
        assert result.upload_id == "5001"
        request = transport.last
        assert request.method == "POST"
        assert request.url == f"{BASE_URL}/upload"
        assert request.params == {"standard": "UBL", "cif": ACCOUNT}
        assert request.data == XML.encode()
        assert request.headers["Authorization"] == "Bearer access-0"
        assert request.headers["Content-Type"] == "text/plain"

    @pytest.mark.asyncio
    async def test_upload_flags_and_b2c(self) -> None:
        transport = RecordingTransport(RawResponse(200, b'<header ExecutionStatus="0" index_incarcare="1"/>'))
        client, _ = _client(transport)

        await client.upload_document(
            XML, standard=StandardType.CN, extern=True, self_billed=True, enforcement=True, b2c=True
        )

        assert transport.last.url == f"{BASE_URL}/uploadb2c"
        assert transport.last.params == {
            "standard": "CN",
            "cif": ACCOUNT,
            "extern": "DA",
            "autofactura": "DA",
            "executare": "DA",
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize("xml", ["", "   \n"])
    async def test_empty_xml_rejected_before_quota(self, xml: str) -> None:
        transport = RecordingTransport()
        client, ledger = _client(transport)

        with pytest.raises(ValueError, match="XML content cannot be empty"):
            await client.upload_document(xml)

        assert transport.requests == []
        assert ledger.remaining(GLOBAL, "global").remaining == 500


class TestStatusAndDownload:
    @pytest.mark.asyncio
    async def test_get_status(self) -> None:
        transport = RecordingTransport(RawResponse(200, b'<header stare="ok" id_descarcare="9001"/>'))
        client, ledger = _client(transport)

        result = await client.get_status("5001")

        assert result.is_ready
        assert transport.last.url == f"{BASE_URL}/stareMesaj"
        assert transport.last.params == {"id_incarcare": "5001"}
        assert ledger.remaining("status_per_message_day", "status:5001").remaining == 49

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("value", "message"), [("", "cannot be empty"), ("12a", "numeric"), ("١٢", "numeric")])
    async def test_status_id_validation(self, value: str, message: str) -> None:
        transport = RecordingTransport()
        client, _ = _client(transport)

        with pytest.raises(ValueError, match=message):
            await client.get_status(value)

        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_download(self) -> None:
        transport = RecordingTransport(
            RawResponse(200, b"PK\x03\x04", {"Content-Type": "application/zip", "Content-Length": "4"})
        )
        client, _ = _client(transport)

        result = await client.download("9001")

        assert result.content == b"PK\x03\x04"
        assert transport.last.url == f"{BASE_URL}/descarcare"
        assert transport.last.params == {"id": "9001"}

    @pytest.mark.asyncio
    async def test_download_quota_per_message(self) -> None:
        transport = RecordingTransport(RawResponse(200, b"PK"))
        client, _ = _client(transport, QuotaSettings(download_per_day_message=1))
        await client.download("9001")

        with pytest.raises(RateLimitExceededError) as exc_info:
            await client.download("9001")

        assert exc_info.value.scope == "download_per_message_day"
        assert len(transport.requests) == 1
        await client.download("9002")

    @pytest.mark.asyncio
    async def test_download_id_validation(self) -> None:
        client, _ = _client(RecordingTransport())
        with pytest.raises(ValueError, match="Download ID"):
            await client.download("")


class TestLists:
    @pytest.mark.asyncio
    async def test_list_messages(self) -> None:
        transport = RecordingTransport(_json({"mesaje": [], "titlu": "Lista"}))
        client, _ = _client(transport)

        await client.list_messages(days=30, filter=MessageFilter.INVOICE_RECEIVED)

        assert transport.last.url == f"{BASE_URL}/listaMesajeFactura"
        assert transport.last.params == {"cif": ACCOUNT, "zile": "30", "filtru": "P"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [0, 61, -5])
    async def test_list_days_validation(self, days: int) -> None:
        client, _ = _client(RecordingTransport())
        with pytest.raises(ValueError, match="between 1 and 60"):
            await client.list_messages(days=days)

    @pytest.mark.asyncio
    async def test_paginated(self) -> None:
        transport = RecordingTransport(_json({"mesaje": [], "numar_total_pagini": 1, "index_pagina_curenta": 1}))
        client, _ = _client(transport)

        result = await client.list_messages_paginated(1_700_000_000_000, 1_700_086_400_000, page=2)

        assert result.is_last_page
        assert transport.last.url == f"{BASE_URL}/listaMesajePaginatieFactura"
        assert transport.last.params == {
            "cif": ACCOUNT,
            "startTime": "1700000000000",
            "endTime": "1700086400000",
            "pagina": "2",
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("start", "end", "page", "message"),
        [
            (0, 1000, 1, "Start time"),
            (1000, 0, 1, "End time"),
            (2000, 1000, 1, "before end time"),
            (1000, 1000 + 61 * 86_400_000, 1, "cannot exceed 60 days"),
            (1000, 2000, 0, "at least 1"),
        ],
    )
    async def test_paginated_validation(self, start: int, end: int, page: int, message: str) -> None:
        transport = RecordingTransport()
        client, ledger = _client(transport)

        with pytest.raises(ValueError, match=message):
            await client.list_messages_paginated(start, end, page=page)

        assert ledger.remaining(GLOBAL, "global").remaining == 500


class TestValidationAndPdf:
    @pytest.mark.asyncio
    async def test_validate_xml(self) -> None:
        transport = RecordingTransport(_json({"stare": "ok"}))
        client, _ = _client(transport)

        result = await client.validate_xml(XML, DocumentStandardType.FCN)

        assert result.valid
        assert transport.last.url == "https://webservicesp.anaf.ro/prod/FCTEL/rest/validare/FCN"

    @pytest.mark.asyncio
    async def test_convert_to_pdf(self) -> None:
        transport = RecordingTransport(RawResponse(200, b"%PDF-1.4", {"Content-Type": "application/pdf"}))
        client, _ = _client(transport)

        assert await client.convert_to_pdf(XML) == b"%PDF-1.4"
        assert transport.last.url == "https://webservicesp.anaf.ro/prod/FCTEL/rest/transformare/FACT1/DA"

    @pytest.mark.asyncio
    async def test_convert_with_validation_route(self) -> None:
        transport = RecordingTransport(RawResponse(200, b"%PDF", {"Content-Type": "application/pdf"}))
        client, _ = _client(transport)

        await client.convert_to_pdf(XML, validate=True)

        assert transport.last.url.endswith("/transformare/FACT1")

    @pytest.mark.asyncio
    async def test_convert_json_error(self) -> None:
        transport = RecordingTransport(_json({"eroare": "Fisierul nu este valid"}))
        client, _ = _client(transport)

        with pytest.raises(ApiError, match="Fisierul nu este valid"):
            await client.convert_to_pdf(XML)

    @pytest.mark.asyncio
    async def test_convert_json_without_message(self) -> None:
        transport = RecordingTransport(_json({}))
        client, _ = _client(transport)

        with pytest.raises(ApiError, match="PDF conversion failed"):
            await client.convert_to_pdf(XML)


class TestConstruction:
    def test_account_key_required(self) -> None:
        transport = RecordingTransport()
        _, ledger = _client(transport)
        executor = RequestExecutor(AsyncMock(), ledger)
        with pytest.raises(ValueError):
            EFacturaClient(executor, transport, "", base_url=BASE_URL)

    def test_from_settings_requires_oauth(self) -> None:
        with pytest.raises(AuthenticationError):
            EFacturaClient.from_settings(EFacturaSettings(), InMemoryCredentialStore(), ACCOUNT)

    @pytest.mark.asyncio
    async def test_from_settings_closes_owned_resources(self) -> None:
        settings = EFacturaSettings(
            oauth=OAuthSettings(client_id="c", client_secret="s", redirect_uri="https://x/cb"),
        )
        with (
            patch.object(AiohttpTransport, "close", new_callable=AsyncMock) as transport_close,
            patch.object(AnafOAuthClient, "close", new_callable=AsyncMock) as oauth_close,
        ):
            async with EFacturaClient.from_settings(settings, InMemoryCredentialStore(), ACCOUNT) as client:
                assert client.account_key == ACCOUNT

        transport_close.assert_awaited_once()
        oauth_close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_caller_transport_not_closed(self) -> None:
        transport = AsyncMock()
        _, ledger = _client(RecordingTransport())
        client = EFacturaClient(RequestExecutor(AsyncMock(), ledger), transport, ACCOUNT, base_url=BASE_URL)

        await client.close()

        transport.close.assert_not_called()

    def test_build_executor_uses_http_settings(self) -> None:
        settings = EFacturaSettings.model_validate({"http": {"retry_times": 5, "retry_delay_ms": 250}})
        executor = build_executor(settings, InMemoryCredentialStore(), exchange=AsyncMock())
        assert executor.policy.max_attempts == 5
        assert executor.policy.base_delay.total_seconds() == 0.25
