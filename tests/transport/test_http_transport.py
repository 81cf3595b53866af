"""Tests for the aiohttp transport and request/response types."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from anafguard.credentials import Credential
from anafguard.transport import AiohttpTransport, PreparedRequest, RawResponse, TransportError

URL = "https://api.anaf.ro/test/FCTEL/rest/stareMesaj"


def _mock_response(status: int, body: bytes, headers: dict[str, str] | None = None) -> MagicMock:
    response = MagicMock()
    response.status = status
    response.headers = headers or {}
    response.read = AsyncMock(return_value=body)
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=None)
    return response


class TestAiohttpTransport:
    """HTTP exchange through aiohttp."""

    @pytest.mark.asyncio
    async def test_send_returns_raw_response(self) -> None:
        transport = AiohttpTransport()
        mock_response = _mock_response(200, b'{"stare": "ok"}', {"Content-Type": "application/json"})
        request = PreparedRequest("GET", URL, params={"id_incarcare": "5001"})

        try:
            with patch.object(aiohttp.ClientSession, "request", return_value=mock_response) as mock_request:
                response = await transport.send(request)
        finally:
            await transport.close()

        assert response == RawResponse(200, b'{"stare": "ok"}', {"Content-Type": "application/json"})
        args, kwargs = mock_request.call_args
        assert args == ("GET", URL)
        assert kwargs["params"] == {"id_incarcare": "5001"}

    @pytest.mark.asyncio
    async def test_error_status_is_not_raised(self) -> None:
        transport = AiohttpTransport()
        try:
            with patch.object(aiohttp.ClientSession, "request", return_value=_mock_response(503, b"down")):
                response = await transport.send(PreparedRequest("GET", URL))
        finally:
            await transport.close()

        assert response.status == 503
        assert not response.ok

    @pytest.mark.asyncio
    async def test_empty_params_sent_as_none(self) -> None:
        transport = AiohttpTransport()
        try:
            with patch.object(
                aiohttp.ClientSession, "request", return_value=_mock_response(200, b"")
            ) as mock_request:
                await transport.send(PreparedRequest("POST", URL, data=b"<Invoice/>"))
        finally:
            await transport.close()

        _, kwargs = mock_request.call_args
        assert kwargs["params"] is None
        assert kwargs["data"] == b"<Invoice/>"

    @pytest.mark.asyncio
    async def test_connection_failure(self) -> None:
        transport = AiohttpTransport()
        try:
            with patch.object(
                aiohttp.ClientSession,
                "request",
                side_effect=aiohttp.ClientConnectionError("refused"),
            ):
                with pytest.raises(TransportError) as exc_info:
                    await transport.send(PreparedRequest("GET", URL))
        finally:
            await transport.close()

        assert "ClientConnectionError" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, aiohttp.ClientConnectionError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "exc",
        [
            aiohttp.TooManyRedirects(MagicMock(), ()),
            aiohttp.InvalidURL("not a url"),
            aiohttp.ClientPayloadError("truncated"),
            TimeoutError(),
        ],
    )
    async def test_failures_before_response_become_transport_errors(self, exc: BaseException) -> None:
        transport = AiohttpTransport()
        try:
            with patch.object(aiohttp.ClientSession, "request", side_effect=exc):
                with pytest.raises(TransportError) as exc_info:
                    await transport.send(PreparedRequest("GET", URL))
        finally:
            await transport.close()

        assert exc_info.value.__cause__ is exc
        assert type(exc).__name__ in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_bind_adds_authorization(self) -> None:
        transport = AiohttpTransport()
        perform = transport.bind(PreparedRequest("GET", URL, headers={"Accept": "application/json"}))
        try:
            with patch.object(
                aiohttp.ClientSession, "request", return_value=_mock_response(200, b"")
            ) as mock_request:
                await perform(Credential(access_token="abc", refresh_token="r"))
        finally:
            await transport.close()

        _, kwargs = mock_request.call_args
        assert kwargs["headers"] == {"Accept": "application/json", "Authorization": "Bearer abc"}

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        transport = AiohttpTransport()
        await transport._get_session()
        await transport.close()
        await transport.close()


class TestTypes:
    """RawResponse and PreparedRequest helpers."""

    def test_header_case_insensitive(self) -> None:
        response = RawResponse(200, b"", {"content-type": "application/json; charset=utf-8"})
        assert response.header("Content-Type") == "application/json; charset=utf-8"
        assert response.content_type == "application/json"
        assert response.header("X-Missing") is None

    def test_text_replaces_invalid_utf8(self) -> None:
        assert RawResponse(200, b"ok\xff").text() == "ok\ufffd"

    def test_with_authorization_does_not_mutate(self) -> None:
        request = PreparedRequest("GET", URL)
        authorized = request.with_authorization(Credential(access_token="abc", refresh_token="r"))
        assert "Authorization" not in request.headers
        assert authorized.headers["Authorization"] == "Bearer abc"

    def test_repr_hides_headers(self) -> None:
        request = PreparedRequest("GET", URL).with_authorization(
            Credential(access_token="secret-token", refresh_token="r")
        )
        assert "secret-token" not in repr(request)
