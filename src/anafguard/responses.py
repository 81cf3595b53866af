"""
Parsed ANAF response types.

Upload and status answers arrive as a small XML document whose root
`header` element carries the result in attributes and nests `Errors`
children with an `errorMessage` attribute. A JSON form with the same keys is
accepted as fallback. List responses are JSON.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import TYPE_CHECKING, Any
from xml.etree import ElementTree as ET

import orjson
from pydantic import BaseModel, ConfigDict, Field

from anafguard.errors import ParseError

if TYPE_CHECKING:
    from anafguard.transport.types import RawResponse

logger = logging.getLogger(__name__)

_FILENAME_PATTERN = re.compile(r"filename[^;=\n]*=([\"']?)([^\"';\n]*)")


class ExecutionStatus(int, Enum):
    """Upload ExecutionStatus attribute."""

    SUCCESS = 0
    ERROR = 1


class UploadStatus(str, Enum):
    """Processing state (stare) of an uploaded document."""

    OK = "ok"
    FAILED = "nok"
    IN_PROGRESS = "in prelucrare"


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _parse_xml(raw: RawResponse) -> ET.Element | None:
    text = raw.text().strip()
    if not text.startswith("<"):
        return None
    try:
        return ET.fromstring(text)
    except ET.ParseError as e:
        logger.warning("Malformed XML response, trying JSON", extra={"error": str(e)})
        return None


def _find_header(root: ET.Element) -> ET.Element | None:
    if _local_name(root.tag).lower() == "header":
        return root
    for element in root.iter():
        if _local_name(element.tag).lower() == "header":
            return element
    return None


def _xml_errors(element: ET.Element) -> tuple[str, ...]:
    messages = []
    for child in element.iter():
        if _local_name(child.tag).lower() in ("errors", "error"):
            message = child.get("errorMessage") or (child.text or "").strip()
            messages.append(message or "Operation failed")
    return tuple(messages)


def _json_object(raw: RawResponse, what: str) -> dict[str, Any]:
    try:
        data = raw.json()
    except orjson.JSONDecodeError as e:
        raise ParseError(f"Unable to parse {what} response", raw_response=raw.text()[:500]) from e
    if not isinstance(data, dict):
        raise ParseError(f"Unexpected {what} response structure", raw_response=raw.text()[:500])
    return data


def _json_errors(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    items = value if isinstance(value, list) else [value]
    messages = []
    for item in items:
        if isinstance(item, dict):
            messages.append(str(item.get("errorMessage") or item.get("mesaj") or "Operation failed"))
        else:
            messages.append(str(item))
    return tuple(messages)


class UploadResult(BaseModel):
    """Answer to an upload: the upload index on success, errors otherwise."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    execution_status: ExecutionStatus
    upload_id: str | None = None
    date_response: str | None = None
    errors: tuple[str, ...] = ()

    @property
    def is_successful(self) -> bool:
        return self.execution_status == ExecutionStatus.SUCCESS

    @classmethod
    def from_response(cls, raw: RawResponse) -> UploadResult:
        """
        Raises:
            ParseError: If neither the XML nor the JSON form can be read.
        """
        root = _parse_xml(raw)
        if root is not None:
            header = _find_header(root)
            if header is not None and header.get("ExecutionStatus") is not None:
                return cls(
                    execution_status=_execution_status(header.get("ExecutionStatus")),
                    upload_id=header.get("index_incarcare"),
                    date_response=header.get("dateResponse"),
                    errors=_xml_errors(header),
                )
            logger.warning("Unexpected XML upload response, trying JSON")

        data = _json_object(raw, "upload")
        return cls(
            execution_status=_execution_status(data.get("ExecutionStatus")),
            upload_id=_optional_str(data.get("index_incarcare")),
            date_response=_optional_str(data.get("dateResponse")),
            errors=_json_errors(data.get("Errors")),
        )


class StatusResult(BaseModel):
    """Processing state of an upload."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: UploadStatus | None = None
    download_id: str | None = None
    errors: tuple[str, ...] = ()

    @property
    def is_ready(self) -> bool:
        return self.status == UploadStatus.OK

    @property
    def is_failed(self) -> bool:
        return self.status == UploadStatus.FAILED

    @property
    def is_in_progress(self) -> bool:
        return self.status == UploadStatus.IN_PROGRESS

    @classmethod
    def from_response(cls, raw: RawResponse) -> StatusResult:
        """
        A header that carries only Errors means the upload failed.

        Raises:
            ParseError: If neither the XML nor the JSON form can be read.
        """
        root = _parse_xml(raw)
        if root is not None:
            header = _find_header(root)
            if header is not None:
                if header.get("stare") is not None or header.get("id_descarcare") is not None:
                    return cls(
                        status=_upload_status(header.get("stare")),
                        download_id=header.get("id_descarcare"),
                        errors=_xml_errors(header),
                    )
                errors = _xml_errors(header)
                if errors:
                    return cls(status=UploadStatus.FAILED, errors=errors)
            logger.warning("Unexpected XML status response, trying JSON")

        data = _json_object(raw, "status")
        return cls(
            status=_upload_status(data.get("stare")),
            download_id=_optional_str(data.get("id_descarcare")),
            errors=_json_errors(data.get("Errors")),
        )


class MessageDetails(BaseModel):
    """One entry of a message list."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = ""
    cif: str = ""
    created_at: str = Field(default="", alias="data_creare")
    type: str = Field(default="", alias="tip")
    details: str = Field(default="", alias="detalii")
    request_id: str = Field(default="", alias="id_solicitare")

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> MessageDetails:
        return cls.model_validate({k: str(v) for k, v in item.items() if v is not None})


def _messages(value: Any) -> tuple[MessageDetails, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(MessageDetails.from_item(item) for item in value if isinstance(item, dict))


class MessageList(BaseModel):
    """Response of listaMesajeFactura."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    messages: tuple[MessageDetails, ...] = ()
    serial: str | None = None
    cui: str | None = None
    title: str | None = None
    info: str | None = None
    error: str | None = None
    download_error: str | None = None

    @property
    def has_error(self) -> bool:
        return self.error is not None or self.download_error is not None

    @classmethod
    def from_response(cls, raw: RawResponse) -> MessageList:
        data = _json_object(raw, "message list")
        return cls(
            messages=_messages(data.get("mesaje")),
            serial=_optional_str(data.get("serial")),
            cui=_optional_str(data.get("cui")),
            title=_optional_str(data.get("titlu")),
            info=_optional_str(data.get("info")),
            error=_optional_str(data.get("eroare")),
            download_error=_optional_str(data.get("eroare_descarcare")),
        )


class PaginatedMessageList(BaseModel):
    """Response of listaMesajePaginatieFactura. Pages are 1-based."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    messages: tuple[MessageDetails, ...] = ()
    records_in_page: int | None = None
    records_per_page: int | None = None
    total_records: int | None = None
    total_pages: int | None = None
    current_page: int | None = None
    serial: str | None = None
    cui: str | None = None
    title: str | None = None
    error: str | None = None

    @property
    def has_error(self) -> bool:
        return self.error is not None

    @property
    def has_next_page(self) -> bool:
        if self.current_page is None or self.total_pages is None:
            return False
        return self.current_page < self.total_pages

    @property
    def is_last_page(self) -> bool:
        return not self.has_next_page

    @classmethod
    def from_response(cls, raw: RawResponse) -> PaginatedMessageList:
        data = _json_object(raw, "paginated message list")
        return cls(
            messages=_messages(data.get("mesaje")),
            records_in_page=_optional_int(data.get("numar_inregistrari_in_pagina")),
            records_per_page=_optional_int(data.get("numar_total_inregistrari_per_pagina")),
            total_records=_optional_int(data.get("numar_total_inregistrari")),
            total_pages=_optional_int(data.get("numar_total_pagini")),
            current_page=_optional_int(data.get("index_pagina_curenta")),
            serial=_optional_str(data.get("serial")),
            cui=_optional_str(data.get("cui")),
            title=_optional_str(data.get("titlu")),
            error=_optional_str(data.get("eroare")),
        )


class DownloadResult(BaseModel):
    """ZIP archive returned by descarcare."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    content: bytes = Field(repr=False)
    content_type: str = "application/zip"
    filename: str | None = None
    content_length: int | None = None

    @classmethod
    def from_response(cls, raw: RawResponse) -> DownloadResult:
        filename = None
        disposition = raw.header("Content-Disposition")
        if disposition:
            match = _FILENAME_PATTERN.search(disposition)
            if match:
                filename = match.group(2) or None
        return cls(
            content=raw.body,
            content_type=raw.content_type or "application/zip",
            filename=filename,
            content_length=_optional_int(raw.header("Content-Length")),
        )


class ValidationResult(BaseModel):
    """Outcome of the XML validation service."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    valid: bool
    details: str | None = None
    info: str | None = None
    errors: tuple[str, ...] = ()

    @classmethod
    def from_response(cls, raw: RawResponse) -> ValidationResult:
        data = _json_object(raw, "validation")
        message = data.get("mesaj")
        valid = (
            bool(data.get("valid"))
            or data.get("stare") == "ok"
            or (isinstance(message, str) and "valid" in message.lower() and "invalid" not in message.lower())
        )
        errors = _json_errors(data.get("Errors"))
        if not errors and data.get("eroare"):
            errors = (str(data["eroare"]),)
        return cls(
            valid=valid,
            details=_optional_str(message or data.get("detalii") or data.get("message")),
            info=_optional_str(data.get("info")),
            errors=errors,
        )


def _execution_status(value: Any) -> ExecutionStatus:
    """Missing or unknown values count as errors."""
    try:
        return ExecutionStatus(int(value))
    except (TypeError, ValueError):
        return ExecutionStatus.ERROR


def _upload_status(value: Any) -> UploadStatus | None:
    if value is None:
        return None
    try:
        return UploadStatus(str(value).strip().lower())
    except ValueError:
        logger.warning("Unknown upload status", extra={"stare": str(value)})
        return None


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
