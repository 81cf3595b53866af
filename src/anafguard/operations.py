"""Operation descriptors: what a single logical ANAF call is, for quota purposes."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class OperationClass(str, Enum):
    """Category of remote call; decides which quota scopes apply."""

    UPLOAD = "upload"
    STATUS = "status"
    LIST = "list"
    PAGINATED_LIST = "paginated_list"
    DOWNLOAD = "download"
    OTHER = "other"


# Classes whose quota is counted per message rather than per account
MESSAGE_SCOPED_CLASSES: frozenset[OperationClass] = frozenset(
    {OperationClass.STATUS, OperationClass.DOWNLOAD}
)


class OperationDescriptor(BaseModel):
    """
    One logical call, constructed per request and never mutated.

    Attributes:
        operation_class: Kind of call.
        account_key: Account the call is made for (the company CUI).
        message_key: Upload or download id for per-message scopes.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    operation_class: OperationClass
    account_key: str = Field(min_length=1)
    message_key: str | None = None

    @model_validator(mode="after")
    def _require_message_key(self) -> OperationDescriptor:
        if self.operation_class in MESSAGE_SCOPED_CLASSES and not self.message_key:
            raise ValueError(f"{self.operation_class.value} operations require a message_key")
        return self

    @classmethod
    def upload(cls, account_key: str) -> OperationDescriptor:
        return cls(operation_class=OperationClass.UPLOAD, account_key=account_key)

    @classmethod
    def status(cls, account_key: str, upload_id: str) -> OperationDescriptor:
        return cls(
            operation_class=OperationClass.STATUS,
            account_key=account_key,
            message_key=upload_id,
        )

    @classmethod
    def list_messages(cls, account_key: str) -> OperationDescriptor:
        return cls(operation_class=OperationClass.LIST, account_key=account_key)

    @classmethod
    def paginated_list(cls, account_key: str) -> OperationDescriptor:
        return cls(operation_class=OperationClass.PAGINATED_LIST, account_key=account_key)

    @classmethod
    def download(cls, account_key: str, download_id: str) -> OperationDescriptor:
        return cls(
            operation_class=OperationClass.DOWNLOAD,
            account_key=account_key,
            message_key=download_id,
        )

    @classmethod
    def other(cls, account_key: str) -> OperationDescriptor:
        return cls(operation_class=OperationClass.OTHER, account_key=account_key)
