"""
Credential store contract and the in-memory implementation.

Durable storage (database, vault) lives outside this package; anything that
satisfies CredentialStore can be plugged into the TokenLifecycleManager.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from anafguard.credentials.models import Credential


class CredentialStore(Protocol):
    """Latest credential per account key."""

    async def get(self, account_key: str) -> Credential | None: ...

    async def put(self, account_key: str, credential: Credential) -> None: ...


class InMemoryCredentialStore:
    """Process-local store. Credentials are immutable, so no copying is needed."""

    def __init__(self, initial: dict[str, Credential] | None = None) -> None:
        self._credentials: dict[str, Credential] = dict(initial or {})

    async def get(self, account_key: str) -> Credential | None:
        return self._credentials.get(account_key)

    async def put(self, account_key: str, credential: Credential) -> None:
        self._credentials[account_key] = credential

    def __len__(self) -> int:
        return len(self._credentials)
