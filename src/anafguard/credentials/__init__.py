"""Credential model, storage, OAuth exchange and lifecycle management."""

from anafguard.credentials.manager import TokenLifecycleManager
from anafguard.credentials.models import Credential
from anafguard.credentials.oauth import AnafOAuthClient, RefreshExchange
from anafguard.credentials.store import CredentialStore, InMemoryCredentialStore

__all__ = [
    "AnafOAuthClient",
    "Credential",
    "CredentialStore",
    "InMemoryCredentialStore",
    "RefreshExchange",
    "TokenLifecycleManager",
]
