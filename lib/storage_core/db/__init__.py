"""
Persistence - storage connections and the privileged credential store.
"""

from .models import Base, ConnectionInfo, StorageConnection
from .credential_store import CredentialStore

__all__ = [
    "Base",
    "ConnectionInfo",
    "StorageConnection",
    "CredentialStore",
]
