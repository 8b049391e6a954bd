"""
Storage Core - Storage Providers
================================
Unified storage interface over platform and external storage.

Supported:
    - Local (platform object store)
    - Dropbox (OAuth2, chunked uploads)
    - Google Drive (OAuth2)

The Dropbox and Google Drive adapters are not imported here; the factory
loads them on first use.
"""

from .base import BaseStorageProvider, OAuthStorageProvider, TokenGrant, UploadResult
from .factory import StorageProviderFactory
from .local_provider import LocalStorageAdapter
from .object_store import FilesystemObjectStore, ObjectStore
from .token_refresh import RefreshStats, refresh_expiring_tokens

__all__ = [
    "BaseStorageProvider",
    "OAuthStorageProvider",
    "TokenGrant",
    "UploadResult",
    "StorageProviderFactory",
    "LocalStorageAdapter",
    "FilesystemObjectStore",
    "ObjectStore",
    "RefreshStats",
    "refresh_expiring_tokens",
]
