"""
Storage Core - Unified File Storage
===================================
One storage interface over the platform object store, Dropbox and
Google Drive, with encrypted versioned OAuth credentials and transparent
token refresh.

Usage:
    from storage_core import StorageSettings, TokenCipher, CredentialStore, StorageProviderFactory

    settings = StorageSettings.from_env()
    store = CredentialStore.from_settings(settings)
    factory = StorageProviderFactory(store, TokenCipher(settings), settings)

    provider = await factory.get("dropbox", owner_id)
    result = await provider.upload(data, "project-id/mix.wav", owner_id)
"""

from .config import (
    SHARED_VERSION,
    ProviderType,
    ConnectionStatus,
    StorageSettings,
    TokenCipher,
    generate_encryption_key,
    mask_credentials,
    RotationStats,
    rotate_encryption_keys,
)

from .errors import (
    StorageErrorCode,
    StorageProviderError,
    NotConnectedError,
    TokenExpiredError,
    ProviderApiError,
    QuotaExceededError,
    ProviderFileNotFoundError,
    TokenCipherError,
    FormatError,
    DecryptionError,
    ConfigError,
    is_storage_error,
    get_storage_error_code,
)

from .db import ConnectionInfo, CredentialStore, StorageConnection

from .providers.storage import (
    BaseStorageProvider,
    UploadResult,
    StorageProviderFactory,
    LocalStorageAdapter,
    FilesystemObjectStore,
    RefreshStats,
    refresh_expiring_tokens,
)

from .utils import StorageUsage, counts_against_quota

__version__ = SHARED_VERSION

__all__ = [
    # Config
    "SHARED_VERSION",
    "ProviderType",
    "ConnectionStatus",
    "StorageSettings",
    "TokenCipher",
    "generate_encryption_key",
    "mask_credentials",
    "RotationStats",
    "rotate_encryption_keys",
    # Errors
    "StorageErrorCode",
    "StorageProviderError",
    "NotConnectedError",
    "TokenExpiredError",
    "ProviderApiError",
    "QuotaExceededError",
    "ProviderFileNotFoundError",
    "TokenCipherError",
    "FormatError",
    "DecryptionError",
    "ConfigError",
    "is_storage_error",
    "get_storage_error_code",
    # Persistence
    "ConnectionInfo",
    "CredentialStore",
    "StorageConnection",
    # Providers
    "BaseStorageProvider",
    "UploadResult",
    "StorageProviderFactory",
    "LocalStorageAdapter",
    "FilesystemObjectStore",
    "RefreshStats",
    "refresh_expiring_tokens",
    # Utils
    "StorageUsage",
    "counts_against_quota",
]
