"""
Configuration module - Settings, constants and token encryption.
"""

from .constants import (
    SHARED_VERSION,
    APP_FOLDER_NAME,
    UPLOAD_CHUNK_SIZE,
    DEFAULT_DOWNLOAD_URL_EXPIRY,
    # Provider identifiers
    ProviderType,
    ConnectionStatus,
    # API endpoints
    DROPBOX_TOKEN_URL,
    GOOGLE_TOKEN_URL,
)

from .settings import StorageSettings

from .credentials import (
    TokenCipher,
    generate_encryption_key,
    mask_credentials,
)

from .key_rotation import RotationStats, rotate_encryption_keys

__all__ = [
    # Settings
    "StorageSettings",
    # Credentials
    "TokenCipher",
    "generate_encryption_key",
    "mask_credentials",
    "RotationStats",
    "rotate_encryption_keys",
    # Constants
    "SHARED_VERSION",
    "APP_FOLDER_NAME",
    "UPLOAD_CHUNK_SIZE",
    "DEFAULT_DOWNLOAD_URL_EXPIRY",
    # Provider identifiers
    "ProviderType",
    "ConnectionStatus",
    # API endpoints
    "DROPBOX_TOKEN_URL",
    "GOOGLE_TOKEN_URL",
]
