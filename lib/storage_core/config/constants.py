"""
Storage Core - Constants and Configuration
==========================================
Shared constants, provider identifiers, endpoints and default values
for the unified storage layer.
"""

from enum import Enum
from typing import Dict

# Version identifier for Storage Core
SHARED_VERSION = "2.0.0"

# =============================================================================
# PROVIDER IDENTIFIERS
# =============================================================================


class ProviderType(str, Enum):
    """Closed set of storage providers the factory can build."""
    LOCAL = "local"
    DROPBOX = "dropbox"
    GOOGLE_DRIVE = "google_drive"

    @classmethod
    def parse(cls, value) -> "ProviderType":
        """
        Normalize a provider identifier.

        Accepts enum members, 'google_drive', 'google-drive', ' Dropbox ' etc.

        Raises:
            ValueError: If the provider is unknown
        """
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower().replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            supported = ", ".join(p.value for p in cls)
            raise ValueError(
                f"Unknown storage provider: '{value}'. "
                f"Supported: {supported}"
            ) from None


PROVIDER_DISPLAY_NAMES: Dict[ProviderType, str] = {
    ProviderType.LOCAL: "Local storage",
    ProviderType.DROPBOX: "Dropbox",
    ProviderType.GOOGLE_DRIVE: "Google Drive",
}

# =============================================================================
# CONNECTION STATUS
# =============================================================================


class ConnectionStatus(str, Enum):
    """Lifecycle state of a stored provider connection."""
    ACTIVE = "active"
    EXPIRED = "expired"
    ERROR = "error"


# =============================================================================
# TOKEN ENCRYPTION
# =============================================================================

ENCRYPTION_KEY_ENV_PREFIX: str = "STORAGE_TOKEN_ENCRYPTION_KEY_"
ENCRYPTION_CURRENT_VERSION_ENV: str = "STORAGE_TOKEN_ENCRYPTION_CURRENT_VERSION"
DEFAULT_KEY_VERSION: str = "v1"

# AES-256-GCM parameters
ENCRYPTION_KEY_BYTES: int = 32
ENCRYPTION_IV_BYTES: int = 16
ENCRYPTION_TAG_BYTES: int = 16

# =============================================================================
# UPLOAD / DOWNLOAD CONFIGURATION
# =============================================================================

# Folder created in the user's external storage for all uploads
APP_FOLDER_NAME: str = "UntitledOne"

# Chunk size for large Dropbox uploads (bytes)
UPLOAD_CHUNK_SIZE: int = 8 * 1024 * 1024  # 8MB

# Default lifetime of download URLs (seconds)
DEFAULT_DOWNLOAD_URL_EXPIRY: int = 600

DEFAULT_CONTENT_TYPE: str = "application/octet-stream"

# Per-user byte budget for local storage (MB)
DEFAULT_MAX_USER_STORAGE_MB: int = 500

# Timeout for token endpoint calls (seconds)
DEFAULT_HTTP_TIMEOUT_SECONDS: float = 30.0

# Proactive refresh window (seconds)
DEFAULT_REFRESH_WINDOW_SECONDS: int = 60 * 60

# =============================================================================
# API ENDPOINTS
# =============================================================================

# Dropbox API endpoints
DROPBOX_TOKEN_URL: str = "https://api.dropboxapi.com/oauth2/token"

# Google API endpoints
GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
GOOGLE_DRIVE_FOLDER_MIME_TYPE: str = "application/vnd.google-apps.folder"

# Token endpoint statuses that mean the refresh token itself was refused
# (invalid_grant, revoked client). Anything else is treated as transient.
TOKEN_REFRESH_REJECTED_STATUSES = frozenset([400, 401])

# Google Drive error reasons reported for a full account
GOOGLE_QUOTA_REASONS = frozenset([
    "storageQuotaExceeded",
    "quotaExceeded",
    "teamDriveFileLimitExceeded",
])
