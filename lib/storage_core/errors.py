"""
Storage Error Taxonomy
======================
Typed errors surfaced at the storage boundary.

Provider adapters catch raw SDK exceptions and re-raise only the types
defined here. Each provider error carries a stable code that an outer HTTP
layer can map to a status code and user-facing copy.

Cipher errors (FormatError, DecryptionError, ConfigError) are operator-facing:
they mean misconfiguration or corrupted data, not something the user can fix.
"""

from enum import Enum
from typing import Any, Dict, Optional


class StorageErrorCode(str, Enum):
    """Stable boundary error codes."""
    PROVIDER_NOT_CONNECTED = "PROVIDER_NOT_CONNECTED"
    PROVIDER_TOKEN_EXPIRED = "PROVIDER_TOKEN_EXPIRED"
    PROVIDER_API_ERROR = "PROVIDER_API_ERROR"
    PROVIDER_QUOTA_EXCEEDED = "PROVIDER_QUOTA_EXCEEDED"
    PROVIDER_FILE_NOT_FOUND = "PROVIDER_FILE_NOT_FOUND"


_PROVIDER_LABELS = {
    "local": "Local storage",
    "dropbox": "Dropbox",
    "google_drive": "Google Drive",
}


class StorageProviderError(Exception):
    """
    Base class for errors raised by storage provider operations.

    Attributes:
        code: Stable StorageErrorCode
        provider: Provider identifier ('dropbox', 'google_drive', 'local')
        details: Extra non-sensitive context (never tokens)
    """

    code: StorageErrorCode = StorageErrorCode.PROVIDER_API_ERROR

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[StorageErrorCode] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.details = details or {}
        if code is not None:
            self.code = code

    @property
    def provider_label(self) -> str:
        return _PROVIDER_LABELS.get(self.provider or "", "storage provider")

    def user_message(self) -> str:
        """Get a user-friendly message for this error."""
        name = self.provider_label
        if self.code == StorageErrorCode.PROVIDER_NOT_CONNECTED:
            return f"Please connect your {name} account in Settings"
        if self.code == StorageErrorCode.PROVIDER_TOKEN_EXPIRED:
            return f"Your {name} connection expired. Please reconnect in Settings."
        if self.code == StorageErrorCode.PROVIDER_API_ERROR:
            return f"The {name} operation failed. Please try again."
        if self.code == StorageErrorCode.PROVIDER_QUOTA_EXCEEDED:
            return (
                f"Your {name} storage is full. "
                "Please free up space or use a different provider."
            )
        if self.code == StorageErrorCode.PROVIDER_FILE_NOT_FOUND:
            return f"File not found in {name}. It may have been deleted."
        return self.message or "An unexpected storage error occurred"

    @property
    def requires_reconnect(self) -> bool:
        """True when the user must reconnect the provider account."""
        return self.code in (
            StorageErrorCode.PROVIDER_NOT_CONNECTED,
            StorageErrorCode.PROVIDER_TOKEN_EXPIRED,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.user_message(),
            "provider": self.provider,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value}, provider={self.provider!r})"


class NotConnectedError(StorageProviderError):
    """No usable stored credential for this user and provider."""
    code = StorageErrorCode.PROVIDER_NOT_CONNECTED


class TokenExpiredError(StorageProviderError):
    """Token refresh was attempted and failed, or no refresh token exists."""
    code = StorageErrorCode.PROVIDER_TOKEN_EXPIRED


class ProviderApiError(StorageProviderError):
    """Provider rejected the request for a reason unrelated to auth."""
    code = StorageErrorCode.PROVIDER_API_ERROR


class QuotaExceededError(StorageProviderError):
    """Provider-side storage is full."""
    code = StorageErrorCode.PROVIDER_QUOTA_EXCEEDED


class ProviderFileNotFoundError(StorageProviderError):
    """Provider-side object is missing."""
    code = StorageErrorCode.PROVIDER_FILE_NOT_FOUND


# =============================================================================
# TOKEN CIPHER ERRORS (operator-facing)
# =============================================================================


class TokenCipherError(Exception):
    """Base class for token encryption errors."""


class FormatError(TokenCipherError):
    """Encrypted payload is not 'version:iv:authTag:ciphertext'."""


class DecryptionError(TokenCipherError):
    """Authentication tag mismatch: tampered or corrupted ciphertext."""


class ConfigError(TokenCipherError):
    """Missing or invalid encryption key for a required version."""


def is_storage_error(error: BaseException, code: Optional[StorageErrorCode] = None) -> bool:
    """Check if an error is a StorageProviderError, optionally with a specific code."""
    if not isinstance(error, StorageProviderError):
        return False
    if code is not None:
        return error.code == code
    return True


def get_storage_error_code(error: BaseException) -> Optional[StorageErrorCode]:
    """
    Extract the boundary error code from any exception.

    Falls back to scanning the message for a known code so errors that were
    flattened to plain exceptions upstream can still be mapped.
    """
    if isinstance(error, StorageProviderError):
        return error.code
    message = str(error)
    for code in StorageErrorCode:
        if code.value in message:
            return code
    return None
