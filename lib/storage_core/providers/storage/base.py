"""
Storage Core - Base Storage Provider
====================================
Abstract base class for all storage providers, plus the shared lazy
refresh protocol used by the OAuth-backed adapters.

Every operation takes the user_id of the *resource owner*. When a requester
downloads a file someone else uploaded, the caller passes the uploader's id
and the operation runs with the uploader's stored credentials.

Lazy 401 retry protocol (OAuthStorageProvider):
    1. Run the provider call with the stored access token
    2. Not an auth failure -> typed error immediately, no refresh
    3. Auth failure -> refresh_tokens() exactly once
    4. Refresh succeeded -> replay the call once (2 calls at most)
    5. Refresh failed -> TokenExpiredError
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from ...config.constants import (
    DEFAULT_DOWNLOAD_URL_EXPIRY,
    PROVIDER_DISPLAY_NAMES,
    TOKEN_REFRESH_REJECTED_STATUSES,
    ConnectionStatus,
    ProviderType,
)
from ...config.credentials import TokenCipher, mask_credentials
from ...config.settings import StorageSettings
from ...db.credential_store import CredentialStore
from ...db.models import StorageConnection, utcnow
from ...errors import ConfigError, StorageProviderError, TokenCipherError, TokenExpiredError
from ...utils.http import HttpClient, RequestsHttpClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class UploadResult:
    """
    Result of an upload. Not persisted by the storage core.

    Attributes:
        file_id: Provider-native identifier, or the local storage key
        path: Where the file ended up
        size: Size in bytes (authoritative count for quota policy)
        metadata: Provider-specific fields (revision, checksum, ...)
    """
    file_id: str
    path: str
    size: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileId": self.file_id,
            "path": self.path,
            "size": self.size,
            "metadata": dict(self.metadata),
        }


@dataclass
class TokenGrant:
    """Tokens returned by a provider's refresh endpoint."""
    access_token: str
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None

    def __repr__(self) -> str:
        return f"TokenGrant(expires_in={self.expires_in}, rotated_refresh_token={bool(self.refresh_token)})"


class TokenRefreshRejected(Exception):
    """The provider refused the refresh token (revoked, invalid_grant, ...)."""

    def __init__(self, status_code: int, error: Optional[str] = None):
        super().__init__(f"Token refresh rejected with HTTP {status_code}: {error or 'unknown error'}")
        self.status_code = status_code
        self.error = error


class _AuthFailure(Exception):
    """Internal marker: the provider call failed because the token was rejected."""


class BaseStorageProvider(ABC):
    """
    Abstract base class for storage providers.

    All storage providers (local, Dropbox, Google Drive) implement this
    interface and are handed out by StorageProviderFactory. Callers never
    touch provider SDKs directly.
    """

    provider_type: ProviderType

    @abstractmethod
    async def upload(
        self,
        file: bytes,
        path: str,
        user_id: str,
        content_type: Optional[str] = None,
    ) -> UploadResult:
        """
        Upload file content.

        Args:
            file: File content
            path: Destination path/key (e.g. 'project-id/mix.wav')
            user_id: Owner whose credentials are used
            content_type: MIME type (guessed from the path when omitted)

        Returns:
            UploadResult with provider file id, final path and size

        Raises:
            NotConnectedError, TokenExpiredError, ProviderApiError, QuotaExceededError
        """
        pass

    @abstractmethod
    async def get_download_url(
        self,
        file_id: str,
        user_id: str,
        expires_in: int = DEFAULT_DOWNLOAD_URL_EXPIRY,
    ) -> str:
        """
        Get a time-limited download URL (or an identifier the content proxy resolves).

        Raises:
            NotConnectedError, TokenExpiredError, ProviderApiError, ProviderFileNotFoundError
        """
        pass

    @abstractmethod
    async def delete(self, file_id: str, user_id: str) -> None:
        """
        Delete a file.

        Raises:
            NotConnectedError, TokenExpiredError, ProviderApiError, ProviderFileNotFoundError
        """
        pass

    @abstractmethod
    async def validate_connection(self, user_id: str) -> bool:
        """Check that the user's connection is usable."""
        pass

    @abstractmethod
    async def refresh_tokens(self, user_id: str) -> bool:
        """
        Refresh the user's access token.

        Returns:
            True if refreshed (or no refresh is needed), False otherwise
        """
        pass

    def get_provider_type(self) -> str:
        """Get provider type identifier (e.g. 'dropbox')."""
        return self.provider_type.value

    def get_provider_name(self) -> str:
        """Get human-readable provider name (e.g. 'Dropbox')."""
        return PROVIDER_DISPLAY_NAMES[self.provider_type]

    def validate_path(self, path: str) -> bool:
        """
        Validate that a path is usable for this provider.

        Default implementation accepts any non-empty string without
        parent-directory segments.
        """
        if not path or not isinstance(path, str):
            return False
        return ".." not in path.replace("\\", "/").split("/")


class OAuthStorageProvider(BaseStorageProvider):
    """
    Base for providers authenticated with stored OAuth tokens.

    Subclasses implement:
        token_url: Provider OAuth token endpoint
        _client_credentials(): (client_id, client_secret)
        _is_auth_error(exc): Is this the provider's analogue of HTTP 401?
        _translate_error(exc, operation): Map a raw SDK error to the taxonomy
    """

    token_url: str = ""

    def __init__(
        self,
        store: CredentialStore,
        cipher: TokenCipher,
        settings: StorageSettings,
        http_client: Optional[HttpClient] = None,
    ):
        self.store = store
        self.cipher = cipher
        self.settings = settings
        self.http_client = http_client or RequestsHttpClient(timeout=settings.http_timeout)

    # =========================================================================
    # PROVIDER HOOKS
    # =========================================================================

    @abstractmethod
    def _client_credentials(self) -> Tuple[str, str]:
        pass

    @abstractmethod
    def _is_auth_error(self, exc: Exception) -> bool:
        pass

    @abstractmethod
    def _translate_error(self, exc: Exception, operation: str) -> StorageProviderError:
        pass

    # =========================================================================
    # CONNECTION LIFECYCLE
    # =========================================================================

    async def validate_connection(self, user_id: str) -> bool:
        """Connection exists and is marked active."""
        try:
            connection = await self.store.get_connection(user_id, self.provider_type)
        except Exception as e:
            logger.error("Failed to load %s connection for user %s: %s",
                         self.provider_type.value, user_id, e)
            return False
        return connection is not None and connection.status == ConnectionStatus.ACTIVE.value

    async def refresh_tokens(self, user_id: str) -> bool:
        """
        Exchange the stored refresh token for a new access token.

        On success both tokens are re-encrypted under the current key version
        and persisted with status=active in a single update. A missing or
        rejected refresh token marks the connection expired; anything
        unexpected marks it error.
        """
        provider = self.provider_type.value
        try:
            connection = await self.store.get_connection(user_id, self.provider_type)
            if connection is None:
                logger.error("No %s connection for user %s; nothing to refresh", provider, user_id)
                return False

            if not connection.encrypted_refresh_token:
                logger.error("No refresh token available for %s connection of user %s",
                             provider, user_id)
                await self._mark_status(user_id, ConnectionStatus.EXPIRED)
                return False

            refresh_token = self.cipher.decrypt(connection.encrypted_refresh_token)
            grant = await self._request_token_refresh(refresh_token)

            new_refresh_token = grant.refresh_token or refresh_token
            version = self.cipher.current_version
            updates = {
                "encrypted_access_token": self.cipher.encrypt(grant.access_token, version),
                "encrypted_refresh_token": self.cipher.encrypt(new_refresh_token, version),
                "encryption_key_version": version,
                "token_expires_at": (
                    utcnow() + timedelta(seconds=grant.expires_in) if grant.expires_in else None
                ),
                "status": ConnectionStatus.ACTIVE,
                "last_used_at": utcnow(),
            }
            del refresh_token, new_refresh_token, grant

            if not await self.store.update_connection(user_id, self.provider_type, **updates):
                logger.error("%s connection for user %s vanished during refresh", provider, user_id)
                return False

            logger.info("%s token refreshed for user %s", self.get_provider_name(), user_id)
            return True

        except TokenRefreshRejected as e:
            logger.warning("%s refresh token rejected for user %s: %s", provider, user_id, e)
            await self._mark_status(user_id, ConnectionStatus.EXPIRED)
            return False

        except Exception as e:
            level = logging.ERROR if isinstance(e, TokenCipherError) else logging.WARNING
            logger.log(level, "Error refreshing %s token for user %s: %s: %s",
                       provider, user_id, type(e).__name__, e)
            await self._mark_status(user_id, ConnectionStatus.ERROR)
            return False

    async def _mark_status(self, user_id: str, status: ConnectionStatus) -> None:
        """Best-effort status update; refresh_tokens() reports via its return value."""
        try:
            await self.store.set_status(user_id, self.provider_type, status)
        except Exception as e:
            logger.error("Failed to mark %s connection of user %s as %s: %s",
                         self.provider_type.value, user_id, status.value, e)

    async def _request_token_refresh(self, refresh_token: str) -> TokenGrant:
        """
        Call the provider's OAuth2 grant_type=refresh_token endpoint.

        Raises:
            ConfigError: If the OAuth client is not configured
            TokenRefreshRejected: If the provider refuses the refresh token (400/401)
            RuntimeError: On any other non-2xx answer (rate limits, timeouts, 5xx)
            ValueError: If the response carries no access token
        """
        client_id, client_secret = self._client_credentials()
        if not client_id or not client_secret:
            raise ConfigError(f"OAuth client for {self.provider_type.value} is not configured")

        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_id,
            "client_secret": client_secret,
        }
        try:
            response = await self.http_client.post_form(
                self.token_url, data, timeout=self.settings.http_timeout
            )
        finally:
            data.clear()  # Clear credentials from memory

        if not response.ok:
            logger.warning("%s token endpoint answered HTTP %d: %s", self.get_provider_name(),
                           response.status_code, mask_credentials(response.body))
            if response.status_code in TOKEN_REFRESH_REJECTED_STATUSES:
                raise TokenRefreshRejected(response.status_code, response.body.get("error"))
            raise RuntimeError(f"Token endpoint returned HTTP {response.status_code}")

        access_token = response.body.get("access_token")
        if not access_token:
            logger.warning("%s token response without access_token: %s",
                           self.get_provider_name(), mask_credentials(response.body))
            raise ValueError("No access token in response")

        expires_in = response.body.get("expires_in")
        return TokenGrant(
            access_token=access_token,
            expires_in=int(expires_in) if expires_in else None,
            refresh_token=response.body.get("refresh_token"),
        )

    # =========================================================================
    # RETRY PROTOCOL
    # =========================================================================

    def _decrypt_access_token(self, connection: StorageConnection) -> str:
        try:
            return self.cipher.decrypt(connection.encrypted_access_token)
        except TokenCipherError as e:
            logger.error("Cannot decrypt %s access token of connection %s: %s",
                         self.provider_type.value, connection.id, e)
            raise

    async def _attempt(self, user_id: str, operation: str, call: Callable[[str], T]) -> T:
        """One provider call with the currently stored access token."""
        connection = await self.store.require_connection(user_id, self.provider_type)
        access_token = self._decrypt_access_token(connection)
        try:
            return await asyncio.to_thread(call, access_token)
        except Exception as exc:
            if self._is_auth_error(exc):
                raise _AuthFailure(operation) from exc
            error = self._translate_error(exc, operation)
            logger.warning("%s %s failed for user %s: %s",
                           self.get_provider_name(), operation, user_id, error.message)
            raise error from exc
        finally:
            del access_token

    async def _call_with_token(self, user_id: str, operation: str, call: Callable[[str], T]) -> T:
        """
        Run a provider call under the lazy refresh protocol.

        Args:
            user_id: Resource owner
            operation: Operation name for logs and errors
            call: Blocking function taking the plaintext access token; run in a thread

        Returns:
            Whatever call returns; last_used_at is updated before returning
        """
        name = self.get_provider_name()
        try:
            result = await self._attempt(user_id, operation, call)
        except _AuthFailure:
            logger.warning("%s token rejected for user %s during %s, attempting refresh...",
                           name, user_id, operation)
            if not await self.refresh_tokens(user_id):
                raise TokenExpiredError(
                    f"{name} token expired and refresh failed",
                    provider=self.provider_type.value,
                ) from None
            try:
                result = await self._attempt(user_id, operation, call)
            except _AuthFailure:
                raise TokenExpiredError(
                    f"{name} rejected the refreshed token",
                    provider=self.provider_type.value,
                ) from None

        await self.store.mark_used(user_id, self.provider_type)
        return result
