"""
Dropbox Storage Provider
========================
Dropbox implementation of the storage interface.

Features:
- Uploads into the /UntitledOne app folder (add mode, autorename)
- Chunked upload sessions for files larger than UPLOAD_CHUNK_SIZE
- Temporary download links
- Lazy token refresh on AuthError / HTTP 401 (see OAuthStorageProvider)

The Dropbox SDK is blocking; every call runs in a worker thread with a
client built for that single attempt.
"""

from typing import Callable, Optional, Tuple

import dropbox
from dropbox.exceptions import ApiError, AuthError, HttpError
from dropbox.files import CommitInfo, FileMetadata, UploadSessionCursor, WriteMode

from .base import OAuthStorageProvider, UploadResult
from ...config.constants import (
    APP_FOLDER_NAME,
    DEFAULT_DOWNLOAD_URL_EXPIRY,
    DROPBOX_TOKEN_URL,
    UPLOAD_CHUNK_SIZE,
    ProviderType,
)
from ...config.credentials import TokenCipher
from ...config.settings import StorageSettings
from ...db.credential_store import CredentialStore
from ...errors import (
    ProviderApiError,
    ProviderFileNotFoundError,
    QuotaExceededError,
    StorageProviderError,
)
from ...utils.http import HttpClient

ClientFactory = Callable[[str], dropbox.Dropbox]


def _default_client_factory(timeout: float) -> ClientFactory:
    def build(access_token: str) -> dropbox.Dropbox:
        return dropbox.Dropbox(oauth2_access_token=access_token, timeout=timeout)
    return build


def normalize_dropbox_path(path: str) -> str:
    """
    Normalize a path relative to the app folder.

    'mix.wav' -> '/UntitledOne/mix.wav'
    '/project/mix.wav' -> '/UntitledOne/project/mix.wav'
    """
    relative = path.replace("\\", "/").strip("/")
    return f"/{APP_FOLDER_NAME}/{relative}"


class DropboxAdapter(OAuthStorageProvider):
    """
    Dropbox storage adapter.

    file_id values returned by upload() are Dropbox ids ('id:...'), which
    Dropbox accepts anywhere a path is expected.
    """

    provider_type = ProviderType.DROPBOX
    token_url = DROPBOX_TOKEN_URL

    def __init__(
        self,
        store: CredentialStore,
        cipher: TokenCipher,
        settings: StorageSettings,
        http_client: Optional[HttpClient] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        super().__init__(store, cipher, settings, http_client)
        self._client_factory = client_factory or _default_client_factory(settings.http_timeout)

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def upload(
        self,
        file: bytes,
        path: str,
        user_id: str,
        content_type: Optional[str] = None,
    ) -> UploadResult:
        if not self.validate_path(path):
            raise ProviderApiError(f"Invalid Dropbox path: {path!r}", provider=self.provider_type.value)

        dropbox_path = normalize_dropbox_path(path)

        def call(access_token: str) -> FileMetadata:
            client = self._client_factory(access_token)
            if len(file) <= UPLOAD_CHUNK_SIZE:
                return client.files_upload(
                    file, dropbox_path, mode=WriteMode('add'), autorename=True
                )
            return self._chunked_upload(client, file, dropbox_path)

        metadata = await self._call_with_token(user_id, "upload", call)
        return UploadResult(
            file_id=metadata.id,
            path=metadata.path_display or dropbox_path,
            size=metadata.size,
            metadata={
                "rev": metadata.rev,
                "server_modified": (
                    metadata.server_modified.isoformat() if metadata.server_modified else None
                ),
                "content_hash": metadata.content_hash,
            },
        )

    def _chunked_upload(self, client: dropbox.Dropbox, content: bytes, remote_path: str) -> FileMetadata:
        """Upload large file using chunked session."""
        file_size = len(content)

        session = client.files_upload_session_start(content[:UPLOAD_CHUNK_SIZE])
        offset = UPLOAD_CHUNK_SIZE
        cursor = UploadSessionCursor(session_id=session.session_id, offset=offset)
        commit = CommitInfo(path=remote_path, mode=WriteMode('add'), autorename=True)

        while file_size - offset > UPLOAD_CHUNK_SIZE:
            client.files_upload_session_append_v2(content[offset:offset + UPLOAD_CHUNK_SIZE], cursor)
            offset += UPLOAD_CHUNK_SIZE
            cursor.offset = offset

        # Final chunk
        return client.files_upload_session_finish(content[offset:], cursor, commit)

    async def get_download_url(
        self,
        file_id: str,
        user_id: str,
        expires_in: int = DEFAULT_DOWNLOAD_URL_EXPIRY,
    ) -> str:
        # Dropbox fixes temporary link lifetime at 4 hours; expires_in is not configurable
        def call(access_token: str) -> str:
            return self._client_factory(access_token).files_get_temporary_link(file_id).link

        return await self._call_with_token(user_id, "get_download_url", call)

    async def delete(self, file_id: str, user_id: str) -> None:
        def call(access_token: str) -> None:
            self._client_factory(access_token).files_delete_v2(file_id)

        await self._call_with_token(user_id, "delete", call)

    # =========================================================================
    # PROVIDER HOOKS
    # =========================================================================

    def _client_credentials(self) -> Tuple[str, str]:
        return self.settings.dropbox_app_key, self.settings.dropbox_app_secret

    def _is_auth_error(self, exc: Exception) -> bool:
        if isinstance(exc, AuthError):
            return True
        return isinstance(exc, HttpError) and exc.status_code == 401

    def _translate_error(self, exc: Exception, operation: str) -> StorageProviderError:
        provider = self.provider_type.value
        if isinstance(exc, ApiError):
            # Stone unions repr as e.g. UploadError('path', UploadWriteFailed(reason=WriteError('insufficient_space', None)))
            error_repr = repr(exc.error)
            details = {"operation": operation, "request_id": exc.request_id}
            if "insufficient_space" in error_repr:
                return QuotaExceededError("Dropbox storage is full", provider=provider, details=details)
            if "not_found" in error_repr:
                return ProviderFileNotFoundError(
                    "File not found in Dropbox", provider=provider, details=details
                )
            return ProviderApiError(
                f"Dropbox {operation} failed: {error_repr}", provider=provider, details=details
            )
        if isinstance(exc, HttpError):
            return ProviderApiError(
                f"Dropbox {operation} failed with HTTP {exc.status_code}",
                provider=provider,
                details={"operation": operation, "status": exc.status_code},
            )
        return ProviderApiError(
            f"Dropbox {operation} failed: {type(exc).__name__}: {exc}",
            provider=provider,
            details={"operation": operation},
        )
