"""
Storage Core - Google Drive Storage Provider
============================================
Google Drive implementation of the storage interface.

Features:
- Uploads into an 'UntitledOne' folder created on first use
- Lazy token refresh on HTTP 401 / RefreshError (see OAuthStorageProvider)
- Content download for the file content proxy

Path Format:
Unlike Dropbox which uses filesystem-style paths (/folder/file.wav),
Google Drive identifies files by ID. get_download_url() returns the file
ID; the content proxy streams the bytes through download().
"""

import io
import json
import mimetypes
import posixpath
from typing import Any, Callable, Dict, List, Optional, Tuple

from .base import OAuthStorageProvider, UploadResult
from ...config.constants import (
    APP_FOLDER_NAME,
    DEFAULT_CONTENT_TYPE,
    DEFAULT_DOWNLOAD_URL_EXPIRY,
    GOOGLE_DRIVE_FOLDER_MIME_TYPE,
    GOOGLE_QUOTA_REASONS,
    GOOGLE_TOKEN_URL,
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

# Lazy import Google libraries
_google_imported = False
_Credentials = None
_build = None
_HttpError = None
_MediaIoBaseDownload = None
_MediaIoBaseUpload = None
_RefreshError = None


def _import_google_libs():
    """Lazy import Google libraries only when needed"""
    global _google_imported, _Credentials, _build, _HttpError
    global _MediaIoBaseDownload, _MediaIoBaseUpload, _RefreshError

    if _google_imported:
        return

    try:
        from google.oauth2.credentials import Credentials
        from googleapiclient.discovery import build
        from googleapiclient.errors import HttpError
        from googleapiclient.http import MediaIoBaseDownload, MediaIoBaseUpload
        from google.auth.exceptions import RefreshError

        _Credentials = Credentials
        _build = build
        _HttpError = HttpError
        _MediaIoBaseDownload = MediaIoBaseDownload
        _MediaIoBaseUpload = MediaIoBaseUpload
        _RefreshError = RefreshError
        _google_imported = True

    except ImportError as e:
        raise ImportError(
            "Google API libraries not installed. "
            "Run: pip install google-auth google-api-python-client"
        ) from e


ServiceFactory = Callable[[str], Any]

UPLOAD_FIELDS = 'id, name, size, mimeType, createdTime, md5Checksum'


def _default_service_factory(access_token: str):
    """Build a Drive v3 service authorized with a bare access token."""
    _import_google_libs()
    credentials = _Credentials(token=access_token)
    return _build('drive', 'v3', credentials=credentials, cache_discovery=False)


def _error_reasons(exc) -> List[str]:
    """Extract error reasons from a Drive API error body."""
    content = getattr(exc, 'content', b'') or b''
    try:
        payload = json.loads(content.decode('utf-8') if isinstance(content, bytes) else content)
    except ValueError:
        return []
    error = payload.get('error') if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        return []
    return [
        item.get('reason', '')
        for item in error.get('errors', [])
        if isinstance(item, dict)
    ]


def _http_status(exc) -> Optional[int]:
    resp = getattr(exc, 'resp', None)
    status = getattr(resp, 'status', None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


class GoogleDriveAdapter(OAuthStorageProvider):
    """
    Google Drive storage adapter using stored OAuth2 tokens.

    Credential Requirements (from settings):
    - google_client_id: OAuth2 client ID
    - google_client_secret: OAuth2 client secret
    """

    provider_type = ProviderType.GOOGLE_DRIVE
    token_url = GOOGLE_TOKEN_URL

    def __init__(
        self,
        store: CredentialStore,
        cipher: TokenCipher,
        settings: StorageSettings,
        http_client: Optional[HttpClient] = None,
        service_factory: Optional[ServiceFactory] = None,
    ):
        super().__init__(store, cipher, settings, http_client)
        self._service_factory = service_factory or _default_service_factory

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def _get_or_create_app_folder(self, service) -> str:
        """Find the app folder, creating it on first use. Returns the folder ID."""
        query = (
            f"name='{APP_FOLDER_NAME}' and mimeType='{GOOGLE_DRIVE_FOLDER_MIME_TYPE}' "
            "and trashed=false"
        )
        results = service.files().list(
            q=query,
            spaces='drive',
            fields='files(id, name)',
        ).execute()

        files = results.get('files', [])
        if files and files[0].get('id'):
            return files[0]['id']

        created = service.files().create(
            body={'name': APP_FOLDER_NAME, 'mimeType': GOOGLE_DRIVE_FOLDER_MIME_TYPE},
            fields='id',
        ).execute()
        if not created.get('id'):
            raise RuntimeError("Failed to create folder in Google Drive")
        return created['id']

    async def upload(
        self,
        file: bytes,
        path: str,
        user_id: str,
        content_type: Optional[str] = None,
    ) -> UploadResult:
        """
        Upload a file into the app folder.

        Args:
            file: File contents as bytes
            path: Destination path; only the filename is used on Drive
            user_id: Owner whose Drive receives the file
            content_type: MIME type (guessed from the filename when omitted)

        Returns:
            UploadResult with the Drive file ID, file name and size
        """
        if not self.validate_path(path):
            raise ProviderApiError(
                f"Invalid Google Drive path: {path!r}", provider=self.provider_type.value
            )
        _import_google_libs()

        filename = posixpath.basename(path.replace("\\", "/").rstrip("/"))
        mime_type = content_type or mimetypes.guess_type(filename)[0] or DEFAULT_CONTENT_TYPE

        def call(access_token: str) -> Dict[str, Any]:
            service = self._service_factory(access_token)
            folder_id = self._get_or_create_app_folder(service)
            media = _MediaIoBaseUpload(io.BytesIO(file), mimetype=mime_type, resumable=True)
            return service.files().create(
                body={'name': filename, 'parents': [folder_id], 'mimeType': mime_type},
                media_body=media,
                fields=UPLOAD_FIELDS,
            ).execute()

        created = await self._call_with_token(user_id, "upload", call)
        return UploadResult(
            file_id=created.get('id', ''),
            path=created.get('name') or path,
            size=int(created.get('size') or len(file)),
            metadata={
                'mime_type': created.get('mimeType'),
                'created_time': created.get('createdTime'),
                'md5_checksum': created.get('md5Checksum'),
            },
        )

    async def get_download_url(
        self,
        file_id: str,
        user_id: str,
        expires_in: int = DEFAULT_DOWNLOAD_URL_EXPIRY,
    ) -> str:
        """
        Return the file ID for the content proxy after checking the file exists.

        Drive has no pre-signed URLs for private files, so the proxy calls
        download() with the owner's user_id instead.
        """
        def call(access_token: str) -> str:
            service = self._service_factory(access_token)
            return service.files().get(fileId=file_id, fields='id').execute()['id']

        return await self._call_with_token(user_id, "get_download_url", call)

    async def download(self, file_id: str, user_id: str) -> bytes:
        """
        Download file contents with the owner's credentials.

        Args:
            file_id: Google Drive file ID (not a filesystem path)
            user_id: Owner of the file

        Returns:
            File contents as bytes
        """
        _import_google_libs()

        def call(access_token: str) -> bytes:
            service = self._service_factory(access_token)
            request = service.files().get_media(fileId=file_id)
            file_buffer = io.BytesIO()
            downloader = _MediaIoBaseDownload(file_buffer, request)

            done = False
            while not done:
                _, done = downloader.next_chunk()

            return file_buffer.getvalue()

        return await self._call_with_token(user_id, "download", call)

    async def delete(self, file_id: str, user_id: str) -> None:
        def call(access_token: str) -> None:
            self._service_factory(access_token).files().delete(fileId=file_id).execute()

        await self._call_with_token(user_id, "delete", call)

    # =========================================================================
    # PROVIDER HOOKS
    # =========================================================================

    def _client_credentials(self) -> Tuple[str, str]:
        return self.settings.google_client_id, self.settings.google_client_secret

    def _is_auth_error(self, exc: Exception) -> bool:
        _import_google_libs()
        if isinstance(exc, _RefreshError):
            return True
        return isinstance(exc, _HttpError) and _http_status(exc) == 401

    def _translate_error(self, exc: Exception, operation: str) -> StorageProviderError:
        _import_google_libs()
        provider = self.provider_type.value

        if isinstance(exc, _HttpError):
            status = _http_status(exc)
            reasons = _error_reasons(exc)
            details = {"operation": operation, "status": status, "reasons": reasons}

            if status == 403 and (
                GOOGLE_QUOTA_REASONS.intersection(reasons) or "storageQuotaExceeded" in str(exc)
            ):
                return QuotaExceededError("Google Drive storage is full", provider=provider, details=details)
            if status == 404:
                return ProviderFileNotFoundError(
                    "File not found in Google Drive", provider=provider, details=details
                )
            return ProviderApiError(
                f"Google Drive {operation} failed with HTTP {status}",
                provider=provider,
                details=details,
            )

        return ProviderApiError(
            f"Google Drive {operation} failed: {type(exc).__name__}: {exc}",
            provider=provider,
            details={"operation": operation},
        )
