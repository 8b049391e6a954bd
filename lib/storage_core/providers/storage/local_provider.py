"""
Local Storage Provider
======================
Platform-owned object storage. No OAuth, no credential lookup: the
connection is always valid and there is never a token to refresh.

Storage keys look like 'project-id/mix.wav'. The key doubles as file_id
and path in the UploadResult.
"""

import logging
import mimetypes
import posixpath
import uuid
from typing import Optional

from .base import BaseStorageProvider, UploadResult
from .object_store import ObjectStore
from ...config.constants import DEFAULT_CONTENT_TYPE, DEFAULT_DOWNLOAD_URL_EXPIRY, ProviderType
from ...db.models import utcnow
from ...errors import ProviderApiError, ProviderFileNotFoundError

logger = logging.getLogger(__name__)


class LocalStorageAdapter(BaseStorageProvider):
    """Pass-through to the platform object store."""

    provider_type = ProviderType.LOCAL

    def __init__(self, object_store: ObjectStore):
        self.object_store = object_store

    async def _free_key(self, path: str) -> str:
        """Objects are never overwritten; a taken key gets a uuid-prefixed filename."""
        if not await self.object_store.exists(path):
            return path
        directory, name = posixpath.split(path)
        return posixpath.join(directory, f"{uuid.uuid4()}-{name}")

    async def upload(
        self,
        file: bytes,
        path: str,
        user_id: str,
        content_type: Optional[str] = None,
    ) -> UploadResult:
        if not self.validate_path(path):
            raise ProviderApiError(f"Invalid storage path: {path!r}", provider=self.provider_type.value)

        content_type = content_type or mimetypes.guess_type(path)[0] or DEFAULT_CONTENT_TYPE
        try:
            key = await self._free_key(path.lstrip("/"))
            await self.object_store.put(key, file, content_type)
        except (OSError, ValueError) as e:
            raise ProviderApiError(
                f"Local storage upload failed: {e}", provider=self.provider_type.value
            ) from e

        logger.info("Stored %s (%d bytes) for user %s", key, len(file), user_id)
        return UploadResult(
            file_id=key,
            path=key,
            size=len(file),
            metadata={
                "content_type": content_type,
                "uploaded_at": utcnow().isoformat(),
            },
        )

    async def get_download_url(
        self,
        file_id: str,
        user_id: str,
        expires_in: int = DEFAULT_DOWNLOAD_URL_EXPIRY,
    ) -> str:
        try:
            return await self.object_store.signed_url(file_id, expires_in)
        except FileNotFoundError as e:
            raise ProviderFileNotFoundError(
                f"File not found: {file_id}", provider=self.provider_type.value
            ) from e
        except (OSError, ValueError) as e:
            raise ProviderApiError(
                f"Could not sign download URL: {e}", provider=self.provider_type.value
            ) from e

    async def delete(self, file_id: str, user_id: str) -> None:
        try:
            await self.object_store.remove(file_id)
        except FileNotFoundError as e:
            raise ProviderFileNotFoundError(
                f"File not found: {file_id}", provider=self.provider_type.value
            ) from e
        except (OSError, ValueError) as e:
            raise ProviderApiError(
                f"Local storage delete failed: {e}", provider=self.provider_type.value
            ) from e
        logger.info("Deleted %s for user %s", file_id, user_id)

    async def validate_connection(self, user_id: str) -> bool:
        return True

    async def refresh_tokens(self, user_id: str) -> bool:
        return True
