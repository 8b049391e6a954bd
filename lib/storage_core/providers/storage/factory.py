"""
Storage Factory
===============
Hands out storage adapters for a (provider, user) pair.

Local storage needs no credentials. External providers are only handed out
when the user's stored connection is active; adapter modules are imported
on first use so the Dropbox and Google SDKs stay out of unrelated code paths.
"""

import logging
from typing import Any, Callable, List, Optional, Union

from .base import BaseStorageProvider
from .object_store import FilesystemObjectStore, ObjectStore
from ...config.constants import ConnectionStatus, ProviderType
from ...config.credentials import TokenCipher
from ...config.settings import StorageSettings
from ...db.credential_store import CredentialStore
from ...errors import NotConnectedError
from ...utils.http import HttpClient

logger = logging.getLogger(__name__)


class StorageProviderFactory:
    """
    Factory for storage provider instances.

    The factory handles:
    1. Provider type normalization ('google-drive' -> google_drive)
    2. Connection gating (exists and status == active)
    3. Adapter construction with shared store, cipher and HTTP client

    Usage:
        factory = StorageProviderFactory(store, cipher, settings)
        provider = await factory.get("dropbox", owner_id)
        result = await provider.upload(data, "project-id/mix.wav", owner_id)
    """

    def __init__(
        self,
        store: CredentialStore,
        cipher: TokenCipher,
        settings: StorageSettings,
        http_client: Optional[HttpClient] = None,
        object_store: Optional[ObjectStore] = None,
        dropbox_client_factory: Optional[Callable[[str], Any]] = None,
        drive_service_factory: Optional[Callable[[str], Any]] = None,
    ):
        self.store = store
        self.cipher = cipher
        self.settings = settings
        self.http_client = http_client
        self._object_store = object_store
        self._dropbox_client_factory = dropbox_client_factory
        self._drive_service_factory = drive_service_factory

    @property
    def object_store(self) -> ObjectStore:
        if self._object_store is None:
            self._object_store = FilesystemObjectStore(
                self.settings.local_storage_root,
                self.settings.local_storage_base_url,
                self.settings.local_storage_signing_secret,
            )
        return self._object_store

    async def get(
        self,
        provider_type: Union[ProviderType, str],
        user_id: str,
    ) -> BaseStorageProvider:
        """
        Get the adapter for a provider, authenticated as user_id.

        Args:
            provider_type: ProviderType or identifier ('local', 'dropbox', 'google_drive')
            user_id: Resource owner whose credentials the adapter will use

        Returns:
            Storage adapter

        Raises:
            ValueError: If provider type unknown
            NotConnectedError: If the connection is missing or not active
        """
        provider = ProviderType.parse(provider_type)

        if provider == ProviderType.LOCAL:
            return self._create_local()

        connection = await self.store.require_connection(user_id, provider)
        if connection.status != ConnectionStatus.ACTIVE.value:
            logger.info("%s connection for user %s is %s; not handing out adapter",
                        provider.value, user_id, connection.status)
            raise NotConnectedError(
                f"Storage connection for {provider.value} is {connection.status}",
                provider=provider.value,
                details={"status": connection.status},
            )

        if provider == ProviderType.DROPBOX:
            return self._create_dropbox()
        elif provider == ProviderType.GOOGLE_DRIVE:
            return self._create_google_drive()
        else:
            raise ValueError(f"No adapter registered for provider: {provider.value}")

    async def has_active_connection(
        self,
        provider_type: Union[ProviderType, str],
        user_id: str,
    ) -> bool:
        """Check whether get() would succeed. Never raises."""
        try:
            provider = ProviderType.parse(provider_type)
            if provider == ProviderType.LOCAL:
                return True
            connection = await self.store.get_connection(user_id, provider)
        except Exception as e:
            logger.warning("Could not check %s connection for user %s: %s",
                           provider_type, user_id, e)
            return False
        return connection is not None and connection.status == ConnectionStatus.ACTIVE.value

    @staticmethod
    def get_supported_providers() -> List[str]:
        """Get list of supported provider types."""
        return [provider.value for provider in ProviderType]

    @staticmethod
    def is_provider_supported(provider_type: str) -> bool:
        """Check if a provider type is supported."""
        try:
            ProviderType.parse(provider_type)
        except ValueError:
            return False
        return True

    # =========================================================================
    # CONSTRUCTION
    # =========================================================================

    def _create_local(self) -> BaseStorageProvider:
        from .local_provider import LocalStorageAdapter
        return LocalStorageAdapter(self.object_store)

    def _create_dropbox(self) -> BaseStorageProvider:
        from .dropbox_provider import DropboxAdapter
        return DropboxAdapter(
            self.store,
            self.cipher,
            self.settings,
            http_client=self.http_client,
            client_factory=self._dropbox_client_factory,
        )

    def _create_google_drive(self) -> BaseStorageProvider:
        from .google_drive_provider import GoogleDriveAdapter
        return GoogleDriveAdapter(
            self.store,
            self.cipher,
            self.settings,
            http_client=self.http_client,
            service_factory=self._drive_service_factory,
        )
