"""
Credential store: privileged access to persisted storage connections.

This is the only code that reads or writes the storage_connections table.
It runs with full database privileges (bypassing row-level security) because
adapters act on the *resource owner's* credentials, which are not
necessarily the requester's.

The store never sees plaintext tokens: callers encrypt with TokenCipher
before saving and decrypt after loading.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..config.constants import ConnectionStatus, ProviderType
from ..config.settings import StorageSettings
from ..errors import NotConnectedError
from .models import Base, ConnectionInfo, StorageConnection, utcnow

logger = logging.getLogger(__name__)

ProviderLike = Union[ProviderType, str]

# Columns callers may change through update_connection()
_UPDATABLE_FIELDS = frozenset([
    "encrypted_access_token",
    "encrypted_refresh_token",
    "encryption_key_version",
    "token_expires_at",
    "status",
    "last_used_at",
    "provider_account_id",
    "provider_account_name",
])


def _provider_value(provider: ProviderLike) -> str:
    return ProviderType.parse(provider).value


class CredentialStore:
    """
    Async repository for StorageConnection rows.

    Usage:
        store = CredentialStore.from_settings(settings)
        await store.create_schema()
        conn = await store.get_connection(user_id, ProviderType.DROPBOX)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        engine: Optional[AsyncEngine] = None,
    ):
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    def from_settings(cls, settings: StorageSettings, **engine_kwargs) -> "CredentialStore":
        """Create a store (and its engine) from the configured database URL."""
        engine = create_async_engine(settings.database_url, **engine_kwargs)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return cls(session_factory, engine=engine)

    async def create_schema(self) -> None:
        """Create the storage_connections table if it does not exist."""
        if self._engine is None:
            raise RuntimeError("create_schema() needs a store built with an engine")
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    # =========================================================================
    # READS
    # =========================================================================

    async def get_connection(
        self, user_id: str, provider: ProviderLike
    ) -> Optional[StorageConnection]:
        """Return the connection row for (user, provider), or None."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(StorageConnection).where(
                    StorageConnection.user_id == user_id,
                    StorageConnection.provider == _provider_value(provider),
                )
            )
            return result.scalar_one_or_none()

    async def require_connection(self, user_id: str, provider: ProviderLike) -> StorageConnection:
        """
        Return the connection row or raise.

        Raises:
            NotConnectedError: If the user never connected this provider
        """
        connection = await self.get_connection(user_id, provider)
        if connection is None:
            value = _provider_value(provider)
            raise NotConnectedError(
                f"No storage connection found for provider: {value}",
                provider=value,
            )
        return connection

    async def list_connections(self, user_id: str) -> List[ConnectionInfo]:
        """All connections for a user, newest first, without tokens."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(StorageConnection)
                .where(StorageConnection.user_id == user_id)
                .order_by(StorageConnection.connected_at.desc())
            )
            return [row.to_info() for row in result.scalars().all()]

    async def list_for_rotation(self, target_version: str) -> List[StorageConnection]:
        """Connections whose tokens were encrypted with a version other than target."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(StorageConnection)
                .where(StorageConnection.encryption_key_version != target_version)
                .order_by(StorageConnection.id)
            )
            return list(result.scalars().all())

    async def list_expiring(self, before: datetime) -> List[StorageConnection]:
        """Active connections whose access token expires before the given time."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(StorageConnection).where(
                    StorageConnection.status == ConnectionStatus.ACTIVE.value,
                    StorageConnection.token_expires_at.is_not(None),
                    StorageConnection.token_expires_at < before,
                )
            )
            return list(result.scalars().all())

    # =========================================================================
    # WRITES
    # =========================================================================

    async def save_connection(
        self,
        user_id: str,
        provider: ProviderLike,
        *,
        encrypted_access_token: str,
        encryption_key_version: str,
        encrypted_refresh_token: Optional[str] = None,
        token_expires_at: Optional[datetime] = None,
        provider_account_id: Optional[str] = None,
        provider_account_name: Optional[str] = None,
    ) -> StorageConnection:
        """
        Create or replace the connection for (user, provider).

        Called once the OAuth consent flow has produced the initial tokens.
        Reconnecting resets the status to active.
        """
        value = _provider_value(provider)
        if value == ProviderType.LOCAL.value:
            raise ValueError("Local storage has no stored connection")

        now = utcnow()
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(StorageConnection).where(
                        StorageConnection.user_id == user_id,
                        StorageConnection.provider == value,
                    )
                )
                connection = result.scalar_one_or_none()
                if connection is None:
                    connection = StorageConnection(user_id=user_id, provider=value)
                    session.add(connection)
                    logger.info("Created %s connection for user %s", value, user_id)
                else:
                    logger.info("Updated %s connection for user %s", value, user_id)

                connection.encrypted_access_token = encrypted_access_token
                connection.encrypted_refresh_token = encrypted_refresh_token
                connection.encryption_key_version = encryption_key_version
                connection.token_expires_at = token_expires_at
                connection.provider_account_id = provider_account_id
                connection.provider_account_name = provider_account_name
                connection.status = ConnectionStatus.ACTIVE.value
                connection.connected_at = now
                connection.updated_at = now
            return connection

    async def update_connection(
        self, user_id: str, provider: ProviderLike, **updates: Any
    ) -> bool:
        """
        Apply a partial update as one UPDATE statement.

        Returns:
            True if a row was updated, False if no connection exists

        Raises:
            ValueError: If an unknown column is passed
        """
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update storage connection fields: {sorted(unknown)}")

        values: Dict[str, Any] = dict(updates)
        if isinstance(values.get("status"), ConnectionStatus):
            values["status"] = values["status"].value
        values["updated_at"] = utcnow()

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(StorageConnection)
                    .where(
                        StorageConnection.user_id == user_id,
                        StorageConnection.provider == _provider_value(provider),
                    )
                    .values(**values)
                )
            return result.rowcount > 0

    async def set_status(
        self, user_id: str, provider: ProviderLike, status: ConnectionStatus
    ) -> bool:
        return await self.update_connection(user_id, provider, status=status)

    async def mark_used(self, user_id: str, provider: ProviderLike) -> bool:
        """Record that the connection was just used successfully."""
        return await self.update_connection(user_id, provider, last_used_at=utcnow())

    async def update_encrypted_tokens(
        self,
        connection: StorageConnection,
        *,
        encrypted_access_token: str,
        encrypted_refresh_token: Optional[str],
        encryption_key_version: str,
    ) -> bool:
        """
        Replace both ciphertexts and the key version of one row atomically.

        Compare-and-swap against the row as it was read: the update only
        applies while the stored access token and key version still match
        `connection`. Returns False when the row was changed (e.g. by a token
        refresh) or deleted in the meantime.
        """
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(StorageConnection)
                    .where(
                        StorageConnection.id == connection.id,
                        StorageConnection.encryption_key_version == connection.encryption_key_version,
                        StorageConnection.encrypted_access_token == connection.encrypted_access_token,
                    )
                    .values(
                        encrypted_access_token=encrypted_access_token,
                        encrypted_refresh_token=encrypted_refresh_token,
                        encryption_key_version=encryption_key_version,
                        updated_at=utcnow(),
                    )
                )
            return result.rowcount > 0

    async def delete_connection(self, user_id: str, provider: ProviderLike) -> bool:
        """
        Remove a connection when the user disconnects the provider.

        Files stored at the provider are left untouched.
        """
        value = _provider_value(provider)
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(StorageConnection).where(
                        StorageConnection.user_id == user_id,
                        StorageConnection.provider == value,
                    )
                )
        deleted = result.rowcount > 0
        if deleted:
            logger.info("Disconnected %s for user %s", value, user_id)
        return deleted
