"""
Storage connection model.

One row per user per external provider. Token columns only ever hold
ciphertext produced by TokenCipher. ConnectionInfo is the token-free view
that may be handed to code outside the storage core.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import Column, DateTime, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    pass


class StorageConnection(Base):
    __tablename__ = "storage_connections"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)
    provider = Column(String(32), nullable=False)
    provider_account_id = Column(String(256))
    provider_account_name = Column(String(256))
    encrypted_access_token = Column(Text, nullable=False)
    encrypted_refresh_token = Column(Text)
    encryption_key_version = Column(String(16), nullable=False)
    token_expires_at = Column(DateTime(timezone=True))
    status = Column(String(16), nullable=False, default="active")
    connected_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_used_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_storage_connections_user_provider"),
    )

    def to_info(self) -> "ConnectionInfo":
        return ConnectionInfo(
            provider=self.provider,
            provider_account_name=self.provider_account_name,
            status=self.status,
            connected_at=as_utc(self.connected_at),
            last_used_at=as_utc(self.last_used_at),
            token_expires_at=as_utc(self.token_expires_at),
        )

    def __repr__(self) -> str:
        # Ciphertexts are left out on purpose
        return (
            f"<StorageConnection(id={self.id}, user_id={self.user_id}, "
            f"provider={self.provider}, status={self.status}, "
            f"key_version={self.encryption_key_version})>"
        )


@dataclass(frozen=True)
class ConnectionInfo:
    """Storage connection information safe for API responses. Never holds tokens."""
    provider: str
    provider_account_name: Optional[str]
    status: str
    connected_at: Optional[datetime]
    last_used_at: Optional[datetime]
    token_expires_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "providerAccountName": self.provider_account_name,
            "status": self.status,
            "connectedAt": self.connected_at.isoformat() if self.connected_at else None,
            "lastUsedAt": self.last_used_at.isoformat() if self.last_used_at else None,
            "tokenExpiresAt": self.token_expires_at.isoformat() if self.token_expires_at else None,
        }
