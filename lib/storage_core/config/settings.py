"""
Storage Settings
================
Immutable configuration value built once from the environment and injected
into TokenCipher, CredentialStore, the adapters and the factory.

Nothing in this package reads os.environ after StorageSettings.from_env()
returns, so tests construct settings directly.

Key material:
    STORAGE_TOKEN_ENCRYPTION_KEY_V1="<64 hex chars>"
    STORAGE_TOKEN_ENCRYPTION_KEY_V2="<64 hex chars>"
    STORAGE_TOKEN_ENCRYPTION_CURRENT_VERSION="v2"
"""

import os
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from .constants import (
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_KEY_VERSION,
    DEFAULT_MAX_USER_STORAGE_MB,
    ENCRYPTION_CURRENT_VERSION_ENV,
    ENCRYPTION_KEY_BYTES,
    ENCRYPTION_KEY_ENV_PREFIX,
)
from ..errors import ConfigError

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]+$")


def normalize_key_version(version: str) -> str:
    """Key versions are case-insensitive; 'V2' and 'v2' name the same key."""
    return (version or "").strip().lower()


def parse_hex_key(version: str, key_hex: str) -> bytes:
    """
    Decode and validate one hex-encoded AES-256 key.

    Raises:
        ConfigError: If the key is not 32 bytes of hex
    """
    key_hex = (key_hex or "").strip()
    if not _HEX_KEY_RE.match(key_hex) or len(key_hex) != ENCRYPTION_KEY_BYTES * 2:
        raise ConfigError(
            f"Encryption key for version {version} must be "
            f"{ENCRYPTION_KEY_BYTES * 2} hex characters"
        )
    return bytes.fromhex(key_hex)


@dataclass(frozen=True)
class StorageSettings:
    """
    Immutable configuration for the storage core.

    Attributes:
        encryption_keys: Versioned key registry {version: 32-byte key}
        current_key_version: Version used for new encryptions
        dropbox_app_key / dropbox_app_secret: Dropbox OAuth client
        google_client_id / google_client_secret: Google OAuth client
        database_url: SQLAlchemy async URL for the credential store
        local_storage_root: Directory backing the local object store
        local_storage_base_url: Public base URL for signed local downloads
        local_storage_signing_secret: HMAC secret for signed local downloads
        max_user_storage_mb: Per-user byte budget for local storage
        http_timeout: Timeout for token endpoint calls (seconds)
    """
    encryption_keys: Mapping[str, bytes] = field(default_factory=dict)
    current_key_version: str = DEFAULT_KEY_VERSION
    dropbox_app_key: str = ""
    dropbox_app_secret: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""
    database_url: str = "sqlite+aiosqlite:///storage_core.db"
    local_storage_root: str = "./storage"
    local_storage_base_url: str = "/storage"
    local_storage_signing_secret: str = ""
    max_user_storage_mb: int = DEFAULT_MAX_USER_STORAGE_MB
    http_timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS

    def __post_init__(self):
        keys = {
            normalize_key_version(version): key
            for version, key in dict(self.encryption_keys).items()
        }
        for version, key in keys.items():
            if len(key) != ENCRYPTION_KEY_BYTES:
                raise ConfigError(
                    f"Encryption key for version {version} must be {ENCRYPTION_KEY_BYTES} bytes"
                )
        object.__setattr__(self, "encryption_keys", MappingProxyType(keys))
        object.__setattr__(
            self, "current_key_version", normalize_key_version(self.current_key_version)
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StorageSettings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read instead of os.environ (tests)

        Raises:
            ConfigError: If a key is malformed or the current version has no key
        """
        env = os.environ if environ is None else environ

        keys = {}
        for name, value in env.items():
            if name.startswith(ENCRYPTION_KEY_ENV_PREFIX) and value:
                version = normalize_key_version(name[len(ENCRYPTION_KEY_ENV_PREFIX):])
                keys[version] = parse_hex_key(version, value)

        current = normalize_key_version(
            env.get(ENCRYPTION_CURRENT_VERSION_ENV) or DEFAULT_KEY_VERSION
        )
        if keys and current not in keys:
            raise ConfigError(
                f"Encryption key for version {current} not found. "
                f"Set {ENCRYPTION_KEY_ENV_PREFIX}{current.upper()} in environment."
            )

        try:
            max_mb = int(env.get("MAX_USER_STORAGE_MB") or DEFAULT_MAX_USER_STORAGE_MB)
        except ValueError:
            max_mb = DEFAULT_MAX_USER_STORAGE_MB
        if max_mb <= 0:
            max_mb = DEFAULT_MAX_USER_STORAGE_MB

        try:
            timeout = float(env.get("STORAGE_HTTP_TIMEOUT") or DEFAULT_HTTP_TIMEOUT_SECONDS)
        except ValueError:
            timeout = DEFAULT_HTTP_TIMEOUT_SECONDS

        return cls(
            encryption_keys=keys,
            current_key_version=current,
            dropbox_app_key=env.get("DROPBOX_APP_KEY", ""),
            dropbox_app_secret=env.get("DROPBOX_APP_SECRET", ""),
            google_client_id=env.get("GOOGLE_DRIVE_CLIENT_ID", ""),
            google_client_secret=env.get("GOOGLE_DRIVE_CLIENT_SECRET", ""),
            database_url=env.get("STORAGE_DATABASE_URL") or cls.database_url,
            local_storage_root=env.get("LOCAL_STORAGE_ROOT") or cls.local_storage_root,
            local_storage_base_url=env.get("LOCAL_STORAGE_BASE_URL") or cls.local_storage_base_url,
            local_storage_signing_secret=env.get("LOCAL_STORAGE_SIGNING_SECRET", ""),
            max_user_storage_mb=max_mb,
            http_timeout=timeout,
        )

    @property
    def max_user_storage_bytes(self) -> int:
        return self.max_user_storage_mb * 1024 * 1024

    @property
    def key_versions(self):
        """Configured key versions, sorted."""
        return sorted(self.encryption_keys)

    def has_key(self, version: str) -> bool:
        return normalize_key_version(version) in self.encryption_keys

    def dropbox_configured(self) -> bool:
        return bool(self.dropbox_app_key and self.dropbox_app_secret)

    def google_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    def __repr__(self) -> str:
        # Key material and client secrets stay out of reprs and logs
        return (
            f"StorageSettings(key_versions={self.key_versions}, "
            f"current_key_version={self.current_key_version!r}, "
            f"database_url={self.database_url!r})"
        )
