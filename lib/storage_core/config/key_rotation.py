"""
Key Rotation
============
Background job that re-encrypts every stored token with a new key version.

Usage:
    1. Add the new key: STORAGE_TOKEN_ENCRYPTION_KEY_V2
    2. Set STORAGE_TOKEN_ENCRYPTION_CURRENT_VERSION=v2 so new tokens use it
    3. Run rotate_encryption_keys(store, cipher, "v2")
    4. Keep the v1 key configured until the job reports failed == 0

Records are processed one at a time to bound load on the credential table.
A failing record is counted and logged; the batch carries on. Re-running the
job only touches records still on an old version.

Each write is a compare-and-swap against the row as scanned, so a token
refresh that lands mid-batch is never overwritten with the older tokens.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .credentials import TokenCipher
from .settings import normalize_key_version
from ..db.credential_store import CredentialStore

logger = logging.getLogger(__name__)


@dataclass
class RotationStats:
    """Result of a key rotation run."""
    total: int = 0
    successful: int = 0
    superseded: int = 0
    failed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "superseded": self.superseded,
            "failed": self.failed,
            "errors": list(self.errors),
        }


async def rotate_encryption_keys(
    store: CredentialStore,
    cipher: TokenCipher,
    new_version: str,
) -> RotationStats:
    """
    Re-encrypt all connections not yet on new_version.

    Args:
        store: Credential store
        cipher: Cipher holding both the old and the new keys
        new_version: Target key version (e.g. 'v2')

    Returns:
        RotationStats with per-record failures listed

    Raises:
        ConfigError: If no key is configured for new_version
    """
    new_version = normalize_key_version(new_version)
    # Fail the whole job up front rather than every record
    cipher.encrypt("", new_version)

    connections = await store.list_for_rotation(new_version)
    stats = RotationStats(total=len(connections))
    logger.info("Rotating %d connection(s) to key version %s", stats.total, new_version)

    for conn in connections:
        try:
            access_token = cipher.decrypt(conn.encrypted_access_token)
            refresh_token = (
                cipher.decrypt(conn.encrypted_refresh_token)
                if conn.encrypted_refresh_token
                else None
            )

            new_access = cipher.encrypt(access_token, new_version)
            new_refresh = cipher.encrypt(refresh_token, new_version) if refresh_token else None
            del access_token, refresh_token

            updated = await store.update_encrypted_tokens(
                conn,
                encrypted_access_token=new_access,
                encrypted_refresh_token=new_refresh,
                encryption_key_version=new_version,
            )
            if updated:
                stats.successful += 1
                logger.info("Rotated keys for connection %s (%s)", conn.id, conn.provider)
            else:
                # Rewritten by a refresh or deleted since the scan; a rerun
                # picks the row up again if it is still on an old version
                stats.superseded += 1
                logger.info("Connection %s changed during rotation; left as is", conn.id)

        except Exception as e:
            stats.failed += 1
            message = f"{type(e).__name__}: {e}"
            stats.errors.append({"connection_id": conn.id, "error": message})
            logger.error("Failed to rotate keys for connection %s: %s", conn.id, message)

    logger.info(
        "Key rotation to %s finished: %d successful, %d superseded, %d failed",
        new_version, stats.successful, stats.superseded, stats.failed,
    )
    return stats
