"""
Credentials Management
======================
Versioned encryption of OAuth tokens at rest.

Tokens are encrypted with AES-256-GCM. Each ciphertext embeds the key
version it was produced with:

    version:iv:authTag:ciphertext      (iv/authTag/ciphertext hex encoded)
    v1:1f2e...:9a8b...:c0ffee...

Decryption looks the key up by the embedded version, so old ciphertexts stay
readable while new encryptions use the current version. Keep the old key
configured until rotate_encryption_keys() has moved every record.

To generate a new key:
    from storage_core.config import generate_encryption_key
    print(generate_encryption_key())

Add it to the environment as STORAGE_TOKEN_ENCRYPTION_KEY_V2="generated-key".
"""

import os
import re
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .constants import (
    ENCRYPTION_IV_BYTES,
    ENCRYPTION_KEY_BYTES,
    ENCRYPTION_KEY_ENV_PREFIX,
    ENCRYPTION_TAG_BYTES,
)
from .settings import StorageSettings, normalize_key_version
from ..errors import ConfigError, DecryptionError, FormatError

# encrypt() only emits lowercase hex
_HEX_SEGMENT = re.compile(r"[0-9a-f]*")


def generate_encryption_key() -> str:
    """
    Generate a new AES-256 key for a new key version.

    Returns:
        64-character hex string
    """
    return AESGCM.generate_key(bit_length=ENCRYPTION_KEY_BYTES * 8).hex()


class TokenCipher:
    """
    Encrypts and decrypts OAuth tokens with versioned AES-256-GCM keys.

    Usage:
        cipher = TokenCipher(StorageSettings.from_env())
        stored = cipher.encrypt("sl.access-token")
        plaintext = cipher.decrypt(stored)
    """

    def __init__(self, settings: StorageSettings):
        self._keys = settings.encryption_keys
        self.current_version = settings.current_key_version

    def _get_key(self, version: str) -> bytes:
        key = self._keys.get(normalize_key_version(version))
        if key is None:
            env_var = f"{ENCRYPTION_KEY_ENV_PREFIX}{normalize_key_version(version).upper()}"
            raise ConfigError(
                f"Encryption key for version {version} not found. Set {env_var} in environment."
            )
        return key

    def encrypt(self, plaintext: str, version: Optional[str] = None) -> str:
        """
        Encrypt a token.

        Args:
            plaintext: Token to encrypt
            version: Key version (defaults to the current version)

        Returns:
            Encrypted token string 'version:iv:authTag:ciphertext'

        Raises:
            ConfigError: If no key is configured for the version
        """
        version = normalize_key_version(version or self.current_version)
        key = self._get_key(version)

        iv = os.urandom(ENCRYPTION_IV_BYTES)
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-ENCRYPTION_TAG_BYTES], sealed[-ENCRYPTION_TAG_BYTES:]

        return f"{version}:{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, encrypted: str) -> str:
        """
        Decrypt a token produced by encrypt().

        Raises:
            FormatError: If the payload does not have exactly 4 segments
            ConfigError: If no key is configured for the embedded version
            DecryptionError: If the payload was tampered with or is corrupt
        """
        parts = encrypted.split(":") if isinstance(encrypted, str) else []
        if len(parts) != 4 or not parts[0]:
            raise FormatError("Invalid encrypted token format")

        version, iv_hex, tag_hex, ciphertext_hex = parts
        key = self._get_key(version)

        if not all(_HEX_SEGMENT.fullmatch(segment) for segment in (iv_hex, tag_hex, ciphertext_hex)):
            raise DecryptionError("Encrypted token is corrupted")

        try:
            iv = bytes.fromhex(iv_hex)
            tag = bytes.fromhex(tag_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
        except ValueError:
            raise DecryptionError("Encrypted token is corrupted") from None

        if len(tag) != ENCRYPTION_TAG_BYTES or not iv:
            raise DecryptionError("Encrypted token is corrupted")

        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            raise DecryptionError(
                f"Authentication tag mismatch for key version {version}"
            ) from None

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionError("Decrypted token is not valid UTF-8") from None

    @staticmethod
    def get_version(encrypted: str) -> str:
        """
        Read the key version embedded in an encrypted token.

        Raises:
            FormatError: If the payload is malformed
        """
        parts = encrypted.split(":") if isinstance(encrypted, str) else []
        if len(parts) != 4 or not parts[0]:
            raise FormatError("Invalid encrypted token format")
        return normalize_key_version(parts[0])

    def needs_rotation(self, encrypted: str, target_version: Optional[str] = None) -> bool:
        """Check whether a ciphertext was produced with a key other than the target."""
        target = normalize_key_version(target_version or self.current_version)
        return self.get_version(encrypted) != target

    def __repr__(self) -> str:
        return f"TokenCipher(current_version={self.current_version!r}, versions={sorted(self._keys)})"


def mask_credentials(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create a masked copy of data for safe logging.

    Args:
        data: Dictionary potentially containing sensitive values

    Returns:
        Dictionary with sensitive values masked
    """
    if not isinstance(data, dict):
        return data

    masked = data.copy()
    sensitive_fields = [
        'access_token', 'refresh_token', 'id_token',
        'encrypted_access_token', 'encrypted_refresh_token',
        'client_secret', 'app_secret', 'dropbox_app_secret', 'google_client_secret',
        'code', 'api_key',
    ]

    for field in sensitive_fields:
        if field in masked and masked[field]:
            value = masked[field]
            if isinstance(value, str) and len(value) > 8:
                masked[field] = f"{value[:4]}...{value[-4:]}"
            else:
                masked[field] = "***"

    # Handle nested credentials
    for key, value in masked.items():
        if isinstance(value, dict):
            masked[key] = mask_credentials(value)

    return masked
