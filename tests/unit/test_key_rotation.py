"""
Unit Tests: Key Rotation
========================
Re-encrypting stored tokens under a new key version.
"""

import pytest

from storage_core.config.constants import ProviderType
from storage_core.config.credentials import TokenCipher
from storage_core.config.key_rotation import rotate_encryption_keys
from storage_core.errors import ConfigError


@pytest.fixture
def rotation_cipher(rotation_settings):
    """Cipher holding v1 and v2 keys."""
    return TokenCipher(rotation_settings)


async def _corrupt(store, user_id):
    """Make a record undecryptable with a well-formed but unauthenticated payload."""
    await store.update_connection(
        user_id, ProviderType.DROPBOX,
        encrypted_access_token="v1:" + "00" * 16 + ":" + "00" * 16 + ":" + "00" * 8,
    )


@pytest.mark.unit
class TestRotateEncryptionKeys:

    async def test_rotates_all_records(self, store, connect, rotation_cipher):
        for index in range(3):
            await connect(user_id=f"user-{index}", access_token=f"access-{index}")

        stats = await rotate_encryption_keys(store, rotation_cipher, "v2")

        assert (stats.total, stats.successful, stats.failed) == (3, 3, 0)
        for index in range(3):
            conn = await store.get_connection(f"user-{index}", ProviderType.DROPBOX)
            assert conn.encryption_key_version == "v2"
            assert conn.encrypted_access_token.startswith("v2:")
            assert conn.encrypted_refresh_token.startswith("v2:")
            assert rotation_cipher.decrypt(conn.encrypted_access_token) == f"access-{index}"

    async def test_partial_failure_then_resume(self, store, connect, rotation_cipher):
        """N records with M corrupt: N-M rotate, M fail; the rerun touches only the M."""
        for index in range(5):
            await connect(user_id=f"user-{index}")
        await _corrupt(store, "user-1")
        await _corrupt(store, "user-3")

        first = await rotate_encryption_keys(store, rotation_cipher, "v2")

        assert (first.total, first.successful, first.failed) == (5, 3, 2)
        assert len(first.errors) == 2
        assert all("DecryptionError" in error["error"] for error in first.errors)

        second = await rotate_encryption_keys(store, rotation_cipher, "v2")

        assert (second.total, second.successful, second.failed) == (2, 0, 2)

    async def test_records_without_refresh_token(self, store, connect, rotation_cipher):
        await connect(refresh_token=None)

        stats = await rotate_encryption_keys(store, rotation_cipher, "v2")

        conn = await store.get_connection("user-owner-1", ProviderType.DROPBOX)
        assert stats.successful == 1
        assert conn.encrypted_refresh_token is None

    async def test_nothing_to_do(self, store, rotation_cipher):
        stats = await rotate_encryption_keys(store, rotation_cipher, "v2")

        assert stats.to_dict() == {
            "total": 0, "successful": 0, "superseded": 0, "failed": 0, "errors": [],
        }

    async def test_missing_target_key_fails_up_front(self, store, connect, cipher):
        await connect()

        with pytest.raises(ConfigError):
            await rotate_encryption_keys(store, cipher, "v2")

        conn = await store.get_connection("user-owner-1", ProviderType.DROPBOX)
        assert conn.encryption_key_version == "v1"

    async def test_errors_never_contain_plaintext(self, store, connect, rotation_cipher):
        await connect(access_token="super-secret-access")
        await store.update_connection(
            "user-owner-1", ProviderType.DROPBOX, encrypted_refresh_token="garbage"
        )

        stats = await rotate_encryption_keys(store, rotation_cipher, "v2")

        assert stats.failed == 1
        assert "super-secret-access" not in str(stats.to_dict())

    async def test_refresh_during_rotation_is_not_overwritten(
        self, store, connect, rotation_settings, rotation_cipher, http_client, fake_dropbox, monkeypatch
    ):
        """A refresh landing after the scan keeps its tokens; the stale snapshot is dropped."""
        from storage_core.providers.storage.dropbox_provider import DropboxAdapter

        await connect()
        snapshot = await store.list_for_rotation("v2")

        adapter = DropboxAdapter(
            store, rotation_cipher, rotation_settings,
            http_client=http_client, client_factory=fake_dropbox.client_factory,
        )
        http_client.queue(access_token="access-new", refresh_token="refresh-2")
        assert await adapter.refresh_tokens("user-owner-1") is True

        async def scan(version):
            return snapshot

        monkeypatch.setattr(store, "list_for_rotation", scan)

        stats = await rotate_encryption_keys(store, rotation_cipher, "v2")

        assert (stats.total, stats.successful, stats.superseded, stats.failed) == (1, 0, 1, 0)
        conn = await store.get_connection("user-owner-1", ProviderType.DROPBOX)
        assert rotation_cipher.decrypt(conn.encrypted_access_token) == "access-new"
        assert rotation_cipher.decrypt(conn.encrypted_refresh_token) == "refresh-2"

    async def test_deleted_during_rotation_is_superseded(self, store, connect, rotation_cipher, monkeypatch):
        await connect()
        snapshot = await store.list_for_rotation("v2")
        await store.delete_connection("user-owner-1", ProviderType.DROPBOX)

        async def scan(version):
            return snapshot

        monkeypatch.setattr(store, "list_for_rotation", scan)

        stats = await rotate_encryption_keys(store, rotation_cipher, "v2")

        assert (stats.superseded, stats.failed) == (1, 0)
