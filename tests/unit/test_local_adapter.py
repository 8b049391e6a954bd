"""
Unit Tests: Local Storage Adapter
=================================
Local storage on a temporary directory; no credentials involved.
"""

from urllib.parse import parse_qs, urlparse

import pytest

from storage_core.errors import ProviderApiError, ProviderFileNotFoundError
from storage_core.providers.storage.local_provider import LocalStorageAdapter
from storage_core.providers.storage.object_store import FilesystemObjectStore


@pytest.fixture
def object_store(tmp_path):
    return FilesystemObjectStore(str(tmp_path / "objects"), "/storage", "local-signing-secret")


@pytest.fixture
def adapter(object_store):
    return LocalStorageAdapter(object_store)


@pytest.mark.unit
class TestLocalUpload:

    async def test_key_is_file_id_and_path(self, adapter, object_store, sample_audio_bytes):
        result = await adapter.upload(sample_audio_bytes, "project-1/mix.wav", "any-user")

        assert result.file_id == result.path == "project-1/mix.wav"
        assert result.size == len(sample_audio_bytes)
        assert set(result.metadata) == {"content_type", "uploaded_at"}
        assert await object_store.read("project-1/mix.wav") == sample_audio_bytes

    async def test_never_overwrites(self, adapter, object_store):
        first = await adapter.upload(b"first", "project-1/mix.wav", "user")
        second = await adapter.upload(b"second", "project-1/mix.wav", "user")

        assert second.path != first.path
        assert second.path.startswith("project-1/")
        assert second.path.endswith("-mix.wav")
        assert await object_store.read(first.path) == b"first"

    async def test_content_type_defaults(self, adapter):
        result = await adapter.upload(b"x", "project-1/blob", "user")

        assert result.metadata["content_type"] == "application/octet-stream"

    async def test_rejects_escaping_paths(self, adapter):
        with pytest.raises(ProviderApiError):
            await adapter.upload(b"x", "../../etc/passwd", "user")


@pytest.mark.unit
class TestLocalDownloadAndDelete:

    async def test_signed_url_verifies(self, adapter, object_store):
        await adapter.upload(b"x", "project-1/mix.wav", "user")

        url = await adapter.get_download_url("project-1/mix.wav", "user", expires_in=60)

        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert parsed.path == "/storage/project-1/mix.wav"
        assert object_store.verify_signature(
            "project-1/mix.wav", int(query["expires"][0]), query["signature"][0]
        )
        assert not object_store.verify_signature(
            "project-1/other.wav", int(query["expires"][0]), query["signature"][0]
        )

    async def test_signed_url_expires(self, adapter, object_store):
        await adapter.upload(b"x", "project-1/mix.wav", "user")
        url = await adapter.get_download_url("project-1/mix.wav", "user", expires_in=60)
        query = parse_qs(urlparse(url).query)
        expires = int(query["expires"][0])

        assert not object_store.verify_signature(
            "project-1/mix.wav", expires, query["signature"][0], now=expires + 1
        )

    async def test_missing_file(self, adapter):
        with pytest.raises(ProviderFileNotFoundError):
            await adapter.get_download_url("project-1/missing.wav", "user")

        with pytest.raises(ProviderFileNotFoundError):
            await adapter.delete("project-1/missing.wav", "user")

    async def test_delete(self, adapter, object_store):
        await adapter.upload(b"x", "project-1/mix.wav", "user")

        await adapter.delete("project-1/mix.wav", "user")

        assert not await object_store.exists("project-1/mix.wav")


@pytest.mark.unit
class TestLocalLifecycle:

    @pytest.mark.parametrize("user_id", ["user-1", "", "nobody"])
    async def test_always_connected(self, adapter, user_id):
        assert await adapter.validate_connection(user_id) is True
        assert await adapter.refresh_tokens(user_id) is True

    def test_signing_secret_required(self, tmp_path):
        with pytest.raises(ValueError):
            FilesystemObjectStore(str(tmp_path), "/storage", "")
