"""
Pytest Configuration and Fixtures
==================================
Settings, cipher and credential store fixtures plus fakes for the HTTP
client, the Dropbox SDK client and the Google Drive service.

Unit tests use a temporary SQLite database per test and never touch the
network. Integration tests read credentials from .env.test / the
environment and skip when they are missing.
"""

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest
from dotenv import load_dotenv

# Add lib to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "lib"))

# Load test environment variables
env_file = project_root / ".env.test"
if env_file.exists():
    load_dotenv(env_file)
else:
    # Try loading from CI environment
    load_dotenv()

from storage_core.config.constants import ProviderType  # noqa: E402
from storage_core.config.credentials import TokenCipher  # noqa: E402
from storage_core.config.settings import StorageSettings  # noqa: E402
from storage_core.db.credential_store import CredentialStore  # noqa: E402
from storage_core.utils.http import HttpResponse  # noqa: E402

KEY_V1_HEX = "11" * 32
KEY_V2_HEX = "22" * 32

OWNER_ID = "user-owner-1"


# =============================================================================
# SETTINGS / CIPHER / STORE FIXTURES
# =============================================================================

@pytest.fixture
def make_settings(tmp_path):
    """Build StorageSettings with test keys; override any field via kwargs."""
    def _make(**overrides):
        values = dict(
            encryption_keys={"v1": bytes.fromhex(KEY_V1_HEX)},
            current_key_version="v1",
            dropbox_app_key="dbx-app-key",
            dropbox_app_secret="dbx-app-secret",
            google_client_id="gdrive-client-id",
            google_client_secret="gdrive-client-secret",
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'storage_core.db'}",
            local_storage_root=str(tmp_path / "objects"),
            local_storage_base_url="/storage",
            local_storage_signing_secret="local-signing-secret",
        )
        values.update(overrides)
        return StorageSettings(**values)
    return _make


@pytest.fixture
def settings(make_settings):
    """Settings with only the v1 key."""
    return make_settings()


@pytest.fixture
def rotation_settings(make_settings):
    """Settings with v1 and v2 keys, v2 current."""
    return make_settings(
        encryption_keys={
            "v1": bytes.fromhex(KEY_V1_HEX),
            "v2": bytes.fromhex(KEY_V2_HEX),
        },
        current_key_version="v2",
    )


@pytest.fixture
def cipher(settings):
    return TokenCipher(settings)


@pytest.fixture
async def store(settings):
    """Credential store on a fresh SQLite database."""
    credential_store = CredentialStore.from_settings(settings)
    await credential_store.create_schema()
    yield credential_store
    await credential_store.close()


@pytest.fixture
def connect(store, cipher):
    """Save a connection with plaintext tokens encrypted by the test cipher."""
    async def _connect(
        user_id=OWNER_ID,
        provider=ProviderType.DROPBOX,
        access_token="access-old",
        refresh_token="refresh-1",
        **kwargs,
    ):
        return await store.save_connection(
            user_id,
            provider,
            encrypted_access_token=cipher.encrypt(access_token),
            encrypted_refresh_token=cipher.encrypt(refresh_token) if refresh_token else None,
            encryption_key_version=cipher.current_version,
            **kwargs,
        )
    return _connect


# =============================================================================
# FAKE HTTP CLIENT
# =============================================================================

class FakeHttpClient:
    """Records token endpoint calls and replays queued responses."""

    def __init__(self):
        self.calls = []
        self.responses = []

    def queue(self, status_code=200, **body):
        self.responses.append(HttpResponse(status_code=status_code, body=body))
        return self

    def queue_error(self, exc):
        self.responses.append(exc)
        return self

    async def post_form(self, url, data, timeout=None):
        self.calls.append({"url": url, "data": dict(data), "timeout": timeout})
        if not self.responses:
            raise AssertionError(f"Unexpected token request to {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def http_client():
    return FakeHttpClient()


# =============================================================================
# FAKE DROPBOX CLIENT
# =============================================================================

class FakeDropbox:
    """
    Stands in for dropbox.Dropbox.

    failures holds exceptions raised by the next SDK calls, in order. Each
    call records (method, access_token, args).
    """

    def __init__(self):
        self.failures = []
        self.calls = []
        self.tokens = []

    def client_factory(self, access_token):
        self.tokens.append(access_token)
        return _FakeDropboxClient(self, access_token)


class _FakeDropboxClient:
    def __init__(self, backend, access_token):
        self._backend = backend
        self._token = access_token

    def _record(self, method, *args):
        self._backend.calls.append((method, self._token) + args)
        if self._backend.failures:
            raise self._backend.failures.pop(0)

    def _metadata(self, path, size):
        return SimpleNamespace(
            id="id:a4ayc_80_OEAAAAAAAAAXw",
            path_display=path,
            size=size,
            rev="015f9c3d1e2a0b3000000027b3e7a50",
            server_modified=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
            content_hash="e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855",
        )

    def files_upload(self, content, path, mode=None, autorename=False):
        self._record("files_upload", path, len(content), autorename)
        return self._metadata(path, len(content))

    def files_upload_session_start(self, chunk):
        self._record("files_upload_session_start", len(chunk))
        return SimpleNamespace(session_id="session-1")

    def files_upload_session_append_v2(self, chunk, cursor):
        self._record("files_upload_session_append_v2", len(chunk), cursor.offset)

    def files_upload_session_finish(self, chunk, cursor, commit):
        self._record("files_upload_session_finish", len(chunk), cursor.offset, commit.path)
        return self._metadata(commit.path, cursor.offset + len(chunk))

    def files_get_temporary_link(self, path):
        self._record("files_get_temporary_link", path)
        return SimpleNamespace(link=f"https://dl.dropboxusercontent.com/apitl/1/{path}")

    def files_delete_v2(self, path):
        self._record("files_delete_v2", path)
        return SimpleNamespace(metadata=None)


@pytest.fixture
def fake_dropbox():
    return FakeDropbox()


# =============================================================================
# FAKE GOOGLE DRIVE SERVICE
# =============================================================================

class FakeDrive:
    """
    Stands in for the Drive v3 service returned by googleapiclient.discovery.build.

    failures holds exceptions raised by the next execute() calls, in order.
    """

    def __init__(self, existing_folder_id=None):
        self.failures = []
        self.calls = []
        self.tokens = []
        self.folder_id = existing_folder_id
        self.media = {}

    def service_factory(self, access_token):
        self.tokens.append(access_token)
        return SimpleNamespace(files=lambda: _FakeDriveFiles(self, access_token))


class _FakeRequest:
    def __init__(self, backend, call, result):
        self._backend = backend
        self._call = call
        self._result = result

    def execute(self):
        self._backend.calls.append(self._call)
        if self._backend.failures:
            raise self._backend.failures.pop(0)
        return self._result() if callable(self._result) else self._result


class _FakeDriveFiles:
    def __init__(self, backend, access_token):
        self._backend = backend
        self._token = access_token

    def list(self, **kwargs):
        def result():
            if self._backend.folder_id:
                return {"files": [{"id": self._backend.folder_id, "name": "UntitledOne"}]}
            return {"files": []}
        return _FakeRequest(self._backend, ("list", self._token, kwargs.get("q")), result)

    def create(self, body=None, media_body=None, fields=None, **kwargs):
        backend = self._backend

        def result():
            if media_body is None:
                backend.folder_id = "folder-untitled-one"
                return {"id": backend.folder_id}
            return {
                "id": "1AbCdEfGhIjKlMnOpQrStUvWxYz",
                "name": body["name"],
                "size": str(media_body.size()),
                "mimeType": body.get("mimeType"),
                "createdTime": "2024-05-01T12:00:00.000Z",
                "md5Checksum": "d41d8cd98f00b204e9800998ecf8427e",
            }
        kind = "create_file" if media_body is not None else "create_folder"
        return _FakeRequest(backend, (kind, self._token, body), result)

    def get(self, fileId=None, fields=None, **kwargs):
        return _FakeRequest(self._backend, ("get", self._token, fileId), {"id": fileId})

    def get_media(self, fileId=None, **kwargs):
        return SimpleNamespace(file_id=fileId, backend=self._backend, token=self._token)

    def delete(self, fileId=None, **kwargs):
        return _FakeRequest(self._backend, ("delete", self._token, fileId), "")


@pytest.fixture
def fake_drive():
    return FakeDrive()


# =============================================================================
# CREDENTIAL FIXTURES (integration)
# =============================================================================

@pytest.fixture(scope="session")
def dropbox_credentials():
    """Dropbox API credentials from environment."""
    creds = {
        "app_key": os.getenv("TEST_DROPBOX_APP_KEY"),
        "app_secret": os.getenv("TEST_DROPBOX_APP_SECRET"),
        "refresh_token": os.getenv("TEST_DROPBOX_REFRESH_TOKEN"),
    }

    if not all(creds.values()):
        pytest.skip("Dropbox credentials not configured")

    return creds


@pytest.fixture(scope="session")
def google_drive_credentials():
    """Google Drive API credentials from environment."""
    creds = {
        "client_id": os.getenv("TEST_GDRIVE_CLIENT_ID"),
        "client_secret": os.getenv("TEST_GDRIVE_CLIENT_SECRET"),
        "refresh_token": os.getenv("TEST_GDRIVE_REFRESH_TOKEN"),
    }

    if not all(creds.values()):
        pytest.skip("Google Drive credentials not configured")

    return creds


# =============================================================================
# UTILITY FIXTURES
# =============================================================================

@pytest.fixture
def mock_env(monkeypatch):
    """Helper to mock environment variables."""
    def _mock_env(env_dict):
        for key, value in env_dict.items():
            monkeypatch.setenv(key, value)
    return _mock_env


@pytest.fixture
def sample_audio_bytes():
    """Small WAV header plus silence for upload tests."""
    return b"RIFF" + (36).to_bytes(4, "little") + b"WAVEfmt " + bytes(28) + b"data" + bytes(4)


# =============================================================================
# TEST MARKERS COLLECTION
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast tests with no external dependencies")
    config.addinivalue_line("markers", "integration: Tests that call external APIs")
    config.addinivalue_line("markers", "dropbox: Tests requiring Dropbox credentials")
    config.addinivalue_line("markers", "google_drive: Tests requiring Google Drive credentials")
