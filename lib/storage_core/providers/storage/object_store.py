"""
Platform object storage used by the local provider.

ObjectStore is the narrow surface the local adapter needs. The bundled
FilesystemObjectStore keeps objects under a root directory and issues
HMAC-signed, expiring download URLs that the serving layer verifies with
verify_signature().
"""

import hashlib
import hmac
import logging
import os
import time
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote, urlencode

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


class ObjectStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str) -> None:
        ...

    async def exists(self, key: str) -> bool:
        ...

    async def signed_url(self, key: str, expires_in: int) -> str:
        ...

    async def remove(self, key: str) -> None:
        """Raises FileNotFoundError when the object does not exist."""
        ...


class FilesystemObjectStore:
    """
    Object store on the local filesystem.

    Args:
        root: Directory holding the objects
        base_url: Public prefix the serving layer answers on (e.g. '/storage')
        signing_secret: Secret for download URL signatures
    """

    def __init__(self, root: str, base_url: str, signing_secret: str):
        if not signing_secret:
            raise ValueError("signing_secret is required for download URLs")
        self.root = Path(root).resolve()
        self.base_url = base_url.rstrip("/")
        self._secret = signing_secret.encode("utf-8")

    def _resolve(self, key: str) -> Path:
        """Map a storage key to a file below root."""
        if not key or key.startswith("/") or "\\" in key:
            raise ValueError(f"Invalid storage key: {key!r}")
        if ".." in key.split("/"):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.root / key

    def _sign(self, key: str, expires: int) -> str:
        message = f"{key}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        target = self._resolve(key)
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        async with aiofiles.open(target, "wb") as f:
            await f.write(data)
        logger.debug("Stored %s (%d bytes, %s)", key, len(data), content_type)

    async def read(self, key: str) -> bytes:
        async with aiofiles.open(self._resolve(key), "rb") as f:
            return await f.read()

    async def exists(self, key: str) -> bool:
        return await aiofiles.os.path.isfile(self._resolve(key))

    async def signed_url(self, key: str, expires_in: int) -> str:
        if not await self.exists(key):
            raise FileNotFoundError(key)
        expires = int(time.time()) + int(expires_in)
        query = urlencode({"expires": expires, "signature": self._sign(key, expires)})
        return f"{self.base_url}/{quote(key)}?{query}"

    def verify_signature(
        self, key: str, expires: int, signature: str, now: Optional[float] = None
    ) -> bool:
        """Check a download URL issued by signed_url()."""
        if (now if now is not None else time.time()) > int(expires):
            return False
        return hmac.compare_digest(self._sign(key, int(expires)), signature)

    async def remove(self, key: str) -> None:
        await aiofiles.os.remove(self._resolve(key))

    def __repr__(self) -> str:
        return f"FilesystemObjectStore(root={os.fspath(self.root)!r}, base_url={self.base_url!r})"
