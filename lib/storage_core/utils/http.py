"""
HTTP Client Capability
======================
The narrow HTTP surface adapters need for OAuth token refreshes.

Adapters receive an HttpClient at construction instead of reaching for a
global session, so tests can supply a fake that records calls.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol

import requests

from ..config.constants import DEFAULT_HTTP_TIMEOUT_SECONDS


@dataclass
class HttpResponse:
    """Minimal response: status code plus decoded JSON body (if any)."""
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class HttpClient(Protocol):
    async def post_form(
        self,
        url: str,
        data: Mapping[str, str],
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        """POST application/x-www-form-urlencoded data and return the response."""
        ...


class RequestsHttpClient:
    """
    HttpClient backed by a requests.Session.

    requests is blocking, so each call runs in a worker thread.
    Network failures propagate as requests exceptions.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    ):
        self._session = session or requests.Session()
        self._timeout = timeout

    def _post(self, url: str, data: Mapping[str, str], timeout: float) -> HttpResponse:
        response = self._session.post(url, data=dict(data), timeout=timeout)
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        return HttpResponse(status_code=response.status_code, body=body, text=response.text)

    async def post_form(
        self,
        url: str,
        data: Mapping[str, str],
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        return await asyncio.to_thread(self._post, url, data, timeout or self._timeout)

    def close(self) -> None:
        self._session.close()
