from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest

from deepcheck.config import Settings
from deepcheck.db.database import InMemoryMediaStore
from deepcheck.detector.client import RealityDefenderClient
from deepcheck.service import MediaService
from deepcheck.storage.blob import InMemoryBlobStorage
from deepcheck.storage.uploader import MediaUploader

PROVIDER_URL = "https://provider.test"
SIGNED_URL = "https://uploads.provider.test/signed/abc"
CDN_URL = "https://cdn.test/media-files"
API_KEY = "rd-test-key-0123456789"


class RecordingSleep:
    """Stand-in for asyncio.sleep that only records the requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeProvider:
    """
    Scripted Reality Defender API behind an httpx.MockTransport.

    ``results`` is consumed one entry per results poll; each entry is either a
    JSON body (served with 200) or an ``httpx.Response``.  The last entry is
    repeated once the list is exhausted.
    """

    def __init__(self, results: list[Any] | None = None) -> None:
        self.results = list(results or [])
        self.presign_response: Callable[[], httpx.Response] = lambda: httpx.Response(
            200,
            json={"code": "ok", "response": {"signedUrl": SIGNED_URL}, "mediaId": "media-1"},
        )
        self.upload_status = 200
        self.source_bytes = b"\x89PNG\r\n\x1a\nfake-image"
        self.storage: InMemoryBlobStorage | None = None
        self.calls: list[tuple[str, str]] = []
        self.requests: list[httpx.Request] = []
        self.uploaded: list[bytes] = []
        self._poll_index = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, str(request.url)))
        self.requests.append(request)
        url = str(request.url)
        if url.startswith(f"{PROVIDER_URL}/api/files/aws-presigned"):
            return self.presign_response()
        if url == SIGNED_URL and request.method == "PUT":
            self.uploaded.append(request.content)
            return httpx.Response(self.upload_status)
        if url.startswith(f"{PROVIDER_URL}/api/media/users/"):
            return self._next_result()
        if url.startswith(CDN_URL):
            return self._serve_blob(url)
        return httpx.Response(404)

    def _serve_blob(self, url: str) -> httpx.Response:
        if self.storage is None:
            return httpx.Response(200, content=self.source_bytes)
        data = self.storage.objects.get(url[len(CDN_URL) + 1:])
        if data is None:
            return httpx.Response(404)
        return httpx.Response(200, content=data)

    def _next_result(self) -> httpx.Response:
        if not self.results:
            return httpx.Response(404)
        entry = self.results[min(self._poll_index, len(self.results) - 1)]
        self._poll_index += 1
        if isinstance(entry, httpx.Response):
            return httpx.Response(entry.status_code, headers=entry.headers, content=entry.content)
        return httpx.Response(200, json=entry)

    def count(self, fragment: str) -> int:
        return sum(1 for _, url in self.calls if fragment in url)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        api_key=API_KEY,
        provider_url=PROVIDER_URL,
        timeout_seconds=5.0,
        max_retries=3,
        retry_backoff_seconds=1.0,
        poll_interval_seconds=2.0,
        poll_max_attempts=3,
        fallback_storage_dir=str(tmp_path / "fallback"),
    )


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def detector(settings, provider, sleep) -> RealityDefenderClient:
    return RealityDefenderClient(settings, http_client=provider.client(), sleep=sleep)


@pytest.fixture
def store() -> InMemoryMediaStore:
    return InMemoryMediaStore()


@pytest.fixture
def blob() -> InMemoryBlobStorage:
    return InMemoryBlobStorage(base_url=CDN_URL)


@pytest.fixture
def uploader(store, blob, settings) -> MediaUploader:
    return MediaUploader(store, blob, settings.fallback_storage_dir)


@pytest.fixture
def service(store, uploader, detector, settings, provider, blob) -> MediaService:
    provider.storage = blob
    return MediaService(store, uploader, detector, settings)
