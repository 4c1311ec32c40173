"""
deepcheck.storage.blob – blob-storage backends.

``BlobStorage`` is the interface the uploader consumes: stream bytes to a
path, then resolve a retrieval URL.  ``SupabaseBlobStorage`` talks to a
Supabase-compatible storage REST API with httpx; ``LocalBlobStorage`` writes
to a directory for local development; ``InMemoryBlobStorage`` keeps objects
in a dict for tests.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Protocol

import httpx

from deepcheck.config import (
    AVATAR_TYPES,
    MAX_AVATAR_BYTES,
    MAX_MEDIA_BYTES,
    SUPPORTED_TYPES,
)
from deepcheck.errors import StorageError


@dataclass(frozen=True)
class BucketPolicy:
    """Size and MIME constraints a storage bucket enforces."""
    name: str
    max_bytes: int
    allowed_types: tuple[str, ...]

    def allows(self, file_type: str, file_size: int) -> bool:
        return file_type in self.allowed_types and 0 <= file_size <= self.max_bytes


MEDIA_BUCKET = BucketPolicy(
    name="media-files",
    max_bytes=MAX_MEDIA_BYTES,
    allowed_types=tuple(t for types in SUPPORTED_TYPES.values() for t in types),
)
AVATAR_BUCKET = BucketPolicy(name="avatars", max_bytes=MAX_AVATAR_BYTES, allowed_types=AVATAR_TYPES)


class BlobStorage(Protocol):
    async def upload(
        self, path: str, chunks: AsyncIterator[bytes], content_type: str, size: int
    ) -> None: ...

    def public_url(self, path: str) -> str: ...


class InMemoryBlobStorage:
    """Dict-backed storage; ``available=False`` simulates an outage."""

    def __init__(self, base_url: str = "memory://media-files", available: bool = True) -> None:
        self.base_url = base_url.rstrip("/")
        self.available = available
        self.objects: dict[str, bytes] = {}

    async def upload(
        self, path: str, chunks: AsyncIterator[bytes], content_type: str, size: int
    ) -> None:
        if not self.available:
            raise StorageError("Storage backend unavailable")
        if path in self.objects:
            raise StorageError(f"Object already exists: {path}")
        buffer = bytearray()
        async for chunk in chunks:
            buffer.extend(chunk)
        self.objects[path] = bytes(buffer)

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{path}"


class LocalBlobStorage:
    """Filesystem storage under *root*; objects are served as ``file://`` URLs."""

    def __init__(self, root: str) -> None:
        self.root = Path(root)

    async def upload(
        self, path: str, chunks: AsyncIterator[bytes], content_type: str, size: int
    ) -> None:
        buffer = bytearray()
        async for chunk in chunks:
            buffer.extend(chunk)
        target = self.root / path

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("xb") as fh:
                fh.write(buffer)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise StorageError(f"Local storage write failed: {exc}") from exc

    def public_url(self, path: str) -> str:
        return (self.root / path).resolve().as_uri()


class SupabaseBlobStorage:
    """
    Supabase storage REST adapter.

    Objects are written with ``POST /storage/v1/object/{bucket}/{path}`` and
    served from ``/storage/v1/object/public/{bucket}/{path}``.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str = MEDIA_BUCKET.name,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 60.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self._http = http_client
        self.timeout = httpx.Timeout(timeout_seconds)

    async def upload(
        self, path: str, chunks: AsyncIterator[bytes], content_type: str, size: int
    ) -> None:
        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{path}"
        headers = {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
            "Content-Type": content_type,
            "Content-Length": str(size),
            "Cache-Control": "max-age=3600",
            "x-upsert": "false",
        }
        if self._http is not None:
            response = await self._http.post(url, content=chunks, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, content=chunks, headers=headers)
        if not response.is_success:
            raise StorageError(
                f"Storage upload failed: HTTP {response.status_code} {response.text[:200]}"
            )

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{path}"
