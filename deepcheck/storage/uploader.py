"""
deepcheck.storage.uploader – validated media upload with progress events.

MediaUploader rejects oversized or unsupported files before any network call,
streams accepted bytes to blob storage while reporting progress, and records
the result as a MediaFile row.  When the blob store is unreachable the bytes
are written to a local temporary directory instead and the row carries a
``file://`` URL flagged with ``storage_fallback``.
"""
from __future__ import annotations

import asyncio
import logging
import secrets
import time
from pathlib import Path
from typing import AsyncIterator, Callable

import httpx

from deepcheck.db.database import MediaRepository
from deepcheck.errors import MediaValidationError, StorageError
from deepcheck.models import MediaFile, UploadProgress
from deepcheck.storage.blob import MEDIA_BUCKET, BlobStorage, BucketPolicy

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
PROGRESS_STEP = 10

ProgressObserver = Callable[[UploadProgress], None]


class _ProgressTracker:
    """Emit strictly increasing progress in PROGRESS_STEP increments."""

    def __init__(
        self,
        media: MediaFile,
        repository: MediaRepository,
        observer: ProgressObserver | None,
    ) -> None:
        self.media = media
        self.repository = repository
        self.observer = observer
        self.last = -1

    async def report(self, progress: int, status: str = "uploading") -> None:
        if progress <= self.last:
            return
        self.last = progress
        if status == "uploading":
            await self.repository.update_media(
                self.media.user_id, self.media.id, upload_progress=progress
            )
        self._notify(UploadProgress(file_id=self.media.id, progress=progress, status=status))

    async def sent(self, sent_bytes: int, total_bytes: int) -> None:
        # In-flight progress stops short of 100; completion reports 100.
        pct = (sent_bytes * 100 // max(total_bytes, 1)) // PROGRESS_STEP * PROGRESS_STEP
        await self.report(min(pct, 100 - PROGRESS_STEP))

    def _notify(self, event: UploadProgress) -> None:
        if self.observer is None:
            return
        try:
            self.observer(event)
        except Exception:
            logger.exception("Upload progress observer raised; ignoring")


class MediaUploader:
    """
    Validate, store and record one uploaded file.

    Usage::

        uploader = MediaUploader(store, InMemoryBlobStorage(), "/tmp/uploads")
        media = await uploader.upload("user-1", "cat.png", data, "image/png")
    """

    def __init__(
        self,
        repository: MediaRepository,
        storage: BlobStorage,
        fallback_dir: str,
        policy: BucketPolicy = MEDIA_BUCKET,
    ) -> None:
        self.repository = repository
        self.storage = storage
        self.fallback_dir = Path(fallback_dir)
        self.policy = policy

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def validate(self, file_type: str, file_size: int) -> None:
        """
        Raise MediaValidationError unless the file fits the bucket policy.

        Raises:
            MediaValidationError(413)  File exceeds the size ceiling.
            MediaValidationError(415)  Unsupported MIME type.
        """
        if file_size > self.policy.max_bytes:
            raise MediaValidationError(
                f"File size exceeds {self.policy.max_bytes // (1024 * 1024)}MB limit. "
                f"Current size: {file_size / (1024 * 1024):.1f}MB",
                status_code=413,
            )
        if file_type not in self.policy.allowed_types:
            raise MediaValidationError(
                f"Unsupported file type: {file_type or 'unknown'}. "
                f"Supported types: {', '.join(self.policy.allowed_types)}",
                status_code=415,
            )

    async def upload(
        self,
        user_id: str | None,
        file_name: str,
        data: bytes,
        file_type: str,
        on_progress: ProgressObserver | None = None,
    ) -> MediaFile:
        """
        Store *data* and return the completed MediaFile row.

        Raises:
            MediaValidationError  Missing identity, oversized or unsupported file.
            StorageError          Neither blob storage nor the local fallback
                                  could hold the bytes.
            PersistenceError      The media row could not be written.
        """
        if not user_id:
            raise MediaValidationError("User not authenticated", status_code=401)
        self.validate(file_type, len(data))

        path = self.storage_path(user_id, file_name)
        media = await self.repository.create_media(MediaFile(
            user_id=user_id,
            file_name=file_name,
            file_type=file_type,
            file_size=len(data),
            storage_path=path,
            status="queued",
        ))
        tracker = _ProgressTracker(media, self.repository, on_progress)

        try:
            await self.repository.update_media(user_id, media.id, status="uploading")
            await tracker.report(0)
            file_url, degraded = await self._store(path, data, file_type, tracker)
            media = await self.repository.update_media(
                user_id,
                media.id,
                file_url=file_url,
                storage_fallback=degraded,
                status="completed",
                upload_progress=100,
            )
        except Exception:
            await self._mark_failed(user_id, media.id)
            raise

        await tracker.report(100, status="completed")
        logger.info("Uploaded %s (%d bytes) as %s", file_name, len(data), media.id)
        return media

    @staticmethod
    def storage_path(user_id: str, file_name: str) -> str:
        """``<user_id>/<epoch-ms>-<random>.<ext>`` keeps each user in their own folder."""
        ext = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else "bin"
        return f"{user_id}/{int(time.time() * 1000)}-{secrets.token_hex(5)}.{ext}"

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _store(
        self, path: str, data: bytes, file_type: str, tracker: _ProgressTracker
    ) -> tuple[str, bool]:
        try:
            await self.storage.upload(
                path, self._chunks(data, tracker), content_type=file_type, size=len(data)
            )
            return self.storage.public_url(path), False
        except (StorageError, httpx.HTTPError) as exc:
            logger.warning("Storage upload failed, using local fallback: %s", exc)

        try:
            return await self._write_local(path, data), True
        except OSError as exc:
            raise StorageError(f"Local fallback storage failed: {exc}") from exc

    async def _chunks(self, data: bytes, tracker: _ProgressTracker) -> AsyncIterator[bytes]:
        total = len(data)
        for offset in range(0, total, CHUNK_SIZE):
            chunk = data[offset:offset + CHUNK_SIZE]
            yield chunk
            await tracker.sent(offset + len(chunk), total)

    async def _write_local(self, path: str, data: bytes) -> str:
        target = self.fallback_dir / path

        def _write() -> Path:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            return target.resolve()

        written = await asyncio.to_thread(_write)
        return written.as_uri()

    async def _mark_failed(self, user_id: str, media_id: str) -> None:
        try:
            await self.repository.update_media(user_id, media_id, status="failed")
        except Exception:
            logger.exception("Could not mark media %s as failed", media_id)
