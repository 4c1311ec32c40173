"""
deepcheck.db.database – persistence interface and in-memory implementation.

``MediaRepository`` is the typed interface the service layer consumes; every
call takes the caller's ``user_id`` and only ever sees that user's rows.
``InMemoryMediaStore`` implements it with plain dicts guarded by an
``asyncio.Lock``.  Deleting a media file cascades to its analysis results and
their feedback.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Protocol

from deepcheck.errors import RecordNotFound
from deepcheck.models import AnalysisResult, MediaFile, UserFeedback, advance_status


class MediaRepository(Protocol):
    async def create_media(self, media: MediaFile) -> MediaFile: ...

    async def get_media(self, user_id: str, media_id: str) -> MediaFile: ...

    async def update_media(self, user_id: str, media_id: str, **changes: Any) -> MediaFile: ...

    async def list_media(self, user_id: str) -> list[MediaFile]: ...

    async def delete_media(self, user_id: str, media_id: str) -> None: ...

    async def insert_result(self, user_id: str, result: AnalysisResult) -> AnalysisResult: ...

    async def latest_result(self, user_id: str, media_id: str) -> AnalysisResult | None: ...

    async def get_result(self, user_id: str, result_id: str) -> AnalysisResult: ...

    async def list_results(self, user_id: str) -> list[AnalysisResult]: ...

    async def insert_feedback(self, user_id: str, feedback: UserFeedback) -> UserFeedback: ...


class InMemoryMediaStore:
    """
    Dict-backed MediaRepository.

    Thread-safe for a single event loop via an internal asyncio.Lock.

    Usage::

        store = InMemoryMediaStore()
        media = await store.create_media(MediaFile(user_id="u1", ...))
        await store.update_media("u1", media.id, status="completed")
    """

    def __init__(self) -> None:
        self._media: dict[str, MediaFile] = {}
        self._results: dict[str, AnalysisResult] = {}
        self._feedback: dict[str, UserFeedback] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Media files
    # ------------------------------------------------------------------

    async def create_media(self, media: MediaFile) -> MediaFile:
        async with self._lock:
            self._media[media.id] = media
        return media

    async def get_media(self, user_id: str, media_id: str) -> MediaFile:
        async with self._lock:
            return self._owned_media(user_id, media_id)

    async def update_media(self, user_id: str, media_id: str, **changes: Any) -> MediaFile:
        """
        Apply *changes* to a media row.

        A ``status`` change must follow the MediaFile lifecycle; otherwise
        InvalidStatusTransition is raised and the row is left untouched.
        """
        async with self._lock:
            current = self._owned_media(user_id, media_id)
            if "status" in changes:
                changes["status"] = advance_status(current.status, changes["status"])
            changes["updated_at"] = datetime.now(timezone.utc)
            updated = current.model_copy(update=changes)
            self._media[media_id] = updated
            return updated

    async def list_media(self, user_id: str) -> list[MediaFile]:
        """Return the user's media files, newest first."""
        async with self._lock:
            rows = [m for m in self._media.values() if m.user_id == user_id]
        return sorted(rows, key=lambda m: m.created_at, reverse=True)

    async def delete_media(self, user_id: str, media_id: str) -> None:
        async with self._lock:
            self._owned_media(user_id, media_id)
            del self._media[media_id]
            doomed = {r.id for r in self._results.values() if r.media_file_id == media_id}
            for result_id in doomed:
                del self._results[result_id]
            for feedback_id in [
                f.id for f in self._feedback.values() if f.analysis_result_id in doomed
            ]:
                del self._feedback[feedback_id]

    # ------------------------------------------------------------------
    # Analysis results
    # ------------------------------------------------------------------

    async def insert_result(self, user_id: str, result: AnalysisResult) -> AnalysisResult:
        async with self._lock:
            self._owned_media(user_id, result.media_file_id)
            self._results[result.id] = result
        return result

    async def latest_result(self, user_id: str, media_id: str) -> AnalysisResult | None:
        async with self._lock:
            self._owned_media(user_id, media_id)
            rows = [r for r in self._results.values() if r.media_file_id == media_id]
        return max(rows, key=lambda r: r.created_at, default=None)

    async def get_result(self, user_id: str, result_id: str) -> AnalysisResult:
        async with self._lock:
            result = self._results.get(result_id)
            if result is None or not self._owns(user_id, result.media_file_id):
                raise RecordNotFound(f"Analysis result {result_id} not found")
            return result

    async def list_results(self, user_id: str) -> list[AnalysisResult]:
        async with self._lock:
            return [
                r for r in self._results.values() if self._owns(user_id, r.media_file_id)
            ]

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    async def insert_feedback(self, user_id: str, feedback: UserFeedback) -> UserFeedback:
        async with self._lock:
            result = self._results.get(feedback.analysis_result_id)
            if result is None or not self._owns(user_id, result.media_file_id):
                raise RecordNotFound(f"Analysis result {feedback.analysis_result_id} not found")
            self._feedback[feedback.id] = feedback
        return feedback

    # ------------------------------------------------------------------
    # Private helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _owns(self, user_id: str, media_id: str) -> bool:
        media = self._media.get(media_id)
        return media is not None and media.user_id == user_id

    def _owned_media(self, user_id: str, media_id: str) -> MediaFile:
        if not self._owns(user_id, media_id):
            raise RecordNotFound(f"Media file {media_id} not found")
        return self._media[media_id]
