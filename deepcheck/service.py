"""
deepcheck.service – upload -> analyse -> persist orchestration.

MediaService is what the HTTP layer calls.  Upload and analysis are two
separate operations per file; ``process_batch`` runs both for several files
strictly one after another in submission order.

For one file the stages are ordered: validate, upload, persist the media
row, analyse, normalise, persist the result, update the media status.
Provider trouble never fails an analysis (the detector returns a flagged
fallback instead); failing to store the final result does, and the media row
is marked ``failed``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from deepcheck.config import Settings
from deepcheck.db.database import MediaRepository
from deepcheck.detector.client import RealityDefenderClient
from deepcheck.errors import MediaValidationError
from deepcheck.models import (
    AnalysisResult,
    DetectionOutcome,
    MediaFile,
    UserFeedback,
    UserStats,
)
from deepcheck.storage.uploader import MediaUploader, ProgressObserver

logger = logging.getLogger(__name__)


@dataclass
class BatchItem:
    file_name: str
    media: MediaFile | None = None
    result: AnalysisResult | None = None
    error: str | None = None


def sentiment_for_rating(rating: int) -> str:
    if rating >= 4:
        return "positive"
    if rating <= 2:
        return "negative"
    return "neutral"


class MediaService:
    def __init__(
        self,
        repository: MediaRepository,
        uploader: MediaUploader,
        detector: RealityDefenderClient,
        settings: Settings,
    ) -> None:
        self.repository = repository
        self.uploader = uploader
        self.detector = detector
        self.settings = settings

    # ------------------------------------------------------------------
    # Upload / analyse
    # ------------------------------------------------------------------

    async def upload(
        self,
        user_id: str | None,
        file_name: str,
        data: bytes,
        file_type: str,
        on_progress: ProgressObserver | None = None,
    ) -> MediaFile:
        return await self.uploader.upload(user_id, file_name, data, file_type, on_progress)

    async def analyze(self, user_id: str, media_id: str) -> AnalysisResult:
        """
        Run detection for an uploaded file and store a new AnalysisResult.

        Raises:
            RecordNotFound      The media file is not the caller's.
            ConfigurationError  Provider configuration missing (media left untouched).
            PersistenceError    The result could not be stored (media -> failed).
        """
        media = await self.repository.get_media(user_id, media_id)
        self.detector.ensure_configured(media.file_type)
        media = await self.repository.update_media(user_id, media_id, status="processing")

        try:
            outcome = await self.detector.analyze(media.file_type, file_url=media.file_url)
            result = await self.repository.insert_result(
                user_id, self.build_result(media, outcome)
            )
        except Exception:
            logger.exception("Analysis of %s failed", media_id)
            await self.repository.update_media(user_id, media_id, status="failed")
            raise

        await self.repository.update_media(user_id, media_id, status="completed")
        logger.info(
            "Analysed %s: %s (%.2f)%s",
            media_id, result.classification, result.confidence_score,
            " [fallback]" if outcome.fallback else "",
        )
        return result

    async def process_batch(
        self,
        user_id: str,
        files: Iterable[tuple[str, bytes, str]],
        on_progress: ProgressObserver | None = None,
    ) -> list[BatchItem]:
        """
        Upload and analyse ``(file_name, data, file_type)`` tuples sequentially.

        A file rejected by validation is reported on its BatchItem and the
        batch moves on; any other error propagates.
        """
        items: list[BatchItem] = []
        for file_name, data, file_type in files:
            item = BatchItem(file_name=file_name)
            items.append(item)
            try:
                item.media = await self.upload(user_id, file_name, data, file_type, on_progress)
            except MediaValidationError as exc:
                item.error = str(exc)
                continue
            item.result = await self.analyze(user_id, item.media.id)
        return items

    def build_result(self, media: MediaFile, outcome: DetectionOutcome) -> AnalysisResult:
        if outcome.placeholder:
            steps = ["capability_check"]
        else:
            steps = ["upload_to_provider", "result_polling", "response_normalization"]
            if outcome.fallback:
                steps.append("fallback_analysis")

        metadata = {
            "api_provider": outcome.api_provider,
            "model_version": outcome.model_version,
            "processing_steps": steps,
            "confidence_thresholds": self.settings.thresholds.as_table(),
            "classification_source": outcome.classification_source,
            "schema_version": outcome.schema_version,
            "fallback": outcome.fallback,
            "placeholder": outcome.placeholder,
            "error": outcome.error,
            "attempts": outcome.attempts,
            "storage_fallback": media.storage_fallback,
            "api_response": outcome.raw_response,
        }
        return AnalysisResult(
            media_file_id=media.id,
            confidence_score=outcome.confidence_score,
            classification=outcome.classification,
            processing_time_ms=outcome.processing_time_ms,
            analysis_metadata=metadata,
            heatmap_data=outcome.heatmap_data,
            manipulation_details=outcome.manipulation_details,
        )

    # ------------------------------------------------------------------
    # Reads and housekeeping
    # ------------------------------------------------------------------

    async def list_media(self, user_id: str) -> list[MediaFile]:
        return await self.repository.list_media(user_id)

    async def get_media(self, user_id: str, media_id: str) -> MediaFile:
        return await self.repository.get_media(user_id, media_id)

    async def delete_media(self, user_id: str, media_id: str) -> None:
        # Blob objects are left in place; only the rows are removed.
        await self.repository.delete_media(user_id, media_id)

    async def latest_result(self, user_id: str, media_id: str) -> AnalysisResult | None:
        return await self.repository.latest_result(user_id, media_id)

    async def add_feedback(
        self,
        user_id: str,
        result_id: str,
        rating: int,
        feedback_text: str | None = None,
        sentiment: str | None = None,
    ) -> UserFeedback:
        feedback = UserFeedback(
            analysis_result_id=result_id,
            user_id=user_id,
            rating=rating,
            feedback_text=feedback_text,
            sentiment=sentiment or sentiment_for_rating(rating),
        )
        return await self.repository.insert_feedback(user_id, feedback)

    async def stats(self, user_id: str) -> UserStats:
        files = await self.repository.list_media(user_id)
        results = await self.repository.list_results(user_id)

        total = len(files)
        completed = sum(1 for f in files if f.status == "completed")
        avg_time = sum(r.processing_time_ms for r in results) / len(results) if results else 0
        avg_conf = sum(r.confidence_score for r in results) / len(results) if results else 0

        return UserStats(
            total_files=total,
            completed_files=completed,
            deepfakes=sum(1 for r in results if r.classification == "deepfake"),
            fallback_results=sum(1 for r in results if r.is_fallback),
            avg_processing_time=round(avg_time),
            avg_confidence=round(avg_conf, 1),
            completion_rate=round(completed / total * 100, 1) if total else 0.0,
        )
