from __future__ import annotations

import httpx
import pytest

from deepcheck.db.database import InMemoryMediaStore
from deepcheck.detector.client import RealityDefenderClient
from deepcheck.errors import (
    ConfigurationError,
    InvalidStatusTransition,
    PersistenceError,
    RecordNotFound,
)
from deepcheck.models import AnalysisResult
from deepcheck.service import MediaService, sentiment_for_rating
from deepcheck.storage.uploader import MediaUploader

MiB = 1024 * 1024


class BrokenResultStore(InMemoryMediaStore):
    async def insert_result(self, user_id: str, result: AnalysisResult) -> AnalysisResult:
        raise PersistenceError("database connection lost")


async def test_upload_then_analyze_end_to_end(service, provider, store):
    provider.results = [{"result": {"confidence": 0.92}}]
    data = b"\x00" * (50 * MiB)
    progress = []

    media = await service.upload("user-1", "photo.png", data, "image/png", progress.append)
    result = await service.analyze("user-1", media.id)

    assert media.status == "completed"
    assert [e.progress for e in progress] == sorted({e.progress for e in progress})
    assert progress[-1].progress == 100

    assert result.confidence_score == 92.0
    assert result.classification == "authentic"
    assert result.media_file_id == media.id
    assert result.is_fallback is False
    assert result.analysis_metadata["api_provider"] == "Reality Defender"
    assert result.analysis_metadata["api_response"] == {"result": {"confidence": 0.92}}
    assert result.analysis_metadata["confidence_thresholds"]["authentic"] == 75.0
    assert len(provider.uploaded[0]) == len(data)

    stored = await store.get_media("user-1", media.id)
    assert stored.status == "completed"
    assert await store.latest_result("user-1", media.id) == result


async def test_provider_outage_still_stores_flagged_result(service, provider):
    provider.presign_response = lambda: httpx.Response(503)

    media = await service.upload("user-1", "photo.jpg", b"jpg", "image/jpeg")
    result = await service.analyze("user-1", media.id)

    assert result.is_fallback is True
    assert result.analysis_metadata["attempts"] == 4
    assert "fallback_analysis" in result.analysis_metadata["processing_steps"]
    assert (await service.get_media("user-1", media.id)).status == "completed"


async def test_video_gets_placeholder_without_provider_calls(service, provider):
    media = await service.upload("user-1", "clip.mp4", b"mp4", "video/mp4")
    result = await service.analyze("user-1", media.id)

    assert result.analysis_metadata["placeholder"] is True
    assert result.analysis_metadata["processing_steps"] == ["capability_check"]
    assert result.confidence_score == 50.0
    assert provider.calls == []


async def test_persistence_failure_propagates_and_marks_failed(
    detector, settings, provider, blob
):
    store = BrokenResultStore()
    provider.storage = blob
    provider.results = [{"result": {"confidence": 0.5}}]
    service = MediaService(
        store, MediaUploader(store, blob, settings.fallback_storage_dir), detector, settings
    )
    media = await service.upload("user-1", "a.png", b"png", "image/png")

    with pytest.raises(PersistenceError):
        await service.analyze("user-1", media.id)

    assert (await store.get_media("user-1", media.id)).status == "failed"


async def test_missing_configuration_leaves_media_analysable(
    service, store, uploader, settings, provider
):
    unconfigured = settings.model_copy(update={"api_key": None})
    misconfigured = MediaService(
        store, uploader, RealityDefenderClient(unconfigured), unconfigured
    )
    media = await misconfigured.upload("user-1", "a.png", b"png", "image/png")

    with pytest.raises(ConfigurationError):
        await misconfigured.analyze("user-1", media.id)
    assert (await store.get_media("user-1", media.id)).status == "completed"
    assert provider.calls == []

    provider.results = [{"result": {"confidence": 0.92}}]
    result = await service.analyze("user-1", media.id)

    assert result.classification == "authentic"
    assert (await store.get_media("user-1", media.id)).status == "completed"


async def test_unconfigured_provider_still_serves_video_placeholder(store, uploader, settings):
    unconfigured = settings.model_copy(update={"api_key": None})
    service = MediaService(store, uploader, RealityDefenderClient(unconfigured), unconfigured)
    media = await service.upload("user-1", "clip.mp4", b"mp4", "video/mp4")

    result = await service.analyze("user-1", media.id)

    assert result.analysis_metadata["placeholder"] is True


async def test_failed_media_cannot_be_reanalysed(service, store):
    media = await service.upload("user-1", "a.png", b"png", "image/png")
    await store.update_media("user-1", media.id, status="processing")
    await store.update_media("user-1", media.id, status="failed")

    with pytest.raises(InvalidStatusTransition):
        await service.analyze("user-1", media.id)


async def test_reanalysis_keeps_history(service, provider):
    provider.results = [{"result": {"confidence": 0.2}}]
    media = await service.upload("user-1", "a.png", b"png", "image/png")

    first = await service.analyze("user-1", media.id)
    second = await service.analyze("user-1", media.id)

    assert first.id != second.id
    assert len(await service.repository.list_results("user-1")) == 2


async def test_other_users_media_is_invisible(service):
    media = await service.upload("user-1", "a.png", b"png", "image/png")

    with pytest.raises(RecordNotFound):
        await service.analyze("user-2", media.id)
    with pytest.raises(RecordNotFound):
        await service.get_media("user-2", media.id)
    assert await service.list_media("user-2") == []


async def test_batch_runs_sequentially_and_reports_rejections(service, provider):
    provider.results = [{"result": {"confidence": 0.8}}]

    items = await service.process_batch("user-1", [
        ("one.png", b"1", "image/png"),
        ("two.gif", b"2", "image/gif"),
        ("three.wav", b"3", "audio/wav"),
    ])

    assert [i.file_name for i in items] == ["one.png", "two.gif", "three.wav"]
    assert items[0].result.classification == "authentic"
    assert items[1].media is None
    assert "Unsupported file type" in items[1].error
    assert items[2].result.analysis_metadata["placeholder"] is True


async def test_delete_cascades_results_and_feedback(service, provider):
    provider.results = [{"result": {"confidence": 0.8}}]
    media = await service.upload("user-1", "a.png", b"png", "image/png")
    result = await service.analyze("user-1", media.id)
    await service.add_feedback("user-1", result.id, 5)

    await service.delete_media("user-1", media.id)

    assert await service.list_media("user-1") == []
    assert await service.repository.list_results("user-1") == []
    with pytest.raises(RecordNotFound):
        await service.add_feedback("user-1", result.id, 4)


async def test_feedback_sentiment_and_ownership(service, provider):
    provider.results = [{"result": {"confidence": 0.8}}]
    media = await service.upload("user-1", "a.png", b"png", "image/png")
    result = await service.analyze("user-1", media.id)

    derived = await service.add_feedback("user-1", result.id, 2, "missed the edit")
    explicit = await service.add_feedback("user-1", result.id, 2, sentiment="neutral")

    assert derived.sentiment == "negative"
    assert explicit.sentiment == "neutral"
    with pytest.raises(RecordNotFound):
        await service.add_feedback("user-2", result.id, 5)


@pytest.mark.parametrize("rating, sentiment", [(1, "negative"), (2, "negative"), (3, "neutral"), (4, "positive"), (5, "positive")])
def test_sentiment_for_rating(rating, sentiment):
    assert sentiment_for_rating(rating) == sentiment


async def test_stats(service, provider):
    provider.results = [{"result": {"confidence": 0.1}}]
    fake = await service.upload("user-1", "a.png", b"a", "image/png")
    await service.analyze("user-1", fake.id)
    clip = await service.upload("user-1", "b.mp4", b"b", "video/mp4")
    await service.analyze("user-1", clip.id)

    stats = await service.stats("user-1")

    assert stats.total_files == 2
    assert stats.completed_files == 2
    assert stats.deepfakes == 1
    assert stats.fallback_results == 0
    assert stats.avg_confidence == 30.0
    assert stats.completion_rate == 100.0


async def test_stats_for_new_user(service):
    stats = await service.stats("nobody")
    assert stats.total_files == 0
    assert stats.completion_rate == 0.0
    assert stats.avg_confidence == 0.0
