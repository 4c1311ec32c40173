from __future__ import annotations

import asyncio

import pytest
from pydantic import ValidationError

from deepcheck.errors import InvalidStatusTransition, RecordNotFound
from deepcheck.models import AnalysisResult, MediaFile, UserFeedback, advance_status


def _media(user_id="user-1", **kwargs) -> MediaFile:
    return MediaFile(
        user_id=user_id, file_name="a.png", file_type="image/png", file_size=3, **kwargs
    )


def _result(media_id: str, confidence=80.0) -> AnalysisResult:
    return AnalysisResult(
        media_file_id=media_id,
        confidence_score=confidence,
        classification="authentic",
        processing_time_ms=10,
    )


@pytest.mark.parametrize(
    "current, target",
    [
        ("queued", "uploading"),
        ("uploading", "completed"),
        ("completed", "processing"),
        ("processing", "completed"),
        ("processing", "failed"),
        ("queued", "failed"),
        ("completed", "completed"),
    ],
)
def test_allowed_transitions(current, target):
    assert advance_status(current, target) == target


@pytest.mark.parametrize(
    "current, target",
    [
        ("completed", "queued"),
        ("completed", "uploading"),
        ("failed", "processing"),
        ("failed", "completed"),
        ("queued", "completed"),
        ("processing", "uploading"),
    ],
)
def test_rejected_transitions(current, target):
    with pytest.raises(InvalidStatusTransition):
        advance_status(current, target)


async def test_rejected_status_leaves_row_untouched(store):
    media = await store.create_media(_media())

    with pytest.raises(InvalidStatusTransition):
        await store.update_media("user-1", media.id, status="completed", upload_progress=50)

    stored = await store.get_media("user-1", media.id)
    assert stored.status == "queued"
    assert stored.upload_progress == 0


async def test_update_bumps_updated_at(store):
    media = await store.create_media(_media())
    await asyncio.sleep(0.001)
    updated = await store.update_media("user-1", media.id, upload_progress=40)
    assert updated.updated_at > media.updated_at
    assert updated.created_at == media.created_at


async def test_list_media_newest_first(store):
    older = await store.create_media(_media())
    await asyncio.sleep(0.001)
    newer = await store.create_media(_media())
    await store.create_media(_media(user_id="user-2"))

    assert [m.id for m in await store.list_media("user-1")] == [newer.id, older.id]


async def test_results_require_owned_media(store):
    media = await store.create_media(_media())

    with pytest.raises(RecordNotFound):
        await store.insert_result("user-2", _result(media.id))
    with pytest.raises(RecordNotFound):
        await store.insert_result("user-1", _result("missing"))


async def test_latest_result_and_lookup(store):
    media = await store.create_media(_media())
    first = await store.insert_result("user-1", _result(media.id, 10.0))
    await asyncio.sleep(0.001)
    second = await store.insert_result("user-1", _result(media.id, 90.0))

    assert await store.latest_result("user-1", media.id) == second
    assert await store.get_result("user-1", first.id) == first
    with pytest.raises(RecordNotFound):
        await store.get_result("user-2", first.id)


async def test_latest_result_none_before_analysis(store):
    media = await store.create_media(_media())
    assert await store.latest_result("user-1", media.id) is None


async def test_delete_cascades(store):
    media = await store.create_media(_media())
    keep = await store.create_media(_media())
    doomed = await store.insert_result("user-1", _result(media.id))
    kept = await store.insert_result("user-1", _result(keep.id))
    await store.insert_feedback("user-1", UserFeedback(
        analysis_result_id=doomed.id, user_id="user-1", rating=4, sentiment="positive",
    ))

    await store.delete_media("user-1", media.id)

    assert await store.list_results("user-1") == [kept]
    with pytest.raises(RecordNotFound):
        await store.get_result("user-1", doomed.id)
    with pytest.raises(RecordNotFound):
        await store.delete_media("user-1", media.id)


def test_analysis_result_is_immutable():
    result = _result("m-1")
    with pytest.raises(ValidationError):
        result.confidence_score = 10.0


def test_media_kind():
    assert _media().media_kind == "image"
