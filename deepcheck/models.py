"""
deepcheck.models – pydantic data model shared by storage, detector and API.

MediaFile rows move through a monotonic lifecycle (see ``advance_status``);
AnalysisResult rows are frozen once created.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from deepcheck.errors import InvalidStatusTransition

MediaStatus = Literal["queued", "uploading", "processing", "completed", "failed"]
Classification = Literal["authentic", "suspicious", "deepfake"]
Sentiment = Literal["positive", "negative", "neutral"]

# Allowed next states for each MediaFile status.  ``completed`` may re-enter
# ``processing`` when an uploaded file is analysed (or re-analysed).
_TRANSITIONS: dict[str, frozenset[str]] = {
    "queued":     frozenset({"uploading", "failed"}),
    "uploading":  frozenset({"completed", "failed"}),
    "processing": frozenset({"completed", "failed"}),
    "completed":  frozenset({"processing"}),
    "failed":     frozenset(),
}


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


def advance_status(current: str, target: str) -> str:
    """Return *target* if the lifecycle allows ``current -> target``."""
    if current == target:
        return target
    if target not in _TRANSITIONS.get(current, frozenset()):
        raise InvalidStatusTransition(f"Cannot move media file from {current!r} to {target!r}")
    return target


# ---------------------------------------------------------------------------
# Media files
# ---------------------------------------------------------------------------

class MediaFile(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str
    file_name: str
    file_type: str
    file_size: int = Field(ge=0)
    file_url: str = ""
    storage_path: str = ""
    storage_fallback: bool = False
    status: MediaStatus = "queued"
    upload_progress: int = Field(default=0, ge=0, le=100)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def media_kind(self) -> str:
        return self.file_type.split("/", 1)[0]


class UploadProgress(BaseModel):
    """Progress event emitted to an upload observer."""
    file_id: str
    progress: int = Field(ge=0, le=100)
    status: MediaStatus


# ---------------------------------------------------------------------------
# Analysis results
# ---------------------------------------------------------------------------

class HeatmapRegion(BaseModel):
    """Normalised rectangle; coordinates and size are fractions of the image."""
    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)
    width: float = Field(ge=0.0, le=1.0)
    height: float = Field(ge=0.0, le=1.0)
    confidence: float = Field(ge=0.0, le=100.0)
    type: str
    manipulation_score: float | None = None
    note: str | None = None


class HeatmapData(BaseModel):
    # Provider-supplied regions are passed through untouched, so they are
    # kept as plain dicts rather than validated HeatmapRegion objects.
    regions: list[dict[str, Any]] = Field(default_factory=list)
    confidence_threshold: float = 0.7
    api_generated: bool = False
    generated: bool = False
    based_on_manipulation_scores: bool = False
    synthetic: bool = False
    fallback: bool = False
    warning: str | None = None
    message: str | None = None
    error: str | None = None


class ManipulationDetails(BaseModel):
    overall_score: float = Field(ge=0.0, le=100.0)
    face_manipulation: float | None = None
    background_manipulation: float | None = None
    lighting_inconsistencies: float | None = None
    compression_artifacts: float | None = None


class DetectionOutcome(BaseModel):
    """Normalised verdict for one file, before it is persisted."""
    confidence_score: float = Field(ge=0.0, le=100.0)
    classification: Classification
    classification_source: Literal["threshold", "provider_text", "fixed"] = "threshold"
    heatmap_data: HeatmapData | None = None
    manipulation_details: ManipulationDetails | None = None
    processing_time_ms: int = 0
    api_provider: str = "Reality Defender"
    model_version: str = "reality-defender-v1.0"
    schema_version: str = "unrecognized"
    fallback: bool = False
    placeholder: bool = False
    error: str | None = None
    attempts: int = 0
    raw_response: Any = None


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    media_file_id: str
    confidence_score: float = Field(ge=0.0, le=100.0)
    classification: Classification
    processing_time_ms: int = Field(ge=0)
    analysis_metadata: dict[str, Any] = Field(default_factory=dict)
    heatmap_data: HeatmapData | None = None
    manipulation_details: ManipulationDetails | None = None
    created_at: datetime = Field(default_factory=_now)

    @property
    def is_fallback(self) -> bool:
        return bool(self.analysis_metadata.get("fallback"))


class UserFeedback(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    analysis_result_id: str
    user_id: str
    rating: int = Field(ge=1, le=5)
    feedback_text: str | None = None
    sentiment: Sentiment
    created_at: datetime = Field(default_factory=_now)


class UserStats(BaseModel):
    total_files: int
    completed_files: int
    deepfakes: int
    fallback_results: int
    avg_processing_time: int
    avg_confidence: float
    completion_rate: float
