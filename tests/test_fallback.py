from __future__ import annotations

from deepcheck.config import Thresholds
from deepcheck.detector.fallback import (
    FALLBACK_PROVIDER,
    FALLBACK_WARNING,
    build_fallback,
    build_placeholder,
)


def test_fallback_is_flagged_and_conservative():
    outcome = build_fallback("HTTP 503", seed_material="https://cdn.test/a.png", attempts=4)

    assert outcome.fallback is True
    assert outcome.api_provider == FALLBACK_PROVIDER
    assert outcome.error == "HTTP 503"
    assert outcome.attempts == 4
    assert 70.0 <= outcome.confidence_score <= 100.0
    assert outcome.classification in ("authentic", "suspicious")

    heatmap = outcome.heatmap_data
    assert heatmap.fallback is True
    assert heatmap.synthetic is True
    assert heatmap.warning == FALLBACK_WARNING
    assert heatmap.error == "HTTP 503"


def test_fallback_is_deterministic_for_same_input():
    first = build_fallback("timeout", seed_material="file-1")
    second = build_fallback("timeout", seed_material="file-1")
    other = build_fallback("timeout", seed_material="file-2")

    assert first.confidence_score == second.confidence_score
    assert first.manipulation_details == second.manipulation_details
    assert (first.confidence_score, first.manipulation_details) != (
        other.confidence_score, other.manipulation_details,
    )


def test_fallback_subscores_and_overall():
    details = build_fallback("boom", seed_material="x").manipulation_details
    subscores = [
        details.face_manipulation,
        details.background_manipulation,
        details.lighting_inconsistencies,
        details.compression_artifacts,
    ]
    assert all(5 <= s <= 25 for s in subscores)
    assert details.overall_score == round(sum(subscores) / 4, 2)


def test_fallback_classification_uses_thresholds():
    outcome = build_fallback("boom", thresholds=Thresholds(authentic=99.99, suspicious=1))
    assert outcome.classification == "suspicious" or outcome.confidence_score >= 99.99


def test_placeholder_for_video():
    outcome = build_placeholder("video/mp4")
    assert outcome.placeholder is True
    assert outcome.fallback is False
    assert outcome.confidence_score == 50.0
    assert outcome.classification == "suspicious"
    assert outcome.classification_source == "fixed"
    assert "premium-tier" in outcome.error
    assert "video/mp4" in outcome.error
