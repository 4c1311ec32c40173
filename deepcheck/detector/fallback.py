"""
deepcheck.detector.fallback – synthetic verdicts used when real analysis is impossible.

Two kinds of synthetic result exist:

* a **fallback** result, returned when the provider could not be reached or
  failed.  It is deliberately conservative (biased towards "not confidently
  fake") and is seeded from SHA-256 of the file reference and error, so the
  same failure on the same file always yields the same numbers;
* a **placeholder** result for video/audio input, which the provider tier in
  use does not analyse.

Both are flagged so the presentation layer can warn the user.
"""
from __future__ import annotations

import hashlib
import random

from deepcheck.config import Thresholds
from deepcheck.detector.normalizer import clamp_score
from deepcheck.models import DetectionOutcome, HeatmapData, ManipulationDetails

FALLBACK_PROVIDER = "Fallback Analysis (API Failed)"
FALLBACK_MODEL = "fallback-v1"
FALLBACK_WARNING = (
    "This is a fallback analysis due to API failure. Results may not be accurate."
)
FALLBACK_CONFIDENCE_RANGE = (70.0, 100.0)

PLACEHOLDER_PROVIDER = "Reality Defender (premium tier required)"
PLACEHOLDER_MESSAGE = (
    "Video and audio analysis requires a premium-tier Reality Defender plan; "
    "no analysis was performed."
)


def _seeded_rng(seed_material: str) -> random.Random:
    digest = hashlib.sha256(seed_material.encode("utf-8")).digest()
    return random.Random(int.from_bytes(digest[:8], byteorder="big"))


def build_fallback(
    error: str,
    thresholds: Thresholds | None = None,
    seed_material: str = "",
    processing_time_ms: int = 0,
    attempts: int = 0,
) -> DetectionOutcome:
    """
    Build a conservative, clearly flagged verdict after a provider failure.

    Args:
        error              Message of the error that triggered the fallback.
        thresholds         Cutoffs used to classify the synthetic confidence.
        seed_material      Stable identifier of the input (e.g. file URL).
        processing_time_ms Wall-clock time spent before giving up.
        attempts           Provider attempts made.
    """
    thresholds = thresholds or Thresholds()
    rng = _seeded_rng(f"{seed_material}|{error}")

    low, high = FALLBACK_CONFIDENCE_RANGE
    confidence = clamp_score(low + rng.random() * (high - low))

    subscores = {
        "face_manipulation": float(rng.randint(5, 20)),
        "background_manipulation": float(rng.randint(5, 25)),
        "lighting_inconsistencies": float(rng.randint(5, 20)),
        "compression_artifacts": float(rng.randint(5, 25)),
    }
    overall = clamp_score(sum(subscores.values()) / len(subscores))

    return DetectionOutcome(
        confidence_score=confidence,
        classification=thresholds.classify(confidence),
        heatmap_data=HeatmapData(
            regions=[{
                "x": 0.2, "y": 0.3, "width": 0.1, "height": 0.1,
                "confidence": confidence, "type": "fallback",
            }],
            generated=True,
            synthetic=True,
            fallback=True,
            message="API unavailable, using conservative fallback analysis",
            warning=FALLBACK_WARNING,
            error=error,
        ),
        manipulation_details=ManipulationDetails(overall_score=overall, **subscores),
        processing_time_ms=processing_time_ms,
        api_provider=FALLBACK_PROVIDER,
        model_version=FALLBACK_MODEL,
        schema_version="fallback",
        fallback=True,
        error=error,
        attempts=attempts,
    )


def build_placeholder(file_type: str) -> DetectionOutcome:
    """Fixed result for media kinds the provider tier does not analyse."""
    return DetectionOutcome(
        confidence_score=50.0,
        classification="suspicious",
        classification_source="fixed",
        heatmap_data=None,
        manipulation_details=None,
        api_provider=PLACEHOLDER_PROVIDER,
        model_version="none",
        schema_version="placeholder",
        placeholder=True,
        error=f"{PLACEHOLDER_MESSAGE} (received {file_type})",
    )
