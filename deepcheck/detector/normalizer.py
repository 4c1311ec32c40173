"""
deepcheck.detector.normalizer – provider payload -> DetectionOutcome.

The provider's JSON has changed shape across versions.  ``recognize`` maps a
raw payload onto one of a closed set of recognised schemas (each of which
canonicalises its field names to snake_case), with ``UnrecognizedPayload``
as the explicit fall-through.  Everything downstream reads only the
canonical fields, so the extraction rules below are the single place that
decides what a payload means.

Normalisation never raises: a payload with nothing recognisable becomes a
50 / suspicious verdict.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from deepcheck.config import Thresholds
from deepcheck.models import DetectionOutcome, HeatmapData, ManipulationDetails

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 50.0
AUTHENTIC_SNAP = 85.0
DEEPFAKE_SNAP = 25.0
SYNTHETIC_HEATMAP_WARNING = (
    "Using synthetic heatmap data - the provider did not return specific regions"
)

# Every field the normaliser understands, in canonical snake_case.
KNOWN_FIELDS = frozenset({
    "confidence", "authenticity_score", "score", "fake_probability",
    "real_probability", "manipulation_score", "probability", "authenticity",
    "classification", "status",
    "regions", "face_manipulation", "background_manipulation",
    "lighting_inconsistencies", "compression_artifacts",
})

_AUTHENTIC_WORDS = ("real", "authentic", "genuine")
_DEEPFAKE_WORDS = ("fake", "deepfake", "manipulated")


# ---------------------------------------------------------------------------
# Recognised payload schemas
# ---------------------------------------------------------------------------

def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _canonical(data: dict[str, Any]) -> dict[str, Any]:
    return {_snake(k): v for k, v in data.items() if isinstance(k, str)}


@dataclass(frozen=True)
class ResultEnvelope:
    """``{"id": ..., "status": ..., "result": {...snake_case fields}}``"""
    fields: dict[str, Any]
    envelope_status: str | None = None
    kind: str = field(default="result_envelope", init=False)


@dataclass(frozen=True)
class MediaEnvelope:
    """``{"code": "ok", "response": {...camelCase fields}}`` from the media endpoint."""
    fields: dict[str, Any]
    summary_status: str | None = None
    kind: str = field(default="media_envelope", init=False)


@dataclass(frozen=True)
class FlatPayload:
    """A bare object carrying the known fields at top level."""
    fields: dict[str, Any]
    kind: str = field(default="flat", init=False)


@dataclass(frozen=True)
class UnrecognizedPayload:
    raw: Any
    fields: dict[str, Any] = field(default_factory=dict)
    kind: str = field(default="unrecognized", init=False)


ProviderPayload = Union[ResultEnvelope, MediaEnvelope, FlatPayload, UnrecognizedPayload]


def recognize(payload: Any) -> ProviderPayload:
    """Classify *payload* into one of the recognised provider schemas."""
    if not isinstance(payload, dict):
        return UnrecognizedPayload(raw=payload)

    result = payload.get("result")
    if isinstance(result, dict):
        status = payload.get("status")
        return ResultEnvelope(
            fields=_canonical(result),
            envelope_status=status if isinstance(status, str) else None,
        )

    response = payload.get("response")
    if isinstance(response, dict):
        summary = response.get("resultsSummary") or response.get("results_summary")
        summary_status = summary.get("status") if isinstance(summary, dict) else None
        return MediaEnvelope(
            fields=_canonical(response),
            summary_status=summary_status if isinstance(summary_status, str) else None,
        )

    fields = _canonical(payload)
    if KNOWN_FIELDS & fields.keys():
        return FlatPayload(fields=fields)
    return UnrecognizedPayload(raw=payload)


# ---------------------------------------------------------------------------
# Numeric helpers
# ---------------------------------------------------------------------------

def clamp_score(value: float) -> float:
    """Clamp to [0, 100] and round to two decimals."""
    return round(max(0.0, min(100.0, float(value))), 2)


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _fraction(v: float) -> float:
    return v * 100.0


def _auto_scale(v: float) -> float:
    return v * 100.0 if v <= 1.0 else v


def _inverted(v: float) -> float:
    return 100.0 - v * 100.0


# Confidence extraction rules, highest priority first.
CONFIDENCE_RULES: tuple[tuple[str, Callable[[float], float]], ...] = (
    ("confidence", _fraction),
    ("authenticity_score", _fraction),
    ("score", _auto_scale),
    ("fake_probability", _inverted),
    ("real_probability", _fraction),
    ("manipulation_score", _inverted),
    ("probability", _auto_scale),
    ("authenticity", _auto_scale),
)

SUBSCORE_FIELDS = (
    "face_manipulation",
    "background_manipulation",
    "lighting_inconsistencies",
    "compression_artifacts",
)

# Fixed rectangles used when heatmap regions are synthesised from sub-scores.
_SUBSCORE_REGIONS: tuple[tuple[str, str, dict[str, float]], ...] = (
    ("face_manipulation", "face_region", {"x": 0.3, "y": 0.2, "width": 0.4, "height": 0.4}),
    ("background_manipulation", "background", {"x": 0.1, "y": 0.1, "width": 0.8, "height": 0.8}),
    ("lighting_inconsistencies", "lighting", {"x": 0.2, "y": 0.3, "width": 0.6, "height": 0.4}),
    ("compression_artifacts", "compression", {"x": 0.0, "y": 0.0, "width": 1.0, "height": 1.0}),
)
_FULL_FACE_REGION = {"x": 0.3, "y": 0.2, "width": 0.4, "height": 0.4}


def match_vocabulary(text: str) -> str | None:
    """Map a provider verdict string onto a classification, if it names one."""
    lowered = text.lower()
    if any(word in lowered for word in _AUTHENTIC_WORDS):
        return "authentic"
    if any(word in lowered for word in _DEEPFAKE_WORDS):
        return "deepfake"
    return None


# ---------------------------------------------------------------------------
# Normaliser
# ---------------------------------------------------------------------------

class ResponseNormalizer:
    """
    Convert a raw provider payload into a DetectionOutcome.

    Usage::

        normalizer = ResponseNormalizer(Thresholds())
        outcome = normalizer.normalize({"result": {"confidence": 0.92}})
        outcome.confidence_score   # 92.0
    """

    def __init__(self, thresholds: Thresholds | None = None) -> None:
        self.thresholds = thresholds or Thresholds()

    def normalize(self, payload: Any) -> DetectionOutcome:
        recognized = recognize(payload)
        fields = recognized.fields

        confidence, source_field = self.extract_confidence(fields)
        classification = self.thresholds.classify(confidence)
        classification_source = "threshold"

        override = self.textual_override(recognized)
        if override is not None:
            classification = override
            classification_source = "provider_text"
            if override == "authentic" and confidence < self.thresholds.authentic:
                confidence = AUTHENTIC_SNAP
            elif override == "deepfake" and confidence >= self.thresholds.suspicious:
                confidence = DEEPFAKE_SNAP

        confidence = clamp_score(confidence)
        logger.debug(
            "Normalised %s payload: field=%s confidence=%.2f classification=%s (%s)",
            recognized.kind, source_field, confidence, classification, classification_source,
        )

        return DetectionOutcome(
            confidence_score=confidence,
            classification=classification,
            classification_source=classification_source,
            heatmap_data=self.build_heatmap(fields, confidence),
            manipulation_details=self.extract_manipulation_details(fields),
            schema_version=recognized.kind,
            raw_response=payload,
        )

    # ------------------------------------------------------------------
    # Extraction steps
    # ------------------------------------------------------------------

    @staticmethod
    def extract_confidence(fields: dict[str, Any]) -> tuple[float, str | None]:
        """Return (confidence 0-100, field used) following CONFIDENCE_RULES."""
        for name, convert in CONFIDENCE_RULES:
            value = _number(fields.get(name))
            if value is not None:
                return clamp_score(convert(value)), name
        return DEFAULT_CONFIDENCE, None

    @staticmethod
    def textual_override(recognized: ProviderPayload) -> str | None:
        fields = recognized.fields
        candidates = [fields.get("classification"), fields.get("status")]
        if isinstance(recognized, MediaEnvelope):
            candidates.append(recognized.summary_status)
        for text in candidates:
            if isinstance(text, str):
                verdict = match_vocabulary(text)
                if verdict is not None:
                    return verdict
        return None

    @staticmethod
    def build_heatmap(fields: dict[str, Any], confidence: float) -> HeatmapData:
        regions = fields.get("regions")
        if isinstance(regions, list) and regions and all(isinstance(r, dict) for r in regions):
            return HeatmapData(regions=regions, api_generated=True)
        if regions is not None:
            logger.warning("Ignoring malformed provider regions: %r", regions)

        synthesized = []
        for name, region_type, rect in _SUBSCORE_REGIONS:
            value = _number(fields.get(name))
            if value is None:
                continue
            subscore = clamp_score(_auto_scale(value))
            synthesized.append({
                **rect,
                "confidence": clamp_score(100.0 - subscore),
                "type": region_type,
                "manipulation_score": subscore,
            })
        if synthesized:
            return HeatmapData(
                regions=synthesized, generated=True, based_on_manipulation_scores=True
            )

        return HeatmapData(
            regions=[{
                **_FULL_FACE_REGION,
                "confidence": clamp_score(confidence),
                "type": "face_region",
                "note": "synthetic_region",
            }],
            generated=True,
            synthetic=True,
            warning=SYNTHETIC_HEATMAP_WARNING,
        )

    @staticmethod
    def extract_manipulation_details(fields: dict[str, Any]) -> ManipulationDetails | None:
        present: dict[str, float] = {}
        for name in SUBSCORE_FIELDS:
            value = _number(fields.get(name))
            if value is not None:
                present[name] = clamp_score(_auto_scale(value))
        if not present:
            return None
        overall = clamp_score(sum(present.values()) / len(present))
        return ManipulationDetails(overall_score=overall, **present)
