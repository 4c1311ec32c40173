"""
deepcheck.forensic.explainability – human-readable notes for an AnalysisResult.

Turns a stored result into short sentences the presentation layer can show
next to the score, including the warnings that must accompany fallback,
placeholder and synthetic-heatmap results.
"""
from __future__ import annotations

from deepcheck.models import AnalysisResult

_CATEGORY_LABELS = {
    "face_manipulation": "face manipulation",
    "background_manipulation": "background manipulation",
    "lighting_inconsistencies": "lighting inconsistencies",
    "compression_artifacts": "compression artifacts",
}


def explain_result(result: AnalysisResult) -> list[str]:
    """
    Build the explanation list for *result*.

    Args:
        result  A stored AnalysisResult.

    Returns:
        Notes ordered from verdict to caveats.
    """
    metadata = result.analysis_metadata
    notes: list[str] = []

    if result.classification == "authentic":
        notes.append(
            "AUTHENTIC: no strong manipulation indicators were detected, "
            "but automated tools are not infallible."
        )
    elif result.classification == "suspicious":
        notes.append(
            "SUSPICIOUS: automated signals are inconclusive; human review is recommended."
        )
    else:
        notes.append(
            "DEEPFAKE: the media shows strong signs of manipulation and should be "
            "reviewed before any further use or distribution."
        )

    notes.append(
        f"Authenticity confidence: {result.confidence_score:.2f} / 100 "
        "(0 = certainly manipulated, 100 = certainly authentic)."
    )

    if metadata.get("classification_source") == "provider_text":
        notes.append("The verdict follows the provider's explicit classification.")

    details = result.manipulation_details
    if details is not None:
        present = {
            name: getattr(details, name)
            for name in _CATEGORY_LABELS
            if getattr(details, name) is not None
        }
        if present:
            strongest = max(present, key=present.get)
            notes.append(
                f"Strongest manipulation signal: {_CATEGORY_LABELS[strongest]} "
                f"({present[strongest]:.2f}); overall manipulation score "
                f"{details.overall_score:.2f}."
            )

    if metadata.get("placeholder"):
        notes.append(
            "No analysis was performed: video and audio detection require a "
            "premium-tier provider plan."
        )
    if metadata.get("fallback"):
        notes.append(
            "WARNING: the detection provider was unavailable; this is a fallback "
            f"estimate and may not be accurate ({metadata.get('error') or 'unknown error'})."
        )

    heatmap = result.heatmap_data
    if heatmap is not None and heatmap.synthetic and not heatmap.fallback:
        notes.append(
            "Heatmap regions are illustrative only; the provider did not report "
            "specific regions."
        )
    if metadata.get("storage_fallback"):
        notes.append("The file is held in temporary storage and may not persist.")

    return notes
