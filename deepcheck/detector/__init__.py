"""deepcheck.detector – detection-provider client, normaliser and fallback policy."""
from .client import RealityDefenderClient
from .fallback import build_fallback, build_placeholder
from .normalizer import ResponseNormalizer, recognize

__all__ = [
    "RealityDefenderClient",
    "ResponseNormalizer",
    "build_fallback",
    "build_placeholder",
    "recognize",
]
