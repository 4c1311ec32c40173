"""
deepcheck.config – environment-driven service configuration.

Settings are read once from the environment by ``Settings.from_env()`` and
passed explicitly to every component that needs them, so tests construct a
``Settings`` directly instead of mutating ``os.environ``.
"""
from __future__ import annotations

import os
import tempfile

from pydantic import BaseModel, Field, model_validator

from deepcheck.errors import ConfigurationError

# ─── Upload limits ────────────────────────────────────────────────────────────
MAX_MEDIA_BYTES = 100 * 1024 * 1024   # media-files bucket
MAX_AVATAR_BYTES = 5 * 1024 * 1024    # avatars bucket

SUPPORTED_TYPES: dict[str, tuple[str, ...]] = {
    "image": ("image/jpeg", "image/png"),
    "video": ("video/mp4", "video/quicktime"),
    "audio": ("audio/mpeg", "audio/wav"),
}
AVATAR_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")

# ─── Detection provider ───────────────────────────────────────────────────────
DEFAULT_PROVIDER_URL = "https://api.prd.realitydefender.xyz"
PLACEHOLDER_API_KEY = "YOUR_REALITY_DEFENDER_API_KEY_HERE"
MIN_API_KEY_LENGTH = 10

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 1.0
DEFAULT_POLL_INTERVAL_SECONDS = 2.0
DEFAULT_POLL_MAX_ATTEMPTS = 10


class Thresholds(BaseModel):
    """Confidence cutoffs separating the three classifications."""

    authentic: float = Field(default=75.0, ge=0.0, le=100.0)
    suspicious: float = Field(default=40.0, ge=0.0, le=100.0)

    @model_validator(mode="after")
    def _ordered(self) -> "Thresholds":
        if self.suspicious >= self.authentic:
            raise ValueError("suspicious threshold must be below authentic threshold")
        return self

    def classify(self, confidence: float) -> str:
        if confidence >= self.authentic:
            return "authentic"
        if confidence >= self.suspicious:
            return "suspicious"
        return "deepfake"

    def as_table(self) -> dict[str, float]:
        return {"authentic": self.authentic, "suspicious": self.suspicious, "deepfake": 0.0}


class Settings(BaseModel):
    api_key: str | None = None
    provider_url: str = DEFAULT_PROVIDER_URL
    timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    retry_backoff_seconds: float = Field(default=DEFAULT_RETRY_BACKOFF_SECONDS, ge=0)
    poll_interval_seconds: float = Field(default=DEFAULT_POLL_INTERVAL_SECONDS, ge=0)
    poll_max_attempts: int = Field(default=DEFAULT_POLL_MAX_ATTEMPTS, ge=1)
    thresholds: Thresholds = Field(default_factory=Thresholds)

    storage_url: str | None = None
    storage_service_key: str | None = None
    storage_bucket: str = "media-files"
    fallback_storage_dir: str = Field(
        default_factory=lambda: os.path.join(tempfile.gettempdir(), "deepcheck-uploads")
    )

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """Build settings from environment variables; blank values fall back to defaults."""
        env = os.environ if environ is None else environ

        def _get(key: str, default=None):
            value = env.get(key)
            return default if value is None or value.strip() == "" else value.strip()

        try:
            return cls(
                api_key=_get("REALITY_DEFENDER_API_KEY"),
                provider_url=_get("REALITY_DEFENDER_BASE_URL", DEFAULT_PROVIDER_URL),
                timeout_seconds=float(_get("DETECTOR_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)),
                max_retries=int(_get("DETECTOR_MAX_RETRIES", DEFAULT_MAX_RETRIES)),
                retry_backoff_seconds=float(
                    _get("DETECTOR_RETRY_BACKOFF_SECONDS", DEFAULT_RETRY_BACKOFF_SECONDS)
                ),
                poll_interval_seconds=float(
                    _get("DETECTOR_POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS)
                ),
                poll_max_attempts=int(_get("DETECTOR_POLL_MAX_ATTEMPTS", DEFAULT_POLL_MAX_ATTEMPTS)),
                thresholds=Thresholds(
                    authentic=float(_get("THRESHOLD_AUTHENTIC", 75.0)),
                    suspicious=float(_get("THRESHOLD_SUSPICIOUS", 40.0)),
                ),
                storage_url=_get("STORAGE_URL"),
                storage_service_key=_get("STORAGE_SERVICE_KEY"),
                storage_bucket=_get("STORAGE_BUCKET", "media-files"),
                fallback_storage_dir=_get(
                    "FALLBACK_STORAGE_DIR",
                    os.path.join(tempfile.gettempdir(), "deepcheck-uploads"),
                ),
                log_level=_get("LOG_LEVEL", "INFO").upper(),
            )
        except ValueError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    def require_provider(self) -> None:
        """
        Raise ConfigurationError unless the provider can be called.

        Checked before any provider request is issued.
        """
        key = (self.api_key or "").strip()
        if not key or key == PLACEHOLDER_API_KEY:
            raise ConfigurationError("Reality Defender API key not configured")
        if len(key) < MIN_API_KEY_LENGTH:
            raise ConfigurationError("Reality Defender API key is malformed")
        if not self.provider_url.strip():
            raise ConfigurationError("Reality Defender base URL not configured")

    @property
    def api_key_hint(self) -> str:
        """First eight characters of the key, for log lines."""
        return f"{(self.api_key or '')[:8]}..." if self.api_key else "not set"
