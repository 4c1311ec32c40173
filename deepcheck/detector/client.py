"""
deepcheck.detector.client – Reality Defender integration.

RealityDefenderClient obtains a verdict for one file through the provider's
three-step exchange:

1. POST ``/api/files/aws-presigned`` (``X-API-KEY`` header, ``fileName``)
   -> one-time signed upload URL plus a media identifier;
2. PUT the raw bytes to the signed URL;
3. GET ``/api/media/users/{media_id}`` at a fixed interval until the
   provider reports a terminal status or the polling budget runs out.

The whole exchange runs under a hard timeout and is retried, with linearly
increasing backoff, for transient failures only.  Provider-side failures
never escape ``analyze``: they are demoted to a flagged fallback result.
Only missing configuration raises.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

import httpx
from pydantic import ValidationError

from deepcheck.config import Settings
from deepcheck.detector.fallback import build_fallback, build_placeholder
from deepcheck.detector.normalizer import ResponseNormalizer
from deepcheck.detector.polling import (
    AttemptState,
    AttemptStateMachine,
    ResultPoller,
    Sleep,
)
from deepcheck.errors import (
    ProviderError,
    ProviderTimeout,
    TransientProviderError,
)
from deepcheck.models import DetectionOutcome

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Reality Defender"
MODEL_VERSION = "reality-defender-v1.0"
PRESIGN_PATH = "/api/files/aws-presigned"
RESULTS_PATH = "/api/media/users/{media_id}"


class _FileSource:
    """Bytes for the file under analysis, read at most once across retries."""

    def __init__(self, file_url: str | None, data: bytes | None) -> None:
        self.file_url = file_url
        self._data = data

    @property
    def seed(self) -> str:
        if self.file_url:
            return self.file_url
        return hashlib.sha256(self._data or b"").hexdigest()

    async def read(self, client: httpx.AsyncClient) -> bytes:
        if self._data is None:
            self._data = await self._fetch(client)
        return self._data

    async def _fetch(self, client: httpx.AsyncClient) -> bytes:
        parsed = urlparse(self.file_url or "")
        if parsed.scheme == "file":
            path = Path(url2pathname(unquote(parsed.path)))
            try:
                return await asyncio.to_thread(path.read_bytes)
            except OSError as exc:
                raise ProviderError(f"Failed to read local file: {exc}") from exc

        response = await client.get(self.file_url, follow_redirects=True)
        if not response.is_success:
            raise ProviderError.from_status(response.status_code, "Failed to fetch file")
        logger.debug("File fetched successfully, size: %d bytes", len(response.content))
        return response.content


class RealityDefenderClient:
    """
    Dependency-injected detection client.

    Usage::

        client = RealityDefenderClient(Settings.from_env())
        outcome = await client.analyze("image/png", file_url=url)

    Args:
        settings     Provider key/URL, timeout, retry and polling budgets.
        http_client  Optional shared httpx.AsyncClient (tests pass one built
                     on httpx.MockTransport).  When omitted a client is
                     created per ``analyze`` call.
        sleep        Coroutine used for backoff and polling delays.
        normalizer   Payload normaliser; defaults to one using
                     ``settings.thresholds``.
        clock        Monotonic clock in seconds, for processing time.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
        normalizer: ResponseNormalizer | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self._http = http_client
        self._sleep = sleep
        self.normalizer = normalizer or ResponseNormalizer(settings.thresholds)
        self._clock = clock

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def analyze(
        self,
        file_type: str,
        file_url: str | None = None,
        data: bytes | None = None,
    ) -> DetectionOutcome:
        """
        Analyse one file and return a normalised outcome.

        Non-image input short-circuits to a placeholder result without any
        network call.

        Raises:
            ConfigurationError  API key or base URL missing/malformed.
            ValueError          Neither *file_url* nor *data* supplied.
        """
        if not self.ensure_configured(file_type):
            logger.info("Skipping provider for %s: premium tier required", file_type)
            return build_placeholder(file_type)

        if file_url is None and data is None:
            raise ValueError("file_url or data is required")

        source = _FileSource(file_url, data)
        started = self._clock()
        max_attempts = self.settings.max_retries + 1
        attempts: list[AttemptStateMachine] = []
        last_error: ProviderError | None = None

        logger.info(
            "Starting %s analysis (%s, key %s)",
            PROVIDER_NAME, file_type, self.settings.api_key_hint,
        )

        async with self._session() as client:
            for number in range(1, max_attempts + 1):
                machine = AttemptStateMachine(number)
                attempts.append(machine)
                try:
                    outcome = await asyncio.wait_for(
                        self._exchange(client, machine, source, file_type),
                        timeout=self.settings.timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    error: ProviderError = ProviderTimeout(
                        f"Provider call timed out after {self.settings.timeout_seconds:g}s"
                    )
                except httpx.TimeoutException as exc:
                    error = ProviderTimeout(f"Provider request timed out: {exc}")
                except httpx.HTTPError as exc:
                    error = TransientProviderError(f"Provider transport error: {exc}")
                except ProviderError as exc:
                    error = exc
                else:
                    return outcome.model_copy(update={
                        "processing_time_ms": self._elapsed_ms(started),
                        "attempts": number,
                    })

                machine.fail(error)
                last_error = error
                logger.warning(
                    "Provider attempt %d/%d failed (%s): %s",
                    number, max_attempts,
                    "transient" if error.transient else "non-transient", error,
                )
                if not error.transient:
                    break
                if number < max_attempts:
                    await self._sleep(self.settings.retry_backoff_seconds * number)

        message = str(last_error) if last_error else "Unknown provider error"
        logger.error("Using fallback analysis due to error: %s", message)
        return build_fallback(
            message,
            thresholds=self.settings.thresholds,
            seed_material=source.seed,
            processing_time_ms=self._elapsed_ms(started),
            attempts=len(attempts),
        )

    def ensure_configured(self, file_type: str) -> bool:
        """
        Return True when *file_type* goes to the provider.

        Raises ConfigurationError for image types when the provider key or
        URL is unusable; other media kinds never need the provider.
        """
        if not file_type.lower().startswith("image/"):
            return False
        self.settings.require_provider()
        return True

    # ------------------------------------------------------------------
    # Exchange steps
    # ------------------------------------------------------------------

    async def _exchange(
        self,
        client: httpx.AsyncClient,
        machine: AttemptStateMachine,
        source: _FileSource,
        file_type: str,
    ) -> DetectionOutcome:
        machine.advance(AttemptState.UPLOADING)
        payload = await source.read(client)
        signed_url, media_id = await self._request_upload_target(client, file_type)
        await self._upload(client, signed_url, payload, file_type)

        machine.advance(AttemptState.POLLING)
        poller = ResultPoller(
            client,
            self._url(RESULTS_PATH.format(media_id=media_id)),
            headers=self._headers(),
            interval_seconds=self.settings.poll_interval_seconds,
            max_attempts=self.settings.poll_max_attempts,
            sleep=self._sleep,
        )
        polled = await poller.poll()

        try:
            outcome = self.normalizer.normalize(polled.body)
        except ValidationError as exc:
            raise ProviderError(
                f"Malformed provider payload: {exc.error_count()} invalid field(s)"
            ) from exc
        machine.advance(AttemptState.COMPLETED)
        return outcome.model_copy(update={
            "api_provider": PROVIDER_NAME,
            "model_version": MODEL_VERSION,
        })

    async def _request_upload_target(
        self, client: httpx.AsyncClient, file_type: str
    ) -> tuple[str, str]:
        subtype = file_type.split("/", 1)[-1] or "bin"
        file_name = f"image_{int(time.time() * 1000)}.{subtype}"
        response = await client.post(
            self._url(PRESIGN_PATH),
            headers={**self._headers(), "Content-Type": "application/json"},
            json={"fileName": file_name},
        )
        if not response.is_success:
            raise ProviderError.from_status(response.status_code, "Failed to get signed URL")
        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError("Malformed signed URL response from provider") from exc
        return parse_upload_target(body)

    async def _upload(
        self, client: httpx.AsyncClient, signed_url: str, payload: bytes, file_type: str
    ) -> None:
        response = await client.put(
            signed_url, content=payload, headers={"Content-Type": file_type}
        )
        if not response.is_success:
            raise ProviderError.from_status(response.status_code, "Failed to upload file")
        logger.debug("File uploaded to provider (%d bytes)", len(payload))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
            return
        timeout = httpx.Timeout(self.settings.timeout_seconds)
        async with httpx.AsyncClient(timeout=timeout) as client:
            yield client

    def _headers(self) -> dict[str, str]:
        return {"X-API-KEY": self.settings.api_key or ""}

    def _url(self, path: str) -> str:
        return self.settings.provider_url.rstrip("/") + path

    def _elapsed_ms(self, started: float) -> int:
        return max(0, int((self._clock() - started) * 1000))


def parse_upload_target(body: Any) -> tuple[str, str]:
    """
    Extract ``(signed_url, media_id)`` from a presign response.

    Accepts both ``{"code": "ok", "response": {"signedUrl": ...}, "mediaId": ...}``
    and the older ``{"url": ..., "fileId" | "id": ...}`` shape.
    """
    if not isinstance(body, dict):
        raise ProviderError("Invalid signed URL response from provider")
    if body.get("code") not in (None, "ok"):
        raise ProviderError(f"Provider refused upload target: {body.get('code')}")

    response = body.get("response") if isinstance(body.get("response"), dict) else {}
    signed_url = response.get("signedUrl") or body.get("signedUrl") or body.get("url")
    if not signed_url:
        raise ProviderError("No signed URL received from provider")

    media_id = (
        body.get("mediaId")
        or response.get("mediaId")
        or body.get("fileId")
        or body.get("id")
    )
    if not media_id:
        raise ProviderError("No media ID found in the provider response")
    return str(signed_url), str(media_id)
