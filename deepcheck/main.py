"""
deepcheck.main – FastAPI application entry point.

Wires the persistence store, blob storage, uploader and detection client
into a MediaService and registers the HTTP routes used by the presentation
layer.

Start the server:
    uvicorn deepcheck.main:app --reload --port 8000
"""
from __future__ import annotations

import logging
import os

from fastapi import APIRouter, Depends, FastAPI, File, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from deepcheck.config import Settings
from deepcheck.db.database import InMemoryMediaStore, MediaRepository
from deepcheck.detector.client import RealityDefenderClient
from deepcheck.errors import (
    ConfigurationError,
    InvalidStatusTransition,
    MediaValidationError,
    PersistenceError,
    RecordNotFound,
    StorageError,
)
from deepcheck.forensic.explainability import explain_result
from deepcheck.logging_setup import configure_logging
from deepcheck.models import AnalysisResult, MediaFile, Sentiment, UserFeedback, UserStats
from deepcheck.service import MediaService
from deepcheck.storage.blob import BlobStorage, LocalBlobStorage, SupabaseBlobStorage
from deepcheck.storage.uploader import MediaUploader

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class AnalysisResponse(BaseModel):
    result:      AnalysisResult
    explanation: list[str]
    fallback:    bool


class FeedbackRequest(BaseModel):
    rating:        int             = Field(ge=1, le=5, description="1 (poor) to 5 (excellent)")
    feedback_text: str | None      = Field(default=None, max_length=2000)
    sentiment:     Sentiment | None = Field(default=None, description="Derived from rating when omitted")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def _default_storage(settings: Settings) -> BlobStorage:
    if settings.storage_url and settings.storage_service_key:
        return SupabaseBlobStorage(
            settings.storage_url, settings.storage_service_key, settings.storage_bucket
        )
    root = os.path.join(settings.fallback_storage_dir, "objects")
    logger.warning("STORAGE_URL not configured; storing media under %s", root)
    return LocalBlobStorage(root)


def create_app(
    settings: Settings | None = None,
    repository: MediaRepository | None = None,
    storage: BlobStorage | None = None,
    detector: RealityDefenderClient | None = None,
) -> FastAPI:
    """Build the ASGI app; every collaborator can be swapped for a test double."""
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    repository = repository or InMemoryMediaStore()
    uploader = MediaUploader(
        repository, storage or _default_storage(settings), settings.fallback_storage_dir
    )
    service = MediaService(
        repository, uploader, detector or RealityDefenderClient(settings), settings
    )

    app = FastAPI(
        title="DeepCheck – Media Authentication API",
        version="1.0.0",
        description=(
            "Upload images, video and audio, analyse them with a third-party "
            "deepfake-detection provider and retrieve normalised results."
        ),
    )
    app.state.service = service
    app.state.settings = settings
    _register_error_handlers(app)
    app.include_router(_routes())
    return app


def get_service(request: Request) -> MediaService:
    return request.app.state.service


async def current_user(x_user_id: str | None = Header(default=None)) -> str:
    """Resolve the authenticated user from the ``X-User-Id`` header."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="User not authenticated")
    return user_id


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

def _register_error_handlers(app: FastAPI) -> None:
    def _json(status: int, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    @app.exception_handler(MediaValidationError)
    async def _validation(_: Request, exc: MediaValidationError) -> JSONResponse:
        return _json(exc.status_code, exc)

    @app.exception_handler(RecordNotFound)
    async def _not_found(_: Request, exc: RecordNotFound) -> JSONResponse:
        return _json(404, exc)

    @app.exception_handler(InvalidStatusTransition)
    async def _conflict(_: Request, exc: InvalidStatusTransition) -> JSONResponse:
        return _json(409, exc)

    @app.exception_handler(ConfigurationError)
    async def _misconfigured(_: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error("Configuration error: %s", exc)
        return _json(503, exc)

    @app.exception_handler(StorageError)
    async def _storage(_: Request, exc: StorageError) -> JSONResponse:
        return _json(502, exc)

    @app.exception_handler(PersistenceError)
    async def _persistence(_: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Persistence error: %s", exc)
        return _json(500, exc)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

def _routes() -> APIRouter:
    router = APIRouter(prefix="/api")

    @router.get("/health")
    async def health() -> dict[str, str]:
        """Liveness check; returns {"status": "ok"} when the server is up."""
        return {"status": "ok"}

    @router.post("/media", response_model=MediaFile, status_code=201)
    async def upload_media(
        file: UploadFile = File(...),
        user_id: str = Depends(current_user),
        service: MediaService = Depends(get_service),
    ) -> MediaFile:
        """Validate and store one file; analysis is a separate call."""
        file_type = (file.content_type or "").split(";")[0].strip().lower()
        if file.size is not None:
            service.uploader.validate(file_type, file.size)
        data = await file.read()
        return await service.upload(user_id, file.filename or "upload", data, file_type)

    @router.get("/media", response_model=list[MediaFile])
    async def list_media(
        user_id: str = Depends(current_user),
        service: MediaService = Depends(get_service),
    ) -> list[MediaFile]:
        """Return the caller's files, newest first."""
        return await service.list_media(user_id)

    @router.get("/media/{media_id}", response_model=MediaFile)
    async def get_media(
        media_id: str,
        user_id: str = Depends(current_user),
        service: MediaService = Depends(get_service),
    ) -> MediaFile:
        return await service.get_media(user_id, media_id)

    @router.delete("/media/{media_id}", status_code=204)
    async def delete_media(
        media_id: str,
        user_id: str = Depends(current_user),
        service: MediaService = Depends(get_service),
    ) -> Response:
        """Delete a file together with its analysis results and feedback."""
        await service.delete_media(user_id, media_id)
        return Response(status_code=204)

    @router.post("/media/{media_id}/analyze", response_model=AnalysisResponse)
    async def analyze_media(
        media_id: str,
        user_id: str = Depends(current_user),
        service: MediaService = Depends(get_service),
    ) -> AnalysisResponse:
        """
        Run deepfake detection for an uploaded file.

        Always yields a result for provider-side problems; check ``fallback``
        before trusting the verdict.
        """
        result = await service.analyze(user_id, media_id)
        return AnalysisResponse(
            result=result, explanation=explain_result(result), fallback=result.is_fallback
        )

    @router.get("/media/{media_id}/result", response_model=AnalysisResponse)
    async def get_result(
        media_id: str,
        user_id: str = Depends(current_user),
        service: MediaService = Depends(get_service),
    ) -> AnalysisResponse:
        result = await service.latest_result(user_id, media_id)
        if result is None:
            raise HTTPException(status_code=404, detail="No analysis result for this file")
        return AnalysisResponse(
            result=result, explanation=explain_result(result), fallback=result.is_fallback
        )

    @router.post("/results/{result_id}/feedback", response_model=UserFeedback, status_code=201)
    async def add_feedback(
        result_id: str,
        payload: FeedbackRequest,
        user_id: str = Depends(current_user),
        service: MediaService = Depends(get_service),
    ) -> UserFeedback:
        return await service.add_feedback(
            user_id, result_id, payload.rating, payload.feedback_text, payload.sentiment
        )

    @router.get("/stats", response_model=UserStats)
    async def stats(
        user_id: str = Depends(current_user),
        service: MediaService = Depends(get_service),
    ) -> UserStats:
        """Dashboard totals for the caller's files and results."""
        return await service.stats(user_id)

    return router


app = create_app()
