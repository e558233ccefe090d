"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, UploadFile, status

from vegrecog.api.middleware import caller_id, verify_api_key
from vegrecog.api.schemas import (
    CategoryStatsOut,
    ErrorResponse,
    HealthResponse,
    HistoryResponse,
    ModelInfo,
    ModelsResponse,
    Pagination,
    RecognizeResponse,
    StatsResponse,
)
from vegrecog.core.categories import display_name
from vegrecog.errors import ClassifierError, ImageDecodeError
from vegrecog.ml.model_manager import MODEL_REGISTRY

if TYPE_CHECKING:
    from vegrecog.config import Settings
    from vegrecog.core.image_store import TempImageStore
    from vegrecog.core.recognizer import Recognizer
    from vegrecog.core.repository import RecognitionRepository
    from vegrecog.ml.inference import InferencePool
    from vegrecog.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_CONTENT_TYPE_SUFFIXES: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_recognizer(request: Request) -> Recognizer:
    recognizer: Recognizer = request.app.state.recognizer
    return recognizer


def _get_image_store(request: Request) -> TempImageStore:
    store: TempImageStore = request.app.state.image_store
    return store


def _get_repository(request: Request) -> RecognitionRepository:
    repository: RecognitionRepository = request.app.state.repository
    return repository


def _get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


@router.post(
    "/recognize",
    response_model=RecognizeResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Recognize one or several objects in an image",
)
async def recognize(
    request: Request,
    file: UploadFile,
    caller: Annotated[str, Depends(caller_id)],
) -> RecognizeResponse:
    """Recognize an uploaded image and store the result in the caller's history."""
    settings = _get_settings(request)
    suffix = _CONTENT_TYPE_SUFFIXES.get(file.content_type or "")
    if suffix is None:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Only JPEG, PNG and WebP images are supported",
        )

    data = await file.read()
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Image exceeds {settings.max_file_size} bytes",
        )
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty image upload")

    logger.info("Recognition upload from %s: %s (%d KB)", caller, file.filename, len(data) // 1024)
    store = _get_image_store(request)
    path = store.save(data, suffix=suffix)
    try:
        result = await _get_inference_pool(request).run(_get_recognizer(request).recognize, path, caller)
    except TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Too many concurrent recognitions, retry later",
        ) from None
    except ImageDecodeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ClassifierError as exc:
        logger.error("Classifier unavailable: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    finally:
        store.delete(path)

    record = _get_repository(request).save(result)
    return RecognizeResponse.from_record(record)


@router.get(
    "/history/{caller}",
    response_model=HistoryResponse,
    summary="List a caller's past recognitions",
)
async def history(
    request: Request,
    caller: str,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> HistoryResponse:
    """Return a page of the caller's recognitions, newest first."""
    result = _get_repository(request).history(caller, page=page, limit=limit)
    return HistoryResponse(
        recognitions=[RecognizeResponse.from_record(record) for record in result.records],
        pagination=Pagination(total=result.total, page=result.page, limit=result.limit, pages=result.pages),
    )


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Recognition statistics",
)
async def stats(request: Request) -> StatsResponse:
    """Return per-category counts and averages across all recognitions."""
    summary = _get_repository(request).stats()
    return StatsResponse(
        total_recognitions=summary.total_recognitions,
        average_processing_ms=summary.average_processing_ms,
        categories=[
            CategoryStatsOut(
                category=item.category,
                display_name=display_name(item.category),
                count=item.count,
                average_confidence=item.average_confidence,
                last_recognition=item.last_recognition,
            )
            for item in summary.categories
        ],
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=_get_model_manager(request).get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        outstanding_artifacts=_get_image_store(request).outstanding(),
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return registered classifier models and which one is active."""
    settings = _get_settings(request)
    return ModelsResponse(
        models=[
            ModelInfo(
                name=spec.name,
                status="active" if spec.name == settings.classifier_model else "available",
                license=spec.license,
                labels=list(spec.labels),
            )
            for spec in MODEL_REGISTRY.values()
        ]
    )
