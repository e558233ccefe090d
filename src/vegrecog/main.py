"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vegrecog.api.routes import router
from vegrecog.config import get_settings
from vegrecog.core.image_store import TempImageStore
from vegrecog.core.recognizer import Recognizer
from vegrecog.core.repository import InMemoryRecognitionRepository
from vegrecog.ml.inference import InferencePool
from vegrecog.ml.model_manager import IdleSessionReaper, OnnxModelManager, sweep_interval
from vegrecog.ml.onnx_classifier import OnnxImageClassifier
from vegrecog.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting VegRecog (device=%s, max_concurrent=%s, classifier=%s, grid=%dx%d, zone_workers=%d)",
        settings.device,
        settings.max_concurrent,
        settings.classifier_model,
        settings.grid_size,
        settings.grid_size,
        settings.zone_workers,
    )

    # The classifier is loaded exactly once here and injected everywhere else.
    model_manager = OnnxModelManager(settings)
    classifier = OnnxImageClassifier(
        model_manager,
        ImagePreprocessor(settings.max_image_pixels),
        settings.classifier_model,
    )
    classifier.warm_up()

    reaper = None
    if model_manager.ttl:
        reaper = IdleSessionReaper(model_manager, sweep_interval(model_manager.ttl))
        reaper.start()
    app.state.session_reaper = reaper

    image_store = TempImageStore(settings.temp_dir)
    app.state.model_manager = model_manager
    app.state.image_store = image_store
    app.state.repository = InMemoryRecognitionRepository()
    app.state.recognizer = Recognizer(
        classifier,
        image_store,
        policy=settings.policy,
        grid_size=settings.grid_size,
        zone_workers=settings.zone_workers,
        serialize_classifier=settings.serialize_classifier,
    )
    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool

    logger.info("VegRecog ready")
    yield

    logger.info("Shutting down VegRecog")
    if reaper is not None:
        await reaper.stop()
    inference_pool.shutdown()
    model_manager.shutdown()
    image_store.cleanup()
    logger.info("VegRecog shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="VegRecog",
        description="Single- and multi-object vegetable recognition with unknown-object detection",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
