"""Environment-based configuration for VegRecog."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from vegrecog.core.policy import RecognitionPolicy


class Settings(BaseSettings):
    """Application settings loaded from VEGRECOG_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VEGRECOG_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    classifier_model: str = "vegetables_tm_v1"
    models_dir: str = "models"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    zone_workers: int = Field(default=1, ge=1)
    serialize_classifier: bool = False

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=10 * 1024 * 1024, ge=1)

    # Model management
    model_ttl: int = Field(default=300, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Zone tiling
    temp_dir: str | None = None
    grid_size: int = Field(default=3, ge=1)

    # Heuristic thresholds and weights
    policy: RecognitionPolicy = RecognitionPolicy()


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
