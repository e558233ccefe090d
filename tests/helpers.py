"""Test doubles and synthetic images shared by the test modules."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, UnidentifiedImageError

from vegrecog.core.categories import Category
from vegrecog.core.types import Prediction, rank_predictions
from vegrecog.errors import ClassifierError, ImageDecodeError

if TYPE_CHECKING:
    from pathlib import Path

RED = (220, 30, 30)
ORANGE = (240, 140, 20)
BROWN = (120, 80, 40)
WHITE = (255, 255, 255)

# Nearest-color palette: each category has one color, white is background.
_PALETTE: dict[Category | None, tuple[int, int, int]] = {
    Category.TOMATO: RED,
    Category.CARROT: ORANGE,
    Category.POTATO: BROWN,
    None: WHITE,
}


def preds(tomato: int = 0, carrot: int = 0, potato: int = 0) -> list[Prediction]:
    """A full, ranked prediction list."""
    return rank_predictions(
        [
            Prediction(Category.TOMATO, tomato),
            Prediction(Category.CARROT, carrot),
            Prediction(Category.POTATO, potato),
        ]
    )


def write_image(path: Path, width: int, height: int, color: tuple[int, int, int] = WHITE) -> Path:
    Image.new("RGB", (width, height), color).save(path)
    return path


def write_grid_image(path: Path, rows: list[list[tuple[int, int, int]]], cell: int = 100) -> Path:
    """Write an image made of solid ``cell`` x ``cell`` blocks, one color per grid cell."""
    height = len(rows) * cell
    width = len(rows[0]) * cell
    pixels = np.zeros((height, width, 3), dtype=np.uint8)
    for r, row in enumerate(rows):
        for c, color in enumerate(row):
            pixels[r * cell : (r + 1) * cell, c * cell : (c + 1) * cell] = color
    Image.fromarray(pixels).save(path)
    return path


def write_noise_image(path: Path, width: int, height: int, seed: int = 0) -> Path:
    """Random pixels saved as PNG: incompressible, so the file is large."""
    rng = np.random.default_rng(seed)
    Image.fromarray(rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)).save(path, format="PNG")
    return path


def color_predictions(image: Path) -> list[Prediction]:
    """Score categories by the share of non-background pixels nearest their color."""
    with Image.open(image) as src:
        pixels = np.asarray(src.convert("RGB"), dtype=np.float32).reshape(-1, 3)
    keys = list(_PALETTE)
    palette = np.array([_PALETTE[k] for k in keys], dtype=np.float32)
    nearest = np.argmin(((pixels[:, None, :] - palette[None, :, :]) ** 2).sum(axis=2), axis=1)
    counts = {key: int((nearest == i).sum()) for i, key in enumerate(keys)}
    foreground = sum(count for key, count in counts.items() if key is not None)
    if foreground == 0:
        return preds(tomato=34, carrot=33, potato=33)
    return rank_predictions(
        Prediction(category, round(100 * counts[category] / foreground)) for category in Category
    )


class ScriptedClassifier:
    """Fake classifier: fixed whole-image answer, color-based answers for zone crops."""

    model_name = "scripted"

    def __init__(
        self,
        whole: list[Prediction] | None = None,
        fail_whole: bool = False,
        fail_zones: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.whole = whole
        self.fail_whole = fail_whole
        self.fail_zones = fail_zones
        self.delay = delay
        self.calls: list[str] = []
        self.max_in_flight = 0
        self._in_flight = 0
        self._lock = threading.Lock()

    @property
    def zone_calls(self) -> int:
        return sum(1 for name in self.calls if name.startswith("zone_"))

    def classify(self, image: Path) -> list[Prediction]:
        with self._lock:
            self.calls.append(image.name)
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            is_zone = image.name.startswith("zone_")
            if is_zone and self.fail_zones:
                raise ClassifierError("zone inference failed")
            if not is_zone and self.fail_whole:
                raise ClassifierError("model offline")
            if not is_zone and self.whole is not None:
                return list(self.whole)
            try:
                return color_predictions(image)
            except (UnidentifiedImageError, OSError) as exc:
                raise ImageDecodeError(f"Cannot read image {image}: {exc}") from exc
        finally:
            with self._lock:
                self._in_flight -= 1
