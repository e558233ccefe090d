"""Image classification contract used by the recognition pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from pathlib import Path

    from vegrecog.core.types import Prediction


class ImageClassifier(Protocol):
    """Protocol for single-image, multi-class classifiers."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify(self, image: Path) -> list[Prediction]:
        """Classify an image file.

        Args:
            image: Path to an encoded image (whole image or zone crop).

        Returns:
            One prediction per known category, sorted by confidence (descending).

        Raises:
            ClassifierError: If inference fails.
            ImageDecodeError: If the image cannot be decoded.
        """
        ...
