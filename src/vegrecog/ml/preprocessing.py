"""Image preprocessing pipeline.

Handles decoding, EXIF orientation, color space conversion, size validation,
and conversion to the float tensor layout the classifier expects.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from vegrecog.errors import ImageDecodeError

if TYPE_CHECKING:
    from pathlib import Path

    from numpy.typing import NDArray


class ImagePreprocessor:
    """Decodes image files and prepares classifier input tensors."""

    def __init__(self, max_image_pixels: int) -> None:
        self._max_image_pixels = max_image_pixels

    def decode_image(self, path: Path) -> NDArray[np.uint8]:
        """Decode an image file into an RGB uint8 numpy array.

        Returns:
            HxWx3 RGB uint8 numpy array.

        Raises:
            ImageDecodeError: If the image cannot be decoded or exceeds size limits.
        """
        try:
            with Image.open(path) as src:
                width, height = src.size
                if width * height > self._max_image_pixels:
                    raise ImageDecodeError(
                        f"Image has {width * height} pixels, limit is {self._max_image_pixels}"
                    )
                src.load()
                rgb = ImageOps.exif_transpose(src).convert("RGB")
        except (UnidentifiedImageError, OSError) as exc:
            raise ImageDecodeError(f"Cannot decode image {path}: {exc}") from exc
        return np.asarray(rgb, dtype=np.uint8)

    @staticmethod
    def preprocess_for_classification(image: NDArray[np.uint8], size: tuple[int, int]) -> NDArray[np.float32]:
        """Resize to ``size`` (width, height) and scale to [0, 1].

        Returns:
            Float32 tensor of shape (1, height, width, 3).
        """
        resized = Image.fromarray(image).resize(size, Image.Resampling.BILINEAR)
        tensor = np.asarray(resized, dtype=np.float32) / 255.0
        return tensor[np.newaxis, ...]
