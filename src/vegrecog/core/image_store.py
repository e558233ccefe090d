"""Temporary image artifacts: uploads and materialized zone crops.

Every handle the store hands out is tracked until it is deleted, so callers
and tests can verify that no artifact outlives its request.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from PIL import ExifTags, Image, ImageOps, UnidentifiedImageError

from vegrecog.errors import ImageDecodeError

logger = logging.getLogger(__name__)

ZONE_JPEG_QUALITY = 80

# EXIF orientations that swap width and height once applied.
_TRANSPOSING_ORIENTATIONS = frozenset({5, 6, 7, 8})


@dataclass(frozen=True)
class ImageSize:
    width: int
    height: int


class ImageStore(Protocol):
    """Protocol for the image primitives the pipeline depends on."""

    def load(self, image: Path) -> Image.Image:
        """Decode ``image`` once for repeated cropping."""
        ...

    def crop(self, image: Path | Image.Image, left: int, top: int, width: int, height: int) -> Path:
        """Materialize a region of ``image`` as a new, independent artifact."""
        ...

    def dimensions(self, image: Path) -> ImageSize:
        """Return the pixel size of ``image``."""
        ...

    def delete(self, handle: Path) -> None:
        """Release an artifact created by this store."""
        ...


class TempImageStore:
    """Stores artifacts as files in a private temporary directory."""

    def __init__(self, root: str | Path | None = None) -> None:
        if root is None:
            self._root = Path(tempfile.mkdtemp(prefix="vegrecog-"))
        else:
            self._root = Path(root)
            self._root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._live: set[Path] = set()

    @property
    def root(self) -> Path:
        return self._root

    # -- Public API ---------------------------------------------------------

    def save(self, data: bytes, suffix: str = ".img") -> Path:
        """Write uploaded bytes to a new tracked artifact."""
        path = self._new_path("upload", suffix)
        path.write_bytes(data)
        self._track(path)
        return path

    def load(self, image: Path) -> Image.Image:
        """Decode ``image`` upright and in RGB. The caller closes the result."""
        return self._open(image)

    def crop(self, image: Path | Image.Image, left: int, top: int, width: int, height: int) -> Path:
        """Write a region of ``image`` to a new zone artifact.

        ``image`` is a file or a picture returned by :meth:`load`. A failed
        write leaves no file behind.
        """
        path = self._new_path("zone", ".jpg")
        box = (left, top, left + width, top + height)
        self._track(path)
        try:
            if isinstance(image, Image.Image):
                self._write_region(image, box, path)
            else:
                with self._open(image) as src:
                    self._write_region(src, box, path)
        except BaseException:
            self.delete(path)
            raise
        logger.debug("Materialized %dx%d crop at (%d, %d) as %s", width, height, left, top, path.name)
        return path

    def dimensions(self, image: Path) -> ImageSize:
        """Return the upright size of ``image`` from its header, without decoding pixels."""
        try:
            with Image.open(image) as src:
                width, height = src.size
                orientation = src.getexif().get(ExifTags.Base.Orientation)
        except (UnidentifiedImageError, OSError) as exc:
            raise ImageDecodeError(f"Cannot read image {image}: {exc}") from exc
        if orientation in _TRANSPOSING_ORIENTATIONS:
            width, height = height, width
        return ImageSize(width=width, height=height)

    def delete(self, handle: Path) -> None:
        with self._lock:
            self._live.discard(handle)
        try:
            handle.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not delete artifact %s: %s", handle, exc)

    def outstanding(self) -> int:
        """Number of artifacts created and not yet deleted."""
        with self._lock:
            return len(self._live)

    def cleanup(self) -> None:
        """Delete the store directory and everything left in it."""
        with self._lock:
            leftover = len(self._live)
            self._live.clear()
        if leftover:
            logger.warning("Removing %d artifacts that were never released", leftover)
        shutil.rmtree(self._root, ignore_errors=True)

    # -- Internal -----------------------------------------------------------

    def _new_path(self, kind: str, suffix: str) -> Path:
        return self._root / f"{kind}_{uuid.uuid4().hex}{suffix}"

    def _track(self, path: Path) -> None:
        with self._lock:
            self._live.add(path)

    @staticmethod
    def _write_region(source: Image.Image, box: tuple[int, int, int, int], path: Path) -> None:
        source.crop(box).save(path, format="JPEG", quality=ZONE_JPEG_QUALITY)

    @staticmethod
    def _open(image: Path) -> Image.Image:
        try:
            with Image.open(image) as src:
                src.load()
                return ImageOps.exif_transpose(src).convert("RGB")
        except (UnidentifiedImageError, OSError) as exc:
            raise ImageDecodeError(f"Cannot read image {image}: {exc}") from exc
