"""Split an image into a grid of independently classifiable zones."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from vegrecog.core.policy import DEFAULT_POLICY, TilingPolicy
from vegrecog.core.types import PixelBounds, ZoneDescriptor
from vegrecog.errors import NoValidZonesError, SizeError

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path
    from types import TracebackType

    from vegrecog.core.image_store import ImageStore

logger = logging.getLogger(__name__)

DEFAULT_GRID_SIZE = 3


class ZoneGrid:
    """The zones of one tiling pass. Releases every artifact exactly once.

    Use as a context manager so artifacts are released on every exit path.
    """

    def __init__(self, store: ImageStore) -> None:
        self._store = store
        self._zones: list[ZoneDescriptor] = []
        self._pending: list[Path] = []

    def add(self, zone: ZoneDescriptor) -> None:
        self._zones.append(zone)
        self._pending.append(zone.image)

    @property
    def zones(self) -> list[ZoneDescriptor]:
        return list(self._zones)

    def __len__(self) -> int:
        return len(self._zones)

    def __iter__(self) -> Iterator[ZoneDescriptor]:
        return iter(self._zones)

    def release(self) -> None:
        """Delete all materialized zone images. Safe to call more than once."""
        pending, self._pending = self._pending, []
        for handle in pending:
            self._store.delete(handle)
        if pending:
            logger.debug("Released %d zone artifacts", len(pending))

    def __enter__(self) -> ZoneGrid:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class ZoneTiler:
    """Partitions an image into a ``grid_size`` x ``grid_size`` grid."""

    def __init__(
        self,
        store: ImageStore,
        grid_size: int = DEFAULT_GRID_SIZE,
        policy: TilingPolicy = DEFAULT_POLICY.tiling,
    ) -> None:
        if grid_size < 1:
            raise ValueError("grid_size must be >= 1")
        self._store = store
        self._grid_size = grid_size
        self._policy = policy

    @property
    def grid_size(self) -> int:
        return self._grid_size

    def plan(self, width: int, height: int) -> list[tuple[int, int, PixelBounds]]:
        """Compute cell bounds for an image size without touching any pixels.

        The last row and column absorb remainder pixels so the grid covers the
        image exactly. Cells narrower than the minimum zone side are skipped.

        Raises:
            SizeError: If the image or its cells are below the size limits.
        """
        policy = self._policy
        if width < policy.min_image_side or height < policy.min_image_side:
            raise SizeError(
                f"Image too small to tile: {width}x{height} "
                f"(minimum {policy.min_image_side}x{policy.min_image_side})"
            )

        cell_width = width // self._grid_size
        cell_height = height // self._grid_size
        if cell_width < policy.min_cell_side or cell_height < policy.min_cell_side:
            raise SizeError(
                f"Computed cells too small: {cell_width}x{cell_height} "
                f"(minimum {policy.min_cell_side}x{policy.min_cell_side})"
            )

        last = self._grid_size - 1
        cells: list[tuple[int, int, PixelBounds]] = []
        for row in range(self._grid_size):
            for col in range(self._grid_size):
                left = col * cell_width
                top = row * cell_height
                zone_width = width - left if col == last else cell_width
                zone_height = height - top if row == last else cell_height
                if zone_width < policy.min_zone_side or zone_height < policy.min_zone_side:
                    logger.warning("Skipping zone %d,%d: %dx%d is too small", row, col, zone_width, zone_height)
                    continue
                cells.append((row, col, PixelBounds(left, top, zone_width, zone_height)))
        return cells

    def tile(self, image: Path) -> ZoneGrid:
        """Materialize every accepted cell of ``image`` as its own artifact.

        Sizing reads only the image header; pixels are decoded once, after the
        grid has been planned. On failure, artifacts created so far are released before the error
        propagates.

        Raises:
            SizeError: If the image cannot be tiled at this grid size.
            NoValidZonesError: If every cell was rejected.
            ImageDecodeError: If the image cannot be read.
        """
        size = self._store.dimensions(image)
        cells = self.plan(size.width, size.height)
        logger.debug("Tiling %dx%d image into %d zones", size.width, size.height, len(cells))

        grid = ZoneGrid(self._store)
        try:
            # Decoded once; every zone is cut from the same picture.
            with self._store.load(image) as source:
                for row, col, bounds in cells:
                    handle = self._store.crop(source, bounds.left, bounds.top, bounds.width, bounds.height)
                    grid.add(ZoneDescriptor(row=row, col=col, bounds=bounds, image=handle))
            if not len(grid):
                raise NoValidZonesError("No valid zone could be created")
        except BaseException:
            grid.release()
            raise

        logger.info("Created %d/%d zones", len(grid), self._grid_size**2)
        return grid
