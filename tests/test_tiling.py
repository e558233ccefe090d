"""Tests for the zone tiler and the temporary image store."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from helpers import RED, write_image
from PIL import ExifTags, Image

from vegrecog.core.image_store import TempImageStore
from vegrecog.core.policy import TilingPolicy
from vegrecog.core.tiling import ZoneTiler
from vegrecog.errors import ImageDecodeError, NoValidZonesError, SizeError


@pytest.fixture()
def store(tmp_path: Path) -> TempImageStore:
    return TempImageStore(tmp_path / "store")


class TestZonePlan:
    def test_exact_grid(self, store: TempImageStore) -> None:
        cells = ZoneTiler(store).plan(300, 300)

        assert len(cells) == 9
        assert [(row, col) for row, col, _ in cells] == [(r, c) for r in range(3) for c in range(3)]
        assert all(bounds.width == 100 and bounds.height == 100 for _, _, bounds in cells)

    def test_last_row_and_column_absorb_remainder(self, store: TempImageStore) -> None:
        cells = {(row, col): bounds for row, col, bounds in ZoneTiler(store).plan(302, 301)}

        assert cells[(0, 0)].width == 100
        assert cells[(0, 2)].left == 200
        assert cells[(0, 2)].width == 102
        assert cells[(2, 0)].top == 200
        assert cells[(2, 0)].height == 101

    def test_cells_cover_image_without_gaps(self, store: TempImageStore) -> None:
        width, height = 457, 389
        cells = ZoneTiler(store).plan(width, height)

        assert sum(b.width * b.height for _, _, b in cells) == width * height
        assert max(b.left + b.width for _, _, b in cells) == width
        assert max(b.top + b.height for _, _, b in cells) == height

    def test_image_below_minimum_side_is_rejected(self, store: TempImageStore) -> None:
        with pytest.raises(SizeError, match="too small"):
            ZoneTiler(store).plan(140, 140)

    def test_cells_below_minimum_are_rejected(self, store: TempImageStore) -> None:
        with pytest.raises(SizeError, match="cells too small"):
            ZoneTiler(store, grid_size=4).plan(180, 180)

    def test_narrow_zones_are_skipped_not_fatal(self, store: TempImageStore) -> None:
        policy = TilingPolicy(min_image_side=10, min_cell_side=10, min_zone_side=30)
        cells = ZoneTiler(store, grid_size=2, policy=policy).plan(200, 40)

        # Both rows come out 20px tall.
        assert cells == []

    def test_invalid_grid_size(self, store: TempImageStore) -> None:
        with pytest.raises(ValueError, match="grid_size"):
            ZoneTiler(store, grid_size=0)


class TestTile:
    def test_tile_materializes_every_zone(self, store: TempImageStore, tmp_path: Path) -> None:
        image = write_image(tmp_path / "src.png", 300, 240, RED)

        with ZoneTiler(store).tile(image) as grid:
            assert len(grid) == 9
            assert store.outstanding() == 9
            first = grid.zones[0]
            assert first.zone_id == "zone_0_0"
            assert first.image.exists()
            with Image.open(first.image) as crop:
                assert crop.size == (100, 80)
            names = {zone.image.name for zone in grid}
            assert len(names) == 9

        assert store.outstanding() == 0
        assert not any(zone.image.exists() for zone in grid)

    def test_release_is_idempotent(self, store: TempImageStore, tmp_path: Path) -> None:
        image = write_image(tmp_path / "src.png", 300, 300)
        grid = ZoneTiler(store).tile(image)

        with patch.object(store, "delete", wraps=store.delete) as delete:
            grid.release()
            grid.release()

        assert delete.call_count == 9
        assert store.outstanding() == 0

    def test_small_image_raises_size_error_without_artifacts(self, store: TempImageStore, tmp_path: Path) -> None:
        image = write_image(tmp_path / "small.png", 140, 140)

        with pytest.raises(SizeError):
            ZoneTiler(store).tile(image)
        assert store.outstanding() == 0

    def test_no_valid_zones(self, store: TempImageStore, tmp_path: Path) -> None:
        image = write_image(tmp_path / "strip.png", 200, 40)
        policy = TilingPolicy(min_image_side=10, min_cell_side=10, min_zone_side=30)

        with pytest.raises(NoValidZonesError):
            ZoneTiler(store, grid_size=2, policy=policy).tile(image)

    def test_crop_failure_releases_created_zones(self, store: TempImageStore, tmp_path: Path) -> None:
        image = write_image(tmp_path / "src.png", 300, 300)
        real_crop = store.crop
        calls = {"n": 0}

        def flaky_crop(*args: object) -> Path:
            calls["n"] += 1
            if calls["n"] == 5:
                raise OSError("disk full")
            return real_crop(*args)  # type: ignore[arg-type]

        with patch.object(store, "crop", side_effect=flaky_crop), pytest.raises(OSError, match="disk full"):
            ZoneTiler(store).tile(image)

        assert store.outstanding() == 0
        assert list(store.root.glob("zone_*")) == []

    def test_image_is_decoded_once_per_tiling(self, store: TempImageStore, tmp_path: Path) -> None:
        image = write_image(tmp_path / "src.png", 300, 300)

        with patch.object(store, "_open", wraps=store._open) as decode, ZoneTiler(store).tile(image) as grid:
            assert len(grid) == 9

        assert decode.call_count == 1

    def test_undecodable_image(self, store: TempImageStore, tmp_path: Path) -> None:
        bogus = tmp_path / "bogus.jpg"
        bogus.write_bytes(b"not an image")

        with pytest.raises(ImageDecodeError):
            ZoneTiler(store).tile(bogus)


class TestTempImageStore:
    def test_save_and_delete(self, store: TempImageStore) -> None:
        path = store.save(b"payload", suffix=".jpg")

        assert path.read_bytes() == b"payload"
        assert path.name.startswith("upload_")
        assert store.outstanding() == 1

        store.delete(path)
        assert not path.exists()
        assert store.outstanding() == 0

    def test_dimensions(self, store: TempImageStore, tmp_path: Path) -> None:
        image = write_image(tmp_path / "src.png", 320, 200)
        size = store.dimensions(image)
        assert (size.width, size.height) == (320, 200)

    def test_rotated_photo_reports_upright_size(self, store: TempImageStore, tmp_path: Path) -> None:
        path = tmp_path / "rotated.jpg"
        exif = Image.Exif()
        exif[ExifTags.Base.Orientation] = 6
        Image.new("RGB", (300, 200), RED).save(path, format="JPEG", exif=exif)

        size = store.dimensions(path)

        assert (size.width, size.height) == (200, 300)
        with store.load(path) as upright:
            assert upright.size == (200, 300)

    def test_crop_from_decoded_picture(self, store: TempImageStore, tmp_path: Path) -> None:
        image = write_image(tmp_path / "src.png", 120, 90, RED)

        with store.load(image) as source:
            handle = store.crop(source, 20, 10, 60, 40)

        with Image.open(handle) as crop:
            assert crop.size == (60, 40)
        assert store.outstanding() == 1

    def test_failed_crop_write_leaves_nothing_behind(self, store: TempImageStore, tmp_path: Path) -> None:
        image = write_image(tmp_path / "src.png", 120, 120)

        def partial_save(picture: Image.Image, fp: Path, *args: object, **kwargs: object) -> None:
            Path(fp).write_bytes(b"\xff\xd8truncated")
            raise OSError("No space left on device")

        with (
            patch.object(Image.Image, "save", autospec=True, side_effect=partial_save),
            pytest.raises(OSError, match="No space left"),
        ):
            store.crop(image, 0, 0, 60, 60)

        assert store.outstanding() == 0
        assert list(store.root.glob("zone_*")) == []

    def test_cleanup_removes_directory(self, store: TempImageStore) -> None:
        store.save(b"left behind")
        store.cleanup()

        assert not store.root.exists()
        assert store.outstanding() == 0
