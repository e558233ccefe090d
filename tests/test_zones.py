"""Tests for per-zone classification and adaptive thresholds."""

from __future__ import annotations

from pathlib import Path

import pytest
from helpers import BROWN, ORANGE, RED, WHITE, ScriptedClassifier, preds, write_grid_image

from vegrecog.core.categories import Category
from vegrecog.core.image_store import TempImageStore
from vegrecog.core.policy import ZonePolicy
from vegrecog.core.tiling import ZoneTiler
from vegrecog.core.types import PixelBounds, Prediction, ZoneDescriptor
from vegrecog.core.zones import ZoneClassifierAdapter
from vegrecog.errors import ClassifierError

GRID = [
    [RED, WHITE, ORANGE],
    [WHITE, BROWN, WHITE],
    [ORANGE, WHITE, RED],
]


@pytest.fixture()
def store(tmp_path: Path) -> TempImageStore:
    return TempImageStore(tmp_path / "store")


class TestAdaptiveThresholds:
    @pytest.mark.parametrize(
        ("category", "confidence", "kept"),
        [
            (Category.TOMATO, 45, False),
            (Category.TOMATO, 46, True),
            (Category.CARROT, 35, False),
            (Category.CARROT, 36, True),
            (Category.POTATO, 50, False),
            (Category.POTATO, 51, True),
        ],
    )
    def test_threshold_is_strict(self, category: Category, confidence: int, kept: bool) -> None:
        adapter = ZoneClassifierAdapter(ScriptedClassifier())
        result = adapter.filter_reliable([Prediction(category, confidence)])
        assert bool(result) is kept

    def test_unlisted_category_uses_default(self) -> None:
        policy = ZonePolicy(thresholds={Category.CARROT: 10}, default_threshold=60)
        adapter = ZoneClassifierAdapter(ScriptedClassifier(), policy=policy)

        kept = adapter.filter_reliable(preds(tomato=55, carrot=15, potato=30))

        assert kept == [Prediction(Category.CARROT, 15)]

    def test_filtered_list_stays_ranked(self) -> None:
        adapter = ZoneClassifierAdapter(ScriptedClassifier())
        kept = adapter.filter_reliable([Prediction(Category.CARROT, 40), Prediction(Category.TOMATO, 55)])
        assert kept == [Prediction(Category.TOMATO, 55), Prediction(Category.CARROT, 40)]


class TestClassifyZones:
    def test_zone_results_follow_zone_order(self, store: TempImageStore, tmp_path: Path) -> None:
        image = write_grid_image(tmp_path / "grid.png", GRID)
        classifier = ScriptedClassifier()

        with ZoneTiler(store).tile(image) as grid:
            results = ZoneClassifierAdapter(classifier).classify_zones(grid.zones)

        assert [r.origin for r in results] == ["zone_0_0", "zone_0_2", "zone_1_1", "zone_2_0", "zone_2_2"]
        assert [r.predictions[0].category for r in results] == [
            Category.TOMATO,
            Category.CARROT,
            Category.POTATO,
            Category.CARROT,
            Category.TOMATO,
        ]
        assert classifier.zone_calls == 9

    def test_parallel_matches_sequential(self, store: TempImageStore, tmp_path: Path) -> None:
        image = write_grid_image(tmp_path / "grid.png", GRID)

        with ZoneTiler(store).tile(image) as grid:
            sequential = ZoneClassifierAdapter(ScriptedClassifier()).classify_zones(grid.zones)
            parallel = ZoneClassifierAdapter(ScriptedClassifier(delay=0.01), max_workers=4).classify_zones(grid.zones)

        assert parallel == sequential

    def test_serialized_classifier_never_runs_concurrently(self, store: TempImageStore, tmp_path: Path) -> None:
        image = write_grid_image(tmp_path / "grid.png", GRID)
        classifier = ScriptedClassifier(delay=0.01)

        with ZoneTiler(store).tile(image) as grid:
            ZoneClassifierAdapter(classifier, max_workers=4, serialize=True).classify_zones(grid.zones)

        assert classifier.max_in_flight == 1

    def test_classifier_error_propagates(self, tmp_path: Path) -> None:
        zone = ZoneDescriptor(row=0, col=0, bounds=PixelBounds(0, 0, 100, 100), image=tmp_path / "zone_0.jpg")
        adapter = ZoneClassifierAdapter(ScriptedClassifier(fail_zones=True))

        with pytest.raises(ClassifierError):
            adapter.classify_zones([zone])
