"""Tunable thresholds and weights for the recognition heuristics.

All values were tuned against a three-category model. They are policy, not
structure: override them through ``VEGRECOG_POLICY__<GROUP>__<FIELD>``.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from vegrecog.core.categories import Category


class _Policy(BaseModel):
    model_config = ConfigDict(frozen=True)


class SignalPolicy(_Policy):
    """ImageSignalAnalyzer constants."""

    size_cap_bytes: int = Field(default=2 * 1024 * 1024, ge=1)
    default_complexity: float = Field(default=0.3, ge=0.0, le=1.0)
    default_region_count: int = Field(default=1, ge=1, le=5)


class TilingPolicy(_Policy):
    """ZoneTiler size limits, in pixels."""

    min_image_side: int = Field(default=150, ge=1)
    min_cell_side: int = Field(default=50, ge=1)
    min_zone_side: int = Field(default=30, ge=1)


class ZonePolicy(_Policy):
    """Per-category acceptance thresholds for zone predictions (percent)."""

    thresholds: dict[Category, int] = Field(
        default_factory=lambda: {
            Category.TOMATO: 45,
            Category.CARROT: 35,
            Category.POTATO: 50,
        }
    )
    default_threshold: int = Field(default=50, ge=0, le=100)

    def threshold_for(self, category: Category) -> int:
        return self.thresholds.get(category, self.default_threshold)


class ContextPolicy(_Policy):
    """MultiObjectContextHeuristic indicators and weights."""

    large_file_bytes: int = 500 * 1024
    complexity: float = 0.4
    diversity: float = 0.8
    balanced_top1_max: int = 60
    balanced_top2_min: int = 25
    balanced_top3_min: int = 15
    moderate_top1_min: int = 25
    moderate_top1_max: int = 60

    large_file_weight: int = 2
    complexity_weight: int = 2
    diversity_weight: int = 3
    balanced_weight: int = 3
    moderate_top1_weight: int = 2
    known_categories_weight: int = 2

    min_score: int = 6

    @property
    def max_score(self) -> int:
        return (
            self.large_file_weight
            + self.complexity_weight
            + self.diversity_weight
            + self.balanced_weight
            + self.moderate_top1_weight
            + self.known_categories_weight
        )


class UnknownPolicy(_Policy):
    """UnknownObjectHeuristic criteria."""

    low_confidence: int = 40
    min_gap: int = 15
    diversity: float = 0.85
    very_low_confidence: int = 30
    min_criteria: int = 3


class ModePolicy(_Policy):
    """ModeSelector criteria, weights and decision threshold."""

    complexity: float = 0.5
    region_count: int = 2
    top1_min: int = 30
    top1_max: int = 70
    diversity: float = 0.6
    prescan_count: int = 1
    prescan_confidence: int = 40
    large_file_bytes: int = 300 * 1024

    complexity_weight: int = 2
    region_weight: int = 2
    top1_weight: int = 2
    diversity_weight: int = 3
    prescan_count_weight: int = 3
    prescan_confidence_weight: int = 1
    large_file_weight: int = 2

    threshold_ratio: float = Field(default=0.35, gt=0.0, le=1.0)

    forced_multiple_score: int = 8
    forced_max_score: int = 10

    # Pre-scan estimate
    prescan_cell_side: int = 200
    prescan_max_count: int = 5
    prescan_large_width: int = 800
    prescan_large_height: int = 600
    prescan_large_confidence: int = 70
    prescan_confidence_default: int = 50
    prescan_failure_confidence: int = 30


class AggregationPolicy(_Policy):
    """ResultAggregator recovery and reporting constants."""

    recovery_min_confidence: int = 25
    recovery_floor: int = 30
    # Also recover categories in the (weak_min_confidence, recovery_min_confidence] band.
    weak_recovery: bool = False
    weak_min_confidence: int = 20
    dominant_min_confidence: int = 60
    reliable_confidence: int = 70
    multi_object_bonus: int = 5


class RecognitionPolicy(_Policy):
    """Every tunable recognition constant, grouped by component."""

    signals: SignalPolicy = SignalPolicy()
    tiling: TilingPolicy = TilingPolicy()
    zones: ZonePolicy = ZonePolicy()
    context: ContextPolicy = ContextPolicy()
    unknown: UnknownPolicy = UnknownPolicy()
    mode: ModePolicy = ModePolicy()
    aggregation: AggregationPolicy = AggregationPolicy()


DEFAULT_POLICY = RecognitionPolicy()
