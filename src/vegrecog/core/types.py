"""Value types shared by the recognition pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from pathlib import Path

    from vegrecog.core.categories import Category

WHOLE_IMAGE = "whole-image"


@dataclass(frozen=True)
class Prediction:
    """One classifier score for a category, as an integer percent."""

    category: Category
    confidence: int


def rank_predictions(predictions: Iterable[Prediction]) -> list[Prediction]:
    """Return predictions sorted by descending confidence (stable)."""
    return sorted(predictions, key=lambda p: p.confidence, reverse=True)


@dataclass(frozen=True)
class ImageSignals:
    """Cheap, non-semantic signals computed without the classifier."""

    byte_size: int
    complexity_score: float
    estimated_region_count: int
    fallback: bool = False


@dataclass(frozen=True)
class PixelBounds:
    left: int
    top: int
    width: int
    height: int


@dataclass(frozen=True)
class ZoneDescriptor:
    """One grid cell and its materialized image artifact."""

    row: int
    col: int
    bounds: PixelBounds
    image: Path

    @property
    def zone_id(self) -> str:
        return f"zone_{self.row}_{self.col}"


@dataclass(frozen=True)
class ZoneResult:
    """Predictions that survived a zone's thresholds.

    ``zone`` is None for entries recovered from the whole-image pass.
    """

    zone: ZoneDescriptor | None
    predictions: tuple[Prediction, ...]

    @property
    def origin(self) -> str:
        return self.zone.zone_id if self.zone is not None else WHOLE_IMAGE

    @property
    def recovered(self) -> bool:
        return self.zone is None


class DetectionMethod(StrEnum):
    ZONE = "zone"
    MULTI_ZONE = "multi-zone"
    GLOBAL_RECOVERY = "global-recovery"
    GLOBAL_WEAK = "global-weak"
    GLOBAL_DOMINANT = "global-dominant"
    ENHANCED = "enhanced"
    WHOLE_IMAGE = "whole-image"

    @property
    def zone_derived(self) -> bool:
        return self in (DetectionMethod.ZONE, DetectionMethod.MULTI_ZONE, DetectionMethod.ENHANCED)


@dataclass(frozen=True)
class ContextAnalysis:
    """Outcome of the multi-object context heuristic."""

    is_likely_multi_object: bool
    score: int
    max_score: int
    indicators: Mapping[str, bool]
    confidence_percent: int


@dataclass(frozen=True)
class UnknownVerdict:
    """Whether a prediction set should be reported as an unrecognized object."""

    is_unknown: bool
    uncertainty_score: int
    best_guess: Prediction | None
    criteria: Mapping[str, bool] = field(default_factory=dict)
    context: ContextAnalysis | None = None


@dataclass(frozen=True)
class DetectedObject:
    """A deduplicated, reportable object."""

    category: Category
    confidence: int
    origin_zones: tuple[str, ...]
    method: DetectionMethod
    is_reliable: bool
    bounds: PixelBounds | None = None
    is_unknown: bool = False
    verdict: UnknownVerdict | None = None


@dataclass(frozen=True)
class PrescanEstimate:
    """Size-based guess at the object count, used as a mode criterion."""

    detected_count: int
    confidence: int
    failed: bool = False


class Mode(StrEnum):
    SINGLE = "single"
    MULTIPLE = "multiple"


@dataclass(frozen=True)
class ModeDecision:
    """How an image is processed, and why."""

    mode: Mode
    score: int
    max_score: int
    triggered_criteria: Mapping[str, bool] = field(default_factory=dict)
    context: ContextAnalysis | None = None
    verdict: UnknownVerdict | None = None
    signals: ImageSignals | None = None
    predictions: tuple[Prediction, ...] = ()
    fallback: bool = False
    reason: str | None = None


@dataclass(frozen=True)
class RecognitionSummary:
    total_objects: int
    unique_categories: int
    overall_confidence: int


@dataclass(frozen=True)
class RecognitionResult:
    """Everything ``Recognizer.recognize`` returns for one image."""

    caller_id: str
    mode: Mode
    objects: tuple[DetectedObject, ...]
    decision: ModeDecision
    predictions: tuple[Prediction, ...]
    summary: RecognitionSummary
    alternatives: tuple[Prediction, ...] = ()
    verdict: UnknownVerdict | None = None
    fallback: bool = False
    fallback_reason: str | None = None
    processing_ms: int = 0
