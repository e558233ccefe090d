"""Merge whole-image and per-zone predictions into one object per category."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from vegrecog.core.heuristics import UnknownObjectHeuristic
from vegrecog.core.policy import DEFAULT_POLICY, AggregationPolicy
from vegrecog.core.types import (
    WHOLE_IMAGE,
    DetectedObject,
    DetectionMethod,
    PixelBounds,
    Prediction,
    RecognitionSummary,
    ZoneResult,
    rank_predictions,
)
from vegrecog.errors import AggregationError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from vegrecog.core.categories import Category

logger = logging.getLogger(__name__)

UNKNOWN_CANDIDATES = 3


@dataclass
class _Draft:
    category: Category
    confidence: int
    method: DetectionMethod
    origins: list[str] = field(default_factory=list)
    bounds: PixelBounds | None = None

    def add_origin(self, origin: str) -> None:
        if origin not in self.origins:
            self.origins.append(origin)


class ResultAggregator:
    """Deduplicates detections by category and ranks them.

    Merge order: zone top predictions, then categories recovered from a weak
    whole-image signal, then confidence enhancement from the whole-image pass,
    then the dominant whole-image category.
    """

    def __init__(
        self,
        policy: AggregationPolicy = DEFAULT_POLICY.aggregation,
        unknown: UnknownObjectHeuristic | None = None,
    ) -> None:
        self._policy = policy
        self._unknown = unknown or UnknownObjectHeuristic()

    def recover_missed(
        self, global_predictions: Sequence[Prediction], zone_results: Sequence[ZoneResult]
    ) -> list[ZoneResult]:
        """Append whole-image entries for categories no zone reported on top."""
        p = self._policy
        threshold = p.weak_min_confidence if p.weak_recovery else p.recovery_min_confidence
        found = {self._top(result).category for result in zone_results}
        recovered = list(zone_results)
        for prediction in rank_predictions(global_predictions):
            if prediction.category in found or prediction.confidence <= threshold:
                continue
            logger.info("Recovered %s from whole image (%d%%)", prediction.category, prediction.confidence)
            floored = Prediction(prediction.category, max(prediction.confidence, p.recovery_floor))
            recovered.append(ZoneResult(zone=None, predictions=(floored,)))
            found.add(prediction.category)
        return recovered

    def aggregate(
        self, global_predictions: Sequence[Prediction], zone_results: Sequence[ZoneResult]
    ) -> list[DetectedObject]:
        """Return one DetectedObject per category, zone-derived first.

        Raises:
            AggregationError: If a zone result carries no prediction.
        """
        p = self._policy
        ranked_global = rank_predictions(global_predictions)
        global_scores = {prediction.category: prediction.confidence for prediction in ranked_global}
        drafts: dict[Category, _Draft] = {}

        for result in self.recover_missed(ranked_global, zone_results):
            top = self._top(result)
            existing = drafts.get(top.category)
            if existing is None:
                if not result.recovered:
                    method = DetectionMethod.ZONE
                elif global_scores[top.category] > p.recovery_min_confidence:
                    method = DetectionMethod.GLOBAL_RECOVERY
                else:
                    method = DetectionMethod.GLOBAL_WEAK
                drafts[top.category] = _Draft(
                    category=top.category,
                    confidence=top.confidence,
                    method=method,
                    origins=[result.origin],
                    bounds=result.zone.bounds if result.zone is not None else None,
                )
            else:
                existing.confidence = max(existing.confidence, top.confidence)
                existing.method = DetectionMethod.MULTI_ZONE
                existing.add_origin(result.origin)

        for prediction in ranked_global:
            draft = drafts.get(prediction.category)
            if draft is not None and prediction.confidence > draft.confidence:
                logger.info(
                    "Enhanced %s confidence %d%% -> %d%%", prediction.category, draft.confidence, prediction.confidence
                )
                draft.confidence = prediction.confidence
                draft.method = DetectionMethod.ENHANCED
                draft.add_origin(WHOLE_IMAGE)

        if ranked_global:
            dominant = ranked_global[0]
            if dominant.category not in drafts and dominant.confidence > p.dominant_min_confidence:
                logger.info("Added dominant whole-image %s (%d%%)", dominant.category, dominant.confidence)
                drafts[dominant.category] = _Draft(
                    category=dominant.category,
                    confidence=dominant.confidence,
                    method=DetectionMethod.GLOBAL_DOMINANT,
                    origins=[WHOLE_IMAGE],
                )

        ordered = sorted(drafts.values(), key=lambda d: (not d.method.zone_derived, -d.confidence))
        objects = [self._finalize(draft, ranked_global) for draft in ordered]
        logger.info(
            "Aggregated %d objects: %s",
            len(objects),
            ", ".join(f"{o.category} {o.confidence}% ({o.method})" for o in objects),
        )
        return objects

    def summarize(self, objects: Sequence[DetectedObject]) -> RecognitionSummary:
        if not objects:
            return RecognitionSummary(total_objects=0, unique_categories=0, overall_confidence=0)
        average = sum(obj.confidence for obj in objects) / len(objects)
        bonus = self._policy.multi_object_bonus if len(objects) > 1 else 0
        return RecognitionSummary(
            total_objects=len(objects),
            unique_categories=len({obj.category for obj in objects}),
            overall_confidence=min(100, round(average + bonus)),
        )

    def is_reliable(self, confidence: int) -> bool:
        return confidence >= self._policy.reliable_confidence

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _top(result: ZoneResult) -> Prediction:
        if not result.predictions:
            raise AggregationError(f"Zone result {result.origin} has no prediction")
        return result.predictions[0]

    def _finalize(self, draft: _Draft, ranked_global: Sequence[Prediction]) -> DetectedObject:
        # Judge each object on its own score. Other categories are capped at that
        # score so the object stays the top candidate (ranking is stable).
        others = [
            Prediction(pred.category, min(pred.confidence, draft.confidence))
            for pred in ranked_global
            if pred.category != draft.category
        ]
        candidates = [Prediction(draft.category, draft.confidence), *others[: UNKNOWN_CANDIDATES - 1]]
        verdict = self._unknown.evaluate(candidates)
        return DetectedObject(
            category=draft.category,
            confidence=draft.confidence,
            origin_zones=tuple(draft.origins),
            method=draft.method,
            is_reliable=self.is_reliable(draft.confidence),
            bounds=draft.bounds,
            is_unknown=verdict.is_unknown,
            verdict=verdict,
        )
