"""Recognition entry point: mode selection, then the single or multi-object path.

Flow:
    signals + quick classify -> ModeSelector -> single path
                                             -> multi path (tiles -> zones -> aggregate)
                                                  on any failure -> single path (fallback)
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import TYPE_CHECKING

from vegrecog.core.aggregation import ResultAggregator
from vegrecog.core.heuristics import MultiObjectContextHeuristic, UnknownObjectHeuristic
from vegrecog.core.mode import ModeSelector
from vegrecog.core.policy import DEFAULT_POLICY, RecognitionPolicy
from vegrecog.core.signals import ImageSignalAnalyzer
from vegrecog.core.tiling import DEFAULT_GRID_SIZE, ZoneTiler
from vegrecog.core.types import (
    WHOLE_IMAGE,
    DetectedObject,
    DetectionMethod,
    Mode,
    RecognitionResult,
    rank_predictions,
)
from vegrecog.core.zones import ZoneClassifierAdapter

if TYPE_CHECKING:
    from pathlib import Path

    from vegrecog.core.image_store import ImageStore
    from vegrecog.core.types import ModeDecision, Prediction
    from vegrecog.ml.image_classifier import ImageClassifier

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"


class Recognizer:
    """Orchestrates one recognition per call.

    The classifier is constructed and initialized by the caller and injected;
    the recognizer never loads a model itself.
    """

    def __init__(
        self,
        classifier: ImageClassifier,
        store: ImageStore,
        policy: RecognitionPolicy = DEFAULT_POLICY,
        grid_size: int = DEFAULT_GRID_SIZE,
        zone_workers: int = 1,
        serialize_classifier: bool = False,
    ) -> None:
        self._classifier = classifier
        unknown = UnknownObjectHeuristic(policy.unknown, MultiObjectContextHeuristic(policy.context))
        self._unknown = unknown
        self._selector = ModeSelector(
            classifier,
            store,
            analyzer=ImageSignalAnalyzer(policy.signals),
            unknown=unknown,
            policy=policy.mode,
        )
        self._tiler = ZoneTiler(store, grid_size=grid_size, policy=policy.tiling)
        self._zones = ZoneClassifierAdapter(
            classifier,
            policy=policy.zones,
            max_workers=zone_workers,
            serialize=serialize_classifier,
        )
        self._aggregator = ResultAggregator(policy.aggregation, unknown=unknown)

    def recognize(self, image: Path, caller_id: str = ANONYMOUS) -> RecognitionResult:
        """Recognize the objects in ``image``.

        Always returns an answer unless the whole-image classifier itself fails.

        Raises:
            ClassifierError: If the whole-image classifier is unavailable.
            ImageDecodeError: If the image cannot be decoded.
        """
        started = time.perf_counter()
        logger.info("Recognition requested by %s", caller_id)
        decision = self._selector.select(image)

        if decision.mode is Mode.MULTIPLE:
            try:
                result = self._recognize_multiple(image, caller_id, decision)
            except Exception as exc:  # noqa: BLE001 - tiling trouble degrades to the single path
                logger.warning("Multi-object detection failed, falling back to single: %s", exc)
                result = self._recognize_single(image, caller_id, decision, fallback_reason=str(exc))
        else:
            fallback_reason = decision.reason if decision.fallback else None
            result = self._recognize_single(image, caller_id, decision, fallback_reason=fallback_reason)

        elapsed = round((time.perf_counter() - started) * 1000)
        logger.info(
            "Recognition finished in %dms: mode=%s objects=%d fallback=%s",
            elapsed,
            result.mode,
            len(result.objects),
            result.fallback,
        )
        return replace(result, processing_ms=elapsed)

    # -- Paths --------------------------------------------------------------

    def _recognize_single(
        self,
        image: Path,
        caller_id: str,
        decision: ModeDecision,
        fallback_reason: str | None = None,
    ) -> RecognitionResult:
        predictions = self._whole_image_predictions(image, decision)
        verdict = self._unknown.evaluate(predictions, decision.signals)

        objects: tuple[DetectedObject, ...] = ()
        if predictions:
            best = predictions[0]
            objects = (
                DetectedObject(
                    category=best.category,
                    confidence=best.confidence,
                    origin_zones=(WHOLE_IMAGE,),
                    method=DetectionMethod.WHOLE_IMAGE,
                    is_reliable=self._aggregator.is_reliable(best.confidence),
                    is_unknown=verdict.is_unknown,
                    verdict=verdict,
                ),
            )
        if verdict.is_unknown:
            logger.info("Reporting unknown object (best guess %s)", verdict.best_guess)

        return RecognitionResult(
            caller_id=caller_id,
            mode=Mode.SINGLE,
            objects=objects,
            decision=decision,
            predictions=predictions,
            summary=self._aggregator.summarize(objects),
            alternatives=predictions[1:],
            verdict=verdict,
            fallback=fallback_reason is not None,
            fallback_reason=fallback_reason,
        )

    def _recognize_multiple(self, image: Path, caller_id: str, decision: ModeDecision) -> RecognitionResult:
        predictions = self._whole_image_predictions(image, decision)
        with self._tiler.tile(image) as grid:
            zone_results = self._zones.classify_zones(grid.zones)
        objects = self._aggregator.aggregate(predictions, zone_results)
        if not objects:
            raise LookupError("no object survived zone aggregation")

        return RecognitionResult(
            caller_id=caller_id,
            mode=Mode.MULTIPLE,
            objects=tuple(objects),
            decision=decision,
            predictions=predictions,
            summary=self._aggregator.summarize(objects),
        )

    def _whole_image_predictions(self, image: Path, decision: ModeDecision) -> tuple[Prediction, ...]:
        if decision.predictions:
            return decision.predictions
        return tuple(rank_predictions(self._classifier.classify(image)))
