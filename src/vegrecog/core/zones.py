"""Per-zone classification with per-category adaptive thresholds."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from typing import TYPE_CHECKING

from vegrecog.core.policy import DEFAULT_POLICY, ZonePolicy
from vegrecog.core.types import Prediction, ZoneDescriptor, ZoneResult, rank_predictions

if TYPE_CHECKING:
    from collections.abc import Sequence

    from vegrecog.ml.image_classifier import ImageClassifier

logger = logging.getLogger(__name__)


class ZoneClassifierAdapter:
    """Answers "what is in this cell" using the shared classifier.

    Zones may be classified concurrently (``max_workers`` > 1). Results are
    always returned in zone order. Set ``serialize`` when the classifier is
    not safe to call from several threads at once.
    """

    def __init__(
        self,
        classifier: ImageClassifier,
        policy: ZonePolicy = DEFAULT_POLICY.zones,
        max_workers: int = 1,
        serialize: bool = False,
    ) -> None:
        self._classifier = classifier
        self._policy = policy
        self._max_workers = max(1, max_workers)
        self._gate = threading.Lock() if serialize else None

    def filter_reliable(self, predictions: Sequence[Prediction], zone_id: str = "zone") -> list[Prediction]:
        """Keep predictions strictly above their category's threshold."""
        kept: list[Prediction] = []
        for prediction in rank_predictions(predictions):
            threshold = self._policy.threshold_for(prediction.category)
            accepted = prediction.confidence > threshold
            logger.debug(
                "%s: %s %s (%d%% vs threshold %d%%)",
                zone_id,
                prediction.category,
                "accepted" if accepted else "rejected",
                prediction.confidence,
                threshold,
            )
            if accepted:
                kept.append(prediction)
        return kept

    def classify_zone(self, zone: ZoneDescriptor) -> list[Prediction]:
        """Classify one zone and return its reliable predictions (possibly empty)."""
        with self._gate if self._gate is not None else nullcontext():
            predictions = self._classifier.classify(zone.image)
        return self.filter_reliable(predictions, zone.zone_id)

    def classify_zones(self, zones: Sequence[ZoneDescriptor]) -> list[ZoneResult]:
        """Classify every zone; zones without a reliable prediction are dropped.

        Any classifier error propagates to the caller.
        """
        if self._max_workers == 1 or len(zones) <= 1:
            per_zone = [self.classify_zone(zone) for zone in zones]
        else:
            with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="zone-classify") as executor:
                # map() yields in submission order, so results stay keyed by zone index.
                per_zone = list(executor.map(self.classify_zone, zones))

        results: list[ZoneResult] = []
        for zone, predictions in zip(zones, per_zone, strict=True):
            if predictions:
                results.append(ZoneResult(zone=zone, predictions=tuple(predictions)))
            else:
                logger.debug("%s: no reliable prediction", zone.zone_id)
        return results
