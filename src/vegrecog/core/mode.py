"""Single- vs multi-object mode selection."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from vegrecog.core.heuristics import UnknownObjectHeuristic, prediction_diversity
from vegrecog.core.policy import DEFAULT_POLICY, ModePolicy
from vegrecog.core.signals import ImageSignalAnalyzer
from vegrecog.core.types import Mode, ModeDecision, PrescanEstimate, rank_predictions
from vegrecog.errors import VegRecogError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from vegrecog.core.image_store import ImageStore
    from vegrecog.core.types import ImageSignals, Prediction
    from vegrecog.ml.image_classifier import ImageClassifier

logger = logging.getLogger(__name__)


class ModeSelector:
    """Decides once per image whether to run the multi-object path.

    Override order: a multi-object context forces ``multiple``; an unknown
    object forces ``single``; otherwise seven weighted criteria are scored
    against ``threshold_ratio``. Any failure yields ``single`` with
    ``fallback=True``.
    """

    def __init__(
        self,
        classifier: ImageClassifier,
        store: ImageStore,
        analyzer: ImageSignalAnalyzer | None = None,
        unknown: UnknownObjectHeuristic | None = None,
        policy: ModePolicy = DEFAULT_POLICY.mode,
    ) -> None:
        self._classifier = classifier
        self._store = store
        self._analyzer = analyzer or ImageSignalAnalyzer()
        self._unknown = unknown or UnknownObjectHeuristic()
        self._policy = policy

    @property
    def max_score(self) -> int:
        p = self._policy
        return (
            p.complexity_weight
            + p.region_weight
            + p.top1_weight
            + p.diversity_weight
            + p.prescan_count_weight
            + p.prescan_confidence_weight
            + p.large_file_weight
        )

    def select(self, image: Path) -> ModeDecision:
        """Compute signals and a quick classification, then decide."""
        signals = None
        try:
            signals = self._analyzer.analyze(image)
            predictions = self._classifier.classify(image)
            prescan = self.prescan(image)
            return self.decide(predictions, signals, prescan)
        except Exception as exc:  # noqa: BLE001 - mode selection must never fail the request
            logger.warning("Mode selection failed, defaulting to single: %s", exc)
            return ModeDecision(
                mode=Mode.SINGLE,
                score=0,
                max_score=self.max_score,
                signals=signals,
                fallback=True,
                reason=str(exc),
            )

    def decide(
        self,
        predictions: Sequence[Prediction],
        signals: ImageSignals,
        prescan: PrescanEstimate,
    ) -> ModeDecision:
        p = self._policy
        ranked = tuple(rank_predictions(predictions))
        verdict = self._unknown.evaluate(ranked, signals)
        context = verdict.context

        if context is not None and context.is_likely_multi_object:
            logger.info("Mode: multiple (multi-object context %d/%d)", context.score, context.max_score)
            return ModeDecision(
                mode=Mode.MULTIPLE,
                score=p.forced_multiple_score,
                max_score=p.forced_max_score,
                context=context,
                verdict=verdict,
                signals=signals,
                predictions=ranked,
                reason="multi-object context",
            )

        if verdict.is_unknown:
            logger.info("Mode: single (unknown object, uncertainty %d/4)", verdict.uncertainty_score)
            return ModeDecision(
                mode=Mode.SINGLE,
                score=0,
                max_score=p.forced_max_score,
                context=context,
                verdict=verdict,
                signals=signals,
                predictions=ranked,
                reason="unknown object",
            )

        top1 = ranked[0].confidence if ranked else 0
        criteria = {
            "complex_image": signals.complexity_score > p.complexity,
            "multiple_regions": signals.estimated_region_count > p.region_count,
            "uncertain_top1": p.top1_min <= top1 < p.top1_max,
            "diverse_predictions": prediction_diversity(ranked) > p.diversity,
            "prescan_multiple": prescan.detected_count > p.prescan_count,
            "prescan_confident": prescan.confidence > p.prescan_confidence,
            "large_file": signals.byte_size > p.large_file_bytes,
        }
        weights = {
            "complex_image": p.complexity_weight,
            "multiple_regions": p.region_weight,
            "uncertain_top1": p.top1_weight,
            "diverse_predictions": p.diversity_weight,
            "prescan_multiple": p.prescan_count_weight,
            "prescan_confident": p.prescan_confidence_weight,
            "large_file": p.large_file_weight,
        }
        score = sum(weights[name] for name, met in criteria.items() if met)
        max_score = self.max_score
        mode = Mode.MULTIPLE if score >= p.threshold_ratio * max_score else Mode.SINGLE
        logger.info("Mode: %s (score %d/%d)", mode, score, max_score)
        return ModeDecision(
            mode=mode,
            score=score,
            max_score=max_score,
            triggered_criteria=criteria,
            context=context,
            verdict=verdict,
            signals=signals,
            predictions=ranked,
        )

    def prescan(self, image: Path) -> PrescanEstimate:
        """Estimate the object count from pixel area alone."""
        p = self._policy
        try:
            size = self._store.dimensions(image)
        except (VegRecogError, OSError) as exc:
            logger.warning("Pre-scan failed: %s", exc)
            return PrescanEstimate(detected_count=1, confidence=p.prescan_failure_confidence, failed=True)

        estimated = min(p.prescan_max_count, (size.width * size.height) // (p.prescan_cell_side**2))
        large = size.width > p.prescan_large_width and size.height > p.prescan_large_height
        return PrescanEstimate(
            detected_count=max(1, estimated),
            confidence=p.prescan_large_confidence if large else p.prescan_confidence_default,
        )
