"""Ground-truth-free heuristics over a ranked prediction list.

Both heuristics are total: they always return a verdict, falling back to
fixed defaults when given an empty prediction list.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from vegrecog.core.categories import KNOWN_CATEGORIES
from vegrecog.core.policy import DEFAULT_POLICY, ContextPolicy, UnknownPolicy
from vegrecog.core.types import ContextAnalysis, UnknownVerdict, rank_predictions

if TYPE_CHECKING:
    from collections.abc import Sequence

    from vegrecog.core.types import ImageSignals, Prediction

logger = logging.getLogger(__name__)


def prediction_diversity(predictions: Sequence[Prediction]) -> float:
    """How close the top two predictions are: 1.0 means a tie, 0.0 a landslide."""
    if len(predictions) < 2:
        return 0.0
    top1, top2 = rank_predictions(predictions)[:2]
    return min(max(1.0 - (top1.confidence - top2.confidence) / 100.0, 0.0), 1.0)


class MultiObjectContextHeuristic:
    """Scores whether an image likely shows several known objects at once."""

    def __init__(self, policy: ContextPolicy = DEFAULT_POLICY.context) -> None:
        self._policy = policy

    def analyze(self, predictions: Sequence[Prediction], signals: ImageSignals) -> ContextAnalysis:
        p = self._policy
        ranked = rank_predictions(predictions)
        confidences = [prediction.confidence for prediction in ranked]
        top1 = confidences[0] if confidences else 0

        indicators = {
            "large_file": signals.byte_size > p.large_file_bytes,
            "high_complexity": signals.complexity_score > p.complexity,
            "high_diversity": prediction_diversity(ranked) > p.diversity,
            "very_balanced": (
                len(confidences) >= 3
                and confidences[0] < p.balanced_top1_max
                and confidences[1] > p.balanced_top2_min
                and confidences[2] > p.balanced_top3_min
            ),
            "moderate_top1": p.moderate_top1_min <= top1 < p.moderate_top1_max,
            "known_categories": bool(ranked) and all(pred.category in KNOWN_CATEGORIES for pred in ranked),
        }
        weights = {
            "large_file": p.large_file_weight,
            "high_complexity": p.complexity_weight,
            "high_diversity": p.diversity_weight,
            "very_balanced": p.balanced_weight,
            "moderate_top1": p.moderate_top1_weight,
            "known_categories": p.known_categories_weight,
        }
        score = sum(weights[name] for name, met in indicators.items() if met)
        max_score = p.max_score
        analysis = ContextAnalysis(
            is_likely_multi_object=score >= p.min_score,
            score=score,
            max_score=max_score,
            indicators=indicators,
            confidence_percent=round(score / max_score * 100) if max_score else 0,
        )
        logger.debug("Multi-object context score %d/%d: %s", score, max_score, indicators)
        return analysis


class UnknownObjectHeuristic:
    """Decides whether a prediction set is too uncertain to report as a known object.

    Requires both enough uncertainty criteria *and* a low top confidence, so a
    best guess is preferred unless several independent signals agree.
    """

    def __init__(
        self,
        policy: UnknownPolicy = DEFAULT_POLICY.unknown,
        context: MultiObjectContextHeuristic | None = None,
    ) -> None:
        self._policy = policy
        self._context = context or MultiObjectContextHeuristic()

    def evaluate(self, predictions: Sequence[Prediction], signals: ImageSignals | None = None) -> UnknownVerdict:
        ranked = rank_predictions(predictions)
        if not ranked:
            return UnknownVerdict(is_unknown=True, uncertainty_score=4, best_guess=None)
        best = ranked[0]

        context = None
        if signals is not None:
            context = self._context.analyze(ranked, signals)
            if context.is_likely_multi_object:
                # Several known things at once is not an unrecognized object.
                logger.debug("Multi-object context overrides unknown check (score %d)", context.score)
                return UnknownVerdict(is_unknown=False, uncertainty_score=0, best_guess=best, context=context)

        p = self._policy
        gap = best.confidence - ranked[1].confidence if len(ranked) > 1 else best.confidence
        criteria = {
            "low_confidence": best.confidence < p.low_confidence,
            "small_gap": gap < p.min_gap,
            "high_diversity": prediction_diversity(ranked) > p.diversity,
            "very_low_confidence": best.confidence < p.very_low_confidence,
        }
        uncertainty = sum(criteria.values())
        is_unknown = uncertainty >= p.min_criteria and best.confidence < p.low_confidence
        logger.debug(
            "Unknown check for %s (%d%%): %d/4 criteria, unknown=%s",
            best.category,
            best.confidence,
            uncertainty,
            is_unknown,
        )
        return UnknownVerdict(
            is_unknown=is_unknown,
            uncertainty_score=uncertainty,
            best_guess=best,
            criteria=criteria,
            context=context,
        )
