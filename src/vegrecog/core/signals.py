"""Cheap image signals derived from file size alone."""

from __future__ import annotations

import logging
import math
from pathlib import Path

from vegrecog.core.policy import DEFAULT_POLICY, SignalPolicy
from vegrecog.core.types import ImageSignals
from vegrecog.errors import SignalError

logger = logging.getLogger(__name__)

MAX_REGION_COUNT = 5


class ImageSignalAnalyzer:
    """Best-effort complexity estimate; never a hard dependency."""

    def __init__(self, policy: SignalPolicy = DEFAULT_POLICY.signals) -> None:
        self._policy = policy

    def analyze(self, image: Path) -> ImageSignals:
        """Return signals for ``image``, or fixed defaults if it cannot be read."""
        try:
            byte_size = self._read_size(image)
        except SignalError as exc:
            logger.warning("Using default image signals: %s", exc)
            return self.default_signals()
        return self.from_size(byte_size)

    def from_size(self, byte_size: int) -> ImageSignals:
        complexity = min(max(byte_size, 0) / self._policy.size_cap_bytes, 1.0)
        regions = min(max(math.floor(complexity * 4) + 1, 1), MAX_REGION_COUNT)
        return ImageSignals(
            byte_size=byte_size,
            complexity_score=complexity,
            estimated_region_count=regions,
        )

    def default_signals(self) -> ImageSignals:
        return ImageSignals(
            byte_size=0,
            complexity_score=self._policy.default_complexity,
            estimated_region_count=self._policy.default_region_count,
            fallback=True,
        )

    @staticmethod
    def _read_size(image: Path) -> int:
        try:
            return Path(image).stat().st_size
        except (OSError, TypeError, ValueError) as exc:
            raise SignalError(f"cannot stat {image!r}: {exc}") from exc
