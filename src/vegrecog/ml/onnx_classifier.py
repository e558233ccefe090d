"""ONNX implementation of the ImageClassifier protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from vegrecog.core.types import Prediction, rank_predictions
from vegrecog.errors import ClassifierError
from vegrecog.ml.model_manager import get_spec

if TYPE_CHECKING:
    from pathlib import Path

    from numpy.typing import NDArray

    from vegrecog.ml.model_manager import ModelManager
    from vegrecog.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)


def _to_probabilities(scores: NDArray[np.float32]) -> NDArray[np.float64]:
    """Pass probabilities through; softmax raw logits."""
    values = scores.astype(np.float64)
    if np.all(values >= 0.0) and np.isclose(values.sum(), 1.0, atol=1e-3):
        return values
    shifted = np.exp(values - values.max())
    return shifted / shifted.sum()


class OnnxImageClassifier:
    """Classifies an image file with a registered ONNX model.

    Construct once at startup and call ``warm_up`` before serving; the
    instance is safe to share across threads.
    """

    def __init__(self, model_manager: ModelManager, preprocessor: ImagePreprocessor, model_name: str) -> None:
        self._spec = get_spec(model_name)
        self._models = model_manager
        self._preprocessor = preprocessor

    @property
    def model_name(self) -> str:
        return self._spec.name

    def warm_up(self) -> None:
        """Download and load the model so the first request does not pay for it."""
        try:
            self._models.get_session(self._spec.name)
        except Exception as exc:
            raise ClassifierError(f"Cannot load classifier {self._spec.name}: {exc}") from exc
        logger.info("Classifier %s ready (%d categories)", self._spec.name, len(self._spec.labels))

    def classify(self, image: Path) -> list[Prediction]:
        pixels = self._preprocessor.decode_image(image)
        tensor = self._preprocessor.preprocess_for_classification(pixels, self._spec.input_size)

        try:
            session = self._models.get_session(self._spec.name)
            input_name = session.get_inputs()[0].name
            outputs = session.run(None, {input_name: tensor})
        except Exception as exc:
            raise ClassifierError(f"Inference failed for {self._spec.name}: {exc}") from exc

        scores = np.asarray(outputs[0]).reshape(-1)
        if scores.shape[0] != len(self._spec.labels):
            raise ClassifierError(
                f"Model {self._spec.name} returned {scores.shape[0]} scores for {len(self._spec.labels)} labels"
            )

        probabilities = _to_probabilities(scores)
        predictions = rank_predictions(
            Prediction(category=label, confidence=int(round(float(prob) * 100)))
            for label, prob in zip(self._spec.labels, probabilities, strict=True)
        )
        logger.debug("Classified %s: %s", image.name, ", ".join(f"{p.category} {p.confidence}%" for p in predictions))
        return predictions
