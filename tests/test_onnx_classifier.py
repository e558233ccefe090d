"""Tests for the ONNX classifier and its preprocessing."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest
from helpers import RED, write_image

from vegrecog.core.categories import Category
from vegrecog.core.types import Prediction
from vegrecog.errors import ClassifierError, ImageDecodeError
from vegrecog.ml.onnx_classifier import OnnxImageClassifier
from vegrecog.ml.preprocessing import ImagePreprocessor

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_manager(scores: list[float]) -> MagicMock:
    session = MagicMock()
    model_input = MagicMock()
    model_input.name = "input_1"
    session.get_inputs.return_value = [model_input]
    session.run.return_value = [np.array([scores], dtype=np.float32)]
    manager = MagicMock()
    manager.get_session.return_value = session
    return manager


def _classifier(manager: MagicMock, max_pixels: int = 16_777_216) -> OnnxImageClassifier:
    return OnnxImageClassifier(manager, ImagePreprocessor(max_pixels), "vegetables_tm_v1")


# ---------------------------------------------------------------------------
# ImagePreprocessor tests
# ---------------------------------------------------------------------------


class TestImagePreprocessor:
    def test_decode_returns_rgb_array(self, tmp_path: Path) -> None:
        image = write_image(tmp_path / "red.png", 40, 30, RED)

        pixels = ImagePreprocessor(10_000).decode_image(image)

        assert pixels.shape == (30, 40, 3)
        assert pixels.dtype == np.uint8
        assert tuple(pixels[0, 0]) == RED

    def test_pixel_limit(self, tmp_path: Path) -> None:
        image = write_image(tmp_path / "big.png", 200, 200)

        with pytest.raises(ImageDecodeError, match="limit"):
            ImagePreprocessor(10_000).decode_image(image)

    def test_garbage_bytes(self, tmp_path: Path) -> None:
        bogus = tmp_path / "bogus.jpg"
        bogus.write_bytes(b"not an image")

        with pytest.raises(ImageDecodeError):
            ImagePreprocessor(10_000).decode_image(bogus)

    def test_tensor_layout(self) -> None:
        image = np.full((30, 40, 3), 255, dtype=np.uint8)

        tensor = ImagePreprocessor.preprocess_for_classification(image, (224, 224))

        assert tensor.shape == (1, 224, 224, 3)
        assert tensor.dtype == np.float32
        assert float(tensor.max()) == pytest.approx(1.0)


# ---------------------------------------------------------------------------
# OnnxImageClassifier tests
# ---------------------------------------------------------------------------


class TestOnnxImageClassifier:
    def test_probabilities_become_ranked_percentages(self, tmp_path: Path) -> None:
        image = write_image(tmp_path / "red.png", 64, 64, RED)
        manager = _make_manager([0.1, 0.75, 0.15])

        predictions = _classifier(manager).classify(image)

        assert predictions == [
            Prediction(Category.CARROT, 75),
            Prediction(Category.POTATO, 15),
            Prediction(Category.TOMATO, 10),
        ]
        session = manager.get_session.return_value
        (output_names, feeds), _ = session.run.call_args
        assert output_names is None
        assert feeds["input_1"].shape == (1, 224, 224, 3)

    def test_logits_are_softmaxed(self, tmp_path: Path) -> None:
        image = write_image(tmp_path / "red.png", 64, 64, RED)

        predictions = _classifier(_make_manager([4.0, 0.0, 0.0])).classify(image)

        assert predictions[0] == Prediction(Category.TOMATO, 96)
        assert sum(p.confidence for p in predictions) in (99, 100, 101)

    def test_label_count_mismatch(self, tmp_path: Path) -> None:
        image = write_image(tmp_path / "red.png", 64, 64, RED)

        with pytest.raises(ClassifierError, match="3 labels"):
            _classifier(_make_manager([0.5, 0.5])).classify(image)

    def test_session_failure_is_wrapped(self, tmp_path: Path) -> None:
        image = write_image(tmp_path / "red.png", 64, 64, RED)
        manager = _make_manager([0.2, 0.3, 0.5])
        manager.get_session.return_value.run.side_effect = RuntimeError("ORT failure")

        with pytest.raises(ClassifierError, match="ORT failure"):
            _classifier(manager).classify(image)

    def test_undecodable_image_is_not_a_classifier_error(self, tmp_path: Path) -> None:
        bogus = tmp_path / "bogus.jpg"
        bogus.write_bytes(b"not an image")
        manager = _make_manager([0.2, 0.3, 0.5])

        with pytest.raises(ImageDecodeError):
            _classifier(manager).classify(bogus)
        manager.get_session.assert_not_called()

    def test_warm_up_loads_session(self) -> None:
        manager = _make_manager([0.2, 0.3, 0.5])

        classifier = _classifier(manager)
        classifier.warm_up()

        manager.get_session.assert_called_once_with("vegetables_tm_v1")
        assert classifier.model_name == "vegetables_tm_v1"

    def test_warm_up_failure(self) -> None:
        manager = MagicMock()
        manager.get_session.side_effect = OSError("download failed")

        with pytest.raises(ClassifierError, match="download failed"):
            _classifier(manager).warm_up()

    def test_unknown_model_name(self) -> None:
        with pytest.raises(KeyError, match="Unknown model"):
            OnnxImageClassifier(MagicMock(), ImagePreprocessor(100), "no_such_model")
