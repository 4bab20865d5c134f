from __future__ import annotations

import numpy as np
import pytest

from iopscreen.types import ClassificationResult, ImageTensor, Label, NormalizationPolicy


def test_normalization_policy_parse():
    assert NormalizationPolicy.parse("zero-centered") is NormalizationPolicy.ZERO_CENTERED
    assert NormalizationPolicy.parse(" UNIT_SCALED ") is NormalizationPolicy.UNIT_SCALED
    assert NormalizationPolicy.parse(NormalizationPolicy.UNIT_SCALED) is NormalizationPolicy.UNIT_SCALED
    with pytest.raises(ValueError):
        NormalizationPolicy.parse("imagenet")


def test_image_tensor_layout():
    tensor = ImageTensor(np.zeros((4, 5, 3), dtype=np.float64))

    assert tensor.data.dtype == np.float32
    assert tensor.shape == (4, 5, 3)
    assert tensor.flat().shape == (60,)
    assert tensor.batched().shape == (1, 4, 5, 3)


def test_image_tensor_rejects_wrong_channels():
    with pytest.raises(ValueError):
        ImageTensor(np.zeros((4, 5, 4), dtype=np.float32))


def test_released_tensor_raises():
    tensor = ImageTensor(np.zeros((2, 2, 3), dtype=np.float32))
    tensor.release()
    assert tensor.released
    with pytest.raises(RuntimeError):
        tensor.flat()


def test_classification_result_validation():
    with pytest.raises(ValueError):
        ClassificationResult(Label.NORMAL, 1.5)
    with pytest.raises(ValueError):
        ClassificationResult(Label.ERROR, 0.0)

    failure = ClassificationResult.failure("decode failed")
    assert failure.to_dict() == {"label": "error", "confidence": 0.0, "error": "decode failed"}
    assert ClassificationResult(Label.NORMAL, 0.25).to_dict() == {"label": "normal", "confidence": 0.25}
