from __future__ import annotations

import math

import numpy as np
import pytest

from iopscreen.errors import UnrecognizedOutputFormatError
from iopscreen.interpret import DECISION_THRESHOLD, OutputShape, interpret, recognize_output
from iopscreen.types import InferenceOutput, Label


def test_threshold_value():
    assert DECISION_THRESHOLD == 0.5


@pytest.mark.parametrize(
    ("probability", "label"),
    [
        (0.5, Label.ELEVATED_RISK),
        (0.49999, Label.NORMAL),
        (0.50001, Label.ELEVATED_RISK),
        (0.0, Label.NORMAL),
        (1.0, Label.ELEVATED_RISK),
    ],
)
def test_threshold_boundary(probability, label):
    result = interpret(InferenceOutput(probability))
    assert result.label is label
    assert result.confidence == probability
    assert result.error is None


@pytest.mark.parametrize(
    ("raw", "shape"),
    [
        (0.73, OutputShape.SCALAR),
        ([0.73], OutputShape.VECTOR),
        ([[0.73]], OutputShape.NESTED_VECTOR),
        ({"0": 0.73}, OutputShape.KEYED),
        ((0.73,), OutputShape.VECTOR),
        (np.float32(0.73), OutputShape.SCALAR),
        (np.array([0.73], dtype=np.float32), OutputShape.VECTOR),
        (np.array([[0.73]], dtype=np.float32), OutputShape.NESTED_VECTOR),
        ({"0": np.float32(0.73)}, OutputShape.KEYED),
    ],
)
def test_recognized_shapes(raw, shape):
    recognized = recognize_output(raw)
    assert recognized.shape is shape
    assert recognized.probability == pytest.approx(0.73)


def test_same_probability_gives_identical_results_across_shapes():
    results = {
        interpret(InferenceOutput(raw))
        for raw in (0.82, [0.82], [[0.82]], {"0": 0.82})
    }
    assert len(results) == 1
    (result,) = results
    assert result.label is Label.ELEVATED_RISK
    assert result.confidence == 0.82


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "0.9",
        True,
        [],
        [0.1, 0.9],
        [[0.1, 0.9]],
        [[[0.9]]],
        {"1": 0.9},
        {"0": 0.9, "1": 0.1},
        {"0": "0.9"},
        1.5,
        -0.1,
        math.nan,
        math.inf,
        np.array([0.2, 0.8]),
    ],
)
def test_unrecognized_outputs(raw):
    output = InferenceOutput(raw)
    with pytest.raises(UnrecognizedOutputFormatError) as excinfo:
        interpret(output)
    assert output.released
    assert excinfo.value.raw is raw


def test_output_is_released_after_success():
    output = InferenceOutput([0.3])
    result = interpret(output)

    assert result.label is Label.NORMAL
    assert output.released
    with pytest.raises(RuntimeError):
        output.raw
