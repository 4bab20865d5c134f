from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from numbers import Real
from typing import Any, Callable

import numpy as np

from .errors import UnrecognizedOutputFormatError
from .types import ClassificationResult, InferenceOutput, Label

logger = logging.getLogger(__name__)

# Ties go to the risk-positive class.
DECISION_THRESHOLD = 0.5


class OutputShape(str, enum.Enum):
    """Wire shapes a single-probability model output is known to arrive in."""

    SCALAR = "scalar"  # p
    VECTOR = "vector"  # [p]
    NESTED_VECTOR = "nested_vector"  # [[p]]
    KEYED = "keyed"  # {"0": p}


@dataclass(frozen=True)
class RecognizedOutput:
    shape: OutputShape
    probability: float


def _to_python(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _is_singleton(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and len(value) == 1


def _detect_shape(value: Any) -> OutputShape | None:
    if _is_number(value):
        return OutputShape.SCALAR
    if _is_singleton(value):
        inner = _to_python(value[0])
        if _is_number(inner):
            return OutputShape.VECTOR
        if _is_singleton(inner) and _is_number(_to_python(inner[0])):
            return OutputShape.NESTED_VECTOR
        return None
    if isinstance(value, dict) and len(value) == 1:
        key = next(iter(value))
        if str(key) == "0" and _is_number(_to_python(value[key])):
            return OutputShape.KEYED
    return None


_EXTRACTORS: dict[OutputShape, Callable[[Any], Any]] = {
    OutputShape.SCALAR: lambda value: value,
    OutputShape.VECTOR: lambda value: _to_python(value[0]),
    OutputShape.NESTED_VECTOR: lambda value: _to_python(_to_python(value[0])[0]),
    OutputShape.KEYED: lambda value: _to_python(next(iter(value.values()))),
}


def recognize_output(raw: Any) -> RecognizedOutput:
    """Unwrap ``raw`` into a probability, or raise with the raw structure attached."""
    value = _to_python(raw)
    shape = _detect_shape(value)
    if shape is None:
        raise UnrecognizedOutputFormatError(raw)

    probability = float(_EXTRACTORS[shape](value))
    if not math.isfinite(probability) or not 0.0 <= probability <= 1.0:
        raise UnrecognizedOutputFormatError(raw)
    return RecognizedOutput(shape=shape, probability=probability)


def classify(probability: float) -> ClassificationResult:
    label = Label.ELEVATED_RISK if probability >= DECISION_THRESHOLD else Label.NORMAL
    return ClassificationResult(label=label, confidence=probability)


def interpret(output: InferenceOutput) -> ClassificationResult:
    """Map a raw model output to a two-class decision.

    The output buffer is released before returning, including when the
    structure is not recognized.
    """
    try:
        recognized = recognize_output(output.raw)
    except UnrecognizedOutputFormatError as exc:
        logger.error(exc.message)
        raise
    finally:
        output.release()

    logger.debug(f"Model output recognized as {recognized.shape.value}: {recognized.probability:.5f}")
    return classify(recognized.probability)
