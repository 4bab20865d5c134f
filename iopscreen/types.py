from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np


class NormalizationPolicy(str, enum.Enum):
    """How 8-bit channel values are mapped into the range a model was trained on."""

    ZERO_CENTERED = "zero_centered"
    UNIT_SCALED = "unit_scaled"

    @classmethod
    def parse(cls, value: str | NormalizationPolicy) -> NormalizationPolicy:
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("-", "_")
        for policy in cls:
            if policy.value == key:
                return policy
        raise ValueError(
            f"Unknown normalization policy '{value}'. Expected one of: {[p.value for p in cls]}"
        )


class Label(str, enum.Enum):
    ELEVATED_RISK = "elevated_risk"
    NORMAL = "normal"
    ERROR = "error"


class ImageTensor:
    """Normalized (H, W, 3) float32 image, row-major with interleaved RGB.

    A tensor is single-use: the inference runner releases it after one call and
    any further access raises.
    """

    def __init__(self, data: np.ndarray) -> None:
        if data.ndim != 3 or data.shape[2] != 3:
            raise ValueError(f"Expected tensor shape [H, W, 3], got {data.shape}.")
        self._data: np.ndarray | None = np.ascontiguousarray(data, dtype=np.float32)
        self.shape: tuple[int, int, int] = tuple(int(v) for v in data.shape)

    @property
    def released(self) -> bool:
        return self._data is None

    @property
    def data(self) -> np.ndarray:
        if self._data is None:
            raise RuntimeError("ImageTensor has already been consumed by an inference call.")
        return self._data

    @property
    def size(self) -> int:
        h, w, c = self.shape
        return h * w * c

    def flat(self) -> np.ndarray:
        return self.data.reshape(-1)

    def batched(self) -> np.ndarray:
        return self.data[None, ...]

    def release(self) -> None:
        self._data = None

    def __repr__(self) -> str:
        state = "released" if self.released else "live"
        return f"ImageTensor(shape={self.shape}, {state})"


class InferenceOutput:
    """Raw value returned by a model run, before interpretation."""

    def __init__(self, raw: Any) -> None:
        self._raw = raw
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @property
    def raw(self) -> Any:
        if self._released:
            raise RuntimeError("InferenceOutput has already been released.")
        return self._raw

    def release(self) -> None:
        self._raw = None
        self._released = True


@dataclass(frozen=True)
class ClassificationResult:
    label: Label
    confidence: float
    error: str | None = None

    def __post_init__(self) -> None:
        if self.label is Label.ERROR and not self.error:
            raise ValueError("Error results must carry an error message.")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must lie in [0, 1], got {self.confidence}.")

    @classmethod
    def failure(cls, message: str) -> ClassificationResult:
        return cls(label=Label.ERROR, confidence=0.0, error=message)

    @property
    def ok(self) -> bool:
        return self.label is not Label.ERROR

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "label": self.label.value,
            "confidence": self.confidence,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class LoadedModelInfo:
    model_id: str
    input_size: tuple[int, int]
    normalization: NormalizationPolicy
    model_dir: Path
    graph_path: Path
