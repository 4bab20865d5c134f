from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import numpy as np

from ..errors import ModelStructureError
from .base import create_ort_session

logger = logging.getLogger(__name__)


class ONNXClassifier:
    """Single-output binary classifier executed with ONNX Runtime.

    The graph must take one float32 NHWC (or HWC) image tensor with three
    channels. External weight data is resolved relative to ``model_path``.
    """

    model_name = "onnx"

    def __init__(
        self,
        model_path: Path | str,
        *,
        input_name: str | None = None,
        hardware_acceleration: bool = False,
        threads: int = 0,
    ) -> None:
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(f"Model file does not exist: {self.model_path}")

        self.session = create_ort_session(
            self.model_path,
            hardware_acceleration=hardware_acceleration,
            threads=threads,
        )

        inputs = self.session.get_inputs()
        if input_name is None:
            model_input = inputs[0]
        else:
            matches = [inp for inp in inputs if inp.name == input_name]
            if not matches:
                raise ModelStructureError(
                    f"Graph has no input named '{input_name}'. Inputs: {[inp.name for inp in inputs]}",
                    path=str(self.model_path),
                )
            model_input = matches[0]

        if model_input.type != "tensor(float)":
            raise ModelStructureError(
                f"Graph input '{model_input.name}' has type {model_input.type}, expected tensor(float)",
                path=str(self.model_path),
            )

        self.input_name: str = model_input.name
        self.input_shape: tuple[int | None, ...] = tuple(
            int(dim) if isinstance(dim, int) else None for dim in model_input.shape
        )
        if len(self.input_shape) not in (3, 4) or self.input_shape[-1] not in (3, None):
            raise ModelStructureError(
                f"Graph input '{self.input_name}' has shape {model_input.shape}; "
                "expected an NHWC image tensor with 3 channels",
                path=str(self.model_path),
            )

        self.output_name: str = self.session.get_outputs()[0].name
        logger.info(
            f"ONNX model '{self.model_path}' loaded. Input {self.input_name} {self.input_shape}, "
            f"output {self.output_name}, providers {self.session.get_providers()}"
        )

    def run(self, batch: np.ndarray) -> Any:
        if self.session is None:
            raise RuntimeError("ONNX session has been closed.")
        outputs = self.session.run([self.output_name], {self.input_name: batch})
        return outputs[0]

    def close(self) -> None:
        if self.session is not None:
            del self.session
            self.session = None
