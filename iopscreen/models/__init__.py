from __future__ import annotations

from pathlib import Path

from ..descriptor import ModelDescriptor
from ..errors import ModelStructureError
from .base import ModelHandle, ModelRuntime, is_structure_error
from .onnx import ONNXClassifier

RUNTIME_REGISTRY = {
    ONNXClassifier.model_name: ONNXClassifier,
}

# Descriptors written before the format field existed hold ONNX graphs.
DEFAULT_FORMAT = ONNXClassifier.model_name


def available_formats() -> list[str]:
    return sorted(RUNTIME_REGISTRY.keys())


def create_runtime(
    descriptor: ModelDescriptor,
    model_dir: Path,
    *,
    hardware_acceleration: bool = False,
    threads: int = 0,
) -> ModelRuntime:
    key = (descriptor.format or DEFAULT_FORMAT).strip().lower()
    if key not in RUNTIME_REGISTRY:
        raise ModelStructureError(
            f"Model format '{descriptor.format}' is not supported. Available formats: {available_formats()}",
            path=str(model_dir),
        )

    try:
        graph_path = Path(model_dir) / descriptor.graph_shard
        input_name = descriptor.input_name
    except ValueError as exc:
        raise ModelStructureError(str(exc), path=str(model_dir)) from exc

    return RUNTIME_REGISTRY[key](
        graph_path,
        input_name=input_name,
        hardware_acceleration=hardware_acceleration,
        threads=threads,
    )


__all__ = [
    "ModelHandle",
    "ModelRuntime",
    "ONNXClassifier",
    "available_formats",
    "create_runtime",
    "is_structure_error",
]
