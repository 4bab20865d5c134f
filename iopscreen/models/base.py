from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple, Union

import numpy as np
import onnx
import onnxruntime as ort

from ..descriptor import ModelDescriptor
from ..errors import ModelNotReadyError, ModelStructureError
from ..types import LoadedModelInfo, NormalizationPolicy

logger = logging.getLogger(__name__)

ProviderEntry = Union[str, Tuple[str, Dict[str, Any]]]

# Some builds report DirectML as DmlExecutionProvider
_DIRECTML_ALIASES = {"DmlExecutionProvider", "DirectMLExecutionProvider"}

# ONNX Runtime failures that mean the graph itself is unusable, as opposed to
# an unreadable or truncated file on disk.
_STRUCTURAL_ORT_ERRORS = {"InvalidGraph", "NotImplemented", "InvalidArgument"}
_TRANSIENT_ORT_ERRORS = {"InvalidProtobuf", "NoSuchFile"}
_STRUCTURAL_HINTS = ("shape", "opset", "layer", "node", "graph", "expected", "config")
# Unreadable or short external weight data can surface under any ONNX Runtime
# status and from shape inference, so these are checked first.
_TRANSIENT_HINTS = (
    "external",
    "out of bounds",
    "can not be read",
    "cannot be read",
    "fewer bytes",
)
_PATH_TOKEN = re.compile(r"\S*[\\/]\S*")


def _available_providers() -> List[str]:
    return list(ort.get_available_providers())


def _has(ep: str, available: Iterable[str]) -> bool:
    if ep in _DIRECTML_ALIASES:
        return any(a in _DIRECTML_ALIASES for a in available)
    return ep in set(available)


def _canonical_directml_name(available: Iterable[str]) -> Optional[str]:
    for n in _DIRECTML_ALIASES:
        if n in available:
            return n
    return None


def resolve_execution_providers(hardware_acceleration: bool = False) -> List[str]:
    """
    Decide an ordered list of EPs to request, from most preferred to least.
    Always ends with CPUExecutionProvider as a safety net.
    """
    if not hardware_acceleration:
        return ["CPUExecutionProvider"]

    avail = _available_providers()

    order: List[str] = []

    if _has("CoreMLExecutionProvider", avail):
        order.append("CoreMLExecutionProvider")

    if _has("CUDAExecutionProvider", avail):
        order.append("CUDAExecutionProvider")

    dml_name = _canonical_directml_name(avail)
    if dml_name:
        order.append(dml_name)

    if _has("OpenVINOExecutionProvider", avail):
        order.append("OpenVINOExecutionProvider")

    order.append("CPUExecutionProvider")

    seen = set()
    deduped = []
    for p in order:
        key = "DmlExecutionProvider" if p in _DIRECTML_ALIASES else p
        if key in seen:
            continue
        seen.add(key)
        deduped.append(p)

    return deduped


def provider_options_for(ep: str) -> ProviderEntry:
    """
    Return a (name, options) tuple for EPs that benefit from tuned options,
    or just the name to request the EP with its defaults.
    """
    if ep == "CoreMLExecutionProvider":
        # Classifier inputs are fixed-size, so static shapes are safe here.
        return (
            "CoreMLExecutionProvider",
            {
                "ModelFormat": "MLProgram",
                "MLComputeUnits": "ALL",
                "RequireStaticInputShapes": "1",
            },
        )

    if ep == "CUDAExecutionProvider":
        return (
            "CUDAExecutionProvider",
            {
                "cudnn_conv_algo_search": "HEURISTIC",
                "do_copy_in_default_stream": True,
            },
        )

    if ep in _DIRECTML_ALIASES:
        return (ep, {"enable_metacommands": 1})

    return ep


def create_ort_session(
    model_path: Union[str, Path],
    hardware_acceleration: bool = False,
    threads: int = 0,
) -> ort.InferenceSession:
    providers = resolve_execution_providers(hardware_acceleration=hardware_acceleration)
    provider_entries = [provider_options_for(p) for p in providers]

    so = ort.SessionOptions()
    so.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    if threads > 0:
        so.intra_op_num_threads = threads
        so.inter_op_num_threads = threads

    try:
        session = ort.InferenceSession(
            str(model_path),
            sess_options=so,
            providers=provider_entries,
        )
    except RuntimeError:
        if providers == ["CPUExecutionProvider"]:
            raise
        # An accelerated EP may reject its options; the CPU EP decides whether
        # the model itself is loadable.
        logger.warning("Accelerated session creation failed, retrying on CPUExecutionProvider")
        session = ort.InferenceSession(
            str(model_path),
            sess_options=so,
            providers=["CPUExecutionProvider"],
        )
    return session


def read_graph_metadata(model_path: Union[str, Path]) -> Dict[str, Any]:
    """Summarize an ONNX graph without pulling its external weight data."""
    model = onnx.load(str(model_path), load_external_data=False)
    inputs = []
    for value in model.graph.input:
        dims = [
            d.dim_value if d.HasField("dim_value") else (d.dim_param or None)
            for d in value.type.tensor_type.shape.dim
        ]
        inputs.append({"name": value.name, "shape": dims})
    return {
        "producer": f"{model.producer_name} {model.producer_version}".strip(),
        "ir_version": model.ir_version,
        "opsets": {op.domain or "ai.onnx": op.version for op in model.opset_import},
        "inputs": inputs,
        "outputs": [value.name for value in model.graph.output],
    }


def _error_detail(exc: BaseException) -> str:
    """Error text with file system paths removed, lowercased."""
    return _PATH_TOKEN.sub(" ", str(exc)).lower()


def is_structure_error(exc: BaseException) -> bool:
    """True when ``exc`` says the model graph is malformed or unsupported."""
    if isinstance(exc, ModelStructureError):
        return True
    if isinstance(exc, OSError):
        return False
    detail = _error_detail(exc)
    if any(hint in detail for hint in _TRANSIENT_HINTS):
        return False
    if type(exc).__name__ in _STRUCTURAL_ORT_ERRORS:
        return True
    if type(exc).__name__ in _TRANSIENT_ORT_ERRORS:
        return False
    if isinstance(exc, onnx.checker.ValidationError):
        return True
    return any(hint in detail for hint in _STRUCTURAL_HINTS)


class ModelRuntime(Protocol):
    input_name: str
    input_shape: tuple[int | None, ...]

    def run(self, batch: np.ndarray) -> Any: ...

    def close(self) -> None: ...


class ModelHandle:
    """A loaded, runnable model plus the input contract it was trained with."""

    def __init__(
        self,
        runtime: ModelRuntime,
        *,
        model_id: str,
        descriptor: ModelDescriptor,
        model_dir: Path,
        input_size: tuple[int, int],
        normalization: NormalizationPolicy,
    ) -> None:
        self._runtime: ModelRuntime | None = runtime
        self.model_id = model_id
        self.descriptor = descriptor
        self.model_dir = Path(model_dir)
        self.input_size = (int(input_size[0]), int(input_size[1]))
        self.normalization = normalization
        self.expects_batch = len(runtime.input_shape) == 4

    @property
    def is_loaded(self) -> bool:
        return self._runtime is not None

    @property
    def runtime(self) -> ModelRuntime:
        if self._runtime is None:
            raise ModelNotReadyError(f"Model '{self.model_id}' has been disposed.")
        return self._runtime

    @property
    def info(self) -> LoadedModelInfo:
        return LoadedModelInfo(
            model_id=self.model_id,
            input_size=self.input_size,
            normalization=self.normalization,
            model_dir=self.model_dir,
            graph_path=self.model_dir / self.descriptor.graph_shard,
        )

    def dispose(self) -> None:
        if self._runtime is None:
            return
        runtime, self._runtime = self._runtime, None
        runtime.close()
        logger.info(f"Model '{self.model_id}' disposed.")

    def __repr__(self) -> str:
        state = "loaded" if self.is_loaded else "disposed"
        return f"ModelHandle({self.model_id!r}, input_size={self.input_size}, {state})"
