from __future__ import annotations

import numpy as np
import pytest

from iopscreen.descriptor import ModelDescriptor
from iopscreen.errors import InferenceError, ModelNotReadyError
from iopscreen.models import ModelHandle
from iopscreen.runner import run_inference
from iopscreen.types import ImageTensor, NormalizationPolicy

from conftest import FakeRuntime


class ExplodingRuntime(FakeRuntime):
    def run(self, batch):
        raise RuntimeError("Got invalid dimensions for input: image")


def _handle(runtime, tmp_path) -> ModelHandle:
    return ModelHandle(
        runtime,
        model_id="tiny-iop",
        descriptor=ModelDescriptor(shard_paths=("model.onnx",)),
        model_dir=tmp_path,
        input_size=(8, 8),
        normalization=NormalizationPolicy.ZERO_CENTERED,
    )


def _tensor() -> ImageTensor:
    return ImageTensor(np.zeros((8, 8, 3), dtype=np.float32))


def test_batched_runtime_gets_leading_dimension(tmp_path):
    runtime = FakeRuntime(0.4)
    tensor = _tensor()

    output = run_inference(_handle(runtime, tmp_path), tensor)

    assert output.raw == 0.4
    assert runtime.batches[0].shape == (1, 8, 8, 3)
    assert tensor.released


def test_unbatched_runtime_gets_plain_tensor(tmp_path):
    runtime = FakeRuntime(0.4, batched=False)

    run_inference(_handle(runtime, tmp_path), _tensor())

    assert runtime.batches[0].shape == (8, 8, 3)


def test_missing_handle_raises_model_not_ready():
    tensor = _tensor()
    with pytest.raises(ModelNotReadyError):
        run_inference(None, tensor)
    assert tensor.released


def test_disposed_handle_raises_model_not_ready(tmp_path):
    handle = _handle(FakeRuntime(), tmp_path)
    handle.dispose()

    with pytest.raises(ModelNotReadyError):
        run_inference(handle, _tensor())


def test_runtime_failure_becomes_inference_error(tmp_path):
    tensor = _tensor()
    with pytest.raises(InferenceError) as excinfo:
        run_inference(_handle(ExplodingRuntime(), tmp_path), tensor)

    assert "invalid dimensions" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert tensor.released


def test_tensor_cannot_be_reused(tmp_path):
    handle = _handle(FakeRuntime(), tmp_path)
    tensor = _tensor()
    run_inference(handle, tensor)

    with pytest.raises(RuntimeError):
        tensor.data
