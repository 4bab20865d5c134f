from __future__ import annotations

import json
import math
from pathlib import Path

import cv2
import numpy as np
import onnx
import pytest
from onnx import TensorProto, helper, numpy_helper

from iopscreen.download import ArtifactCache
from iopscreen.registry import ModelSpec
from iopscreen.types import NormalizationPolicy

TINY_SIZE = (8, 8)
GRAPH_FILE = "model.onnx"
DATA_FILE = "model.onnx.data"


def logit(p: float) -> float:
    return math.log(p / (1.0 - p))


def build_classifier_graph(
    path: Path,
    *,
    input_size: tuple[int, int] = TINY_SIZE,
    weight: float = 0.0,
    bias: float = 0.0,
    batched: bool = True,
    data_file: str | None = DATA_FILE,
) -> Path:
    """Write sigmoid(weight * mean(image) + bias) as an NHWC ONNX classifier.

    With ``data_file`` set, every initializer is stored in that external file
    next to the graph.
    """
    height, width = input_size
    dims = [1, height, width, 3] if batched else [height, width, 3]
    axes = [1, 2, 3] if batched else [0, 1, 2]

    image = helper.make_tensor_value_info("image", TensorProto.FLOAT, dims)
    prob = helper.make_tensor_value_info("probability", TensorProto.FLOAT, [1, 1])
    initializers = [
        numpy_helper.from_array(np.array([weight], dtype=np.float32), name="w"),
        numpy_helper.from_array(np.array([bias], dtype=np.float32), name="b"),
        numpy_helper.from_array(np.array([1, 1], dtype=np.int64), name="out_shape"),
    ]
    nodes = [
        helper.make_node("ReduceMean", ["image"], ["mean"], axes=axes, keepdims=0),
        helper.make_node("Mul", ["mean", "w"], ["scaled"]),
        helper.make_node("Add", ["scaled", "b"], ["logit"]),
        helper.make_node("Sigmoid", ["logit"], ["sig"]),
        helper.make_node("Reshape", ["sig", "out_shape"], ["probability"]),
    ]
    graph = helper.make_graph(nodes, "tiny_iop", [image], [prob], initializer=initializers)
    model = helper.make_model(
        graph,
        producer_name="iopscreen-tests",
        opset_imports=[helper.make_opsetid("", 13)],
        ir_version=8,
    )
    onnx.checker.check_model(model)

    path.parent.mkdir(parents=True, exist_ok=True)
    if data_file is None:
        onnx.save_model(model, str(path))
    else:
        onnx.save_model(
            model,
            str(path),
            save_as_external_data=True,
            all_tensors_to_one_file=True,
            location=data_file,
            size_threshold=0,
        )
    return path


def build_unsupported_graph(path: Path, *, data_file: str = DATA_FILE) -> Path:
    """Write a well-formed ONNX file whose only node is an operator no runtime knows."""
    image = helper.make_tensor_value_info("image", TensorProto.FLOAT, [1, *TINY_SIZE, 3])
    prob = helper.make_tensor_value_info("probability", TensorProto.FLOAT, [1, 1])
    scale = numpy_helper.from_array(np.array([1.0], dtype=np.float32), name="scale")
    node = helper.make_node("FundusMagic", ["image", "scale"], ["probability"])
    graph = helper.make_graph([node], "unsupported_iop", [image], [prob], initializer=[scale])
    model = helper.make_model(
        graph,
        producer_name="iopscreen-tests",
        opset_imports=[helper.make_opsetid("", 13)],
        ir_version=8,
    )

    path.parent.mkdir(parents=True, exist_ok=True)
    onnx.save_model(
        model,
        str(path),
        save_as_external_data=True,
        all_tensors_to_one_file=True,
        location=data_file,
        size_threshold=0,
    )
    return path


def write_descriptor(
    model_dir: Path,
    *,
    shards: list[str] | None = None,
    topology: dict | None = None,
    fmt: str | None = "onnx",
) -> Path:
    payload: dict = {
        "generatedBy": "iopscreen-tests",
        "convertedBy": "onnx",
        "modelTopology": topology if topology is not None else {"graph": GRAPH_FILE},
        "weightsManifest": [{"paths": shards if shards is not None else [GRAPH_FILE, DATA_FILE]}],
    }
    if fmt is not None:
        payload["format"] = fmt
    path = model_dir / "model.json"
    model_dir.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def publish_model(
    model_dir: Path,
    *,
    probability: float = 0.82,
    input_size: tuple[int, int] = TINY_SIZE,
    batched: bool = True,
    topology: dict | None = None,
) -> Path:
    build_classifier_graph(
        model_dir / GRAPH_FILE,
        input_size=input_size,
        bias=logit(probability),
        batched=batched,
    )
    write_descriptor(model_dir, topology=topology)
    return model_dir


def write_image(path: Path, image: np.ndarray) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    assert cv2.imwrite(str(path), image)
    return path


class FakeRuntime:
    """Stands in for an ONNX session; returns a fixed output for every batch."""

    def __init__(self, output=0.82, *, input_size: tuple[int, int] = TINY_SIZE, batched: bool = True):
        self.output = output
        self.input_name = "image"
        h, w = input_size
        self.input_shape = (1, h, w, 3) if batched else (h, w, 3)
        self.batches: list[np.ndarray] = []
        self.closed = False

    def run(self, batch):
        self.batches.append(np.array(batch, copy=True))
        return self.output

    def close(self):
        self.closed = True


@pytest.fixture
def tiny_spec() -> ModelSpec:
    return ModelSpec(
        model_id="tiny-iop",
        remote_path="tiny",
        input_size=TINY_SIZE,
        normalization=NormalizationPolicy.ZERO_CENTERED,
    )


@pytest.fixture
def origin(tmp_path: Path) -> Path:
    """Remote origin root served over file:// URLs."""
    root = tmp_path / "origin"
    root.mkdir()
    return root


@pytest.fixture
def published_model(origin: Path) -> Path:
    return publish_model(origin / "tiny")


@pytest.fixture
def cache_root(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def artifact_cache(tiny_spec: ModelSpec, origin: Path, cache_root: Path) -> ArtifactCache:
    return ArtifactCache.for_model(tiny_spec, base_url=origin.as_uri(), cache_dir=cache_root)


@pytest.fixture
def fundus_jpeg(tmp_path: Path) -> Path:
    rng = np.random.default_rng(7)
    image = rng.integers(0, 256, size=(3000, 4000, 3), dtype=np.uint8)
    cv2.circle(image, (2000, 1500), 1200, (40, 80, 200), thickness=-1)
    return write_image(tmp_path / "images" / "fundus.jpg", image)
