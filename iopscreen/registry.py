from __future__ import annotations

import os
from dataclasses import dataclass

from .types import NormalizationPolicy

DEFAULT_MODEL_BASE_URL = (
    "https://ycciqvsehzurdhjagwrr.supabase.co/storage/v1/object/public/ml-model"
)
DESCRIPTOR_FILENAME = "model.json"


@dataclass(frozen=True)
class ModelSpec:
    model_id: str
    remote_path: str
    input_size: tuple[int, int]
    normalization: NormalizationPolicy
    aliases: tuple[str, ...] = ()
    description: str = ""


_MODEL_SPECS: tuple[ModelSpec, ...] = (
    ModelSpec(
        model_id="iop-mobilenetv2",
        remote_path="mobilenetv2",
        input_size=(224, 224),
        normalization=NormalizationPolicy.ZERO_CENTERED,
        aliases=("mobilenetv2", "iop"),
        description="MobileNetV2 fundus classifier, inputs scaled to [-1, 1]",
    ),
    ModelSpec(
        model_id="iop-cnn",
        remote_path="",
        input_size=(300, 300),
        normalization=NormalizationPolicy.UNIT_SCALED,
        aliases=("cnn", "iop-legacy"),
        description="Baseline CNN fundus classifier, inputs scaled to [0, 1]",
    ),
)

DEFAULT_MODEL_ID = "iop-mobilenetv2"

_MODEL_BY_ID: dict[str, ModelSpec] = {spec.model_id: spec for spec in _MODEL_SPECS}
_MODEL_ALIASES: dict[str, str] = {}
for _spec in _MODEL_SPECS:
    _MODEL_ALIASES[_spec.model_id] = _spec.model_id
    for _alias in _spec.aliases:
        _MODEL_ALIASES[_alias] = _spec.model_id


def model_base_url() -> str:
    return os.getenv("IOPSCREEN_MODEL_BASE_URL", DEFAULT_MODEL_BASE_URL).rstrip("/")


def model_root_url(spec: ModelSpec, base_url: str | None = None) -> str:
    root = (base_url or model_base_url()).rstrip("/")
    if not spec.remote_path:
        return root
    return f"{root}/{spec.remote_path.strip('/')}"


def descriptor_url(spec: ModelSpec, base_url: str | None = None) -> str:
    return f"{model_root_url(spec, base_url)}/{DESCRIPTOR_FILENAME}"


def list_models() -> list[ModelSpec]:
    return list(_MODEL_SPECS)


def list_model_ids() -> list[str]:
    return [spec.model_id for spec in _MODEL_SPECS]


def resolve_model_id(model: str) -> str:
    key = model.strip().lower()
    if key in _MODEL_ALIASES:
        return _MODEL_ALIASES[key]

    raise ValueError(
        f"Unknown model '{model}'. Available model IDs: {', '.join(list_model_ids())}"
    )


def get_model_spec(model: str | ModelSpec) -> ModelSpec:
    if isinstance(model, ModelSpec):
        return model
    return _MODEL_BY_ID[resolve_model_id(model)]
