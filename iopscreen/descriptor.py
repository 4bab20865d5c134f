from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import CorruptDescriptorError
from .types import NormalizationPolicy


@dataclass(frozen=True)
class ModelDescriptor:
    """Parsed ``model.json``: the shard manifest plus topology metadata.

    Topology keys understood here (all optional) override the registry
    defaults of the model they describe:

    * ``graph``: shard name holding the runnable graph
    * ``inputSize``: ``[height, width]``
    * ``normalization``: ``"zero_centered"`` or ``"unit_scaled"``
    * ``inputName``: graph input to feed

    A manifest group may also map its shard names to hex SHA-256 digests under
    ``sha256``; downloads of those shards are checked against them.
    """

    shard_paths: tuple[str, ...]
    format: str | None = None
    generated_by: str | None = None
    converted_by: str | None = None
    topology: dict[str, Any] = field(default_factory=dict, hash=False)
    shard_sha256: dict[str, str] = field(default_factory=dict, hash=False)

    @property
    def graph_shard(self) -> str:
        declared = self.topology.get("graph")
        if declared is not None:
            if declared not in self.shard_paths:
                raise ValueError(
                    f"Topology graph '{declared}' is not listed in the weights manifest."
                )
            return str(declared)
        for name in self.shard_paths:
            if name.lower().endswith(".onnx"):
                return name
        return self.shard_paths[0]

    @property
    def input_size(self) -> tuple[int, int] | None:
        raw = self.topology.get("inputSize")
        if raw is None:
            return None
        if not isinstance(raw, (list, tuple)) or len(raw) != 2:
            raise ValueError(f"Invalid topology inputSize {raw!r}. Expected [height, width].")
        height, width = int(raw[0]), int(raw[1])
        if height <= 0 or width <= 0:
            raise ValueError(f"Invalid topology inputSize {raw!r}. Values must be > 0.")
        return height, width

    @property
    def normalization(self) -> NormalizationPolicy | None:
        raw = self.topology.get("normalization")
        if raw is None:
            return None
        return NormalizationPolicy.parse(raw)

    @property
    def input_name(self) -> str | None:
        raw = self.topology.get("inputName")
        return str(raw) if raw is not None else None


def _validate_shard_name(name: Any, path: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise CorruptDescriptorError(f"Invalid shard entry {name!r} in {path}", path=path)
    if "/" in name or "\\" in name or name in (".", ".."):
        raise CorruptDescriptorError(
            f"Shard name '{name}' in {path} is not a plain file name", path=path
        )
    return name


_SHA256_HEX = frozenset("0123456789abcdef")


def _parse_digests(group: dict, paths: list, path: str) -> dict[str, str]:
    raw = group.get("sha256")
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise CorruptDescriptorError(
            f"Invalid model descriptor {path}: sha256 must map shard names to digests", path=path
        )
    digests: dict[str, str] = {}
    for name, digest in raw.items():
        if name not in paths:
            raise CorruptDescriptorError(
                f"Invalid model descriptor {path}: sha256 given for unlisted shard '{name}'", path=path
            )
        if not isinstance(digest, str) or len(digest) != 64 or not set(digest.lower()) <= _SHA256_HEX:
            raise CorruptDescriptorError(
                f"Invalid model descriptor {path}: malformed sha256 for shard '{name}'", path=path
            )
        digests[name] = digest.lower()
    return digests


def parse_descriptor(text: str, *, path: str = "<memory>") -> ModelDescriptor:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CorruptDescriptorError(f"Unparsable model descriptor {path}: {exc}", path=path) from exc

    if not isinstance(payload, dict):
        raise CorruptDescriptorError(f"Model descriptor {path} is not a JSON object", path=path)

    manifest = payload.get("weightsManifest")
    if not isinstance(manifest, list) or not manifest:
        raise CorruptDescriptorError(
            f"Invalid model descriptor {path}: missing weightsManifest/paths", path=path
        )

    shard_paths: list[str] = []
    shard_sha256: dict[str, str] = {}
    for group in manifest:
        paths = group.get("paths") if isinstance(group, dict) else None
        if not isinstance(paths, list):
            raise CorruptDescriptorError(
                f"Invalid model descriptor {path}: missing weightsManifest/paths", path=path
            )
        for name in paths:
            name = _validate_shard_name(name, path)
            if name not in shard_paths:
                shard_paths.append(name)
        shard_sha256.update(_parse_digests(group, paths, path))

    if not shard_paths:
        raise CorruptDescriptorError(
            f"Invalid model descriptor {path}: weightsManifest lists no shards", path=path
        )

    topology = payload.get("modelTopology") or {}
    if not isinstance(topology, dict):
        raise CorruptDescriptorError(
            f"Invalid model descriptor {path}: modelTopology must be an object", path=path
        )

    return ModelDescriptor(
        shard_paths=tuple(shard_paths),
        format=payload.get("format"),
        generated_by=payload.get("generatedBy"),
        converted_by=payload.get("convertedBy"),
        topology=dict(topology),
        shard_sha256=shard_sha256,
    )


def load_descriptor(path: Path) -> ModelDescriptor:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise CorruptDescriptorError(
            f"Unable to read model descriptor {path}: {exc}", path=str(path)
        ) from exc
    return parse_descriptor(text, path=str(path))
