from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from urllib.parse import unquote, urlparse

import cv2
import numpy as np

from .errors import DecodeError, DimensionMismatchError, PreprocessError
from .models.base import ModelHandle
from .types import ImageTensor, NormalizationPolicy

logger = logging.getLogger(__name__)

_ZERO_CENTER = np.float32(127.5)
_UNIT_SCALE = np.float32(255.0)


def normalize(pixels: np.ndarray, policy: NormalizationPolicy) -> np.ndarray:
    """Map 8-bit channel values into the float32 range ``policy`` describes."""
    values = pixels.astype(np.float32)
    if policy is NormalizationPolicy.ZERO_CENTERED:
        np.subtract(values, _ZERO_CENTER, out=values)
        np.divide(values, _ZERO_CENTER, out=values)
    elif policy is NormalizationPolicy.UNIT_SCALED:
        np.divide(values, _UNIT_SCALE, out=values)
    else:
        raise ValueError(f"Unsupported normalization policy: {policy!r}")
    return values


def resolve_image_path(image: str | Path) -> Path:
    """Accept plain paths as well as ``file://`` URIs handed over by capture screens."""
    if isinstance(image, str) and image.startswith("file:"):
        return Path(unquote(urlparse(image).path))
    return Path(image)


# Any color layout and bit depth, with the EXIF orientation applied. Alpha is
# dropped by the decoder.
_DECODE_FLAGS = cv2.IMREAD_ANYCOLOR | cv2.IMREAD_ANYDEPTH


def decode_image(data: bytes, source: str) -> np.ndarray:
    if not data:
        raise DecodeError(f"Image {source} is empty", source=source)
    image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), _DECODE_FLAGS)
    if image is None or image.size == 0:
        raise DecodeError(f"Unable to decode image: {source}", source=source)
    return image


def read_image(image: str | Path) -> tuple[np.ndarray, str]:
    path = resolve_image_path(image)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise DecodeError(f"Unable to open image: {path} ({exc})", source=str(path)) from exc
    return decode_image(data, str(path)), str(path)


def to_8bit(image: np.ndarray, source: str) -> np.ndarray:
    if image.dtype == np.uint8:
        return image
    logger.warning(f"Image {source} has {image.dtype} samples; rescaling to 8 bit.")
    if image.dtype == np.uint16:
        return cv2.convertScaleAbs(image, alpha=255.0 / 65535.0)
    if np.issubdtype(image.dtype, np.floating):
        return (np.clip(image, 0.0, 1.0) * 255.0).round().astype(np.uint8)
    return np.clip(image, 0, 255).astype(np.uint8)


def _to_bgr(image: np.ndarray, source: str) -> np.ndarray:
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)

    channels = image.shape[2]
    if channels == 3:
        return image
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)

    logger.warning(
        f"Image {source} has {channels} channels; expected RGB or RGBA. "
        "Using the first three channels."
    )
    if channels < 3:
        return np.ascontiguousarray(np.repeat(image[:, :, :1], 3, axis=2))
    return np.ascontiguousarray(image[:, :, :3])


class ImagePreprocessor:
    """Turns a fundus photo into the normalized tensor a model expects.

    The resized raster is written to a lossless scratch file and decoded back
    before normalization, so the tensor is built from exactly the pixels a
    re-encoded image holds. The scratch file never outlives the call.
    """

    def __init__(
        self,
        input_size: tuple[int, int],
        normalization: NormalizationPolicy | str,
        *,
        scratch_dir: Path | str | None = None,
        interpolation: int = cv2.INTER_AREA,
    ) -> None:
        self.input_size = (int(input_size[0]), int(input_size[1]))
        if self.input_size[0] <= 0 or self.input_size[1] <= 0:
            raise ValueError(f"Invalid input_size: {self.input_size}")
        self.normalization = NormalizationPolicy.parse(normalization)
        self.scratch_dir = Path(scratch_dir) if scratch_dir is not None else None
        self.interpolation = interpolation

    @classmethod
    def for_handle(cls, handle: ModelHandle, **kwargs) -> ImagePreprocessor:
        return cls(handle.input_size, handle.normalization, **kwargs)

    def preprocess(self, image: str | Path) -> ImageTensor:
        decoded, source = read_image(image)
        return self._prepare(decoded, source)

    def preprocess_bytes(self, data: bytes, *, source: str = "<bytes>") -> ImageTensor:
        return self._prepare(decode_image(data, source), source)

    def _prepare(self, decoded: np.ndarray, source: str) -> ImageTensor:
        height, width = self.input_size
        image_bgr = _to_bgr(to_8bit(decoded, source), source)
        resized = cv2.resize(image_bgr, (width, height), interpolation=self.interpolation)

        raster = self._roundtrip(resized, source)
        if raster.shape[:2] != (height, width):
            raise DimensionMismatchError(
                expected=(height, width), actual=(int(raster.shape[0]), int(raster.shape[1]))
            )

        image_rgb = cv2.cvtColor(raster, cv2.COLOR_BGR2RGB)
        tensor = ImageTensor(normalize(image_rgb, self.normalization))
        logger.debug(f"Preprocessed {source} into tensor of shape {tensor.shape}")
        return tensor

    def _roundtrip(self, resized: np.ndarray, source: str) -> np.ndarray:
        try:
            if self.scratch_dir is not None:
                self.scratch_dir.mkdir(parents=True, exist_ok=True)
            tmp_file = tempfile.NamedTemporaryFile(
                delete=False, dir=self.scratch_dir, prefix="resized-", suffix=".png"
            )
            tmp_file.close()
        except OSError as exc:
            raise PreprocessError(
                f"Unable to create scratch file for {source}: {exc}", source=source
            ) from exc

        try:
            if not cv2.imwrite(tmp_file.name, resized):
                raise PreprocessError(
                    f"Unable to write resized image for {source}: {tmp_file.name}", source=source
                )
            raster = cv2.imread(tmp_file.name, cv2.IMREAD_COLOR)
            if raster is None:
                raise DecodeError(f"Unable to decode resized image for {source}", source=source)
            return raster
        finally:
            if os.path.exists(tmp_file.name):
                os.remove(tmp_file.name)
