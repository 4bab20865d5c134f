from __future__ import annotations

import logging
from pathlib import Path

import cv2
import numpy as np

from .preprocess import read_image, to_8bit

logger = logging.getLogger(__name__)

BLUR_RESIZED_WIDTH = 500
BLUR_THRESHOLD = 35.0


def _to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    if image.shape[2] == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return np.ascontiguousarray(image[:, :, 0])


def laplacian_variance(image: str | Path, resized_width: int = BLUR_RESIZED_WIDTH) -> float:
    """Sharpness score: variance of the 4-neighbour Laplacian of the grayscale image.

    The 8-bit photo is first scaled to ``resized_width`` pixels wide (aspect
    ratio kept) so scores are comparable across camera resolutions. Only
    interior pixels, which have all four neighbours, contribute to the score.
    """
    if resized_width <= 0:
        raise ValueError(f"resized_width must be positive, got {resized_width}")

    decoded, source = read_image(image)
    pixels = to_8bit(decoded, source)

    height, width = pixels.shape[:2]
    resized_height = max(1, round(height * resized_width / width))
    resized = cv2.resize(pixels, (resized_width, resized_height), interpolation=cv2.INTER_AREA)
    gray = _to_gray(resized).astype(np.float64)

    # ksize=1 selects the [[0, 1, 0], [1, -4, 1], [0, 1, 0]] kernel.
    interior = cv2.Laplacian(gray, cv2.CV_64F, ksize=1)[1:-1, 1:-1]
    if interior.size == 0:
        logger.warning(f"Image {source} is too small for a sharpness score")
        return 0.0
    variance = float(interior.var())
    logger.debug(f"Laplacian variance for {source}: {variance:.2f}")
    return variance


def is_blurry(image: str | Path, threshold: float = BLUR_THRESHOLD) -> bool:
    return laplacian_variance(image) < threshold
