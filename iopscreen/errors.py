from __future__ import annotations

from typing import Any


class IOPScreenError(Exception):
    """Base class for every failure raised by the screening pipeline.

    ``details`` carries the structured context (file names, HTTP status, raw
    model output) needed to diagnose a failure without re-running it.
    """

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


# --- Artifact cache ---------------------------------------------------------


class ArtifactError(IOPScreenError):
    pass


class DownloadError(ArtifactError):
    def __init__(self, message: str, *, url: str, status: int | None = None) -> None:
        super().__init__(message, url=url, status=status)
        self.url = url
        self.status = status


class CorruptDescriptorError(ArtifactError):
    def __init__(self, message: str, *, path: str) -> None:
        super().__init__(message, path=path)
        self.path = path


class MissingShardError(ArtifactError):
    def __init__(self, shard: str, *, path: str) -> None:
        super().__init__(f"Missing or empty weight shard in cache: {shard}", shard=shard, path=path)
        self.shard = shard
        self.path = path


# --- Model loading ----------------------------------------------------------


class ModelLoadError(IOPScreenError):
    pass


class CacheIntegrityError(ModelLoadError):
    pass


class ModelStructureError(ModelLoadError):
    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message, path=path)
        self.path = path


# --- Single scan ------------------------------------------------------------


class ScanError(IOPScreenError):
    pass


class ModelNotReadyError(ScanError):
    pass


class DecodeError(ScanError):
    def __init__(self, message: str, *, source: str) -> None:
        super().__init__(message, source=source)
        self.source = source


class PreprocessError(ScanError):
    def __init__(self, message: str, *, source: str) -> None:
        super().__init__(message, source=source)
        self.source = source


class DimensionMismatchError(ScanError):
    def __init__(self, expected: tuple[int, int], actual: tuple[int, int]) -> None:
        super().__init__(
            f"Resized raster is {actual[0]}x{actual[1]}, expected {expected[0]}x{expected[1]}",
            expected=expected,
            actual=actual,
        )
        self.expected = expected
        self.actual = actual


class InferenceError(ScanError):
    pass


class UnrecognizedOutputFormatError(ScanError):
    def __init__(self, raw: Any) -> None:
        super().__init__(f"Output tensor format not recognized. Structure: {raw!r}", raw=raw)
        self.raw = raw
