from ._version import __version__
from .download import ArtifactCache, download_model
from .errors import (
    ArtifactError,
    CacheIntegrityError,
    CorruptDescriptorError,
    DecodeError,
    DimensionMismatchError,
    DownloadError,
    InferenceError,
    IOPScreenError,
    MissingShardError,
    ModelLoadError,
    ModelNotReadyError,
    ModelStructureError,
    PreprocessError,
    ScanError,
    UnrecognizedOutputFormatError,
)
from .interpret import DECISION_THRESHOLD, interpret
from .loader import ModelLoader
from .preprocess import ImagePreprocessor, normalize
from .quality import is_blurry, laplacian_variance
from .registry import (
    ModelSpec,
    get_model_spec,
    list_model_ids,
    list_models,
)
from .runner import run_inference
from .screener import Screener, load_screener
from .types import (
    ClassificationResult,
    ImageTensor,
    InferenceOutput,
    Label,
    LoadedModelInfo,
    NormalizationPolicy,
)

__all__ = [
    "__version__",
    "ArtifactCache",
    "ArtifactError",
    "CacheIntegrityError",
    "ClassificationResult",
    "CorruptDescriptorError",
    "DECISION_THRESHOLD",
    "DecodeError",
    "DimensionMismatchError",
    "DownloadError",
    "IOPScreenError",
    "ImagePreprocessor",
    "ImageTensor",
    "InferenceError",
    "InferenceOutput",
    "Label",
    "LoadedModelInfo",
    "MissingShardError",
    "ModelLoadError",
    "ModelLoader",
    "ModelNotReadyError",
    "ModelSpec",
    "ModelStructureError",
    "NormalizationPolicy",
    "PreprocessError",
    "ScanError",
    "Screener",
    "UnrecognizedOutputFormatError",
    "download_model",
    "get_model_spec",
    "interpret",
    "is_blurry",
    "laplacian_variance",
    "list_model_ids",
    "list_models",
    "load_screener",
    "normalize",
    "run_inference",
]
