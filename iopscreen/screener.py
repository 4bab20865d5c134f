from __future__ import annotations

import functools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from .download import ArtifactCache
from .errors import ScanError
from .interpret import interpret
from .loader import ModelLoader, RuntimeFactory
from .models import ModelHandle, create_runtime
from .preprocess import ImagePreprocessor
from .quality import BLUR_THRESHOLD, is_blurry
from .registry import DEFAULT_MODEL_ID, ModelSpec, get_model_spec
from .runner import run_inference
from .types import ClassificationResult, LoadedModelInfo

logger = logging.getLogger(__name__)


class Screener:
    """Image-to-decision pipeline around one cached, lazily loaded model.

    Load failures (download, cache integrity, model structure) are raised,
    since no scan can succeed without a model. Failures confined to a single
    image come back as an ``ERROR`` result instead.
    """

    def __init__(
        self,
        model: str | ModelSpec = DEFAULT_MODEL_ID,
        *,
        base_url: str | None = None,
        cache_dir: str | Path | None = None,
        scratch_dir: str | Path | None = None,
        runtime_factory: RuntimeFactory | None = None,
        hardware_acceleration: bool = False,
        threads: int = 0,
        show_download_progress: bool = False,
        timeout_sec: int = 60,
        blur_threshold: float = BLUR_THRESHOLD,
        max_workers: int = 1,
    ) -> None:
        self.spec = get_model_spec(model)
        self.cache = ArtifactCache.for_model(
            self.spec,
            base_url=base_url,
            cache_dir=cache_dir,
            show_progress=show_download_progress,
            timeout_sec=timeout_sec,
        )
        if runtime_factory is None:
            runtime_factory = functools.partial(
                create_runtime,
                hardware_acceleration=hardware_acceleration,
                threads=threads,
            )
        self.loader = ModelLoader(self.cache, self.spec, runtime_factory=runtime_factory)
        self.scratch_dir = Path(scratch_dir) if scratch_dir is not None else None
        self.blur_threshold = blur_threshold
        self.max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    @property
    def info(self) -> LoadedModelInfo | None:
        handle = self.loader.handle
        return handle.info if handle is not None else None

    def is_loaded(self) -> bool:
        return self.loader.is_loaded()

    def ensure_model(self, force_reload: bool = False) -> ModelHandle:
        return self.loader.load(force_reload=force_reload)

    def screen(self, image_path: str | Path) -> ClassificationResult:
        handle = self.ensure_model()
        try:
            preprocessor = ImagePreprocessor.for_handle(handle, scratch_dir=self.scratch_dir)
            tensor = preprocessor.preprocess(image_path)
            output = run_inference(handle, tensor)
            result = interpret(output)
        except ScanError as exc:
            logger.error(f"Scan of {image_path} failed: {exc}")
            return ClassificationResult.failure(str(exc))

        logger.info(
            f"Scan of {image_path}: {result.label.value} (confidence {result.confidence:.4f})"
        )
        return result

    def submit(self, image_path: str | Path) -> Future:
        """Run :meth:`screen` on a worker thread and return its future."""
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="iopscreen"
                )
            return self._executor.submit(self.screen, image_path)

    def check_quality(self, image_path: str | Path) -> bool:
        """True when the image is sharp enough to screen."""
        blurry = is_blurry(image_path, threshold=self.blur_threshold)
        if blurry:
            logger.warning(f"Image {image_path} looks blurry; a retake is recommended.")
        return not blurry

    def close(self) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
        self.loader.dispose()

    def __enter__(self) -> Screener:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def load_screener(
    model: str | ModelSpec = DEFAULT_MODEL_ID,
    **kwargs,
) -> Screener:
    return Screener(model=model, **kwargs)
