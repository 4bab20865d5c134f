from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Callable

from .descriptor import ModelDescriptor
from .download import ArtifactCache
from .errors import (
    CacheIntegrityError,
    CorruptDescriptorError,
    DownloadError,
    MissingShardError,
    ModelLoadError,
    ModelStructureError,
)
from .models import ModelHandle, ModelRuntime, create_runtime, is_structure_error
from .registry import ModelSpec

logger = logging.getLogger(__name__)

RuntimeFactory = Callable[[ModelDescriptor, Path], ModelRuntime]


class LoaderState(str, enum.Enum):
    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    LOADED = "loaded"


class LoadPhase(str, enum.Enum):
    INITIAL = "initial attempt"
    RECOVERY = "recovery attempt"


class _ConstructionFailed(Exception):
    """Runtime construction failed for a reason that a fresh download may fix."""


class ModelLoader:
    """Owns the single live :class:`ModelHandle` for one model.

    ``load`` is the only writer of the handle. Callers that arrive while a
    load is running wait on the same in-flight future instead of starting a
    second download.
    """

    def __init__(
        self,
        cache: ArtifactCache,
        spec: ModelSpec,
        *,
        runtime_factory: RuntimeFactory | None = None,
    ) -> None:
        self.cache = cache
        self.spec = spec
        self._runtime_factory: RuntimeFactory = runtime_factory or create_runtime
        self._lock = threading.Lock()
        self._handle: ModelHandle | None = None
        self._pending: Future | None = None
        self.last_attempts = 0

    @property
    def state(self) -> LoaderState:
        with self._lock:
            if self._pending is not None:
                return LoaderState.LOADING
            if self._handle is not None:
                return LoaderState.LOADED
            return LoaderState.NOT_LOADED

    @property
    def handle(self) -> ModelHandle | None:
        with self._lock:
            return self._handle

    def is_loaded(self) -> bool:
        handle = self.handle
        return handle is not None and handle.is_loaded

    def load(self, force_reload: bool = False) -> ModelHandle:
        with self._lock:
            if self._handle is not None and not force_reload:
                logger.debug("Model already in memory.")
                return self._handle
            pending = self._pending
            owner = pending is None
            if owner:
                pending = self._pending = Future()

        if not owner:
            logger.info(f"Load of model '{self.spec.model_id}' already in progress; waiting for it.")
            return pending.result()

        try:
            handle = self._load(force_reload)
        except BaseException as exc:
            pending.set_exception(exc)
            raise
        else:
            pending.set_result(handle)
            return handle
        finally:
            with self._lock:
                self._pending = None

    def dispose(self) -> None:
        with self._lock:
            handle, self._handle = self._handle, None
        if handle is not None:
            handle.dispose()

    def reset(self) -> None:
        """Drop the in-memory model and forget load history (for tests and app restarts)."""
        self.dispose()
        self.last_attempts = 0

    def _load(self, force_reload: bool) -> ModelHandle:
        self.last_attempts = 0
        if force_reload:
            with self._lock:
                previous, self._handle = self._handle, None
            if previous is not None:
                logger.info("Force reload requested. Disposing in-memory model.")
                previous.dispose()
            logger.info("Explicit force reload requested. Clearing model cache.")
            self.cache.clear()

        try:
            return self._publish(self._attempt(LoadPhase.INITIAL))
        except (CorruptDescriptorError, MissingShardError, DownloadError, _ConstructionFailed) as exc:
            logger.warning(
                f"Model '{self.spec.model_id}' failed to load ({exc}). "
                "Clearing cache and attempting redownload once."
            )
            self.cache.clear()

        try:
            return self._publish(self._attempt(LoadPhase.RECOVERY))
        except (CorruptDescriptorError, MissingShardError, DownloadError) as exc:
            integrity = (CorruptDescriptorError, MissingShardError)
            if isinstance(exc, DownloadError) and not isinstance(exc.__cause__, integrity):
                raise
            logger.error(f"Failed to validate cache even after redownload: {exc}")
            raise CacheIntegrityError(
                f"Failed to validate model cache after redownload: {exc}",
                path=str(self.cache.model_dir),
            ) from exc
        except _ConstructionFailed as exc:
            logger.error(f"Failed to load model from file system even after redownload: {exc}")
            raise ModelLoadError(
                f"Failed loading model from file system after redownload: {exc}",
                path=str(self.cache.model_dir),
            ) from exc.__cause__

    def _publish(self, handle: ModelHandle) -> ModelHandle:
        with self._lock:
            self._handle = handle
        logger.info(f"Model '{handle.model_id}' loaded successfully.")
        return handle

    def _attempt(self, phase: LoadPhase) -> ModelHandle:
        self.last_attempts += 1
        logger.info(f"Loading model '{self.spec.model_id}' ({phase.value}).")
        descriptor = self.cache.ensure_artifacts()
        logger.debug(
            f"Descriptor format={descriptor.format} generatedBy={descriptor.generated_by} "
            f"convertedBy={descriptor.converted_by} shards={list(descriptor.shard_paths)}"
        )

        try:
            runtime = self._runtime_factory(descriptor, self.cache.model_dir)
        except Exception as exc:
            if is_structure_error(exc):
                logger.error(
                    "Model structure error detected; the descriptor is incompatible or malformed. "
                    f"Cached files are kept for inspection at {self.cache.model_dir}"
                )
                if isinstance(exc, ModelStructureError):
                    raise
                raise ModelStructureError(
                    f"Model structure error: {exc}", path=str(self.cache.descriptor_path)
                ) from exc
            logger.warning(f"Potential cache/file system error during load: {exc}")
            raise _ConstructionFailed(str(exc)) from exc

        try:
            return self._build_handle(runtime, descriptor)
        except ModelStructureError:
            runtime.close()
            raise

    def _build_handle(self, runtime: ModelRuntime, descriptor: ModelDescriptor) -> ModelHandle:
        try:
            input_size = descriptor.input_size or self.spec.input_size
            normalization = descriptor.normalization or self.spec.normalization
        except ValueError as exc:
            raise ModelStructureError(str(exc), path=str(self.cache.descriptor_path)) from exc

        shape = runtime.input_shape
        spatial = tuple(shape[-3:-1]) if len(shape) >= 3 else ()
        if len(spatial) == 2 and all(dim is not None for dim in spatial) and spatial != input_size:
            raise ModelStructureError(
                f"Graph input {runtime.input_name} expects {spatial[0]}x{spatial[1]} images "
                f"but the model is configured for {input_size[0]}x{input_size[1]}",
                path=str(self.cache.descriptor_path),
            )

        return ModelHandle(
            runtime,
            model_id=self.spec.model_id,
            descriptor=descriptor,
            model_dir=self.cache.model_dir,
            input_size=input_size,
            normalization=normalization,
        )
