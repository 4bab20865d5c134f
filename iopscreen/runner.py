from __future__ import annotations

import logging

from .errors import IOPScreenError, InferenceError, ModelNotReadyError
from .models.base import ModelHandle
from .types import ImageTensor, InferenceOutput

logger = logging.getLogger(__name__)


def run_inference(handle: ModelHandle | None, tensor: ImageTensor) -> InferenceOutput:
    """Run one forward pass. ``tensor`` is released whether or not the run succeeds."""
    try:
        if handle is None or not handle.is_loaded:
            raise ModelNotReadyError("Model not loaded. Load the model before running inference.")

        batch = tensor.batched() if handle.expects_batch else tensor.data
        logger.debug(f"Running '{handle.model_id}' on input of shape {batch.shape}")
        try:
            raw = handle.runtime.run(batch)
        except IOPScreenError:
            raise
        except Exception as exc:
            logger.error(f"Inference failed for model '{handle.model_id}': {exc}")
            raise InferenceError(f"Inference failed: {exc}", model_id=handle.model_id) from exc
        return InferenceOutput(raw)
    finally:
        tensor.release()
