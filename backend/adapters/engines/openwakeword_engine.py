"""
openwakeword wake-word engine.

Wraps `openwakeword.model.Model` behind the WakeWordEngine contract.

- Input: 80 ms int16 frames at 16 kHz (openwakeword's native chunk)
- Output: index of the first configured model whose score reaches the
  threshold, or -1
- Vendor exceptions are converted to EngineError
"""

from __future__ import annotations

import os
from typing import Any

import numpy as np
import openwakeword
from openwakeword.model import Model as OWWModel
from openwakeword.utils import download_models

from adapters.engines.base import EngineError, WakeWordEngine
from observability.logger import log_event
from spec import ENGINE_SAMPLE_RATE_HZ, OPENWAKEWORD_FRAME_LENGTH, WAKEWORD_SCORE_THRESHOLD


def ensure_models_downloaded() -> None:
    """
    Fetch openwakeword's pre-trained models if none are on disk yet.

    Blocking network IO; the app runs it once at startup, off the event
    loop, before any engine is built.
    """
    model_paths = openwakeword.get_pretrained_model_paths("onnx")
    if any(os.path.exists(p) for p in model_paths):
        return
    log_event({"event_type": "OPENWAKEWORD_MODELS_DOWNLOAD"})
    download_models()


class OpenWakeWordEngine(WakeWordEngine):
    """
    Wake-word engine backed by openwakeword ONNX models.

    Model scores carry state across calls, so one instance must serve
    exactly one speaker stream.
    """

    def __init__(
        self,
        *,
        models: tuple[str, ...],
        threshold: float = WAKEWORD_SCORE_THRESHOLD,
        model: Any | None = None,
    ) -> None:
        """
        Args:
            models:
                Pre-trained model names or paths, in keyword-index order.
            threshold:
                Minimum score counted as a detection.
            model:
                Pre-built openwakeword Model (tests inject a fake here).
        """
        if not models:
            raise ValueError("at least one wake-word model is required")

        self._names = models
        self._threshold = threshold
        self._model = model if model is not None else self._load(models)

    @staticmethod
    def _load(models: tuple[str, ...]) -> Any:
        return OWWModel(wakeword_models=list(models), inference_framework="onnx")

    @property
    def sample_rate(self) -> int:
        return ENGINE_SAMPLE_RATE_HZ

    @property
    def frame_length(self) -> int:
        return OPENWAKEWORD_FRAME_LENGTH

    def process(self, frame: np.ndarray) -> int:
        try:
            scores: dict[str, float] = self._model.predict(frame)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            raise EngineError(f"{type(exc).__name__}: {exc}") from exc

        for index, name in enumerate(self._names):
            key = self._score_key(name, scores)
            if key is not None and scores[key] >= self._threshold:
                return index
        return -1

    @staticmethod
    def _score_key(name: str, scores: dict[str, float]) -> str | None:
        """
        openwakeword keys scores by model stem ("hey_jarvis" for
        ".../hey_jarvis_v0.1.onnx"), so match on prefix.
        """
        stem = os.path.splitext(os.path.basename(name))[0]
        for key in scores:
            if key == stem or stem.startswith(key) or key.startswith(stem):
                return key
        return None
