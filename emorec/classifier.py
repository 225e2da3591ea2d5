"""
Emotion classifier capability (ONNX Runtime backend).

The pipeline only depends on EmotionClassifier.infer(); the ONNX session is
created once at load time and reused for every region of every frame.
"""
from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np

from emorec.config import Settings
from emorec.errors import InferenceError, LabelMismatch, ModelLoadError
from emorec.labels import CLASS_LABELS
from emorec.preprocessing import INPUT_SIZE

logger = logging.getLogger(__name__)

INPUT_SHAPE = (1, INPUT_SIZE, INPUT_SIZE, 1)


class EmotionClassifier(ABC):
    @abstractmethod
    def infer(self, tensor: np.ndarray) -> np.ndarray:
        """(1,48,48,1) float tensor -> 1D score vector, one entry per class label."""


def check_input(tensor: np.ndarray) -> None:
    if tuple(tensor.shape) != INPUT_SHAPE:
        raise InferenceError(f"input shape {tuple(tensor.shape)} != {INPUT_SHAPE}")


def _providers(device: str) -> List[str]:
    if device == "cuda":
        return ["CUDAExecutionProvider", "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


class OnnxEmotionClassifier(EmotionClassifier):
    def __init__(self,
                 model_path: str,
                 input_name: Optional[str] = None,
                 labels: Sequence[str] = CLASS_LABELS,
                 device: str = "cpu"):
        if not os.path.exists(model_path):
            raise ModelLoadError(f"Emotion model not found: {model_path}")
        try:
            import onnxruntime as ort
            self.session = ort.InferenceSession(model_path, providers=_providers(device))
        except Exception as e:
            raise ModelLoadError(f"Could not load emotion model: {model_path}") from e

        self.input_name = input_name or self.session.get_inputs()[0].name
        self.labels = tuple(labels)
        self._check_output_width()
        logger.debug(f"[classifier] onnx loaded path={model_path} input={self.input_name} device={device}")

    def _check_output_width(self) -> None:
        # Dynamic dims come back as strings/None; only a concrete width can be checked here
        shape = self.session.get_outputs()[0].shape
        width = shape[-1] if shape else None
        if isinstance(width, int) and width != len(self.labels):
            raise LabelMismatch(
                f"model emits {width} scores but the label table has {len(self.labels)} entries"
            )

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        check_input(tensor)
        try:
            outputs = self.session.run(None, {self.input_name: tensor.astype(np.float32, copy=False)})
        except Exception as e:
            raise InferenceError(f"onnx inference failed: {e}") from e
        scores = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if scores.shape[0] != len(self.labels):
            raise InferenceError(f"model returned {scores.shape[0]} scores, expected {len(self.labels)}")
        return scores


def load_classifier(settings: Settings) -> EmotionClassifier:
    """Load the configured classifier once; raises ModelLoadError on failure."""
    try:
        return OnnxEmotionClassifier(
            settings.EMOTION_MODEL_PATH,
            input_name=settings.EMOTION_INPUT_NAME,
            device=settings.DEVICE,
        )
    except LabelMismatch as e:
        raise ModelLoadError(str(e)) from e
