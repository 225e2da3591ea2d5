"""
Configuration for the live emotion pipeline.
"""
from __future__ import annotations
from typing import Optional
import os

import cv2
from pydantic import BaseModel, field_validator


def _default_cascade() -> str:
    return os.path.join(cv2.data.haarcascades, "haarcascade_frontalface_default.xml")


# Resize policy is pinned here so inference matches the classifier's training-time preprocessing
INTERPOLATIONS = {
    "linear": cv2.INTER_LINEAR,
    "area": cv2.INTER_AREA,
    "nearest": cv2.INTER_NEAREST,
    "cubic": cv2.INTER_CUBIC,
}


class Settings(BaseModel):
    """
    Runtime settings with environment-variable overrides.
    """
    DEVICE: str = (os.getenv("DEVICE", "cpu") or "cpu")

    CAMERA_INDEX: int = int(os.getenv("CAMERA_INDEX", "0"))
    PROBE_MAX_INDEX: int = int(os.getenv("PROBE_MAX_INDEX", "5"))

    FACE_CASCADE_PATH: str = os.getenv("FACE_CASCADE_PATH") or _default_cascade()
    EMOTION_MODEL_PATH: str = os.getenv("EMOTION_MODEL_PATH", "models/emotion_detection_model.onnx")
    EMOTION_INPUT_NAME: Optional[str] = os.getenv("EMOTION_INPUT_NAME") or None
    DETECTOR_BACKEND: str = os.getenv("DETECTOR_BACKEND", "haar")

    SCALE_FACTOR: float = float(os.getenv("SCALE_FACTOR", "1.2"))
    MIN_NEIGHBORS: int = int(os.getenv("MIN_NEIGHBORS", "4"))

    INPUT_SIZE: int = 48
    RESIZE_INTERPOLATION: str = os.getenv("RESIZE_INTERPOLATION", "linear")

    YIELD_INTERVAL: float = float(os.getenv("YIELD_INTERVAL", "0.001"))
    INFERENCE_TIMEOUT: Optional[float] = (
        float(os.getenv("INFERENCE_TIMEOUT")) if os.getenv("INFERENCE_TIMEOUT") else None
    )

    def __init__(self, **data):
        super().__init__(**data)
        # Normalize DEVICE: strip comments/extra words, lower-case, validate
        dev = (self.DEVICE or "cpu").strip().split()[0].lower()
        if dev not in ("cpu", "cuda"):
            dev = "cpu"
        object.__setattr__(self, "DEVICE", dev)

    @field_validator("SCALE_FACTOR")
    @classmethod
    def _scale_above_one(cls, v: float) -> float:
        if v <= 1.0:
            raise ValueError("SCALE_FACTOR must be > 1.0")
        return v

    @field_validator("MIN_NEIGHBORS", "PROBE_MAX_INDEX")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("DETECTOR_BACKEND")
    @classmethod
    def _known_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("haar", "deepface"):
            raise ValueError(f"unknown detector backend: {v}")
        return v

    @field_validator("RESIZE_INTERPOLATION")
    @classmethod
    def _known_interpolation(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in INTERPOLATIONS:
            raise ValueError(f"unknown interpolation: {v}")
        return v

    @property
    def interpolation_flag(self) -> int:
        return INTERPOLATIONS[self.RESIZE_INTERPOLATION]
