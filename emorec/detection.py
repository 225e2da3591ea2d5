"""
Face-region detectors.

Both detectors share one contract: detect(frame, scale_factor, min_neighbors)
returns zero or more Regions in frame coordinates, never raising for "no face".
"""
from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import List

import cv2
import numpy as np

from emorec.config import Settings
from emorec.errors import ModelLoadError
from emorec.models import Region

logger = logging.getLogger(__name__)


def to_grayscale(frame: np.ndarray) -> np.ndarray:
    """BGR (or already single-channel) frame -> 2D uint8 grayscale."""
    if frame.ndim == 2:
        return frame
    if frame.shape[2] == 1:
        return frame[:, :, 0]
    return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)


def _inside(reg: Region, frame: np.ndarray) -> bool:
    H, W = frame.shape[:2]
    return reg.fits_within(W, H)


class RegionDetector(ABC):
    @abstractmethod
    def detect(self, frame: np.ndarray, scale_factor: float, min_neighbors: int) -> List[Region]:
        ...


class HaarRegionDetector(RegionDetector):
    """OpenCV Haar cascade on the grayscale frame."""

    def __init__(self, cascade_path: str):
        if not os.path.exists(cascade_path):
            raise ModelLoadError(f"Face cascade not found: {cascade_path}")
        self.cascade = cv2.CascadeClassifier(cascade_path)
        if self.cascade.empty():
            raise ModelLoadError(f"Could not load face cascade: {cascade_path}")
        logger.debug(f"[detect] haar cascade loaded path={cascade_path}")

    def detect(self, frame: np.ndarray, scale_factor: float = 1.2, min_neighbors: int = 4) -> List[Region]:
        gray = to_grayscale(frame)
        boxes = self.cascade.detectMultiScale(gray, scale_factor, min_neighbors)
        regions = [Region(x=int(x), y=int(y), w=int(w), h=int(h)) for (x, y, w, h) in boxes]
        return [r for r in regions if _inside(r, frame)]


class DeepFaceRegionDetector(RegionDetector):
    """
    DeepFace extract_faces with its OpenCV backend.

    DeepFace runs its own cascade, so scale_factor/min_neighbors are not
    forwarded; regions are kept only when they lie inside the frame.
    """

    def __init__(self, detector_backend: str = "opencv"):
        try:
            # Lazy import so tests can monkeypatch sys.modules['deepface']
            from deepface import DeepFace
        except Exception as e:
            raise ModelLoadError("DeepFace import failed. Ensure deepface/tensorflow stack is installed.") from e
        self._deepface = DeepFace
        self.detector_backend = detector_backend

    def detect(self, frame: np.ndarray, scale_factor: float = 1.2, min_neighbors: int = 4) -> List[Region]:
        gray = to_grayscale(frame)
        dets = self._deepface.extract_faces(
            img_path=cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR),
            detector_backend=self.detector_backend,
            enforce_detection=False,
            align=False,
        )
        regions: List[Region] = []
        for d in dets or []:
            d = d or {}
            fa = d.get("facial_area") or {}
            reg = Region(x=int(fa.get("x", 0)), y=int(fa.get("y", 0)),
                         w=int(fa.get("w", 0)), h=int(fa.get("h", 0)))
            # enforce_detection=False yields the whole image when nothing is found
            if float(d.get("confidence", 1.0) or 0.0) <= 0.0:
                continue
            if _inside(reg, frame):
                regions.append(reg)
        return regions


def load_detector(settings: Settings) -> RegionDetector:
    """Build the configured detector once; raises ModelLoadError on failure."""
    if settings.DETECTOR_BACKEND == "deepface":
        return DeepFaceRegionDetector()
    return HaarRegionDetector(settings.FACE_CASCADE_PATH)
