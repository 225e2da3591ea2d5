"""
Camera capture wrapped as a restartable frame source.
"""
from __future__ import annotations

import logging
import threading
from typing import List, Optional, Union

import cv2
import numpy as np

from emorec.errors import DeviceUnavailable, StreamEnded
from emorec.models import CameraInfo

logger = logging.getLogger(__name__)

SourceId = Union[int, str]


class FrameSource:
    """
    Owns one cv2.VideoCapture handle.

    The handle is guarded by a lock so close() may be called from a control
    thread while the loop thread is blocked in read(); release happens once.
    """

    def __init__(self):
        self._cap: Optional[cv2.VideoCapture] = None
        self._lock = threading.Lock()
        self.source_id: Optional[SourceId] = None

    # ---- lifecycle ----
    def open(self, source_id: SourceId) -> "FrameSource":
        """
        Open a capture device (int index) or a video file path.

        Raises:
            DeviceUnavailable: the source could not be opened.
        """
        self.close()
        logger.debug(f"[camera] open source={source_id}")
        cap = cv2.VideoCapture(source_id)
        if not cap.isOpened():
            cap.release()
            raise DeviceUnavailable(f"Could not open source {source_id}")
        with self._lock:
            self._cap = cap
            self.source_id = source_id
        return self

    def read(self) -> np.ndarray:
        """
        Return the next BGR frame.

        Raises:
            StreamEnded: the source is closed or yielded no frame.
        """
        with self._lock:
            if self._cap is None:
                raise StreamEnded("source is closed")
            ok, frame = self._cap.read()
        if not ok or frame is None or frame.size == 0:
            raise StreamEnded(f"no frame from source {self.source_id}")
        return frame

    def close(self) -> None:
        with self._lock:
            cap, self._cap = self._cap, None
        if cap is not None:
            cap.release()
            logger.debug(f"[camera] released source={self.source_id}")

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    @property
    def fps(self) -> float:
        with self._lock:
            fps = self._cap.get(cv2.CAP_PROP_FPS) if self._cap is not None else 0.0
        return float(fps or 25.0)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ---- enumeration ----
    @staticmethod
    def probe(max_index: int) -> List[int]:
        """Try indices 0..max_index-1, closing each immediately; return the usable ones."""
        usable: List[int] = []
        for idx in range(max_index):
            cap = cv2.VideoCapture(idx)
            try:
                if cap.isOpened():
                    usable.append(idx)
            finally:
                cap.release()
        logger.debug(f"[camera] probe max_index={max_index} usable={usable}")
        return usable


def list_cameras(max_index: int) -> List[CameraInfo]:
    return [CameraInfo(index=i, name=f"Camera {i}") for i in FrameSource.probe(max_index)]
