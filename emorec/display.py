"""
Display surfaces that receive finished frames from the pipeline.
"""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class DisplaySurface(ABC):
    @abstractmethod
    def publish(self, frame: np.ndarray) -> None:
        ...

    def publish_label(self, label: str) -> None:
        """Most recently selected emotion; optional for surfaces without a text field."""

    @abstractmethod
    def clear(self) -> None:
        ...


class LatestFrameDisplay(DisplaySurface):
    """Keeps only the newest frame and label; safe to read from another thread."""

    def __init__(self):
        self._lock = threading.Lock()
        self._frame: Optional[np.ndarray] = None
        self._label: Optional[str] = None
        self.published = 0

    def publish(self, frame: np.ndarray) -> None:
        with self._lock:
            self._frame = frame
            self.published += 1

    def publish_label(self, label: str) -> None:
        with self._lock:
            self._label = label

    def clear(self) -> None:
        with self._lock:
            self._frame = None
            self._label = None

    @property
    def frame(self) -> Optional[np.ndarray]:
        with self._lock:
            return self._frame

    @property
    def label(self) -> Optional[str]:
        with self._lock:
            return self._label

    def jpeg(self, quality: int = 85) -> Optional[bytes]:
        frame = self.frame
        if frame is None:
            return None
        ok, buf = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
        return buf.tobytes() if ok else None


class WindowDisplay(DisplaySurface):
    """
    OpenCV window. Must be driven from the thread that owns the window.

    Pressing 'q' calls on_quit (typically PipelineLoop.stop).
    """

    def __init__(self, title: str = "Emotion Live (q to quit)",
                 on_quit: Optional[Callable[[], None]] = None):
        self.title = title
        self.on_quit = on_quit
        self._label: Optional[str] = None

    def publish(self, frame: np.ndarray) -> None:
        cv2.imshow(self.title, frame)
        if (cv2.waitKey(1) & 0xFF) == ord("q") and self.on_quit is not None:
            self.on_quit()

    def publish_label(self, label: str) -> None:
        if label != self._label:
            logger.info(f"[display] emotion={label}")
        self._label = label

    def clear(self) -> None:
        self._label = None
        try:
            cv2.destroyWindow(self.title)
        except cv2.error:
            # window was never created
            pass


class VideoWriterDisplay(DisplaySurface):
    """Appends every published frame to a video file; opened on the first frame."""

    def __init__(self, output_path: str, fps: float = 25.0, fourcc: str = "MJPG"):
        self.output_path = output_path
        self.fps = fps
        self.fourcc = fourcc
        self._writer: Optional[cv2.VideoWriter] = None
        self.frames_written = 0

    def publish(self, frame: np.ndarray) -> None:
        if self._writer is None:
            h, w = frame.shape[:2]
            self._writer = cv2.VideoWriter(
                self.output_path, cv2.VideoWriter_fourcc(*self.fourcc), self.fps, (w, h)
            )
            if not self._writer.isOpened():
                self._writer = None
                raise RuntimeError(f"Could not open video writer: {self.output_path}")
        self._writer.write(frame)
        self.frames_written += 1

    def clear(self) -> None:
        if self._writer is not None:
            self._writer.release()
            self._writer = None
