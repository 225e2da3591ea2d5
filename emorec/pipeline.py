"""
Per-frame emotion pipeline.

PipelineLoop pulls frames from a FrameSource and, for every frame:
detect regions -> (preprocess -> infer -> select -> annotate) per region ->
publish -> yield. Detector and classifier are loaded once and reused across
frames and across start/stop cycles.
"""
from __future__ import annotations

import enum
import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, List, Optional, Sequence

import numpy as np

from emorec.camera import FrameSource, SourceId
from emorec.classifier import EmotionClassifier, load_classifier
from emorec.config import Settings
from emorec.detection import RegionDetector, load_detector, to_grayscale
from emorec.display import DisplaySurface, VideoWriterDisplay, WindowDisplay
from emorec.errors import InferenceError, NoSourceSelected, RegionError, StreamEnded
from emorec.labels import CLASS_LABELS, select_label
from emorec.models import Detection, FrameResult, LiveStatus, Region
from emorec.preprocessing import preprocess
from emorec.visual import draw_detections

logger = logging.getLogger(__name__)


class PipelineState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


def _valid_source_id(source_id) -> bool:
    if isinstance(source_id, bool):
        return False
    if isinstance(source_id, int):
        return source_id >= 0
    if isinstance(source_id, str):
        return bool(source_id.strip())
    return False


class PipelineLoop:
    """Idle/Running state machine around the per-frame loop."""

    def __init__(self,
                 settings: Settings,
                 display: DisplaySurface,
                 detector: Optional[RegionDetector] = None,
                 classifier: Optional[EmotionClassifier] = None,
                 labels: Sequence[str] = CLASS_LABELS,
                 source_factory: Callable[[], FrameSource] = FrameSource):
        self.s = settings
        self.display = display
        self.labels = tuple(labels)
        self._detector = detector
        self._classifier = classifier
        self._source_factory = source_factory

        self._lock = threading.RLock()               # guards state, source, publish/clear
        self._iteration_lock = threading.Lock()      # at most one iteration in flight
        self._lifecycle_lock = threading.RLock()     # serializes start()
        self._state = PipelineState.IDLE
        self._run_id = 0
        self._source: Optional[FrameSource] = None
        self._source_id: Optional[SourceId] = None
        self._thread: Optional[threading.Thread] = None

        self._started_at: Optional[float] = None
        self._frames = 0
        self._last_label: Optional[str] = None

        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Optional[Future] = None

    # ---- capabilities ----
    def load_models(self) -> None:
        """Load detector/classifier if not injected. Raises ModelLoadError."""
        if self._detector is None:
            self._detector = load_detector(self.s)
        if self._classifier is None:
            self._classifier = load_classifier(self.s)

    # ---- lifecycle ----
    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is PipelineState.RUNNING

    def start(self, source_id: Optional[SourceId], background: bool = True) -> None:
        """
        Idle -> Running on source_id.

        With background=True the loop runs on a daemon thread and this call
        returns immediately; otherwise it blocks until stop() or stream end.
        Concurrent start() calls are serialized; the last one wins and every
        superseded source is released.

        Raises:
            NoSourceSelected: source_id is missing or invalid
            ModelLoadError: detector or classifier could not be loaded
            DeviceUnavailable: the source could not be opened
        """
        if not _valid_source_id(source_id):
            raise NoSourceSelected(f"invalid source id: {source_id!r}")

        with self._lifecycle_lock:
            if self.running:
                logger.info(f"[pipeline] reselecting source {self._source_id} -> {source_id}")
                self.stop()

            self.load_models()
            source = self._source_factory()
            source.open(source_id)

            with self._lock:
                self._run_id += 1
                run_id = self._run_id
                self._source = source
                self._source_id = source_id
                self._state = PipelineState.RUNNING
                self._started_at = time.time()
                self._frames = 0
                self._last_label = None
            logger.info(f"[pipeline] started source={source_id} background={background}")

            if background:
                self._thread = threading.Thread(
                    target=self._run, args=(run_id, source), daemon=True, name="emorec-pipeline"
                )
                self._thread.start()
                return
            self._thread = None

        self._run(run_id, source)

    def stop(self) -> None:
        """Running -> Idle. Safe from any thread and safe to repeat."""
        self._teardown(None)
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
            if thread.is_alive():
                logger.warning("[pipeline] loop thread still busy after stop; it will exit on its next check")

    def close(self) -> None:
        self.stop()
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def status(self) -> LiveStatus:
        with self._lock:
            return LiveStatus(
                running=self.running,
                source_id=self._source_id if self.running else None,
                started_at=self._started_at if self.running else None,
                frames_processed=self._frames,
                last_label=self._last_label,
            )

    def _teardown(self, run_id: Optional[int]) -> None:
        """Release the source and clear the display; run_id=None means any run."""
        with self._lock:
            if run_id is not None and not self._is_current(run_id):
                return
            was_running = self.running
            self._state = PipelineState.IDLE
            source, self._source = self._source, None
        if source is not None:
            source.close()
        with self._lock:
            if self.running:
                # a new run started while the old source was being released
                return
            self.display.clear()
        if was_running:
            logger.info(f"[pipeline] stopped source={self._source_id} frames={self._frames}")

    def _is_current(self, run_id: int) -> bool:
        return self.running and run_id == self._run_id

    # ---- loop ----
    def _run(self, run_id: int, source: FrameSource) -> None:
        try:
            while self._is_current(run_id):
                with self._iteration_lock:
                    if not self._is_current(run_id):
                        break
                    try:
                        frame = source.read()
                    except StreamEnded as e:
                        logger.info(f"[pipeline] stream ended: {e}")
                        self._teardown(run_id)
                        break
                    result = self.process_frame(frame)
                    if not self._publish(run_id, frame, result):
                        break
                # explicit yield point between iterations
                time.sleep(self.s.YIELD_INTERVAL)
        except Exception:
            logger.exception("[pipeline] frame loop failed; stopping")
            self._teardown(run_id)
            raise
        finally:
            # a superseded run still owns its source
            with self._lock:
                orphaned = source is not self._source
            if orphaned:
                source.close()

    def _publish(self, run_id: int, frame: np.ndarray, result: FrameResult) -> bool:
        with self._lock:
            if not self._is_current(run_id):
                return False
            self._frames += 1
            if result.label is not None:
                self._last_label = result.label
                self.display.publish_label(result.label)
            self.display.publish(frame)
        return True

    def process_frame(self, frame: np.ndarray) -> FrameResult:
        """
        Detect, classify and annotate every face of one frame.

        The frame is annotated in place. A frame with no detections is left
        untouched.
        """
        if self._detector is None or self._classifier is None:
            self.load_models()
        gray = to_grayscale(frame)
        try:
            regions: List[Region] = list(self._detector.detect(gray, self.s.SCALE_FACTOR, self.s.MIN_NEIGHBORS))
        except Exception:
            # keep the display live: a failed detection publishes the frame without overlays
            logger.exception("[pipeline] detection failed; treating frame as having no faces")
            regions = []
        logger.debug(f"[pipeline] frame={self._frames} regions={len(regions)}")

        detections: List[Detection] = []
        last_label: Optional[str] = None
        for region in regions:
            label = self.classify_region(gray, region)
            detections.append(Detection(region=region, label=label))
            if label is not None:
                last_label = label
        draw_detections(frame, detections)
        return FrameResult(index=self._frames, detections=detections, label=last_label)

    def classify_region(self, gray: np.ndarray, region: Region) -> Optional[str]:
        """Label for one region, or None when the region cannot be classified."""
        try:
            tensor = preprocess(gray, region, self.s.INPUT_SIZE, self.s.interpolation_flag)
            scores = self._infer(tensor)
            return select_label(scores, self.labels)
        except RegionError as e:
            logger.warning(f"[pipeline] region ({region.x},{region.y},{region.w},{region.h}) unlabeled: {e}")
            return None

    # ---- inference ----
    def _call_classifier(self, tensor: np.ndarray) -> np.ndarray:
        try:
            return self._classifier.infer(tensor)
        except RegionError:
            raise
        except Exception as e:
            raise InferenceError(f"classifier failed: {e}") from e

    def _infer(self, tensor: np.ndarray) -> np.ndarray:
        timeout = self.s.INFERENCE_TIMEOUT
        if timeout is None:
            return self._call_classifier(tensor)

        if self._pending is not None:
            if not self._pending.done():
                raise InferenceError("previous inference still running")
            self._pending = None
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="emorec-infer")
        fut = self._executor.submit(self._call_classifier, tensor)
        try:
            return fut.result(timeout=timeout)
        except FutureTimeout as e:
            self._pending = fut
            raise InferenceError(f"inference exceeded {timeout}s") from e


# -----------------------------------------------------------------------------
# Offline: annotate a video file with the same per-frame processing
# -----------------------------------------------------------------------------
def annotate_video(input_path: str,
                   output_path: str,
                   settings: Settings,
                   detector: Optional[RegionDetector] = None,
                   classifier: Optional[EmotionClassifier] = None) -> str:
    """Run the pipeline over a video file and write the annotated frames to output_path."""
    if not os.path.exists(input_path):
        raise FileNotFoundError(f"Video not found: {input_path}")

    with FrameSource().open(input_path) as src:
        fps = src.fps

    writer = VideoWriterDisplay(output_path, fps=fps)
    # the writer is finalized by clear(), which the loop calls when the file ends
    loop = PipelineLoop(settings, writer, detector=detector, classifier=classifier)
    try:
        loop.start(input_path, background=False)
    finally:
        loop.close()
    logger.debug(f"[pipeline] annotate_video wrote {writer.frames_written} frames -> {output_path}")
    return output_path


# -----------------------------------------------------------------------------
# Live camera overlay in an OpenCV window
# -----------------------------------------------------------------------------
def run_live_overlay(settings: Settings, camera_index: Optional[SourceId] = None) -> None:
    """
    Open the camera and show annotated frames until 'q' is pressed or the stream ends.

    Runs in the calling thread, which owns the OpenCV window.
    """
    window = WindowDisplay()
    loop = PipelineLoop(settings, window)
    window.on_quit = loop.stop
    cam_idx = settings.CAMERA_INDEX if camera_index is None else camera_index
    try:
        loop.start(cam_idx, background=False)
    finally:
        loop.close()
