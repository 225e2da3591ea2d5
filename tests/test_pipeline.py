
import threading, time

import numpy as np
import pytest

import emorec.camera as camera
import emorec.pipeline as pipe
from emorec.config import Settings
from emorec.errors import DeviceUnavailable, ModelLoadError, NoSourceSelected
from emorec.models import Region
from emorec.pipeline import PipelineLoop, PipelineState
from emorec.visual import BOX_COLOR
from conftest import DeviceBank, RecordingDisplay, StubClassifier, StubDetector


def _face_frame():
    frame = np.zeros((120, 160, 3), dtype=np.uint8)
    frame[30:78, 40:88] = 180
    return frame


def _wait(cond, timeout=2.0):
    end = time.time() + timeout
    while time.time() < end:
        if cond():
            return True
        time.sleep(0.005)
    return False


def test_end_to_end_single_face_happy(monkeypatch, settings, face_region):
    b = DeviceBank(usable=(0,), frame=_face_frame(), n_frames=1)
    monkeypatch.setattr(camera.cv2, "VideoCapture", b)
    display = RecordingDisplay()
    loop = PipelineLoop(settings, display, StubDetector([face_region]), StubClassifier())

    loop.start(0, background=False)

    assert len(display.frames) == 1
    out = display.frames[0]
    assert tuple(out[30, 40]) == BOX_COLOR
    assert not np.array_equal(out, _face_frame())
    assert display.labels == ["Happy"]
    assert loop.status().last_label == "Happy"
    # stream end is a graceful stop
    assert loop.state is PipelineState.IDLE
    assert b.total_open() == 0
    assert display.clears == 1


def test_process_frame_result(settings, face_region):
    clf = StubClassifier()
    loop = PipelineLoop(settings, RecordingDisplay(), StubDetector([face_region]), clf)
    result = loop.process_frame(_face_frame())
    assert len(result.detections) == 1
    assert result.detections[0].region == face_region
    assert result.detections[0].label == "Happy"
    assert result.label == "Happy"
    assert clf.shapes == [(1, 48, 48, 1)]


def test_zero_regions_publishes_untouched_frame(monkeypatch, settings):
    b = DeviceBank(usable=(0,), frame=_face_frame(), n_frames=2)
    monkeypatch.setattr(camera.cv2, "VideoCapture", b)
    display = RecordingDisplay()
    clf = StubClassifier()
    loop = PipelineLoop(settings, display, StubDetector([]), clf)

    loop.start(0, background=False)

    assert len(display.frames) == 2
    assert all(np.array_equal(f, _face_frame()) for f in display.frames)
    assert display.labels == []
    assert clf.calls == 0


def test_bad_region_degrades_to_unlabeled(settings, face_region):
    outside = Region(x=150, y=100, w=40, h=40)
    clf = StubClassifier()
    loop = PipelineLoop(settings, RecordingDisplay(), StubDetector([outside, face_region]), clf)
    frame = _face_frame()
    result = loop.process_frame(frame)
    assert [d.label for d in result.detections] == [None, "Happy"]
    assert clf.calls == 1
    # the unlabeled region still gets its rectangle
    assert tuple(frame[100, 150]) == BOX_COLOR


@pytest.mark.parametrize("clf", [
    StubClassifier(exc=RuntimeError("gpu lost")),
    StubClassifier(scores=[]),
    StubClassifier(scores=[0.5, 0.5]),
])
def test_inference_failures_degrade(settings, face_region, clf):
    loop = PipelineLoop(settings, RecordingDisplay(), StubDetector([face_region]), clf)
    result = loop.process_frame(_face_frame())
    assert result.detections[0].label is None
    assert result.label is None


def test_detector_knobs_come_from_settings(face_region):
    s = Settings(SCALE_FACTOR=1.5, MIN_NEIGHBORS=7, YIELD_INTERVAL=0.0)
    det = StubDetector([face_region])
    PipelineLoop(s, RecordingDisplay(), det, StubClassifier()).process_frame(_face_frame())
    shape, sf, mn = det.calls[0]
    assert shape == (120, 160) and sf == 1.5 and mn == 7


@pytest.mark.parametrize("source_id", [None, -1, "", True])
def test_start_without_source(settings, source_id):
    loop = PipelineLoop(settings, RecordingDisplay(), StubDetector(), StubClassifier())
    with pytest.raises(NoSourceSelected):
        loop.start(source_id)
    assert loop.state is PipelineState.IDLE


def test_start_device_unavailable_stays_idle(bank, settings):
    loop = PipelineLoop(settings, RecordingDisplay(), StubDetector(), StubClassifier())
    with pytest.raises(DeviceUnavailable):
        loop.start(4)
    assert loop.state is PipelineState.IDLE
    assert bank.total_open() == 0


def test_start_model_load_error_stays_idle(bank, tmp_path):
    s = Settings(EMOTION_MODEL_PATH=str(tmp_path / "missing.onnx"), YIELD_INTERVAL=0.0)
    loop = PipelineLoop(s, RecordingDisplay(), detector=StubDetector())
    with pytest.raises(ModelLoadError):
        loop.start(0)
    assert loop.state is PipelineState.IDLE
    assert bank.opened == []


def test_models_loaded_once_across_restarts(monkeypatch, bank, settings):
    calls = {"det": 0, "clf": 0}
    def fake_det(s):
        calls["det"] += 1
        return StubDetector()
    def fake_clf(s):
        calls["clf"] += 1
        return StubClassifier()
    monkeypatch.setattr(pipe, "load_detector", fake_det)
    monkeypatch.setattr(pipe, "load_classifier", fake_clf)

    loop = PipelineLoop(settings, RecordingDisplay())
    for _ in range(3):
        loop.start(0)
        loop.stop()
    assert calls == {"det": 1, "clf": 1}


def test_stop_mid_run_releases_and_clears(bank, settings, face_region):
    display = RecordingDisplay()
    loop = PipelineLoop(settings, display, StubDetector([face_region]), StubClassifier())
    loop.start(0)
    assert display.published.wait(2)

    loop.stop()

    assert loop.state is PipelineState.IDLE
    assert bank.total_open() == 0
    assert display.current is None
    n = len(display.frames)
    time.sleep(0.05)
    assert len(display.frames) == n          # nothing published after stop
    loop.stop()                               # repeat is harmless
    assert bank.caps[0].releases == 1


def test_stop_from_inside_iteration(bank, settings, face_region):
    holder = {}
    display = RecordingDisplay(on_publish=lambda: holder["loop"].stop())
    loop = PipelineLoop(settings, display, StubDetector([face_region]), StubClassifier())
    holder["loop"] = loop

    loop.start(0, background=False)

    assert len(display.frames) == 1
    assert display.current is None
    assert bank.total_open() == 0


def test_repeated_start_stop_does_not_leak_handles(bank, settings):
    # capacity=1: a leaked handle would make the next open fail
    loop = PipelineLoop(settings, RecordingDisplay(), StubDetector(), StubClassifier())
    for _ in range(20):
        loop.start(0)
        assert loop.running
        loop.stop()
    assert bank.total_open() == 0
    assert len(bank.opened) == 20


def test_reselect_source_releases_previous(bank, settings):
    loop = PipelineLoop(settings, RecordingDisplay(), StubDetector(), StubClassifier())
    loop.start(0)
    loop.start(1)
    assert loop.status().source_id == 1
    assert bank.open_handles == {0: 0, 1: 1}
    loop.stop()
    assert bank.total_open() == 0


def test_status_counts_frames(bank, settings, face_region):
    loop = PipelineLoop(settings, RecordingDisplay(), StubDetector([face_region]), StubClassifier())
    loop.start(0)
    assert _wait(lambda: loop.status().frames_processed >= 3)
    st = loop.status()
    assert st.running and st.source_id == 0 and st.last_label == "Happy"
    loop.stop()
    st = loop.status()
    assert not st.running and st.source_id is None


class BlockingClassifier(StubClassifier):
    def __init__(self):
        super().__init__()
        self.gate = threading.Event()
    def infer(self, tensor):
        self.gate.wait(2)
        return super().infer(tensor)


def test_inference_timeout_degrades_region(face_region):
    s = Settings(INFERENCE_TIMEOUT=0.2, YIELD_INTERVAL=0.0)
    clf = BlockingClassifier()
    loop = PipelineLoop(s, RecordingDisplay(), StubDetector([face_region]), clf)
    gray = np.zeros((120, 160), dtype=np.uint8)

    assert loop.classify_region(gray, face_region) is None
    # stalled call still pending -> later regions skip instead of queueing
    assert loop.classify_region(gray, face_region) is None
    assert clf.calls == 0

    clf.gate.set()
    loop._pending.result(timeout=2)
    assert loop.classify_region(gray, face_region) == "Happy"
    loop.close()


def test_annotate_video(tmp_path, face_region):
    import cv2
    h, w = 120, 160
    in_path = str(tmp_path / "in.avi")
    out_path = str(tmp_path / "out.avi")
    writer = cv2.VideoWriter(in_path, cv2.VideoWriter_fourcc(*"MJPG"), 5, (w, h))
    for _ in range(6):
        writer.write(_face_frame())
    writer.release()

    res = pipe.annotate_video(in_path, out_path, Settings(YIELD_INTERVAL=0.0),
                              detector=StubDetector([face_region]), classifier=StubClassifier())
    assert res == out_path
    cap = cv2.VideoCapture(out_path)
    assert cap.isOpened()
    frames = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
    cap.release()
    assert frames >= 5


def test_annotate_video_missing_input(tmp_path, settings):
    with pytest.raises(FileNotFoundError):
        pipe.annotate_video(str(tmp_path / "nope.avi"), str(tmp_path / "o.avi"), settings)


class BrokenDetector:
    def detect(self, frame, scale_factor, min_neighbors):
        raise RuntimeError("cascade blew up")


def test_detector_failure_publishes_plain_frame(monkeypatch, settings):
    b = DeviceBank(usable=(0,), frame=_face_frame(), n_frames=1)
    monkeypatch.setattr(camera.cv2, "VideoCapture", b)
    display = RecordingDisplay()
    loop = PipelineLoop(settings, display, BrokenDetector(), StubClassifier())
    loop.start(0, background=False)
    assert len(display.frames) == 1
    assert np.array_equal(display.frames[0], _face_frame())


class _SlowOpenSource(camera.FrameSource):
    def open(self, source_id):
        time.sleep(0.2)
        return super().open(source_id)


def test_concurrent_start_releases_every_handle(bank, settings):
    loop = PipelineLoop(settings, RecordingDisplay(), StubDetector(), StubClassifier(),
                        source_factory=_SlowOpenSource)
    errors = []

    def start(idx):
        try:
            loop.start(idx)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=start, args=(i,)) for i in (0, 1)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)

    assert errors == []
    assert loop.running
    assert bank.total_open() == 1
    loop.stop()
    assert loop.state is PipelineState.IDLE
    assert bank.total_open() == 0


def test_live_overlay_quits_on_q(monkeypatch, face_region):
    import emorec.display as display_mod
    shown, destroyed = [], []
    monkeypatch.setattr(display_mod.cv2, "imshow", lambda title, frame: shown.append(title))
    monkeypatch.setattr(display_mod.cv2, "waitKey", lambda delay: ord("q"))
    monkeypatch.setattr(display_mod.cv2, "destroyWindow", lambda title: destroyed.append(title))
    monkeypatch.setattr(pipe, "load_detector", lambda s: StubDetector([face_region]))
    monkeypatch.setattr(pipe, "load_classifier", lambda s: StubClassifier())
    b = DeviceBank(usable=(0,), frame=_face_frame())
    monkeypatch.setattr(camera.cv2, "VideoCapture", b)

    pipe.run_live_overlay(Settings(YIELD_INTERVAL=0.0), 0)

    title = pipe.WindowDisplay().title
    assert shown == [title]
    assert title in destroyed
    assert b.caps[0].reads == 1
    assert b.total_open() == 0
