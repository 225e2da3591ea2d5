import threading

import numpy as np
import pytest

from emorec.config import Settings
from emorec.display import DisplaySurface
from emorec.models import Region

HAPPY_SCORES = [0.1, 0.0, 0.0, 0.8, 0.05, 0.03, 0.02]


class DeviceBank:
    """Fake set of capture devices that tracks open handles per index."""
    def __init__(self, usable=(0,), capacity=1, frame=None, n_frames=None):
        self.usable = set(usable)
        self.capacity = capacity
        self.frame = np.zeros((120, 160, 3), dtype=np.uint8) if frame is None else frame
        self.n_frames = n_frames
        self.open_handles = {}
        self.opened = []
        self.caps = []

    def __call__(self, idx):
        cap = DummyCap(self, idx)
        self.caps.append(cap)
        return cap

    def total_open(self):
        return sum(self.open_handles.values())


class DummyCap:
    def __init__(self, bank, idx):
        self.bank = bank
        self.idx = idx
        self.reads = 0
        self.releases = 0
        self._open = idx in bank.usable and bank.open_handles.get(idx, 0) < bank.capacity
        if self._open:
            bank.open_handles[idx] = bank.open_handles.get(idx, 0) + 1
            bank.opened.append(idx)

    def isOpened(self):
        return self._open

    def read(self):
        if not self._open:
            return False, None
        self.reads += 1
        if self.bank.n_frames is not None and self.reads > self.bank.n_frames:
            return False, None
        return True, self.bank.frame.copy()

    def get(self, code):
        return 30.0

    def release(self):
        self.releases += 1
        if self._open:
            self._open = False
            self.bank.open_handles[self.idx] -= 1


class StubDetector:
    def __init__(self, regions=None):
        self.regions = list(regions or [])
        self.calls = []

    def detect(self, frame, scale_factor, min_neighbors):
        self.calls.append((frame.shape, scale_factor, min_neighbors))
        return list(self.regions)


class StubClassifier:
    def __init__(self, scores=None, exc=None):
        self.scores = HAPPY_SCORES if scores is None else scores
        self.exc = exc
        self.calls = 0
        self.shapes = []

    def infer(self, tensor):
        self.calls += 1
        self.shapes.append(tuple(tensor.shape))
        if self.exc is not None:
            raise self.exc
        return np.asarray(self.scores, dtype=np.float32)


class RecordingDisplay(DisplaySurface):
    """Keeps a copy of every published frame plus label/clear history."""
    def __init__(self, on_publish=None):
        self.frames = []
        self.labels = []
        self.clears = 0
        self.current = None
        self.on_publish = on_publish
        self.published = threading.Event()

    def publish(self, frame):
        self.frames.append(frame.copy())
        self.current = frame
        self.published.set()
        if self.on_publish is not None:
            self.on_publish()

    def publish_label(self, label):
        self.labels.append(label)

    def clear(self):
        self.clears += 1
        self.current = None


@pytest.fixture
def settings():
    return Settings(YIELD_INTERVAL=0.0)


@pytest.fixture
def face_region():
    return Region(x=40, y=30, w=48, h=48)


@pytest.fixture
def bank(monkeypatch):
    import emorec.camera as camera
    b = DeviceBank(usable=(0, 1))
    monkeypatch.setattr(camera.cv2, "VideoCapture", b)
    return b
