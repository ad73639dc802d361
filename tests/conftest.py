import threading

import matplotlib

matplotlib.use("Agg")

import cv2  # noqa: E402
import numpy as np  # noqa: E402
import pytest  # noqa: E402

from curvature_monitor.config import MonitorConfig  # noqa: E402

GREEN_BGR = (0, 255, 0)
RED_BGR = (0, 0, 255)


def blank_frame(width=320, height=240):
    return np.zeros((height, width, 3), dtype=np.uint8)


def disc_frame(center=(160, 120), radius=40, color=GREEN_BGR, width=320, height=240):
    frame = blank_frame(width, height)
    cv2.circle(frame, center, radius, color, thickness=-1)
    return frame


def rect_frame(x, y, w, h, color=RED_BGR, width=320, height=240):
    frame = blank_frame(width, height)
    frame[y:y + h, x:x + w] = color
    return frame


class FakeSource:
    """In-memory frame source; cycles through ``frames`` forever."""

    def __init__(self, frames, fail_on=()):
        self.frames = list(frames)
        self.fail_on = set(fail_on)
        self.opened = False
        self.released = False
        self.reads = 0
        self._lock = threading.Lock()

    def open(self):
        self.opened = True
        self.released = False

    def read(self):
        with self._lock:
            index = self.reads
            self.reads += 1
        if index in self.fail_on:
            raise RuntimeError("simulated read failure")
        if not self.frames:
            return None
        return self.frames[index % len(self.frames)].copy()

    def release(self):
        self.released = True


class FakeClock:
    def __init__(self, start=0.0):
        self.now = float(start)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
        return self.now


class EventRecorder:
    def __init__(self, emitter, *names):
        self.calls = []
        for name in names:
            emitter.on(name, self._make(name))

    def _make(self, name):
        def _cb(*args):
            self.calls.append((name, args))
        return _cb

    def of(self, name):
        return [args for event, args in self.calls if event == name]


def wait_until(predicate, timeout=3.0, interval=0.01):
    event = threading.Event()
    waited = 0.0
    while waited < timeout:
        if predicate():
            return True
        event.wait(interval)
        waited += interval
    return predicate()


@pytest.fixture
def cfg():
    return MonitorConfig()


@pytest.fixture
def clock():
    return FakeClock()
