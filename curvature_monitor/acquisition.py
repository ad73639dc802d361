from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Optional, Protocol, Union

import numpy as np

from .segmentation import WorkingBuffers
from .session import FrameResult, MonitorSession

try:
    import cv2  # type: ignore
except Exception as exc:  # pragma: no cover
    cv2 = None
    _cv2_import_error = exc
else:
    _cv2_import_error = None

logger = logging.getLogger(__name__)

RenderSink = Callable[[FrameResult], None]


def _check_cv2_available():
    if cv2 is None:
        raise RuntimeError(
            "OpenCV (cv2) is required for camera capture" +
            (f": {_cv2_import_error}" if _cv2_import_error else "")
        )


class FrameSource(Protocol):
    def open(self) -> None: ...

    def read(self) -> Optional[np.ndarray]: ...

    def release(self) -> None: ...


class CameraSource:
    """``cv2.VideoCapture`` frame source (camera index or video file path)."""

    def __init__(self, source: Union[int, str] = 0, frame_width: int = 640, frame_height: int = 480):
        self.source = source
        self.frame_width = int(frame_width)
        self.frame_height = int(frame_height)
        self._cap = None

    @property
    def is_open(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def open(self) -> None:
        if self.is_open:
            return
        _check_cv2_available()
        cap = cv2.VideoCapture(self.source, cv2.CAP_ANY)
        if isinstance(self.source, int):
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.frame_width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.frame_height)
        if not cap.isOpened():
            cap.release()
            raise RuntimeError(f"Could not open video source {self.source!r}")
        self._cap = cap

    def read(self) -> Optional[np.ndarray]:
        if self._cap is None:
            return None
        ok, frame = self._cap.read()
        if not ok or frame is None:
            return None
        return frame

    def release(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None


class AcquisitionLoop:
    """
    Drives ``MonitorSession.process_frame`` once per frame on a background thread.

    The loop is paced to ``target_fps``. A failing iteration is logged and the
    loop moves on to the next frame. ``start``/``stop`` are idempotent; stopping
    cancels the chart publish timer, releases the working buffers and the frame
    source.
    """

    def __init__(
        self,
        session: MonitorSession,
        source: FrameSource,
        render_sink: Optional[RenderSink] = None,
        target_fps: float = 60.0,
    ):
        self.session = session
        self.source = source
        self.render_sink = render_sink
        self.frame_period = 1.0 / max(1.0, float(target_fps))
        self.buffers: Optional[WorkingBuffers] = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._result_lock = threading.Lock()
        self._last_result: Optional[FrameResult] = None
        self.frames_processed = 0
        self.errors = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self.source.open()
        self.buffers = WorkingBuffers()
        self._stop.clear()
        self.session.set_source_live(True)
        self.session.publisher.start()
        self._thread = threading.Thread(target=self._run, name="AcquisitionLoop", daemon=True)
        self._thread.start()
        logger.info("Processing and chart updates started")

    def stop(self) -> None:
        was_running = self._thread is not None
        self._stop.set()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None
        self.session.publisher.stop()
        if self.buffers is not None:
            self.buffers.release()
            self.buffers = None
        self.source.release()
        if was_running:
            self.session.set_source_live(False)
            logger.info("Processing and chart updates stopped")

    def get_result(self) -> Optional[FrameResult]:
        with self._result_lock:
            return self._last_result

    def step(self) -> Optional[FrameResult]:
        """One iteration: acquire, process, hand to the render sink."""
        frame = self.source.read()
        if frame is None:
            return None
        if self.buffers is None:
            self.buffers = WorkingBuffers()
        result = self.session.process_frame(frame, buffers=self.buffers)
        with self._result_lock:
            self._last_result = result
        self.frames_processed += 1
        if self.render_sink is not None:
            self.render_sink(result)
        return result

    def _run(self) -> None:
        try:
            while not self._stop.is_set():
                started = time.perf_counter()
                try:
                    result = self.step()
                except Exception:
                    self.errors += 1
                    logger.exception("Error processing frame")
                    if self.buffers is not None:
                        self.buffers.release()
                    result = None
                if result is None and not self._stop.is_set():
                    time.sleep(0.01)
                    continue
                remaining = self.frame_period - (time.perf_counter() - started)
                if remaining > 0:
                    self._stop.wait(remaining)
        finally:
            if self.buffers is not None:
                self.buffers.release()
