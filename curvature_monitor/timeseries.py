from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

LOG_EVERY_N_SAMPLES = 50


@dataclass(frozen=True)
class Sample:
    t: float
    curvature: float
    weight: float


@dataclass(frozen=True)
class SeriesSnapshot:
    time: Tuple[float, ...]
    curvature: Tuple[float, ...]
    weight: Tuple[float, ...]

    def __len__(self) -> int:
        return len(self.time)

    def rows(self):
        return zip(self.time, self.curvature, self.weight)


class SampleBuffer:
    """
    Parallel (time, curvature, weight) series sharing one session clock.

    The three lists only change together, under one lock, so any reader sees
    equal lengths. ``max_samples=None`` keeps every sample; a cap drops the
    oldest sample from all three series at once.
    """

    def __init__(
        self,
        max_samples: Optional[int] = None,
        time_decimals: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_samples is not None and max_samples < 1:
            raise ValueError("max_samples must be positive or None")
        self.max_samples = max_samples
        self.time_decimals = int(time_decimals)
        self._clock = clock
        self._lock = threading.Lock()
        self._time: List[float] = []
        self._curvature: List[float] = []
        self._weight: List[float] = []
        self.start_time = clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._time)

    def append(self, curvature: float, weight: float, now: Optional[float] = None) -> Sample:
        now = self._clock() if now is None else float(now)
        with self._lock:
            t = round(now - self.start_time, self.time_decimals)
            sample = Sample(t=float(t), curvature=float(curvature), weight=float(weight))
            self._time.append(sample.t)
            self._curvature.append(sample.curvature)
            self._weight.append(sample.weight)
            if self.max_samples is not None and len(self._time) > self.max_samples:
                del self._time[0]
                del self._curvature[0]
                del self._weight[0]
            count = len(self._time)
        if count % LOG_EVERY_N_SAMPLES == 0:
            logger.debug(
                "Data points: %d, latest: %.2fmm, %.2fkg at %.1fs",
                count, sample.curvature, sample.weight, sample.t,
            )
        return sample

    def clear(self, now: Optional[float] = None) -> None:
        """Drop every sample and restart the session clock."""
        with self._lock:
            self._time.clear()
            self._curvature.clear()
            self._weight.clear()
            self.start_time = self._clock() if now is None else float(now)

    def snapshot(self) -> SeriesSnapshot:
        with self._lock:
            return SeriesSnapshot(tuple(self._time), tuple(self._curvature), tuple(self._weight))


ChartSink = Callable[[SeriesSnapshot], None]


class ThrottledPublisher:
    """
    Hands buffer snapshots to a chart sink without tying it to the frame rate.

    ``notify`` (called after each append) publishes at most once per
    ``min_interval`` seconds. While started, a timer thread also publishes every
    ``refresh_interval`` seconds as long as the buffer holds samples.
    """

    def __init__(
        self,
        buffer: SampleBuffer,
        sink: Optional[ChartSink] = None,
        min_interval: float = 0.100,
        refresh_interval: float = 0.500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.buffer = buffer
        self.sink = sink
        self.min_interval = float(min_interval)
        self.refresh_interval = float(refresh_interval)
        self._clock = clock
        self._last_publish: Optional[float] = None
        self._publish_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self.publish_count = 0

    def set_sink(self, sink: Optional[ChartSink]) -> None:
        self.sink = sink

    def notify(self, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else float(now)
        last = self._last_publish
        if last is not None and (now - last) < self.min_interval:
            return False
        self.publish(now)
        return True

    def publish(self, now: Optional[float] = None) -> None:
        with self._publish_lock:
            self._last_publish = self._clock() if now is None else float(now)
            sink = self.sink
            if sink is None:
                return
            snapshot = self.buffer.snapshot()
            try:
                sink(snapshot)
            except Exception:
                logger.exception("Chart sink failed")
            else:
                self.publish_count += 1

    def reset(self) -> None:
        self._last_publish = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="ChartPublishTimer", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.wait(self.refresh_interval):
            if len(self.buffer) > 0:
                self.publish()
