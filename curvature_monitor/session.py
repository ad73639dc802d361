from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import numpy as np

from . import events
from .calibration import Baseline, CalibrationError, CalibrationResult, CalibrationState, Calibrator
from .color import ColorSample, ToleranceBand, tolerance_band
from .config import MonitorConfig
from .contours import BoundingBox, Region, find_regions, select_dominant
from .curvature import estimate_curvature
from .events import EventEmitter
from .export import export_csv
from .segmentation import WorkingBuffers, segment
from .serial_reader import WeightRegister
from .timeseries import ChartSink, Sample, SampleBuffer, ThrottledPublisher

logger = logging.getLogger(__name__)


@dataclass
class FrameResult:
    """Everything a render sink needs to draw one processed frame."""

    timestamp: float
    frame: np.ndarray
    mask: Optional[np.ndarray]
    region: Optional[Region]
    curvature: float
    baseline: Baseline
    color: Optional[ColorSample]
    hue_tolerance: int
    weight: float
    sample: Optional[Sample] = None

    @property
    def detected(self) -> bool:
        return self.region is not None

    @property
    def bbox(self) -> Optional[BoundingBox]:
        return None if self.region is None else self.region.bbox

    @property
    def baseline_y(self) -> Optional[float]:
        return self.baseline.y if self.baseline.calibrated else None


def display_to_frame(
    x: float,
    y: float,
    display_size: Optional[Tuple[int, int]],
    frame_size: Tuple[int, int],
) -> Tuple[int, int]:
    """
    Map a click on a (possibly resized) display of the frame back to frame pixels.
    Sizes are ``(width, height)``; the result is clamped inside the frame.
    """
    frame_w, frame_h = frame_size
    if display_size is None:
        disp_w, disp_h = frame_w, frame_h
    else:
        disp_w, disp_h = display_size
    if disp_w <= 0 or disp_h <= 0:
        raise ValueError(f"Invalid display size {display_size}")
    fx = int(math.floor(x * (frame_w / disp_w)))
    fy = int(math.floor(y * (frame_h / disp_h)))
    fx = max(0, min(fx, frame_w - 1))
    fy = max(0, min(fy, frame_h - 1))
    return fx, fy


class MonitorSession:
    """
    Owns the mutable measurement state: selected colour, tolerance, baseline,
    sample history and the weight register.

    User actions (``calibrate``, ``reset_calibration``, ``clear_data``) and
    ``process_frame`` share one lock, so the acquisition loop never observes a
    half-applied calibration.
    """

    def __init__(
        self,
        cfg: Optional[MonitorConfig] = None,
        emitter: Optional[EventEmitter] = None,
        weight: Optional[WeightRegister] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cfg = cfg or MonitorConfig()
        self.events = emitter or EventEmitter()
        self.weight = weight or WeightRegister()
        self._clock = clock
        self._lock = threading.RLock()

        det = self.cfg.detection
        self.calibrator = Calibrator(det)
        self.buffer = SampleBuffer(
            max_samples=self.cfg.chart.max_samples,
            time_decimals=self.cfg.chart.time_decimals,
            clock=clock,
        )
        self.publisher = ThrottledPublisher(
            self.buffer,
            min_interval=self.cfg.chart.publish_interval_ms / 1000.0,
            refresh_interval=self.cfg.chart.refresh_interval_ms / 1000.0,
            clock=clock,
        )

        self._color: Optional[ColorSample] = None
        self._hue_tolerance = self._clamp_tolerance(det.hue_tolerance)
        self._latest_frame: Optional[np.ndarray] = None
        self._source_live = False
        self._detected: Optional[bool] = None

    # ------------------------------------------------------------------ state

    @property
    def color(self) -> Optional[ColorSample]:
        return self._color

    @property
    def hue_tolerance(self) -> int:
        return self._hue_tolerance

    @property
    def baseline(self) -> Baseline:
        return self.calibrator.baseline

    @property
    def calibration_state(self) -> CalibrationState:
        return self.calibrator.state

    @property
    def source_live(self) -> bool:
        return self._source_live

    @property
    def latest_frame(self) -> Optional[np.ndarray]:
        return self._latest_frame

    def tolerance_band(self) -> Optional[ToleranceBand]:
        if self._color is None:
            return None
        return tolerance_band(self._color, self._hue_tolerance, self.cfg.detection.sv_tolerance_cap)

    def set_source_live(self, live: bool) -> None:
        """
        A source going live starts a new recording: history and session clock
        are cleared together so sample times never run backwards.
        """
        with self._lock:
            self._source_live = bool(live)
            if live:
                self._clear_locked()
            else:
                self._latest_frame = None
                self._detected = None
        self.events.emit(events.CAMERA_STATUS, bool(live))
        if live:
            self.events.emit(events.DATA_CLEARED)

    def attach_chart(self, sink: Optional[ChartSink]) -> None:
        self.publisher.set_sink(sink)

    # ------------------------------------------------------------ user actions

    def select_color(self, r: int, g: int, b: int) -> ColorSample:
        sample = ColorSample.from_rgb(r, g, b)
        with self._lock:
            self._color = sample
        logger.info("Selected colour %s", sample.describe())
        self.events.emit(events.COLOR_SELECTED, sample)
        return sample

    def select_color_at(
        self,
        frame: np.ndarray,
        x: float,
        y: float,
        display_size: Optional[Tuple[int, int]] = None,
    ) -> ColorSample:
        """Pick the colour under a click; ``frame`` is BGR, ``display_size`` is (w, h)."""
        height, width = frame.shape[:2]
        fx, fy = display_to_frame(x, y, display_size, (width, height))
        pixel = frame[fy, fx]
        b, g, r = int(pixel[0]), int(pixel[1]), int(pixel[2])
        return self.select_color(r, g, b)

    def _clamp_tolerance(self, value: int) -> int:
        det = self.cfg.detection
        return max(det.hue_tolerance_min, min(det.hue_tolerance_max, int(value)))

    def set_tolerance(self, value: int) -> int:
        with self._lock:
            self._hue_tolerance = self._clamp_tolerance(value)
            tol = self._hue_tolerance
        self.events.emit(events.TOLERANCE_CHANGED, tol)
        return tol

    def calibrate(self) -> CalibrationResult:
        """
        Anchor the baseline on the object in the latest frame and clear the
        sample history. Raises ``CalibrationError`` with state unchanged.
        """
        with self._lock:
            frame = self._latest_frame if self._source_live else None
            try:
                result = self.calibrator.calibrate(frame, self._color, self._hue_tolerance)
            except CalibrationError as exc:
                logger.warning("Calibration failed (%s): %s", exc.reason, exc)
                raise
            self._clear_locked()
        self.events.emit(events.CALIBRATION_CHANGED, result.baseline)
        self.events.emit(events.DATA_CLEARED)
        return result

    def reset_calibration(self) -> None:
        with self._lock:
            self.calibrator.reset()
            self._clear_locked()
        self.events.emit(events.CALIBRATION_CHANGED, self.calibrator.baseline)
        self.events.emit(events.DATA_CLEARED)

    def clear_data(self) -> None:
        with self._lock:
            self._clear_locked()
        self.events.emit(events.DATA_CLEARED)

    def _clear_locked(self) -> None:
        self.buffer.clear()
        self.publisher.reset()
        self.publisher.publish()
        logger.info("Chart data cleared")

    def export_csv(self, path: Optional[Path | str] = None) -> Path:
        snapshot = self.buffer.snapshot()
        written = export_csv(
            snapshot, path,
            directory=self.cfg.export_dir,
            time_decimals=self.cfg.chart.time_decimals,
        )
        logger.info("Exported %d samples to %s", len(snapshot), written)
        return written

    # -------------------------------------------------------------- per frame

    def process_frame(
        self,
        frame: np.ndarray,
        buffers: Optional[WorkingBuffers] = None,
        now: Optional[float] = None,
    ) -> FrameResult:
        """
        Run one pipeline iteration: segment, select, measure, record.

        Without a selected colour nothing is segmented or recorded and the
        result reports no target.
        """
        det = self.cfg.detection
        with self._lock:
            # Read under the lock so a concurrent clear cannot yield a negative time.
            now = self._clock() if now is None else float(now)
            self._latest_frame = frame
            color = self._color
            tol = self._hue_tolerance
            baseline = self.calibrator.baseline
            weight = self.weight.value
            if color is None:
                return FrameResult(
                    timestamp=now, frame=frame, mask=None, region=None, curvature=0.0,
                    baseline=baseline, color=None, hue_tolerance=tol, weight=weight,
                )

            band = tolerance_band(color, tol, det.sv_tolerance_cap)
            mask = segment(frame, band, kernel_size=det.morph_kernel_size, buffers=buffers)
            region = select_dominant(find_regions(mask), det.min_area)
            curvature = estimate_curvature(
                region, baseline,
                mm_per_px=det.mm_per_px,
                band_fraction=det.top_band_fraction,
                min_points=det.min_edge_points,
            )
            sample = None
            if baseline.calibrated or self.cfg.record_uncalibrated:
                sample = self.buffer.append(curvature, weight, now=now)

            detected = region is not None
            detection_changed = detected != self._detected
            self._detected = detected

        if detection_changed:
            self.events.emit(events.DETECTION_CHANGED, detected)
        self.events.emit(events.CURVATURE_UPDATED, curvature)
        if sample is not None:
            self.publisher.notify(now)

        return FrameResult(
            timestamp=now,
            frame=frame,
            mask=mask.copy() if buffers is not None else mask,
            region=region,
            curvature=curvature,
            baseline=baseline,
            color=color,
            hue_tolerance=tol,
            weight=weight,
            sample=sample,
        )
