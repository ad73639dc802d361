from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import numpy as np

from .color import ColorSample, tolerance_band
from .contours import Region, detect_region

if TYPE_CHECKING:  # pragma: no cover
    from .config import DetectionConfig

logger = logging.getLogger(__name__)


class CalibrationState(enum.Enum):
    UNCALIBRATED = "uncalibrated"
    CALIBRATED = "calibrated"


class CalibrationError(RuntimeError):
    """
    Raised when a calibration attempt cannot complete. ``reason`` is one of
    ``"no_source"``, ``"no_color"`` or ``"not_detected"``.
    """

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason


@dataclass(frozen=True)
class Baseline:
    """
    Reference row (frame pixels) of the un-deflected object. Image orientation:
    y grows downward, so the baseline sits slightly below the object's top edge.
    """

    y: float = 0.0
    calibrated: bool = False

    @classmethod
    def cleared(cls) -> "Baseline":
        return cls()

    @classmethod
    def from_bbox(cls, bbox_y: float, bbox_h: float, inset_fraction: float = 0.1) -> "Baseline":
        return cls(
            y=float(bbox_y) + float(bbox_h) * float(inset_fraction),
            calibrated=True,
        )


@dataclass(frozen=True)
class CalibrationResult:
    baseline: Baseline
    region: Region


class Calibrator:
    """
    Two-state machine holding the measurement baseline.

    ``calibrate`` moves UNCALIBRATED -> CALIBRATED (or re-anchors an existing
    baseline); ``reset`` always returns to UNCALIBRATED. Neither touches the
    sample history: the owning session clears it in the same locked action.
    """

    def __init__(self, cfg: "DetectionConfig"):
        self.cfg = cfg
        self._baseline = Baseline.cleared()

    @property
    def baseline(self) -> Baseline:
        return self._baseline

    @property
    def state(self) -> CalibrationState:
        return CalibrationState.CALIBRATED if self._baseline.calibrated else CalibrationState.UNCALIBRATED

    @property
    def is_calibrated(self) -> bool:
        return self._baseline.calibrated

    def calibrate(
        self,
        frame: Optional[np.ndarray],
        color: Optional[ColorSample],
        hue_tolerance: int,
    ) -> CalibrationResult:
        if frame is None:
            raise CalibrationError("no_source", "Start the camera before calibrating.")
        if color is None:
            raise CalibrationError("no_color", "Select the object colour before calibrating.")

        band = tolerance_band(color, hue_tolerance, self.cfg.sv_tolerance_cap)
        region, _mask = detect_region(
            frame, band,
            min_area=self.cfg.min_area,
            kernel_size=self.cfg.morph_kernel_size,
        )
        if region is None:
            raise CalibrationError(
                "not_detected",
                "Object not detected with the selected colour. "
                "Adjust the colour tolerance or pick another colour.",
            )
        baseline = Baseline.from_bbox(region.bbox.y, region.bbox.h, self.cfg.baseline_inset_fraction)
        self._baseline = baseline
        logger.info(
            "Calibrated baseline at y=%.1f (bbox y=%d h=%d, area=%.0f)",
            baseline.y, region.bbox.y, region.bbox.h, region.area,
        )
        return CalibrationResult(baseline=baseline, region=region)

    def reset(self) -> None:
        if self._baseline.calibrated:
            logger.info("Calibration reset")
        self._baseline = Baseline.cleared()
