from .config import MonitorConfig, DetectionConfig, CameraConfig, ChartConfig, SerialConfig
from .calibration import Baseline, CalibrationError, Calibrator
from .color import ColorSample, rgb_to_hsv, tolerance_band
from .session import FrameResult, MonitorSession
from .acquisition import AcquisitionLoop, CameraSource
from .serial_reader import SerialWeightReader, parse_weight

__all__ = [
    "MonitorConfig",
    "DetectionConfig",
    "CameraConfig",
    "ChartConfig",
    "SerialConfig",
    "Baseline",
    "CalibrationError",
    "Calibrator",
    "ColorSample",
    "rgb_to_hsv",
    "tolerance_band",
    "FrameResult",
    "MonitorSession",
    "AcquisitionLoop",
    "CameraSource",
    "SerialWeightReader",
    "parse_weight",
]
