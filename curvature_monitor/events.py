from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

COLOR_SELECTED = "color_selected"
TOLERANCE_CHANGED = "tolerance_changed"
DETECTION_CHANGED = "detection_changed"
CURVATURE_UPDATED = "curvature_updated"
CALIBRATION_CHANGED = "calibration_changed"
DATA_CLEARED = "data_cleared"
WEIGHT_UPDATED = "weight_updated"
SERIAL_STATUS = "serial_status"
SERIAL_ERROR = "serial_error"
CAMERA_STATUS = "camera_status"

Listener = Callable[..., None]


class EventEmitter:
    """
    Minimal observer hub. Listeners are called synchronously on the emitting
    thread; a listener that raises is logged and does not stop the others.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}
        self._lock = threading.Lock()

    def on(self, event: str, callback: Listener) -> None:
        with self._lock:
            listeners = self._listeners.setdefault(event, [])
            if callback in listeners:
                return
            listeners.append(callback)

    def off(self, event: str, callback: Listener) -> None:
        with self._lock:
            try:
                self._listeners.get(event, []).remove(callback)
            except ValueError:
                pass

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        with self._lock:
            listeners = tuple(self._listeners.get(event, ()))
        for cb in listeners:
            try:
                cb(*args, **kwargs)
            except Exception:
                logger.exception("Listener for %r failed", event)
