from __future__ import annotations

import threading
from typing import Optional, Tuple

import numpy as np

from .session import FrameResult

try:
    import cv2  # type: ignore
except Exception:  # pragma: no cover
    cv2 = None

BGR = Tuple[int, int, int]

BLUE: BGR = (246, 130, 59)
GREEN: BGR = (129, 185, 16)
ORANGE: BGR = (11, 158, 245)
RED: BGR = (68, 68, 239)
WHITE: BGR = (255, 255, 255)

MASK_ALPHA = 100 / 255.0
REGION_ALPHA = 0.3


def curvature_color(value: float) -> BGR:
    if value > 10:
        return RED
    if value > 5:
        return ORANGE
    return GREEN


def weight_color(value: float) -> BGR:
    if value > 1000:
        return RED
    if value > 500:
        return ORANGE
    return GREEN


def _dashed_line(img, p0, p1, color, thickness=2, dash=10, gap=5):
    p0 = np.asarray(p0, dtype=np.float32)
    p1 = np.asarray(p1, dtype=np.float32)
    length = float(np.linalg.norm(p1 - p0))
    if length < 1e-6:
        return
    u = (p1 - p0) / length
    pos = 0.0
    while pos < length:
        end = min(pos + dash, length)
        a = p0 + u * pos
        b = p0 + u * end
        cv2.line(img, (int(a[0]), int(a[1])), (int(b[0]), int(b[1])), color, thickness)
        pos = end + gap


def _dashed_rect(img, x, y, w, h, color, thickness=2):
    corners = [(x, y), (x + w, y), (x + w, y + h), (x, y + h)]
    for i in range(4):
        _dashed_line(img, corners[i], corners[(i + 1) % 4], color, thickness, dash=5, gap=5)


def _blend(img, where, color, alpha):
    if not np.any(where):
        return
    tint = np.array(color, dtype=np.float32)
    img[where] = (img[where].astype(np.float32) * (1.0 - alpha) + tint * alpha).astype(np.uint8)


def draw_overlay(result: FrameResult, show_mask: bool = True) -> np.ndarray:
    """Annotated copy of ``result.frame``: mask tint, region, baseline and info panel."""
    img = result.frame.copy()

    if result.color is None:
        cv2.putText(img, "Select the object colour first", (10, 30),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.7, WHITE, 2, cv2.LINE_AA)
        return img

    if show_mask and result.region is not None and result.mask is not None:
        _blend(img, result.mask > 0, BLUE, MASK_ALPHA)

    if result.region is not None:
        contour = result.region.as_contour()
        filled = np.zeros(img.shape[:2], dtype=np.uint8)
        cv2.drawContours(filled, [contour], -1, 255, thickness=-1)
        _blend(img, filled > 0, BLUE, REGION_ALPHA)
        cv2.drawContours(img, [contour], -1, BLUE, 3)
        bb = result.region.bbox
        _dashed_rect(img, bb.x, bb.y, bb.w, bb.h, GREEN)

    if result.baseline_y is not None:
        y = int(round(result.baseline_y))
        _dashed_line(img, (0, y), (img.shape[1], y), GREEN, thickness=3)
        cv2.putText(img, "Baseline", (10, max(12, y - 10)),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.5, GREEN, 2, cv2.LINE_AA)

    panel = img[10:90, 10:330]
    _blend(panel, np.ones(panel.shape[:2], dtype=bool), (0, 0, 0), 0.7)
    cv2.putText(img, f"Curvature: {result.curvature:.2f} mm", (20, 35),
                cv2.FONT_HERSHEY_SIMPLEX, 0.6, curvature_color(result.curvature), 2, cv2.LINE_AA)
    c = result.color
    cv2.putText(img, f"Target: RGB({c.r}, {c.g}, {c.b})", (20, 58),
                cv2.FONT_HERSHEY_SIMPLEX, 0.45, WHITE, 1, cv2.LINE_AA)
    cv2.putText(img, f"Tolerance: {result.hue_tolerance}  Weight: {result.weight:.2f} kg", (20, 78),
                cv2.FONT_HERSHEY_SIMPLEX, 0.45, weight_color(result.weight), 1, cv2.LINE_AA)
    return img


class OverlayWindow:
    """
    Render sink for the acquisition loop. Results arrive on the loop thread and
    are drawn by ``show`` on the thread that owns the OpenCV window.
    """

    def __init__(self, window_name: str = "Curvature Monitor", show_mask: bool = True):
        self.window_name = window_name
        self.show_mask = show_mask
        self._lock = threading.Lock()
        self._pending: Optional[FrameResult] = None
        self._last: Optional[FrameResult] = None
        self._created = False

    def __call__(self, result: FrameResult) -> None:
        with self._lock:
            self._pending = result

    @property
    def last_result(self) -> Optional[FrameResult]:
        with self._lock:
            return self._pending or self._last

    def create(self, on_click=None) -> None:
        if self._created:
            return
        cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
        cv2.resizeWindow(self.window_name, 900, 680)
        if on_click is not None:
            def _mouse(event, x, y, _flags, _param):
                if event == cv2.EVENT_LBUTTONDOWN:
                    on_click(x, y)
            cv2.setMouseCallback(self.window_name, _mouse)
        self._created = True

    def show(self) -> bool:
        with self._lock:
            result, self._pending = self._pending, None
            if result is not None:
                self._last = result
        if result is None or not self._created:
            return False
        cv2.imshow(self.window_name, draw_overlay(result, self.show_mask))
        return True

    def close(self) -> None:
        if self._created:
            try:
                cv2.destroyWindow(self.window_name)
            except cv2.error:
                pass
            self._created = False
