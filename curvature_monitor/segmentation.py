from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np

from .color import ToleranceBand

try:
    import cv2  # type: ignore
except Exception as exc:  # pragma: no cover
    cv2 = None
    _cv2_import_error = exc
else:
    _cv2_import_error = None

logger = logging.getLogger(__name__)


def _check_cv2_available():
    if cv2 is None:
        raise RuntimeError(
            "OpenCV (cv2) is required for colour segmentation" +
            (f": {_cv2_import_error}" if _cv2_import_error else "")
        )


class WorkingBuffers:
    """
    Reusable HSV and mask arrays for the per-frame pipeline.

    The arrays are sized to the last frame seen; ``ensure_shape`` reallocates them
    whenever a frame of different dimensions arrives. Use as a context manager (or
    call ``release``) so the arrays are dropped on every exit path.
    """

    def __init__(self, height: int = 0, width: int = 0):
        self.hsv: Optional[np.ndarray] = None
        self.mask: Optional[np.ndarray] = None
        self.reallocations = 0
        if height > 0 and width > 0:
            self._allocate(height, width)

    @property
    def shape(self) -> Optional[Tuple[int, int]]:
        if self.mask is None:
            return None
        return int(self.mask.shape[0]), int(self.mask.shape[1])

    def _allocate(self, height: int, width: int) -> None:
        self.hsv = np.zeros((height, width, 3), dtype=np.uint8)
        self.mask = np.zeros((height, width), dtype=np.uint8)

    def ensure_shape(self, height: int, width: int) -> bool:
        """Return True when the buffers had to be (re)allocated."""
        current = self.shape
        if current == (height, width):
            return False
        if current is not None:
            logger.warning(
                "Working buffer size mismatch (%dx%d vs frame %dx%d); reallocating",
                current[1], current[0], width, height,
            )
        self._allocate(height, width)
        self.reallocations += 1
        return True

    def release(self) -> None:
        self.hsv = None
        self.mask = None

    def __enter__(self) -> "WorkingBuffers":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


_KERNEL_CACHE: dict[int, np.ndarray] = {}


def structuring_element(size: int = 5) -> np.ndarray:
    size = max(1, int(size))
    kernel = _KERNEL_CACHE.get(size)
    if kernel is None:
        _check_cv2_available()
        kernel = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (size, size))
        _KERNEL_CACHE[size] = kernel
    return kernel


def _as_bgr(frame: np.ndarray) -> np.ndarray:
    if frame.ndim != 3:
        raise ValueError(f"Expected a colour frame (H, W, 3), got shape {frame.shape}")
    if frame.shape[2] == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)
    if frame.shape[2] != 3:
        raise ValueError(f"Expected 3 or 4 channels, got {frame.shape[2]}")
    return frame


def segment(
    frame: np.ndarray,
    band: ToleranceBand,
    kernel_size: int = 5,
    buffers: Optional[WorkingBuffers] = None,
) -> np.ndarray:
    """
    Binary mask (uint8, 0/255) of the pixels of ``frame`` (BGR) inside ``band``.

    Thresholding is followed by one morphological opening and then one closing.
    The opening has to come first: it drops isolated false positives before the
    closing merges what is left into solid regions.

    When ``buffers`` is given the returned mask is ``buffers.mask`` and is
    overwritten by the next call.
    """
    _check_cv2_available()
    bgr = _as_bgr(frame)
    height, width = bgr.shape[:2]
    lower = np.array(band.lower, dtype=np.uint8)
    upper = np.array(band.upper, dtype=np.uint8)

    if buffers is None:
        hsv = cv2.cvtColor(bgr, cv2.COLOR_BGR2HSV)
        mask = cv2.inRange(hsv, lower, upper)
    else:
        buffers.ensure_shape(height, width)
        hsv = cv2.cvtColor(bgr, cv2.COLOR_BGR2HSV, dst=buffers.hsv)
        mask = cv2.inRange(hsv, lower, upper, dst=buffers.mask)

    kernel = structuring_element(kernel_size)
    cv2.morphologyEx(mask, cv2.MORPH_OPEN, kernel, dst=mask)
    cv2.morphologyEx(mask, cv2.MORPH_CLOSE, kernel, dst=mask)
    return mask


def foreground_fraction(mask: np.ndarray) -> float:
    if mask.size == 0:
        return 0.0
    return float(np.count_nonzero(mask)) / float(mask.size)
