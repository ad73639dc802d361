from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .color import ToleranceBand
from .segmentation import WorkingBuffers, _check_cv2_available, segment

try:
    import cv2  # type: ignore
except Exception:  # pragma: no cover
    cv2 = None

DEFAULT_MIN_AREA = 1000.0


@dataclass(frozen=True)
class BoundingBox:
    x: int
    y: int
    w: int
    h: int

    @classmethod
    def of_points(cls, points: np.ndarray) -> "BoundingBox":
        x, y, w, h = cv2.boundingRect(np.asarray(points, dtype=np.int32).reshape(-1, 1, 2))
        return cls(int(x), int(y), int(w), int(h))


@dataclass
class Region:
    points: np.ndarray  # (N, 2) int32, boundary in scan order
    area: float
    bbox: BoundingBox

    @classmethod
    def from_contour(cls, contour: np.ndarray) -> "Region":
        pts = np.asarray(contour, dtype=np.int32).reshape(-1, 2)
        return cls(
            points=pts,
            area=float(cv2.contourArea(contour)),
            bbox=BoundingBox.of_points(pts),
        )

    def as_contour(self) -> np.ndarray:
        return self.points.reshape(-1, 1, 2)


def safe_find_contours(binary_img):
    """cv2.findContours compatibility wrapper (OpenCV 3 returns three values)."""
    cnts = cv2.findContours(binary_img, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    return cnts[0] if len(cnts) == 2 else cnts[1]


def find_regions(mask: np.ndarray) -> List[Region]:
    """Outer boundaries of the foreground components, holes ignored."""
    _check_cv2_available()
    if mask.dtype != np.uint8:
        mask = mask.astype(np.uint8, copy=False)
    return [Region.from_contour(c) for c in safe_find_contours(mask)]


def select_dominant(regions: Sequence[Region], min_area: float = DEFAULT_MIN_AREA) -> Optional[Region]:
    """
    Largest region by enclosed area, or None when even the largest is not above
    ``min_area``. On equal areas the first region in scan order wins.
    """
    best: Optional[Region] = None
    for region in regions:
        if best is None or region.area > best.area:
            best = region
    if best is None or best.area <= min_area:
        return None
    return best


def detect_region(
    frame: np.ndarray,
    band: ToleranceBand,
    *,
    min_area: float = DEFAULT_MIN_AREA,
    kernel_size: int = 5,
    buffers: Optional[WorkingBuffers] = None,
) -> tuple[Optional[Region], np.ndarray]:
    mask = segment(frame, band, kernel_size=kernel_size, buffers=buffers)
    return select_dominant(find_regions(mask), min_area), mask
