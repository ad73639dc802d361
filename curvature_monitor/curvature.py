from __future__ import annotations

from typing import Optional

import numpy as np

from .calibration import Baseline
from .contours import BoundingBox, Region

DEFAULT_MM_PER_PX = 0.3


def top_edge_points(points: np.ndarray, bbox: BoundingBox, band_fraction: float = 0.3) -> np.ndarray:
    """Boundary points lying in the top ``band_fraction`` of the bounding box."""
    pts = np.asarray(points).reshape(-1, 2)
    if pts.size == 0:
        return pts
    limit = bbox.y + bbox.h * band_fraction
    return pts[pts[:, 1] <= limit]


def compute_curvature(
    points: np.ndarray,
    bbox: BoundingBox,
    baseline: Baseline,
    *,
    mm_per_px: float = DEFAULT_MM_PER_PX,
    band_fraction: float = 0.3,
    min_points: int = 3,
) -> float:
    """
    Maximum vertical deviation (mm) of the top edge from the baseline.

    Returns 0.0 when fewer than ``min_points`` edge points are found or when no
    baseline has been calibrated.
    """
    top = top_edge_points(points, bbox, band_fraction)
    if len(top) < min_points:
        return 0.0
    if not baseline.calibrated:
        return 0.0
    deviation = np.abs(top[:, 1].astype(np.float64) - float(baseline.y))
    return float(deviation.max()) * float(mm_per_px)


def estimate_curvature(
    region: Optional[Region],
    baseline: Baseline,
    *,
    mm_per_px: float = DEFAULT_MM_PER_PX,
    band_fraction: float = 0.3,
    min_points: int = 3,
) -> float:
    if region is None:
        return 0.0
    return compute_curvature(
        region.points, region.bbox, baseline,
        mm_per_px=mm_per_px, band_fraction=band_fraction, min_points=min_points,
    )
