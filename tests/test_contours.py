import numpy as np

from curvature_monitor.color import ColorSample, tolerance_band
from curvature_monitor.contours import BoundingBox, Region, detect_region, find_regions, select_dominant

from conftest import rect_frame


def _region(area, x=0, y=0):
    pts = np.array([[x, y], [x + 10, y], [x + 10, y + 10], [x, y + 10]], dtype=np.int32)
    return Region(points=pts, area=float(area), bbox=BoundingBox(x, y, 10, 10))


def test_selects_largest_region_above_threshold():
    small, large = _region(500), _region(1500, x=50)
    assert select_dominant([small, large], 1000) is large


def test_nothing_selected_below_threshold():
    assert select_dominant([_region(800)], 1000) is None
    assert select_dominant([], 1000) is None


def test_threshold_is_strict():
    assert select_dominant([_region(1000)], 1000) is None
    assert select_dominant([_region(1000.5)], 1000) is not None


def test_first_region_wins_ties():
    first, second = _region(2000, x=0), _region(2000, x=100)
    assert select_dominant([first, second], 1000) is first


def test_find_regions_reports_outer_boundaries():
    mask = np.zeros((100, 100), dtype=np.uint8)
    mask[10:40, 10:60] = 255
    mask[60:90, 60:90] = 255
    mask[20:30, 20:30] = 0  # hole, ignored
    regions = find_regions(mask)
    assert len(regions) == 2
    bboxes = sorted((r.bbox.x, r.bbox.y, r.bbox.w, r.bbox.h) for r in regions)
    assert bboxes == [(10, 10, 50, 30), (60, 60, 30, 30)]
    big = max(regions, key=lambda r: r.area)
    assert big.area == (50 - 1) * (30 - 1)
    assert big.points.ndim == 2 and big.points.shape[1] == 2


def test_detect_region_on_synthetic_frame():
    band = tolerance_band(ColorSample.from_rgb(255, 0, 0), 15)
    region, mask = detect_region(rect_frame(40, 50, 100, 70), band, min_area=1000)
    assert region is not None
    assert region.bbox == BoundingBox(40, 50, 100, 70)
    assert region.area > 1000
    assert mask.shape == (240, 320)


def test_detect_region_ignores_small_blobs():
    band = tolerance_band(ColorSample.from_rgb(255, 0, 0), 15)
    region, _ = detect_region(rect_frame(40, 50, 20, 20), band, min_area=1000)
    assert region is None
