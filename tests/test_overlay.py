import numpy as np

from curvature_monitor.overlay import GREEN, ORANGE, RED, OverlayWindow, curvature_color, draw_overlay, weight_color
from curvature_monitor.session import MonitorSession

from conftest import FakeClock, disc_frame


def test_status_colour_thresholds():
    assert curvature_color(0.0) == GREEN
    assert curvature_color(5.0) == GREEN
    assert curvature_color(5.01) == ORANGE
    assert curvature_color(10.0) == ORANGE
    assert curvature_color(10.5) == RED
    assert weight_color(500) == GREEN
    assert weight_color(750) == ORANGE
    assert weight_color(1000.1) == RED


def test_draw_overlay_leaves_source_frame_untouched():
    session = MonitorSession(clock=FakeClock())
    frame = disc_frame()
    before = frame.copy()

    prompt = draw_overlay(session.process_frame(frame))
    assert prompt.shape == frame.shape
    assert not np.array_equal(prompt, before)

    session.set_source_live(True)
    session.select_color(0, 255, 0)
    session.process_frame(frame)
    session.calibrate()
    annotated = draw_overlay(session.process_frame(frame), show_mask=True)
    plain = draw_overlay(session.process_frame(frame), show_mask=False)
    assert annotated.shape == frame.shape
    assert not np.array_equal(annotated, plain)
    assert np.array_equal(frame, before)


def test_window_keeps_latest_result_until_shown():
    session = MonitorSession(clock=FakeClock())
    window = OverlayWindow()
    first = session.process_frame(disc_frame())
    second = session.process_frame(disc_frame())
    window(first)
    window(second)
    assert window.last_result is second
    assert not window.show()  # window not created
    assert window.last_result is second
