import numpy as np
import pytest

from curvature_monitor import events
from curvature_monitor.calibration import CalibrationError, CalibrationState
from curvature_monitor.config import MonitorConfig
from curvature_monitor.segmentation import WorkingBuffers
from curvature_monitor.session import MonitorSession, display_to_frame

from conftest import EventRecorder, FakeClock, blank_frame, disc_frame, rect_frame


@pytest.fixture
def session():
    clock = FakeClock()
    s = MonitorSession(MonitorConfig(), clock=clock)
    s.clock = clock
    return s


def _run(session, frames, step=0.05):
    results = []
    for frame in frames:
        session.clock.advance(step)
        results.append(session.process_frame(frame))
    return results


def test_no_colour_means_no_target_and_no_samples(session):
    result = session.process_frame(disc_frame())
    assert result.color is None
    assert result.mask is None
    assert not result.detected
    assert result.curvature == 0.0
    assert len(session.buffer) == 0


def test_detects_object_and_records_uncalibrated_samples(session):
    rec = EventRecorder(session.events, events.DETECTION_CHANGED, events.CURVATURE_UPDATED)
    session.select_color(0, 255, 0)
    results = _run(session, [disc_frame(), disc_frame(), blank_frame()])
    assert [r.detected for r in results] == [True, True, False]
    assert all(r.curvature == 0.0 for r in results)
    assert len(session.buffer) == 3
    assert rec.of(events.DETECTION_CHANGED) == [(True,), (False,)]
    assert len(rec.of(events.CURVATURE_UPDATED)) == 3


def test_uncalibrated_samples_skipped_when_disabled():
    cfg = MonitorConfig(record_uncalibrated=False)
    s = MonitorSession(cfg, clock=FakeClock())
    s.select_color(0, 255, 0)
    s.process_frame(disc_frame())
    assert len(s.buffer) == 0


def test_calibrate_sets_baseline_clears_history_and_measures(session):
    session.set_source_live(True)
    rec = EventRecorder(session.events, events.CALIBRATION_CHANGED, events.DATA_CLEARED)
    session.select_color(0, 255, 0)
    first = _run(session, [disc_frame()] * 3)[-1]
    assert len(session.buffer) == 3

    result = session.calibrate()
    bbox = result.region.bbox
    assert session.calibration_state is CalibrationState.CALIBRATED
    assert session.baseline.y == pytest.approx(bbox.y + 0.1 * bbox.h)
    assert bbox == first.bbox
    assert len(session.buffer) == 0
    assert len(rec.of(events.CALIBRATION_CHANGED)) == 1
    assert len(rec.of(events.DATA_CLEARED)) == 1

    measured = _run(session, [disc_frame()])[0]
    assert measured.curvature > 0.0
    assert measured.baseline_y == pytest.approx(session.baseline.y)
    assert measured.sample is not None
    assert len(session.buffer) == 1


@pytest.mark.parametrize("live, colour, frame, reason", [
    (False, True, disc_frame(), "no_source"),
    (True, False, disc_frame(), "no_color"),
    (True, True, blank_frame(), "not_detected"),
])
def test_failed_calibration_keeps_state_and_history(session, live, colour, frame, reason):
    session.set_source_live(live)
    if colour:
        session.select_color(0, 255, 0)
    _run(session, [frame])
    before = len(session.buffer)
    with pytest.raises(CalibrationError) as info:
        session.calibrate()
    assert info.value.reason == reason
    assert session.calibration_state is CalibrationState.UNCALIBRATED
    assert len(session.buffer) == before


def test_reset_calibration_and_clear_data(session):
    session.set_source_live(True)
    session.select_color(0, 255, 0)
    _run(session, [disc_frame()])
    session.calibrate()
    _run(session, [disc_frame()] * 2)
    assert len(session.buffer) == 2

    session.clear_data()
    assert len(session.buffer) == 0
    assert session.calibration_state is CalibrationState.CALIBRATED

    _run(session, [disc_frame()])
    session.reset_calibration()
    assert session.calibration_state is CalibrationState.UNCALIBRATED
    assert len(session.buffer) == 0
    assert _run(session, [disc_frame()])[0].curvature == 0.0


def test_clear_restarts_session_clock(session):
    session.select_color(0, 255, 0)
    session.clock.advance(30.0)
    session.clear_data()
    result = session.process_frame(disc_frame(), now=session.clock.now + 0.5)
    assert result.sample.t == pytest.approx(0.5)


def test_tolerance_is_clamped(session):
    rec = EventRecorder(session.events, events.TOLERANCE_CHANGED)
    assert session.set_tolerance(80) == 50
    assert session.set_tolerance(-3) == 0
    assert session.hue_tolerance == 0
    assert rec.of(events.TOLERANCE_CHANGED) == [(50,), (0,)]


def test_weight_is_sampled_with_curvature(session):
    session.select_color(0, 255, 0)
    session.weight.set(3.5)
    result = _run(session, [disc_frame()])[0]
    assert result.weight == 3.5
    assert session.buffer.snapshot().weight == (3.5,)


def test_select_color_at_reads_bgr_pixel_with_display_scaling(session):
    frame = blank_frame(100, 80)
    frame[20, 10] = (30, 60, 200)
    sample = session.select_color_at(frame, 10, 20)
    assert sample.rgb == (200, 60, 30)
    sample = session.select_color_at(frame, 20, 40, display_size=(200, 160))
    assert sample.rgb == (200, 60, 30)
    assert session.color == sample


def test_display_to_frame_clamps_and_validates():
    assert display_to_frame(1000, 1000, None, (100, 80)) == (99, 79)
    assert display_to_frame(-5, 3, (50, 40), (100, 80)) == (0, 6)
    with pytest.raises(ValueError):
        display_to_frame(1, 1, (0, 10), (100, 80))


def test_buffers_do_not_alias_results(session):
    session.select_color(0, 255, 0)
    with WorkingBuffers() as buffers:
        first = session.process_frame(disc_frame(), buffers=buffers)
        session.process_frame(blank_frame(), buffers=buffers)
    assert first.mask is not buffers.mask
    assert np.count_nonzero(first.mask) > 1000


def test_chart_sink_receives_snapshots(session):
    published = []
    session.attach_chart(published.append)
    session.select_color(0, 255, 0)
    _run(session, [disc_frame()] * 4, step=0.2)
    assert len(published) == 4
    assert len(published[-1]) == 4


def test_export_without_data_fails(session, tmp_path):
    with pytest.raises(ValueError):
        session.export_csv(tmp_path / "x.csv")
    session.select_color(0, 255, 0)
    _run(session, [disc_frame()] * 2)
    path = session.export_csv(tmp_path / "x.csv")
    assert len(path.read_text(encoding="utf-8").splitlines()) == 3


def test_source_offline_drops_latest_frame(session):
    rec = EventRecorder(session.events, events.CAMERA_STATUS)
    session.set_source_live(True)
    session.process_frame(blank_frame())
    assert session.latest_frame is not None
    session.set_source_live(False)
    assert session.latest_frame is None
    assert rec.of(events.CAMERA_STATUS) == [(True,), (False,)]


def test_camera_restart_starts_fresh_history(session):
    session.select_color(0, 255, 0)
    session.set_source_live(True)
    _run(session, [disc_frame()] * 3, step=2.0)
    assert session.buffer.snapshot().time == (2.0, 4.0, 6.0)

    rec = EventRecorder(session.events, events.DATA_CLEARED)
    session.set_source_live(False)
    session.set_source_live(True)
    assert len(session.buffer) == 0
    assert len(rec.of(events.DATA_CLEARED)) == 1

    _run(session, [disc_frame()], step=0.5)
    times = session.buffer.snapshot().time
    assert times == (0.5,)
    assert all(a <= b for a, b in zip(times, times[1:]))


def test_calibration_on_known_bbox(session):
    frame = rect_frame(0, 100, 50, 40, color=(0, 255, 0), width=200, height=200)
    session.set_source_live(True)
    session.select_color(0, 255, 0)
    _run(session, [frame] * 2)
    result = session.calibrate()
    assert (result.region.bbox.x, result.region.bbox.y, result.region.bbox.w, result.region.bbox.h) == (0, 100, 50, 40)
    assert session.baseline.y == pytest.approx(104.0)
    assert session.calibration_state is CalibrationState.CALIBRATED
    assert len(session.buffer) == 0
