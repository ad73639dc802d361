import logging
import time

import pytest

from curvature_monitor import events
from curvature_monitor.acquisition import AcquisitionLoop, CameraSource
from curvature_monitor.session import MonitorSession

from conftest import EventRecorder, FakeSource, disc_frame, wait_until


def test_step_processes_one_frame_and_renders():
    session = MonitorSession()
    session.select_color(0, 255, 0)
    rendered = []
    loop = AcquisitionLoop(session, FakeSource([disc_frame()]), render_sink=rendered.append)
    result = loop.step()
    assert result is not None and result.detected
    assert rendered == [result]
    assert loop.get_result() is result
    assert loop.frames_processed == 1


def test_step_without_frame_returns_none():
    loop = AcquisitionLoop(MonitorSession(), FakeSource([]))
    assert loop.step() is None
    assert loop.frames_processed == 0


def test_loop_runs_until_stopped_and_releases_everything():
    session = MonitorSession()
    rec = EventRecorder(session.events, events.CAMERA_STATUS)
    session.select_color(0, 255, 0)
    source = FakeSource([disc_frame()])
    rendered = []
    loop = AcquisitionLoop(session, source, render_sink=rendered.append, target_fps=200)

    loop.start()
    try:
        assert loop.running
        assert session.source_live
        assert session.publisher.running
        assert wait_until(lambda: loop.frames_processed >= 3)
    finally:
        loop.stop()

    assert not loop.running
    assert source.opened and source.released
    assert loop.buffers is None
    assert not session.source_live
    assert not session.publisher.running
    assert rec.of(events.CAMERA_STATUS) == [(True,), (False,)]
    assert len(session.buffer) >= 3
    count = loop.frames_processed
    wait_until(lambda: False, timeout=0.05)
    assert loop.frames_processed == count

    loop.stop()
    assert rec.of(events.CAMERA_STATUS) == [(True,), (False,)]


def _assert_consistent(snapshot):
    assert len(snapshot.time) == len(snapshot.curvature) == len(snapshot.weight)
    assert all(t >= 0.0 for t in snapshot.time)
    assert all(a <= b for a, b in zip(snapshot.time, snapshot.time[1:]))


@pytest.mark.parametrize("action", ["calibrate", "clear_data"])
def test_history_restarts_while_loop_runs(action):
    session = MonitorSession()
    session.select_color(0, 255, 0)
    published = []
    session.attach_chart(published.append)
    loop = AcquisitionLoop(session, FakeSource([disc_frame()]), target_fps=200)

    loop.start()
    try:
        assert wait_until(lambda: loop.frames_processed >= 3)
        published.clear()
        t0 = time.monotonic()
        getattr(session, action)()
        snapshot = session.buffer.snapshot()
        _assert_consistent(snapshot)
        assert all(t <= round(time.monotonic() - t0, 1) + 0.1 for t in snapshot.time)
        assert any(len(s.time) == 0 for s in published)

        processed = loop.frames_processed

        def caught_up():
            _assert_consistent(session.buffer.snapshot())
            return loop.frames_processed >= processed + 5

        assert wait_until(caught_up)
        assert len(session.buffer) > 0
    finally:
        loop.stop()
    _assert_consistent(session.buffer.snapshot())


def test_failed_iteration_is_logged_and_skipped(caplog):
    session = MonitorSession()
    session.select_color(0, 255, 0)
    loop = AcquisitionLoop(session, FakeSource([disc_frame()], fail_on={1}), target_fps=200)
    with caplog.at_level(logging.ERROR, logger="curvature_monitor.acquisition"):
        loop.start()
        try:
            assert wait_until(lambda: loop.frames_processed >= 3)
        finally:
            loop.stop()
    assert loop.errors == 1
    assert "Error processing frame" in caplog.text


def test_start_fails_cleanly_when_source_cannot_open(tmp_path):
    session = MonitorSession()
    loop = AcquisitionLoop(session, CameraSource(str(tmp_path / "missing.avi")))
    with pytest.raises(RuntimeError, match="Could not open video source"):
        loop.start()
    assert not loop.running
    assert not session.source_live
