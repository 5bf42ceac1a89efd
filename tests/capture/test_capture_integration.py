"""
Capture Integration Tests

End-to-end sessions: SessionController + ProcessBackend + Transcoder, with
fake capture and conversion programs standing in for libcamera-vid and
MP4Box.

To run:
    pytest tests/capture/test_capture_integration.py -v
"""

import os
import time

import pytest

from capture.constants import SessionState
from capture.controllers.session_controller import SessionController
from capture.implementations.process_backend import ProcessBackend
from core.errors import ErrorKind
from core.event_bus import EventKind

pytestmark = [pytest.mark.requires_posix, pytest.mark.unit_integration]

# Let the fake capture write some frames before stopping
RECORD_TIME = 0.3


def messages(event_bus, session_id):
    return [e.message for e in event_bus.history(session_id=session_id)]


def index_of(items, prefix):
    return next(i for i, item in enumerate(items) if item.startswith(prefix))


# =============================================================================
# SUCCESSFUL SESSIONS
# =============================================================================


def test_record_and_convert(process_controller_factory, event_bus, supervisor):
    """Test start -> stop produces a converted file and keeps the raw one."""
    ctrl = process_controller_factory("normal", transcode="ok")

    assert ctrl.start() is True
    time.sleep(RECORD_TIME)
    assert ctrl.stop() is True

    session = ctrl.current_session
    assert ctrl.current_state() == SessionState.COMPLETED
    assert ctrl.final_output_path == session.raw_output_path.with_suffix(".mp4")
    assert ctrl.final_output_path.stat().st_size > 0
    assert session.raw_output_path.exists()
    assert supervisor.active_handles() == []

    log = messages(event_bus, session.id)
    order = [
        index_of(log, "Recording to:"),
        index_of(log, "Stopping recording..."),
        index_of(log, "Recording stopped. Video saved to"),
        index_of(log, "Converting to MP4:"),
        index_of(log, "Conversion successful"),
        index_of(log, "Recording complete:"),
    ]
    assert order == sorted(order)


def test_process_output_tagged_with_session(process_controller_factory, event_bus):
    ctrl = process_controller_factory("normal", transcode=None)
    ctrl.start()
    time.sleep(RECORD_TIME)
    ctrl.stop()

    session_id = ctrl.current_session.id
    output = [
        e for e in event_bus.history(kind=EventKind.PROCESS_OUTPUT)
        if e.message.startswith("capture:")
    ]
    assert output
    assert all(e.session_id == session_id for e in output)


def test_exact_bytes_without_conversion(process_controller_factory, tmp_path):
    """Test the finished file matches what the capture program produced."""
    source = tmp_path / "source.bin"
    payload = os.urandom(256 * 1024)
    source.write_bytes(payload)
    ctrl = process_controller_factory("copy", "--source", str(source), transcode=None)

    assert ctrl.start() is True
    time.sleep(RECORD_TIME)
    ctrl.stop()

    assert ctrl.final_output_path.suffix == ".h264"
    assert ctrl.final_output_path.read_bytes() == payload


def test_transcode_failure_keeps_raw(process_controller_factory, event_bus):
    """Test a failed conversion degrades to the raw file instead of failing."""
    ctrl = process_controller_factory("normal", transcode="fail")

    ctrl.start()
    time.sleep(RECORD_TIME)
    ctrl.stop()

    session = ctrl.current_session
    assert ctrl.current_state() == SessionState.COMPLETED
    assert ctrl.final_output_path == session.raw_output_path
    assert ctrl.last_error is None
    assert not session.raw_output_path.with_suffix(".mp4").exists()

    degraded = event_bus.history(kind=EventKind.TRANSCODE_DEGRADED)
    assert len(degraded) == 1
    assert degraded[0].details["error_kind"] == ErrorKind.TRANSCODE_DEGRADED.value


def test_capture_ignoring_sigterm(process_controller_factory, supervisor):
    """Test a capture that must be killed still completes with its file."""
    ctrl = process_controller_factory(
        "ignore_term", transcode=None, stop_grace_period=0.5
    )

    ctrl.start()
    time.sleep(RECORD_TIME)
    ctrl.stop()

    assert ctrl.current_state() == SessionState.COMPLETED
    assert ctrl.final_output_path.stat().st_size > 0
    assert supervisor.active_handles() == []


def test_capture_reaching_duration(process_controller_factory):
    """Test a capture that ends on its own is finalized and converted."""
    ctrl = process_controller_factory("normal", transcode="ok", duration_ms=1500)

    assert ctrl.start() is True

    assert ctrl.wait_for_terminal(timeout=15.0) is True
    session = ctrl.current_session
    assert ctrl.current_state() == SessionState.COMPLETED
    assert ctrl.final_output_path.suffix == ".mp4"
    assert "stopping" in [state.value for state in session.state_history]


# =============================================================================
# FAILED SESSIONS
# =============================================================================


def test_camera_busy(process_controller_factory, temp_recording_dir, event_bus):
    ctrl = process_controller_factory("busy")

    assert ctrl.start() is False

    assert ctrl.current_state() == SessionState.FAILED
    assert ctrl.last_error.kind == ErrorKind.ACQUISITION_FAILED
    assert "busy" in str(ctrl.last_error).lower()
    assert ctrl.final_output_path is None
    assert list(temp_recording_dir.glob("video_*")) == []

    errors = event_bus.history(kind=EventKind.ERROR)
    assert errors[-1].session_id == ctrl.current_session.id


def test_capture_crash_while_recording(process_controller_factory, temp_recording_dir):
    ctrl = process_controller_factory("crash", "--crash-after", "2.0")

    assert ctrl.start() is True
    assert ctrl.wait_for_terminal(timeout=15.0) is True

    assert ctrl.current_state() == SessionState.FAILED
    assert ctrl.last_error.kind == ErrorKind.DEVICE_INTERRUPTED
    assert list(temp_recording_dir.glob("video_*")) == []

    # Nothing left to stop
    assert ctrl.stop() is False


def test_missing_capture_binary(supervisor, path_resolver, event_bus):
    backend = ProcessBackend(supervisor, capture_command=["no-such-libcamera-vid-4242"])
    ctrl = SessionController(backend, event_bus=event_bus, path_resolver=path_resolver)

    assert ctrl.start() is False
    assert ctrl.last_error.kind == ErrorKind.ACQUISITION_FAILED
    ctrl.shutdown()


# =============================================================================
# SHUTDOWN
# =============================================================================


def test_shutdown_while_recording(process_controller_factory, supervisor):
    ctrl = process_controller_factory("normal", transcode="ok")
    ctrl.start()
    time.sleep(RECORD_TIME)

    ctrl.shutdown(grace_period=10.0)

    assert ctrl.current_state() == SessionState.COMPLETED
    assert supervisor.active_handles() == []
    assert ctrl.start() is False


def test_shutdown_during_hanging_conversion(process_controller_factory, event_bus, supervisor):
    """Test shutdown keeps the verified raw file when MP4Box does not finish."""
    ctrl = process_controller_factory("normal", transcode="hang")
    ctrl.start()
    time.sleep(RECORD_TIME)
    raw_path = ctrl.current_session.raw_output_path

    ctrl.stop(wait=False)
    deadline = time.time() + 10.0
    while ctrl.current_state() != SessionState.FINALIZING and time.time() < deadline:
        time.sleep(0.05)
    assert ctrl.current_state() == SessionState.FINALIZING

    ctrl.shutdown(grace_period=0.5)

    assert ctrl.current_state() == SessionState.COMPLETED
    assert ctrl.final_output_path == raw_path
    assert raw_path.stat().st_size > 0
    assert ctrl.last_error is None
    assert supervisor.active_handles() == []
    assert event_bus.history(kind=EventKind.TRANSCODE_DEGRADED)
