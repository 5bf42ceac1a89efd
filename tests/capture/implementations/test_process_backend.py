"""
Process Backend Tests

Runs ProcessBackend against a fake capture program (see capture/conftest.py).

To run:
    pytest tests/capture/implementations/test_process_backend.py -v
"""

import threading

import pytest

from capture.constants import BackendKind
from capture.implementations.process_backend import ProcessBackend
from capture.interfaces.capture_backend_interface import (
    AcquisitionFailedError,
    BinaryNotFoundError,
    CameraBusyError,
    CameraNotFoundError,
    DeviceInterruptedError,
    FinalizeError,
    UnsupportedFormatError,
)

pytestmark = pytest.mark.requires_posix


class InterruptionRecorder:
    """Collects interruption callbacks from the reaper thread"""

    def __init__(self):
        self.calls = []
        self.called = threading.Event()

    def __call__(self, handle, error):
        self.calls.append((handle, error))
        self.called.set()


@pytest.fixture
def raw_path(temp_recording_dir):
    return temp_recording_dir / "video_1700000000000.h264"


# =============================================================================
# ACQUIRE / FINALIZE
# =============================================================================


@pytest.mark.unit_integration
def test_acquire_and_finalize(process_backend_factory, raw_path):
    backend = process_backend_factory("normal")

    handle = backend.acquire(raw_path, session_id="s1")

    assert backend.kind == BackendKind.PROCESS
    assert backend.is_capturing() is True
    assert handle.process.is_running()
    assert handle.session_id == "s1"

    backend.finalize(handle)

    assert handle.finalized is True
    assert backend.is_capturing() is False
    assert handle.process.exit_code == 0
    assert raw_path.stat().st_size > 0


@pytest.mark.unit_integration
def test_finalize_twice_is_noop(process_backend_factory, raw_path):
    backend = process_backend_factory("normal")
    handle = backend.acquire(raw_path)
    backend.finalize(handle)

    backend.finalize(handle)

    assert handle.finalized is True


@pytest.mark.unit_integration
def test_second_acquire_rejected(process_backend_factory, raw_path):
    backend = process_backend_factory("normal")
    backend.acquire(raw_path)

    with pytest.raises(AcquisitionFailedError, match="already active"):
        backend.acquire(raw_path.with_name("video_2.h264"))


@pytest.mark.unit_integration
def test_sigterm_ignored_is_killed(process_backend_factory, raw_path, event_bus):
    """Test a capture ignoring SIGTERM is killed and the file is kept."""
    backend = process_backend_factory("ignore_term", stop_grace_period=0.5)
    handle = backend.acquire(raw_path)

    backend.finalize(handle)

    assert handle.finalized is True
    assert raw_path.stat().st_size > 0
    assert any("force killing" in e.message for e in event_bus.history())


# =============================================================================
# STARTUP FAILURES
# =============================================================================


@pytest.mark.unit_integration
def test_camera_busy(process_backend_factory, raw_path):
    backend = process_backend_factory("busy")

    with pytest.raises(CameraBusyError, match="Device or resource busy"):
        backend.acquire(raw_path)

    assert backend.is_capturing() is False


@pytest.mark.unit_integration
def test_no_camera(process_backend_factory, raw_path):
    backend = process_backend_factory("no_camera")

    with pytest.raises(CameraNotFoundError):
        backend.acquire(raw_path)


@pytest.mark.unit_integration
def test_early_crash_is_acquisition_failure(process_backend_factory, raw_path):
    """Test a process dying inside the liveness window never counts as started."""
    backend = process_backend_factory("crash", "--crash-after", "0.1")
    recorder = InterruptionRecorder()
    backend.set_interruption_handler(recorder)

    with pytest.raises(AcquisitionFailedError):
        backend.acquire(raw_path)

    assert not recorder.called.wait(0.3)


@pytest.mark.unit
def test_missing_binary(supervisor, raw_path):
    backend = ProcessBackend(supervisor, capture_command=["no-such-libcamera-vid-4242"])

    with pytest.raises(BinaryNotFoundError):
        backend.acquire(raw_path)


@pytest.mark.unit
def test_unsupported_resolution(process_backend_factory, raw_path, supervisor):
    backend = process_backend_factory("normal", width=1000, height=1000)

    with pytest.raises(UnsupportedFormatError, match="1000x1000"):
        backend.acquire(raw_path)

    assert supervisor.active_handles() == []


@pytest.mark.unit
def test_fps_above_limit(process_backend_factory, raw_path):
    backend = process_backend_factory("normal", width=1920, height=1080, fps=120)

    with pytest.raises(UnsupportedFormatError, match="120 fps"):
        backend.acquire(raw_path)


# =============================================================================
# INTERRUPTIONS
# =============================================================================


@pytest.mark.unit_integration
def test_crash_while_capturing_reports_interruption(process_backend_factory, raw_path):
    backend = process_backend_factory("crash", "--crash-after", "2.0")
    recorder = InterruptionRecorder()
    backend.set_interruption_handler(recorder)
    handle = backend.acquire(raw_path, session_id="s1")

    assert recorder.called.wait(10.0)

    reported_handle, error = recorder.calls[0]
    assert reported_handle is handle
    assert isinstance(error, DeviceInterruptedError)
    assert "code 3" in str(error)
    assert backend.is_capturing() is False


@pytest.mark.unit_integration
def test_finalize_after_crash_raises(process_backend_factory, raw_path):
    """Test a crash seen by the reaper before finalize() is still an error."""
    backend = process_backend_factory("crash", "--crash-after", "1.5")
    recorder = InterruptionRecorder()
    backend.set_interruption_handler(recorder)
    handle = backend.acquire(raw_path)
    assert recorder.called.wait(10.0)

    with pytest.raises(FinalizeError, match="code 3"):
        backend.finalize(handle)


@pytest.mark.unit_integration
def test_finalize_after_natural_end_succeeds(process_backend_factory, raw_path):
    backend = process_backend_factory("normal", duration_ms=1500)
    recorder = InterruptionRecorder()
    backend.set_interruption_handler(recorder)
    handle = backend.acquire(raw_path)
    assert recorder.called.wait(10.0)

    backend.finalize(handle)

    assert raw_path.stat().st_size > 0


@pytest.mark.unit_integration
def test_natural_end_reports_no_error(process_backend_factory, raw_path):
    """Test a capture reaching its configured duration reports error=None."""
    backend = process_backend_factory("normal", duration_ms=1500)
    recorder = InterruptionRecorder()
    backend.set_interruption_handler(recorder)
    handle = backend.acquire(raw_path)

    assert recorder.called.wait(10.0)

    assert recorder.calls == [(handle, None)]
    assert handle.finalized is True


@pytest.mark.unit_integration
def test_suspend_stops_capture(process_backend_factory, raw_path):
    backend = process_backend_factory("normal")
    recorder = InterruptionRecorder()
    backend.set_interruption_handler(recorder)
    handle = backend.acquire(raw_path)

    backend.suspend()

    assert handle.process.has_exited
    _, error = recorder.calls[0]
    assert isinstance(error, DeviceInterruptedError)
    assert len(recorder.calls) == 1


@pytest.mark.unit_integration
def test_resume_allows_acquire(process_backend_factory, raw_path):
    backend = process_backend_factory("normal")
    backend.suspend()

    with pytest.raises(CameraBusyError):
        backend.acquire(raw_path)

    backend.resume()
    handle = backend.acquire(raw_path)
    backend.finalize(handle)


# =============================================================================
# AVAILABILITY / CLEANUP
# =============================================================================


@pytest.mark.unit
def test_is_available(process_backend_factory, supervisor):
    assert process_backend_factory("normal").is_available() is True
    assert ProcessBackend(supervisor, capture_command=["no-such-binary-4242"]).is_available() is False


@pytest.mark.unit_integration
def test_cleanup_stops_capture(process_backend_factory, raw_path):
    backend = process_backend_factory("normal")
    handle = backend.acquire(raw_path)

    backend.cleanup()

    assert handle.process.has_exited
    assert handle.finalized is True
    assert backend.is_capturing() is False
