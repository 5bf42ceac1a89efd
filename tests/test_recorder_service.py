"""
Recorder Service Tests

Remote commands, control file handling and the JSON status file.

To run:
    pytest tests/test_recorder_service.py -v
"""

import json

import pytest

from capture.constants import SessionState
from capture.controllers.session_controller import SessionController
from capture.implementations.mock_backend import MockBackend
from recorder_service import RecorderService
from storage.path_resolver import PathResolver


@pytest.fixture
def backend():
    return MockBackend(payload=b"\x00\x00\x00\x01service-test")


@pytest.fixture
def service(backend, event_bus, temp_recording_dir):
    """
    Provide RecorderService over a mock-backed controller.

    Control and status files live in a temporary directory.
    """
    controller = SessionController(
        backend,
        event_bus=event_bus,
        path_resolver=PathResolver(
            root=temp_recording_dir / "videos", min_free_space_bytes=0
        ),
    )
    svc = RecorderService(
        controller,
        control_file=temp_recording_dir / "control.cmd",
        status_file=temp_recording_dir / "status.json",
        install_signal_handlers=False,
    )
    yield svc
    controller.shutdown(grace_period=2.0)


def read_status(service):
    return json.loads(service.status_file.read_text())


# =============================================================================
# COMMANDS
# =============================================================================


@pytest.mark.unit
def test_toggle_command(service):
    assert service.process_command("TOGGLE") is True
    assert service.controller.current_state() == SessionState.RECORDING

    assert service.process_command("toggle") is True
    assert service.controller.current_state() == SessionState.COMPLETED


@pytest.mark.unit
def test_start_stop_commands(service):
    assert service.process_command("START") is True
    assert service.process_command("START") is False
    assert service.process_command("STOP") is True
    assert service.process_command("STOP") is False


@pytest.mark.unit
def test_suspend_resume_commands(service, backend):
    service.process_command("START")

    assert service.process_command("SUSPEND") is True
    assert service.controller.current_state() == SessionState.FAILED

    assert service.process_command("RESUME") is True
    assert backend.resume_calls == 1


@pytest.mark.unit
def test_unknown_command(service):
    assert service.process_command("SELF_DESTRUCT") is False
    assert service.controller.current_state() == SessionState.IDLE


# =============================================================================
# CONTROL FILE
# =============================================================================


@pytest.mark.unit
def test_control_file_consumed(service):
    service.control_file.write_text("start\n")

    service._update_loop()

    assert not service.control_file.exists()
    assert service.controller.current_state() == SessionState.RECORDING


@pytest.mark.unit
def test_no_control_file(service):
    service._update_loop()

    assert service.controller.current_state() == SessionState.IDLE


@pytest.mark.unit
def test_toggle_signal_handled_in_loop(service):
    service._toggle_signal_handler(None, None)

    service._update_loop()

    assert service.controller.current_state() == SessionState.RECORDING


# =============================================================================
# STATUS
# =============================================================================


@pytest.mark.unit
def test_status_written_on_startup_loop(service):
    service._update_loop()

    status = read_status(service)
    assert status["state"] == "idle"
    assert status["backend"] == "sdk"
    assert status["session_id"] is None
    assert status["final_output_path"] is None


@pytest.mark.unit
def test_status_after_completed_session(service):
    service.process_command("START")
    service.process_command("STOP")

    service._update_loop()

    status = read_status(service)
    session = service.controller.current_session
    assert status["state"] == "completed"
    assert status["session_id"] == session.id
    assert status["final_output_path"] == str(session.final_output_path)
    assert status["last_error"] is None


@pytest.mark.unit
def test_status_after_failure(service, backend):
    backend.simulate_start_failure()
    service.process_command("START")

    service._update_loop()

    status = read_status(service)
    assert status["state"] == "failed"
    assert status["error_kind"] == "AcquisitionFailed"
    assert status["last_error"].startswith("AcquisitionFailed:")


@pytest.mark.unit
def test_status_write_failure_is_logged(service, temp_recording_dir):
    service.status_file = temp_recording_dir / "missing" / "status.json"

    # Must not raise
    service.write_status()

    assert not service.status_file.exists()


@pytest.mark.unit
def test_shutdown_completes_recording(service):
    service.process_command("START")

    service._shutdown()

    assert service.controller.current_state() == SessionState.COMPLETED
    assert read_status(service)["state"] == "completed"
