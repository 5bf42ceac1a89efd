"""
Capture Module

Headless video capture sessions: acquire a camera, record to a unique file,
finalize, optionally convert, and report progress on the event bus.

Two interchangeable acquisition strategies sit behind one interface: the
in-process camera SDK (picamera2) and an external capture command
(libcamera-vid) run under the subprocess supervisor.

Public API:
    - SessionController: start/stop/toggle state machine
    - create_controller: Fully wired controller from configuration
    - CaptureFactory: Backend selection
    - CaptureBackendInterface: Backend contract
    - SessionState / BackendKind: Enumerations
    - CaptureError and subclasses: Error taxonomy

Usage:
    from capture import create_controller

    controller = create_controller()
    controller.toggle()   # start
    controller.toggle()   # stop, finalize, convert
    print(controller.final_output_path)
"""

from capture.constants import BackendKind, SessionState
from capture.interfaces.capture_backend_interface import (
    AcquireHandle,
    AcquisitionFailedError,
    CaptureBackendInterface,
    CaptureError,
    DeviceInterruptedError,
    FinalizeError,
    TranscodeError,
)
from capture.controllers.session_controller import SessionController
from capture.controllers.subprocess_supervisor import SubprocessSupervisor
from capture.controllers.transcoder import Transcoder
from capture.models.session import Session
from capture.factory import CaptureFactory, create_controller

__all__ = [
    "AcquireHandle",
    "AcquisitionFailedError",
    "BackendKind",
    "CaptureBackendInterface",
    "CaptureError",
    "CaptureFactory",
    "DeviceInterruptedError",
    "FinalizeError",
    "Session",
    "SessionController",
    "SessionState",
    "SubprocessSupervisor",
    "TranscodeError",
    "Transcoder",
    "create_controller",
]
