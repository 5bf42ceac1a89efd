"""
Capture Interfaces Package

Exposes the backend contract and the capture error taxonomy.
"""

from capture.interfaces.capture_backend_interface import (
    AcquireHandle,
    AcquisitionFailedError,
    BinaryNotFoundError,
    CameraBusyError,
    CameraNotFoundError,
    CameraPermissionError,
    CaptureBackendInterface,
    CaptureError,
    DeviceInterruptedError,
    FinalizeError,
    InterruptionHandler,
    ProcessSpawnError,
    TranscodeError,
    UnsupportedFormatError,
)

__all__ = [
    "AcquireHandle",
    "AcquisitionFailedError",
    "BinaryNotFoundError",
    "CameraBusyError",
    "CameraNotFoundError",
    "CameraPermissionError",
    "CaptureBackendInterface",
    "CaptureError",
    "DeviceInterruptedError",
    "FinalizeError",
    "InterruptionHandler",
    "ProcessSpawnError",
    "TranscodeError",
    "UnsupportedFormatError",
]
