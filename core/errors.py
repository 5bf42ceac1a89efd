"""
Error Taxonomy

Kinds of failure a capture session can end with, shared by the capture
and storage packages.
"""

from enum import Enum


class ErrorKind(Enum):
    """
    Classification stored with every session error.

    Values are the names reported in events and the status file.
    """

    ACQUISITION_FAILED = "AcquisitionFailed"  # Device/process could not start
    DEVICE_INTERRUPTED = "DeviceInterrupted"  # Preempted while recording
    FINALIZE_ERROR = "FinalizeError"  # Stop did not produce a valid file
    TRANSCODE_DEGRADED = "TranscodeDegraded"  # Non-fatal, raw file kept
    STORAGE_ERROR = "StorageError"  # Output directory unusable


class SessionError(Exception):
    """
    Base class for errors that can end (or degrade) a capture session.

    Subclasses set `kind`. The underlying cause is kept via `raise ... from`.
    """

    kind: ErrorKind = ErrorKind.ACQUISITION_FAILED

    def describe(self) -> str:
        """Human-readable '<Kind>: message' string"""
        return f"{self.kind.value}: {self}"
