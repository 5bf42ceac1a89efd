"""
Capture Backend Interface

Abstract interface for acquisition strategies.
Defines the contract that any capture backend must follow.

The session controller depends on this abstraction only, so it never needs
to know whether bytes come from an in-process camera driver or an external
capture command.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional

from capture.constants import BackendKind
from core.errors import ErrorKind, SessionError

if TYPE_CHECKING:
    from capture.controllers.subprocess_supervisor import SubprocessHandle


@dataclass
class AcquireHandle:
    """
    Proof that a backend is producing bytes at destination.

    Returned by acquire(), passed back to finalize().
    """

    destination: Path
    backend_kind: BackendKind
    session_id: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)

    # Process backend: the supervised capture process
    process: Optional["SubprocessHandle"] = None

    # Backend-private state (SDK backend: encoder/output objects)
    backend_state: Any = None

    finalized: bool = False

    # Set when the capture ended before finalize() was asked to stop it
    lost_error: Optional["CaptureError"] = None


# Called by a backend when an active capture is lost outside of finalize()
# Arguments: the handle, and the error describing what happened
# (None = the capture ended on its own, cleanly)
InterruptionHandler = Callable[[AcquireHandle, Optional["CaptureError"]], None]


class CaptureBackendInterface(ABC):
    """
    Abstract base class for capture backends.

    Any acquisition strategy (camera SDK, external command, test double)
    must implement all these methods to work with SessionController.
    """

    @property
    @abstractmethod
    def kind(self) -> BackendKind:
        """Which acquisition strategy this is"""
        pass

    @abstractmethod
    def acquire(
        self,
        destination: Path,
        session_id: Optional[str] = None,
    ) -> AcquireHandle:
        """
        Begin producing video bytes at destination.

        Returns only once capture is confirmed running. Requested format
        parameters that the device cannot honour fail here; they are never
        silently replaced.

        Args:
            destination: Absolute path of the raw output file
            session_id: Owning session (for event tagging)

        Returns:
            Handle to pass to finalize()

        Raises:
            AcquisitionFailedError: Camera/process could not start
        """
        pass

    @abstractmethod
    def finalize(self, handle: AcquireHandle) -> None:
        """
        Stop producing bytes.

        When this returns, the file at handle.destination is flushed and
        closed.

        Raises:
            FinalizeError: Stop did not complete cleanly
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if this backend can be used on this machine.

        Should check that the driver library or capture binary is installed.
        """
        pass

    @abstractmethod
    def set_interruption_handler(
        self,
        handler: Optional[InterruptionHandler],
    ) -> None:
        """Register the callback invoked when an active capture is lost"""
        pass

    @abstractmethod
    def suspend(self) -> None:
        """
        Release the device (application sent to background).

        An active capture is interrupted and reported through the
        interruption handler as DeviceInterruptedError.
        """
        pass

    @abstractmethod
    def resume(self) -> None:
        """Re-acquire the device with the same configuration (foreground)"""
        pass

    @abstractmethod
    def cleanup(self) -> None:
        """
        Stop any active capture and release all resources.

        This should never raise exceptions.
        """
        pass


# =============================================================================
# EXCEPTIONS
# =============================================================================


class CaptureError(SessionError):
    """
    Exception raised for capture errors.

    Every subclass carries its ErrorKind in `kind`.
    """

    pass


class AcquisitionFailedError(CaptureError):
    """Device or capture process could not start"""

    kind = ErrorKind.ACQUISITION_FAILED


class CameraNotFoundError(AcquisitionFailedError):
    """Camera device not found or not accessible"""

    pass


class CameraBusyError(AcquisitionFailedError):
    """Camera is already in use by another process"""

    pass


class CameraPermissionError(AcquisitionFailedError):
    """Not allowed to open the camera"""

    pass


class BinaryNotFoundError(AcquisitionFailedError):
    """External executable is not installed"""

    pass


class ProcessSpawnError(AcquisitionFailedError):
    """External process could not be started"""

    pass


class UnsupportedFormatError(AcquisitionFailedError):
    """Requested resolution or frame rate is not supported"""

    pass


class DeviceInterruptedError(CaptureError):
    """Capture was preempted while recording (backgrounding, crash)"""

    kind = ErrorKind.DEVICE_INTERRUPTED


class FinalizeError(CaptureError):
    """Stopping did not produce a valid output file"""

    kind = ErrorKind.FINALIZE_ERROR


class TranscodeError(CaptureError):
    """Conversion failed; the raw recording is kept"""

    kind = ErrorKind.TRANSCODE_DEGRADED
