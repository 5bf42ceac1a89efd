"""
Process Capture Backend

Real video capture by an external command-line tool (libcamera-vid by
default) run under the subprocess supervisor.

Capture is considered started only once the process has survived a short
liveness check, not merely when the spawn call returned.
"""

import logging
import shutil
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from capture.constants import (
    BUSY_TOKENS,
    GRACEFUL_EXIT_CODES,
    NOT_FOUND_TOKENS,
    PERMISSION_TOKENS,
    BackendKind,
    get_capture_command,
)
from capture.controllers.subprocess_supervisor import (
    SubprocessHandle,
    SubprocessSupervisor,
)
from capture.interfaces.capture_backend_interface import (
    AcquireHandle,
    AcquisitionFailedError,
    CameraBusyError,
    CameraNotFoundError,
    CameraPermissionError,
    CaptureBackendInterface,
    DeviceInterruptedError,
    FinalizeError,
    InterruptionHandler,
    UnsupportedFormatError,
)
from config.settings import (
    CAPTURE_COMMAND,
    CAPTURE_DURATION_MS,
    LIVENESS_CHECK_TIME,
    MAX_FPS_BY_RESOLUTION,
    STOP_GRACE_PERIOD,
    SUPPORTED_RESOLUTIONS,
    VIDEO_FPS,
    VIDEO_HEIGHT,
    VIDEO_WIDTH,
)


class ProcessBackend(CaptureBackendInterface):
    """
    Capture backend delegating to an external capture command.

    Usage:
        backend = ProcessBackend(supervisor)
        handle = backend.acquire(Path("/home/pi/videos/video_1.h264"))
        # ... capture runs in its own process ...
        backend.finalize(handle)  # SIGTERM, grace period, then SIGKILL
    """

    def __init__(
        self,
        supervisor: SubprocessSupervisor,
        capture_command: Optional[Sequence[str]] = None,
        width: int = VIDEO_WIDTH,
        height: int = VIDEO_HEIGHT,
        fps: int = VIDEO_FPS,
        duration_ms: int = CAPTURE_DURATION_MS,
        supported_resolutions: Optional[List[Tuple[int, int]]] = None,
        max_fps_by_resolution: Optional[Dict[Tuple[int, int], int]] = None,
        liveness_check_time: float = LIVENESS_CHECK_TIME,
        stop_grace_period: float = STOP_GRACE_PERIOD,
    ):
        """
        Args:
            supervisor: Owner of the capture process
            capture_command: Executable and fixed leading arguments
            width: Video width in pixels
            height: Video height in pixels
            fps: Frame rate
            duration_ms: Capture duration passed to the tool (0 = until stopped)
            supported_resolutions: Sizes the camera supports
            max_fps_by_resolution: Frame rate ceiling per size
            liveness_check_time: Seconds the process must survive after spawn
            stop_grace_period: Seconds between SIGTERM and SIGKILL
        """
        self.logger = logging.getLogger(__name__)
        self.supervisor = supervisor

        # Configuration
        self.capture_command = list(capture_command or CAPTURE_COMMAND)
        self.width = width
        self.height = height
        self.fps = fps
        self.duration_ms = duration_ms
        self.supported_resolutions = [
            tuple(size) for size in (supported_resolutions or SUPPORTED_RESOLUTIONS)
        ]
        self.max_fps_by_resolution = dict(
            max_fps_by_resolution or MAX_FPS_BY_RESOLUTION
        )
        self.liveness_check_time = liveness_check_time
        self.stop_grace_period = stop_grace_period

        # State tracking
        self._active: Optional[AcquireHandle] = None
        self._suspended = False
        self._interruption_handler: Optional[InterruptionHandler] = None
        self._lock = threading.Lock()

        self.logger.info(
            f"Process Backend initialized "
            f"(command: {self.capture_command[0]}, "
            f"resolution: {width}x{height}, fps: {fps})"
        )

    @property
    def kind(self) -> BackendKind:
        return BackendKind.PROCESS

    # =========================================================================
    # ACQUIRE / FINALIZE
    # =========================================================================

    def acquire(
        self,
        destination: Path,
        session_id: Optional[str] = None,
    ) -> AcquireHandle:
        """
        Spawn the capture command and confirm it stays alive.
        """
        with self._lock:
            if self._active is not None:
                raise AcquisitionFailedError(
                    f"Capture already active: {self._active.destination}"
                )
            if self._suspended:
                raise CameraBusyError("Camera released while in background")

        self._check_capabilities()

        command = get_capture_command(
            output_file=destination,
            width=self.width,
            height=self.height,
            fps=self.fps,
            duration_ms=self.duration_ms,
            command=self.capture_command,
        )

        handle = AcquireHandle(
            destination=destination,
            backend_kind=self.kind,
            session_id=session_id,
        )

        self.logger.info(f"Starting capture to: {destination}")

        # BinaryNotFoundError / ProcessSpawnError propagate as acquisition failures
        handle.process = self.supervisor.spawn(
            command,
            session_id=session_id,
            label="capture",
            on_exit=lambda process: self._on_process_exit(handle, process),
        )

        # Liveness check: a capture that dies during warmup never started
        if handle.process.wait(self.liveness_check_time) is not None:
            raise self._classify_startup_failure(handle.process)

        with self._lock:
            if handle.process.has_exited:
                raise self._classify_startup_failure(handle.process)
            self._active = handle

        self.logger.info(
            f"Capture started successfully (PID: {handle.process.pid}, "
            f"duration: {self.duration_ms or 'unlimited'}ms)"
        )
        return handle

    def finalize(self, handle: AcquireHandle) -> None:
        """
        Stop the capture process gracefully and wait for it to exit.

        Raises:
            FinalizeError: Process could not be reaped, or exited with a
                           code other than a graceful one (including a
                           crash the reaper saw before this call)
        """
        if handle.finalized:
            if handle.lost_error is not None:
                raise FinalizeError(
                    f"Capture ended before it was stopped: {handle.lost_error}"
                ) from handle.lost_error
            return

        with self._lock:
            if self._active is handle:
                self._active = None

        process = handle.process
        if process is None:
            raise FinalizeError("No capture process to stop")

        self.logger.info("Stopping capture...")

        result = self.supervisor.terminate(process, self.stop_grace_period)
        handle.finalized = True

        if result.exit_code is None:
            raise FinalizeError(
                f"Capture process {process.pid} could not be reaped"
            )

        if result.killed:
            # File holds everything written before the kill
            self.logger.warning(
                f"Capture ignored SIGTERM and was killed "
                f"(exit code {result.exit_code})"
            )
        elif result.exit_code not in GRACEFUL_EXIT_CODES:
            detail = f": {process.last_error_line}" if process.last_error_line else ""
            raise FinalizeError(
                f"Capture exited with code {result.exit_code}{detail}"
            )

        self.logger.info("Capture stopped successfully")

    def _check_capabilities(self) -> None:
        """Fail fast on a format the camera cannot produce"""
        size = (self.width, self.height)
        if size not in self.supported_resolutions:
            supported = ", ".join(f"{w}x{h}" for w, h in self.supported_resolutions)
            raise UnsupportedFormatError(
                f"Resolution {self.width}x{self.height} not supported "
                f"(supported: {supported})"
            )

        max_fps = self.max_fps_by_resolution.get(size)
        if max_fps is not None and self.fps > max_fps:
            raise UnsupportedFormatError(
                f"{self.fps} fps not supported at {self.width}x{self.height} "
                f"(max {max_fps} fps)"
            )

    @staticmethod
    def _classify_startup_failure(process: SubprocessHandle) -> AcquisitionFailedError:
        """Turn an early exit into the most specific acquisition error"""
        line = process.last_error_line or ""
        lowered = line.lower()
        detail = f" (exit code {process.exit_code})" + (f": {line}" if line else "")

        if any(token in lowered for token in BUSY_TOKENS):
            return CameraBusyError(f"Camera is busy{detail}")
        if any(token in lowered for token in PERMISSION_TOKENS):
            return CameraPermissionError(f"Permission denied opening camera{detail}")
        if any(token in lowered for token in NOT_FOUND_TOKENS):
            return CameraNotFoundError(f"Camera not found{detail}")
        return AcquisitionFailedError(
            f"Capture process exited during startup{detail}"
        )

    def _on_process_exit(
        self,
        handle: AcquireHandle,
        process: SubprocessHandle,
    ) -> None:
        """Capture process ended without being asked to (reaper thread)"""
        with self._lock:
            if self._active is not handle:
                # Died during the liveness check; acquire() reports it
                return
            self._active = None

        if process.exit_code == 0:
            self.logger.info("Capture process finished on its own")
            error = None
        else:
            detail = f": {process.last_error_line}" if process.last_error_line else ""
            error = DeviceInterruptedError(
                f"Capture process exited unexpectedly with code "
                f"{process.exit_code}{detail}"
            )
            self.logger.error(str(error))

        # lost_error first: finalize() checks it once finalized is seen
        handle.lost_error = error
        handle.finalized = True

        self._notify_interruption(handle, error)

    def _notify_interruption(
        self,
        handle: AcquireHandle,
        error: Optional[DeviceInterruptedError],
    ) -> None:
        if self._interruption_handler:
            try:
                self._interruption_handler(handle, error)
            except Exception as e:
                self.logger.error(f"Error in interruption handler: {e}")

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def set_interruption_handler(
        self,
        handler: Optional[InterruptionHandler],
    ) -> None:
        self._interruption_handler = handler

    def suspend(self) -> None:
        """
        Release the camera: an active capture is stopped and reported
        as interrupted.
        """
        with self._lock:
            self._suspended = True
            handle = self._active
            self._active = None

        if handle is None:
            self.logger.info("Process backend suspended (no active capture)")
            return

        self.logger.warning("Suspending during capture, stopping capture process")
        if handle.process is not None:
            self.supervisor.terminate(handle.process, self.stop_grace_period)
        handle.lost_error = DeviceInterruptedError("Capture preempted: camera released")
        handle.finalized = True

        self._notify_interruption(handle, handle.lost_error)

    def resume(self) -> None:
        with self._lock:
            self._suspended = False
        self.logger.info("Process backend resumed")

    def is_capturing(self) -> bool:
        with self._lock:
            return self._active is not None

    def is_available(self) -> bool:
        """
        Check if the capture command is installed.
        """
        if not shutil.which(self.capture_command[0]):
            self.logger.warning(f"{self.capture_command[0]} not found in PATH")
            return False
        return True

    def cleanup(self) -> None:
        """
        Stop capture and clean up resources.
        """
        self.logger.info("Cleaning up Process Backend")

        with self._lock:
            handle = self._active
            self._active = None

        if handle is not None and handle.process is not None:
            try:
                self.supervisor.terminate(handle.process, self.stop_grace_period)
            except Exception as e:
                self.logger.error(f"Error stopping capture during cleanup: {e}")
            handle.finalized = True

        self.logger.info("Process Backend cleanup complete")
