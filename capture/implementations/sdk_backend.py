"""
SDK Capture Backend

In-process video capture through the Raspberry Pi camera library
(picamera2). The device handle is stateful: it is opened on first use,
kept open between sessions, released when the application goes to the
background and re-opened with the same configuration when it comes back.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional

try:
    from picamera2 import Picamera2
    from picamera2.encoders import H264Encoder
    from picamera2.outputs import FileOutput

    PICAMERA2_AVAILABLE = True
except ImportError:
    PICAMERA2_AVAILABLE = False

from capture.constants import BUSY_TOKENS, PERMISSION_TOKENS, BackendKind
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
    SDK_CAMERA_NUM,
    SDK_H264_BITRATE,
    VIDEO_FPS,
    VIDEO_HEIGHT,
    VIDEO_WIDTH,
)


def _default_camera_factory(camera_num: int) -> Any:
    return Picamera2(camera_num)


def _default_encoder_factory(bitrate: int) -> Any:
    return H264Encoder(bitrate=bitrate)


def _default_output_factory(destination: Path) -> Any:
    return FileOutput(str(destination))


class SDKBackend(CaptureBackendInterface):
    """
    Capture backend wrapping a picamera2 device handle.

    Usage:
        backend = SDKBackend(camera_num=0, width=1920, height=1080, fps=30)
        handle = backend.acquire(Path("/home/pi/videos/video_1.h264"))
        backend.finalize(handle)

        # Tests: inject a fake camera
        backend = SDKBackend(camera_factory=FakeCamera, ...)
    """

    def __init__(
        self,
        camera_num: int = SDK_CAMERA_NUM,
        width: int = VIDEO_WIDTH,
        height: int = VIDEO_HEIGHT,
        fps: int = VIDEO_FPS,
        bitrate: int = SDK_H264_BITRATE,
        camera_factory: Optional[Callable[[int], Any]] = None,
        encoder_factory: Optional[Callable[[int], Any]] = None,
        output_factory: Optional[Callable[[Path], Any]] = None,
    ):
        """
        Args:
            camera_num: Camera index
            width: Video width in pixels
            height: Video height in pixels
            fps: Frame rate
            bitrate: H.264 bitrate in bits per second
            camera_factory: Opens a device handle (default: Picamera2)
            encoder_factory: Builds the encoder (default: H264Encoder)
            output_factory: Builds the file sink (default: FileOutput)
        """
        self.logger = logging.getLogger(__name__)

        # Configuration
        self.camera_num = camera_num
        self.width = width
        self.height = height
        self.fps = fps
        self.bitrate = bitrate

        self._library_available = PICAMERA2_AVAILABLE or camera_factory is not None
        self._camera_factory = camera_factory or _default_camera_factory
        self._encoder_factory = encoder_factory or _default_encoder_factory
        self._output_factory = output_factory or _default_output_factory

        # Device state
        self._camera: Any = None
        self._active: Optional[AcquireHandle] = None
        self._suspended = False
        self._reopen_on_resume = False
        self._interruption_handler: Optional[InterruptionHandler] = None
        self._lock = threading.RLock()

        self.logger.info(
            f"SDK Backend initialized "
            f"(camera: {camera_num}, resolution: {width}x{height}, fps: {fps})"
        )

    @property
    def kind(self) -> BackendKind:
        return BackendKind.SDK

    # =========================================================================
    # DEVICE HANDLE
    # =========================================================================

    def _open_device(self) -> Any:
        """Open and configure the camera, classifying failures"""
        if not self._library_available:
            raise AcquisitionFailedError(
                "picamera2 library not available. "
                "Install with: sudo apt install python3-picamera2"
            )

        try:
            camera = self._camera_factory(self.camera_num)
        except IndexError as e:
            raise CameraNotFoundError(f"Camera {self.camera_num} not found") from e
        except PermissionError as e:
            raise CameraPermissionError(
                f"Permission denied opening camera {self.camera_num}"
            ) from e
        except Exception as e:
            raise self._classify_open_failure(e) from e

        try:
            self._configure(camera)
        except Exception:
            self._close_camera(camera)
            raise

        self.logger.info(f"Camera {self.camera_num} opened and configured")
        return camera

    def _configure(self, camera: Any) -> None:
        """
        Apply the requested format, refusing any substitution.

        Raises:
            UnsupportedFormatError: No sensor mode covers the request, or the
                                    driver configured something else
        """
        sensor_modes = list(getattr(camera, "sensor_modes", None) or [])
        if sensor_modes and not any(
            mode["size"][0] >= self.width
            and mode["size"][1] >= self.height
            and mode.get("fps", 0) >= self.fps
            for mode in sensor_modes
        ):
            available = ", ".join(
                f"{m['size'][0]}x{m['size'][1]}@{m.get('fps', 0):.0f}"
                for m in sensor_modes
            )
            raise UnsupportedFormatError(
                f"{self.width}x{self.height}@{self.fps} not supported "
                f"by camera {self.camera_num} (modes: {available})"
            )

        try:
            config = camera.create_video_configuration(
                main={"size": (self.width, self.height)},
                controls={"FrameRate": self.fps},
            )
            camera.configure(config)
        except Exception as e:
            raise UnsupportedFormatError(f"Camera rejected configuration: {e}") from e

        configured = tuple(camera.camera_configuration()["main"]["size"])
        if configured != (self.width, self.height):
            raise UnsupportedFormatError(
                f"Camera configured {configured[0]}x{configured[1]} "
                f"instead of {self.width}x{self.height}"
            )

    def _classify_open_failure(self, error: Exception) -> AcquisitionFailedError:
        lowered = str(error).lower()
        if any(token in lowered for token in BUSY_TOKENS):
            return CameraBusyError(f"Camera {self.camera_num} is busy: {error}")
        if any(token in lowered for token in PERMISSION_TOKENS):
            return CameraPermissionError(
                f"Permission denied opening camera {self.camera_num}: {error}"
            )
        return AcquisitionFailedError(
            f"Failed to open camera {self.camera_num}: {error}"
        )

    def _close_camera(self, camera: Any) -> None:
        try:
            camera.close()
        except Exception as e:
            self.logger.warning(f"Error closing camera: {e}")

    # =========================================================================
    # ACQUIRE / FINALIZE
    # =========================================================================

    def acquire(
        self,
        destination: Path,
        session_id: Optional[str] = None,
    ) -> AcquireHandle:
        """
        Start encoding to destination.

        Capture is confirmed once start_recording() has returned.
        """
        with self._lock:
            if self._active is not None:
                raise AcquisitionFailedError(
                    f"Capture already active: {self._active.destination}"
                )
            if self._suspended:
                raise CameraBusyError("Camera released while in background")

            if self._camera is None:
                self._camera = self._open_device()

            encoder = self._encoder_factory(self.bitrate)
            output = self._output_factory(destination)

            self.logger.info(f"Starting capture to: {destination}")
            try:
                self._camera.start_recording(encoder, output)
            except Exception as e:
                # Device is in an unknown state: drop it, reopen next time
                self._close_camera(self._camera)
                self._camera = None
                raise self._classify_open_failure(e) from e

            handle = AcquireHandle(
                destination=destination,
                backend_kind=self.kind,
                session_id=session_id,
                backend_state=encoder,
            )
            self._active = handle

        self.logger.info("Capture started successfully")
        return handle

    def finalize(self, handle: AcquireHandle) -> None:
        """
        Stop the encoder; the output file is closed when this returns.
        """
        with self._lock:
            if handle.finalized:
                if handle.lost_error is not None:
                    raise FinalizeError(
                        f"Capture ended before it was stopped: {handle.lost_error}"
                    ) from handle.lost_error
                return
            if self._active is not handle or self._camera is None:
                handle.finalized = True
                raise FinalizeError("Capture is no longer active")

            self.logger.info("Stopping capture...")
            try:
                self._camera.stop_recording()
            except Exception as e:
                self._close_camera(self._camera)
                self._camera = None
                raise FinalizeError(f"Camera failed to stop recording: {e}") from e
            finally:
                self._active = None
                handle.finalized = True

        self.logger.info("Capture stopped successfully")

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
        Release the device handle (background).

        An in-flight capture is stopped and reported as interrupted.
        """
        with self._lock:
            self._suspended = True
            handle = self._active
            self._active = None

            if self._camera is None:
                self._reopen_on_resume = False
                self.logger.info("SDK backend suspended (device not open)")
                return

            if handle is not None:
                try:
                    self._camera.stop_recording()
                except Exception as e:
                    self.logger.warning(f"Error stopping recording on suspend: {e}")
                handle.lost_error = DeviceInterruptedError(
                    "Capture preempted: camera released"
                )
                handle.finalized = True

            self._close_camera(self._camera)
            self._camera = None
            self._reopen_on_resume = True

        self.logger.info("SDK backend suspended, camera released")

        if handle is not None and self._interruption_handler:
            try:
                self._interruption_handler(handle, handle.lost_error)
            except Exception as e:
                self.logger.error(f"Error in interruption handler: {e}")

    def resume(self) -> None:
        """
        Re-open the device with the same configuration (foreground).

        Raises:
            AcquisitionFailedError: Device could not be re-opened
        """
        with self._lock:
            if not self._suspended:
                return
            self._suspended = False
            if self._reopen_on_resume and self._camera is None:
                self._reopen_on_resume = False
                self._camera = self._open_device()

        self.logger.info("SDK backend resumed")

    def is_capturing(self) -> bool:
        with self._lock:
            return self._active is not None

    def is_available(self) -> bool:
        """
        Check if picamera2 is installed and a camera is attached.
        """
        if not self._library_available:
            self.logger.warning("picamera2 not installed")
            return False

        if PICAMERA2_AVAILABLE and self._camera_factory is _default_camera_factory:
            try:
                if not Picamera2.global_camera_info():
                    self.logger.warning("No cameras detected")
                    return False
            except Exception as e:
                self.logger.warning(f"Camera enumeration failed: {e}")
                return False

        return True

    def cleanup(self) -> None:
        """
        Stop capture and release the camera.
        """
        self.logger.info("Cleaning up SDK Backend")

        with self._lock:
            if self._camera is not None:
                if self._active is not None:
                    try:
                        self._camera.stop_recording()
                    except Exception as e:
                        self.logger.error(f"Error stopping capture: {e}")
                    self._active.finalized = True
                    self._active = None
                self._close_camera(self._camera)
                self._camera = None

        self.logger.info("SDK Backend cleanup complete")
