"""
Capture Factory

Factory pattern for creating capture backends and wiring a controller.
Single place to decide which acquisition strategy is used.
"""

import logging
from typing import Dict, Literal, Optional

from capture.controllers.session_controller import SessionController
from capture.controllers.subprocess_supervisor import SubprocessSupervisor
from capture.controllers.transcoder import Transcoder
from capture.implementations.mock_backend import MockBackend
from capture.implementations.process_backend import ProcessBackend
from capture.implementations.sdk_backend import PICAMERA2_AVAILABLE, SDKBackend
from capture.interfaces.capture_backend_interface import CaptureBackendInterface
from config.capture_config import CaptureConfig
from core.event_bus import EventBus
from storage.path_resolver import PathResolver

# Type alias for better type hints
BackendMode = Literal["auto", "process", "sdk", "mock"]


class CaptureFactory:
    """
    Factory for creating capture backends.

    Usage:
        # Auto-detect (capture command if installed, camera SDK otherwise)
        backend = CaptureFactory.create_backend(supervisor=supervisor)

        # Force a strategy (raises if not available)
        backend = CaptureFactory.create_backend(mode="sdk")

        # Tests: no hardware
        backend = CaptureFactory.create_backend(mode="mock")
    """

    _logger = logging.getLogger(__name__)

    @classmethod
    def create_backend(
        cls,
        mode: Optional[BackendMode] = None,
        config: Optional[CaptureConfig] = None,
        supervisor: Optional[SubprocessSupervisor] = None,
    ) -> CaptureBackendInterface:
        """
        Create a capture backend.

        Args:
            mode: "auto", "process", "sdk" or "mock" (None = from config)
            config: Capture configuration (None = defaults)
            supervisor: Required by the process backend

        Returns:
            CaptureBackendInterface implementation

        Raises:
            RuntimeError: Requested backend not available, or none found
        """
        config = config or CaptureConfig()
        mode = mode or config.backend

        if mode == "mock":
            cls._logger.info("Creating Mock Backend")
            return MockBackend()

        if mode == "process":
            backend = cls._create_process_backend(config, supervisor)
            if not backend.is_available():
                raise RuntimeError(
                    f"Process backend requested but {config.capture_command[0]} "
                    f"is not installed"
                )
            cls._logger.info("Creating Process Backend (forced)")
            return backend

        if mode == "sdk":
            backend = cls._create_sdk_backend(config)
            if not backend.is_available():
                raise RuntimeError("SDK backend requested but no camera available")
            cls._logger.info("Creating SDK Backend (forced)")
            return backend

        if mode != "auto":
            raise ValueError(f"Unknown capture backend: {mode}")

        # auto: external capture command first, camera SDK second
        backend = cls._create_process_backend(config, supervisor)
        if backend.is_available():
            cls._logger.info("Creating Process Backend (auto-detected)")
            return backend

        if PICAMERA2_AVAILABLE:
            backend = cls._create_sdk_backend(config)
            if backend.is_available():
                cls._logger.info("Creating SDK Backend (auto-detected)")
                return backend

        raise RuntimeError(
            f"No capture backend available: install {config.capture_command[0]} "
            f"or picamera2"
        )

    @classmethod
    def _create_process_backend(
        cls,
        config: CaptureConfig,
        supervisor: Optional[SubprocessSupervisor],
    ) -> ProcessBackend:
        if supervisor is None:
            supervisor = SubprocessSupervisor(
                EventBus(),
                default_grace_period=config.stop_grace_period,
                kill_wait_timeout=config.kill_wait_timeout,
            )
        return ProcessBackend(
            supervisor,
            capture_command=config.capture_command,
            width=config.video_width,
            height=config.video_height,
            fps=config.video_fps,
            duration_ms=config.capture_duration_ms,
            supported_resolutions=config.supported_resolutions,
            max_fps_by_resolution=config.max_fps_by_resolution,
            liveness_check_time=config.liveness_check_time,
            stop_grace_period=config.stop_grace_period,
        )

    @classmethod
    def _create_sdk_backend(cls, config: CaptureConfig) -> SDKBackend:
        return SDKBackend(
            camera_num=config.sdk_camera_num,
            width=config.video_width,
            height=config.video_height,
            fps=config.video_fps,
            bitrate=config.sdk_bitrate,
        )

    @classmethod
    def available_backends(cls, config: Optional[CaptureConfig] = None) -> Dict[str, bool]:
        """
        Check which real backends can be used on this machine.

        Useful for diagnostics and configuration display.

        Returns:
            {'process': True/False, 'sdk': True/False}
        """
        config = config or CaptureConfig()
        status = {"process": False, "sdk": False}

        try:
            status["process"] = cls._create_process_backend(config, None).is_available()
        except Exception as e:
            cls._logger.debug(f"Process backend check failed: {e}")

        if PICAMERA2_AVAILABLE:
            try:
                status["sdk"] = cls._create_sdk_backend(config).is_available()
            except Exception as e:
                cls._logger.debug(f"SDK backend check failed: {e}")

        return status


def create_controller(
    config: Optional[CaptureConfig] = None,
    mode: Optional[BackendMode] = None,
    event_bus: Optional[EventBus] = None,
) -> SessionController:
    """
    Build a fully wired SessionController.

    Args:
        config: Capture configuration (None = defaults + config/capture.yaml)
        mode: Backend override (None = config.backend)
        event_bus: Shared bus (None = new bus sized from config)

    Example:
        controller = create_controller(mode="mock")
        controller.toggle()
    """
    config = config or CaptureConfig()
    event_bus = event_bus or EventBus(
        history_size=config.event_history_size,
        subscriber_queue_size=config.subscriber_queue_size,
    )
    supervisor = SubprocessSupervisor(
        event_bus,
        default_grace_period=config.stop_grace_period,
        kill_wait_timeout=config.kill_wait_timeout,
    )

    backend = CaptureFactory.create_backend(mode, config, supervisor)

    transcoder = None
    if config.transcode_enabled:
        transcoder = Transcoder(
            supervisor,
            command_template=config.transcode_command,
            output_extension=config.transcode_extension,
            source_extension=config.raw_extension,
            timeout=config.transcode_timeout,
        )

    return SessionController(
        backend,
        event_bus=event_bus,
        path_resolver=PathResolver(
            root=config.storage_root,
            min_free_space_bytes=config.min_free_space_bytes,
        ),
        transcoder=transcoder,
        supervisor=supervisor,
        raw_extension=config.raw_extension,
        discard_partial_on_failure=config.discard_partial_on_failure,
    )
