"""
Capture Configuration

Per-device overrides for capture settings, loaded from YAML.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from config import settings

VALID_BACKENDS = ("auto", "process", "sdk", "mock")


class CaptureConfig:
    """
    Capture configuration with YAML file support.

    Reads from config/capture.yaml if it exists,
    otherwise uses defaults from config/settings.py.

    Usage:
        config = CaptureConfig()
        width = config.video_width
        grace = config.stop_grace_period

        # Tests: explicit overrides, no file
        config = CaptureConfig(overrides={"liveness_check_time": 0.2})
    """

    # Default config file location
    DEFAULT_CONFIG_PATH = Path("config/capture.yaml")

    def __init__(
        self,
        config_path: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file (None = use default)
            overrides: Values applied on top of defaults and file contents
        """
        self.logger = logging.getLogger(__name__)
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH

        self._config = self._load_config(overrides or {})

    def _get_defaults(self) -> Dict[str, Any]:
        """Get default configuration values from settings"""
        return {
            "backend": settings.CAPTURE_BACKEND,
            "capture_command": list(settings.CAPTURE_COMMAND),
            "sdk_camera_num": settings.SDK_CAMERA_NUM,
            "sdk_bitrate": settings.SDK_H264_BITRATE,
            "video_width": settings.VIDEO_WIDTH,
            "video_height": settings.VIDEO_HEIGHT,
            "video_fps": settings.VIDEO_FPS,
            "capture_duration_ms": settings.CAPTURE_DURATION_MS,
            "supported_resolutions": [
                list(size) for size in settings.SUPPORTED_RESOLUTIONS
            ],
            "max_fps_by_resolution": {
                f"{w}x{h}": fps
                for (w, h), fps in settings.MAX_FPS_BY_RESOLUTION.items()
            },
            "raw_extension": settings.RAW_EXTENSION,
            "liveness_check_time": settings.LIVENESS_CHECK_TIME,
            "stop_grace_period": settings.STOP_GRACE_PERIOD,
            "kill_wait_timeout": settings.KILL_WAIT_TIMEOUT,
            "transcode_enabled": settings.TRANSCODE_ENABLED,
            "transcode_command": list(settings.TRANSCODE_COMMAND),
            "transcode_extension": settings.TRANSCODE_EXTENSION,
            "transcode_timeout": settings.TRANSCODE_TIMEOUT,
            "storage_root": settings.STORAGE_ROOT or None,
            "min_free_space_bytes": settings.MIN_FREE_SPACE_BYTES,
            "discard_partial_on_failure": settings.DISCARD_PARTIAL_ON_FAILURE,
            "event_history_size": settings.EVENT_HISTORY_SIZE,
            "subscriber_queue_size": settings.SUBSCRIBER_QUEUE_SIZE,
        }

    def _load_config(self, overrides: Dict[str, Any]) -> Dict[str, Any]:
        """Load configuration from YAML file or use defaults"""
        config = self._get_defaults()

        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    file_config = yaml.safe_load(f) or {}

                # File overrides defaults
                config.update(file_config)

                self.logger.info(f"Loaded config from {self.config_path}")

            except (OSError, yaml.YAMLError) as e:
                self.logger.warning(
                    f"Failed to load config from {self.config_path}: {e}. "
                    f"Using defaults."
                )
        else:
            self.logger.debug(
                f"Config file not found at {self.config_path}. Using defaults."
            )

        config.update(overrides)

        self._validate_config(config)

        return config

    def _validate_config(self, config: Dict[str, Any]) -> None:
        """Validate configuration values"""
        if config["backend"] not in VALID_BACKENDS:
            raise ValueError(
                f"backend must be one of {VALID_BACKENDS}: {config['backend']}"
            )

        for key in ("video_width", "video_height", "video_fps"):
            if int(config[key]) <= 0:
                raise ValueError(f"{key} must be positive")

        for key in (
            "capture_duration_ms",
            "liveness_check_time",
            "stop_grace_period",
            "kill_wait_timeout",
            "transcode_timeout",
            "min_free_space_bytes",
        ):
            if config[key] < 0:
                raise ValueError(f"{key} cannot be negative")

        if not config["capture_command"]:
            raise ValueError("capture_command cannot be empty")

        if config["transcode_enabled"]:
            template = " ".join(config["transcode_command"])
            if "{input}" not in template or "{output}" not in template:
                raise ValueError(
                    "transcode_command must contain {input} and {output}"
                )

        if config["storage_root"] and not Path(config["storage_root"]).is_absolute():
            raise ValueError(
                f"storage_root must be absolute path: {config['storage_root']}"
            )

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    @property
    def backend(self) -> str:
        return self._config["backend"]

    @property
    def capture_command(self) -> List[str]:
        return [str(part) for part in self._config["capture_command"]]

    @property
    def sdk_camera_num(self) -> int:
        return int(self._config["sdk_camera_num"])

    @property
    def sdk_bitrate(self) -> int:
        return int(self._config["sdk_bitrate"])

    @property
    def video_width(self) -> int:
        return int(self._config["video_width"])

    @property
    def video_height(self) -> int:
        return int(self._config["video_height"])

    @property
    def video_fps(self) -> int:
        return int(self._config["video_fps"])

    @property
    def capture_duration_ms(self) -> int:
        return int(self._config["capture_duration_ms"])

    @property
    def supported_resolutions(self) -> List[tuple]:
        return [tuple(size) for size in self._config["supported_resolutions"]]

    @property
    def max_fps_by_resolution(self) -> Dict[tuple, int]:
        """Map of (width, height) to maximum frame rate"""
        result = {}
        for key, fps in self._config["max_fps_by_resolution"].items():
            width, height = str(key).lower().split("x")
            result[(int(width), int(height))] = int(fps)
        return result

    @property
    def raw_extension(self) -> str:
        return str(self._config["raw_extension"]).lstrip(".")

    @property
    def liveness_check_time(self) -> float:
        return float(self._config["liveness_check_time"])

    @property
    def stop_grace_period(self) -> float:
        return float(self._config["stop_grace_period"])

    @property
    def kill_wait_timeout(self) -> float:
        return float(self._config["kill_wait_timeout"])

    @property
    def transcode_enabled(self) -> bool:
        return bool(self._config["transcode_enabled"])

    @property
    def transcode_command(self) -> List[str]:
        return [str(part) for part in self._config["transcode_command"]]

    @property
    def transcode_extension(self) -> str:
        return str(self._config["transcode_extension"]).lstrip(".")

    @property
    def transcode_timeout(self) -> float:
        return float(self._config["transcode_timeout"])

    @property
    def storage_root(self) -> Optional[Path]:
        root = self._config["storage_root"]
        return Path(root) if root else None

    @property
    def min_free_space_bytes(self) -> int:
        return int(self._config["min_free_space_bytes"])

    @property
    def discard_partial_on_failure(self) -> bool:
        return bool(self._config["discard_partial_on_failure"])

    @property
    def event_history_size(self) -> int:
        return int(self._config["event_history_size"])

    @property
    def subscriber_queue_size(self) -> int:
        return int(self._config["subscriber_queue_size"])

    def to_dict(self) -> Dict[str, Any]:
        """Get a copy of the merged configuration"""
        return dict(self._config)
