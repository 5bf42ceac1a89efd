"""
Central Configuration File

ALL configuration values live here. This is the single source of truth.

Guidelines:
- Deployment-specific values can be overridden from .env or the environment
- Per-device capture tuning can be overridden in config/capture.yaml
  (see config/capture_config.py)
- Import these settings in modules: from config.settings import VIDEO_WIDTH
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# =============================================================================
# CAPTURE BACKEND CONFIGURATION
# =============================================================================

# Which acquisition strategy to use: "auto", "process", "sdk" or "mock"
# auto = external capture command if installed, camera SDK otherwise
CAPTURE_BACKEND = os.getenv("CAPTURE_BACKEND", "auto")

# External capture command (argument vector prefix, never a shell string)
CAPTURE_COMMAND = ["libcamera-vid"]

# Camera index for the in-process SDK backend
SDK_CAMERA_NUM = int(os.getenv("SDK_CAMERA_NUM", "0"))
SDK_H264_BITRATE = 10_000_000  # bits per second

# =============================================================================
# VIDEO CONFIGURATION
# =============================================================================

VIDEO_WIDTH = 1920
VIDEO_HEIGHT = 1080
VIDEO_FPS = 30

# Capture duration passed to the capture command, in milliseconds
# 0 = run until stopped
CAPTURE_DURATION_MS = int(os.getenv("CAPTURE_DURATION_MS", "0"))

# Modes the external capture tool is known to support on this camera
# Requests outside this list fail at acquisition instead of being substituted
SUPPORTED_RESOLUTIONS = [
    (640, 480),
    (1280, 720),
    (1920, 1080),
]
MAX_FPS_BY_RESOLUTION = {
    (640, 480): 90,
    (1280, 720): 60,
    (1920, 1080): 30,
}

# Raw stream extension written by the capture backends
RAW_EXTENSION = "h264"

# =============================================================================
# PROCESS SUPERVISION
# =============================================================================

# Process must still be alive this long after spawn to count as recording
LIVENESS_CHECK_TIME = 1.0  # seconds

# Wait after graceful stop signal before escalating to a forceful kill
STOP_GRACE_PERIOD = float(os.getenv("STOP_GRACE_PERIOD", "5.0"))  # seconds

# Wait for the kernel to reap a killed process
KILL_WAIT_TIMEOUT = 2.0  # seconds

# =============================================================================
# TRANSCODE CONFIGURATION
# =============================================================================

TRANSCODE_ENABLED = os.getenv("TRANSCODE_ENABLED", "true").lower() == "true"

# {input} and {output} are replaced with the raw and converted paths
TRANSCODE_COMMAND = ["MP4Box", "-add", "{input}", "{output}"]
TRANSCODE_EXTENSION = "mp4"
TRANSCODE_TIMEOUT = 300.0  # seconds

# =============================================================================
# STORAGE CONFIGURATION
# =============================================================================

# Explicit storage root (empty = platform default below)
STORAGE_ROOT = os.getenv("CAPTURE_STORAGE_ROOT", "")

# Fixed root on the target device
DEVICE_STORAGE_PATH = Path("/home/pi/videos")

# Root relative to the user's home everywhere else
USER_STORAGE_SUBDIR = Path("Documents") / "videos"

# File used to detect the target device
DEVICE_MODEL_FILE = Path("/proc/device-tree/model")
DEVICE_MODEL_MARKER = "Raspberry Pi"

# Video File Naming: video_<epoch milliseconds>.<extension>
VIDEO_FILENAME_PREFIX = "video"

# Refuse to start a session below this much free space
MIN_FREE_SPACE_BYTES = 500 * 1024 * 1024  # 500 MB

# Remove partial output of sessions that end in FAILED
DISCARD_PARTIAL_ON_FAILURE = True

# =============================================================================
# EVENT BUS CONFIGURATION
# =============================================================================

EVENT_HISTORY_SIZE = 500  # Events kept for replay
SUBSCRIBER_QUEUE_SIZE = 1000  # Per-subscriber buffer before dropping

# =============================================================================
# SERVICE CONFIGURATION
# =============================================================================

# Main loop period
SERVICE_LOOP_INTERVAL = 0.1  # seconds

# Remote Control Configuration
# File-based control for triggering actions via SSH/scripts
# Commands: TOGGLE, START, STOP, STATUS, SUSPEND, RESUME
CONTROL_FILE = os.getenv(
    "CONTROL_FILE",
    "/tmp/capture_control.cmd",  # noqa: S108
)

# Status file for out-of-process observers (JSON)
STATUS_FILE = os.getenv(
    "STATUS_FILE",
    "/tmp/capture_status.json",  # noqa: S108
)

# Logging Configuration
LOG_DIR = os.getenv("LOG_DIR", "/var/log/capture")
LOG_SERVICE_FILE = "service.log"
LOG_BACKUP_DAYS = 7
