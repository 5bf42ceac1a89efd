"""
Capture Constants

Enums, the session transition table and command-line builders for the
capture subsystem. Tunable values live in config/settings.py.
"""

import signal
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List, Sequence

from config.settings import CAPTURE_COMMAND, VIDEO_FPS, VIDEO_HEIGHT, VIDEO_WIDTH

# =============================================================================
# SESSION STATE TRACKING
# =============================================================================


class SessionState(Enum):
    """
    States a capture session can be in.

    Lifecycle: IDLE -> INITIALIZING -> RECORDING -> STOPPING -> FINALIZING
               -> COMPLETED
    FAILED is reachable from every non-idle, non-terminal state.
    """

    IDLE = "idle"  # No session work done yet
    INITIALIZING = "initializing"  # Allocating path, acquiring camera
    RECORDING = "recording"  # Bytes are being produced
    STOPPING = "stopping"  # Backend finalizing the raw file
    FINALIZING = "finalizing"  # Verifying output, optional transcode
    COMPLETED = "completed"  # Terminal success
    FAILED = "failed"  # Terminal error

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.FAILED)


SESSION_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.INITIALIZING}),
    SessionState.INITIALIZING: frozenset(
        {SessionState.RECORDING, SessionState.FAILED}
    ),
    SessionState.RECORDING: frozenset({SessionState.STOPPING, SessionState.FAILED}),
    SessionState.STOPPING: frozenset({SessionState.FINALIZING, SessionState.FAILED}),
    SessionState.FINALIZING: frozenset(
        {SessionState.COMPLETED, SessionState.FAILED}
    ),
    SessionState.COMPLETED: frozenset(),
    SessionState.FAILED: frozenset(),
}

# States in which a session holds the camera or a process
ACTIVE_STATES = frozenset(
    {
        SessionState.INITIALIZING,
        SessionState.RECORDING,
        SessionState.STOPPING,
        SessionState.FINALIZING,
    }
)


class BackendKind(Enum):
    """Acquisition strategy, fixed when the controller is built"""

    SDK = "sdk"  # In-process camera driver
    PROCESS = "process"  # External capture command


# =============================================================================
# PROCESS EXIT HANDLING
# =============================================================================

# Exit codes of a capture process that stopped because we asked it to:
# clean exit, killed by our SIGTERM (no handler), shell-style 128 + SIGTERM
GRACEFUL_EXIT_CODES = frozenset({0, -signal.SIGTERM, 128 + signal.SIGTERM})

# stderr lines containing these are logged at ERROR/WARNING level
ERROR_TOKENS = ("error", "failed", "invalid", "unable", "no cameras", "denied")
WARNING_TOKENS = ("warning", "warn", "deprecated", "dropped")

# Substrings used to classify why a capture process died at startup
BUSY_TOKENS = ("device or resource busy", "busy", "in use")
PERMISSION_TOKENS = ("permission denied", "operation not permitted")
NOT_FOUND_TOKENS = ("no cameras available", "no such file or directory", "not found")


# =============================================================================
# COMMAND BUILDERS
# =============================================================================


def get_capture_command(
    output_file: Path,
    width: int = VIDEO_WIDTH,
    height: int = VIDEO_HEIGHT,
    fps: int = VIDEO_FPS,
    duration_ms: int = 0,
    command: Sequence[str] = CAPTURE_COMMAND,
) -> List[str]:
    """
    Generate the capture command argument vector.

    Every argument is listed explicitly; nothing is left to the tool's
    defaults.

    Args:
        output_file: Raw output path
        width: Video width in pixels
        height: Video height in pixels
        fps: Frame rate
        duration_ms: Capture duration (0 = run until stopped)
        command: Executable (and any fixed leading arguments)

    Returns:
        List of command arguments for subprocess

    Example:
        get_capture_command(Path("/home/pi/videos/video_1.h264"))
        # ['libcamera-vid', '--output', '/home/pi/videos/video_1.h264',
        #  '--width', '1920', '--height', '1080', '--framerate', '30',
        #  '--nopreview', '--timeout', '0']
    """
    return [
        *command,
        "--output",
        str(output_file),
        "--width",
        str(width),
        "--height",
        str(height),
        "--framerate",
        str(fps),
        "--nopreview",  # Headless: no preview window
        "--timeout",
        str(duration_ms),  # 0 = run until signalled
    ]


def get_transcode_command(
    template: Sequence[str],
    input_file: Path,
    output_file: Path,
) -> List[str]:
    """
    Fill a transcode command template.

    Example:
        get_transcode_command(
            ["MP4Box", "-add", "{input}", "{output}"],
            Path("video_1.h264"),
            Path("video_1.mp4"),
        )
        # ['MP4Box', '-add', 'video_1.h264', 'video_1.mp4']
    """
    return [
        part.replace("{input}", str(input_file)).replace("{output}", str(output_file))
        for part in template
    ]

