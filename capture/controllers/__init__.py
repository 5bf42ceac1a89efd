"""
Capture Controllers Package

Session orchestration, process supervision and conversion.
"""

from capture.controllers.session_controller import SessionController
from capture.controllers.subprocess_supervisor import (
    ProcessResult,
    SubprocessHandle,
    SubprocessSupervisor,
)
from capture.controllers.transcoder import Transcoder

__all__ = [
    "ProcessResult",
    "SessionController",
    "SubprocessHandle",
    "SubprocessSupervisor",
    "Transcoder",
]
