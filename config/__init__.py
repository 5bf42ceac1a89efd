"""
Configuration Package

Public API:
    - settings: Module-level defaults (single source of truth)
    - CaptureConfig: YAML-backed per-device overrides
"""

from config.capture_config import CaptureConfig

__all__ = [
    "CaptureConfig",
]
