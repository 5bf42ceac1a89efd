"""Capture data models"""

from capture.models.session import Session

__all__ = ["Session"]
