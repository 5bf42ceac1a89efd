"""
Capture Implementations Package

Concrete acquisition strategies.
"""

from capture.implementations.mock_backend import MockBackend
from capture.implementations.process_backend import ProcessBackend
from capture.implementations.sdk_backend import SDKBackend

__all__ = [
    "MockBackend",
    "ProcessBackend",
    "SDKBackend",
]
