"""
Storage Module

Where recordings live on disk.

Public API:
    - PathResolver: Storage root resolution and unique output paths
    - StorageError: Root missing, unwritable or out of space
    - is_target_device: Detect the embedded target device
"""

from storage.path_resolver import PathResolver, StorageError, is_target_device

__all__ = [
    "PathResolver",
    "StorageError",
    "is_target_device",
]
