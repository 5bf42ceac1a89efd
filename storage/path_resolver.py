"""
Path Resolver

Computes the platform storage root and hands out collision-free output
paths named by capture time.

Layout:
    <root>/video_1736951422123.h264
    <root>/video_1736951422123.mp4
    <root>/video_1736951530871.h264

There is no manifest: the directory listing is the source of truth.
"""

import logging
import re
import shutil
import sys
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Set

from config.settings import (
    DEVICE_MODEL_FILE,
    DEVICE_MODEL_MARKER,
    DEVICE_STORAGE_PATH,
    MIN_FREE_SPACE_BYTES,
    USER_STORAGE_SUBDIR,
    VIDEO_FILENAME_PREFIX,
)
from core.errors import ErrorKind, SessionError

FILENAME_PATTERN = re.compile(
    rf"^{VIDEO_FILENAME_PREFIX}_(?P<token>\d+)\.(?P<ext>[A-Za-z0-9]+)$"
)


class StorageError(SessionError):
    """
    Storage root missing, unwritable, or out of space.

    Fatal for the attempted session only.
    """

    kind = ErrorKind.STORAGE_ERROR


def is_target_device(model_file: Path = DEVICE_MODEL_FILE) -> bool:
    """
    Check if we are running on the target embedded device.

    Reads the device-tree model string (e.g. "Raspberry Pi 5 Model B").
    """
    if not sys.platform.startswith("linux"):
        return False
    try:
        model = model_file.read_text(errors="ignore")
    except OSError:
        return False
    return DEVICE_MODEL_MARKER in model


class PathResolver:
    """
    Storage root resolution and unique output path allocation.

    Usage:
        resolver = PathResolver()
        root = resolver.resolve_root()
        raw = resolver.allocate_output_path(root, "h264")
        # -> /home/pi/videos/video_1736951422123.h264
    """

    def __init__(
        self,
        root: Optional[Path] = None,
        min_free_space_bytes: int = MIN_FREE_SPACE_BYTES,
        model_file: Path = DEVICE_MODEL_FILE,
    ):
        """
        Args:
            root: Explicit storage root (None = platform default)
            min_free_space_bytes: Refuse roots with less free space
            model_file: Device-tree model file used for device detection
        """
        self.logger = logging.getLogger(__name__)
        self.configured_root = Path(root) if root else None
        self.min_free_space_bytes = min_free_space_bytes
        self.model_file = model_file

        # Per root: every path handed out in this process, and the last token
        self._allocated: Dict[Path, Set[Path]] = {}
        self._last_token: Dict[Path, int] = {}
        self._lock = threading.Lock()

    def default_root(self) -> Path:
        """Platform default root, without touching the filesystem"""
        if self.configured_root:
            return self.configured_root
        if is_target_device(self.model_file):
            return DEVICE_STORAGE_PATH
        return Path.home() / USER_STORAGE_SUBDIR

    def resolve_root(self) -> Path:
        """
        Resolve the storage root and make sure it is usable.

        Creates the directory (recursively) if absent; an existing directory
        is fine.

        Returns:
            Absolute path of the storage root

        Raises:
            StorageError: Directory cannot be created, is not writable,
                          or is below the free space minimum
        """
        root = self.default_root().expanduser().resolve()

        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create storage root {root}: {e}") from e

        if not root.is_dir():
            raise StorageError(f"Storage root is not a directory: {root}")

        # Try to write a test file
        test_file = root / ".write_test"
        try:
            test_file.touch()
            test_file.unlink()
        except OSError as e:
            raise StorageError(f"Storage root not writable: {root} ({e})") from e

        free_bytes = shutil.disk_usage(root).free
        if free_bytes < self.min_free_space_bytes:
            raise StorageError(
                f"Insufficient disk space in {root}: "
                f"{free_bytes // (1024 * 1024)} MB free, "
                f"need {self.min_free_space_bytes // (1024 * 1024)} MB"
            )

        return root

    def allocate_output_path(self, root: Path, extension: str) -> Path:
        """
        Allocate a new output path under root.

        The name is derived from the capture time in milliseconds. If that
        token was already used (same millisecond, clock going backwards, or
        a file already on disk) it is bumped until unique.

        Args:
            root: Storage root (from resolve_root)
            extension: File extension, with or without leading dot

        Returns:
            Path that no earlier call returned for this root
        """
        extension = extension.lstrip(".")
        root = Path(root)

        with self._lock:
            allocated = self._allocated.setdefault(root, set())
            token = max(int(time.time() * 1000), self._last_token.get(root, 0) + 1)

            while True:
                path = root / f"{VIDEO_FILENAME_PREFIX}_{token}.{extension}"
                if path not in allocated and not path.exists():
                    break
                token += 1

            allocated.add(path)
            self._last_token[root] = token

        self.logger.debug(f"Allocated output path: {path}")
        return path

    def list_recordings(
        self,
        root: Optional[Path] = None,
        extensions: Optional[List[str]] = None,
    ) -> List[Path]:
        """
        List finished recordings, oldest first.

        Args:
            root: Storage root (None = default root)
            extensions: Only these extensions (None = all)

        Returns:
            Paths ordered by capture token
        """
        root = Path(root) if root else self.default_root()
        if not root.is_dir():
            return []

        wanted = {ext.lstrip(".") for ext in extensions} if extensions else None
        recordings = []
        for path in root.iterdir():
            match = FILENAME_PATTERN.match(path.name)
            if not match or not path.is_file():
                continue
            if wanted is not None and match.group("ext") not in wanted:
                continue
            recordings.append((int(match.group("token")), path.name, path))

        recordings.sort()
        return [path for _, _, path in recordings]
