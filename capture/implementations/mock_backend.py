"""
Mock Capture Backend

Simulated capture for testing without a camera or capture binary.

This is a "Fake" (test double) - it has working logic but no real hardware:
the destination file is created on acquire and the configured payload is
written on finalize, so tests can check exact bytes on disk.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Optional

from capture.constants import BackendKind
from capture.interfaces.capture_backend_interface import (
    AcquireHandle,
    AcquisitionFailedError,
    CaptureBackendInterface,
    CaptureError,
    DeviceInterruptedError,
    FinalizeError,
    InterruptionHandler,
)

DEFAULT_PAYLOAD = b"\x00\x00\x00\x01" + b"\x00" * 1020


class MockBackend(CaptureBackendInterface):
    """
    Mock capture backend for testing.

    Usage:
        backend = MockBackend(payload=b"frame-data")
        handle = backend.acquire(Path("video_1.h264"))
        backend.finalize(handle)  # file now holds b"frame-data"
    """

    def __init__(
        self,
        payload: bytes = DEFAULT_PAYLOAD,
        kind: BackendKind = BackendKind.SDK,
        acquire_delay: float = 0.0,
        finalize_delay: float = 0.0,
    ):
        """
        Initialize mock backend.

        Args:
            payload: Bytes written to the destination on finalize
            kind: Which real backend this stands in for
            acquire_delay: Seconds acquire() blocks (simulates warmup)
            finalize_delay: Seconds finalize() blocks (simulates slow stop)
        """
        self.logger = logging.getLogger(__name__)
        self.payload = payload
        self._kind = kind
        self.acquire_delay = acquire_delay
        self.finalize_delay = finalize_delay

        # State tracking
        self._active: Optional[AcquireHandle] = None
        self._suspended = False
        self._interruption_handler: Optional[InterruptionHandler] = None
        self._lock = threading.Lock()

        # Call counters (inspected by tests)
        self.acquire_calls = 0
        self.finalize_calls = 0
        self.suspend_calls = 0
        self.resume_calls = 0

        # Configuration for test scenarios
        self._start_error: Optional[CaptureError] = None
        self._finalize_error: Optional[CaptureError] = None
        self._write_on_finalize = True

        self.logger.info(f"Mock Backend initialized (kind: {kind.value})")

    @property
    def kind(self) -> BackendKind:
        return self._kind

    def acquire(
        self,
        destination: Path,
        session_id: Optional[str] = None,
    ) -> AcquireHandle:
        """Create the destination file and mark capture as running"""
        with self._lock:
            self.acquire_calls += 1
            if self._active is not None:
                raise AcquisitionFailedError("[MOCK] Already capturing")
            if self._suspended:
                raise AcquisitionFailedError("[MOCK] Camera released while in background")

        if self.acquire_delay:
            time.sleep(self.acquire_delay)

        if self._start_error is not None:
            self.logger.error("[MOCK] Simulated start failure")
            raise self._start_error

        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.touch()

        handle = AcquireHandle(
            destination=destination,
            backend_kind=self.kind,
            session_id=session_id,
        )
        with self._lock:
            self._active = handle

        self.logger.info(f"[MOCK] Capture started: {destination}")
        return handle

    def finalize(self, handle: AcquireHandle) -> None:
        """Write the payload and close the file"""
        self.finalize_calls += 1
        if handle.finalized:
            if handle.lost_error is not None:
                raise FinalizeError(
                    f"Capture ended before it was stopped: {handle.lost_error}"
                ) from handle.lost_error
            return

        with self._lock:
            if self._active is handle:
                self._active = None

        if self.finalize_delay:
            time.sleep(self.finalize_delay)

        handle.finalized = True

        if self._write_on_finalize:
            self._write_payload(handle.destination)

        if self._finalize_error is not None:
            self.logger.error("[MOCK] Simulated finalize failure")
            raise self._finalize_error

        self.logger.info("[MOCK] Capture stopped")

    def _write_payload(self, destination: Path) -> None:
        with open(destination, "wb") as f:
            f.write(self.payload)
        self.logger.info(f"[MOCK] Recording saved: {len(self.payload)} bytes")

    def set_interruption_handler(
        self,
        handler: Optional[InterruptionHandler],
    ) -> None:
        self._interruption_handler = handler

    def suspend(self) -> None:
        with self._lock:
            self.suspend_calls += 1
            self._suspended = True
        self.simulate_interruption(
            DeviceInterruptedError("Capture preempted: camera released")
        )

    def resume(self) -> None:
        with self._lock:
            self.resume_calls += 1
            self._suspended = False

    def is_capturing(self) -> bool:
        with self._lock:
            return self._active is not None

    def is_available(self) -> bool:
        """Mock backend is always available"""
        return True

    def cleanup(self) -> None:
        self.logger.debug("[MOCK] Cleanup")
        with self._lock:
            handle = self._active
            self._active = None
        if handle is not None:
            handle.finalized = True

    # =========================================================================
    # TESTING HELPER METHODS (not part of CaptureBackendInterface)
    # =========================================================================

    def simulate_start_failure(self, error: Optional[CaptureError] = None) -> None:
        """
        Configure mock to fail on every acquire() call.

        Example:
            backend.simulate_start_failure(CameraBusyError("in use"))
            assert controller.start() is False
        """
        self._start_error = error or AcquisitionFailedError("Simulated camera failure")
        self.logger.debug("[MOCK] Configured to fail on start")

    def simulate_finalize_failure(
        self,
        error: Optional[CaptureError] = None,
        write_output: bool = True,
    ) -> None:
        """
        Configure mock to fail on finalize().

        Args:
            error: Raised from finalize (default FinalizeError)
            write_output: Still write the payload before failing
        """
        self._finalize_error = error or FinalizeError("Simulated finalize failure")
        self._write_on_finalize = write_output
        self.logger.debug("[MOCK] Configured to fail on finalize")

    def simulate_empty_output(self) -> None:
        """finalize() succeeds but leaves a zero-byte file"""
        self._write_on_finalize = False

    def simulate_interruption(self, error: Optional[CaptureError] = None) -> bool:
        """
        Lose the active capture as a real device would.

        Args:
            error: Reported to the interruption handler (None = capture ended
                   on its own; the payload is written first)

        Returns:
            True if a capture was active
        """
        with self._lock:
            handle = self._active
            self._active = None

        if handle is None:
            return False

        if error is None:
            self._write_payload(handle.destination)
        handle.lost_error = error
        handle.finalized = True

        self.logger.warning(f"[MOCK] Simulating capture loss: {error}")
        if self._interruption_handler:
            try:
                self._interruption_handler(handle, error)
            except Exception as e:
                self.logger.error(f"Error in interruption handler: {e}")
        return True

    def reset_test_config(self) -> None:
        """Reset test configuration to normal operation"""
        self._start_error = None
        self._finalize_error = None
        self._write_on_finalize = True
        self.logger.debug("[MOCK] Test configuration reset")
