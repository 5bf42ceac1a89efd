"""
Session Controller

Turns start/stop intents into the acquire -> record -> finalize -> convert
pipeline and guarantees every session ends in COMPLETED or FAILED.

Threading:
- start() runs on the caller's thread and returns once RECORDING (or
  FAILED) is reached.
- stop() moves RECORDING -> STOPPING on the caller's thread; the finalize
  pipeline then runs inline (wait=True) or on a worker thread.
- Backends report lost captures from their own threads (process reaper).

The controller lock only guards check-and-set on the current session. It is
never held while the camera is acquired, finalized or transcoded.
"""

import logging
import threading
from pathlib import Path
from typing import Callable, Optional, Tuple

from capture.constants import ACTIVE_STATES, SessionState
from capture.controllers.subprocess_supervisor import SubprocessSupervisor
from capture.controllers.transcoder import Transcoder
from capture.interfaces.capture_backend_interface import (
    AcquireHandle,
    AcquisitionFailedError,
    CaptureBackendInterface,
    CaptureError,
    DeviceInterruptedError,
    FinalizeError,
    TranscodeError,
)
from capture.models.session import Session
from config.settings import DISCARD_PARTIAL_ON_FAILURE, RAW_EXTENSION
from core.errors import SessionError
from core.event_bus import EventBus, EventKind, Severity
from storage.path_resolver import PathResolver, StorageError

StateChangeCallback = Callable[[Session, SessionState, SessionState], None]


class SessionController:
    """
    Single-session recording controller.

    Usage:
        controller = SessionController(backend, bus, resolver, transcoder)
        controller.on_state_change = lambda s, old, new: print(new.value)

        if controller.start():
            ...
            controller.stop()
        print(controller.final_output_path)

        # Single-button UX
        controller.toggle()
    """

    def __init__(
        self,
        backend: CaptureBackendInterface,
        event_bus: Optional[EventBus] = None,
        path_resolver: Optional[PathResolver] = None,
        transcoder: Optional[Transcoder] = None,
        supervisor: Optional[SubprocessSupervisor] = None,
        raw_extension: str = RAW_EXTENSION,
        discard_partial_on_failure: bool = DISCARD_PARTIAL_ON_FAILURE,
    ):
        """
        Args:
            backend: Acquisition strategy (fixed for the controller's life)
            event_bus: Where progress and errors are reported
            path_resolver: Allocates output paths
            transcoder: Optional raw -> container conversion
            supervisor: Processes to terminate on shutdown()
            raw_extension: Extension of the files the backend writes
            discard_partial_on_failure: Remove output of FAILED sessions
        """
        self.logger = logging.getLogger(__name__)

        self.backend = backend
        self.event_bus = event_bus or EventBus()
        self.path_resolver = path_resolver or PathResolver()
        self.transcoder = transcoder
        self.supervisor = supervisor
        self.raw_extension = raw_extension.lstrip(".")
        self.discard_partial_on_failure = discard_partial_on_failure

        self._session: Optional[Session] = None
        self._closed = False

        # Interruption reported before start() saw RECORDING
        self._early_loss: Optional[Tuple[AcquireHandle, Optional[CaptureError]]] = None

        self._lock = threading.RLock()
        self._terminal = threading.Condition(self._lock)
        self._worker: Optional[threading.Thread] = None

        # Called with (session, old_state, new_state) after every transition
        self.on_state_change: Optional[StateChangeCallback] = None

        self.backend.set_interruption_handler(self._on_capture_lost)

        self.logger.info(
            f"Session Controller initialized (backend: {backend.kind.value})"
        )

    # =========================================================================
    # STATUS
    # =========================================================================

    def current_state(self) -> SessionState:
        session = self._session
        return session.state if session else SessionState.IDLE

    @property
    def current_session(self) -> Optional[Session]:
        return self._session

    @property
    def final_output_path(self) -> Optional[Path]:
        """Path of the finished video (None until COMPLETED)"""
        session = self._session
        if session and session.state == SessionState.COMPLETED:
            return session.final_output_path
        return None

    @property
    def last_error(self) -> Optional[SessionError]:
        session = self._session
        return session.last_error if session else None

    def is_recording(self) -> bool:
        return self.current_state() == SessionState.RECORDING

    def is_busy(self) -> bool:
        """A session is between start() and its terminal state"""
        session = self._session
        return session is not None and session.is_active

    def wait_for_terminal(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the current session is COMPLETED or FAILED.

        Returns:
            True if no session is in progress when this returns
        """
        with self._terminal:
            return self._terminal.wait_for(
                lambda: self._session is None or not self._session.is_active,
                timeout,
            )

    # =========================================================================
    # START
    # =========================================================================

    def start(self) -> bool:
        """
        Begin a new recording session.

        Returns:
            True if RECORDING was reached; False if rejected or failed
            (see last_error)
        """
        with self._lock:
            if self._closed:
                self._reject("start", "controller is shut down")
                return False
            if self.is_busy():
                self._reject("start", f"session in state {self.current_state().value}")
                return False

            session = Session(backend_kind=self.backend.kind)
            session.state_machine.on_state_change = (
                lambda old, new: self._on_transition(session, old, new)
            )
            self._session = session
            self._early_loss = None
            self._transition(session, SessionState.INITIALIZING)

        try:
            root = self.path_resolver.resolve_root()
            session.raw_output_path = self.path_resolver.allocate_output_path(
                root, self.raw_extension
            )
        except StorageError as e:
            self._fail(session, e)
            return False
        except OSError as e:
            self._fail(session, self._wrap(StorageError, "Storage unavailable", e))
            return False

        self.event_bus.publish(
            Severity.INFO,
            f"Recording to: {session.raw_output_path}",
            session_id=session.id,
            path=str(session.raw_output_path),
        )

        try:
            handle = self.backend.acquire(session.raw_output_path, session_id=session.id)
        except CaptureError as e:
            self._fail(session, e)
            return False
        except Exception as e:
            self.logger.error(f"Unexpected acquisition error: {e}", exc_info=True)
            self._fail(
                session,
                self._wrap(AcquisitionFailedError, "Camera could not start", e),
            )
            return False

        with self._lock:
            session.handle = handle
            recording = session.transition_if(
                frozenset({SessionState.INITIALIZING}), SessionState.RECORDING
            ) is not None
            early_loss = self._early_loss
            self._early_loss = None

        if not recording:
            # Failed or shut down while acquiring
            self.logger.warning("Session ended during acquisition, releasing camera")
            self._release(handle)
            return False

        if early_loss is not None:
            self._handle_capture_loss(session, *early_loss)

        return True

    # =========================================================================
    # STOP
    # =========================================================================

    def stop(self, wait: bool = True) -> bool:
        """
        Stop the recording session.

        Args:
            wait: Run the finalize pipeline on this thread and return once
                  the session is terminal; otherwise return immediately
                  (see wait_for_terminal())

        Returns:
            True if the stop was accepted (session was RECORDING)
        """
        with self._lock:
            session = self._session
            if session is None or session.transition_if(
                frozenset({SessionState.RECORDING}), SessionState.STOPPING
            ) is None:
                self._reject("stop", f"not recording (state: {self.current_state().value})")
                return False

        if wait:
            self._finalize_session(session)
        else:
            self._start_worker(session)
        return True

    def toggle(self, wait: bool = True) -> bool:
        """
        Single-control entry point: stop when recording, start when idle.

        Returns:
            Result of the start()/stop() call, False if rejected
        """
        state = self.current_state()
        if state == SessionState.RECORDING:
            return self.stop(wait=wait)
        if not self.is_busy():
            return self.start()
        self._reject("toggle", f"session in state {state.value}")
        return False

    def _start_worker(self, session: Session) -> None:
        self._worker = threading.Thread(
            target=self._finalize_session,
            args=(session,),
            daemon=True,
            name=f"Finalize-{session.short_id}",
        )
        self._worker.start()

    # =========================================================================
    # FINALIZE PIPELINE
    # =========================================================================

    def _finalize_session(self, session: Session) -> None:
        """STOPPING -> FINALIZING -> COMPLETED (or FAILED)"""
        try:
            self._run_finalize_pipeline(session)
        except Exception as e:
            self.logger.error(f"Unexpected error finalizing session: {e}", exc_info=True)
            self._fail(session, self._wrap(FinalizeError, "Finalize failed", e))

    def _run_finalize_pipeline(self, session: Session) -> None:
        self.event_bus.publish(
            Severity.INFO, "Stopping recording...", session_id=session.id
        )

        try:
            self.backend.finalize(session.handle)
        except CaptureError as e:
            self._fail(session, e)
            return

        raw_path = session.raw_output_path
        if not raw_path.exists():
            self._fail(session, FinalizeError(f"Recording file missing: {raw_path}"))
            return
        raw_size = raw_path.stat().st_size
        if raw_size == 0:
            self._fail(session, FinalizeError(f"Recording file is empty: {raw_path}"))
            return

        with self._lock:
            if session.transition_if(
                frozenset({SessionState.STOPPING}), SessionState.FINALIZING
            ) is None:
                return

        self.event_bus.publish(
            Severity.INFO,
            f"Recording stopped. Video saved to {raw_path}",
            session_id=session.id,
            path=str(raw_path),
            size_bytes=raw_size,
        )

        final_path = raw_path
        if self.transcoder and self.transcoder.applies_to(raw_path):
            final_path = self._transcode(session, raw_path)

        self._complete(session, final_path)

    def _complete(self, session: Session, final_path: Path) -> bool:
        """FINALIZING -> COMPLETED; False if the session already left FINALIZING"""
        with self._lock:
            if session.state != SessionState.FINALIZING:
                return False
            session.final_output_path = final_path
            session.transition_to(SessionState.COMPLETED)

        self.event_bus.publish(
            Severity.INFO,
            f"Recording complete: {final_path}",
            session_id=session.id,
            final_output_path=str(final_path),
            duration=round(session.duration, 1),
        )
        return True

    def _transcode(self, session: Session, raw_path: Path) -> Path:
        """Convert, falling back to the raw file on failure"""
        try:
            output_path = self.transcoder.output_path_for(raw_path)
            self.event_bus.publish(
                Severity.INFO, f"Converting to MP4: {output_path}", session_id=session.id
            )
            converted = self.transcoder.transcode(raw_path, session_id=session.id)
        except TranscodeError as e:
            self._degrade(session, raw_path, e)
            return raw_path
        except Exception as e:
            self.logger.error(f"Unexpected conversion error: {e}", exc_info=True)
            self._degrade(
                session, raw_path, self._wrap(TranscodeError, "Conversion error", e)
            )
            return raw_path

        self.event_bus.publish(
            Severity.INFO, "Conversion successful", session_id=session.id
        )
        return converted

    def _degrade(self, session: Session, raw_path: Path, error: TranscodeError) -> None:
        if session.state != SessionState.FINALIZING:
            # Already completed from the raw file by shutdown()
            self.logger.debug(f"Conversion ended after session finished: {error}")
            return
        self.event_bus.publish(
            Severity.WARNING,
            f"Conversion failed, keeping raw recording: {error}",
            session_id=session.id,
            kind=EventKind.TRANSCODE_DEGRADED,
            error_kind=error.kind.value,
            raw_output_path=str(raw_path),
        )

    # =========================================================================
    # CAPTURE LOSS (backend callback)
    # =========================================================================

    def _on_capture_lost(
        self,
        handle: AcquireHandle,
        error: Optional[CaptureError],
    ) -> None:
        """Backend lost an active capture (called from a backend thread)"""
        with self._lock:
            session = self._session
            if session is None or handle.session_id != session.id:
                self.logger.debug("Ignoring capture loss for a previous session")
                return
            if session.state == SessionState.INITIALIZING:
                # start() handles it once RECORDING is reached
                self._early_loss = (handle, error)
                return
            if session.state != SessionState.RECORDING:
                # stop() already owns the handle
                return

        self._handle_capture_loss(session, handle, error)

    def _handle_capture_loss(
        self,
        session: Session,
        handle: AcquireHandle,
        error: Optional[CaptureError],
    ) -> None:
        if error is None:
            # Capture reached its configured duration: finish like stop()
            with self._lock:
                if session.transition_if(
                    frozenset({SessionState.RECORDING}),
                    SessionState.STOPPING,
                    reason="capture ended",
                ) is None:
                    return
            self.event_bus.publish(
                Severity.INFO, "Capture finished on its own", session_id=session.id
            )
            self._start_worker(session)
            return

        if not isinstance(error, DeviceInterruptedError):
            error = self._wrap(DeviceInterruptedError, "Capture interrupted", error)
        self._fail(session, error)

    # =========================================================================
    # DEVICE LIFECYCLE
    # =========================================================================

    def handle_background(self) -> None:
        """
        Application sent to background: release the camera.

        A RECORDING session fails with DeviceInterrupted.
        """
        self.event_bus.publish(Severity.INFO, "Releasing camera (background)")
        try:
            self.backend.suspend()
        except Exception as e:
            self.logger.error(f"Error releasing camera: {e}", exc_info=True)

    def handle_foreground(self) -> bool:
        """
        Application back in foreground: re-acquire the camera.

        Returns:
            True if the device is usable again
        """
        self.event_bus.publish(Severity.INFO, "Re-acquiring camera (foreground)")
        try:
            self.backend.resume()
        except CaptureError as e:
            self.event_bus.publish(
                Severity.ERROR,
                f"Camera could not be re-acquired: {e.describe()}",
                kind=EventKind.ERROR,
                error_kind=e.kind.value,
            )
            return False
        return True

    def shutdown(self, grace_period: Optional[float] = None) -> None:
        """
        Stop any active session and release every resource.

        Args:
            grace_period: Bound on waiting for an in-flight session
                          (None = wait until it is terminal)
        """
        self.logger.info("Shutting down session controller...")

        with self._lock:
            self._closed = True

        if self.current_state() == SessionState.RECORDING:
            self.stop(wait=True)

        if self.is_busy() and not self.wait_for_terminal(grace_period):
            session = self._session
            if session.state == SessionState.FINALIZING:
                # Raw recording is verified; the conversion is dropped below
                self.logger.warning("Conversion still running at shutdown, keeping raw recording")
                with self._lock:
                    self._degrade(
                        session,
                        session.raw_output_path,
                        TranscodeError("Conversion interrupted by shutdown"),
                    )
                    self._complete(session, session.raw_output_path)
            else:
                self.logger.warning("Session still active at shutdown, failing it")
                self._fail(session, FinalizeError("Shut down before recording finished"))

        try:
            self.backend.cleanup()
        except Exception as e:
            self.logger.error(f"Error cleaning up backend: {e}")

        if self.supervisor:
            self.supervisor.shutdown(grace_period)

        self.backend.set_interruption_handler(None)
        self.logger.info("Session controller shut down")

    # =========================================================================
    # INTERNAL
    # =========================================================================

    def _transition(self, session: Session, new_state: SessionState, reason: str = "") -> None:
        with self._lock:
            session.transition_to(new_state, reason)

    def _on_transition(
        self,
        session: Session,
        old_state: SessionState,
        new_state: SessionState,
    ) -> None:
        """State machine callback: report and wake waiters"""
        self.event_bus.publish(
            Severity.ERROR if new_state == SessionState.FAILED else Severity.INFO,
            f"State: {old_state.value} -> {new_state.value}",
            session_id=session.id,
            kind=EventKind.STATE_CHANGED,
            old_state=old_state.value,
            new_state=new_state.value,
        )

        if self.on_state_change:
            try:
                self.on_state_change(session, old_state, new_state)
            except Exception as e:
                self.logger.error(f"Error in state change callback: {e}")

        if new_state.is_terminal:
            with self._terminal:
                self._terminal.notify_all()

    def _fail(self, session: Session, error: SessionError) -> bool:
        """
        Move an active session to FAILED and clean up after it.

        Returns:
            True if this call failed the session (False if already terminal)
        """
        with self._lock:
            if session.state not in ACTIVE_STATES:
                return False
            # FINALIZING means the raw file was already verified
            keep_raw = session.state == SessionState.FINALIZING
            session.last_error = error
            session.transition_to(SessionState.FAILED, reason=error.describe())

        cause = error.__cause__
        self.event_bus.publish(
            Severity.ERROR,
            f"Recording failed: {error.describe()}",
            session_id=session.id,
            kind=EventKind.ERROR,
            error_kind=error.kind.value,
            cause=repr(cause) if cause else None,
        )

        if session.handle is not None:
            self._release(session.handle)

        if self.discard_partial_on_failure:
            self._discard_partial_output(session, keep_raw=keep_raw)
        return True

    def _release(self, handle: AcquireHandle) -> None:
        """Make sure a failed session leaves no capture running"""
        if handle.finalized:
            return
        try:
            self.backend.finalize(handle)
        except Exception as e:
            self.logger.warning(f"Error releasing capture: {e}")

    def _discard_partial_output(self, session: Session, keep_raw: bool = False) -> None:
        raw_path = session.raw_output_path
        if raw_path is None:
            return

        candidates = [] if keep_raw else [raw_path]
        if self.transcoder:
            candidates.append(self.transcoder.output_path_for(raw_path))

        for path in candidates:
            try:
                path.unlink()
                self.logger.info(f"Removed partial output: {path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                self.logger.warning(f"Could not remove partial output {path}: {e}")

    def _reject(self, operation: str, reason: str) -> None:
        session = self._session
        self.event_bus.publish(
            Severity.WARNING,
            f"Ignored {operation}(): {reason}",
            session_id=session.id if session else None,
            kind=EventKind.REJECTED,
            operation=operation,
        )

    @staticmethod
    def _wrap(error_class, message: str, cause: Exception) -> SessionError:
        """Build error_class with cause chained, as `raise ... from` would"""
        error = error_class(f"{message}: {cause}")
        error.__cause__ = cause
        return error
