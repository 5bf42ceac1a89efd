"""
Recorder Service

Headless service around the capture session controller.
This is the process systemd runs on the device.

Control:
- SIGUSR1 toggles recording (the single user control)
- Commands written to CONTROL_FILE: TOGGLE, START, STOP, STATUS,
  SUSPEND, RESUME (see scripts/remote_control.py)
- SIGTERM / SIGINT stop any active recording and shut down

Status:
- STATUS_FILE holds a JSON snapshot of the controller (state, session id,
  output paths, last error), rewritten after every state change
"""

import json
import logging
import logging.handlers
import os
import signal
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from capture import SessionController, SessionState, create_controller
from capture.models.session import Session
from config.capture_config import CaptureConfig
from config.settings import (
    CONTROL_FILE,
    LOG_BACKUP_DAYS,
    LOG_DIR,
    LOG_SERVICE_FILE,
    SERVICE_LOOP_INTERVAL,
    STATUS_FILE,
)


class RecorderService:
    """
    Main service coordinator.

    Usage:
        service = RecorderService()
        service.run()  # Blocks until shutdown

        # Tests: inject a controller, no signal handlers
        service = RecorderService(controller, install_signal_handlers=False)
        service.process_command("TOGGLE")
    """

    def __init__(
        self,
        controller: Optional[SessionController] = None,
        control_file: Optional[Path] = None,
        status_file: Optional[Path] = None,
        install_signal_handlers: bool = True,
    ):
        """Initialize the controller and register signal handlers."""
        self.logger = logging.getLogger(__name__)
        self.logger.info("Initializing Recorder Service...")

        self.running = False
        self.start_time = time.time()

        # Remote control file for SSH/script commands
        self.control_file = Path(control_file or CONTROL_FILE)
        self.status_file = Path(status_file or STATUS_FILE)

        # Set from signal handlers, consumed by the main loop
        self._toggle_requested = threading.Event()
        self._status_dirty = threading.Event()

        self.controller = controller or create_controller(CaptureConfig())
        self.controller.on_state_change = self._handle_state_change

        if install_signal_handlers:
            signal.signal(signal.SIGTERM, self._signal_handler)
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGUSR1, self._toggle_signal_handler)

        self._status_dirty.set()
        self.logger.info("Recorder Service initialized successfully")

    def run(self):
        """
        Main service loop.

        Runs until shutdown signal received.
        """
        self.running = True
        self.logger.info("Starting Recorder Service main loop...")

        try:
            while self.running:
                self._update_loop()
                time.sleep(SERVICE_LOOP_INTERVAL)
        except KeyboardInterrupt:
            self.logger.info("Keyboard interrupt received")
        finally:
            self._shutdown()

    def _update_loop(self):
        """Handle pending toggles and commands, refresh the status file"""
        if self._toggle_requested.is_set():
            self._toggle_requested.clear()
            self.logger.info("Toggle requested by signal")
            self.controller.toggle()

        self._check_control_commands()

        if self._status_dirty.is_set():
            self._status_dirty.clear()
            self.write_status()

    # =========================================================================
    # REMOTE CONTROL
    # =========================================================================

    def _check_control_commands(self):
        """
        Check for and process remote control commands.

        The command file is deleted as soon as it has been read.
        """
        if not self.control_file.exists():
            return

        try:
            command = self.control_file.read_text().strip().upper()
            self.control_file.unlink()
        except OSError as e:
            self.logger.error(f"Failed to read control command: {e}")
            return

        self.logger.info(f"Remote command received: {command}")
        try:
            self.process_command(command)
        except Exception as e:
            # Never crash the service on a bad command
            self.logger.error(f"Failed to process control command: {e}", exc_info=True)

    def process_command(self, command: str) -> bool:
        """
        Execute one remote command.

        Args:
            command: TOGGLE, START, STOP, STATUS, SUSPEND or RESUME

        Returns:
            True if the command was recognised and accepted
        """
        command = command.strip().upper()

        if command == "TOGGLE":
            return self.controller.toggle()

        if command == "START":
            return self.controller.start()

        if command == "STOP":
            return self.controller.stop()

        if command == "STATUS":
            status = self.get_status()
            self.logger.info(
                f"Remote STATUS -> state: {status['state']}, "
                f"session: {status['session_id']}, "
                f"final output: {status['final_output_path']}"
            )
            self.write_status()
            return True

        if command == "SUSPEND":
            self.controller.handle_background()
            return True

        if command == "RESUME":
            return self.controller.handle_foreground()

        self.logger.warning(f"Unknown remote command: {command}")
        return False

    # =========================================================================
    # STATUS
    # =========================================================================

    def _handle_state_change(
        self,
        session: Session,
        old_state: SessionState,
        new_state: SessionState,
    ) -> None:
        self._status_dirty.set()

    def get_status(self) -> dict:
        """Snapshot of the controller for out-of-process observers"""
        session = self.controller.current_session
        last_error = self.controller.last_error
        final_path = self.controller.final_output_path

        return {
            "timestamp": datetime.now().isoformat(),
            "uptime_seconds": round(time.time() - self.start_time, 1),
            "pid": os.getpid(),
            "state": self.controller.current_state().value,
            "backend": self.controller.backend.kind.value,
            "session_id": session.id if session else None,
            "raw_output_path": (
                str(session.raw_output_path)
                if session and session.raw_output_path
                else None
            ),
            "final_output_path": str(final_path) if final_path else None,
            "last_error": last_error.describe() if last_error else None,
            "error_kind": last_error.kind.value if last_error else None,
        }

    def write_status(self) -> None:
        """
        Write the status snapshot as JSON.

        Atomic write (temp file, then rename) so readers never see a
        partial file.
        """
        try:
            tmp_file = self.status_file.with_suffix(".tmp")
            tmp_file.write_text(json.dumps(self.get_status(), indent=2))
            tmp_file.replace(self.status_file)
        except OSError as e:
            # Status is for monitoring, not critical functionality
            self.logger.warning(f"Failed to write status file: {e}")

    # =========================================================================
    # SHUTDOWN HANDLING
    # =========================================================================

    def _toggle_signal_handler(self, signum, _frame):
        self._toggle_requested.set()

    def _signal_handler(self, signum, _frame):
        """
        Handle shutdown signals.

        Args:
            signum: Signal number
            _frame: Current stack frame (unused, required by signal API)
        """
        signal_name = signal.Signals(signum).name
        self.logger.info(f"Received signal {signal_name}, shutting down...")
        self.running = False

    def _shutdown(self):
        """
        Graceful shutdown.

        Stops and finalizes an active recording, then releases the camera.
        """
        self.logger.info("Shutting down Recorder Service...")

        if self.controller.current_state() == SessionState.RECORDING:
            self.logger.info("Stopping active recording session...")

        self.controller.shutdown()
        self.write_status()

        self.logger.info("Recorder Service shutdown complete")


def setup_logging(log_dir: str = LOG_DIR):
    """
    Setup logging with rotation.

    Logs to both console and file:
    - Daily rotation
    - Keep LOG_BACKUP_DAYS days of logs
    """
    logger = logging.getLogger()
    logger.setLevel(logging.INFO)

    # Console handler (stdout)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter("%(message)s | %(name)s"))
    logger.addHandler(console_handler)

    file_format = logging.Formatter(
        "%(asctime)s: %(message)s | %(name)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    log_file = Path(log_dir) / LOG_SERVICE_FILE
    try:
        file_handler = logging.handlers.TimedRotatingFileHandler(
            str(log_file),
            when="midnight",
            interval=1,
            backupCount=LOG_BACKUP_DAYS,
            encoding="utf-8",
        )
    except (PermissionError, FileNotFoundError):
        # Fallback to local logs directory if LOG_DIR not writable
        logs_dir = Path("logs")
        logs_dir.mkdir(exist_ok=True)

        fallback_log = logs_dir / "capture-service.log"
        logger.warning(f"Cannot write to {log_file}, using fallback: {fallback_log}")
        logger.info(
            f"To fix: sudo mkdir -p {log_dir} && sudo chown $(whoami) {log_dir}"
        )

        file_handler = logging.handlers.TimedRotatingFileHandler(
            str(fallback_log),
            when="midnight",
            interval=1,
            backupCount=LOG_BACKUP_DAYS,
            encoding="utf-8",
        )

    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(file_format)
    logger.addHandler(file_handler)


def main():
    """
    Main entry point for the service.

    Sets up logging and runs the service.
    """
    setup_logging()

    logger = logging.getLogger(__name__)
    logger.info("=" * 60)
    logger.info("Capture Recorder Service Starting")
    logger.info("=" * 60)

    try:
        service = RecorderService()
        service.run()
    except Exception as e:
        logger.critical(f"Fatal error in main: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
