"""
Subprocess Supervisor

Spawns, monitors and terminates external processes (capture command,
transcoder) and forwards their output to the event bus.

Per process, three daemon threads:
- two forwarders, one per output stream, publishing each line as an event
- one reaper, the only caller of wait(), which records the exit code,
  flushes the forwarders and releases the pipes

Nothing is buffered beyond the pipe itself: lines go straight to the bus.
"""

import logging
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import IO, Callable, Dict, List, Optional, Sequence

from capture.constants import ERROR_TOKENS, WARNING_TOKENS
from capture.interfaces.capture_backend_interface import (
    BinaryNotFoundError,
    ProcessSpawnError,
)
from config.settings import KILL_WAIT_TIMEOUT, STOP_GRACE_PERIOD
from core.event_bus import EventBus, EventKind, Severity

# How long the reaper waits for forwarders to drain after the process exits
# (a grandchild holding the pipe open must not stall reaping)
FORWARDER_JOIN_TIMEOUT = 2.0


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of terminate()"""

    exit_code: Optional[int]
    killed: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.killed


class SubprocessHandle:
    """
    One external process invocation.

    Owned by the supervisor; never reused. exit_code stays None until the
    reaper has observed the exit.
    """

    def __init__(
        self,
        process: subprocess.Popen,
        command_line: Sequence[str],
        label: str,
        session_id: Optional[str],
    ):
        self.pid = process.pid
        self.command_line = tuple(command_line)
        self.label = label
        self.session_id = session_id
        self.started_at = time.time()

        self.exit_code: Optional[int] = None
        self.killed = False
        self.termination_requested = False

        # Most recent error-looking output line (used to classify failures)
        self.last_error_line: Optional[str] = None

        self._process = process
        self._forwarders: List[threading.Thread] = []
        self._exited = threading.Event()

    @property
    def has_exited(self) -> bool:
        return self._exited.is_set()

    def is_running(self) -> bool:
        return not self._exited.is_set()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Wait for the reaper to observe the exit.

        Returns:
            Exit code, or None if still running after timeout
        """
        self._exited.wait(timeout)
        return self.exit_code

    def __repr__(self) -> str:
        return (
            f"SubprocessHandle(label={self.label!r}, pid={self.pid}, "
            f"exit_code={self.exit_code}, killed={self.killed})"
        )


ExitCallback = Callable[[SubprocessHandle], None]


class SubprocessSupervisor:
    """
    Owner of every external process the recorder starts.

    Usage:
        supervisor = SubprocessSupervisor(bus)
        handle = supervisor.spawn(["libcamera-vid", ...], session_id=sid)
        ...
        result = supervisor.terminate(handle, grace_period=5.0)

        exit_code = supervisor.run(["MP4Box", "-add", "a.h264", "a.mp4"])
    """

    def __init__(
        self,
        event_bus: EventBus,
        default_grace_period: float = STOP_GRACE_PERIOD,
        kill_wait_timeout: float = KILL_WAIT_TIMEOUT,
    ):
        self.logger = logging.getLogger(__name__)
        self.event_bus = event_bus
        self.default_grace_period = default_grace_period
        self.kill_wait_timeout = kill_wait_timeout

        self._handles: Dict[int, SubprocessHandle] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # SPAWN
    # =========================================================================

    def spawn(
        self,
        command_line: Sequence[str],
        session_id: Optional[str] = None,
        label: str = "process",
        on_exit: Optional[ExitCallback] = None,
    ) -> SubprocessHandle:
        """
        Start an external process and begin forwarding its output.

        Args:
            command_line: Argument vector (never a shell string)
            session_id: Owning session, attached to every forwarded event
            label: Short name used in event messages
            on_exit: Called from the reaper thread if the process exits
                     without terminate() having been requested

        Returns:
            Handle for terminate()/wait()

        Raises:
            BinaryNotFoundError: Executable not found
            ProcessSpawnError: Any other OS error while starting
        """
        argv = [str(arg) for arg in command_line]
        if not argv:
            raise ValueError("command_line cannot be empty")

        self.logger.debug(f"Spawning {label}: {argv}")

        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,  # No interactive input
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise BinaryNotFoundError(f"{argv[0]} not found: {e}") from e
        except OSError as e:
            raise ProcessSpawnError(f"Failed to start {argv[0]}: {e}") from e

        handle = SubprocessHandle(process, argv, label, session_id)

        with self._lock:
            self._handles[handle.pid] = handle

        self.event_bus.publish(
            Severity.INFO,
            f"Started {label} (PID: {handle.pid})",
            session_id=session_id,
            pid=handle.pid,
            command_line=list(handle.command_line),
        )

        for stream, stream_name in (
            (process.stdout, "stdout"),
            (process.stderr, "stderr"),
        ):
            forwarder = threading.Thread(
                target=self._forward_stream,
                args=(handle, stream, stream_name),
                daemon=True,
                name=f"{label}-{handle.pid}-{stream_name}",
            )
            handle._forwarders.append(forwarder)
            forwarder.start()

        reaper = threading.Thread(
            target=self._reap,
            args=(handle, on_exit),
            daemon=True,
            name=f"{label}-{handle.pid}-reaper",
        )
        reaper.start()

        return handle

    def _forward_stream(
        self,
        handle: SubprocessHandle,
        stream: IO[bytes],
        stream_name: str,
    ) -> None:
        """Publish every line of one output stream until EOF"""
        try:
            for raw in iter(stream.readline, b""):
                text = raw.decode("utf-8", errors="replace").rstrip()
                if not text:
                    continue

                severity = self._classify_line(stream_name, text)
                if severity == Severity.ERROR:
                    handle.last_error_line = text

                self.event_bus.publish(
                    severity,
                    f"{handle.label}: {text}",
                    session_id=handle.session_id,
                    kind=EventKind.PROCESS_OUTPUT,
                    stream=stream_name,
                    pid=handle.pid,
                )
        except (OSError, ValueError) as e:
            # Pipe closed underneath us
            self.logger.debug(f"{handle.label} {stream_name} forwarding ended: {e}")

    @staticmethod
    def _classify_line(stream_name: str, text: str) -> Severity:
        lowered = text.lower()
        if any(token in lowered for token in ERROR_TOKENS):
            return Severity.ERROR
        if stream_name == "stderr" and any(
            token in lowered for token in WARNING_TOKENS
        ):
            return Severity.WARNING
        return Severity.INFO

    def _reap(
        self,
        handle: SubprocessHandle,
        on_exit: Optional[ExitCallback],
    ) -> None:
        """Consume the exit status exactly once and release the handle"""
        exit_code = handle._process.wait()

        # Remaining buffered output is flushed before the exit is reported
        for forwarder in handle._forwarders:
            forwarder.join(timeout=FORWARDER_JOIN_TIMEOUT)

        for stream in (handle._process.stdout, handle._process.stderr):
            if stream:
                try:
                    stream.close()
                except OSError:
                    pass

        handle.exit_code = exit_code
        with self._lock:
            self._handles.pop(handle.pid, None)

        self.event_bus.publish(
            Severity.INFO if exit_code == 0 else Severity.WARNING,
            f"{handle.label} exited with code {exit_code}"
            + (" (killed)" if handle.killed else ""),
            session_id=handle.session_id,
            kind=EventKind.PROCESS_EXIT,
            pid=handle.pid,
            exit_code=exit_code,
            killed=handle.killed,
        )
        handle._exited.set()

        if on_exit and not handle.termination_requested:
            try:
                on_exit(handle)
            except Exception as e:
                self.logger.error(f"Error in exit callback for {handle.label}: {e}")

    # =========================================================================
    # TERMINATE / RUN
    # =========================================================================

    def terminate(
        self,
        handle: SubprocessHandle,
        grace_period: Optional[float] = None,
    ) -> ProcessResult:
        """
        Stop a process: SIGTERM, then SIGKILL after grace_period.

        Args:
            handle: Process to stop
            grace_period: Seconds to wait after SIGTERM (None = default)

        Returns:
            Observed exit code and whether a forceful kill was needed
        """
        grace = self.default_grace_period if grace_period is None else grace_period
        handle.termination_requested = True

        if handle.has_exited:
            return ProcessResult(handle.exit_code, handle.killed)

        self.logger.info(f"Sending SIGTERM to {handle.label} (PID: {handle.pid})")
        try:
            handle._process.send_signal(signal.SIGTERM)
        except ProcessLookupError:
            pass

        if handle.wait(grace) is None and not handle.has_exited:
            self.event_bus.publish(
                Severity.WARNING,
                f"{handle.label} did not exit within {grace:.1f}s, force killing",
                session_id=handle.session_id,
                pid=handle.pid,
            )
            handle.killed = True
            try:
                handle._process.kill()
            except ProcessLookupError:
                pass

            if handle.wait(self.kill_wait_timeout) is None:
                self.logger.error(
                    f"{handle.label} (PID: {handle.pid}) not reaped after SIGKILL"
                )

        return ProcessResult(handle.exit_code, handle.killed)

    def run(
        self,
        command_line: Sequence[str],
        session_id: Optional[str] = None,
        label: str = "helper",
        timeout: Optional[float] = None,
    ) -> int:
        """
        Run a short-lived process to completion.

        Output is forwarded to the event bus like any spawned process.

        Args:
            command_line: Argument vector
            session_id: Owning session
            label: Short name used in event messages
            timeout: Terminate (grace then kill) after this many seconds

        Returns:
            Exit code (negative signal number if killed)

        Raises:
            BinaryNotFoundError / ProcessSpawnError: Could not start
        """
        handle = self.spawn(command_line, session_id=session_id, label=label)

        if handle.wait(timeout) is None and not handle.has_exited:
            self.event_bus.publish(
                Severity.WARNING,
                f"{label} timed out after {timeout:.0f}s, terminating",
                session_id=session_id,
                pid=handle.pid,
            )
            self.terminate(handle)

        if handle.exit_code is None:
            return -signal.SIGKILL
        return handle.exit_code

    # =========================================================================
    # STATUS AND CLEANUP
    # =========================================================================

    def active_handles(self) -> List[SubprocessHandle]:
        """Processes not yet reaped"""
        with self._lock:
            return list(self._handles.values())

    def shutdown(self, grace_period: Optional[float] = None) -> None:
        """Terminate every process still running"""
        for handle in self.active_handles():
            self.logger.info(f"Shutting down {handle.label} (PID: {handle.pid})")
            self.terminate(handle, grace_period)
