"""
Transcoder

Converts a raw capture stream into a playable container by running an
external tool (MP4Box by default) under the subprocess supervisor.

Only raw-stream files are converted; anything else is already playable.
A failed conversion never touches the raw file.
"""

import logging
from pathlib import Path
from typing import Optional, Sequence

from capture.constants import get_transcode_command
from capture.controllers.subprocess_supervisor import SubprocessSupervisor
from capture.interfaces.capture_backend_interface import (
    AcquisitionFailedError,
    TranscodeError,
)
from config.settings import (
    RAW_EXTENSION,
    TRANSCODE_COMMAND,
    TRANSCODE_EXTENSION,
    TRANSCODE_TIMEOUT,
)


class Transcoder:
    """
    Raw stream to container conversion step.

    Usage:
        transcoder = Transcoder(supervisor)
        if transcoder.applies_to(raw):
            final = transcoder.transcode(raw, session_id=sid)
    """

    def __init__(
        self,
        supervisor: SubprocessSupervisor,
        command_template: Optional[Sequence[str]] = None,
        output_extension: str = TRANSCODE_EXTENSION,
        source_extension: str = RAW_EXTENSION,
        timeout: Optional[float] = TRANSCODE_TIMEOUT,
    ):
        """
        Args:
            supervisor: Runs the conversion process
            command_template: Argument vector with {input}/{output} markers
            output_extension: Extension of converted files (no dot)
            source_extension: Only files with this extension are converted
            timeout: Seconds before the conversion is terminated (None = none)
        """
        self.logger = logging.getLogger(__name__)
        self.supervisor = supervisor
        self.command_template = list(command_template or TRANSCODE_COMMAND)
        self.output_extension = output_extension.lstrip(".")
        self.source_extension = source_extension.lstrip(".")
        self.timeout = timeout

    def applies_to(self, raw_path: Path) -> bool:
        """Check if a file is a raw stream this transcoder converts"""
        return raw_path.suffix.lower() == f".{self.source_extension.lower()}"

    def output_path_for(self, raw_path: Path) -> Path:
        """Same directory and stem, container extension"""
        return raw_path.with_suffix(f".{self.output_extension}")

    def transcode(self, raw_path: Path, session_id: Optional[str] = None) -> Path:
        """
        Convert raw_path, blocking until the tool exits.

        Args:
            raw_path: Finished raw recording
            session_id: Owning session (event tagging)

        Returns:
            Path of the converted file

        Raises:
            TranscodeError: Tool missing, failed, timed out, or produced
                            no output. Partial output is removed.
        """
        output_path = self.output_path_for(raw_path)
        command = get_transcode_command(self.command_template, raw_path, output_path)

        self.logger.info(f"Converting {raw_path.name} -> {output_path.name}")

        try:
            exit_code = self.supervisor.run(
                command,
                session_id=session_id,
                label="transcode",
                timeout=self.timeout,
            )
        except AcquisitionFailedError as e:
            # Binary missing or could not be spawned
            raise TranscodeError(f"Transcoder could not start: {e}") from e

        if exit_code != 0:
            self._remove_partial(output_path)
            raise TranscodeError(f"Transcoder exited with code {exit_code}")

        if not output_path.exists() or output_path.stat().st_size == 0:
            self._remove_partial(output_path)
            raise TranscodeError(f"Transcoder produced no output: {output_path}")

        self.logger.info(
            f"Conversion complete: {output_path} "
            f"({output_path.stat().st_size / (1024 * 1024):.1f} MB)"
        )
        return output_path

    def _remove_partial(self, output_path: Path) -> None:
        try:
            output_path.unlink()
            self.logger.debug(f"Removed partial output: {output_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Could not remove partial output {output_path}: {e}")
