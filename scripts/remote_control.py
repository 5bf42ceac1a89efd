#!/usr/bin/env python3
"""
Remote Control Script

Send commands to the capture service remotely (via SSH or locally).

Usage:
    python scripts/remote_control.py toggle     # Start or stop recording
    python scripts/remote_control.py start      # Start recording
    python scripts/remote_control.py stop       # Stop recording
    python scripts/remote_control.py suspend    # Release the camera
    python scripts/remote_control.py resume     # Re-acquire the camera
    python scripts/remote_control.py status     # Show status

Or directly from SSH:
    ssh pi@raspberrypi "echo TOGGLE > /tmp/capture_control.cmd"

How it works:
- Writes command to control file (/tmp/capture_control.cmd)
- Service checks this file every loop iteration (~100ms)
- File is deleted after processing
- Service rewrites the JSON status file (/tmp/capture_status.json)
"""

import argparse
import json
import sys
import time
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import CONTROL_FILE, STATUS_FILE

VALID_COMMANDS = ["TOGGLE", "START", "STOP", "STATUS", "SUSPEND", "RESUME"]


def send_command(command: str, control_file: Path = Path(CONTROL_FILE)) -> bool:
    """
    Send a command to the capture service.

    Args:
        command: One of VALID_COMMANDS (case-insensitive)
        control_file: File the service polls

    Returns:
        True if command was sent successfully, False otherwise
    """
    command = command.upper()

    if command not in VALID_COMMANDS:
        print(f"Invalid command: {command}")
        print(f"Valid commands: {', '.join(VALID_COMMANDS)}")
        return False

    try:
        control_file.write_text(command)
        print(f"Command sent: {command}")
        print("Service will process it within ~1 second")
        return True

    except OSError as e:
        print(f"Failed to send command: {e}")
        return False


def read_status(status_file: Path = Path(STATUS_FILE)) -> dict:
    """
    Read the service status file.

    Returns:
        Parsed status, or {} if the file is missing or unreadable
    """
    try:
        return json.loads(status_file.read_text())
    except (OSError, ValueError):
        return {}


def print_status(status: dict) -> None:
    if not status:
        print("No status available (is the service running?)")
        return

    print(f"State:        {status.get('state')}")
    print(f"Backend:      {status.get('backend')}")
    print(f"Session:      {status.get('session_id') or '-'}")
    print(f"Raw output:   {status.get('raw_output_path') or '-'}")
    print(f"Final output: {status.get('final_output_path') or '-'}")
    if status.get("last_error"):
        print(f"Last error:   {status['last_error']}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Send commands to the capture service remotely",
        epilog="""
Examples:
  %(prog)s toggle     # Start or stop recording
  %(prog)s stop       # Stop recording
  %(prog)s status     # Show current status
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "command",
        choices=[command.lower() for command in VALID_COMMANDS],
        help="Command to send to capture service",
    )

    args = parser.parse_args()

    success = send_command(args.command)
    if success and args.command == "status":
        time.sleep(1.0)
        print_status(read_status())

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
