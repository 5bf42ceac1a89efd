"""
Shared Test Configuration and Fixtures

Fixtures used across packages. Package-specific fixtures live in the
conftest.py of each test directory.
"""

import shutil
import tempfile
from pathlib import Path

import pytest

from core.event_bus import EventBus

# =============================================================================
# EVENT BUS FIXTURES
# =============================================================================


@pytest.fixture
def event_bus():
    """
    Provide a fresh EventBus.

    Usage:
        def test_events(event_bus):
            sub = event_bus.subscribe()
    """
    return EventBus(history_size=500, subscriber_queue_size=1000)


# =============================================================================
# TEMPORARY FILE/DIRECTORY FIXTURES
# =============================================================================


@pytest.fixture
def temp_recording_dir():
    """
    Provide temporary directory for recordings.

    Directory is automatically cleaned up after test.
    """
    temp_dir = Path(tempfile.mkdtemp())

    yield temp_dir

    # Cleanup
    if temp_dir.exists():
        shutil.rmtree(temp_dir)


# =============================================================================
# CALLBACK TRACKING FIXTURES
# =============================================================================


@pytest.fixture
def callback_tracker():
    """
    Provide helper for tracking callback calls.

    Usage:
        def test_callback(controller, callback_tracker):
            controller.on_state_change = callback_tracker.track
            controller.start()
            assert callback_tracker.was_called()
    """

    class CallbackTracker:
        def __init__(self):
            self.calls = []

        def track(self, *args, **kwargs):
            """Record a callback invocation"""
            self.calls.append({"args": args, "kwargs": kwargs})

        def was_called(self) -> bool:
            return len(self.calls) > 0

        def get_call_count(self) -> int:
            return len(self.calls)

        def get_last_call(self):
            return self.calls[-1] if self.calls else None

        def reset(self):
            self.calls.clear()

    return CallbackTracker()


# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================


def pytest_configure(config):
    """
    Configure pytest with custom markers.
    """
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "unit_integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
    config.addinivalue_line(
        "markers", "requires_posix: Tests relying on POSIX signals"
    )
