"""
Capture Test Configuration and Fixtures

Shared fixtures for capture module tests.

Real subprocesses are exercised with small Python programs standing in for
the capture command and the transcoder. They are run with sys.executable so
no camera tooling needs to be installed.
"""

import sys
import textwrap

import pytest

from capture.controllers.session_controller import SessionController
from capture.controllers.subprocess_supervisor import SubprocessSupervisor
from capture.controllers.transcoder import Transcoder
from capture.implementations.mock_backend import MockBackend
from capture.implementations.process_backend import ProcessBackend
from storage.path_resolver import PathResolver

# Short timings keep process tests fast
TEST_LIVENESS_CHECK_TIME = 1.0
TEST_GRACE_PERIOD = 1.0
TEST_KILL_WAIT = 2.0

# =============================================================================
# FAKE PROGRAMS
# =============================================================================

FAKE_CAPTURE_SOURCE = textwrap.dedent(
    """
    import argparse
    import signal
    import sys
    import time

    parser = argparse.ArgumentParser()
    parser.add_argument("--mode", default="normal")
    parser.add_argument("--source")
    parser.add_argument("--crash-after", type=float, default=0.3)
    parser.add_argument("--output", required=True)
    parser.add_argument("--timeout", type=int, default=0)
    args, _ = parser.parse_known_args()

    stopping = False

    def on_term(signum, frame):
        global stopping
        stopping = True

    if args.mode == "ignore_term":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
    else:
        signal.signal(signal.SIGTERM, on_term)

    if args.mode == "busy":
        print("ERROR: failed to acquire camera: Device or resource busy",
              file=sys.stderr, flush=True)
        sys.exit(1)
    if args.mode == "no_camera":
        print("ERROR: no cameras available", file=sys.stderr, flush=True)
        sys.exit(1)

    print("Preview window unavailable", flush=True)
    print("[0:00:00] INFO Camera started", file=sys.stderr, flush=True)

    started = time.time()
    with open(args.output, "wb") as f:
        if args.mode == "copy":
            with open(args.source, "rb") as src:
                f.write(src.read())
            f.flush()
        while not stopping:
            if args.mode in ("normal", "ignore_term", "crash"):
                f.write(b"\\x00\\x00\\x00\\x01frame")
                f.flush()
            if args.timeout and (time.time() - started) * 1000 >= args.timeout:
                break
            if args.mode == "crash" and time.time() - started >= args.crash_after:
                print("ERROR: camera frontend has timed out", file=sys.stderr, flush=True)
                sys.exit(3)
            time.sleep(0.02)

    print("Capture finished", flush=True)
    sys.exit(0)
    """
)

FAKE_TRANSCODER_SOURCE = textwrap.dedent(
    """
    import sys
    import time

    mode, source, output = sys.argv[1], sys.argv[2], sys.argv[3]

    if mode == "fail":
        with open(output, "wb") as f:
            f.write(b"partial")
        print("Error importing " + source, file=sys.stderr, flush=True)
        sys.exit(1)
    if mode == "empty":
        sys.exit(0)
    if mode == "hang":
        time.sleep(30)

    with open(source, "rb") as src, open(output, "wb") as dst:
        dst.write(src.read())
    print("Importing ISO File", flush=True)
    sys.exit(0)
    """
)


@pytest.fixture
def fake_capture_script(tmp_path):
    """Path of the fake capture program"""
    script = tmp_path / "fake_libcamera_vid.py"
    script.write_text(FAKE_CAPTURE_SOURCE)
    return script


@pytest.fixture
def fake_transcoder_script(tmp_path):
    """Path of the fake conversion program"""
    script = tmp_path / "fake_mp4box.py"
    script.write_text(FAKE_TRANSCODER_SOURCE)
    return script


@pytest.fixture
def capture_command(fake_capture_script):
    """
    Build a capture command prefix for a fake capture mode.

    Usage:
        def test_busy(capture_command):
            command = capture_command("busy")
    """

    def build(mode="normal", *extra):
        return [sys.executable, str(fake_capture_script), "--mode", mode, *extra]

    return build


@pytest.fixture
def transcode_template(fake_transcoder_script):
    """Build a transcode command template for a fake conversion mode"""

    def build(mode="ok"):
        return [sys.executable, str(fake_transcoder_script), mode, "{input}", "{output}"]

    return build


# =============================================================================
# COMPONENT FIXTURES
# =============================================================================


@pytest.fixture
def supervisor(event_bus):
    """
    Provide SubprocessSupervisor with short timeouts.

    Every process still running after the test is terminated.
    """
    sup = SubprocessSupervisor(
        event_bus,
        default_grace_period=TEST_GRACE_PERIOD,
        kill_wait_timeout=TEST_KILL_WAIT,
    )
    yield sup
    sup.shutdown(grace_period=0.5)


@pytest.fixture
def path_resolver(temp_recording_dir):
    return PathResolver(root=temp_recording_dir, min_free_space_bytes=0)


@pytest.fixture
def process_backend_factory(supervisor, capture_command):
    """
    Build ProcessBackend instances running the fake capture program.

    Usage:
        def test_x(process_backend_factory):
            backend = process_backend_factory("busy")
    """
    backends = []

    def build(mode="normal", *extra, **kwargs):
        kwargs.setdefault("liveness_check_time", TEST_LIVENESS_CHECK_TIME)
        kwargs.setdefault("stop_grace_period", TEST_GRACE_PERIOD)
        backend = ProcessBackend(
            supervisor,
            capture_command=capture_command(mode, *extra),
            **kwargs,
        )
        backends.append(backend)
        return backend

    yield build

    for backend in backends:
        backend.cleanup()


@pytest.fixture
def mock_backend():
    """
    Provide MockBackend writing a small known payload.
    """
    backend = MockBackend(payload=b"\x00\x00\x00\x01mock-frame-data")
    yield backend
    backend.cleanup()


@pytest.fixture
def controller(mock_backend, event_bus, path_resolver):
    """
    Provide SessionController over the mock backend, no transcoder.

    Usage:
        def test_start(controller):
            assert controller.start() is True
    """
    ctrl = SessionController(mock_backend, event_bus=event_bus, path_resolver=path_resolver)
    yield ctrl
    ctrl.shutdown(grace_period=2.0)


@pytest.fixture
def process_controller_factory(
    process_backend_factory,
    supervisor,
    event_bus,
    path_resolver,
    transcode_template,
):
    """
    Build a SessionController over the fake capture program.

    Args (of the returned builder):
        mode: Fake capture mode
        transcode: Fake conversion mode, or None for no transcoder
    """
    controllers = []

    def build(mode="normal", *extra, transcode="ok", **backend_kwargs):
        backend = process_backend_factory(mode, *extra, **backend_kwargs)
        transcoder = None
        if transcode is not None:
            transcoder = Transcoder(
                supervisor,
                command_template=transcode_template(transcode),
                timeout=5.0,
            )
        ctrl = SessionController(
            backend,
            event_bus=event_bus,
            path_resolver=path_resolver,
            transcoder=transcoder,
            supervisor=supervisor,
        )
        controllers.append(ctrl)
        return ctrl

    yield build

    for ctrl in controllers:
        ctrl.shutdown(grace_period=2.0)
