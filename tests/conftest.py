"""
Brief: Global pytest configuration enforcing per-test 10s timeout and
providing fake-daemon fixtures.

Inputs:
  - None

Outputs:
  - None
"""

import signal
import os
import sys
import pytest

# Ensure 'src' and this directory are on sys.path so 'signalbuoy' and the
# fake daemon helpers are importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
TESTS_DIR = os.path.dirname(os.path.abspath(__file__))
for _path in (SRC_DIR, TESTS_DIR):
    if _path not in sys.path:
        sys.path.insert(0, _path)


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


# Install handler if supported on this platform
if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        # Fallback: no-op on platforms without SIGALRM
        yield


@pytest.fixture
def daemon():
    """
    Brief: Fresh FakeDaemon; every reference still open afterwards is closed.

    Inputs:
      - None

    Outputs:
      - FakeDaemon
    """
    from fake_daemon import FakeDaemon

    fake = FakeDaemon()
    yield fake
    fake.close_all()


@pytest.fixture
def dispatcher(daemon):
    """
    Brief: DispatchCore over the fake daemon delivering on its own thread.

    Inputs:
      - daemon: FakeDaemon fixture

    Outputs:
      - DispatchCore; shut down after the test
    """
    from signalbuoy.dispatch import DispatchCore, ExecutionContext

    core = DispatchCore(daemon, ExecutionContext(allow_direct=True))
    yield core
    core.shutdown()


@pytest.fixture
def make_session(dispatcher):
    """
    Brief: Factory for ServiceSession objects bound to the test dispatcher.

    Inputs:
      - dispatcher: DispatchCore fixture

    Outputs:
      - callable(name="svc", type="_http._tcp.", domain="local.", port=0)
    """
    from signalbuoy.session import ServiceSession

    sessions = []

    def _make(name="svc", type="_http._tcp.", domain="local.", port=0):
        session = ServiceSession(domain, type, name, port, dispatcher=dispatcher)
        sessions.append(session)
        return session

    yield _make
    for session in sessions:
        session.close()
