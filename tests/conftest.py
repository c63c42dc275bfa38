"""
Brief: Global pytest configuration: src on sys.path, per-test timeout, and a
fake executable registry.

Inputs:
  - None

Outputs:
  - None
"""

import os
import signal
import sys
import threading
from typing import List, Optional, Sequence

import pytest

# Ensure 'src' is on sys.path so the 'launchpad' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from launchpad.registry import ExecutableRegistry  # noqa: E402


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
        yield


class FakeExecutable:
    """Brief: Executable stand-in with settable is_running/exists flags."""

    def __init__(
        self,
        name: str,
        path: str = "",
        is_running: bool = False,
        exists: bool = True,
        auto_start: bool = False,
    ) -> None:
        self.name = name
        self.path = path
        self.is_running = is_running
        self.exists = exists
        self.auto_start = auto_start


class FakeRegistry(ExecutableRegistry):
    """Brief: In-memory registry recording every lifecycle call.

    Inputs (constructor):
      - executables: Initial entries.

    Outputs:
      - Registry whose ``calls`` list holds (operation, name) tuples. Setting
        ``fail_with`` makes every operation raise that exception.
    """

    def __init__(self, executables: Optional[Sequence[FakeExecutable]] = None) -> None:
        self._executables: List[FakeExecutable] = list(executables or [])
        self.calls: List[tuple] = []
        self.fail_with: Optional[Exception] = None
        self.reads = 0
        self._lock = threading.Lock()

    @property
    def executables(self):
        with self._lock:
            self.reads += 1
            return tuple(self._executables)

    def _record(self, op: str, exe: FakeExecutable) -> None:
        with self._lock:
            self.calls.append((op, exe.name))
        if self.fail_with is not None:
            raise self.fail_with

    def start(self, exe):
        self._record("start", exe)
        exe.is_running = True

    def stop(self, exe):
        self._record("stop", exe)
        exe.is_running = False

    def restart(self, exe):
        self._record("restart", exe)
        exe.is_running = True


@pytest.fixture
def fake_registry() -> FakeRegistry:
    """
    Brief: Registry with three entries: running, stopped, and missing on disk.

    Inputs:
      - None

    Outputs:
      - FakeRegistry instance
    """
    return FakeRegistry(
        [
            FakeExecutable("server", "/opt/app/server", is_running=True, auto_start=True),
            FakeExecutable("scanner", "/opt/app/scanner"),
            FakeExecutable("ghost", "/missing/ghost", exists=False),
        ]
    )
