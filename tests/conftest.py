"""
Pytest configuration and shared fixtures for provider harness tests.

Unit tests never talk to Docker: the docker client is a Mock and the
executor can be replaced with a scripted one that records every command.
"""

import tempfile
import threading
from pathlib import Path
from unittest.mock import Mock

import pytest

from provider_harness.environment import EnvironmentHandle, LifecycleState
from provider_harness.executor import ExecutionResult


class ScriptedExecutor:
    """Executor double that answers commands by substring rules."""

    def __init__(self):
        self.commands = []
        self.timeouts = []
        self._rules = []

    def on(self, fragment, output="", exit_code=0):
        """Answer commands containing fragment; first matching rule wins."""
        self._rules.append((fragment, ExecutionResult(output=output, exit_code=exit_code)))
        return self

    def exec(self, handle, command, timeout=None):
        self.commands.append(command)
        self.timeouts.append(timeout)
        for fragment, result in self._rules:
            if fragment in command:
                return result
        return ExecutionResult(output="", exit_code=0)

    def commands_containing(self, fragment):
        return [command for command in self.commands if fragment in command]


class FakeStream:
    """Stand-in for docker's CancellableStream."""

    def __init__(self, chunks):
        self._chunks = list(chunks)
        self.closed = False

    def __iter__(self):
        for chunk in self._chunks:
            if self.closed:
                return
            yield chunk

    def close(self):
        self.closed = True



class BlockingStream:
    """Stream of a stalled exec: yields nothing until it is closed.

    Like docker's socket stream, reading after close fails and a second
    close raises.
    """

    def __init__(self, max_wait=5.0):
        self.max_wait = max_wait
        self.close_calls = 0
        self._closed = threading.Event()

    def __iter__(self):
        self._closed.wait(self.max_wait)
        if self._closed.is_set():
            raise OSError("Bad file descriptor")
        yield from ()

    def close(self):
        self.close_calls += 1
        if self._closed.is_set():
            raise OSError("Transport endpoint is not connected")
        self._closed.set()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def scripted_executor():
    return ScriptedExecutor()


@pytest.fixture
def handle():
    """A started environment handle."""
    return EnvironmentHandle(
        container_id="3f1c0e9a7b2d4c5e6f708192a3b4c5d6",
        image_ref="ghcr.io/coder/coder:latest",
        state=LifecycleState.STARTED,
    )


@pytest.fixture
def docker_client():
    """Mock docker client whose exec API answers with an empty success."""
    client = Mock()
    client.api.exec_create.return_value = {"Id": "exec-1"}
    client.api.exec_start.return_value = FakeStream([])
    client.api.exec_inspect.return_value = {"ExitCode": 0}
    client.containers.create.return_value = Mock(id="3f1c0e9a7b2d4c5e6f708192a3b4c5d6")
    return client


@pytest.fixture
def fake_stream():
    return FakeStream


@pytest.fixture
def blocking_stream():
    return BlockingStream()


@pytest.fixture
def scenario_yaml():
    """A small valid scenario file body."""
    return """
scenarios:
  - template: test-data-source
    description: sample
    expected_output:
      workspace.name: 'test-data-source'
      workspace.start_count: '1'
      provisioner.arch: '${host_arch}'
  - template: second-template
    expected_output:
      a: '^1$'
"""


@pytest.fixture
def harness_env(temp_dir, monkeypatch):
    """Point the harness at a temporary source tree with a built provider."""
    (temp_dir / "integration").mkdir()
    (temp_dir / "terraform-provider-coder").write_text("binary")
    for key in (
        "CODER_IMAGE",
        "CODER_VERSION",
        "CODER_ACCESS_URL",
        "CODER_CLI",
        "PROVIDER_BINARY",
        "PROVIDER_SOURCE",
        "LOG_LEVEL",
        "TIMEOUT_MINS",
        "READY_TIMEOUT_SEC",
        "READY_POLL_INTERVAL_SEC",
        "SCENARIO_FILE",
        "REPORT_PATH",
        "LOG_DIR",
        "TF_ACC",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HARNESS_SRC_DIR", str(temp_dir))
    return temp_dir
