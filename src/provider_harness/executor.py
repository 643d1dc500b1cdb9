"""
Command execution inside a running environment.

Commands run through /bin/sh inside the container using the Docker exec
API. Stdout and stderr are drained into a single interleaved buffer and the
exit code is read only after the stream is closed. A nonzero exit code is
data, not an error: only failures of the control API itself raise.
"""

import logging
import threading
from contextlib import ExitStack
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import docker
import requests

from .deadline import Deadline
from .errors import ExecConnectionError, ExecTimeoutError, RunDeadlineExceeded

if TYPE_CHECKING:
    from .environment import EnvironmentHandle

logger = logging.getLogger(__name__)

SHELL = ["/bin/sh", "-c"]


@dataclass
class ExecutionResult:
    """Combined output and exit code of one command."""

    output: str
    exit_code: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class CommandExecutor:
    """
    Runs shell commands inside an environment.

    The docker client is acquired once by the caller and passed in; the
    executor never opens its own connection.
    """

    def __init__(self, client: docker.DockerClient, deadline: Optional[Deadline] = None):
        self.client = client
        self.deadline = deadline

    def exec(
        self, handle: "EnvironmentHandle", command: str, timeout: Optional[float] = None
    ) -> ExecutionResult:
        """
        Execute a shell command inside the environment.

        Args:
            handle: Environment to run in
            command: Shell command line
            timeout: Optional limit in seconds for this command alone

        Returns:
            ExecutionResult with combined output and exit code

        Raises:
            ExecConnectionError: If exec create, attach or inspect fails
            ExecTimeoutError: If timeout elapses before the output is drained
            RunDeadlineExceeded: If the run deadline fires first
        """
        if self.deadline is not None:
            self.deadline.check(f"exec {command!r}")

        logger.info(f"exec container cmd: {command!r}")
        api = self.client.api

        try:
            exec_id = api.exec_create(
                handle.container_id,
                SHELL + [command],
                stdout=True,
                stderr=True,
            )["Id"]
        except (docker.errors.DockerException, requests.exceptions.RequestException) as e:
            raise ExecConnectionError(f"create container exec: {e}") from e

        output = self._drain(exec_id, command, timeout)

        try:
            exit_code = api.exec_inspect(exec_id)["ExitCode"]
        except (docker.errors.DockerException, requests.exceptions.RequestException) as e:
            raise ExecConnectionError(f"get exec exit code: {e}") from e

        # A still-running exec reports no exit code
        if exit_code is None:
            raise ExecConnectionError(f"exec {exec_id} finished without an exit code")

        logger.info(f"exec container output (exit code {exit_code}):\n{output}")
        return ExecutionResult(output=output, exit_code=exit_code)

    def _drain(self, exec_id: str, command: str, timeout: Optional[float]) -> str:
        """Attach to the exec and read both streams until it closes."""
        try:
            stream = self.client.api.exec_start(exec_id, stream=True)
        except (docker.errors.DockerException, requests.exceptions.RequestException) as e:
            raise ExecConnectionError(f"attach to container exec: {e}") from e

        timed_out = threading.Event()

        def _expire() -> None:
            timed_out.set()
            stream.close()

        chunks = []
        try:
            with ExitStack() as watchers:
                if self.deadline is not None:
                    watchers.enter_context(self.deadline.watch(stream.close))
                if timeout is not None:
                    watchers.enter_context(Deadline(timeout).watch(_expire))
                self._read_into(stream, chunks, timed_out)
        finally:
            self._close(stream)

        if self.deadline is not None:
            self.deadline.check(f"exec {command!r}")
        if timed_out.is_set():
            raise ExecTimeoutError(f"exec {command!r} did not finish within {timeout:g}s")

        return b"".join(chunks).decode("utf-8", errors="replace")

    def _read_into(self, stream, chunks: list, timed_out: threading.Event) -> None:
        try:
            for chunk in stream:
                chunks.append(chunk)
        except (
            docker.errors.DockerException,
            requests.exceptions.RequestException,
            OSError,
            ValueError,  # read on a stream closed by a deadline timer
        ) as e:
            if self.deadline is not None and self.deadline.expired():
                raise RunDeadlineExceeded("Run deadline exceeded while reading exec output") from e
            if timed_out.is_set():
                raise ExecTimeoutError("exec timed out while reading output") from e
            raise ExecConnectionError(f"read exec output: {e}") from e

    @staticmethod
    def _close(stream) -> None:
        # The socket may already be shut down by a deadline timer
        try:
            stream.close()
        except OSError as e:
            logger.debug(f"exec stream already closed: {e}")
