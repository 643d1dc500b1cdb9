"""
Environment provisioning.

Creates, starts, health-checks, bootstraps and removes the ephemeral
service container the scenarios run against. The container mounts the
repository (provider binary and template fixtures) at /src and a Terraform
CLI config that points the service at the locally built provider.

Lifecycle:
    created -> started -> ready -> removed

Use provisioned() to guarantee removal on every exit path.
"""

import logging
import shlex
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, Iterator, List, Optional

import docker
import requests

from .deadline import Deadline
from .errors import BootstrapError, ExecTimeoutError, ProvisionError, ReadinessTimeoutError
from .executor import CommandExecutor

if TYPE_CHECKING:
    from .config import HarnessConfig

logger = logging.getLogger(__name__)

SRC_MOUNT = "/src"
CLI_CONFIG_MOUNT = "/tmp/integration.tfrc"
CLI_CONFIG_NAME = "integration.tfrc"
MANAGED_LABEL = "provider-harness.managed"

CLI_CONFIG_TEMPLATE = """provider_installation {{
  dev_overrides {{
    "{provider_source}" = "{src_mount}"
  }}
  direct {{}}
}}
"""

_DOCKER_ERRORS = (docker.errors.DockerException, requests.exceptions.RequestException)


class LifecycleState(Enum):
    CREATED = "created"
    STARTED = "started"
    READY = "ready"
    REMOVED = "removed"


@dataclass
class EnvironmentConfig:
    """What to run: image, mounts and environment of the service container."""

    image: str
    version: str
    binds: List[str] = field(default_factory=list)
    environment: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def image_ref(self) -> str:
        return f"{self.image}:{self.version}"


@dataclass
class EnvironmentHandle:
    """A provisioned container and its lifecycle state."""

    container_id: str
    image_ref: str
    binds: List[str] = field(default_factory=list)
    environment: Dict[str, str] = field(default_factory=dict)
    state: LifecycleState = LifecycleState.CREATED

    @property
    def short_id(self) -> str:
        return self.container_id[:12]


@dataclass(frozen=True)
class ReadinessPolicy:
    """How long and how often to poll the service health check (seconds)."""

    timeout: float = 10.0
    poll_interval: float = 1.0

    def __post_init__(self):
        if self.timeout <= 0:
            raise ValueError("Readiness timeout must be positive")
        if self.poll_interval <= 0:
            raise ValueError("Readiness poll interval must be positive")


@dataclass(frozen=True)
class Credentials:
    """First-user account created during bootstrap."""

    email: str = "testing@coder.com"
    username: str = "testing"
    password: str = "InsecurePassw0rd!"  # nosec B105 - throwaway test account


def write_cli_config(
    directory: Path, provider_source: str = "coder/coder", src_mount: str = SRC_MOUNT
) -> Path:
    """
    Write a Terraform CLI config overriding the provider with the local build.

    Returns:
        Path of the written file
    """
    path = Path(directory) / CLI_CONFIG_NAME
    path.write_text(
        CLI_CONFIG_TEMPLATE.format(provider_source=provider_source, src_mount=src_mount),
        encoding="utf-8",
    )
    path.chmod(0o644)
    return path


def build_environment_config(
    config: "HarnessConfig", cli_config_path: Path
) -> EnvironmentConfig:
    """Build the service container configuration for a harness run."""
    return EnvironmentConfig(
        image=config.image,
        version=config.version,
        binds=[
            f"{cli_config_path}:{CLI_CONFIG_MOUNT}",
            f"{config.src_dir}:{SRC_MOUNT}",
        ],
        environment={
            # A fixed access URL keeps the service off its public tunnel
            "CODER_ACCESS_URL": config.access_url,
            "CODER_IN_MEMORY": "true",
            "CODER_TELEMETRY_ENABLE": "false",
            "TF_CLI_CONFIG_FILE": CLI_CONFIG_MOUNT,
        },
        labels={MANAGED_LABEL: "true"},
    )


class EnvironmentProvisioner:
    """
    Manages the lifecycle of the service container.

    Args:
        client: Docker client shared by the whole run
        executor: Executor used for health checks and bootstrap
        access_url: Service URL as seen from inside the container
        cli: Service CLI binary inside the container
        clock: Monotonic clock, injectable for tests
        sleep: Sleep function, injectable for tests
    """

    def __init__(
        self,
        client: docker.DockerClient,
        executor: CommandExecutor,
        access_url: str = "http://localhost:3000",
        cli: str = "coder",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.executor = executor
        self.access_url = access_url.rstrip("/")
        self.cli = cli
        self._clock = clock
        self._sleep = sleep

    def health_command(self, max_time: float) -> str:
        url = shlex.quote(self.access_url + "/api/v2/buildinfo")
        return f"curl -s --fail --max-time {max_time:g} {url}"

    def provision(self, config: EnvironmentConfig) -> EnvironmentHandle:
        """
        Create and start the service container.

        Raises:
            ProvisionError: If the docker daemon is unreachable or the
                container cannot be created or started
        """
        logger.info(f"using image {config.image_ref}")
        container = self._create(config)
        handle = EnvironmentHandle(
            container_id=container.id,
            image_ref=config.image_ref,
            binds=list(config.binds),
            environment=dict(config.environment),
        )
        logger.info(f"created container {handle.short_id}")

        try:
            container.start()
        except _DOCKER_ERRORS as e:
            self.release(handle)
            raise ProvisionError(f"start container {handle.short_id}: {e}") from e
        except BaseException:
            self.release(handle)
            raise

        handle.state = LifecycleState.STARTED
        logger.info(f"started container {handle.short_id}")
        return handle

    def _create(self, config: EnvironmentConfig):
        kwargs = {
            "environment": config.environment,
            "volumes": config.binds,
            "labels": config.labels,
        }
        try:
            try:
                return self.client.containers.create(config.image_ref, **kwargs)
            except docker.errors.ImageNotFound:
                logger.info(f"image {config.image_ref} not present locally, pulling")
                self.client.images.pull(config.image, tag=config.version)
                return self.client.containers.create(config.image_ref, **kwargs)
        except _DOCKER_ERRORS as e:
            raise ProvisionError(f"create test deployment from {config.image_ref}: {e}") from e

    def await_ready(
        self,
        handle: EnvironmentHandle,
        policy: ReadinessPolicy = ReadinessPolicy(),
        deadline: Optional[Deadline] = None,
    ) -> None:
        """
        Poll the health check until it exits 0.

        The exit code is the only success signal. Each health check is
        limited to the time left before timeout + poll_interval and sleeps
        are clipped to the time left, so a service that never becomes
        ready fails within timeout + poll_interval.

        Raises:
            ReadinessTimeoutError: If the service is not ready in time
        """
        start = self._clock()
        bound = policy.timeout + policy.poll_interval
        attempts = 0

        while True:
            if deadline is not None:
                deadline.check("readiness check")

            attempts += 1
            budget = bound - (self._clock() - start)
            try:
                result = self.executor.exec(
                    handle, self.health_command(budget), timeout=budget
                )
            except ExecTimeoutError:
                logger.info(f"health check did not answer within {budget:g}s")
            else:
                if result.success:
                    handle.state = LifecycleState.READY
                    logger.info(f"service ready after {attempts} attempt(s)")
                    return

            remaining = policy.timeout - (self._clock() - start)
            if remaining <= 0:
                raise ReadinessTimeoutError(
                    f"service failed to become ready within {policy.timeout}s",
                    attempts=attempts,
                )

            logger.info("not ready yet...")
            self._sleep(min(policy.poll_interval, remaining))

    def bootstrap(self, handle: EnvironmentHandle, credentials: Credentials = Credentials()) -> None:
        """
        Perform first-time setup: log in, creating the first user.

        Raises:
            BootstrapError: If the login command exits nonzero
        """
        command = (
            f"{self.cli} login {shlex.quote(self.access_url)}"
            f" --first-user-email={shlex.quote(credentials.email)}"
            f" --first-user-password={shlex.quote(credentials.password)}"
            f" --first-user-trial=false"
            f" --first-user-username={shlex.quote(credentials.username)}"
        )
        result = self.executor.exec(handle, command)
        if not result.success:
            raise BootstrapError(
                f"failed to perform first-time setup (exit code {result.exit_code})",
                exit_code=result.exit_code,
                output=result.output,
            )
        logger.info(f"first user {credentials.username!r} created")

    def release(self, handle: EnvironmentHandle) -> None:
        """
        Force-remove the container. Safe to call more than once.

        Removal errors are logged, not raised. On such an error the handle
        keeps its state so the release can be retried.
        """
        if handle.state is LifecycleState.REMOVED:
            logger.debug(f"container {handle.short_id} already removed")
            return

        logger.info(f"stopping container {handle.short_id}")
        try:
            self.client.api.remove_container(handle.container_id, force=True)
        except docker.errors.NotFound:
            logger.debug(f"container {handle.short_id} was already gone")
        except _DOCKER_ERRORS as e:
            logger.error(f"Failed to remove container {handle.short_id}: {e}")
            return

        handle.state = LifecycleState.REMOVED

    @contextmanager
    def provisioned(self, config: EnvironmentConfig) -> Iterator[EnvironmentHandle]:
        """Provision an environment and release it when the block exits."""
        handle = self.provision(config)
        try:
            yield handle
        finally:
            self.release(handle)
