"""
Integration test configuration and fixtures.

These tests start a real service container, so they need a reachable
Docker daemon and a provider binary built at the source root. They are
skipped during acceptance-test runs (TF_ACC=1).
"""

import os
import tempfile
from pathlib import Path

import pytest
import requests

import docker
from provider_harness.config import HarnessConfig
from provider_harness.deadline import Deadline
from provider_harness.environment import (
    Credentials,
    EnvironmentProvisioner,
    ReadinessPolicy,
    build_environment_config,
    write_cli_config,
)
from provider_harness.executor import CommandExecutor


def pytest_collection_modifyitems(config, items):
    """Automatically mark integration tests."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.docker)
            item.add_marker(pytest.mark.slow)


@pytest.fixture(scope="session")
def harness_config():
    """Harness configuration read from the environment."""
    if os.environ.get("TF_ACC") == "1":
        pytest.skip("Skipping integration tests during acceptance runs (TF_ACC=1)")

    try:
        config = HarnessConfig()
    except ValueError as e:
        pytest.fail(f"Invalid configuration: {e}")
    if not config.provider_binary_path.exists():
        pytest.skip(f"Provider binary not built: {config.provider_binary_path}")
    return config


@pytest.fixture(scope="session")
def docker_available():
    """Check if Docker is available for testing."""
    try:
        client = docker.from_env()
        client.ping()
        client.close()
        return True
    except (docker.errors.DockerException, requests.exceptions.RequestException):
        return False


@pytest.fixture(scope="session")
def docker_client(docker_available):
    """Provide Docker client for integration tests."""
    if not docker_available:
        pytest.skip("Docker not available")

    client = docker.from_env()
    yield client
    client.close()


@pytest.fixture(scope="session")
def live_executor(harness_config, docker_client):
    """Executor bound to the run deadline."""
    return CommandExecutor(docker_client, Deadline.from_minutes(harness_config.timeout_mins))


@pytest.fixture(scope="session")
def live_environment(harness_config, docker_client, live_executor):
    """A ready, bootstrapped service container shared by all scenarios."""
    provisioner = EnvironmentProvisioner(
        docker_client,
        live_executor,
        access_url=harness_config.access_url,
        cli=harness_config.cli,
    )
    policy = ReadinessPolicy(
        timeout=harness_config.ready_timeout_sec,
        poll_interval=harness_config.ready_poll_interval_sec,
    )

    with tempfile.TemporaryDirectory(prefix="provider-harness-") as tmp_dir:
        cli_config = write_cli_config(Path(tmp_dir), harness_config.provider_source)
        env_config = build_environment_config(harness_config, cli_config)

        with provisioner.provisioned(env_config) as handle:
            provisioner.await_ready(handle, policy, live_executor.deadline)
            provisioner.bootstrap(handle, Credentials())
            yield handle
