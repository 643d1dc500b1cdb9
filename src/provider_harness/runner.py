"""
Scenario runner.

For each scenario, drives the service CLI inside the shared environment:

1. Push the scenario's template fixture, binding a per-scenario output path
2. Create a workspace from the pushed template
3. Fetch the JSON artifact the workspace wrote
4. Validate the artifact against the scenario's expected patterns

Scenarios run sequentially against one environment. A failure in one
scenario is recorded and the next scenario still runs. run_suite() wraps
the whole run: provisioning, readiness, bootstrap, scenarios and release.
"""

import json
import logging
import shlex
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import docker
import requests

from .config import HarnessConfig
from .deadline import Deadline
from .environment import (
    SRC_MOUNT,
    Credentials,
    EnvironmentHandle,
    EnvironmentProvisioner,
    ReadinessPolicy,
    build_environment_config,
    write_cli_config,
)
from .errors import (
    DecodeFailed,
    ExecConnectionError,
    FetchFailed,
    InstantiateFailed,
    ProvisionError,
    PushFailed,
    RunDeadlineExceeded,
    ScenarioError,
    SetupError,
)
from .executor import CommandExecutor
from .report import ERROR, FAILED, PASSED, ReportWriter, ScenarioResult, SuiteResult
from .scenarios import TestCase
from .validator import format_violations, validate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CliSettings:
    """Where the service CLI and the fixtures live inside the environment."""

    cli: str = "coder"
    fixtures_dir: str = f"{SRC_MOUNT}/integration"
    output_dir: str = "/tmp"

    def output_path(self, case: TestCase) -> str:
        return f"{self.output_dir}/{case.output_file}"


def decode_output(template_name: str, text: str) -> Dict[str, str]:
    """
    Decode an artifact as a flat JSON object of string values.

    Only the first JSON value in the text is read.

    Raises:
        DecodeFailed: If the text is not a JSON object of strings
    """
    try:
        data, _ = json.JSONDecoder().raw_decode(text.lstrip())
    except json.JSONDecodeError as e:
        raise DecodeFailed(template_name, f"artifact is not valid JSON: {e}", output=text)

    if not isinstance(data, dict):
        raise DecodeFailed(
            template_name, f"artifact must be a JSON object, got {type(data).__name__}", output=text
        )

    non_strings = sorted(key for key, value in data.items() if not isinstance(value, str))
    if non_strings:
        raise DecodeFailed(
            template_name,
            f"artifact values must be strings: {', '.join(non_strings)}",
            output=text,
        )
    return data


class ScenarioRunner:
    """Runs scenarios against a ready environment."""

    def __init__(self, executor: CommandExecutor, settings: CliSettings = CliSettings()):
        self.executor = executor
        self.settings = settings

    def push(self, handle: EnvironmentHandle, case: TestCase) -> None:
        """Import the scenario's template. Raises PushFailed on nonzero exit."""
        name = shlex.quote(case.template_name)
        directory = shlex.quote(f"{self.settings.fixtures_dir}/{case.template_name}")
        output_path = shlex.quote(f"output_path={self.settings.output_path(case)}")
        result = self.executor.exec(
            handle,
            f"{self.settings.cli} templates push {name} --directory {directory}"
            f" --var {output_path} --yes",
        )
        if not result.success:
            raise PushFailed(
                case.template_name,
                f"templates push exited with code {result.exit_code}",
                exit_code=result.exit_code,
                output=result.output,
            )

    def instantiate(self, handle: EnvironmentHandle, case: TestCase) -> None:
        """Create a workspace from the template. Raises InstantiateFailed."""
        name = shlex.quote(case.template_name)
        result = self.executor.exec(
            handle, f"{self.settings.cli} create {name} -t {name} --yes"
        )
        if not result.success:
            raise InstantiateFailed(
                case.template_name,
                f"create exited with code {result.exit_code}",
                exit_code=result.exit_code,
                output=result.output,
            )

    def fetch(self, handle: EnvironmentHandle, case: TestCase) -> Dict[str, str]:
        """Read and decode the artifact. Raises FetchFailed or DecodeFailed."""
        result = self.executor.exec(
            handle, f"cat {shlex.quote(self.settings.output_path(case))}"
        )
        if not result.success:
            raise FetchFailed(
                case.template_name,
                f"reading {self.settings.output_path(case)} exited with code {result.exit_code}",
                exit_code=result.exit_code,
                output=result.output,
            )
        return decode_output(case.template_name, result.output)

    def run_case(self, handle: EnvironmentHandle, case: TestCase) -> ScenarioResult:
        """
        Run one scenario: push, instantiate, fetch, validate.

        A failing step skips the remaining steps. Control-API failures and
        the run deadline propagate; they end the whole run.
        """
        logger.info(f"=== RUN {case.template_name}")
        start = time.monotonic()

        try:
            self.push(handle, case)
            self.instantiate(handle, case)
            actual = self.fetch(handle, case)
        except ScenarioError as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.error(f"--- ERROR {case.template_name} at {e.step}: {e}")
            return ScenarioResult(
                template_name=case.template_name,
                status=ERROR,
                error=str(e),
                elapsed_ms=elapsed_ms,
            )

        violations = validate(case.expected_patterns, actual)
        elapsed_ms = int((time.monotonic() - start) * 1000)

        if violations:
            logger.error(
                f"--- FAIL {case.template_name}: {len(violations)} violation(s)\n"
                f"{format_violations(violations)}"
            )
            status = FAILED
        else:
            logger.info(f"--- PASS {case.template_name} ({elapsed_ms}ms)")
            status = PASSED

        return ScenarioResult(
            template_name=case.template_name,
            status=status,
            violations=violations,
            elapsed_ms=elapsed_ms,
        )

    def run(
        self,
        handle: EnvironmentHandle,
        cases: Iterable[TestCase],
        report: Optional[ReportWriter] = None,
        results: Optional[List[ScenarioResult]] = None,
    ) -> List[ScenarioResult]:
        """
        Run every case in order against the same environment.

        Args:
            handle: Ready environment
            cases: Scenarios to run
            report: Optional report to append each result to
            results: Optional list to append to, so partial results survive
                an aborted run

        Returns:
            One result per completed scenario
        """
        if results is None:
            results = []

        for case in cases:
            result = self.run_case(handle, case)
            results.append(result)
            if report is not None:
                report.write_scenario(result)

        return results


def run_suite(
    config: HarnessConfig,
    cases: List[TestCase],
    client: Optional[docker.DockerClient] = None,
    report: Optional[ReportWriter] = None,
    credentials: Credentials = Credentials(),
) -> SuiteResult:
    """
    Run the scenarios against a freshly provisioned environment.

    The environment is released exactly once on every exit path,
    including the run deadline and interrupts. A docker client created
    here is closed at the end; a client passed in is left open.

    Args:
        config: Harness configuration
        cases: Scenarios to run
        client: Docker client, defaults to docker.from_env()
        report: Optional JSON Lines report
        credentials: First-user account for bootstrap

    Returns:
        SuiteResult; its error is set when setup or the run aborted
    """
    suite = SuiteResult()
    owns_client = client is None

    try:
        try:
            deadline = Deadline.from_minutes(config.timeout_mins)
            policy = ReadinessPolicy(
                timeout=config.ready_timeout_sec, poll_interval=config.ready_poll_interval_sec
            )
        except ValueError as e:
            raise SetupError(f"invalid timing configuration: {e}") from e

        if not config.provider_binary_path.exists():
            raise ProvisionError(
                f"not found: {config.provider_binary_path} - please build the provider first"
            )

        if owns_client:
            try:
                client = docker.from_env()
            except (docker.errors.DockerException, requests.exceptions.RequestException) as e:
                raise ProvisionError(f"init docker client: {e}") from e

        executor = CommandExecutor(client, deadline)
        provisioner = EnvironmentProvisioner(
            client, executor, access_url=config.access_url, cli=config.cli
        )
        runner = ScenarioRunner(executor, CliSettings(cli=config.cli))

        with tempfile.TemporaryDirectory(prefix="provider-harness-") as tmp_dir:
            cli_config = write_cli_config(Path(tmp_dir), config.provider_source)
            env_config = build_environment_config(config, cli_config)

            with provisioner.provisioned(env_config) as handle:
                provisioner.await_ready(handle, policy, deadline)
                provisioner.bootstrap(handle, credentials)
                runner.run(handle, cases, report=report, results=suite.results)

    except SetupError as e:
        logger.critical(f"Setup failed: {e}")
        output = getattr(e, "output", "")
        if output:
            logger.critical(f"Command output:\n{output}")
        suite.error = str(e)
    except (ExecConnectionError, RunDeadlineExceeded) as e:
        logger.critical(f"Run aborted: {e}")
        suite.error = str(e)
    finally:
        if owns_client and client is not None:
            client.close()
        if report is not None:
            report.write_suite(suite)

    return suite
