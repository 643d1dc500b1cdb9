"""
Exception taxonomy for the provider harness.

Setup errors abort the whole run, scenario errors abort a single scenario,
and validation problems are not exceptions at all: they are collected as
violations by the validator.
"""

from typing import Optional


class HarnessError(Exception):
    """Base class for all harness errors."""

    pass


class SetupError(HarnessError):
    """Raised when the shared environment cannot be brought up."""

    pass


class ProvisionError(SetupError):
    """Raised when the container cannot be created or started."""

    pass


class ReadinessTimeoutError(SetupError):
    """Raised when the service health check never succeeds in time."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class BootstrapError(SetupError):
    """Raised when first-user setup inside the environment fails."""

    def __init__(self, message: str, exit_code: int, output: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class ExecConnectionError(HarnessError):
    """Raised when the container control API fails during an exec."""

    pass


class ExecTimeoutError(HarnessError):
    """Raised when a single command outlives the time allotted to it."""

    pass


class RunDeadlineExceeded(HarnessError):
    """Raised when the run-level deadline elapses."""

    pass


class ScenarioDefinitionError(HarnessError):
    """Raised when a scenario table or one of its patterns is malformed."""

    pass


class ScenarioError(HarnessError):
    """
    Base class for failures that abort a single scenario.

    Carries the template name and, when a command was involved, its exit
    code and combined output so reports can show them without a rerun.
    """

    step = "scenario"

    def __init__(
        self,
        template_name: str,
        message: str,
        exit_code: Optional[int] = None,
        output: str = "",
    ):
        super().__init__(f"{template_name}: {message}")
        self.template_name = template_name
        self.exit_code = exit_code
        self.output = output


class PushFailed(ScenarioError):
    step = "push"


class InstantiateFailed(ScenarioError):
    step = "instantiate"


class FetchFailed(ScenarioError):
    step = "fetch"


class DecodeFailed(ScenarioError):
    step = "decode"
