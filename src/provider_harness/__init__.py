"""
Provider Harness - end-to-end tests for a provider plugin

This package provisions an ephemeral service instance in Docker, drives the
service CLI to push templates and create workspaces from them, and checks
the artifacts those workspaces write against expected pattern tables.
"""

__version__ = "0.1.0"
__description__ = "End-to-end harness validating a provider plugin against a live service"

from .config import HarnessConfig
from .environment import (
    Credentials,
    EnvironmentConfig,
    EnvironmentHandle,
    EnvironmentProvisioner,
    ReadinessPolicy,
)
from .executor import CommandExecutor, ExecutionResult
from .runner import ScenarioRunner, run_suite
from .scenarios import TestCase, load_scenarios
from .validator import validate

__all__ = [
    "HarnessConfig",
    "Credentials",
    "EnvironmentConfig",
    "EnvironmentHandle",
    "EnvironmentProvisioner",
    "ReadinessPolicy",
    "CommandExecutor",
    "ExecutionResult",
    "ScenarioRunner",
    "run_suite",
    "TestCase",
    "load_scenarios",
    "validate",
    "__version__",
    "__description__",
]
