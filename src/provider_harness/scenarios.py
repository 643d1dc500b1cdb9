"""
Scenario table.

Scenarios are declared in a YAML file and loaded into immutable TestCase
objects. The file is validated against a JSON schema and every pattern is
compiled up front, so a malformed table fails before any environment is
provisioned.
"""

from __future__ import annotations

import logging
import platform
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Pattern, Tuple

import jsonschema
import yaml

from .errors import ScenarioDefinitionError

logger = logging.getLogger(__name__)

TEMPLATE_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_-]*$"

SCENARIO_FILE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "scenarios": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "template": {"type": "string", "pattern": TEMPLATE_NAME_PATTERN},
                    "description": {"type": "string"},
                    "expected_output": {
                        "type": "object",
                        "additionalProperties": {"type": "string"},
                    },
                },
                "required": ["template", "expected_output"],
                "additionalProperties": False,
            },
        }
    },
    "required": ["scenarios"],
    "additionalProperties": False,
}

# Go-style names, as reported by the provisioner inside the service
_GO_ARCH = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "i386": "386",
    "i686": "386",
}

_PLACEHOLDER = re.compile(r"\$\{([a-z_]+)\}")


def platform_variables() -> Dict[str, str]:
    """Variables available to patterns as ${name}."""
    machine = platform.machine().lower()
    return {
        "host_arch": _GO_ARCH.get(machine, machine),
        "host_os": platform.system().lower(),
    }


def substitute(pattern: str, variables: Mapping[str, str]) -> str:
    """Replace ${name} placeholders, escaping the substituted values."""

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in variables:
            raise ScenarioDefinitionError(f"Unknown placeholder in pattern: ${{{name}}}")
        return re.escape(variables[name])

    return _PLACEHOLDER.sub(_replace, pattern)


@dataclass(frozen=True)
class ExpectedField:
    """A field name paired with the compiled pattern its value must satisfy."""

    name: str
    pattern: Pattern[str]

    @classmethod
    def build(cls, name: str, pattern: str) -> ExpectedField:
        try:
            compiled = re.compile(pattern)
        except re.error as e:
            raise ScenarioDefinitionError(
                f"Invalid pattern for field {name!r}: {pattern!r} ({e})"
            )
        return cls(name=name, pattern=compiled)


@dataclass(frozen=True)
class TestCase:
    """One scenario: a template fixture and the output it must produce."""

    __test__ = False  # not a pytest test class

    template_name: str
    expected: Tuple[ExpectedField, ...]
    description: str = ""

    @classmethod
    def build(
        cls,
        template_name: str,
        expected_output: Mapping[str, str],
        description: str = "",
        variables: Mapping[str, str] | None = None,
    ) -> TestCase:
        """
        Build a test case, compiling every pattern.

        Raises:
            ScenarioDefinitionError: If the name or a pattern is malformed
        """
        if not re.match(TEMPLATE_NAME_PATTERN, template_name):
            raise ScenarioDefinitionError(f"Invalid template name: {template_name!r}")

        if variables is None:
            variables = platform_variables()

        fields = tuple(
            ExpectedField.build(name, substitute(pattern, variables))
            for name, pattern in expected_output.items()
        )
        return cls(template_name=template_name, expected=fields, description=description)

    @property
    def expected_patterns(self) -> Dict[str, Pattern[str]]:
        return {field.name: field.pattern for field in self.expected}

    @property
    def output_file(self) -> str:
        return f"{self.template_name}.json"


def parse_scenarios(
    data: Any, variables: Mapping[str, str] | None = None
) -> List[TestCase]:
    """
    Build test cases from parsed scenario data.

    Raises:
        ScenarioDefinitionError: If the data fails schema validation,
            contains a bad pattern, or repeats a template name
    """
    try:
        jsonschema.validate(data, SCENARIO_FILE_SCHEMA)
    except jsonschema.ValidationError as e:
        location = "/".join(str(part) for part in e.absolute_path) or "<root>"
        raise ScenarioDefinitionError(f"Invalid scenario file at {location}: {e.message}")

    cases: List[TestCase] = []
    seen: set[str] = set()
    for entry in data["scenarios"]:
        name = entry["template"]
        if name in seen:
            raise ScenarioDefinitionError(f"Duplicate scenario template: {name}")
        seen.add(name)
        cases.append(
            TestCase.build(
                name,
                entry["expected_output"],
                description=entry.get("description", ""),
                variables=variables,
            )
        )
    return cases


def load_scenarios(
    path: str | Path, variables: Mapping[str, str] | None = None
) -> List[TestCase]:
    """
    Load and validate scenarios from a YAML file.

    Args:
        path: Path to the scenario file
        variables: Placeholder values, defaults to platform_variables()

    Returns:
        Test cases in file order

    Raises:
        ScenarioDefinitionError: If the file cannot be read or is invalid
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ScenarioDefinitionError(f"Cannot read scenario file {path}: {e}")
    except yaml.YAMLError as e:
        raise ScenarioDefinitionError(f"Scenario file {path} contains invalid YAML: {e}")

    cases = parse_scenarios(data, variables=variables)
    logger.info(f"Loaded {len(cases)} scenarios from {path}")
    return cases


def select_scenarios(cases: Iterable[TestCase], names: Iterable[str]) -> List[TestCase]:
    """Filter cases by template name, keeping table order."""
    wanted = set(names)
    if not wanted:
        return list(cases)

    cases = list(cases)
    unknown = wanted - {case.template_name for case in cases}
    if unknown:
        raise ScenarioDefinitionError(f"Unknown scenarios: {', '.join(sorted(unknown))}")
    return [case for case in cases if case.template_name in wanted]
