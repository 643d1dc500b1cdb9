"""
Output validation.

Compares the key/value pairs decoded from a workspace artifact against the
expected pattern table of a scenario. The comparison is closed-world: every
expected field must be present and match, and every actual field must be
expected. All violations are returned at once.
"""

import re
from dataclasses import dataclass
from typing import List, Mapping, Pattern, Union

ExpectedPattern = Union[Pattern[str], str]


@dataclass(frozen=True)
class PatternMismatch:
    """An expected field whose value does not satisfy its pattern."""

    field: str
    pattern: str
    actual: str
    present: bool = True

    kind = "pattern_mismatch"

    def describe(self) -> str:
        if not self.present:
            return f"{self.field}: missing, pattern {self.pattern!r} does not match empty value"
        return f"{self.field}: {self.actual!r} does not match pattern {self.pattern!r}"


@dataclass(frozen=True)
class UnexpectedField:
    """A field in the artifact that the scenario does not expect."""

    field: str
    value: str

    kind = "unexpected_field"

    def describe(self) -> str:
        return f"unexpected field in actual {self.field!r}={self.value!r}"


@dataclass(frozen=True)
class MissingField:
    """An expected field absent from the artifact whose pattern accepts ''."""

    field: str
    pattern: str

    kind = "missing_field"

    def describe(self) -> str:
        return f"{self.field}: missing (pattern {self.pattern!r} would accept an empty value)"


Violation = Union[PatternMismatch, UnexpectedField, MissingField]


def _compile(pattern: ExpectedPattern) -> Pattern[str]:
    if isinstance(pattern, str):
        return re.compile(pattern)
    return pattern


def validate(
    expected: Mapping[str, ExpectedPattern],
    actual: Mapping[str, str],
) -> List[Violation]:
    """
    Compare actual output against expected patterns.

    Patterns are applied with search semantics, so they match anywhere in
    the value unless they anchor themselves.

    Args:
        expected: Field name to compiled pattern (or pattern string)
        actual: Field name to literal value decoded from the artifact

    Returns:
        List of violations, empty when the outputs agree
    """
    violations: List[Violation] = []

    for field, raw_pattern in expected.items():
        pattern = _compile(raw_pattern)
        present = field in actual
        value = actual[field] if present else ""

        if pattern.search(value) is None:
            violations.append(
                PatternMismatch(
                    field=field, pattern=pattern.pattern, actual=value, present=present
                )
            )
        elif not present:
            violations.append(MissingField(field=field, pattern=pattern.pattern))

    for field, value in actual.items():
        if field not in expected:
            violations.append(UnexpectedField(field=field, value=value))

    return violations


def format_violations(violations: List[Violation]) -> str:
    """Render violations one per line for logs and assertion messages."""
    return "\n".join(f"  - {violation.describe()}" for violation in violations)


def violation_to_dict(violation: Violation) -> dict:
    """Convert a violation to a JSON-serializable dictionary."""
    data = {"kind": violation.kind, "field": violation.field}
    if isinstance(violation, PatternMismatch):
        data.update(
            pattern=violation.pattern, actual=violation.actual, present=violation.present
        )
    elif isinstance(violation, UnexpectedField):
        data["value"] = violation.value
    else:
        data["pattern"] = violation.pattern
    return data
