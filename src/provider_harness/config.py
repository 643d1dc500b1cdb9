"""Configuration management for the provider harness."""

import os
from pathlib import Path
from typing import Any, Dict, List


def _env_int(name: str, default: str) -> int:
    value = os.environ.get(name, "") or default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid integer value for {name}: {value}")


def _env_float(name: str, default: str) -> float:
    value = os.environ.get(name, "") or default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Invalid number value for {name}: {value}")


class HarnessConfig:
    """Harness configuration read once from the environment."""

    def __init__(self, src_dir: str | None = None):
        """Initialize configuration.

        Args:
            src_dir: Optional repository root, overriding HARNESS_SRC_DIR
        """
        if src_dir:
            self.src_dir = Path(src_dir).resolve()
        else:
            self.src_dir = Path(os.environ.get("HARNESS_SRC_DIR") or os.getcwd()).resolve()

        self._defaults = {
            # Service image
            "image": os.environ.get("CODER_IMAGE") or "ghcr.io/coder/coder",
            "version": os.environ.get("CODER_VERSION") or "latest",
            "access_url": os.environ.get("CODER_ACCESS_URL") or "http://localhost:3000",
            "cli": os.environ.get("CODER_CLI") or "coder",

            # Timing
            "timeout_mins": _env_int("TIMEOUT_MINS", "10"),
            "ready_timeout_sec": _env_float("READY_TIMEOUT_SEC", "10"),
            "ready_poll_interval_sec": _env_float("READY_POLL_INTERVAL_SEC", "1"),

            # Provider under test
            "provider_binary": os.environ.get("PROVIDER_BINARY") or "terraform-provider-coder",
            "provider_source": os.environ.get("PROVIDER_SOURCE") or "coder/coder",

            # Scenarios and reporting
            "scenario_file": os.environ.get("SCENARIO_FILE") or "integration/scenarios.yaml",
            "report_path": os.environ.get("REPORT_PATH", ""),

            # Logging
            "log_level": os.environ.get("LOG_LEVEL", "INFO"),
            "log_dir": os.environ.get("LOG_DIR", ""),

            # Acceptance test runs build the provider differently; skip then
            "skip": os.environ.get("TF_ACC") == "1",
        }

    def __getattr__(self, name: str) -> Any:
        """Get configuration value."""
        if name in self._defaults:
            return self._defaults[name]
        raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        """Prevent modification of configuration after initialization."""
        try:
            defaults = object.__getattribute__(self, '_defaults')
            if name in defaults:
                raise AttributeError(f"Configuration is immutable: cannot set '{name}'")
        except AttributeError as e:
            if "immutable" in str(e):
                raise
        super().__setattr__(name, value)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value with optional default."""
        return self._defaults.get(key, default)

    @property
    def image_ref(self) -> str:
        return f"{self.image}:{self.version}"

    @property
    def timeout_seconds(self) -> int:
        return self.timeout_mins * 60

    @property
    def provider_binary_path(self) -> Path:
        return self.src_dir / self.provider_binary

    @property
    def scenario_path(self) -> Path:
        path = Path(self.scenario_file)
        return path if path.is_absolute() else self.src_dir / path

    def validate(self, check_scenario_file: bool = True) -> List[str]:
        """Validate configuration and return list of errors.

        Args:
            check_scenario_file: Also require the configured scenario file

        Returns:
            List of validation error messages. Empty list means valid.
        """
        errors = []

        if self.timeout_mins <= 0:
            errors.append(f"TIMEOUT_MINS must be positive: {self.timeout_mins}")
        if self.ready_timeout_sec <= 0:
            errors.append(f"READY_TIMEOUT_SEC must be positive: {self.ready_timeout_sec}")
        if self.ready_poll_interval_sec <= 0:
            errors.append(
                f"READY_POLL_INTERVAL_SEC must be positive: {self.ready_poll_interval_sec}"
            )

        if not self.src_dir.is_dir():
            errors.append(f"Source directory not found: {self.src_dir}")
        elif check_scenario_file and not self.scenario_path.is_file():
            errors.append(f"Scenario file not found: {self.scenario_path}")

        if self.report_path:
            report_dir = Path(self.report_path).parent
            if not report_dir.exists():
                try:
                    report_dir.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    errors.append(f"Cannot create report directory {report_dir}: {e}")

        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return self._defaults.copy()

    def __str__(self) -> str:
        return f"HarnessConfig(src_dir={self.src_dir})"

    def __repr__(self) -> str:
        return f"HarnessConfig(src_dir={self.src_dir}, image={self.image_ref})"

    def get_startup_summary(self) -> Dict[str, Any]:
        """Get configuration summary for logging.

        Returns:
            Dictionary with key configuration values for startup logging
        """
        return {
            "image": self.image_ref,
            "access_url": self.access_url,
            "src_dir": str(self.src_dir),
            "provider_binary": str(self.provider_binary_path),
            "scenario_file": str(self.scenario_path),
            "timeout_mins": self.timeout_mins,
            "ready_timeout_sec": self.ready_timeout_sec,
            "ready_poll_interval_sec": self.ready_poll_interval_sec,
            "report_path": self.report_path or "disabled",
            "log_level": self.log_level,
        }
