"""
Provider Harness - Command-Line Entry Point

Runs the end-to-end scenarios against an ephemeral service container and
exits nonzero if setup fails or any scenario does not pass.

Usage:
    provider-harness
    provider-harness --only test-data-source
    provider-harness --list
    provider-harness --check

Configuration is read from environment variables (see HarnessConfig).
Set TF_ACC=1 to skip the harness during acceptance-test runs.
"""

import argparse
import logging
import logging.handlers
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import HarnessConfig
from .errors import ScenarioDefinitionError
from .report import ReportWriter
from .runner import run_suite
from .scenarios import load_scenarios, select_scenarios


def setup_logging(log_level_str: str = "INFO", log_dir: str = "") -> logging.Logger:
    """
    Set up console and optional rotating file logging.

    Args:
        log_level_str: Level name for the console handler
        log_dir: Directory for a rotating log file, empty for console only

    Returns:
        Logger instance for the CLI module
    """
    log_level = getattr(logging, log_level_str.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if log_dir else log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(console_handler)

    if log_dir:
        try:
            Path(log_dir).mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                os.path.join(log_dir, "provider-harness.log"),
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
                )
            )
            root_logger.addHandler(file_handler)
        except OSError as e:
            root_logger.warning(f"Could not set up file logging: {e}")

    # urllib3 logs every docker API call at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("docker").setLevel(logging.INFO)

    return logging.getLogger(__name__)


def setup_signal_handlers(logger: logging.Logger) -> None:
    """
    Turn SIGTERM into SystemExit so the environment is released on the way out.

    SIGINT already raises KeyboardInterrupt, which unwinds the same way.
    """

    def signal_handler(signum, frame):
        signal_name = signal.Signals(signum).name
        logger.warning(f"Received {signal_name}, releasing environment and exiting")
        raise SystemExit(128 + signum)

    signal.signal(signal.SIGTERM, signal_handler)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, signal_handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="provider-harness",
        description="Validate a provider plugin against an ephemeral service instance",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--src-dir",
        help="Repository root mounted into the service (default: HARNESS_SRC_DIR or cwd)",
    )
    parser.add_argument(
        "--scenario-file",
        help="Scenario YAML file (default: SCENARIO_FILE relative to the source dir)",
    )
    parser.add_argument(
        "--only",
        action="append",
        default=[],
        metavar="TEMPLATE",
        help="Run only the named scenario (repeatable)",
    )
    parser.add_argument("--report", help="Append a JSON Lines report to this file")
    parser.add_argument("--list", action="store_true", help="List scenarios and exit")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate configuration and scenarios without running them",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Process exit status: 0 when every scenario passed, 1 otherwise
    """
    args = build_parser().parse_args(argv)

    try:
        config = HarnessConfig(src_dir=args.src_dir)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    logger = setup_logging(config.log_level, config.log_dir)

    if config.skip and not (args.list or args.check):
        logger.info("Skipping integration tests during tf acceptance tests (TF_ACC=1)")
        return 0

    scenario_path = Path(args.scenario_file) if args.scenario_file else config.scenario_path

    try:
        cases = select_scenarios(load_scenarios(scenario_path), args.only)
    except ScenarioDefinitionError as e:
        logger.critical(f"Invalid scenarios: {e}")
        return 1

    if args.list:
        for case in cases:
            print(case.template_name)
        return 0

    errors = config.validate(check_scenario_file=False)
    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        return 1

    for key, value in config.get_startup_summary().items():
        logger.info(f"{key}: {value}")

    if args.check:
        logger.info(f"Configuration and {len(cases)} scenario(s) are valid")
        return 0

    setup_signal_handlers(logger)

    report_path = args.report or config.report_path
    report = ReportWriter(report_path) if report_path else None

    suite = run_suite(config, cases, report=report)

    for result in suite.results:
        logger.info(result.summary())
    if suite.error:
        logger.error(f"Run failed: {suite.error}")

    counts = suite.counts()
    logger.info(
        f"{'PASS' if suite.ok else 'FAIL'}: {counts['passed']} passed, "
        f"{counts['failed']} failed, {counts['error']} errored "
        f"of {len(cases)} scenario(s)"
    )
    return 0 if suite.ok else 1


if __name__ == "__main__":
    sys.exit(main())
