"""CLI entry point for running a test registry."""

import argparse
import asyncio
import importlib
import logging
import signal
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from harness.cancellation import CancellationToken
from harness.errors import ConfigError, HarnessError
from harness.models.config import RunConfig
from harness.orchestrator import Orchestrator, exit_status
from harness.registry import TestRegistry
from harness.reporting.json_reporter import JsonReporter
from harness.reporting.loading import available_reporters, load_reporter

EXIT_CONFIG_ERROR = 4

log = logging.getLogger("harness")


def load_registry(target: str) -> TestRegistry:
    """Load a registry from ``module[:attribute]``.

    The attribute (default ``registry``) is either a ``TestRegistry`` or a
    callable taking no arguments that returns one.

    Raises:
        ConfigError: If the module or attribute cannot be loaded

    """
    module_name, _, attribute = target.partition(":")
    attribute = attribute or "registry"

    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"Cannot import '{module_name}': {exc}") from exc

    try:
        value: Any = getattr(module, attribute)
    except AttributeError:
        raise ConfigError(
            f"Module '{module_name}' has no attribute '{attribute}'"
        ) from None

    if not isinstance(value, TestRegistry) and callable(value):
        value = value()
    if not isinstance(value, TestRegistry):
        raise ConfigError(
            f"'{target}' is a {type(value).__name__}, expected a TestRegistry"
        )
    return value


def build_config(args: argparse.Namespace) -> RunConfig:
    """Translate parsed arguments into a validated run configuration."""
    return RunConfig.build(
        {
            "selection": {
                "names": tuple(args.name),
                "tags": frozenset(args.tag),
                "exclude_tags": frozenset(args.exclude_tag),
            },
            "concurrency": args.concurrency,
            "global_timeout": args.timeout,
            "fail_fast": args.fail_fast,
            "cancel_grace": args.cancel_grace,
            "provisioner": {"temp_root": args.temp_root},
        }
    )


async def run(
    target: str,
    config: RunConfig,
    output_format: str = "text",
    report_file: Path | None = None,
) -> int:
    """Run the registry named by ``target`` and return the exit code."""
    log.info("Loading registry: %s", target)
    registry = load_registry(target)
    reporter = load_reporter(output_format)

    token = CancellationToken()
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, token.cancel, signum.name)
        except (NotImplementedError, RuntimeError):  # pragma: no cover
            log.debug("Cannot install handler for %s", signum.name)
        else:
            installed.append(signum)

    try:
        report = await Orchestrator(registry=registry).run(config, token)
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)

    print(reporter.render(report), end="")
    if report_file is not None:
        JsonReporter().write(report, report_file)
        log.info("Report written to %s", report_file)

    return exit_status(report)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="harness", description="Run end-to-end tests from a test registry"
    )
    parser.add_argument(
        "target",
        help="Registry to run as module[:attribute] (default attribute: registry)",
    )
    parser.add_argument(
        "-k",
        "--name",
        action="append",
        default=[],
        help="Glob pattern selecting tests by name (repeatable)",
    )
    parser.add_argument(
        "--tag",
        action="append",
        default=[],
        help="Select tests carrying this tag (repeatable)",
    )
    parser.add_argument(
        "--exclude-tag",
        action="append",
        default=[],
        help="Drop tests carrying this tag (repeatable)",
    )
    parser.add_argument(
        "-j",
        "--concurrency",
        type=int,
        default=4,
        help="Number of tests running at the same time",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Global timeout for the whole run in seconds",
    )
    parser.add_argument(
        "--fail-fast",
        action="store_true",
        help="Stop dispatching tests after the first failure",
    )
    parser.add_argument(
        "--cancel-grace",
        type=float,
        default=5.0,
        help="Seconds to wait for a cancelled test before abandoning it",
    )
    parser.add_argument(
        "--temp-root",
        type=Path,
        default=None,
        help="Directory for temporary directories",
    )
    parser.add_argument(
        "--format",
        default="text",
        help=(
            "Reporter used for standard output "
            f"({', '.join(available_reporters())})"
        ),
    )
    parser.add_argument(
        "--report-file",
        type=Path,
        default=None,
        help="Also write a JSON report to this file",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    args = parse_args(argv)
    # Registries usually live in the project being tested.
    sys.path.insert(0, str(Path.cwd()))

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        config = build_config(args)
        exit_code = asyncio.run(
            run(
                target=args.target,
                config=config,
                output_format=args.format,
                report_file=args.report_file,
            )
        )
    except HarnessError as exc:
        log.error("%s", exc)
        exit_code = EXIT_CONFIG_ERROR
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
