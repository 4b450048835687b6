"""Command-line entry point running the build dispatcher."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import typing as typ

from buildwatch.dispatch import (
    BuildDispatchService,
    DispatcherConfig,
    DispatcherConfigError,
    OverflowPolicy,
)
from buildwatch.export.errors import ExportConfigError
from buildwatch.handlers import BUILTIN_VARIANTS, HandlerConfigError
from buildwatch.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_info,
    log_warning,
)

logger = get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="buildwatch",
        description=(
            "Follow a build export server and run handlers over each build's "
            "events. Options override BUILDWATCH_* environment variables."
        ),
    )
    parser.add_argument("--server-url", help="Build export server base URL")
    parser.add_argument(
        "--since",
        help="Start marker: 'now' or epoch milliseconds (default: now)",
    )
    parser.add_argument(
        "--max-concurrent",
        type=int,
        help="Maximum number of builds processed at once",
    )
    parser.add_argument(
        "--max-pending",
        type=int,
        help="Bound on builds waiting for a slot (default: unbounded)",
    )
    parser.add_argument(
        "--overflow-policy",
        choices=[policy.value for policy in OverflowPolicy],
        help="What to do when the pending queue is full",
    )
    parser.add_argument(
        "--idle-timeout",
        type=float,
        help="Seconds without events before a build stream is abandoned",
    )
    parser.add_argument(
        "--handler",
        action="append",
        dest="handlers",
        choices=sorted(BUILTIN_VARIANTS),
        help="Built-in handler to run; repeat for several (default: all)",
    )
    parser.add_argument("--log-level", help="Log level (default: INFO)")
    return parser


def _load_config(args: argparse.Namespace) -> DispatcherConfig:
    """Merge command-line overrides into environment configuration."""
    overrides: dict[str, typ.Any] = {
        "server_url": args.server_url,
        "since": args.since,
        "max_concurrent_builds": args.max_concurrent,
        "max_pending_builds": args.max_pending,
        "overflow_policy": (
            OverflowPolicy(args.overflow_policy) if args.overflow_policy else None
        ),
        "idle_timeout_s": args.idle_timeout,
        "handlers": tuple(args.handlers) if args.handlers else None,
        "log_level": args.log_level,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}

    base = DispatcherConfig.from_env(server_url=overrides.pop("server_url", None))
    return dataclasses.replace(base, **overrides)


def main(argv: list[str] | None = None) -> int:
    """Run the dispatcher until interrupted.

    Parameters
    ----------
    argv : list[str] | None, optional
        Command-line arguments. ``None`` defaults to ``sys.argv``.

    Returns
    -------
    int
        Exit code: 0 after an interrupt, 1 when configuration is invalid.

    """
    args = _build_parser().parse_args(argv)
    try:
        config = _load_config(args)
        service = BuildDispatchService.from_config(config)
    except (DispatcherConfigError, ExportConfigError, HandlerConfigError) as exc:
        log_error(logger, "Invalid buildwatch configuration: %s", exc)
        return 1

    normalized_level, invalid_level = configure_logging(config.log_level)
    if invalid_level:
        log_warning(
            logger,
            "Invalid log level %r, falling back to %s",
            config.log_level,
            normalized_level,
        )

    log_info(
        logger,
        "Starting buildwatch against %s (since=%s max_concurrent=%d handlers=%s)",
        config.server_url,
        config.since,
        config.max_concurrent_builds,
        ",".join(variant.name for variant in service.registry.variants),
    )
    try:
        asyncio.run(service.run(config.since))
    except KeyboardInterrupt:
        log_info(logger, "Interrupted; stats=%s", service.scheduler.stats)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
