"""Command-line entry point for the S3 mirror."""
from __future__ import annotations

import argparse
import logging
import signal
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from .config import (
    ConfigError,
    Settings,
    build_watch_target,
    load_settings,
    parse_settle_delay,
    parse_storage_class,
)
from .monitor import create_monitor
from .store import StoreError
from .version import __version__
from .watch import WatchError

logger = logging.getLogger("echos3")

_NOISY_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3", "watchdog")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="echos3",
        description="Mirror changes to a local file or directory tree into S3",
    )
    parser.add_argument("local_path", help="File or directory to watch")
    parser.add_argument("remote_uri", help="Destination in the form s3://bucket[/key/prefix]")
    parser.add_argument(
        "--delete",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Delete objects in S3 when they are deleted locally",
    )
    parser.add_argument(
        "--storage-class",
        default=None,
        help="S3 storage class for uploads (default: INTELLIGENT_TIERING)",
    )
    parser.add_argument(
        "--settle-delay",
        default=None,
        help="Seconds to wait before inspecting a changed path (default: 0.1)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Optional YAML settings file supplying defaults for the options above",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s version {__version__}",
    )
    return parser


def resolve_settings(args: argparse.Namespace, settings: Settings) -> Settings:
    """Overlay command-line options on the settings file values."""

    overrides = {}
    if args.delete is not None:
        overrides["delete"] = args.delete
    if args.storage_class is not None:
        overrides["storage_class"] = parse_storage_class(args.storage_class, field_name="--storage-class")
    if args.settle_delay is not None:
        overrides["settle_delay"] = parse_settle_delay(args.settle_delay, field_name="--settle-delay")
    if args.log_level is not None:
        overrides["log_level"] = args.log_level.upper()
    return replace(settings, **overrides)


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )
    logging.getLogger().setLevel(level)
    if level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.log_level or "INFO")

    try:
        settings = resolve_settings(args, load_settings(Path(args.config) if args.config else None))
        _configure_logging(settings.log_level)
        target = build_watch_target(
            Path(args.local_path),
            args.remote_uri,
            delete=settings.delete,
            storage_class=settings.storage_class,
        )
    except ConfigError as exc:
        logger.error("%s", exc)
        raise SystemExit(2) from exc

    try:
        monitor = create_monitor(target, settings)
    except StoreError as exc:
        logger.error("%s", exc)
        raise SystemExit(1) from exc

    signal.signal(signal.SIGTERM, lambda _signum, _frame: monitor.stop())

    try:
        monitor.run()
    except (WatchError, OSError) as exc:
        logger.error("Application failed: %s", exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
