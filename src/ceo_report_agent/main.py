"""Command-line entry point for the CEO report agent."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional

import structlog

from .config import Settings
from .pipeline import run_report


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure structlog + stdlib logging."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stdout,
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


LOGGER = structlog.get_logger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """CLI argument parsing."""
    parser = argparse.ArgumentParser(description="Collect Slack/Notion/revenue/calendar data and send the CEO report.")
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Lookback window in days (1-30). Defaults to DEFAULT_DAYS.",
    )
    parser.add_argument(
        "--no-deliver",
        action="store_true",
        help="Print the report to stdout instead of sending it on Slack.",
    )
    return parser.parse_args(argv)


def cli(argv: Optional[list[str]] = None) -> int:
    """Console script entrypoint."""
    args = parse_args(argv)

    try:
        settings = Settings()
    except Exception as exc:  # pragma: no cover - startup validation
        configure_logging()
        LOGGER.exception("settings.error", error=str(exc))
        return 2

    configure_logging(settings.log_level)

    try:
        summary, report = asyncio.run(run_report(settings, args.days, deliver=not args.no_deliver))
    except Exception as exc:  # pragma: no cover - top level
        LOGGER.exception("agent.failed", error=str(exc))
        return 1

    if args.no_deliver:
        print(report)
    LOGGER.info("agent.complete", **summary.model_dump())
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(cli())
