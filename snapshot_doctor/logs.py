"""structlog setup. Log events go to stderr so that --json stdout stays clean."""

from __future__ import annotations

import logging
import os
import sys

import structlog

LOG_LEVEL_ENV = "SNAPSHOT_DOCTOR_LOG_LEVEL"
LOG_FORMAT_ENV = "SNAPSHOT_DOCTOR_LOG_FORMAT"


def resolve_level(*, verbose: bool = False, quiet: bool = False) -> int:
    if verbose:
        return logging.DEBUG
    if quiet:
        return logging.ERROR
    level_name = os.getenv(LOG_LEVEL_ENV, "WARNING").upper()
    return getattr(logging, level_name, logging.WARNING)


def setup_logging(*, verbose: bool = False, quiet: bool = False, json_logs: bool | None = None) -> None:
    log_level = resolve_level(verbose=verbose, quiet=quiet)
    if json_logs is None:
        json_logs = os.getenv(LOG_FORMAT_ENV, "").lower() == "json"

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=False,
    )
