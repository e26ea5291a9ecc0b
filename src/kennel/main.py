"""Run orchestration for generate, plan and update.

Every invocation is one short-lived pass:
1. Load and resolve all definitions, apply the project filter
2. Write snapshots (all modes)
3. Plan against remote state (plan, update)
4. Confirm and apply (update)

Errors never escape as tracebacks: every expected failure maps to exit
code 1 with a single message on stderr.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import click

from .api import ApiError, MonitoringApi
from .config import Config, ConfigurationError, RunMode
from .confirmation import ConfirmationGate
from .definitions import (
    DefinitionLoadError,
    ProjectFilterError,
    filter_projects,
    load_projects,
    records_of,
)
from .generator import DuplicateTrackingIdError, Generator, SnapshotWriteError
from .planner import Planner, RemoteMutationError
from .tracking import ValidationError

if TYPE_CHECKING:
    from .planner import Echo

logger = logging.getLogger(__name__)

# Failures reported as a message instead of a traceback
EXPECTED_ERRORS = (
    ConfigurationError,
    DefinitionLoadError,
    ProjectFilterError,
    DuplicateTrackingIdError,
    SnapshotWriteError,
    ValidationError,
    ApiError,
    RemoteMutationError,
)

TEXT_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"

_STANDARD_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)

_handler: logging.Handler | None = None


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Send logs to stderr, keeping stdout for the plan and results.

    Calling it again replaces the handler installed by the previous call.
    """
    global _handler

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if json_format else logging.Formatter(TEXT_LOG_FORMAT))

    root_logger = logging.getLogger()
    if _handler is not None:
        root_logger.removeHandler(_handler)
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())
    _handler = handler

    # Reduce noise from the HTTP stack
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def execute(
    config: Config,
    mode: RunMode,
    *,
    api: MonitoringApi | None = None,
    gate: ConfirmationGate | None = None,
    echo: Echo = click.echo,
) -> int:
    """Run one invocation.

    Args:
        config: Validated configuration.
        mode: generate, plan or update.
        api: Pre-built API client; built from the configured keys when omitted.
        gate: Confirmation gate; built from ``config.assume_yes`` when omitted.
        echo: Writer for the plan/result stream.

    Returns:
        Exit code (0 for success, 1 for any failure).
    """
    owned_api: MonitoringApi | None = None
    try:
        projects = filter_projects(load_projects(config.root), config.project_filter)
        records = records_of(projects)
        Generator(config.generated_dir, config.project_filter).generate(records)

        if mode == RunMode.GENERATE:
            return 0

        if api is None:
            config.require_api_credentials()
            api = owned_api = MonitoringApi(
                config.api_key,
                config.app_key,
                subdomain=config.subdomain,
                timeout_seconds=config.request_timeout_seconds,
            )

        planner = Planner(
            api,
            project_filter=config.project_filter,
            subdomain=config.subdomain,
            echo=echo,
        )
        if mode == RunMode.PLAN:
            planner.report(planner.plan(records))
        else:
            planner.update(records, gate or ConfirmationGate(assume_yes=config.assume_yes))
        return 0

    except EXPECTED_ERRORS as e:
        logger.error("Run failed", extra={"mode": mode.value, "error_type": type(e).__name__})
        click.echo(click.style(str(e).rstrip("\n"), fg="red"), err=True)
        return 1

    finally:
        if owned_api is not None:
            owned_api.close()

