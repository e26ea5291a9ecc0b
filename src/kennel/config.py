"""Configuration management with validation.

Configuration is read from the environment once per invocation and
validated up front so a bad setting fails before any file is written or
any API call is made.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class RunMode(str, Enum):
    """What a single invocation does."""

    GENERATE = "generate"  # Write snapshots only
    PLAN = "plan"  # Generate, then show the plan without mutating
    UPDATE = "update"  # Generate, plan, confirm and apply


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


DEFAULT_SUBDOMAIN = "app"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
MIN_REQUEST_TIMEOUT_SECONDS = 1
MAX_REQUEST_TIMEOUT_SECONDS = 300
DEFAULT_LOG_LEVEL = "INFO"

VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
VALID_SUBDOMAIN_PATTERN = r"^[a-z0-9][a-z0-9\-.]*$"
VALID_PROJECT_PATTERN = r"^[a-z0-9][a-z0-9_\-]*$"


@dataclass(frozen=True)
class Config:
    """Invocation configuration.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-run.
    """

    # Paths
    root: Path = field(default_factory=lambda: Path("."))
    generated_dir: Path | None = None

    # Restrict the run to these project kennel_ids (None means all)
    project_filter: frozenset[str] | None = None

    # Remote API
    api_key: str = ""
    app_key: str = ""
    subdomain: str = DEFAULT_SUBDOMAIN
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS

    # Logging
    log_level: str = DEFAULT_LOG_LEVEL
    json_logs: bool = False

    # Skip the interactive confirmation in update mode
    assume_yes: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if self.generated_dir is None:
            object.__setattr__(self, "generated_dir", self.root / "generated")

        if not self.root.is_dir():
            errors.append(f"KENNEL_ROOT does not exist: {self.root}")
        else:
            # Snapshot cleanup must never reach the definitions
            root = self.root.resolve()
            generated_dir = self.generated_dir.resolve()
            if generated_dir == root or generated_dir in root.parents:
                errors.append(
                    f"KENNEL_GENERATED_DIR must not contain KENNEL_ROOT: {self.generated_dir}"
                )

        if self.project_filter is not None:
            if not self.project_filter:
                errors.append("PROJECT must name at least one project")
            for name in sorted(self.project_filter):
                if not re.match(VALID_PROJECT_PATTERN, name):
                    errors.append(f"PROJECT must match pattern {VALID_PROJECT_PATTERN}: {name}")

        if not re.match(VALID_SUBDOMAIN_PATTERN, self.subdomain):
            errors.append(f"DATADOG_SUBDOMAIN is invalid: {self.subdomain}")

        if not (
            MIN_REQUEST_TIMEOUT_SECONDS
            <= self.request_timeout_seconds
            <= MAX_REQUEST_TIMEOUT_SECONDS
        ):
            errors.append(
                f"KENNEL_REQUEST_TIMEOUT must be between {MIN_REQUEST_TIMEOUT_SECONDS} "
                f"and {MAX_REQUEST_TIMEOUT_SECONDS} seconds"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {sorted(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    def require_api_credentials(self) -> None:
        """Fail unless both API keys are configured.

        Raises:
            ConfigurationError: If a key is missing.
        """
        missing = [
            name
            for name, value in (("DATADOG_API_KEY", self.api_key), ("DATADOG_APP_KEY", self.app_key))
            if not value
        ]
        if missing:
            raise ConfigurationError(f"{', '.join(missing)} required for plan and update")

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables.

        Keyword arguments override the matching environment value; command
        line options are passed this way.

        Environment Variables:
            KENNEL_ROOT: Directory holding projects/, parts/ and teams/ (default: .)
            KENNEL_GENERATED_DIR: Snapshot output directory (default: <root>/generated)
            PROJECT: Comma-separated project kennel_ids to restrict the run to
            DATADOG_API_KEY: API key
            DATADOG_APP_KEY: Application key
            DATADOG_SUBDOMAIN: Site subdomain (default: app)
            KENNEL_REQUEST_TIMEOUT: API request timeout in seconds (default: 30)
            LOG_LEVEL: Logging level (default: INFO)
            LOG_FORMAT: "json" for structured logs, anything else for text
            KENNEL_AUTO_CONFIRM: If "true", apply without asking (default: false)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_frozenset(key: str) -> frozenset[str] | None:
            value = os.environ.get(key, "")
            if not value:
                return None
            return frozenset(item.strip() for item in value.split(",") if item.strip())

        root = Path(os.environ.get("KENNEL_ROOT", "."))
        generated_dir = os.environ.get("KENNEL_GENERATED_DIR")

        values: dict[str, Any] = dict(
            root=root,
            generated_dir=Path(generated_dir) if generated_dir else None,
            project_filter=get_frozenset("PROJECT"),
            api_key=os.environ.get("DATADOG_API_KEY", ""),
            app_key=os.environ.get("DATADOG_APP_KEY", ""),
            subdomain=os.environ.get("DATADOG_SUBDOMAIN", DEFAULT_SUBDOMAIN),
            request_timeout_seconds=get_int(
                "KENNEL_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS
            ),
            log_level=os.environ.get("LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
            json_logs=os.environ.get("LOG_FORMAT", "").lower() == "json",
            assume_yes=get_bool("KENNEL_AUTO_CONFIRM", False),
        )
        values.update(overrides)
        return cls(**values)
