"""Kennel CLI.

Usage:
    kennel generate               # Write snapshots for all definitions
    kennel plan -p my_project     # Show what update would change
    kennel update --yes           # Apply without the confirmation prompt

Every option can also be set through the environment (see ``Config.from_env``);
options given on the command line win.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import click

from .config import Config, ConfigurationError, RunMode
from .main import execute, setup_logging


@click.group()
@click.version_option(version="0.1.0", prog_name="kennel")
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory holding projects/, parts/ and teams/",
)
@click.option(
    "--generated-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Snapshot output directory",
)
@click.option(
    "--project",
    "-p",
    "projects",
    multiple=True,
    help="Restrict the run to this project (repeatable)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    root: Path | None,
    generated_dir: Path | None,
    projects: tuple[str, ...],
) -> None:
    """Manage monitors, dashboards and SLOs as code."""
    ctx.ensure_object(dict)
    overrides: dict[str, Any] = {}
    if root is not None:
        overrides["root"] = root
    if generated_dir is not None:
        overrides["generated_dir"] = generated_dir
    if projects:
        overrides["project_filter"] = frozenset(projects)
    ctx.obj["overrides"] = overrides


def _run(ctx: click.Context, mode: RunMode, **overrides: Any) -> None:
    try:
        config = Config.from_env(**ctx.obj["overrides"], **overrides)
    except ConfigurationError as e:
        click.secho(str(e), fg="red", err=True)
        ctx.exit(1)

    setup_logging(config.log_level, config.json_logs)
    # Tests inject a fake API client through the context object
    ctx.exit(execute(config, mode, api=ctx.obj.get("api")))


@cli.command()
@click.pass_context
def generate(ctx: click.Context) -> None:
    """Write snapshots of the resolved definitions."""
    _run(ctx, RunMode.GENERATE)


@cli.command()
@click.pass_context
def plan(ctx: click.Context) -> None:
    """Generate, then show the changes update would apply."""
    _run(ctx, RunMode.PLAN)


@cli.command()
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Apply without asking")
@click.pass_context
def update(ctx: click.Context, assume_yes: bool) -> None:
    """Generate, plan, confirm and apply."""
    if assume_yes:
        _run(ctx, RunMode.UPDATE, assume_yes=True)
    else:
        _run(ctx, RunMode.UPDATE)


if __name__ == "__main__":
    cli()
