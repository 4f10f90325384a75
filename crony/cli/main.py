#!/usr/bin/env python3
"""Main CLI entry point for crony using Typer.

Runs crontabs stored in git repositories and offers helpers for checking
crontab files and schedule expressions.
"""

import asyncio
import logging
from datetime import datetime
from enum import IntEnum
from pathlib import Path
from typing import List, Optional

import typer
from typing_extensions import Annotated

from .. import __version__
from ..scheduling.cron import Schedule
from ..scheduling.parser import CronValidationError, PREDEFINED_LABELS, parse_crontab, parse_schedule
from ..scheduling.service import CronyService
from .config import ConfigurationError, CronyConfig, load_configuration, print_configuration


logger = logging.getLogger(__name__)


class ExitCode(IntEnum):
    """CLI exit codes."""
    SUCCESS = 0
    CONFIG_ERROR = 3      # Configuration, crontab or expression error
    RUNTIME_ERROR = 4     # Runtime error during execution


app = typer.Typer(
    name="crony",
    help="crony - run a crontab kept in a git repository",
    add_completion=False,
)


def configure_logging(config: CronyConfig) -> None:
    logging.basicConfig(level=config.log_level, format=config.log_format, force=True)


def parse_expression(expression: str) -> Schedule:
    """Parse ``@label`` or five whitespace-separated schedule fields."""
    expression = expression.strip()
    if expression.startswith("@"):
        schedule = PREDEFINED_LABELS.get(expression)
        if schedule is None:
            raise CronValidationError(f"unknown label {expression}")
        return schedule
    return parse_schedule(expression.split())


@app.callback()
def main():
    """
    crony - run a crontab kept in a git repository.

    Each run happens on its own branch; output is committed and pushed back
    to the repository the crontab came from.
    """
    pass


@app.command(name="version")
def show_version():
    """Show version information."""
    typer.echo(f"crony v{__version__}")


@app.command()
def run(
    origins: Annotated[
        List[str],
        typer.Argument(help="Repositories (URLs or paths) holding a crontab")
    ],

    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Configuration file (YAML or JSON)")
    ] = None,

    pull_frequency: Annotated[
        Optional[str],
        typer.Option("--pull-frequency", help="Rate at which to check for upstream crontab changes, e.g. 5m")
    ] = None,

    crontab_path: Annotated[
        Optional[str],
        typer.Option("--crontab-path", help="Crontab location inside the repository")
    ] = None,

    shell: Annotated[
        Optional[str],
        typer.Option("--shell", help="Shell used to run commands")
    ] = None,

    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", help="Logging level")
    ] = None,
):
    """Run the crontabs of one or more repositories until interrupted."""
    try:
        config = load_configuration(
            config_file,
            cli_overrides={
                "pull_frequency": pull_frequency,
                "crontab_path": crontab_path,
                "shell": shell,
                "log_level": log_level,
            },
        )
    except ConfigurationError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    configure_logging(config)

    async def _run_services():
        services = [CronyService(origin, config.service_config()) for origin in origins]
        await asyncio.gather(*(service.run_forever() for service in services))

    try:
        asyncio.run(_run_services())
    except KeyboardInterrupt:
        typer.echo("Interrupted, stopping", err=True)
    except Exception as e:
        logger.error("crony failed: %s", e)
        typer.echo(f"❌ Runtime error: {e}", err=True)
        raise typer.Exit(code=ExitCode.RUNTIME_ERROR.value)


@app.command(name="next")
def next_runs(
    expression: Annotated[
        str,
        typer.Argument(help="Schedule: five fields or an @label, e.g. '*/5 * * * *'")
    ],

    count: Annotated[
        int,
        typer.Option("--count", "-n", min=1, help="Number of run times to show")
    ] = 5,

    start: Annotated[
        Optional[datetime],
        typer.Option("--from", help="Reference time (default: now)")
    ] = None,
):
    """Show the next run times of a schedule expression."""
    try:
        schedule = parse_expression(expression)
    except CronValidationError as e:
        typer.echo(f"❌ Invalid schedule: {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    reference = start or datetime.now()
    runs = list(schedule.iter_next(reference, count))
    for run_time in runs:
        typer.echo(run_time.isoformat())
    if len(runs) < count:
        typer.echo("never")


@app.command()
def validate(
    crontab_file: Annotated[
        Path,
        typer.Argument(help="Crontab file to check")
    ],

    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="List parsed entries")
    ] = False,
):
    """Check that a crontab file parses."""
    if not crontab_file.exists():
        typer.echo(f"❌ Crontab file not found: {crontab_file}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    try:
        entries = parse_crontab(crontab_file.read_text(encoding="utf-8"))
    except CronValidationError as e:
        typer.echo(f"❌ {crontab_file}: {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    typer.echo(f"✅ {crontab_file} is valid ({len(entries)} entries)")
    if verbose:
        now = datetime.now()
        for entry in entries:
            next_run = entry.schedule.next(now)
            when = next_run.isoformat() if next_run else "never"
            typer.echo(f"   {when}  {entry.command}")


@app.command(name="show-config")
def show_config(
    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Configuration file (YAML or JSON)")
    ] = None,

    output_format: Annotated[
        str,
        typer.Option("--format", help="Output format: yaml or json")
    ] = "yaml",
):
    """Print the effective configuration."""
    try:
        config = load_configuration(config_file)
    except ConfigurationError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)
    typer.echo(print_configuration(config, output_format))


def cli_main():
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    app()
