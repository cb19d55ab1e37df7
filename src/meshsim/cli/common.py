"""Shared utilities for meshsim CLI commands."""
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import click

from ..config import CONFIG_FILENAME, SimulationConfig, get_base_path
from ..context import SimulationContext

# Verbosity levels
VERBOSITY_QUIET = 0
VERBOSITY_NORMAL = 1
VERBOSITY_VERBOSE = 2

LOG_LEVELS = {
    VERBOSITY_QUIET: logging.ERROR,
    VERBOSITY_NORMAL: logging.WARNING,
    VERBOSITY_VERBOSE: logging.INFO,
}


def configure_logging(verbosity: int) -> None:
    """Route library logs to stderr at a level matching the verbosity."""
    logging.basicConfig(
        level=LOG_LEVELS.get(verbosity, logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def should_print(verbosity: int, message_level: int) -> bool:
    return verbosity >= message_level


def echo_verbose(message: str, verbosity: int) -> None:
    """Print a message only in verbose mode."""
    if should_print(verbosity, VERBOSITY_VERBOSE):
        click.echo(message, err=False)


def echo_normal(message: str, verbosity: int) -> None:
    """Print a message in normal and verbose modes."""
    if should_print(verbosity, VERBOSITY_NORMAL):
        click.echo(message, err=False)


def echo_error(message: str) -> None:
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)


def require_base_path(ctx: click.Context) -> Path:
    """Base path for this invocation; exits if 'meshsim init' has not run."""
    base_path = get_base_path(ctx.obj.get('data_dir'))
    if not (base_path / CONFIG_FILENAME).exists():
        echo_error("meshsim not initialized. Run 'meshsim init' first.")
        sys.exit(1)
    return base_path


def run_with_context(ctx: click.Context,
                     action: Callable[[SimulationContext], Awaitable[Any]]) -> Any:
    """
    Open a SimulationContext for the configured data directory, run action
    in it and close it again.
    """
    base_path = require_base_path(ctx)
    config = SimulationConfig.load(base_path)

    async def runner():
        async with SimulationContext(config) as sim:
            return await action(sim)

    return asyncio.run(runner())


def verbosity_of(ctx: click.Context) -> int:
    return ctx.obj.get('verbosity', VERBOSITY_NORMAL)


def short(value: Optional[str], length: int = 16) -> str:
    if value is None:
        return "-"
    return value if len(value) <= length else value[:length] + "..."
