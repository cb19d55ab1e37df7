"""meshsim CLI - drive the simulated network from the command line

Command modules:
- network.py: init, status, nodes, node-status, send, history
- content.py: content store, get, list, delete, search
- query.py: ask
- config.py: config set, get, show
- common.py: shared utilities
"""
from pathlib import Path

import click

from .. import __version__
from ..config import get_base_path
from .common import (
    VERBOSITY_NORMAL,
    VERBOSITY_QUIET,
    VERBOSITY_VERBOSE,
    configure_logging,
)
from .config import config_group
from .content import content_group
from .network import network_group
from .query import ask


@click.group()
@click.version_option(version=__version__, prog_name="meshsim")
@click.option('--data-dir', type=click.Path(), default=None, envvar='MESHSIM_BASE_PATH',
              help='Base directory for meshsim data (default: ~/.meshsim)')
@click.option('--verbose', '-v', is_flag=True, default=False,
              help='Enable verbose output')
@click.option('--quiet', '-q', is_flag=True, default=False,
              help='Suppress non-essential output')
@click.pass_context
def cli(ctx, data_dir, verbose, quiet):
    """meshsim - a simulated decentralized network

    \b
    Key Commands:
        init              Build the network and data directory
        status            Show storage health and network size
        nodes             List nodes
        send              Send a message between two nodes
        ask               Route a prompt to the assistant node
        content           Content-addressed storage
        config            Configuration management

    \b
    Examples:
        meshsim init
        meshsim send node-1 llm-main "hello"
        meshsim ask "what is a CID?"
        meshsim content list
    """
    ctx.ensure_object(dict)

    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")

    if quiet:
        ctx.obj['verbosity'] = VERBOSITY_QUIET
    elif verbose:
        ctx.obj['verbosity'] = VERBOSITY_VERBOSE
    else:
        ctx.obj['verbosity'] = VERBOSITY_NORMAL

    ctx.obj['data_dir'] = Path(data_dir) if data_dir else None
    configure_logging(ctx.obj['verbosity'])


# Network commands live at the top level
for name, command in network_group.commands.items():
    cli.add_command(command, name=name)

cli.add_command(ask)
cli.add_command(content_group, name='content')
cli.add_command(config_group, name='config')


def main():
    """Entry point for the CLI."""
    cli()


__all__ = [
    '__version__',
    'cli',
    'main',
    'get_base_path',
]
