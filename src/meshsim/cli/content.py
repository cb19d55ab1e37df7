"""Content store commands for meshsim CLI."""
import json
import sys
from datetime import datetime
from typing import Tuple

import click

from ..errors import ContentNotFoundError

from .common import echo_error, run_with_context, short


def _parse_pairs(pairs: Tuple[str, ...]) -> dict:
    """KEY=VALUE arguments to a dict. Values are parsed as JSON when possible."""
    result = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"Expected KEY=VALUE, got '{pair}'")
        key, raw = pair.split("=", 1)
        try:
            result[key] = json.loads(raw)
        except json.JSONDecodeError:
            result[key] = raw
    return result


@click.group()
def content_group():
    """Content-addressed storage commands."""
    pass


@content_group.command("store")
@click.argument('content')
@click.option('--meta', '-m', multiple=True, help='Metadata as KEY=VALUE (repeatable)')
@click.pass_context
def store(ctx, content: str, meta: Tuple[str, ...]) -> None:
    """Store content and print its CID.

    Examples:
        meshsim content store "hello"
        meshsim content store "report" -m kind=report -m draft=true
    """
    metadata = _parse_pairs(meta) or None

    async def put(sim):
        return await sim.content_store.put(content, metadata)

    cid = run_with_context(ctx, put)
    click.echo(click.style("✓ Content stored", fg="green", bold=True))
    click.echo(f"  CID: {click.style(cid, fg='cyan')}")


@content_group.command("get")
@click.argument('cid')
@click.pass_context
def get(ctx, cid: str) -> None:
    """Print the content stored under CID."""

    async def fetch(sim):
        return await sim.content_store.get(cid)

    try:
        click.echo(run_with_context(ctx, fetch))
    except ContentNotFoundError as e:
        echo_error(str(e))
        sys.exit(1)


@content_group.command("list")
@click.option('--json-output', is_flag=True, help='Output as JSON')
@click.pass_context
def list_content(ctx, json_output: bool) -> None:
    """List stored content records."""

    async def collect(sim):
        return await sim.content_store.list_all()

    records = run_with_context(ctx, collect)
    if json_output:
        click.echo(json.dumps([r.info() for r in records], indent=2))
        return

    if not records:
        click.echo(click.style("No content stored.", fg="yellow"))
        return

    for record in sorted(records, key=lambda r: r.timestamp, reverse=True):
        when = datetime.fromtimestamp(record.timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")
        click.echo(f"{record.cid}  {record.size:>6}B  {when}  {short(record.content, 40)}")


@content_group.command("delete")
@click.argument('cid')
@click.pass_context
def delete(ctx, cid: str) -> None:
    """Delete the content stored under CID."""

    async def remove(sim):
        return await sim.content_store.delete(cid)

    run_with_context(ctx, remove)
    click.echo(click.style(f"✓ Deleted {cid}", fg="green"))


@content_group.command("search")
@click.argument('pairs', nargs=-1, required=True)
@click.option('--json-output', is_flag=True, help='Output as JSON')
@click.pass_context
def search(ctx, pairs: Tuple[str, ...], json_output: bool) -> None:
    """Find records whose metadata matches every KEY=VALUE.

    Examples:
        meshsim content search type=query
        meshsim content search type=response processed=true
    """
    query = _parse_pairs(pairs)

    async def find(sim):
        return await sim.content_store.search(query)

    records = run_with_context(ctx, find)
    if json_output:
        click.echo(json.dumps([r.info() for r in records], indent=2))
        return

    if not records:
        click.echo(click.style("No matching content.", fg="yellow"))
        return

    for record in records:
        click.echo(f"{record.cid}  {json.dumps(record.metadata)}")
