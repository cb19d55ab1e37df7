"""Network commands for meshsim CLI: init, status, nodes, node-status, send, history."""
import asyncio
import json
import sys
from collections import Counter
from datetime import datetime

import click

from ..config import CONFIG_FILENAME, CONFIG_TEMPLATE, SimulationConfig, get_base_path
from ..context import SimulationContext
from ..errors import MeshSimError
from ..models import MESSAGE_TYPES

from .common import (
    echo_error,
    echo_normal,
    echo_verbose,
    run_with_context,
    short,
    verbosity_of,
)


@click.group()
def network_group():
    """Network simulation commands."""
    pass


@network_group.command("init")
@click.option('--force', is_flag=True, help='Discard stored state and build a fresh network')
@click.pass_context
def init(ctx, force: bool) -> None:
    """Initialize the data directory and the simulated network.

    Creates config.yaml (if missing) and the SQLite database, then builds
    or loads the network.

    Examples:
        meshsim init
        meshsim init --force
    """
    verbosity = verbosity_of(ctx)
    base_path = get_base_path(ctx.obj.get('data_dir'))
    base_path.mkdir(parents=True, exist_ok=True)

    config_path = base_path / CONFIG_FILENAME
    if not config_path.exists():
        config_path.write_text(CONFIG_TEMPLATE)
        echo_normal(f" ✓ Created {config_path}", verbosity)

    config = SimulationConfig.load(base_path)

    async def build():
        async with SimulationContext(config) as sim:
            if force:
                await sim.reset()
            health = await sim.persistence.health_check()
            return sim.network.nodes, health

    try:
        nodes, health = asyncio.run(build())
    except MeshSimError as e:
        echo_error(f"Failed to initialize network: {e}")
        sys.exit(1)

    counts = Counter(n.type for n in nodes)
    echo_normal(click.style("✓ Network ready", fg="green", bold=True), verbosity)
    echo_normal(f"  Nodes: {len(nodes)} ({counts['assistant']} assistant, "
                f"{counts['content-store']} content-store, {counts['standard']} standard)", verbosity)
    echo_normal(f"  Storage: {health.backend} ({health.message})", verbosity)


@network_group.command("status")
@click.option('--json-output', is_flag=True, help='Output as JSON')
@click.pass_context
def status(ctx, json_output: bool) -> None:
    """Show storage health and network size."""

    async def collect(sim):
        health = await sim.persistence.health_check()
        content = await sim.content_store.list_ids()
        return {
            "storage": health.to_dict(),
            "nodes": len(sim.network.nodes),
            "active_nodes": len(sim.network.get_active_nodes()),
            "messages": len(sim.network.messages),
            "content": len(content),
        }

    report = run_with_context(ctx, collect)
    if json_output:
        click.echo(json.dumps(report, indent=2))
        return

    storage = report["storage"]
    color = "green" if storage["status"] == "ok" else "red"
    click.echo(click.style("Network Status", fg="cyan", bold=True))
    click.echo(f"  Storage: {click.style(storage['status'], fg=color)} - {storage['message']}")
    click.echo(f"  Nodes: {report['active_nodes']}/{report['nodes']} active")
    click.echo(f"  Messages: {report['messages']}")
    click.echo(f"  Content records: {report['content']}")


@network_group.command("nodes")
@click.option('--active', 'active_only', is_flag=True, help='Only list active nodes')
@click.option('--json-output', is_flag=True, help='Output as JSON')
@click.pass_context
def nodes(ctx, active_only: bool, json_output: bool) -> None:
    """List nodes and their connections."""

    async def collect(sim):
        return sim.network.get_active_nodes() if active_only else sim.network.nodes

    result = run_with_context(ctx, collect)
    if json_output:
        click.echo(json.dumps([n.to_dict() for n in result], indent=2))
        return

    if not result:
        click.echo(click.style("No nodes found.", fg="yellow"))
        return

    for node in result:
        state = click.style("active", fg="green") if node.is_active else click.style("inactive", fg="red")
        click.echo(f"{node.id:<10} {node.type:<14} {state:<8} -> {', '.join(node.connected_nodes)}")


@network_group.command("node-status")
@click.argument('node_id')
@click.option('--active/--inactive', 'is_active', required=True, help='New status for the node')
@click.pass_context
def node_status(ctx, node_id: str, is_active: bool) -> None:
    """Activate or deactivate a node.

    Examples:
        meshsim node-status node-3 --inactive
    """

    async def update(sim):
        return await sim.network.update_node_status(node_id, is_active)

    node = run_with_context(ctx, update)
    if node is None:
        echo_error(f"Node not found: {node_id}")
        sys.exit(1)
    click.echo(click.style(f"✓ {node.id} is now {'active' if node.is_active else 'inactive'}", fg="green"))


@network_group.command("send")
@click.argument('from_id')
@click.argument('to_id')
@click.argument('content')
@click.option('--type', 'message_type', default='query', type=click.Choice(sorted(MESSAGE_TYPES)),
              help='Message type')
@click.pass_context
def send(ctx, from_id: str, to_id: str, content: str, message_type: str) -> None:
    """Send a message between two nodes and wait for delivery.

    Examples:
        meshsim send node-1 llm-main "hello"
        meshsim send llm-main ipfs-0 Qm00... --type storage
    """
    verbosity = verbosity_of(ctx)

    async def deliver(sim):
        route = sim.network.route(from_id, to_id)
        message_id = await sim.message_bus.send(from_id, to_id, message_type, content)
        return message_id, route

    try:
        message_id, route = run_with_context(ctx, deliver)
    except MeshSimError as e:
        echo_error(str(e))
        sys.exit(1)

    click.echo(click.style("✓ Message delivered", fg="green", bold=True))
    click.echo(f"  ID: {click.style(message_id, fg='cyan')}")
    echo_verbose(f"  Route: {' -> '.join(route or [])}", verbosity)


@network_group.command("history")
@click.option('--limit', '-l', default=20, help='Maximum number of messages (default: 20)')
@click.option('--json-output', is_flag=True, help='Output as JSON')
@click.pass_context
def history(ctx, limit: int, json_output: bool) -> None:
    """Show recent messages, newest first."""

    async def collect(sim):
        return await sim.message_bus.get_message_history(limit)

    messages = run_with_context(ctx, collect)
    if json_output:
        click.echo(json.dumps([m.to_dict() for m in messages], indent=2))
        return

    if not messages:
        click.echo(click.style("No messages yet.", fg="yellow"))
        return

    for message in messages:
        when = datetime.fromtimestamp(message.timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")
        mark = click.style("✓", fg="green") if message.delivered else click.style("…", fg="yellow")
        click.echo(f"{mark} {when} {message.type:<9} {message.from_node_id} -> "
                   f"{message.to_node_id}  {short(message.content, 40)}")
