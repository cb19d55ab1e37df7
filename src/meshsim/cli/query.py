"""Assistant query command for meshsim CLI."""
import json
import sys

import click

from ..errors import MeshSimError

from .common import echo_error, run_with_context


@click.command("ask")
@click.argument('query')
@click.option('--backend', 'through_backend', is_flag=True,
              help='Route through the simulated backend services as well')
@click.option('--json-output', is_flag=True, help='Output as JSON')
@click.pass_context
def ask(ctx, query: str, through_backend: bool, json_output: bool) -> None:
    """Send a prompt through the network to the assistant node.

    Examples:
        meshsim ask "how are CIDs derived?"
        meshsim ask "status report" --backend
    """

    async def process(sim):
        if through_backend:
            await sim.backend.initialize(auto_start=False)
            return await sim.backend.process_backend_query(query)
        return await sim.orchestrator.process_query(query)

    try:
        result = run_with_context(ctx, process)
    except MeshSimError as e:
        echo_error(f"Query failed: {e}")
        sys.exit(1)

    if json_output:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.echo(result.response)
    click.echo()
    click.echo(click.style("Path: ", fg="cyan") + " -> ".join(result.processing_path))
    click.echo(click.style("CID:  ", fg="cyan") + result.response_cid)
    click.echo(click.style("Time: ", fg="cyan") + f"{result.processing_time:.0f}ms")
