"""Configuration management commands for meshsim CLI."""
import sys

import click
import yaml

from ..config import CONFIG_FILENAME, DEFAULTS, get_dotted, load_config_data, set_dotted

from .common import echo_error, echo_normal, require_base_path, verbosity_of

SECRET_KEYS = {"assistant.api_key"}


def _shown(key: str, value):
    if key in SECRET_KEYS and value:
        return "********"
    return value


@click.group()
def config_group():
    """Configuration management commands."""
    pass


@config_group.command('set')
@click.argument('key')
@click.argument('value')
@click.pass_context
def config_set(ctx, key: str, value: str) -> None:
    """Set a configuration value.

    VALUE is parsed as YAML, so numbers, booleans and null keep their type.

    Examples:
        meshsim config set delivery.max_delay 2.5
        meshsim config set assistant.provider generative
        meshsim config set backend.enabled true
        meshsim config set assistant.api_key YOUR_KEY
    """
    config_path = require_base_path(ctx) / CONFIG_FILENAME
    verbosity = verbosity_of(ctx)

    try:
        get_dotted(DEFAULTS, key)
    except KeyError:
        echo_error(f"Unknown configuration key '{key}'")
        sys.exit(1)

    try:
        parsed = yaml.safe_load(value)
        config_data = yaml.safe_load(config_path.read_text()) or {}
        set_dotted(config_data, key, parsed)
        config_path.write_text(yaml.safe_dump(config_data, default_flow_style=False, sort_keys=False))
    except (yaml.YAMLError, OSError) as e:
        echo_error(f"Failed to set config: {e}")
        sys.exit(1)

    echo_normal(click.style(f"✓ Set {key} = {_shown(key, parsed)}", fg="green"), verbosity)


@config_group.command('get')
@click.argument('key')
@click.pass_context
def config_get(ctx, key: str) -> None:
    """Get a configuration value, including defaults.

    Examples:
        meshsim config get delivery.min_delay
        meshsim config get storage
    """
    base_path = require_base_path(ctx)
    try:
        value = get_dotted(load_config_data(base_path), key)
    except KeyError:
        click.echo(click.style(f"Key '{key}' not found", fg="yellow"), err=True)
        sys.exit(1)

    if isinstance(value, dict):
        click.echo(yaml.safe_dump(value, default_flow_style=False, sort_keys=False).rstrip())
    else:
        click.echo(_shown(key, value))


@config_group.command('show')
@click.pass_context
def config_show(ctx) -> None:
    """Display the configuration file."""
    config_path = require_base_path(ctx) / CONFIG_FILENAME
    echo_normal(click.style("Current configuration:", fg="cyan", bold=True), verbosity_of(ctx))
    click.echo(config_path.read_text())
