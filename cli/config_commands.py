"""Configuration CLI commands."""

import json

import click

from config.config_manager import ConfigManager
from .utils import echo_json


def parse_value(raw: str):
    """Interpret a command line value as JSON, falling back to a plain string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@click.group()
def config():
    """Show or change the configuration."""
    pass


@config.command()
@click.pass_context
def show(ctx: click.Context):
    """Print the effective configuration, environment overrides included."""
    if ctx.obj['config'] is None:
        raise click.ClickException("Configuration is invalid; run 'protosearch config validate'")
    echo_json(ctx.obj['config'])


@config.command('set')
@click.argument('key')
@click.argument('value')
@click.pass_context
def set_value(ctx: click.Context, key: str, value: str):
    """Set KEY (dotted, e.g. search.default_limit) to VALUE."""
    manager = ConfigManager(ctx.obj['config_path'])
    try:
        manager.set_value(key, parse_value(value))
    except KeyError as e:
        raise click.ClickException(e.args[0])
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"✓ {key} = {value}")


@config.command()
@click.pass_context
def validate(ctx: click.Context):
    """Check the configuration file for problems."""
    issues = ConfigManager(ctx.obj['config_path']).validate_config_file()
    if not issues:
        click.echo("✓ Configuration is valid")
        return
    for issue in issues:
        click.echo(f"✗ {issue}")
    ctx.exit(1)
