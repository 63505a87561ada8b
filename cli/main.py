"""protosearch command line entry point."""

import logging

import click

from config.config_manager import (
    ConfigManager,
    DEFAULT_CONFIG_PATH,
    configure_logging,
    load_config_with_env_override
)
from .config_commands import config
from .index_commands import register, index, reindex_all
from .search_commands import search, suggest, status


@click.group()
@click.option('--config', 'config_path', default=DEFAULT_CONFIG_PATH, show_default=True,
              envvar='PROTOSEARCH_CONFIG', help='Path to the configuration file')
@click.pass_context
def cli(ctx: click.Context, config_path: str):
    """Search protobuf schema registries."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path

    try:
        settings = load_config_with_env_override(ConfigManager(config_path))
    except ValueError as e:
        # The config commands must still run to repair a broken file
        if ctx.invoked_subcommand != 'config':
            raise click.ClickException(f"Invalid configuration: {e}")
        settings = None

    ctx.obj['config'] = settings
    if settings is not None:
        configure_logging(settings)
        logging.getLogger(__name__).debug(f"Using configuration {config_path}")


cli.add_command(register)
cli.add_command(index)
cli.add_command(reindex_all)
cli.add_command(search)
cli.add_command(suggest)
cli.add_command(status)
cli.add_command(config)


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
