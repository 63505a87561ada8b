"""Registration and indexing CLI commands."""

import signal
import threading
from typing import Tuple

import click

from .utils import open_app, echo_json


@click.command()
@click.argument('module_name')
@click.argument('version')
@click.argument('directory', type=click.Path(exists=True, file_okay=False))
@click.option('--depends-on', '-d', multiple=True, help='Module this version depends on (repeatable)')
@click.option('--description', default='', help='Module description')
@click.option('--exclude', '-x', multiple=True, help='fnmatch pattern of files to skip (repeatable)')
@click.option('--index/--no-index', 'index_now', default=True, help='Index the version after registering')
@click.pass_context
def register(ctx: click.Context, module_name: str, version: str, directory: str,
             depends_on: Tuple[str, ...], description: str, exclude: Tuple[str, ...], index_now: bool):
    """Register the .proto files in DIRECTORY as MODULE_NAME@VERSION."""
    with open_app(ctx) as app:
        registered = app.register_directory(
            module_name, version, directory,
            dependencies=depends_on, description=description, exclude_patterns=exclude
        )
        click.echo(f"✓ Registered {module_name}@{version} ({len(registered.files)} file(s))")

        if index_now:
            result = app.indexer.index_version(module_name, version)
            click.echo(f"✓ Indexed {result.entity_count} entities")
            for diagnostic in result.diagnostics:
                click.echo(f"  ⚠ {diagnostic.file_path}: {diagnostic.stage}: {diagnostic.message}")


@click.command()
@click.argument('module_name')
@click.argument('version')
@click.option('--json', 'as_json', is_flag=True, help='Print the result as JSON')
@click.pass_context
def index(ctx: click.Context, module_name: str, version: str, as_json: bool):
    """Rebuild the search index of MODULE_NAME@VERSION."""
    with open_app(ctx) as app:
        result = app.indexer.index_version(module_name, version)

    if as_json:
        echo_json(result.to_dict())
        return

    click.echo(
        f"✓ Indexed {module_name}@{version}: {result.entity_count} entities "
        f"from {result.file_count} file(s)"
    )
    for diagnostic in result.diagnostics:
        click.echo(f"  ⚠ {diagnostic.file_path}: {diagnostic.stage}: {diagnostic.message}")


@click.command('reindex-all')
@click.option('--background', is_flag=True, help='Enqueue one task per version for the huey worker')
@click.pass_context
def reindex_all(ctx: click.Context, background: bool):
    """Rebuild the search index of every registered version."""
    if background:
        from tasks import reindex_all_task

        result = reindex_all_task(ctx.obj['config_path'])
        click.echo(f"✓ Enqueued reindex (task {result.id})")
        return

    cancel_event = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda signum, frame: cancel_event.set())
    try:
        with open_app(ctx) as app:
            summary = app.indexer.reindex_all(cancel_event=cancel_event)
    finally:
        signal.signal(signal.SIGINT, previous)

    echo_json(summary.to_dict())
    if summary.failed:
        ctx.exit(1)
