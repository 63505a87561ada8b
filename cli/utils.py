"""Helpers shared by the CLI command modules."""

import json
from contextlib import contextmanager
from typing import Any, Generator

import click

from app.context import ProtoSearchApp
from search.errors import SearchError


@contextmanager
def open_app(ctx: click.Context) -> Generator[ProtoSearchApp, None, None]:
    """Build the application from the group's configuration and close it after.

    Domain errors become a ClickException so the command exits with status 1.
    """
    app = ProtoSearchApp(ctx.obj['config'])
    try:
        yield app
    except (SearchError, LookupError, ValueError) as e:
        raise click.ClickException(str(e))
    finally:
        app.close()


def echo_json(data: Any):
    click.echo(json.dumps(data, indent=2))
