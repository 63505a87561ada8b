"""Search CLI commands."""

import click

from search.models import SearchRequest
from .utils import open_app, echo_json


@click.command()
@click.argument('query', nargs=-1)
@click.option('--limit', '-n', type=int, default=0, help='Maximum results (default from config)')
@click.option('--offset', type=int, default=0, help='Results to skip')
@click.option('--json', 'as_json', is_flag=True, help='Print the full response as JSON')
@click.option('--no-history', is_flag=True, help='Do not record the query in the search history')
@click.pass_context
def search(ctx: click.Context, query, limit: int, offset: int, as_json: bool, no_history: bool):
    """Search schema entities.

    \b
    Examples:
      protosearch search user email
      protosearch search email entity:field type:string
      protosearch search Status module:common.*
      protosearch search user NOT deleted has-comment:true
    """
    request = SearchRequest(query=' '.join(query), limit=limit, offset=offset)

    with open_app(ctx) as app:
        if no_history:
            response = app.search_service.search(request)
        else:
            response = app.search_service.search_and_record(request)

    if as_json:
        echo_json(response.to_dict())
        return

    for warning in response.warnings:
        click.echo(f"⚠ {warning}")

    if not response.results:
        click.echo("No results")
        return

    for result in response.results:
        detail = result.field_type or ''
        if result.entity_type == 'method':
            detail = f"({result.method_input_type}) returns ({result.method_output_type})"
        line = f"{result.entity_type:<10} {result.full_path:<50} {result.module_name}@{result.version}"
        if detail:
            line += f"  {detail}"
        click.echo(line)
        if result.description:
            click.echo(f"           {result.description}")

    shown_to = offset + len(response.results)
    click.echo(f"\n{offset + 1}-{shown_to} of {response.total_count}")


@click.command()
@click.argument('prefix', default='')
@click.option('--limit', '-n', type=int, default=0, help='Maximum suggestions')
@click.pass_context
def suggest(ctx: click.Context, prefix: str, limit: int):
    """Suggest previous queries starting with PREFIX."""
    with open_app(ctx) as app:
        suggestions = app.search_service.get_suggestions(prefix, limit)

    for suggestion in suggestions:
        click.echo(suggestion)


@click.command()
@click.pass_context
def status(ctx: click.Context):
    """Show database statistics."""
    with open_app(ctx) as app:
        echo_json(app.backend.get_storage_info())
