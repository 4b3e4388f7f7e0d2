"""codegraph CLI - cgr command."""

import click

from codegraph.cli.index import index_command, refresh_command, watch_command
from codegraph.cli.query import cat_command, graph_command, search_command
from codegraph.core.logging import configure_logging


@click.group()
@click.version_option(version="0.1.0", prog_name="cgr")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """codegraph - Incremental code graph indexer for local source trees."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    configure_logging(level="DEBUG" if verbose else "INFO")


cli.add_command(index_command, name="index")
cli.add_command(refresh_command, name="refresh")
cli.add_command(watch_command, name="watch")
cli.add_command(search_command, name="search")
cli.add_command(graph_command, name="graph")
cli.add_command(cat_command, name="cat")


if __name__ == "__main__":
    cli()
