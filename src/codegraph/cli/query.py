"""cgr search / graph / cat commands."""

from __future__ import annotations

import json
from collections import Counter
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from codegraph.cli.utils import open_coordinator, root_argument
from codegraph.core.progress import pluralize
from codegraph.index.models import NodeLabel


@click.command()
@root_argument
@click.argument("term")
@click.option(
    "--type",
    "entity_types",
    multiple=True,
    type=click.Choice([label.value for label in NodeLabel], case_sensitive=False),
    help="Restrict to an entity kind (repeatable)",
)
@click.option("--limit", type=click.IntRange(min=1), default=None, help="Maximum results")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def search_command(
    root: Path, term: str, entity_types: tuple[str, ...], limit: int | None, as_json: bool
) -> None:
    """Search indexed entities under ROOT by name or path."""
    with open_coordinator(root) as coordinator:
        hits = coordinator.search(term, entity_types=list(entity_types) or None, limit=limit)

    if as_json:
        click.echo(json.dumps([hit.to_dict() for hit in hits], indent=2))
        return
    if not hits:
        click.echo(f"No matches for '{term}'")
        return

    table = Table(show_edge=False, header_style="bold")
    table.add_column("Kind", style="cyan")
    table.add_column("Name")
    table.add_column("Location", style="dim")
    table.add_column("Score", justify="right")
    for hit in hits:
        location = hit.path if hit.start_line is None else f"{hit.path}:{hit.start_line}"
        table.add_row(hit.kind, hit.name, location, f"{hit.score:.2f}")
    Console().print(table)


@click.command()
@root_argument
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def graph_command(root: Path, as_json: bool) -> None:
    """Show the graph stored for ROOT (counts, or full JSON)."""
    with open_coordinator(root) as coordinator:
        projection = coordinator.get_graph()

    if as_json:
        click.echo(json.dumps(projection.to_dict(), indent=2))
        return

    labels = Counter(node["label"] for node in projection.nodes)
    types = Counter(edge["type"] for edge in projection.edges)
    click.echo(
        f"{pluralize(len(projection.nodes), 'node')}, {pluralize(len(projection.edges), 'edge')}"
    )
    for label, count in sorted(labels.items()):
        click.echo(f"  {label}: {count}")
    for rel_type, count in sorted(types.items()):
        click.echo(f"  {rel_type}: {count}")


@click.command()
@root_argument
@click.argument("path")
def cat_command(root: Path, path: str) -> None:
    """Print the contents of PATH (relative to ROOT)."""
    with open_coordinator(root) as coordinator:
        content = coordinator.read_file_content(path)
    click.echo(content, nl=False)
