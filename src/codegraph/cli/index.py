"""cgr index / refresh / watch commands."""

from __future__ import annotations

import asyncio
from pathlib import Path

import click

from codegraph.cli.utils import open_coordinator, root_argument
from codegraph.core.events import RunSummary
from codegraph.core.progress import EventRenderer, status
from codegraph.index.ops import IndexCoordinator


def _finish(summary: RunSummary) -> None:
    """Exit non-zero when any file failed. The partial graph is kept."""
    if summary.failures:
        click.get_current_context().exit(1)


@click.command()
@root_argument
def index_command(root: Path) -> None:
    """Index every supported file under ROOT."""
    renderer = EventRenderer()
    with open_coordinator(root, on_event=renderer) as coordinator, renderer:
        summary = asyncio.run(coordinator.index_directory())
    _finish(summary)


@click.command()
@root_argument
def refresh_command(root: Path) -> None:
    """Re-index ROOT incrementally. Unchanged files are skipped."""
    renderer = EventRenderer()
    with open_coordinator(root, on_event=renderer) as coordinator, renderer:
        summary = asyncio.run(coordinator.refresh_directory())
    _finish(summary)


async def _index_and_watch(coordinator: IndexCoordinator, renderer: EventRenderer) -> None:
    with renderer:
        await coordinator.index_directory()
    await coordinator.start_watching()
    status(f"Watching {coordinator.root} (Ctrl-C to stop)")
    try:
        await asyncio.Event().wait()
    finally:
        await coordinator.stop_watching()


@click.command()
@root_argument
def watch_command(root: Path) -> None:
    """Index ROOT, then keep the graph current until interrupted."""
    renderer = EventRenderer()
    with open_coordinator(root, on_event=renderer) as coordinator:
        try:
            asyncio.run(_index_and_watch(coordinator, renderer))
        except KeyboardInterrupt:
            status("Stopped", style="success")
