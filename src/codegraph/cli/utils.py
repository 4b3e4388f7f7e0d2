"""CLI utilities."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click

from codegraph.config import CodeGraphConfig, load_config
from codegraph.core.errors import CodeGraphError
from codegraph.core.events import EventSink
from codegraph.core.logging import configure_logging
from codegraph.index.ops import IndexCoordinator

root_argument = click.argument(
    "root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
)


def load_root_config(root: Path) -> CodeGraphConfig:
    """Load config for a root and apply its logging outputs.

    ``-v`` on the command line forces the root level to DEBUG.
    """
    try:
        config = load_config(root)
    except CodeGraphError as e:
        raise click.ClickException(e.message) from e

    logging_config = config.logging
    ctx = click.get_current_context(silent=True)
    if ctx is not None and (ctx.find_root().obj or {}).get("verbose"):
        logging_config = logging_config.model_copy(update={"level": "DEBUG"})
    configure_logging(config=logging_config)
    return config


@contextmanager
def open_coordinator(root: Path, on_event: EventSink | None = None) -> Iterator[IndexCoordinator]:
    """Yield a coordinator for ``root`` and close it afterwards.

    Raises:
        click.ClickException: Config is invalid or an index operation failed.
    """
    root = root.resolve()
    coordinator = IndexCoordinator(root, config=load_root_config(root), on_event=on_event)
    try:
        yield coordinator
    except CodeGraphError as e:
        raise click.ClickException(e.message) from e
    finally:
        coordinator.close()
