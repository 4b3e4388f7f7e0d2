"""Root traversal with path-based exclusion."""

from codegraph.index._internal.discovery.scanner import (
    Candidate,
    OnTraversalError,
    Traversal,
    TraversalStats,
)

__all__ = [
    "Candidate",
    "OnTraversalError",
    "Traversal",
    "TraversalStats",
]
