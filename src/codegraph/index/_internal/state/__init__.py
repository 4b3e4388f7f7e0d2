"""Fingerprint state for incremental indexing."""

from codegraph.index._internal.state.fingerprints import (
    Classification,
    FingerprintStore,
    compute_hash,
)

__all__ = [
    "Classification",
    "FingerprintStore",
    "compute_hash",
]
