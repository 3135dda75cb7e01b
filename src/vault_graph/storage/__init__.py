"""Storage layer: persisted index cache and vault directory reader."""

from vault_graph.storage.index_cache import IndexCache
from vault_graph.storage.vault_reader import VaultReader

__all__ = [
    "IndexCache",
    "VaultReader",
]
