"""Graph store, incremental maintenance, queries and consistency reports."""

from vault_graph.graph.consistency import ConsistencyReport, build_report
from vault_graph.graph.maintainer import IncrementalMaintainer
from vault_graph.graph.query import GraphQuery, HubEntry, LocalGraph
from vault_graph.graph.snapshot import GraphSnapshot, SnapshotBuilder

__all__ = [
    "ConsistencyReport",
    "GraphQuery",
    "GraphSnapshot",
    "HubEntry",
    "IncrementalMaintainer",
    "LocalGraph",
    "SnapshotBuilder",
    "build_report",
]
