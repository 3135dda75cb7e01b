"""Consistency reporting: broken links, ambiguities and anchor problems.

A report is a stateless function of one snapshot. Broken references carry
the source note, raw target and span so a caller can offer "create note"
or "fix link" actions.
"""
import logging
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, Field

from vault_graph.graph.query import GraphQuery
from vault_graph.graph.snapshot import GraphSnapshot
from vault_graph.models.schema import (
    AmbiguityEvent,
    AnchorKind,
    BrokenReference,
    ResolvedEdge,
)
from vault_graph.parsing.note_parser import normalize_anchor

logger = logging.getLogger(__name__)


class DuplicateTitle(BaseModel):
    """An index key owned by more than one note."""

    key: str
    note_ids: Tuple[str, ...]

    model_config = {"frozen": True, "extra": "forbid"}


class ConsistencyReport(BaseModel):
    """Everything wrong, or merely ambiguous, in one snapshot."""

    version: int
    note_count: int = 0
    edge_count: int = 0
    broken_references: Tuple[BrokenReference, ...] = Field(default_factory=tuple)
    ambiguities: Tuple[AmbiguityEvent, ...] = Field(default_factory=tuple)
    duplicate_titles: Tuple[DuplicateTitle, ...] = Field(default_factory=tuple)
    # Advisory only: the link itself still resolves
    dangling_anchors: Tuple[ResolvedEdge, ...] = Field(default_factory=tuple)
    orphans: Tuple[str, ...] = Field(default_factory=tuple)

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def is_clean(self) -> bool:
        return not (self.broken_references or self.ambiguities)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    def summary(self) -> Dict[str, int]:
        return {
            "notes": self.note_count,
            "edges": self.edge_count,
            "broken_references": len(self.broken_references),
            "ambiguities": len(self.ambiguities),
            "duplicate_titles": len(self.duplicate_titles),
            "dangling_anchors": len(self.dangling_anchors),
            "orphans": len(self.orphans),
        }


def _anchor_exists(snapshot: GraphSnapshot, edge: ResolvedEdge) -> bool:
    indexed = snapshot.indexed.get(edge.target_id)
    if indexed is None or edge.token.anchor is None:
        return True
    if edge.token.anchor_kind == AnchorKind.BLOCK:
        return edge.token.anchor[1:].casefold() in indexed.block_ids
    return normalize_anchor(edge.token.anchor) in indexed.headings


def build_report(snapshot: GraphSnapshot) -> ConsistencyReport:
    """Derive the consistency report for a snapshot."""
    def position(source_id: str) -> Tuple[str, str]:
        return (snapshot.notes[source_id].path, source_id)

    broken: List[BrokenReference] = []
    ambiguities: List[AmbiguityEvent] = []
    dangling: List[ResolvedEdge] = []
    edge_count = 0

    for source_id in sorted(snapshot.outcomes, key=position):
        for outcome in snapshot.outcomes[source_id]:
            if isinstance(outcome, BrokenReference):
                broken.append(outcome)
                continue
            edge_count += 1
            if outcome.ambiguity is not None:
                ambiguities.append(outcome.ambiguity)
            if not _anchor_exists(snapshot, outcome):
                dangling.append(outcome)

    duplicates = [
        DuplicateTitle(key=key, note_ids=tuple(sorted(ids)))
        for key, ids in snapshot.title_index.items()
        if len(ids) > 1
    ]
    duplicates.sort(key=lambda d: d.key)

    report = ConsistencyReport(
        version=snapshot.version,
        note_count=len(snapshot.notes),
        edge_count=edge_count,
        broken_references=tuple(broken),
        ambiguities=tuple(ambiguities),
        duplicate_titles=tuple(duplicates),
        dangling_anchors=tuple(dangling),
        orphans=tuple(GraphQuery(snapshot).orphans()),
    )
    logger.debug(f"Consistency report for version {snapshot.version}: {report.summary()}")
    return report
