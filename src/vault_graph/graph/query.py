"""Read-only graph queries over a snapshot.

Every operation is a pure read of one immutable snapshot: it never blocks
on the writer and is never affected by batches applied while it runs.
"""
import logging
from collections import deque
from typing import Dict, FrozenSet, List, Optional, Set, Tuple, Union

from pydantic import BaseModel, Field

from vault_graph.exceptions import ErrorCode, ValidationError
from vault_graph.graph.snapshot import GraphSnapshot
from vault_graph.models.schema import Direction, ResolvedEdge

logger = logging.getLogger(__name__)


class LocalGraph(BaseModel):
    """Notes and edges within a number of hops of a center note."""

    center: str
    depth: int
    note_ids: Tuple[str, ...] = Field(default_factory=tuple)
    edges: Tuple[ResolvedEdge, ...] = Field(default_factory=tuple)

    model_config = {"frozen": True, "extra": "forbid"}


class HubEntry(BaseModel):
    """A note ranked by how many resolved edges touch it."""

    note_id: str
    path: str
    incoming: int = Field(..., ge=0)
    outgoing: int = Field(..., ge=0)

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def degree(self) -> int:
        return self.incoming + self.outgoing


def parse_direction(direction: Union[Direction, str]) -> Direction:
    """Coerce a direction argument, rejecting unknown values."""
    if isinstance(direction, Direction):
        return direction
    try:
        return Direction(str(direction).lower())
    except ValueError:
        raise ValidationError(
            f"Unknown direction '{direction}', expected one of: in, out, both",
            field="direction",
            value=direction,
            code=ErrorCode.INVALID_DIRECTION,
        ) from None


class GraphQuery:
    """Query engine bound to one snapshot."""

    def __init__(self, snapshot: GraphSnapshot):
        self.snapshot = snapshot

    def _path_of(self, note_id: str) -> str:
        return self.snapshot.notes[note_id].path

    def backlinks(self, note_id: str) -> List[ResolvedEdge]:
        """Edges targeting a note, ordered by source path then position.

        Raises:
            NoteNotFoundError: If the note is not in the snapshot.
        """
        self.snapshot.require(note_id)
        edges = list(self.snapshot.edges_into(note_id))
        edges.sort(key=lambda e: (self._path_of(e.source_id), e.source_id, e.token.ordinal))
        return edges

    def outgoing(self, note_id: str) -> List[ResolvedEdge]:
        """Edges leaving a note, in token order."""
        self.snapshot.require(note_id)
        return list(self.snapshot.edges_from(note_id))

    def _undirected(self, note_id: str) -> Set[str]:
        found = {e.target_id for e in self.snapshot.edges_from(note_id)}
        found.update(self.snapshot.incoming_sources(note_id))
        return found

    def neighbors(
        self,
        note_id: str,
        direction: Union[Direction, str] = Direction.BOTH,
    ) -> FrozenSet[str]:
        """Ids one edge away in the given direction.

        Raises:
            NoteNotFoundError: If the note is not in the snapshot.
            ValidationError: If ``direction`` is not in/out/both.
        """
        direction = parse_direction(direction)
        self.snapshot.require(note_id)
        if direction == Direction.OUT:
            return frozenset(e.target_id for e in self.snapshot.edges_from(note_id))
        if direction == Direction.IN:
            return self.snapshot.incoming_sources(note_id)
        return frozenset(self._undirected(note_id))

    def shortest_path(self, source_id: str, target_id: str) -> Optional[List[str]]:
        """Breadth-first search ignoring edge direction.

        Neighbors are expanded in lexicographic id order, so among equally
        short paths the one discovered first wins.

        Returns:
            The id sequence from source to target, or None if unreachable.
        """
        self.snapshot.require(source_id)
        self.snapshot.require(target_id)
        if source_id == target_id:
            return [source_id]

        parents: Dict[str, str] = {}
        seen = {source_id}
        queue = deque([source_id])
        while queue:
            current = queue.popleft()
            for nxt in sorted(self._undirected(current)):
                if nxt in seen:
                    continue
                seen.add(nxt)
                parents[nxt] = current
                if nxt == target_id:
                    path = [nxt]
                    while path[-1] != source_id:
                        path.append(parents[path[-1]])
                    path.reverse()
                    return path
                queue.append(nxt)
        return None

    def connected_component(self, note_id: str) -> FrozenSet[str]:
        """All notes reachable from ``note_id`` ignoring direction."""
        self.snapshot.require(note_id)
        seen = {note_id}
        stack = [note_id]
        while stack:
            current = stack.pop()
            for nxt in self._undirected(current):
                if nxt not in seen:
                    seen.add(nxt)
                    stack.append(nxt)
        return frozenset(seen)

    def orphans(self) -> List[str]:
        """Notes with no resolved incoming or outgoing edges, ordered by path."""
        snap = self.snapshot
        found = [
            note_id for note_id in snap.notes
            if not snap.incoming_sources(note_id) and not snap.edges_from(note_id)
        ]
        found.sort(key=lambda n: (self._path_of(n), n))
        return found

    def local_graph(self, note_id: str, depth: int = 1) -> LocalGraph:
        """Notes within ``depth`` undirected hops, and the edges among them."""
        if depth < 0:
            raise ValidationError("depth must be >= 0", field="depth", value=depth)
        self.snapshot.require(note_id)

        seen = {note_id}
        frontier = [note_id]
        for _ in range(depth):
            next_frontier = []
            for current in frontier:
                for nxt in sorted(self._undirected(current)):
                    if nxt not in seen:
                        seen.add(nxt)
                        next_frontier.append(nxt)
            if not next_frontier:
                break
            frontier = next_frontier

        edges = [
            e for source_id in seen for e in self.snapshot.edges_from(source_id)
            if e.target_id in seen
        ]
        edges.sort(key=lambda e: (self._path_of(e.source_id), e.source_id, e.token.ordinal))
        return LocalGraph(
            center=note_id,
            depth=depth,
            note_ids=tuple(sorted(seen, key=lambda n: (self._path_of(n), n))),
            edges=tuple(edges),
        )

    def hubs(self, limit: int = 10) -> List[HubEntry]:
        """Notes ranked by resolved edge count, most connected first."""
        if limit < 1:
            raise ValidationError("limit must be >= 1", field="limit", value=limit)
        snap = self.snapshot
        incoming: Dict[str, int] = {}
        outgoing: Dict[str, int] = {}
        for source_id in snap.outcomes:
            for edge in snap.edges_from(source_id):
                outgoing[source_id] = outgoing.get(source_id, 0) + 1
                incoming[edge.target_id] = incoming.get(edge.target_id, 0) + 1

        entries = [
            HubEntry(
                note_id=note_id,
                path=snap.notes[note_id].path,
                incoming=incoming.get(note_id, 0),
                outgoing=outgoing.get(note_id, 0),
            )
            for note_id in set(incoming) | set(outgoing)
        ]
        entries.sort(key=lambda h: (-h.degree, h.path, h.note_id))
        return entries[:limit]
