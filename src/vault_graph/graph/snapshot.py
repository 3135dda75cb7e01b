"""Immutable graph snapshots and the builder that produces them.

A snapshot holds the notes, the per-note link outcomes (the forward store),
the title index and two derived indexes: incoming sources per target and
referencing sources per normalized target key. Incoming edges are never
stored; backlink queries read them from the forward store of each source.
"""
import logging
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, Mapping, Optional, Set, Tuple

from vault_graph.exceptions import NoteNotFoundError
from vault_graph.models.schema import (
    BrokenReference,
    IndexedNote,
    LinkOutcome,
    Note,
    ResolvedEdge,
)
from vault_graph.resolver import normalize_key

logger = logging.getLogger(__name__)

_EMPTY: FrozenSet[str] = frozenset()


class GraphSnapshot:
    """A fully consistent, read-only view of the graph at one version.

    Never mutated after construction, so it can be shared freely between
    threads.
    """

    __slots__ = (
        "version", "notes", "indexed", "outcomes",
        "title_index", "incoming", "target_keys",
    )

    def __init__(
        self,
        version: int,
        notes: Mapping[str, Note],
        indexed: Mapping[str, IndexedNote],
        outcomes: Mapping[str, Tuple[LinkOutcome, ...]],
        title_index: Mapping[str, FrozenSet[str]],
        incoming: Mapping[str, FrozenSet[str]],
        target_keys: Mapping[str, FrozenSet[str]],
    ):
        self.version = version
        self.notes = notes
        self.indexed = indexed
        self.outcomes = outcomes
        self.title_index = title_index
        self.incoming = incoming
        self.target_keys = target_keys

    @classmethod
    def empty(cls) -> "GraphSnapshot":
        return cls(0, *(MappingProxyType({}) for _ in range(6)))

    def __repr__(self) -> str:
        return f"GraphSnapshot(version={self.version}, notes={len(self.notes)})"

    def __len__(self) -> int:
        return len(self.notes)

    def __contains__(self, note_id: object) -> bool:
        return note_id in self.notes

    def get_note(self, note_id: str) -> Note:
        """Return a note or raise NoteNotFoundError."""
        try:
            return self.notes[note_id]
        except KeyError:
            raise NoteNotFoundError(note_id) from None

    def require(self, note_id: str) -> None:
        if note_id not in self.notes:
            raise NoteNotFoundError(note_id)

    def outcomes_for(self, note_id: str) -> Tuple[LinkOutcome, ...]:
        """All link outcomes of a note, in token order."""
        return self.outcomes.get(note_id, ())

    def edges_from(self, note_id: str) -> Tuple[ResolvedEdge, ...]:
        return tuple(o for o in self.outcomes_for(note_id) if isinstance(o, ResolvedEdge))

    def broken_from(self, note_id: str) -> Tuple[BrokenReference, ...]:
        return tuple(o for o in self.outcomes_for(note_id) if isinstance(o, BrokenReference))

    def incoming_sources(self, note_id: str) -> FrozenSet[str]:
        """Ids of notes with at least one edge into ``note_id``."""
        return self.incoming.get(note_id, _EMPTY)

    def edges_into(self, note_id: str) -> Iterator[ResolvedEdge]:
        """Edges targeting ``note_id``, read from each source's forward store."""
        for source_id in self.incoming_sources(note_id):
            for edge in self.edges_from(source_id):
                if edge.target_id == note_id:
                    yield edge

    def iter_outcomes(self) -> Iterator[LinkOutcome]:
        for note_id in self.outcomes:
            yield from self.outcomes[note_id]

    def sources_for_keys(self, keys: Iterable[str]) -> Set[str]:
        """Notes holding a token whose normalized target is in ``keys``."""
        found: Set[str] = set()
        for key in keys:
            found.update(self.target_keys.get(key, _EMPTY))
        return found


def _targets(outcomes: Iterable[LinkOutcome]) -> Set[str]:
    return {o.target_id for o in outcomes if isinstance(o, ResolvedEdge)}


def _token_keys(outcomes: Iterable[LinkOutcome]) -> Set[str]:
    return {normalize_key(o.token.target) for o in outcomes}


class SnapshotBuilder:
    """Mutable staging area for one batch.

    Copies the snapshot's top-level dicts once; inner sets are frozensets
    replaced per key, so the source snapshot is never touched. A builder
    is good for one batch: the snapshot returned by ``build`` shares its
    dicts.
    """

    def __init__(self, base: GraphSnapshot):
        self.base = base
        self.notes: Dict[str, Note] = dict(base.notes)
        self.indexed: Dict[str, IndexedNote] = dict(base.indexed)
        self.outcomes: Dict[str, Tuple[LinkOutcome, ...]] = dict(base.outcomes)
        self.title_index: Dict[str, FrozenSet[str]] = dict(base.title_index)
        self.incoming: Dict[str, FrozenSet[str]] = dict(base.incoming)
        self.target_keys: Dict[str, FrozenSet[str]] = dict(base.target_keys)
        # Sources whose outcomes were replaced during this batch
        self.dirty_sources: Set[str] = set()

    @staticmethod
    def _add(index: Dict[str, FrozenSet[str]], key: str, member: str) -> None:
        current = index.get(key, _EMPTY)
        if member not in current:
            index[key] = current | {member}

    @staticmethod
    def _discard(index: Dict[str, FrozenSet[str]], key: str, member: str) -> None:
        current = index.get(key)
        if current is None or member not in current:
            return
        remaining = current - {member}
        if remaining:
            index[key] = remaining
        else:
            del index[key]

    def index_keys(self, note_id: str, keys: Iterable[str]) -> None:
        for key in keys:
            self._add(self.title_index, key, note_id)

    def unindex_keys(self, note_id: str, keys: Iterable[str]) -> None:
        for key in keys:
            self._discard(self.title_index, key, note_id)

    def put_note(self, indexed: IndexedNote) -> None:
        self.notes[indexed.id] = indexed.note
        self.indexed[indexed.id] = indexed

    def remove_note(self, note_id: str) -> None:
        self.notes.pop(note_id, None)
        self.indexed.pop(note_id, None)
        self.set_outcomes(note_id, ())

    def set_outcomes(self, source_id: str, outcomes: Tuple[LinkOutcome, ...]) -> None:
        """Replace a note's forward outcomes and patch the derived indexes."""
        self.dirty_sources.add(source_id)
        old = self.outcomes.get(source_id, ())
        old_targets, new_targets = _targets(old), _targets(outcomes)
        for target in old_targets - new_targets:
            self._discard(self.incoming, target, source_id)
        for target in new_targets - old_targets:
            self._add(self.incoming, target, source_id)

        old_keys, new_keys = _token_keys(old), _token_keys(outcomes)
        for key in old_keys - new_keys:
            self._discard(self.target_keys, key, source_id)
        for key in new_keys - old_keys:
            self._add(self.target_keys, key, source_id)

        if outcomes:
            self.outcomes[source_id] = outcomes
        else:
            self.outcomes.pop(source_id, None)

    def sources_for_keys(self, keys: Iterable[str]) -> Set[str]:
        found: Set[str] = set()
        for key in keys:
            found.update(self.target_keys.get(key, _EMPTY))
        return found

    def build(self, version: Optional[int] = None) -> GraphSnapshot:
        """Freeze the staged state into a new snapshot."""
        return GraphSnapshot(
            version=self.base.version + 1 if version is None else version,
            notes=MappingProxyType(self.notes),
            indexed=MappingProxyType(self.indexed),
            outcomes=MappingProxyType(self.outcomes),
            title_index=MappingProxyType(self.title_index),
            incoming=MappingProxyType(self.incoming),
            target_keys=MappingProxyType(self.target_keys),
        )
