"""Incremental maintenance of the link graph.

Applies a batch of mutation events to a snapshot and produces the next
snapshot together with a :class:`GraphDiff`. Each event is staged first
(content parsed, tokens resolved against the index as it will look once the
event lands) and only then committed to the builder, so an unexpected error
leaves the affected note exactly as it was.

After all events are committed, notes whose link targets mention a key
whose ownership changed are re-resolved, along with every note that linked
to a deleted note. The target-key and incoming indexes bound this pass; the
graph is never rescanned.
"""
import logging
from collections import ChainMap
from dataclasses import dataclass
from typing import (
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    Set,
    Tuple,
)

from pydantic import ValidationError as PydanticValidationError

from vault_graph.exceptions import (
    ErrorCode,
    MutationApplicationError,
    NoteNotFoundError,
    VaultGraphError,
)
from vault_graph.graph.snapshot import GraphSnapshot, SnapshotBuilder
from vault_graph.models.schema import (
    AmbiguityEvent,
    BrokenReference,
    GraphDiff,
    IndexedNote,
    LinkOutcome,
    LinkToken,
    MutationEvent,
    MutationFailure,
    MutationKind,
    ResolvedEdge,
)
from vault_graph.parsing.note_parser import NoteParser
from vault_graph.resolver import note_keys, resolve_token

logger = logging.getLogger(__name__)


class TokenCache(Protocol):
    """Source of previously parsed tokens, keyed by content hash."""

    def lookup(self, note_id: str, content_hash: str) -> Optional[Sequence[LinkToken]]:
        ...


@dataclass
class _Staged:
    event: MutationEvent
    old: Optional[IndexedNote]
    new: Optional[IndexedNote]
    outcomes: Tuple[LinkOutcome, ...] = ()


def _outcome_key(outcome: LinkOutcome) -> Tuple[str, int, Tuple[int, int], str]:
    token = outcome.token
    return (outcome.source_id, token.ordinal, token.span, token.raw)


def _edge_key(edge: ResolvedEdge) -> Tuple[str, int, Tuple[int, int], str, str]:
    return _outcome_key(edge) + (edge.target_id,)


def _ambiguity_key(event: AmbiguityEvent) -> Tuple:
    return (event.source_id, event.span, event.raw_target, event.candidates, event.chosen)


class IncrementalMaintainer:
    """Applies mutation batches to immutable snapshots.

    Stateless between batches apart from its configuration, so a single
    instance can serve the writer for the life of the process.
    """

    def __init__(
        self,
        parser: Optional[NoteParser] = None,
        prefer_title_over_alias: bool = False,
        token_cache: Optional[TokenCache] = None,
    ):
        self.parser = parser or NoteParser()
        self.prefer_title_over_alias = prefer_title_over_alias
        self.token_cache = token_cache

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def rebuild(self, events: Iterable[MutationEvent]) -> Tuple[GraphSnapshot, GraphDiff]:
        """Build a snapshot from scratch."""
        return self.apply(GraphSnapshot.empty(), events)

    def apply(
        self,
        snapshot: GraphSnapshot,
        events: Iterable[MutationEvent],
    ) -> Tuple[GraphSnapshot, GraphDiff]:
        """Apply a batch of events.

        Args:
            snapshot: The current snapshot; it is not modified.
            events: Events in arrival order.

        Returns:
            Tuple of (new snapshot, diff). When nothing changed the input
            snapshot is returned as is.
        """
        builder = SnapshotBuilder(snapshot)
        changed_keys: Set[str] = set()
        # Sources that linked to a deleted note, whatever key they used
        orphaned: Set[str] = set()
        touched: List[str] = []
        failures: List[MutationFailure] = []

        for event in events:
            try:
                staged = self._stage(builder, event)
            except Exception as e:
                failures.append(self._failure(event.note_id, event.kind, e))
                continue
            if staged is None:
                continue
            if staged.new is None:
                orphaned |= builder.incoming.get(event.note_id, frozenset())
            changed_keys |= self._commit(builder, staged)
            if staged.event.note_id not in touched:
                touched.append(staged.event.note_id)

        # Includes notes committed earlier in this batch whose targets a later
        # event changed
        for note_id in sorted(builder.sources_for_keys(changed_keys) | orphaned):
            if note_id not in builder.notes:
                continue
            try:
                self._reresolve(builder, note_id)
            except Exception as e:
                failures.append(self._failure(note_id, None, e))
                self._drop_dangling(builder, note_id)

        return self._finish(snapshot, builder, touched, failures)

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def _stage(self, builder: SnapshotBuilder, event: MutationEvent) -> Optional[_Staged]:
        """Parse and resolve one event without touching the builder.

        Returns None when the event changes nothing.
        """
        note_id = event.note_id
        old = builder.indexed.get(note_id)

        if event.kind == MutationKind.DELETED:
            if old is None:
                logger.debug(f"Ignoring delete of unknown note '{note_id}'")
                return None
            return _Staged(event=event, old=old, new=None)

        if event.kind == MutationKind.RENAMED:
            if event.content is not None:
                content = event.content
            elif old is not None:
                content = old.note.content
            else:
                raise NoteNotFoundError(
                    note_id, f"Cannot rename unknown note '{note_id}' without content"
                )
        else:
            content = event.content

        if old is not None and old.note.path == event.path and old.note.content == content:
            logger.debug(f"Note '{note_id}' unchanged, skipping")
            return None

        version = old.note.version + 1 if old is not None else 1
        note = self.parser.build_note(note_id, event.path, content, version=version)

        tokens = None
        if old is not None and old.note.content_hash == note.content_hash:
            tokens = old.tokens
        elif self.token_cache is not None:
            tokens = self.token_cache.lookup(note_id, note.content_hash)
        new = self.parser.index_note(note, tokens)

        # Resolve against the index as it will be once this note's names land
        old_keys = note_keys(old.note) if old is not None else frozenset()
        new_keys = note_keys(note)
        overrides: Dict[str, FrozenSet[str]] = {}
        for key in old_keys | new_keys:
            members = set(builder.title_index.get(key, ()))
            members.discard(note_id)
            if key in new_keys:
                members.add(note_id)
            overrides[key] = frozenset(members)
        title_index = ChainMap(overrides, builder.title_index)
        notes = ChainMap({note_id: note}, builder.notes)

        outcomes = tuple(
            resolve_token(token, title_index, notes, self.prefer_title_over_alias)
            for token in new.tokens
        )
        return _Staged(event=event, old=old, new=new, outcomes=outcomes)

    def _commit(self, builder: SnapshotBuilder, staged: _Staged) -> Set[str]:
        """Write a staged event into the builder.

        Returns:
            Index keys whose owners, or whose owners' names or paths, changed.
        """
        old, new = staged.old, staged.new
        old_keys = note_keys(old.note) if old is not None else frozenset()
        new_keys = note_keys(new.note) if new is not None else frozenset()

        builder.unindex_keys(staged.event.note_id, old_keys - new_keys)
        if new is None:
            builder.remove_note(staged.event.note_id)
            logger.debug(f"Removed note '{staged.event.note_id}'")
        else:
            builder.index_keys(new.id, new_keys)
            builder.put_note(new)
            builder.set_outcomes(new.id, staged.outcomes)

        if (
            old is None
            or new is None
            or old.note.path != new.note.path
            or old.note.names() != new.note.names()
        ):
            return set(old_keys | new_keys)
        return set()

    # ------------------------------------------------------------------
    # Re-resolution
    # ------------------------------------------------------------------

    def _reresolve(self, builder: SnapshotBuilder, note_id: str) -> None:
        indexed = builder.indexed[note_id]
        outcomes = tuple(
            resolve_token(token, builder.title_index, builder.notes, self.prefer_title_over_alias)
            for token in indexed.tokens
        )
        if outcomes != builder.outcomes.get(note_id, ()):
            builder.set_outcomes(note_id, outcomes)

    def _drop_dangling(self, builder: SnapshotBuilder, note_id: str) -> None:
        """Keep prior outcomes, but never an edge into a note that is gone."""
        outcomes = builder.outcomes.get(note_id, ())
        patched = tuple(
            BrokenReference(
                source_id=o.source_id,
                raw_target=o.token.target,
                span=o.token.span,
                token=o.token,
            )
            if isinstance(o, ResolvedEdge) and o.target_id not in builder.notes
            else o
            for o in outcomes
        )
        if patched != outcomes:
            builder.set_outcomes(note_id, patched)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _failure(
        self,
        note_id: str,
        kind: Optional[MutationKind],
        error: Exception,
    ) -> MutationFailure:
        if isinstance(error, VaultGraphError):
            wrapped = error
        else:
            wrapped = MutationApplicationError(
                f"Failed to index note '{note_id}'",
                note_id=note_id,
                kind=kind.value if kind else None,
                code=(
                    ErrorCode.NOTE_VALIDATION_FAILED
                    if isinstance(error, PydanticValidationError)
                    else ErrorCode.MUTATION_APPLICATION_FAILED
                ),
                original_error=error,
            )
        logger.error(f"Mutation failed for note '{note_id}': {wrapped}", exc_info=error)
        return MutationFailure(
            note_id=note_id,
            kind=kind,
            error_code=wrapped.code.value,
            message=str(wrapped),
        )

    def _finish(
        self,
        snapshot: GraphSnapshot,
        builder: SnapshotBuilder,
        touched: List[str],
        failures: List[MutationFailure],
    ) -> Tuple[GraphSnapshot, GraphDiff]:
        before = snapshot.outcomes
        after = builder.outcomes
        changed_sources = {
            note_id for note_id in builder.dirty_sources
            if before.get(note_id, ()) != after.get(note_id, ())
        }
        changed: Set[str] = set(touched) | changed_sources

        if not changed:
            return snapshot, GraphDiff(version=snapshot.version, failures=tuple(failures))

        old_edges: Dict[Tuple, ResolvedEdge] = {}
        new_edges: Dict[Tuple, ResolvedEdge] = {}
        old_broken: Dict[Tuple, BrokenReference] = {}
        new_broken: Dict[Tuple, BrokenReference] = {}
        for note_id in changed_sources:
            for o in before.get(note_id, ()):
                if isinstance(o, ResolvedEdge):
                    old_edges[_edge_key(o)] = o
                else:
                    old_broken[_outcome_key(o)] = o
            for o in after.get(note_id, ()):
                if isinstance(o, ResolvedEdge):
                    new_edges[_edge_key(o)] = o
                else:
                    new_broken[_outcome_key(o)] = o

        added = [new_edges[k] for k in new_edges if k not in old_edges]
        removed = [old_edges[k] for k in old_edges if k not in new_edges]
        resolved_now = {k[:4] for k in new_edges}
        resolved_refs = [
            old_broken[k] for k in old_broken
            if k not in new_broken and k in resolved_now
        ]
        newly_broken = [new_broken[k] for k in new_broken if k not in old_broken]

        old_ambiguities = {
            _ambiguity_key(e.ambiguity) for e in old_edges.values() if e.ambiguity is not None
        }
        new_ambiguities = [
            e.ambiguity for e in new_edges.values()
            if e.ambiguity is not None and _ambiguity_key(e.ambiguity) not in old_ambiguities
        ]

        # Targets whose backlinks changed need re-rendering too
        for edge in added + removed:
            changed.add(edge.target_id)

        new_snapshot = builder.build()
        diff = GraphDiff(
            version=new_snapshot.version,
            changed_note_ids=tuple(sorted(changed)),
            added_edges=tuple(sorted(added, key=_edge_key)),
            removed_edges=tuple(sorted(removed, key=_edge_key)),
            new_broken_references=tuple(sorted(newly_broken, key=_outcome_key)),
            resolved_references=tuple(sorted(resolved_refs, key=_outcome_key)),
            new_ambiguities=tuple(sorted(new_ambiguities, key=_ambiguity_key)),
            failures=tuple(failures),
        )
        logger.info(
            f"Applied batch -> version {diff.version}: {len(diff.changed_note_ids)} notes changed, "
            f"+{len(added)}/-{len(removed)} edges, {len(newly_broken)} newly broken, "
            f"{len(failures)} failures"
        )
        return new_snapshot, diff
