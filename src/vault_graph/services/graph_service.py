"""Service layer for the link graph.

One writer, many readers. Batches are applied under the writer lock,
either synchronously through :meth:`GraphService.apply` or by a single
background worker draining the mutation queue. Readers take the current
snapshot without locking; the reference is swapped only after a batch has
been fully applied, so a reader never sees a half-built graph.
"""
import logging
import threading
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Union

from vault_graph import observability
from vault_graph.config import GraphConfig, config as default_config
from vault_graph.exceptions import ErrorCode, StorageError, ValidationError
from vault_graph.graph.consistency import ConsistencyReport, build_report
from vault_graph.graph.maintainer import IncrementalMaintainer
from vault_graph.graph.query import GraphQuery, HubEntry, LocalGraph
from vault_graph.graph.snapshot import GraphSnapshot
from vault_graph.models.schema import (
    Direction,
    GraphDiff,
    MutationEvent,
    Note,
    Resolution,
    ResolvedEdge,
)
from vault_graph.observability import get_logger, timed_operation, traced
from vault_graph.parsing.link_parser import rewrite_link_targets
from vault_graph.resolver import normalize_key, resolve_target
from vault_graph.services.mutation_queue import MutationQueue
from vault_graph.storage.index_cache import IndexCache
from vault_graph.storage.vault_reader import VaultReader

logger = logging.getLogger(__name__)

Subscriber = Callable[[GraphDiff], None]


def _require_event(event: object) -> MutationEvent:
    if not isinstance(event, MutationEvent):
        raise ValidationError(
            f"Expected a MutationEvent, got {type(event).__name__}",
            field="event",
            code=ErrorCode.INVALID_MUTATION,
        )
    return event


class GraphService:
    """Owns the current snapshot and the single writer that replaces it."""

    def __init__(
        self,
        graph_config: Optional[GraphConfig] = None,
        index_cache: Optional[IndexCache] = None,
        maintainer: Optional[IncrementalMaintainer] = None,
        queue: Optional[MutationQueue] = None,
    ):
        self.config = graph_config or default_config
        self.index_cache = index_cache
        self.maintainer = maintainer or IncrementalMaintainer(
            prefer_title_over_alias=self.config.prefer_title_over_alias,
            token_cache=index_cache,
        )
        self.queue = queue or MutationQueue(
            max_size=self.config.queue_max_size,
            batch_max_size=self.config.batch_max_size,
        )
        self._snapshot = GraphSnapshot.empty()
        self._writer_lock = threading.Lock()
        self._subscribers: List[Subscriber] = []
        self._subscribers_lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._writer_log = get_logger("writer")

    # ------------------------------------------------------------------
    # Snapshot access
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> GraphSnapshot:
        """The current snapshot. Safe to hold across later batches."""
        return self._snapshot

    def query(self) -> GraphQuery:
        return GraphQuery(self._snapshot)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def apply(self, events: Iterable[MutationEvent]) -> GraphDiff:
        """Apply a batch synchronously and publish the result.

        Subscribers are called before the writer lock is released, so they
        see diffs one at a time in version order. A subscriber must not call
        ``apply`` itself; it can ``submit`` instead.

        Returns:
            The diff of the applied batch. Failed events are listed in
            ``diff.failures``; they never raise.
        """
        events = [_require_event(e) for e in events]
        with self._writer_lock:
            with timed_operation("apply_batch", events=len(events)) as op:
                snapshot, diff = self.maintainer.apply(self._snapshot, events)
                self._snapshot = snapshot
                op["changed"] = len(diff.changed_note_ids)
                op["failures"] = len(diff.failures)
            self._persist(snapshot, diff)
            self._publish(diff)
        return diff

    def submit(self, event: MutationEvent) -> bool:
        """Queue an event for the writer.

        Returns:
            True if it was merged into a pending event for the same note.

        Raises:
            QueueOverflowError: If the queue is full; retry later.
        """
        return self.queue.put(_require_event(event))

    def submit_many(self, events: Iterable[MutationEvent]) -> int:
        return self.queue.put_many(_require_event(e) for e in events)

    def process_pending(self) -> List[GraphDiff]:
        """Drain the queue in batches on the calling thread."""
        diffs = []
        while True:
            batch = self.queue.drain(timeout=0)
            if not batch:
                return diffs
            try:
                diffs.append(self.apply(batch))
            finally:
                self.queue.task_done(len(batch))

    def load_vault(self, reader: Optional[VaultReader] = None) -> GraphDiff:
        """Index every note of a vault directory in one batch."""
        reader = reader or VaultReader(self.config.vault_dir, self.config.note_extensions)
        diff = self.apply(reader.iter_events())
        if self.index_cache is not None:
            # Drop entries for notes removed from the vault since the last run
            current = {note_id: note.content_hash for note_id, note in self._snapshot.notes.items()}
            try:
                self.index_cache.sync(self._snapshot, self.index_cache.stale_note_ids(current))
            except StorageError as e:
                logger.error(f"Failed to prune index cache: {e}")
        logger.info(f"Loaded vault {reader.vault_dir}: {len(self._snapshot)} notes")
        return diff

    def _persist(self, snapshot: GraphSnapshot, diff: GraphDiff) -> None:
        if self.index_cache is None or not diff.changed_note_ids:
            return
        try:
            self.index_cache.sync(snapshot, diff.changed_note_ids)
        except StorageError as e:
            logger.error(f"Failed to update index cache: {e}")

    # ------------------------------------------------------------------
    # Background worker
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        """Start the background writer thread."""
        if self.running:
            return
        self._stop.clear()
        self._worker = threading.Thread(
            target=self._run_worker,
            daemon=True,
            name="vault-graph-writer",
        )
        self._worker.start()
        self._writer_log.info(
            "Graph writer started",
            poll_interval=self.config.worker_poll_interval,
            batch_max_size=self.queue.batch_max_size,
        )

    def _run_worker(self) -> None:
        while not self._stop.is_set():
            batch = self.queue.drain(timeout=self.config.worker_poll_interval)
            if not batch:
                if self.queue.closed:
                    return
                continue
            try:
                self.apply(batch)
            except Exception as e:
                # Per-note failures are reported in the diff; the writer keeps running
                self._writer_log.error(
                    f"Failed to apply a batch: {e}", exc_info=True, events=len(batch)
                )
            finally:
                self.queue.task_done(len(batch))

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued event has been applied.

        Without a running worker the queue is drained on the calling thread.

        Returns:
            False if the timeout expired first.
        """
        if not self.running:
            self.process_pending()
        return self.queue.join(timeout)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the writer after the events already queued are applied."""
        if self._worker is None:
            return
        self.flush(timeout)
        self._stop.set()
        self._worker.join(timeout)
        self._worker = None
        self._writer_log.info("Graph writer stopped", pending=len(self.queue))

    def close(self) -> None:
        self.stop()
        self.queue.close()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Receive a diff after every applied batch that changed something.

        Returns:
            A function that removes the subscription.
        """
        with self._subscribers_lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._subscribers_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, diff: GraphDiff) -> None:
        if diff.is_empty:
            return
        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(diff)
            except Exception as e:
                logger.error(f"Subscriber {callback!r} raised: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @traced("backlinks")
    def backlinks(self, note_id: str) -> List[ResolvedEdge]:
        return self.query().backlinks(note_id)

    @traced("outgoing")
    def outgoing(self, note_id: str) -> List[ResolvedEdge]:
        return self.query().outgoing(note_id)

    @traced("neighbors")
    def neighbors(
        self,
        note_id: str,
        direction: Union[Direction, str] = Direction.BOTH,
    ) -> FrozenSet[str]:
        return self.query().neighbors(note_id, direction)

    @traced("shortest_path")
    def shortest_path(self, source_id: str, target_id: str) -> Optional[List[str]]:
        return self.query().shortest_path(source_id, target_id)

    @traced("connected_component")
    def connected_component(self, note_id: str) -> FrozenSet[str]:
        return self.query().connected_component(note_id)

    @traced("orphans")
    def orphans(self) -> List[str]:
        return self.query().orphans()

    @traced("local_graph")
    def local_graph(self, note_id: str, depth: int = 1) -> LocalGraph:
        return self.query().local_graph(note_id, depth)

    @traced("hubs")
    def hubs(self, limit: int = 10) -> List[HubEntry]:
        return self.query().hubs(limit)

    @traced("report")
    def report(self) -> ConsistencyReport:
        return build_report(self._snapshot)

    def resolve(self, raw_target: str) -> Resolution:
        """Preview how link text would resolve, anchor and alias included.

        Accepts either a bare target or the full inner text of a link
        (``Target#Heading|Alias``).
        """
        target = raw_target.split("|", 1)[0].split("#", 1)[0].strip()
        if not target:
            raise ValidationError("Link target cannot be empty", field="raw_target", value=raw_target)
        snapshot = self._snapshot
        return resolve_target(
            target,
            snapshot.title_index,
            snapshot.notes,
            self.config.prefer_title_over_alias,
        )

    def plan_link_rewrites(self, note_id: str, new_target: str) -> Dict[str, str]:
        """Rewrite every link into a note so it targets ``new_target``.

        Used before renaming a note so existing links keep resolving. Only
        tokens that currently resolve to ``note_id`` are rewritten; alias,
        anchor and embed marker are kept. Nothing is applied: the caller
        writes the files and reports the updates as events.

        Returns:
            Source note id -> rewritten content, for each note that changes.

        Raises:
            NoteNotFoundError: If the note is not in the snapshot.
        """
        if not new_target or not new_target.strip():
            raise ValidationError("New target cannot be empty", field="new_target")
        snapshot = self._snapshot
        snapshot.require(note_id)

        plans: Dict[str, str] = {}
        for source_id in sorted(snapshot.incoming_sources(note_id)):
            spans = {
                e.token.span for e in snapshot.edges_from(source_id) if e.target_id == note_id
            }
            content = snapshot.notes[source_id].content
            keys = {
                normalize_key(e.token.target)
                for e in snapshot.edges_from(source_id) if e.target_id == note_id
            }
            rewritten, count = rewrite_link_targets(
                content,
                {key: new_target.strip() for key in keys},
                key=normalize_key,
                spans=spans,
            )
            if count:
                plans[source_id] = rewritten
        logger.debug(f"Planned link rewrites for '{note_id}' in {len(plans)} notes")
        return plans

    def get_note(self, note_id: str) -> Note:
        """Return the indexed note, or raise NoteNotFoundError."""
        return self._snapshot.get_note(note_id)

    def get_stats(self) -> Dict[str, Any]:
        """Graph size, queue counters and per-operation timings."""
        snapshot = self._snapshot
        return {
            "version": snapshot.version,
            "notes": len(snapshot),
            "queue": self.queue.get_stats(),
            "operations": observability.metrics.get_metrics(),
        }
