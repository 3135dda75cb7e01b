"""Bounded, coalescing queue of mutation events.

The queue holds at most one pending event per note id. A newer event for
a note that is already waiting is merged into the pending one, so only the
latest content of a note is ever indexed and superseded edits are dropped
before they are parsed. Capacity counts distinct note ids: merging is always
accepted, a new note id on a full queue is rejected with
:class:`QueueOverflowError`.
"""
import logging
import threading
import time
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from vault_graph.exceptions import ErrorCode, QueueOverflowError
from vault_graph.models.schema import MutationEvent, MutationKind

logger = logging.getLogger(__name__)


def coalesce(pending: MutationEvent, newer: MutationEvent) -> MutationEvent:
    """Merge a newer event for the same note into the pending one.

    Args:
        pending: The event already waiting in the queue.
        newer: The event just submitted.

    Returns:
        A single event with the combined effect of both.
    """
    note_id = newer.note_id
    prev, new = pending.kind, newer.kind

    if new == MutationKind.DELETED:
        return newer

    if prev == MutationKind.DELETED:
        if newer.content is not None:
            return MutationEvent.added(note_id, newer.path, newer.content)
        logger.warning(
            f"Rename of note '{note_id}' after its deletion carries no content; "
            "keeping the delete"
        )
        return pending

    content = newer.content if newer.content is not None else pending.content

    if prev == MutationKind.ADDED and new in (MutationKind.UPDATED, MutationKind.RENAMED):
        return MutationEvent.added(note_id, newer.path, content)

    if prev == MutationKind.UPDATED and new == MutationKind.RENAMED:
        return MutationEvent.updated(note_id, newer.path, content)

    if prev == MutationKind.RENAMED and new == MutationKind.RENAMED:
        return MutationEvent.renamed(
            note_id,
            newer.path,
            previous_path=pending.previous_path,
            content=content,
        )

    # Added or Updated carries the full new state
    return newer


class MutationQueue:
    """Thread-safe FIFO of pending events keyed by note id.

    Follows the ``queue.Queue`` protocol for completion tracking: every
    drained event must be acknowledged with :meth:`task_done` before
    :meth:`join` returns.
    """

    def __init__(self, max_size: int = 1024, batch_max_size: int = 256):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if batch_max_size < 1:
            raise ValueError("batch_max_size must be >= 1")
        self.max_size = max_size
        self.batch_max_size = batch_max_size
        self._pending: "OrderedDict[str, MutationEvent]" = OrderedDict()
        self._lock = threading.Lock()
        self._not_empty = threading.Condition(self._lock)
        self._all_done = threading.Condition(self._lock)
        self._unfinished = 0
        self._closed = False
        self._stats: Dict[str, int] = {"accepted": 0, "coalesced": 0, "rejected": 0}

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def is_full(self) -> bool:
        with self._lock:
            return len(self._pending) >= self.max_size

    def put(self, event: MutationEvent) -> bool:
        """Enqueue an event.

        Returns:
            True if the event was merged into a pending event for the same
            note, False if it took a new slot.

        Raises:
            QueueOverflowError: If the queue is full and the note has no
                pending event, or if the queue is closed.
        """
        with self._lock:
            if self._closed:
                raise QueueOverflowError(
                    "Mutation queue is closed",
                    capacity=self.max_size,
                    note_id=event.note_id,
                    code=ErrorCode.QUEUE_CLOSED,
                )

            pending = self._pending.get(event.note_id)
            if pending is not None:
                self._pending[event.note_id] = coalesce(pending, event)
                self._stats["coalesced"] += 1
                logger.debug(
                    f"Coalesced {event.kind.value} for note '{event.note_id}' "
                    f"into pending {pending.kind.value}"
                )
                return True

            if len(self._pending) >= self.max_size:
                self._stats["rejected"] += 1
                logger.warning(
                    f"Mutation queue full ({self.max_size} notes pending), "
                    f"rejecting {event.kind.value} for note '{event.note_id}'"
                )
                raise QueueOverflowError(
                    f"Mutation queue is full ({self.max_size} notes pending)",
                    capacity=self.max_size,
                    note_id=event.note_id,
                )

            self._pending[event.note_id] = event
            self._unfinished += 1
            self._stats["accepted"] += 1
            self._not_empty.notify()
            return False

    def put_many(self, events: Iterable[MutationEvent]) -> int:
        """Enqueue events in order, stopping at the first overflow.

        Returns:
            Number of events accepted.

        Raises:
            QueueOverflowError: On the first rejected event. Its ``accepted``
                attribute and ``details["accepted"]`` hold the number of
                events queued before it.
        """
        count = 0
        for event in events:
            try:
                self.put(event)
            except QueueOverflowError as e:
                e.accepted = count
                e.details["accepted"] = count
                raise
            count += 1
        return count

    def drain(
        self,
        max_items: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[MutationEvent]:
        """Remove up to ``max_items`` events in first-arrival order.

        Blocks until at least one event is pending, the timeout expires or
        the queue is closed. ``timeout=0`` never blocks.
        """
        limit = max_items or self.batch_max_size
        with self._not_empty:
            if timeout is None:
                while not self._pending and not self._closed:
                    self._not_empty.wait()
            elif timeout > 0:
                deadline = time.monotonic() + timeout
                while not self._pending and not self._closed:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    self._not_empty.wait(remaining)

            batch: List[MutationEvent] = []
            while self._pending and len(batch) < limit:
                _, event = self._pending.popitem(last=False)
                batch.append(event)
            return batch

    def task_done(self, count: int = 1) -> None:
        """Acknowledge that ``count`` drained events have been applied."""
        with self._lock:
            unfinished = self._unfinished - count
            if unfinished < 0:
                raise ValueError("task_done() called too many times")
            self._unfinished = unfinished
            if unfinished == 0:
                self._all_done.notify_all()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until every accepted event has been applied.

        Returns:
            True if the queue is fully processed, False on timeout.
        """
        with self._all_done:
            return self._all_done.wait_for(lambda: self._unfinished == 0, timeout)

    def close(self) -> None:
        """Reject further events and wake any blocked :meth:`drain`."""
        with self._lock:
            self._closed = True
            self._not_empty.notify_all()

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {**self._stats, "pending": len(self._pending), "capacity": self.max_size}
