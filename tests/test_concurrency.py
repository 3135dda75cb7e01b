"""Tests for concurrent readers and producers against the single writer.

These tests verify:
1. Readers never observe a half-applied batch
2. Several producers can feed the queue while the worker drains it
"""
import threading
from typing import List

from tests.factories import added, updated
from vault_graph.models.schema import ResolvedEdge
from vault_graph.services.graph_service import GraphService


def _is_consistent(snapshot) -> bool:
    for target in snapshot.notes:
        forward = {
            s for s in snapshot.notes
            if any(e.target_id == target for e in snapshot.edges_from(s))
        }
        if set(snapshot.incoming_sources(target)) != forward:
            return False
    return all(
        o.target_id in snapshot.notes
        for o in snapshot.iter_outcomes()
        if isinstance(o, ResolvedEdge)
    )


class TestConcurrentAccess:
    """Tests for concurrent access patterns."""

    def test_readers_see_consistent_snapshots(self, graph_service):
        graph_service.apply([added("Hub", "hub")] + [
            added(f"n{i}", "[[Hub]]") for i in range(20)
        ])
        stop = threading.Event()
        problems: List[str] = []

        def reader():
            while not stop.is_set():
                snapshot = graph_service.snapshot
                if not _is_consistent(snapshot):
                    problems.append(f"inconsistent version {snapshot.version}")

        threads = [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        try:
            for round_no in range(30):
                target = "Hub" if round_no % 2 else "Elsewhere"
                graph_service.apply([
                    updated(f"n{i}", f"[[{target}]] round {round_no}") for i in range(20)
                ])
        finally:
            stop.set()
            for t in threads:
                t.join(timeout=5)

        assert problems == []
        assert graph_service.snapshot.version == 31

    def test_producers_feed_worker(self, graph_config):
        service = GraphService(graph_config.model_copy(update={"queue_max_size": 64}))
        service.start()
        errors: List[Exception] = []

        def produce(worker_no: int):
            try:
                for i in range(10):
                    service.submit(added(f"w{worker_no}-{i}", f"[[w{worker_no}-0]]"))
            except Exception as e:
                errors.append(e)

        try:
            producers = [threading.Thread(target=produce, args=(n,)) for n in range(4)]
            for t in producers:
                t.start()
            for t in producers:
                t.join(timeout=5)
            assert service.flush(timeout=10)
        finally:
            service.close()

        assert errors == []
        assert len(service.snapshot) == 40
        assert len(service.backlinks("w0-0")) == 10
