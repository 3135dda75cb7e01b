"""Tests for graph queries."""
import pytest

from vault_graph.exceptions import ErrorCode, NoteNotFoundError, ValidationError
from vault_graph.graph.query import GraphQuery, parse_direction
from vault_graph.models.schema import Direction


@pytest.fixture
def query(build_graph):
    def _query(notes):
        return GraphQuery(build_graph(notes))
    return _query


class TestLinks:
    """Tests for backlinks and outgoing edges."""

    def test_mutual_pair(self, query):
        q = query({"A": "see [[B]]", "B": "see [[A]]"})
        backlinks = q.backlinks("B")
        assert [(e.source_id, e.target_id) for e in backlinks] == [("A", "B")]
        assert backlinks[0].token.span == (4, 9)
        assert q.shortest_path("A", "B") == ["A", "B"]
        assert q.orphans() == []

    def test_backlinks_equal_reverse_outgoing(self, query):
        q = query({
            "A": "[[B]] [[C]] [[B|again]]",
            "B": "[[C]]",
            "C": "[[A]] [[Missing]]",
        })
        for target in ("A", "B", "C"):
            expected = sorted(
                (e.source_id, e.token.ordinal)
                for source in ("A", "B", "C")
                for e in q.outgoing(source)
                if e.target_id == target
            )
            actual = sorted((e.source_id, e.token.ordinal) for e in q.backlinks(target))
            assert actual == expected

    def test_backlinks_ordered_by_source_path(self, query):
        q = query({
            "z": ("a/first.md", "[[T]]"),
            "a": ("b/second.md", "[[T]] and [[T]]"),
            "T": "target",
        })
        assert [(e.source_id, e.token.ordinal) for e in q.backlinks("T")] == [
            ("z", 0), ("a", 0), ("a", 1),
        ]

    def test_outgoing_in_token_order(self, query):
        q = query({"A": "[[C]] [[B]] [[Nope]]", "B": "b", "C": "c"})
        assert [e.target_id for e in q.outgoing("A")] == ["C", "B"]

    def test_broken_reference_is_not_an_edge(self, query):
        q = query({"C": "see [[Nope]]"})
        assert q.outgoing("C") == []
        assert q.orphans() == ["C"]

    def test_unknown_note_raises(self, query):
        q = query({"A": "a"})
        for call in (
            lambda: q.backlinks("X"),
            lambda: q.outgoing("X"),
            lambda: q.neighbors("X"),
            lambda: q.connected_component("X"),
            lambda: q.shortest_path("A", "X"),
            lambda: q.local_graph("X"),
        ):
            with pytest.raises(NoteNotFoundError):
                call()


class TestNeighbors:
    """Tests for neighbors in each direction."""

    @pytest.fixture
    def q(self, query):
        return query({"A": "[[B]]", "B": "b", "C": "[[A]]"})

    def test_directions(self, q):
        assert q.neighbors("A", Direction.OUT) == {"B"}
        assert q.neighbors("A", "in") == {"C"}
        assert q.neighbors("A") == {"B", "C"}

    def test_invalid_direction(self, q):
        with pytest.raises(ValidationError) as exc_info:
            q.neighbors("A", "sideways")
        assert exc_info.value.code == ErrorCode.INVALID_DIRECTION

    def test_parse_direction_is_case_insensitive(self):
        assert parse_direction("OUT") == Direction.OUT
        assert parse_direction(Direction.IN) == Direction.IN


class TestTraversal:
    """Tests for shortest_path and connected_component."""

    def test_path_ignores_direction(self, query):
        q = query({"A": "[[B]]", "B": "[[C]]", "C": "c", "D": "[[C]]"})
        assert q.shortest_path("A", "D") == ["A", "B", "C", "D"]
        assert q.shortest_path("D", "A") == ["D", "C", "B", "A"]

    def test_tie_broken_by_id_order(self, query):
        q = query({"A": "[[C]] [[B]]", "B": "[[D]]", "C": "[[D]]", "D": "d"})
        assert q.shortest_path("A", "D") == ["A", "B", "D"]

    def test_same_note(self, query):
        q = query({"A": "a"})
        assert q.shortest_path("A", "A") == ["A"]

    def test_unreachable(self, query):
        q = query({"A": "[[B]]", "B": "b", "C": "c"})
        assert q.shortest_path("A", "C") is None

    def test_connected_component(self, query):
        q = query({"A": "[[B]]", "B": "b", "C": "[[B]]", "D": "[[E]]", "E": "e", "F": "f"})
        assert q.connected_component("A") == {"A", "B", "C"}
        assert q.connected_component("E") == {"D", "E"}
        assert q.connected_component("F") == {"F"}


class TestOrphans:
    """Tests for orphan detection."""

    def test_orphans_ordered_by_path(self, query):
        q = query({
            "x": ("b/lonely.md", "[[Nowhere]]"),
            "y": ("a/alone.md", "nothing"),
            "A": "[[B]]",
            "B": "b",
        })
        assert q.orphans() == ["y", "x"]

    def test_self_link_is_not_orphan(self, query):
        q = query({"A": "[[A]]"})
        assert q.orphans() == []


class TestLocalGraphAndHubs:
    """Tests for local_graph and hubs."""

    def test_local_graph_depth(self, query):
        q = query({"A": "[[B]]", "B": "[[C]]", "C": "[[D]]", "D": "d"})
        one = q.local_graph("B", depth=1)
        assert one.note_ids == ("A", "B", "C")
        assert [(e.source_id, e.target_id) for e in one.edges] == [("A", "B"), ("B", "C")]

        two = q.local_graph("A", depth=2)
        assert two.note_ids == ("A", "B", "C")

        zero = q.local_graph("A", depth=0)
        assert zero.note_ids == ("A",)
        assert zero.edges == ()

    def test_local_graph_rejects_negative_depth(self, query):
        q = query({"A": "a"})
        with pytest.raises(ValidationError):
            q.local_graph("A", depth=-1)

    def test_hubs(self, query):
        q = query({"A": "[[B]] [[C]]", "B": "[[C]]", "C": "c", "D": "d"})
        hubs = q.hubs()
        assert [(h.note_id, h.incoming, h.outgoing) for h in hubs] == [
            ("A", 0, 2), ("B", 1, 1), ("C", 2, 0),
        ]
        assert all(h.degree == 2 for h in hubs)
        assert [h.note_id for h in q.hubs(limit=1)] == ["A"]

    def test_hubs_rejects_bad_limit(self, query):
        q = query({"A": "a"})
        with pytest.raises(ValidationError):
            q.hubs(limit=0)
