"""Tests for the consistency report."""
from vault_graph.graph.consistency import build_report
from vault_graph.models.schema import TieBreakRule


class TestBrokenAndAmbiguous:
    """Broken references and ambiguities are reported with their location."""

    def test_broken_reference(self, build_graph):
        report = build_report(build_graph({"C": "see [[Nope]]"}))
        assert len(report.broken_references) == 1
        ref = report.broken_references[0]
        assert (ref.source_id, ref.raw_target, ref.span) == ("C", "Nope", (4, 12))
        assert report.orphans == ("C",)
        assert not report.is_clean

    def test_ambiguity_and_duplicate_titles(self, build_graph):
        snapshot = build_graph({
            "n1": ("Widget.md", "one"),
            "n2": ("archive/Widget.md", "two"),
            "S": "[[Widget]]",
        })
        report = build_report(snapshot)
        assert len(report.ambiguities) == 1
        event = report.ambiguities[0]
        assert event.candidates == ("n1", "n2")
        assert event.chosen == "n1"
        assert event.rule == TieBreakRule.SHORTER_PATH
        assert [(d.key, d.note_ids) for d in report.duplicate_titles] == [
            ("widget", ("n1", "n2")),
        ]

    def test_clean_vault(self, build_graph):
        report = build_report(build_graph({"A": "see [[B]]", "B": "see [[A]]"}))
        assert report.is_clean
        assert report.edge_count == 2
        assert report.note_count == 2
        assert report.orphans == ()


class TestAnchors:
    """Missing anchors are advisory."""

    def test_dangling_anchors(self, build_graph):
        snapshot = build_graph({
            "A": "[[B#Missing]] [[B#Present]] [[B#^blk]] [[B#^gone]]",
            "B": "# Present\nsome text ^blk",
        })
        report = build_report(snapshot)
        assert [e.token.anchor for e in report.dangling_anchors] == ["Missing", "^gone"]
        # The links still resolve
        assert report.edge_count == 4
        assert report.is_clean

    def test_nested_heading_anchor(self, build_graph):
        snapshot = build_graph({"A": "[[B#Top#Inner]]", "B": "# Top\n## Inner\n"})
        assert build_report(snapshot).dangling_anchors == ()


class TestSerialization:
    def test_to_dict_and_summary(self, build_graph):
        report = build_report(build_graph({"C": "see [[Nope]]", "D": "d"}))
        data = report.to_dict()
        assert data["version"] == 1
        assert data["broken_references"][0]["raw_target"] == "Nope"
        assert data["broken_references"][0]["span"] == [4, 12]
        assert data["orphans"] == ["C", "D"]
        assert report.summary()["broken_references"] == 1
        assert report.summary()["notes"] == 2
