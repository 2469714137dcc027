"""Unit tests for the mapping graph resolver."""

import pytest

from crosswalk.analyzers.mapping_graph import MappingGraph, confidence_weight
from crosswalk.core.exceptions import DataIntegrityWarning
from crosswalk.models.compliance import ConfidenceLevel

from factories import make_control, make_mapping

A1 = make_control("a1", "A")
A2 = make_control("a2", "A")
B1 = make_control("b1", "B")
B2 = make_control("b2", "B")
C1 = make_control("c1", "C")


class TestConfidenceWeight:
    """Numeric weights of confidence levels."""

    @pytest.mark.parametrize(
        "level,weight",
        [
            (ConfidenceLevel.HIGH, 3),
            (ConfidenceLevel.MEDIUM, 2),
            (ConfidenceLevel.LOW, 1),
            ("HIGH", 3),
            ("VERY_HIGH", 1),
            (None, 1),
        ],
    )
    def test_weights(self, level, weight):
        assert confidence_weight(level) == weight

    def test_unknown_confidence_is_accepted_on_records(self):
        edge = make_mapping("m", A1, B1, confidence="CERTAIN")
        assert edge.confidence == "CERTAIN"
        assert confidence_weight(edge.confidence) == 1


class TestMappingGraph:
    """Lookups by control and by framework pair."""

    @pytest.fixture
    def graph(self):
        return MappingGraph(
            [
                make_mapping("m1", A1, B1),
                make_mapping("m2", A1, B2, confidence=ConfidenceLevel.LOW),
                make_mapping("m3", B1, A2),
                make_mapping("m4", A2, C1),
            ]
        )

    def test_edges_from_and_to(self, graph):
        assert [e.id for e in graph.edges_from("a1")] == ["m1", "m2"]
        assert [e.id for e in graph.edges_to("b1")] == ["m1"]
        assert graph.edges_from("c1") == []

    def test_edges_between_merges_both_directions(self, graph):
        assert [e.id for e in graph.edges_between("A", "B")] == ["m1", "m2", "m3"]
        assert [e.id for e in graph.edges_between("B", "A")] == ["m3", "m1", "m2"]
        assert graph.edges_between("B", "C") == []

    def test_neighbours_cover_both_directions(self, graph):
        assert [(peer, e.id) for peer, e in graph.neighbours("b1")] == [
            ("a2", "m3"),
            ("a1", "m1"),
        ]

    def test_parallel_edges_stay_distinct(self):
        graph = MappingGraph([make_mapping("x", A1, B1), make_mapping("y", A1, B1)])
        assert len(graph) == 2
        assert len(graph.edges_between("A", "B")) == 2

    def test_dangling_edges_are_skipped_with_warning(self):
        with pytest.warns(DataIntegrityWarning, match="mapping_dangling_control"):
            graph = MappingGraph(
                [make_mapping("ok", A1, B1), make_mapping("bad", A1, C1)],
                known_control_ids={"a1", "b1"},
            )

        assert [e.id for e in graph.edges] == ["ok"]
        assert graph.framework_ids() == {"A", "B"}
        assert graph.control_ids() == {"a1", "b1"}
