"""Unit tests for the mapping listing."""

import pytest

from crosswalk.analyzers.mapping_catalog import MappingQuery, list_mapping_page
from crosswalk.analyzers.mapping_graph import MappingGraph
from crosswalk.core.exceptions import ValidationError
from crosswalk.models.compliance import ConfidenceLevel

from factories import make_control, make_framework, make_mapping

FW_A = make_framework("a", "FW-A")
FW_B = make_framework("b", "FW-B")
A1 = make_control("a1", "a", "A-1")
A2 = make_control("a2", "a", "A-2")
B1 = make_control("b1", "b", "B-1")
CONTROLS = [A1, A2, B1]


def _page(mappings, query=None, controls=CONTROLS, frameworks=(FW_A, FW_B)):
    return list_mapping_page(
        MappingGraph(mappings), controls, frameworks, query or MappingQuery()
    )


class TestMappingPage:
    def test_strongest_confidence_first_then_newest(self):
        mappings = [
            make_mapping("old-high", A1, B1),
            make_mapping("medium", A2, B1, confidence=ConfidenceLevel.MEDIUM),
            make_mapping("new-high", A2, B1),
        ]

        page = _page(mappings)

        assert [m.id for m in page.items] == ["new-high", "old-high", "medium"]

    def test_endpoints_carry_framework_names(self):
        [listing] = _page([make_mapping("m", A1, B1)]).items

        assert (listing.source.code, listing.source.framework_short_name) == (
            "A-1",
            "FW-A",
        )
        assert listing.target.framework_name == "FW-B Framework"

    def test_framework_filter_matches_either_end(self):
        mappings = [make_mapping("ab", A1, B1), make_mapping("aa", A1, A2)]

        page = _page(mappings, MappingQuery(framework_ids=["b"]))

        assert [m.id for m in page.items] == ["ab"]

    def test_confidence_filter(self):
        mappings = [
            make_mapping("high", A1, B1),
            make_mapping("low", A2, B1, confidence=ConfidenceLevel.LOW),
        ]

        page = _page(mappings, MappingQuery(confidence=ConfidenceLevel.LOW))

        assert [m.id for m in page.items] == ["low"]

    def test_paging(self):
        mappings = [make_mapping(f"m{i}", A1, B1) for i in range(5)]

        page = _page(mappings, MappingQuery(page=3, page_size=2))

        assert [m.id for m in page.items] == ["m0"]
        assert (page.total, page.total_pages) == (5, 3)

    def test_mappings_to_unloaded_controls_are_left_out(self):
        page = _page([make_mapping("m", A1, B1)], controls=[A1])

        assert page.items == []
        assert page.total_pages == 0

    def test_missing_framework_falls_back_to_id(self):
        [listing] = _page([make_mapping("m", A1, B1)], frameworks=[FW_A]).items

        assert listing.target.framework_short_name == "b"

    @pytest.mark.parametrize("page,page_size", [(0, 20), (1, 0), (1, 101)])
    def test_rejects_bad_paging(self, page, page_size):
        with pytest.raises(ValidationError):
            _page([], MappingQuery(page=page, page_size=page_size))
