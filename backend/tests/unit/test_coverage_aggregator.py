"""Unit tests for coverage statistics and gap listing."""

import pytest

from crosswalk.analyzers.compliance_status import ControlStatus
from crosswalk.analyzers.coverage_aggregator import (
    GapQuery,
    build_gap_records,
    coverage_stat,
    framework_coverage,
    overall_coverage,
    percentage,
    query_gaps,
    sort_gaps,
)
from crosswalk.analyzers.mapping_graph import MappingGraph
from crosswalk.core.exceptions import ValidationError
from crosswalk.models.compliance import ChainStatus, ComplianceStatus

from factories import make_control, make_framework


def _status(control, status, chain_status=None):
    return ControlStatus(
        control_id=control.id,
        framework_id=control.framework_id,
        compliance_status=status,
        status_source="chain" if chain_status else "none",
        chain_status=chain_status,
    )


class TestPercentage:
    @pytest.mark.parametrize(
        "part,whole,expected",
        [(0, 0, 0), (1, 3, 33), (2, 3, 67), (1, 2, 50), (1, 8, 13), (5, 5, 100)],
    )
    def test_rounds_half_up(self, part, whole, expected):
        assert percentage(part, whole) == expected


class TestCoverage:
    """Per-framework and overall statistics."""

    def test_empty_framework_has_zero_coverage(self):
        stat = coverage_stat(make_framework("empty"), [])

        assert stat.total == 0
        assert stat.coverage_percentage == 0

    def test_counts_each_status(self):
        fw = make_framework("fw")
        controls = [make_control(f"c{i}", "fw") for i in range(4)]
        statuses = [
            _status(controls[0], ComplianceStatus.COMPLIANT),
            _status(controls[1], ComplianceStatus.PARTIAL),
            _status(controls[2], ComplianceStatus.NON_COMPLIANT),
            _status(controls[3], ComplianceStatus.NOT_ASSESSED),
        ]

        stat = coverage_stat(fw, statuses)

        assert (stat.total, stat.complete, stat.partial) == (4, 1, 1)
        assert (stat.non_compliant, stat.not_assessed, stat.missing) == (1, 1, 2)
        assert stat.coverage_percentage == 25

    def test_overall_sums_counts_instead_of_averaging(self):
        small, large = make_framework("small"), make_framework("large")
        small_controls = [make_control("s0", "small")]
        large_controls = [make_control(f"l{i}", "large") for i in range(9)]
        statuses = {
            "s0": _status(small_controls[0], ComplianceStatus.COMPLIANT),
            **{
                c.id: _status(c, ComplianceStatus.NOT_ASSESSED)
                for c in large_controls
            },
        }

        coverage = framework_coverage(
            [small, large],
            {"small": small_controls, "large": large_controls},
            statuses,
        )

        assert [s.coverage_percentage for s in coverage.frameworks] == [100, 0]
        # Averaging would give 50
        assert coverage.overall.total == 10
        assert coverage.overall.coverage_percentage == 10
        assert coverage.overall.short_name == "ALL"

    def test_overall_of_nothing_is_zero(self):
        assert overall_coverage([]).coverage_percentage == 0


class TestGapQuery:
    """Filtering, search, sort and paging."""

    @pytest.fixture
    def records(self):
        fw_a, fw_b = make_framework("a", "Alpha"), make_framework("b", "Beta")
        controls = {
            "a": [
                make_control("a1", "a", "A-1", title="Access control"),
                make_control("a2", "a", "A-2", title="Backups"),
                make_control("a3", "a", "A-3", title="Encryption"),
            ],
            "b": [
                make_control("b1", "b", "B-1", title="Logging"),
                make_control("b2", "b", "B-2", title="Access review"),
            ],
        }
        statuses = {
            "a1": _status(controls["a"][0], ComplianceStatus.COMPLIANT, ChainStatus.COMPLETE),
            "a2": _status(controls["a"][1], ComplianceStatus.PARTIAL, ChainStatus.PARTIAL),
            "a3": _status(controls["a"][2], ComplianceStatus.NOT_ASSESSED),
            "b1": _status(controls["b"][0], ComplianceStatus.NON_COMPLIANT, ChainStatus.MISSING),
            "b2": _status(controls["b"][1], ComplianceStatus.PARTIAL),
        }
        return build_gap_records([fw_a, fw_b], controls, statuses, MappingGraph([]))

    def _codes(self, page):
        return [r.control_code for r in page.items]

    def test_compliant_controls_are_not_gaps_by_default(self, records):
        page = query_gaps(records, GapQuery())

        assert self._codes(page) == ["A-2", "A-3", "B-1", "B-2"]
        assert page.total == 4

    def test_include_compliant(self, records):
        page = query_gaps(records, GapQuery(include_compliant=True))
        assert page.total == 5

    def test_status_filter_can_select_compliant(self, records):
        page = query_gaps(records, GapQuery(status=ComplianceStatus.COMPLIANT))
        assert self._codes(page) == ["A-1"]

    def test_framework_control_and_chain_status_filters(self, records):
        assert self._codes(query_gaps(records, GapQuery(framework_id="b"))) == ["B-1", "B-2"]
        assert self._codes(query_gaps(records, GapQuery(control_id="a3"))) == ["A-3"]
        assert self._codes(
            query_gaps(records, GapQuery(chain_status=ChainStatus.MISSING))
        ) == ["B-1"]

    def test_search_is_case_insensitive_over_code_title_and_framework(self, records):
        assert self._codes(query_gaps(records, GapQuery(search="ACCESS"))) == ["B-2"]
        assert self._codes(query_gaps(records, GapQuery(search="beta"))) == ["B-1", "B-2"]
        assert self._codes(query_gaps(records, GapQuery(search="a-3"))) == ["A-3"]

    def test_sort_by_status_rank_with_code_tie_break(self, records):
        page = query_gaps(
            records, GapQuery(sort_field="compliance_status", include_compliant=True)
        )
        assert self._codes(page) == ["A-3", "B-1", "A-2", "B-2", "A-1"]

        page = query_gaps(
            records,
            GapQuery(sort_field="compliance_status", sort_dir="desc", include_compliant=True),
        )
        # Descending rank, ties still ascending by code
        assert self._codes(page) == ["A-1", "A-2", "B-2", "B-1", "A-3"]

    def test_sort_by_framework_name(self, records):
        page = query_gaps(records, GapQuery(sort_field="framework_name", sort_dir="desc"))
        assert self._codes(page) == ["B-1", "B-2", "A-2", "A-3"]

    def test_sort_by_code_descending(self, records):
        assert self._codes(sort_gaps(records, "control_code", "desc"))[:2] == ["B-2", "B-1"]

    def test_paging(self, records):
        page = query_gaps(records, GapQuery(page=2, page_size=3))

        assert self._codes(page) == ["B-2"]
        assert page.total == 4
        assert page.total_pages == 2

    @pytest.mark.parametrize(
        "query",
        [
            GapQuery(page=0),
            GapQuery(page_size=0),
            GapQuery(page_size=101),
            GapQuery(sort_field="title"),
            GapQuery(sort_dir="up"),
        ],
    )
    def test_invalid_queries_are_rejected(self, records, query):
        with pytest.raises(ValidationError):
            query_gaps(records, query)
