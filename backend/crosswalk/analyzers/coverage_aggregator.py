"""Coverage and gap aggregation.

Rolls per-control statuses up into per-framework coverage statistics and
into a flat, searchable, sortable list of gap records.
"""

import math
from dataclasses import dataclass, field
from typing import Iterable, Optional

import structlog

from crosswalk.analyzers.compliance_status import ControlStatus
from crosswalk.analyzers.mapping_graph import MappingGraph
from crosswalk.core.exceptions import ValidationError
from crosswalk.models.compliance import ChainStatus, ComplianceStatus
from crosswalk.schemas.records import ControlRecord, FrameworkRecord, MappingRecord

logger = structlog.get_logger()

SORT_FIELDS = ("control_code", "framework_name", "compliance_status")
SORT_DIRECTIONS = ("asc", "desc")
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def percentage(part: int, whole: int) -> int:
    """Whole-number percentage rounded half up; 0 when ``whole`` is 0."""
    if whole <= 0:
        return 0
    return int(math.floor(part * 100 / whole + 0.5))


@dataclass
class CoverageStat:
    """Coverage of one framework (or of several, for the overall row)."""

    framework_id: Optional[str]
    framework_name: str
    short_name: str
    total: int = 0
    complete: int = 0
    partial: int = 0
    missing: int = 0  # non_compliant + not_assessed
    non_compliant: int = 0
    not_assessed: int = 0
    coverage_percentage: int = 0


@dataclass
class FrameworkCoverage:
    """Per-framework coverage plus the summed overall row."""

    frameworks: list[CoverageStat]
    overall: CoverageStat


@dataclass
class GapRecord:
    """One analysed (framework, control) pair."""

    control_id: str
    control_code: str
    control_title: str
    framework_id: str
    framework_name: str
    has_assessment: bool
    has_evidence: bool
    compliance_status: ComplianceStatus
    chain_status: Optional[ChainStatus] = None
    status_source: str = "none"
    mapped_controls: list[MappingRecord] = field(default_factory=list)


@dataclass
class GapQuery:
    """Filter, search, sort and paging options for gap listings."""

    framework_id: Optional[str] = None
    control_id: Optional[str] = None
    status: Optional[ComplianceStatus] = None
    chain_status: Optional[ChainStatus] = None
    search: Optional[str] = None
    include_compliant: bool = False
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    sort_field: str = "control_code"
    sort_dir: str = "asc"

    def validate(self, max_page_size: int = MAX_PAGE_SIZE) -> None:
        if self.page < 1:
            raise ValidationError("page must be >= 1", field="page")
        if not 1 <= self.page_size <= max_page_size:
            raise ValidationError(
                f"page_size must be between 1 and {max_page_size}", field="page_size"
            )
        if self.sort_field not in SORT_FIELDS:
            raise ValidationError(
                f"sort_field must be one of {', '.join(SORT_FIELDS)}",
                field="sort_field",
            )
        if self.sort_dir not in SORT_DIRECTIONS:
            raise ValidationError("sort_dir must be 'asc' or 'desc'", field="sort_dir")


@dataclass
class GapPage:
    """One page of gap records plus the unpaged total."""

    items: list[GapRecord]
    total: int
    page: int
    page_size: int
    total_pages: int


def coverage_stat(
    framework: FrameworkRecord, statuses: Iterable[ControlStatus]
) -> CoverageStat:
    """Coverage statistics for one framework."""
    stat = CoverageStat(
        framework_id=framework.id,
        framework_name=framework.name,
        short_name=framework.short_name,
    )
    for status in statuses:
        stat.total += 1
        if status.compliance_status == ComplianceStatus.COMPLIANT:
            stat.complete += 1
        elif status.compliance_status == ComplianceStatus.PARTIAL:
            stat.partial += 1
        elif status.compliance_status == ComplianceStatus.NON_COMPLIANT:
            stat.non_compliant += 1
        else:
            stat.not_assessed += 1

    stat.missing = stat.non_compliant + stat.not_assessed
    stat.coverage_percentage = percentage(stat.complete, stat.total)
    return stat


def overall_coverage(stats: Iterable[CoverageStat]) -> CoverageStat:
    """Sum framework counts (not an average of percentages)."""
    overall = CoverageStat(framework_id=None, framework_name="Overall", short_name="ALL")
    for stat in stats:
        overall.total += stat.total
        overall.complete += stat.complete
        overall.partial += stat.partial
        overall.missing += stat.missing
        overall.non_compliant += stat.non_compliant
        overall.not_assessed += stat.not_assessed

    overall.coverage_percentage = percentage(overall.complete, overall.total)
    return overall


def framework_coverage(
    frameworks: list[FrameworkRecord],
    controls_by_framework: dict[str, list[ControlRecord]],
    statuses: dict[str, ControlStatus],
) -> FrameworkCoverage:
    """Coverage for each framework plus the overall aggregate."""
    stats = []
    for framework in frameworks:
        controls = controls_by_framework.get(framework.id, [])
        stats.append(
            coverage_stat(framework, (statuses[c.id] for c in controls if c.id in statuses))
        )
    return FrameworkCoverage(frameworks=stats, overall=overall_coverage(stats))


def build_gap_records(
    frameworks: list[FrameworkRecord],
    controls_by_framework: dict[str, list[ControlRecord]],
    statuses: dict[str, ControlStatus],
    graph: MappingGraph,
) -> list[GapRecord]:
    """One record per analysed control, in framework then control order."""
    records: list[GapRecord] = []
    for framework in frameworks:
        for control in controls_by_framework.get(framework.id, []):
            status = statuses.get(control.id)
            if status is None:
                continue
            records.append(
                GapRecord(
                    control_id=control.id,
                    control_code=control.code,
                    control_title=control.title,
                    framework_id=framework.id,
                    framework_name=framework.name,
                    has_assessment=status.has_assessment,
                    has_evidence=status.has_evidence,
                    compliance_status=status.compliance_status,
                    chain_status=status.chain_status,
                    status_source=status.status_source,
                    mapped_controls=graph.edges_from(control.id),
                )
            )
    return records


def filter_gaps(records: Iterable[GapRecord], query: GapQuery) -> list[GapRecord]:
    """Apply the query's filters and search term."""
    needle = query.search.strip().lower() if query.search else ""
    matched = []
    for record in records:
        if (
            not query.include_compliant
            and query.status is None
            and record.compliance_status == ComplianceStatus.COMPLIANT
        ):
            continue
        if query.framework_id and record.framework_id != query.framework_id:
            continue
        if query.control_id and record.control_id != query.control_id:
            continue
        if query.status and record.compliance_status != query.status:
            continue
        if query.chain_status and record.chain_status != query.chain_status:
            continue
        if needle and not (
            needle in record.control_code.lower()
            or needle in record.control_title.lower()
            or needle in record.framework_name.lower()
        ):
            continue
        matched.append(record)
    return matched


def sort_gaps(
    records: list[GapRecord], sort_field: str = "control_code", sort_dir: str = "asc"
) -> list[GapRecord]:
    """Sort records; ties always fall back to ascending control code."""
    # Python's sort is stable: order by the tie-break first, then the field
    ordered = sorted(records, key=lambda r: r.control_code)
    if sort_field == "control_code":
        return sorted(ordered, key=lambda r: r.control_code, reverse=sort_dir == "desc")
    if sort_field == "framework_name":
        key = lambda r: r.framework_name.lower()  # noqa: E731
    else:
        key = lambda r: r.compliance_status.rank  # noqa: E731
    return sorted(ordered, key=key, reverse=sort_dir == "desc")


def query_gaps(
    records: Iterable[GapRecord],
    query: GapQuery,
    max_page_size: int = MAX_PAGE_SIZE,
) -> GapPage:
    """Filter, sort and page gap records."""
    query.validate(max_page_size)

    matched = sort_gaps(filter_gaps(records, query), query.sort_field, query.sort_dir)
    total = len(matched)
    start = (query.page - 1) * query.page_size
    return GapPage(
        items=matched[start : start + query.page_size],
        total=total,
        page=query.page,
        page_size=query.page_size,
        total_pages=math.ceil(total / query.page_size) if total else 0,
    )
