"""Browsable mapping listing.

Resolves each mapping's endpoints to control and framework summaries, then
filters and pages the result with the strongest confidence first.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from crosswalk.analyzers.coverage_aggregator import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from crosswalk.analyzers.mapping_graph import MappingGraph, confidence_weight
from crosswalk.core.exceptions import ValidationError
from crosswalk.models.compliance import ConfidenceLevel, MappingType
from crosswalk.schemas.records import ControlRecord, FrameworkRecord, MappingRecord


@dataclass
class ControlRef:
    """One end of a listed mapping."""

    id: str
    code: str
    title: str
    framework_id: str
    framework_name: str
    framework_short_name: str


@dataclass
class MappingListing:
    id: str
    source: ControlRef
    target: ControlRef
    confidence: Union[ConfidenceLevel, str]
    mapping_type: Union[MappingType, str]
    rationale: Optional[str] = None


@dataclass
class MappingPage:
    items: list[MappingListing]
    total: int
    page: int
    page_size: int
    total_pages: int


@dataclass
class MappingQuery:
    """Filters and paging for mapping listings.

    ``framework_ids`` matches a mapping when either endpoint belongs to one
    of the frameworks.
    """

    framework_ids: Optional[list[str]] = None
    confidence: Optional[ConfidenceLevel] = None
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def validate(self, max_page_size: int = MAX_PAGE_SIZE) -> None:
        if self.page < 1:
            raise ValidationError("page must be >= 1", field="page")
        if not 1 <= self.page_size <= max_page_size:
            raise ValidationError(
                f"page_size must be between 1 and {max_page_size}", field="page_size"
            )

    def matches(self, mapping: MappingRecord) -> bool:
        if self.framework_ids and not (
            mapping.source_framework_id in self.framework_ids
            or mapping.target_framework_id in self.framework_ids
        ):
            return False
        if self.confidence is not None and mapping.confidence != self.confidence:
            return False
        return True


def _control_ref(
    control: ControlRecord, frameworks_by_id: dict[str, FrameworkRecord]
) -> ControlRef:
    framework = frameworks_by_id.get(control.framework_id)
    return ControlRef(
        id=control.id,
        code=control.code,
        title=control.title,
        framework_id=control.framework_id,
        framework_name=framework.name if framework else control.framework_id,
        framework_short_name=framework.short_name if framework else control.framework_id,
    )


def list_mapping_page(
    graph: MappingGraph,
    controls: Iterable[ControlRecord],
    frameworks: Iterable[FrameworkRecord],
    query: MappingQuery,
    max_page_size: int = MAX_PAGE_SIZE,
) -> MappingPage:
    """Filter and page the graph's edges, strongest confidence first.

    Edges are expected oldest first; within one confidence level the newest
    mapping comes first.
    """
    query.validate(max_page_size)

    controls_by_id = {c.id: c for c in controls}
    frameworks_by_id = {f.id: f for f in frameworks}

    matched = [
        e
        for e in reversed(graph.edges)
        if query.matches(e)
        and e.source_control_id in controls_by_id
        and e.target_control_id in controls_by_id
    ]
    matched.sort(key=lambda e: confidence_weight(e.confidence), reverse=True)

    total = len(matched)
    start = (query.page - 1) * query.page_size
    items = [
        MappingListing(
            id=edge.id,
            source=_control_ref(controls_by_id[edge.source_control_id], frameworks_by_id),
            target=_control_ref(controls_by_id[edge.target_control_id], frameworks_by_id),
            confidence=edge.confidence,
            mapping_type=edge.mapping_type,
            rationale=edge.rationale,
        )
        for edge in matched[start : start + query.page_size]
    ]
    return MappingPage(
        items=items,
        total=total,
        page=query.page,
        page_size=query.page_size,
        total_pages=math.ceil(total / query.page_size) if total else 0,
    )
