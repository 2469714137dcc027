"""Pairwise and multi-framework comparison.

Pairwise comparison measures, in each direction independently, how many
controls of one framework reach the other framework through outgoing
mappings. The multi-framework matrix classifies each framework pair as
MAPPED / PARTIAL / UNMAPPED from how much of the smaller framework is linked
to the other one, and counts mappings by confidence and type.
"""

from dataclasses import dataclass, field
from itertools import combinations
from typing import Optional

import structlog

from crosswalk.analyzers.compliance_status import ControlStatus
from crosswalk.analyzers.coverage_aggregator import percentage
from crosswalk.analyzers.mapping_graph import (
    MappingGraph,
    confidence_name,
    confidence_weight,
)
from crosswalk.core.exceptions import ValidationError
from crosswalk.models.compliance import (
    ComplianceStatus,
    ConfidenceLevel,
    MappingType,
    OverlapLevel,
)
from crosswalk.schemas.records import ControlRecord, FrameworkRecord, MappingRecord

logger = structlog.get_logger()

DEFAULT_MAPPED_THRESHOLD = 0.8
DEFAULT_PARTIAL_THRESHOLD = 0.3


@dataclass
class MappedControlDetail:
    """A source control that reaches the target framework."""

    source_id: str
    source_code: str
    source_title: str
    target_id: str
    target_code: str
    target_title: str
    confidence: str
    mapping_type: str
    target_count: int = 1
    compliance_status: Optional[ComplianceStatus] = None


@dataclass
class UnmappedControlDetail:
    """A source control with no mapping into the target framework."""

    id: str
    code: str
    title: str
    compliance_status: Optional[ComplianceStatus] = None


@dataclass
class DirectionCoverage:
    """Coverage of one framework by another, in one direction."""

    source_id: str
    source_name: str
    source_short_name: str
    target_id: str
    target_name: str
    target_short_name: str
    total_source_controls: int
    mapped_controls: int
    unmapped_controls: int
    coverage_percentage: int
    mapped_details: list[MappedControlDetail] = field(default_factory=list)
    unmapped_details: list[UnmappedControlDetail] = field(default_factory=list)


@dataclass
class PairwiseComparison:
    """Both directions of a two-framework comparison."""

    source_to_target: DirectionCoverage
    target_to_source: DirectionCoverage


@dataclass
class PairOverlap:
    """Mapping statistics and classification for one framework pair."""

    framework_a: str
    framework_b: str
    framework_a_short_name: str
    framework_b_short_name: str
    total_mappings: int = 0
    high_confidence: int = 0
    medium_confidence: int = 0
    low_confidence: int = 0
    equivalent: int = 0
    partial: int = 0
    related: int = 0
    superset: int = 0
    subset: int = 0
    linked_fraction: float = 0.0
    classification: OverlapLevel = OverlapLevel.UNMAPPED


def validate_framework_count(
    framework_ids: list[str], minimum: int = 2, maximum: int = 5
) -> list[str]:
    """De-duplicate ids (keeping order) and enforce the allowed count."""
    unique = list(dict.fromkeys(fid for fid in framework_ids if fid))
    if not minimum <= len(unique) <= maximum:
        raise ValidationError(
            f"Between {minimum} and {maximum} distinct frameworks are required, "
            f"got {len(unique)}",
            field="framework_ids",
        )
    return unique


def direction_coverage(
    source: FrameworkRecord,
    target: FrameworkRecord,
    source_controls: list[ControlRecord],
    target_controls: list[ControlRecord],
    graph: MappingGraph,
    statuses: Optional[dict[str, ControlStatus]] = None,
    leaf_only: bool = False,
) -> DirectionCoverage:
    """Coverage of ``source`` by ``target`` through outgoing mappings only."""
    effective = source_controls
    if leaf_only:
        leaves = [c for c in source_controls if c.parent_id is not None]
        effective = leaves or source_controls

    targets_by_id = {c.id: c for c in target_controls}
    statuses = statuses or {}

    mapped: list[MappedControlDetail] = []
    unmapped: list[UnmappedControlDetail] = []

    for control in effective:
        status = statuses.get(control.id)
        compliance = status.compliance_status if status else None
        edges = [
            e
            for e in graph.edges_from(control.id)
            if e.target_control_id in targets_by_id
        ]
        if not edges:
            unmapped.append(
                UnmappedControlDetail(
                    id=control.id,
                    code=control.code,
                    title=control.title,
                    compliance_status=compliance,
                )
            )
            continue

        # First edge with the highest weight represents the control
        best = max(edges, key=lambda e: confidence_weight(e.confidence))
        target_control = targets_by_id[best.target_control_id]
        mapped.append(
            MappedControlDetail(
                source_id=control.id,
                source_code=control.code,
                source_title=control.title,
                target_id=target_control.id,
                target_code=target_control.code,
                target_title=target_control.title,
                confidence=confidence_name(best.confidence),
                mapping_type=_value(best.mapping_type),
                target_count=len({e.target_control_id for e in edges}),
                compliance_status=compliance,
            )
        )

    return DirectionCoverage(
        source_id=source.id,
        source_name=source.name,
        source_short_name=source.short_name,
        target_id=target.id,
        target_name=target.name,
        target_short_name=target.short_name,
        total_source_controls=len(effective),
        mapped_controls=len(mapped),
        unmapped_controls=len(unmapped),
        coverage_percentage=percentage(len(mapped), len(effective)),
        mapped_details=mapped,
        unmapped_details=unmapped,
    )


def pairwise(
    source: FrameworkRecord,
    target: FrameworkRecord,
    controls_by_framework: dict[str, list[ControlRecord]],
    graph: MappingGraph,
    statuses: Optional[dict[str, ControlStatus]] = None,
    leaf_only: bool = False,
) -> PairwiseComparison:
    """Compare two frameworks in both directions."""
    source_controls = controls_by_framework.get(source.id, [])
    target_controls = controls_by_framework.get(target.id, [])
    return PairwiseComparison(
        source_to_target=direction_coverage(
            source, target, source_controls, target_controls, graph, statuses, leaf_only
        ),
        target_to_source=direction_coverage(
            target, source, target_controls, source_controls, graph, statuses, leaf_only
        ),
    )


def classify(
    fraction: float,
    mapped_threshold: float = DEFAULT_MAPPED_THRESHOLD,
    partial_threshold: float = DEFAULT_PARTIAL_THRESHOLD,
) -> OverlapLevel:
    if fraction >= mapped_threshold:
        return OverlapLevel.MAPPED
    if fraction >= partial_threshold:
        return OverlapLevel.PARTIAL
    return OverlapLevel.UNMAPPED


def _linked_fraction(
    controls: list[ControlRecord], pair_edges: list[MappingRecord]
) -> float:
    """Share of ``controls`` touching at least one of ``pair_edges``."""
    if not controls:
        return 0.0
    touched = set()
    for edge in pair_edges:
        touched.add(edge.source_control_id)
        touched.add(edge.target_control_id)
    linked = sum(1 for c in controls if c.id in touched)
    return linked / len(controls)


def _count_edges(overlap: PairOverlap, edges: list[MappingRecord]) -> None:
    overlap.total_mappings = len(edges)
    for edge in edges:
        confidence = _value(edge.confidence)
        if confidence == ConfidenceLevel.HIGH.value:
            overlap.high_confidence += 1
        elif confidence == ConfidenceLevel.MEDIUM.value:
            overlap.medium_confidence += 1
        elif confidence == ConfidenceLevel.LOW.value:
            overlap.low_confidence += 1

        mapping_type = _value(edge.mapping_type)
        if mapping_type == MappingType.EQUIVALENT.value:
            overlap.equivalent += 1
        elif mapping_type == MappingType.PARTIAL.value:
            overlap.partial += 1
        elif mapping_type == MappingType.RELATED.value:
            overlap.related += 1
        elif mapping_type == MappingType.SUPERSET.value:
            overlap.superset += 1
        elif mapping_type == MappingType.SUBSET.value:
            overlap.subset += 1


def overlap_statistics(
    frameworks: list[FrameworkRecord],
    controls_by_framework: dict[str, list[ControlRecord]],
    graph: MappingGraph,
    mapped_threshold: float = DEFAULT_MAPPED_THRESHOLD,
    partial_threshold: float = DEFAULT_PARTIAL_THRESHOLD,
) -> list[PairOverlap]:
    """Statistics for every unordered framework pair, most mappings first."""
    overlaps: list[PairOverlap] = []
    for fw_a, fw_b in combinations(frameworks, 2):
        edges = graph.edges_between(fw_a.id, fw_b.id)
        controls_a = controls_by_framework.get(fw_a.id, [])
        controls_b = controls_by_framework.get(fw_b.id, [])

        overlap = PairOverlap(
            framework_a=fw_a.id,
            framework_b=fw_b.id,
            framework_a_short_name=fw_a.short_name,
            framework_b_short_name=fw_b.short_name,
        )
        _count_edges(overlap, edges)

        smaller = controls_a if len(controls_a) <= len(controls_b) else controls_b
        fraction = _linked_fraction(smaller, edges)
        overlap.linked_fraction = round(fraction, 4)
        overlap.classification = classify(fraction, mapped_threshold, partial_threshold)
        overlaps.append(overlap)

    overlaps.sort(key=lambda o: o.total_mappings, reverse=True)
    return overlaps


def overlap_matrix(overlaps: list[PairOverlap]) -> dict[str, dict[str, OverlapLevel]]:
    """Symmetric matrix keyed by ordered pair; the diagonal is left out."""
    matrix: dict[str, dict[str, OverlapLevel]] = {}
    for overlap in overlaps:
        matrix.setdefault(overlap.framework_a, {})[overlap.framework_b] = (
            overlap.classification
        )
        matrix.setdefault(overlap.framework_b, {})[overlap.framework_a] = (
            overlap.classification
        )
    return matrix


def _value(item) -> str:
    return getattr(item, "value", item)
