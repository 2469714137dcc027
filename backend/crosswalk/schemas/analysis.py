"""Response schemas for the analysis endpoints."""

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict

from crosswalk.models.compliance import (
    ChainStatus,
    ComplianceStatus,
    ConfidenceLevel,
    MappingType,
    OverlapLevel,
)


class ControlNodeResponse(BaseModel):
    """A control and its children."""

    control: "ControlSummary"
    children: list["ControlNodeResponse"] = []

    model_config = ConfigDict(from_attributes=True)


class ControlSummary(BaseModel):
    id: str
    framework_id: str
    code: str
    title: str
    parent_id: Optional[str] = None
    sort_order: int = 0

    model_config = ConfigDict(from_attributes=True)


class CoverageStatResponse(BaseModel):
    """Coverage of one framework."""

    framework_id: Optional[str] = None
    framework_name: str
    short_name: str
    total: int
    complete: int
    partial: int
    missing: int
    non_compliant: int
    not_assessed: int
    coverage_percentage: int

    model_config = ConfigDict(from_attributes=True)


class FrameworkCoverageResponse(BaseModel):
    frameworks: list[CoverageStatResponse]
    overall: CoverageStatResponse


class MappedControlResponse(BaseModel):
    id: str
    source_control_id: str
    target_control_id: str
    source_framework_id: str
    target_framework_id: str
    confidence: Union[ConfidenceLevel, str]
    mapping_type: Union[MappingType, str]
    rationale: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class GapRecordResponse(BaseModel):
    """One analysed control."""

    control_id: str
    control_code: str
    control_title: str
    framework_id: str
    framework_name: str
    has_assessment: bool
    has_evidence: bool
    compliance_status: ComplianceStatus
    chain_status: Optional[ChainStatus] = None
    status_source: str
    mapped_controls: list[MappedControlResponse] = []


class GapPageResponse(BaseModel):
    items: list[GapRecordResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class ControlStatusResponse(BaseModel):
    """Status of one control and the signal that decided it."""

    control_id: str
    framework_id: str
    compliance_status: ComplianceStatus
    status_source: str
    has_assessment: bool
    has_evidence: bool
    chain_status: Optional[ChainStatus] = None
    inferred_from: list[str] = []


class MappedControlDetailResponse(BaseModel):
    source_id: str
    source_code: str
    source_title: str
    target_id: str
    target_code: str
    target_title: str
    confidence: str
    mapping_type: str
    target_count: int
    compliance_status: Optional[ComplianceStatus] = None


class UnmappedControlDetailResponse(BaseModel):
    id: str
    code: str
    title: str
    compliance_status: Optional[ComplianceStatus] = None


class DirectionCoverageResponse(BaseModel):
    """Coverage of the source framework by the target framework."""

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
    mapped_details: list[MappedControlDetailResponse]
    unmapped_details: list[UnmappedControlDetailResponse]


class PairwiseComparisonResponse(BaseModel):
    source_to_target: DirectionCoverageResponse
    target_to_source: DirectionCoverageResponse


class PairOverlapResponse(BaseModel):
    framework_a: str
    framework_b: str
    framework_a_short_name: str
    framework_b_short_name: str
    total_mappings: int
    high_confidence: int
    medium_confidence: int
    low_confidence: int
    equivalent: int
    partial: int
    related: int
    superset: int
    subset: int
    linked_fraction: float
    classification: OverlapLevel


class MultiFrameworkComparisonResponse(BaseModel):
    """Coverage, open gaps and overlap matrix across 2-5 frameworks."""

    frameworks: list[CoverageStatResponse]
    overall: CoverageStatResponse
    gaps: list[GapRecordResponse]
    matrix: dict[str, dict[str, OverlapLevel]]
    overlaps: list[PairOverlapResponse]
    generated_at: datetime


class GraphNodeResponse(BaseModel):
    id: str
    name: str
    type: str
    framework_id: Optional[str] = None
    status: Optional[str] = None
    metadata: dict[str, Any] = {}


class GraphEdgeResponse(BaseModel):
    source: str
    target: str
    value: int = 1
    label: Optional[str] = None
    id: Optional[str] = None


class GraphProjectionResponse(BaseModel):
    """Nodes and edges for graph rendering."""

    nodes: list[GraphNodeResponse]
    edges: list[GraphEdgeResponse]
    metadata: dict[str, Any] = {}


class MappingEndpointResponse(BaseModel):
    """A mapped control with its framework."""

    id: str
    code: str
    title: str
    framework_id: str
    framework_name: str
    framework_short_name: str


class MappingListingResponse(BaseModel):
    id: str
    source: MappingEndpointResponse
    target: MappingEndpointResponse
    confidence: Union[ConfidenceLevel, str]
    mapping_type: Union[MappingType, str]
    rationale: Optional[str] = None


class MappingPageResponse(BaseModel):
    items: list[MappingListingResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


ControlNodeResponse.model_rebuild()
