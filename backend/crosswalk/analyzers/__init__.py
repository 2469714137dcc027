"""Cross-framework analysis module."""

from crosswalk.analyzers.compliance_status import (
    ComplianceStatusCalculator,
    ControlStatus,
)
from crosswalk.analyzers.control_tree import (
    ControlNode,
    ControlTreeBuilder,
    build_control_tree,
    flatten_tree,
)
from crosswalk.analyzers.coverage_aggregator import (
    CoverageStat,
    FrameworkCoverage,
    GapPage,
    GapQuery,
    GapRecord,
)
from crosswalk.analyzers.framework_matrix import (
    DirectionCoverage,
    PairOverlap,
    PairwiseComparison,
)
from crosswalk.analyzers.graph_projector import GraphEdge, GraphNode, GraphProjection
from crosswalk.analyzers.mapping_graph import MappingGraph, confidence_weight

__all__ = [
    "ComplianceStatusCalculator",
    "ControlNode",
    "ControlStatus",
    "ControlTreeBuilder",
    "CoverageStat",
    "DirectionCoverage",
    "FrameworkCoverage",
    "GapPage",
    "GapQuery",
    "GapRecord",
    "GraphEdge",
    "GraphNode",
    "GraphProjection",
    "MappingGraph",
    "PairOverlap",
    "PairwiseComparison",
    "build_control_tree",
    "confidence_weight",
    "flatten_tree",
]
