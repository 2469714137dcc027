"""Visualization projector.

Turns mappings and compliance chains into a generic nodes/edges structure
that any graph front end (Sankey, force layout, flow diagram) can render.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from crosswalk.analyzers.compliance_status import ControlStatus
from crosswalk.analyzers.mapping_graph import confidence_name, confidence_weight
from crosswalk.schemas.records import (
    ChainRecord,
    ControlRecord,
    EvidenceRecord,
    FrameworkRecord,
    MappingRecord,
)

REQUIREMENT_LABEL_LENGTH = 50


@dataclass
class GraphNode:
    id: str
    name: str
    type: str  # "framework", "control", "requirement", "evidence"
    framework_id: Optional[str] = None
    status: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class GraphEdge:
    source: str
    target: str
    value: int = 1
    label: Optional[str] = None
    id: Optional[str] = None


@dataclass
class GraphProjection:
    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


def framework_node_id(framework_id: str) -> str:
    return f"fw-{framework_id}"


def control_node_id(control_id: str) -> str:
    return f"ctrl-{control_id}"


class _GraphBuilder:
    """Collects nodes once by id and edges in insertion order."""

    def __init__(self):
        self.nodes: dict[str, GraphNode] = {}
        self.edges: list[GraphEdge] = []

    def add_node(self, node: GraphNode) -> GraphNode:
        return self.nodes.setdefault(node.id, node)

    def build(self, metadata: Optional[dict] = None) -> GraphProjection:
        projection = GraphProjection(
            nodes=list(self.nodes.values()),
            edges=self.edges,
            metadata=dict(metadata or {}),
        )
        projection.metadata.setdefault("total_nodes", len(projection.nodes))
        projection.metadata.setdefault("total_edges", len(projection.edges))
        return projection


def _add_control(
    builder: _GraphBuilder,
    control_id: str,
    controls_by_id: dict[str, ControlRecord],
    statuses: dict[str, ControlStatus],
) -> GraphNode:
    control = controls_by_id.get(control_id)
    status = statuses.get(control_id)
    return builder.add_node(
        GraphNode(
            id=control_node_id(control_id),
            name=control.code if control else control_id,
            type="control",
            framework_id=control.framework_id if control else None,
            status=status.compliance_status.value if status else None,
        )
    )


def _add_mappings(
    builder: _GraphBuilder,
    frameworks: list[FrameworkRecord],
    mappings: list[MappingRecord],
    controls_by_id: dict[str, ControlRecord],
    statuses: dict[str, ControlStatus],
) -> None:
    for framework in frameworks:
        builder.add_node(
            GraphNode(
                id=framework_node_id(framework.id),
                name=framework.short_name,
                type="framework",
                framework_id=framework.id,
            )
        )

    for mapping in mappings:
        source = _add_control(builder, mapping.source_control_id, controls_by_id, statuses)
        target = _add_control(builder, mapping.target_control_id, controls_by_id, statuses)
        builder.edges.append(
            GraphEdge(
                id=f"map-{mapping.id}",
                source=source.id,
                target=target.id,
                value=confidence_weight(mapping.confidence),
                label=confidence_name(mapping.confidence),
            )
        )


def project_mappings(
    frameworks: list[FrameworkRecord],
    mappings: list[MappingRecord],
    controls: list[ControlRecord],
    statuses: Optional[dict[str, ControlStatus]] = None,
) -> GraphProjection:
    """Framework nodes, control nodes and one weighted edge per mapping."""
    builder = _GraphBuilder()
    _add_mappings(
        builder, frameworks, mappings, {c.id: c for c in controls}, statuses or {}
    )
    return builder.build()


def project_with_evidence(
    frameworks: list[FrameworkRecord],
    mappings: list[MappingRecord],
    controls: list[ControlRecord],
    chains: list[ChainRecord],
    evidence_by_chain: dict[str, list[EvidenceRecord]],
    statuses: Optional[dict[str, ControlStatus]] = None,
    max_chains: int = 50,
    framework_id: Optional[str] = None,
) -> GraphProjection:
    """Mapping graph with chain evidence folded into the control nodes.

    At most ``max_chains`` chains are folded in, newest first; evidence
    filenames are attached to the chained control's ``metadata["evidence"]``.
    """
    statuses = statuses or {}
    controls_by_id = {c.id: c for c in controls}
    builder = _GraphBuilder()
    _add_mappings(builder, frameworks, mappings, controls_by_id, statuses)

    chained = [c for c in chains if c.control_id]
    chained.sort(key=lambda c: c.created_at, reverse=True)
    selected = chained[:max_chains]

    for chain in selected:
        node = _add_control(builder, chain.control_id, controls_by_id, statuses)
        node.metadata.setdefault("chains", []).append(
            {"id": chain.id, "status": chain.status.value}
        )
        filenames = node.metadata.setdefault("evidence", [])
        for evidence in evidence_by_chain.get(chain.id, []):
            if evidence.filename not in filenames:
                filenames.append(evidence.filename)

    return builder.build(
        {
            "framework_id": framework_id,
            "total_chains": len(selected),
            "truncated": len(chained) > len(selected),
        }
    )


def _requirement_label(requirement: str) -> str:
    if len(requirement) > REQUIREMENT_LABEL_LENGTH:
        return requirement[:REQUIREMENT_LABEL_LENGTH] + "..."
    return requirement


def project_chain_flow(
    chains: list[ChainRecord],
    controls: list[ControlRecord],
    evidence_by_chain: dict[str, list[EvidenceRecord]],
    framework_id: Optional[str] = None,
) -> GraphProjection:
    """Requirement -> control -> evidence flow for a set of chains."""
    controls_by_id = {c.id: c for c in controls}
    builder = _GraphBuilder()

    for chain in chains:
        requirement = builder.add_node(
            GraphNode(
                id=f"req-{chain.id}",
                name=_requirement_label(chain.requirement),
                type="requirement",
            )
        )
        if not chain.control_id:
            continue

        control = controls_by_id.get(chain.control_id)
        control_node = builder.add_node(
            GraphNode(
                id=control_node_id(chain.control_id),
                name=control.code if control else "Unknown",
                type="control",
                framework_id=control.framework_id if control else None,
                status=chain.status.value,
            )
        )
        builder.edges.append(
            GraphEdge(
                id=f"e-req-ctrl-{chain.id}",
                source=requirement.id,
                target=control_node.id,
            )
        )

        for evidence in evidence_by_chain.get(chain.id, []):
            evidence_node = builder.add_node(
                GraphNode(
                    id=f"ev-{evidence.id}",
                    name=evidence.filename or evidence.original_name or "Evidence",
                    type="evidence",
                )
            )
            builder.edges.append(
                GraphEdge(
                    id=f"e-ctrl-ev-{chain.id}-{evidence.id}",
                    source=control_node.id,
                    target=evidence_node.id,
                )
            )

    return builder.build({"framework_id": framework_id, "total_chains": len(chains)})
