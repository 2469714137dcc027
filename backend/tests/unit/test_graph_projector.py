"""Unit tests for the visualization projector."""

from crosswalk.analyzers.graph_projector import (
    project_chain_flow,
    project_mappings,
    project_with_evidence,
)
from crosswalk.models.compliance import ConfidenceLevel
from crosswalk.schemas.records import EvidenceRecord

from factories import (
    ISO,
    ISO_A5,
    ISO_A6,
    NIS2,
    NIS2_C4,
    NIS2_C5,
    ORG_ID,
    make_chain,
    make_mapping,
)


def _evidence(eid, filename):
    return EvidenceRecord(id=eid, organization_id=ORG_ID, filename=filename)


class TestProjectMappings:
    def test_nodes_are_deduplicated_and_edges_weighted(self):
        mappings = [
            make_mapping("m1", NIS2_C4, ISO_A5),
            make_mapping("m2", NIS2_C5, ISO_A5, confidence=ConfidenceLevel.MEDIUM),
            make_mapping("m3", NIS2_C5, ISO_A6, confidence="UNRATED"),
        ]

        graph = project_mappings([NIS2, ISO], mappings, [NIS2_C4, NIS2_C5, ISO_A5, ISO_A6])

        ids = [n.id for n in graph.nodes]
        assert len(ids) == len(set(ids))
        assert {n.id for n in graph.nodes if n.type == "framework"} == {
            "fw-nis2",
            "fw-iso27001",
        }
        assert len([n for n in graph.nodes if n.type == "control"]) == 4
        assert [(e.value, e.label) for e in graph.edges] == [
            (3, "HIGH"),
            (2, "MEDIUM"),
            (1, "UNRATED"),
        ]
        assert graph.edges[0].source == "ctrl-nis2-c4"
        assert graph.edges[0].target == "ctrl-iso-a5"
        assert graph.metadata["total_edges"] == 3

    def test_control_nodes_carry_code_and_framework(self):
        graph = project_mappings([NIS2, ISO], [make_mapping("m", NIS2_C4, ISO_A5)], [NIS2_C4, ISO_A5])

        node = next(n for n in graph.nodes if n.id == "ctrl-iso-a5")
        assert node.name == "A.5"
        assert node.framework_id == "iso27001"


class TestProjectWithEvidence:
    def test_evidence_filenames_attach_to_control_nodes(self):
        chains = [make_chain("ch1", ISO_A5.id, evidence_ids=["e1", "e2"])]
        evidence = {"ch1": [_evidence("e1", "policy.pdf"), _evidence("e2", "log.csv")]}

        graph = project_with_evidence(
            [NIS2, ISO],
            [make_mapping("m", NIS2_C4, ISO_A5)],
            [NIS2_C4, ISO_A5],
            chains,
            evidence,
        )

        node = next(n for n in graph.nodes if n.id == "ctrl-iso-a5")
        assert node.metadata["evidence"] == ["policy.pdf", "log.csv"]
        assert node.metadata["chains"] == [{"id": "ch1", "status": "COMPLETE"}]
        assert graph.metadata["total_chains"] == 1
        assert graph.metadata["truncated"] is False

    def test_chain_count_is_capped_newest_first(self):
        chains = [
            make_chain(f"ch{i}", ISO_A5.id if i % 2 else ISO_A6.id, minutes=i)
            for i in range(5)
        ]

        graph = project_with_evidence(
            [ISO], [], [ISO_A5, ISO_A6], chains, {}, max_chains=2
        )

        attached = [
            c["id"]
            for n in graph.nodes
            for c in n.metadata.get("chains", [])
        ]
        assert sorted(attached) == ["ch3", "ch4"]
        assert graph.metadata["total_chains"] == 2
        assert graph.metadata["truncated"] is True


class TestProjectChainFlow:
    def test_requirement_control_evidence_flow(self):
        long_requirement = "R" * 80
        chains = [
            make_chain("ch1", ISO_A5.id, evidence_ids=["e1"], requirement=long_requirement),
            make_chain("ch2", None, requirement="Unlinked"),
        ]

        graph = project_chain_flow(
            chains, [ISO_A5], {"ch1": [_evidence("e1", "policy.pdf")]}
        )

        by_id = {n.id: n for n in graph.nodes}
        assert by_id["req-ch1"].name == "R" * 50 + "..."
        assert by_id["req-ch2"].name == "Unlinked"
        assert by_id["ctrl-iso-a5"].status == "COMPLETE"
        assert by_id["ev-e1"].name == "policy.pdf"
        assert [(e.source, e.target) for e in graph.edges] == [
            ("req-ch1", "ctrl-iso-a5"),
            ("ctrl-iso-a5", "ev-e1"),
        ]
