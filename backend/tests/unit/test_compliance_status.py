"""Unit tests for the compliance status calculator."""

import pytest

from crosswalk.analyzers.compliance_status import (
    SOURCE_ASSESSMENT,
    SOURCE_CHAIN,
    SOURCE_EVIDENCE,
    SOURCE_MAPPING,
    SOURCE_NONE,
    ComplianceStatusCalculator,
    strongest_chain_status,
)
from crosswalk.analyzers.mapping_graph import MappingGraph
from crosswalk.models.compliance import ChainStatus, ComplianceStatus, ConfidenceLevel

from factories import (
    ISO_A5,
    ISO_A6,
    ISO_A7,
    NIS2_ART21,
    NIS2_C4,
    NIS2_C5,
    make_assessment,
    make_chain,
    make_mapping,
)


def _calculate(mappings, chains, assessments=(), controls=None, **kwargs):
    calculator = ComplianceStatusCalculator(
        MappingGraph(mappings), chains, assessments, **kwargs
    )
    controls = controls or [NIS2_ART21, NIS2_C4, NIS2_C5, ISO_A5, ISO_A6, ISO_A7]
    return calculator.calculate(controls)


class TestStrongestChainStatus:
    def test_complete_beats_partial_beats_missing(self):
        chains = [
            make_chain("1", "x", ChainStatus.MISSING),
            make_chain("2", "x", ChainStatus.PARTIAL),
        ]
        assert strongest_chain_status(chains) == ChainStatus.PARTIAL
        chains.append(make_chain("3", "x", ChainStatus.COMPLETE))
        assert strongest_chain_status(chains) == ChainStatus.COMPLETE

    def test_no_chains(self):
        assert strongest_chain_status([]) is None


class TestComplianceStatusCalculator:
    """Precedence of direct, assessed and inferred signals."""

    def test_high_confidence_mapping_infers_compliant(self, catalog):
        statuses = _calculate(catalog["mappings"], catalog["chains"])

        c4 = statuses[NIS2_C4.id]
        assert c4.compliance_status == ComplianceStatus.COMPLIANT
        assert c4.status_source == SOURCE_MAPPING
        assert c4.inferred_from == [ISO_A5.id]
        assert c4.chain_status is None

    def test_low_confidence_mapping_infers_only_partial(self, catalog):
        statuses = _calculate(catalog["mappings"], catalog["chains"])

        c5 = statuses[NIS2_C5.id]
        assert c5.compliance_status == ComplianceStatus.PARTIAL
        assert c5.status_source == SOURCE_MAPPING

    def test_unrelated_control_is_not_assessed(self, catalog):
        statuses = _calculate(catalog["mappings"], catalog["chains"])

        assert statuses[NIS2_ART21.id].compliance_status == ComplianceStatus.NOT_ASSESSED
        assert statuses[NIS2_ART21.id].status_source == SOURCE_NONE
        assert statuses[ISO_A7.id].compliance_status == ComplianceStatus.NOT_ASSESSED

    def test_inference_works_in_either_mapping_direction(self):
        mappings = [make_mapping("m", ISO_A5, NIS2_C4)]
        chains = [make_chain("c", NIS2_C4.id)]

        statuses = _calculate(mappings, chains)

        assert statuses[ISO_A5.id].compliance_status == ComplianceStatus.COMPLIANT

    def test_own_complete_chain_wins_over_any_mapping(self):
        mappings = [make_mapping("m", ISO_A5, NIS2_C4)]
        chains = [
            make_chain("own", NIS2_C4.id, ChainStatus.COMPLETE),
            make_chain("peer", ISO_A5.id, ChainStatus.MISSING),
        ]

        statuses = _calculate(mappings, chains)

        assert statuses[NIS2_C4.id].compliance_status == ComplianceStatus.COMPLIANT
        assert statuses[NIS2_C4.id].status_source == SOURCE_CHAIN

    def test_own_missing_chain_is_not_hidden_by_inferred_credit(self, catalog):
        chains = catalog["chains"] + [
            make_chain("own", NIS2_C4.id, ChainStatus.MISSING)
        ]

        statuses = _calculate(catalog["mappings"], chains)

        assert statuses[NIS2_C4.id].compliance_status == ComplianceStatus.NON_COMPLIANT
        assert statuses[NIS2_C4.id].status_source == SOURCE_CHAIN

    def test_own_partial_chain_wins_over_inferred_compliant(self, catalog):
        chains = catalog["chains"] + [
            make_chain("own", NIS2_C4.id, ChainStatus.PARTIAL)
        ]

        statuses = _calculate(catalog["mappings"], chains)

        assert statuses[NIS2_C4.id].compliance_status == ComplianceStatus.PARTIAL
        assert statuses[NIS2_C4.id].status_source == SOURCE_CHAIN

    def test_negative_assessment_outranks_inference(self, catalog):
        statuses = _calculate(
            catalog["mappings"],
            catalog["chains"],
            [make_assessment(NIS2_C4, effectiveness=20)],
        )

        c4 = statuses[NIS2_C4.id]
        assert c4.compliance_status == ComplianceStatus.NON_COMPLIANT
        assert c4.status_source == SOURCE_ASSESSMENT
        assert c4.has_assessment is True

    def test_positive_assessment_alone_is_partial(self):
        statuses = _calculate([], [], [make_assessment(ISO_A7, effectiveness=80)])

        assert statuses[ISO_A7.id].compliance_status == ComplianceStatus.PARTIAL
        assert statuses[ISO_A7.id].status_source == SOURCE_ASSESSMENT

    def test_evidence_without_chain_is_partial(self):
        statuses = _calculate(
            [], [], [make_assessment(ISO_A7, effectiveness=70, has_evidence=True)]
        )

        assert statuses[ISO_A7.id].compliance_status == ComplianceStatus.PARTIAL
        assert statuses[ISO_A7.id].status_source == SOURCE_EVIDENCE
        assert statuses[ISO_A7.id].has_evidence is True

    def test_chain_evidence_sets_has_evidence(self, catalog):
        statuses = _calculate(catalog["mappings"], catalog["chains"])

        assert statuses[ISO_A5.id].has_evidence is True
        assert statuses[ISO_A6.id].has_evidence is False

    def test_inference_is_single_hop(self):
        # A7 -> A6 -> A5; only A5 has a chain
        mappings = [
            make_mapping("m1", ISO_A7, ISO_A6),
            make_mapping("m2", ISO_A6, ISO_A5),
        ]
        chains = [make_chain("c", ISO_A5.id)]

        statuses = _calculate(mappings, chains)

        assert statuses[ISO_A6.id].compliance_status == ComplianceStatus.COMPLIANT
        assert statuses[ISO_A7.id].compliance_status == ComplianceStatus.NOT_ASSESSED

    def test_partial_peer_gives_partial(self):
        mappings = [make_mapping("m", NIS2_C4, ISO_A5)]
        chains = [make_chain("c", ISO_A5.id, ChainStatus.PARTIAL)]

        statuses = _calculate(mappings, chains)

        assert statuses[NIS2_C4.id].compliance_status == ComplianceStatus.PARTIAL

    def test_inference_confidences_are_configurable(self, catalog):
        statuses = _calculate(
            catalog["mappings"],
            catalog["chains"],
            inference_confidences=[ConfidenceLevel.HIGH, ConfidenceLevel.LOW],
        )

        assert statuses[NIS2_C5.id].compliance_status == ComplianceStatus.COMPLIANT

    @pytest.mark.parametrize("effectiveness,expected", [(49, "NON_COMPLIANT"), (50, "PARTIAL")])
    def test_negative_threshold_boundary(self, effectiveness, expected):
        statuses = _calculate([], [], [make_assessment(ISO_A7, effectiveness)])

        assert statuses[ISO_A7.id].compliance_status == ComplianceStatus(expected)

    def test_other_organisation_chains_are_never_passed_in(self, catalog):
        # The calculator trusts its inputs; scoping is the data source's job
        statuses = _calculate(catalog["mappings"], [])

        assert statuses[NIS2_C4.id].compliance_status == ComplianceStatus.NOT_ASSESSED
