"""Compliance status calculator.

Derives one organisation's compliance status for every control of the
analysed frameworks from three kinds of signal:

- the organisation's own compliance chains on the control,
- the organisation's own assessment of the control (and its evidence),
- chains the organisation completed on controls mapped to this one in
  other frameworks.

Signals are resolved by an ordered precedence chain (first rule that matches
wins) rather than by summing scores, so indirect credit never hides missing
direct evidence. Inference is a single hop: only a peer's own chains count,
never a status the peer itself inherited through mappings.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

import structlog

from crosswalk.analyzers.mapping_graph import MappingGraph
from crosswalk.models.compliance import ChainStatus, ComplianceStatus, ConfidenceLevel
from crosswalk.schemas.records import AssessmentRecord, ChainRecord, ControlRecord

logger = structlog.get_logger()

# How the deciding signal was found
SOURCE_CHAIN = "chain"
SOURCE_ASSESSMENT = "assessment"
SOURCE_MAPPING = "mapping"
SOURCE_EVIDENCE = "evidence"
SOURCE_NONE = "none"

DEFAULT_INFERENCE_CONFIDENCES = (ConfidenceLevel.HIGH, ConfidenceLevel.MEDIUM)
DEFAULT_NEGATIVE_THRESHOLD = 50


@dataclass
class ControlStatus:
    """Compliance status of one control for one organisation."""

    control_id: str
    framework_id: str
    compliance_status: ComplianceStatus
    status_source: str
    has_assessment: bool = False
    has_evidence: bool = False
    chain_status: Optional[ChainStatus] = None
    inferred_from: list[str] = field(default_factory=list)


@dataclass
class _Signals:
    """Everything known about one control before precedence is applied."""

    control: ControlRecord
    chain_status: Optional[ChainStatus]
    assessment: Optional[AssessmentRecord]
    has_evidence: bool
    strong_peers: list[str]
    weak_peers: list[str]


_CHAIN_STRENGTH = {
    ChainStatus.COMPLETE: 2,
    ChainStatus.PARTIAL: 1,
    ChainStatus.MISSING: 0,
}


def strongest_chain_status(chains: Iterable[ChainRecord]) -> Optional[ChainStatus]:
    """COMPLETE beats PARTIAL beats MISSING; None when there are no chains."""
    best: Optional[ChainStatus] = None
    for chain in chains:
        if best is None or _CHAIN_STRENGTH[chain.status] > _CHAIN_STRENGTH[best]:
            best = chain.status
    return best


class ComplianceStatusCalculator:
    """Compute per-control compliance status for one organisation."""

    def __init__(
        self,
        graph: MappingGraph,
        chains: Iterable[ChainRecord],
        assessments: Iterable[AssessmentRecord] = (),
        inference_confidences: Iterable[str] = DEFAULT_INFERENCE_CONFIDENCES,
        negative_threshold: int = DEFAULT_NEGATIVE_THRESHOLD,
    ):
        self.graph = graph
        self.negative_threshold = negative_threshold
        self.inference_confidences = {ConfidenceLevel(c) for c in inference_confidences}
        self.logger = logger.bind(component="ComplianceStatusCalculator")

        self._chains_by_control: dict[str, list[ChainRecord]] = defaultdict(list)
        for chain in chains:
            if chain.control_id:
                self._chains_by_control[chain.control_id].append(chain)

        self._assessments: dict[str, AssessmentRecord] = {}
        for assessment in assessments:
            current = self._assessments.get(assessment.control_id)
            # Keep the most favourable outcome when a control was assessed twice
            if current is None or assessment.effectiveness > current.effectiveness:
                self._assessments[assessment.control_id] = assessment

        # Rules in precedence order; the first to return a result wins
        self._rules: list[
            Callable[[_Signals], Optional[tuple[ComplianceStatus, str, list[str]]]]
        ] = [
            self._rule_own_chain,
            self._rule_negative_assessment,
            self._rule_inferred_compliant,
            self._rule_inferred_partial,
            self._rule_evidence,
            self._rule_assessed,
        ]

    def own_chain_status(self, control_id: str) -> Optional[ChainStatus]:
        return strongest_chain_status(self._chains_by_control.get(control_id, ()))

    def calculate(self, controls: Iterable[ControlRecord]) -> dict[str, ControlStatus]:
        """Compute the status of every control.

        Args:
            controls: Controls of the analysed frameworks

        Returns:
            Dict of control id -> ControlStatus, in input order
        """
        results: dict[str, ControlStatus] = {}
        for control in controls:
            results[control.id] = self.status_for(control)

        self.logger.debug(
            "compliance_status_calculated",
            control_count=len(results),
            compliant=sum(
                1
                for r in results.values()
                if r.compliance_status == ComplianceStatus.COMPLIANT
            ),
        )
        return results

    def status_for(self, control: ControlRecord) -> ControlStatus:
        signals = self._collect(control)

        status, source, inferred_from = (
            ComplianceStatus.NOT_ASSESSED,
            SOURCE_NONE,
            [],
        )
        for rule in self._rules:
            outcome = rule(signals)
            if outcome is not None:
                status, source, inferred_from = outcome
                break

        return ControlStatus(
            control_id=control.id,
            framework_id=control.framework_id,
            compliance_status=status,
            status_source=source,
            has_assessment=signals.assessment is not None,
            has_evidence=signals.has_evidence,
            chain_status=signals.chain_status,
            inferred_from=inferred_from,
        )

    def _collect(self, control: ControlRecord) -> _Signals:
        own_chains = self._chains_by_control.get(control.id, [])
        assessment = self._assessments.get(control.id)
        has_evidence = any(chain.evidence_ids for chain in own_chains) or bool(
            assessment and assessment.has_evidence
        )

        strong_peers: list[str] = []
        weak_peers: list[str] = []
        for peer_id, edge in self.graph.neighbours(control.id):
            if peer_id == control.id:
                continue
            peer_status = self.own_chain_status(peer_id)
            if peer_status == ChainStatus.COMPLETE:
                if edge.confidence in self.inference_confidences:
                    strong_peers.append(peer_id)
                else:
                    weak_peers.append(peer_id)
            elif peer_status == ChainStatus.PARTIAL:
                weak_peers.append(peer_id)

        return _Signals(
            control=control,
            chain_status=strongest_chain_status(own_chains),
            assessment=assessment,
            has_evidence=has_evidence,
            strong_peers=_unique(strong_peers),
            weak_peers=_unique(weak_peers),
        )

    # Precedence rules

    def _rule_own_chain(self, s: _Signals):
        if s.chain_status == ChainStatus.COMPLETE:
            return ComplianceStatus.COMPLIANT, SOURCE_CHAIN, []
        if s.chain_status == ChainStatus.PARTIAL:
            return ComplianceStatus.PARTIAL, SOURCE_CHAIN, []
        if s.chain_status == ChainStatus.MISSING:
            return ComplianceStatus.NON_COMPLIANT, SOURCE_CHAIN, []
        return None

    def _rule_negative_assessment(self, s: _Signals):
        if s.assessment and s.assessment.effectiveness < self.negative_threshold:
            return ComplianceStatus.NON_COMPLIANT, SOURCE_ASSESSMENT, []
        return None

    def _rule_inferred_compliant(self, s: _Signals):
        if s.strong_peers:
            return ComplianceStatus.COMPLIANT, SOURCE_MAPPING, s.strong_peers
        return None

    def _rule_inferred_partial(self, s: _Signals):
        if s.weak_peers:
            return ComplianceStatus.PARTIAL, SOURCE_MAPPING, s.weak_peers
        return None

    def _rule_evidence(self, s: _Signals):
        if s.has_evidence:
            return ComplianceStatus.PARTIAL, SOURCE_EVIDENCE, []
        return None

    def _rule_assessed(self, s: _Signals):
        if s.assessment is not None:
            return ComplianceStatus.PARTIAL, SOURCE_ASSESSMENT, []
        return None


def _unique(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(ids))
