"""Read interfaces the engine consumes.

The engine never touches storage directly. Everything it knows about
frameworks, mappings and an organisation's posture comes through a
``DataSource``; any failed read must surface as ``UpstreamUnavailable``.
"""

from collections import Counter
from typing import Iterable, Optional, Protocol

from crosswalk.models.compliance import ChainStatus
from crosswalk.schemas.records import (
    AssessmentRecord,
    ChainRecord,
    ControlRecord,
    EvidenceRecord,
    FrameworkRecord,
    MappingRecord,
)


class DataSource(Protocol):
    """Async read interface over reference data and organisation records."""

    async def list_frameworks(
        self, framework_ids: Optional[list[str]] = None
    ) -> list[FrameworkRecord]: ...

    async def list_controls(self, framework_id: str) -> list[ControlRecord]: ...

    async def get_control(self, control_id: str) -> Optional[ControlRecord]: ...

    async def list_mappings(
        self,
        source_framework_id: Optional[str] = None,
        target_framework_id: Optional[str] = None,
    ) -> list[MappingRecord]: ...

    async def list_compliance_chains(
        self,
        organization_id: str,
        framework_id: Optional[str] = None,
        control_id: Optional[str] = None,
        status: Optional[ChainStatus] = None,
    ) -> list[ChainRecord]: ...

    async def list_evidence(
        self, ids: list[str], organization_id: str
    ) -> list[EvidenceRecord]: ...

    async def has_org_assessment(self, organization_id: str, control_id: str) -> bool: ...

    async def list_assessments(
        self, organization_id: str, framework_ids: list[str]
    ) -> list[AssessmentRecord]: ...


class InMemoryDataSource:
    """DataSource over in-memory snapshots.

    Counts every call per method in ``calls`` so callers can observe how
    often the engine actually reads.
    """

    def __init__(
        self,
        frameworks: Iterable[FrameworkRecord] = (),
        controls: Iterable[ControlRecord] = (),
        mappings: Iterable[MappingRecord] = (),
        chains: Iterable[ChainRecord] = (),
        evidence: Iterable[EvidenceRecord] = (),
        assessments: Iterable[AssessmentRecord] = (),
    ):
        self.frameworks = list(frameworks)
        self.controls = list(controls)
        self.mappings = list(mappings)
        self.chains = list(chains)
        self.evidence = list(evidence)
        self.assessments = list(assessments)
        self.calls: Counter = Counter()

    def _framework_of(self, control_id: Optional[str]) -> Optional[str]:
        for control in self.controls:
            if control.id == control_id:
                return control.framework_id
        return None

    async def list_frameworks(
        self, framework_ids: Optional[list[str]] = None
    ) -> list[FrameworkRecord]:
        self.calls["list_frameworks"] += 1
        if framework_ids is None:
            return [f for f in self.frameworks if f.is_active]
        wanted = set(framework_ids)
        return [f for f in self.frameworks if f.id in wanted]

    async def list_controls(self, framework_id: str) -> list[ControlRecord]:
        self.calls["list_controls"] += 1
        controls = [c for c in self.controls if c.framework_id == framework_id]
        return sorted(controls, key=lambda c: (c.sort_order, c.code))

    async def get_control(self, control_id: str) -> Optional[ControlRecord]:
        self.calls["get_control"] += 1
        for control in self.controls:
            if control.id == control_id:
                return control
        return None

    async def list_mappings(
        self,
        source_framework_id: Optional[str] = None,
        target_framework_id: Optional[str] = None,
    ) -> list[MappingRecord]:
        self.calls["list_mappings"] += 1
        return [
            m
            for m in self.mappings
            if (source_framework_id is None or m.source_framework_id == source_framework_id)
            and (target_framework_id is None or m.target_framework_id == target_framework_id)
        ]

    async def list_compliance_chains(
        self,
        organization_id: str,
        framework_id: Optional[str] = None,
        control_id: Optional[str] = None,
        status: Optional[ChainStatus] = None,
    ) -> list[ChainRecord]:
        self.calls["list_compliance_chains"] += 1
        chains = []
        for chain in self.chains:
            if chain.organization_id != organization_id:
                continue
            if control_id is not None and chain.control_id != control_id:
                continue
            if status is not None and chain.status != status:
                continue
            if framework_id is not None and self._framework_of(chain.control_id) != framework_id:
                continue
            chains.append(chain)
        return chains

    async def list_evidence(
        self, ids: list[str], organization_id: str
    ) -> list[EvidenceRecord]:
        self.calls["list_evidence"] += 1
        wanted = set(ids)
        return [
            e
            for e in self.evidence
            if e.id in wanted and e.organization_id == organization_id
        ]

    async def has_org_assessment(self, organization_id: str, control_id: str) -> bool:
        self.calls["has_org_assessment"] += 1
        return any(
            a.organization_id == organization_id and a.control_id == control_id
            for a in self.assessments
        )

    async def list_assessments(
        self, organization_id: str, framework_ids: list[str]
    ) -> list[AssessmentRecord]:
        self.calls["list_assessments"] += 1
        wanted = set(framework_ids)
        return [
            a
            for a in self.assessments
            if a.organization_id == organization_id and a.framework_id in wanted
        ]
