"""Cross-framework gap analysis service.

The operations request handlers call. Each one gathers what it needs through
the data source, runs the analyzers and returns plain result objects. Control
trees and coverage aggregates go through the read-through cache when one is
configured.
"""

import asyncio
import dataclasses
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import (
    AsyncContextManager,
    AsyncIterator,
    Awaitable,
    Callable,
    Optional,
    TypeVar,
)

import structlog

from crosswalk.analyzers.compliance_status import (
    ComplianceStatusCalculator,
    ControlStatus,
)
from crosswalk.analyzers.control_tree import ControlNode, build_control_tree
from crosswalk.analyzers.coverage_aggregator import (
    DEFAULT_PAGE_SIZE,
    CoverageStat,
    FrameworkCoverage,
    GapPage,
    GapQuery,
    GapRecord,
    build_gap_records,
    filter_gaps,
    framework_coverage,
    query_gaps,
)
from crosswalk.analyzers.framework_matrix import (
    PairOverlap,
    PairwiseComparison,
    overlap_matrix,
    overlap_statistics,
    pairwise,
    validate_framework_count,
)
from crosswalk.analyzers.graph_projector import (
    GraphProjection,
    project_chain_flow,
    project_mappings,
    project_with_evidence,
)
from crosswalk.analyzers.mapping_catalog import (
    MappingPage,
    MappingQuery,
    list_mapping_page,
)
from crosswalk.analyzers.mapping_graph import MappingGraph
from crosswalk.core.cache import (
    Codec,
    ReadThroughCache,
    control_tree_key,
    coverage_key,
    coverage_prefix,
)
from crosswalk.core.config import Settings, get_settings
from crosswalk.core.exceptions import CrosswalkError, UpstreamUnavailable, ValidationError
from crosswalk.models.compliance import ConfidenceLevel, OverlapLevel
from crosswalk.schemas.records import (
    ChainRecord,
    ControlRecord,
    EvidenceRecord,
    FrameworkRecord,
    MappingRecord,
)
from crosswalk.services.data_source import DataSource

logger = structlog.get_logger()

T = TypeVar("T")

# Opens a data source that lives for one cached load
DataSourceFactory = Callable[[], AsyncContextManager[DataSource]]

_TREE_CODEC: Codec[list[ControlNode]] = Codec(list[ControlNode])
_COVERAGE_CODEC: Codec[FrameworkCoverage] = Codec(FrameworkCoverage)


@dataclass
class MultiFrameworkComparison:
    """Coverage, gaps and overlap matrix for 2-5 frameworks."""

    frameworks: list[CoverageStat]
    overall: CoverageStat
    gaps: list[GapRecord]
    matrix: dict[str, dict[str, OverlapLevel]]
    overlaps: list[PairOverlap]
    generated_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


@dataclass
class _Analysis:
    """Everything loaded and derived for one organisation and framework set."""

    frameworks: list[FrameworkRecord]
    controls_by_framework: dict[str, list[ControlRecord]]
    controls_by_id: dict[str, ControlRecord]
    peer_frameworks: list[FrameworkRecord]
    graph: MappingGraph
    chains: list[ChainRecord]
    statuses: dict[str, ControlStatus]

    @property
    def analysed_controls(self) -> list[ControlRecord]:
        return [
            control
            for framework in self.frameworks
            for control in self.controls_by_framework.get(framework.id, [])
        ]


class CrosswalkService:
    """Engine facade over a data source and an optional cache.

    ``source_factory`` opens a data source for each cached load. Without one,
    loads read through ``data_source``, which must then outlive background
    refreshes.
    """

    def __init__(
        self,
        data_source: DataSource,
        cache: Optional[ReadThroughCache] = None,
        settings: Optional[Settings] = None,
        source_factory: Optional[DataSourceFactory] = None,
    ):
        self.data_source = data_source
        self.cache = cache
        self.settings = settings or get_settings()
        self.source_factory = source_factory
        self.logger = logger.bind(service="CrosswalkService")

    # Operations

    async def build_control_tree(self, framework_id: str) -> list[ControlNode]:
        """Ordered control forest of one framework."""

        async def load() -> list[ControlNode]:
            async with self._loading_service() as worker:
                return await worker._load_control_tree(framework_id)

        return await self._cached(control_tree_key(framework_id), load, _TREE_CODEC)

    async def compute_framework_coverage(
        self, organization_id: str, framework_ids: Optional[list[str]] = None
    ) -> FrameworkCoverage:
        """Per-framework coverage plus the summed overall row.

        Results are cached per organisation and framework set; frameworks come
        back in the order they were requested. Without ids every active
        framework is covered.
        """
        if framework_ids:
            framework_ids = self._require_ids(framework_ids)
        else:
            framework_ids = await self._active_framework_ids()
            if not framework_ids:
                return framework_coverage([], {}, {})

        async def load() -> FrameworkCoverage:
            async with self._loading_service() as worker:
                return await worker._load_coverage(organization_id, framework_ids)

        coverage = await self._cached(
            coverage_key(organization_id, framework_ids), load, _COVERAGE_CODEC
        )
        position = {fid: i for i, fid in enumerate(framework_ids)}
        return FrameworkCoverage(
            frameworks=sorted(
                coverage.frameworks, key=lambda s: position.get(s.framework_id, 0)
            ),
            overall=coverage.overall,
        )

    async def list_gaps(self, organization_id: str, query: GapQuery) -> GapPage:
        """Filtered, searched, sorted and paged gap records.

        Without a framework filter every active framework is analysed.
        """
        query.validate(self.settings.gap_page_size_max)

        if query.framework_id:
            framework_ids = [query.framework_id]
        else:
            framework_ids = await self._active_framework_ids()
            if not framework_ids:
                return query_gaps([], query, self.settings.gap_page_size_max)

        analysis = await self._analyse(organization_id, framework_ids)
        if query.control_id and not any(
            c.id == query.control_id for c in analysis.analysed_controls
        ):
            raise ValidationError(
                f"Unknown control: {query.control_id}", field="control_id"
            )

        records = build_gap_records(
            analysis.frameworks,
            analysis.controls_by_framework,
            analysis.statuses,
            analysis.graph,
        )
        return query_gaps(records, query, self.settings.gap_page_size_max)

    async def compare_pairwise(
        self, organization_id: str, source_framework_id: str, target_framework_id: str
    ) -> PairwiseComparison:
        """Coverage of each framework by the other, computed per direction."""
        if source_framework_id == target_framework_id:
            raise ValidationError(
                "Source and target frameworks must differ", field="target"
            )

        analysis = await self._analyse(
            organization_id, [source_framework_id, target_framework_id]
        )
        source, target = analysis.frameworks
        comparison = pairwise(
            source,
            target,
            analysis.controls_by_framework,
            analysis.graph,
            analysis.statuses,
            leaf_only=self.settings.pairwise_leaf_controls_only,
        )
        self.logger.info(
            "pairwise_compared",
            source=source.short_name,
            target=target.short_name,
            source_to_target=comparison.source_to_target.coverage_percentage,
            target_to_source=comparison.target_to_source.coverage_percentage,
        )
        return comparison

    async def compare_multi(
        self, organization_id: str, framework_ids: list[str]
    ) -> MultiFrameworkComparison:
        """Coverage, open gaps and the overlap matrix for 2-5 frameworks."""
        framework_ids = validate_framework_count(
            framework_ids,
            self.settings.multi_compare_min,
            self.settings.multi_compare_max,
        )

        analysis = await self._analyse(organization_id, framework_ids)
        coverage = framework_coverage(
            analysis.frameworks, analysis.controls_by_framework, analysis.statuses
        )
        gaps = filter_gaps(
            build_gap_records(
                analysis.frameworks,
                analysis.controls_by_framework,
                analysis.statuses,
                analysis.graph,
            ),
            GapQuery(),
        )
        overlaps = overlap_statistics(
            analysis.frameworks,
            analysis.controls_by_framework,
            analysis.graph,
            self.settings.mapped_threshold,
            self.settings.partial_threshold,
        )
        return MultiFrameworkComparison(
            frameworks=coverage.frameworks,
            overall=coverage.overall,
            gaps=gaps,
            matrix=overlap_matrix(overlaps),
            overlaps=overlaps,
        )

    async def project_graph(
        self,
        organization_id: str,
        framework_id: Optional[str] = None,
        max_chains: Optional[int] = None,
    ) -> GraphProjection:
        """Mapping graph with the organisation's chain evidence folded in."""
        max_chains = self._bounded(
            max_chains, self.settings.default_max_chains, "max_chains"
        )

        if framework_id:
            framework_ids = [framework_id]
        else:
            framework_ids = await self._active_framework_ids()
            if not framework_ids:
                return project_with_evidence([], [], [], [], {}, max_chains=max_chains)

        analysis = await self._analyse(organization_id, framework_ids)
        newest = sorted(
            (c for c in analysis.chains if c.control_id),
            key=lambda c: c.created_at,
            reverse=True,
        )[:max_chains]
        evidence_by_chain = await self._evidence_by_chain(organization_id, newest)

        return project_with_evidence(
            analysis.frameworks + analysis.peer_frameworks,
            analysis.graph.edges,
            list(analysis.controls_by_id.values()),
            analysis.chains,
            evidence_by_chain,
            statuses=analysis.statuses,
            max_chains=max_chains,
            framework_id=framework_id,
        )

    async def project_overlap_graph(self, framework_ids: list[str]) -> GraphProjection:
        """Mapping-only graph between a handful of frameworks."""
        framework_ids = validate_framework_count(
            framework_ids,
            self.settings.multi_compare_min,
            self.settings.overlap_graph_max_frameworks,
        )
        frameworks = await self._resolve_frameworks(framework_ids)

        wanted = set(framework_ids)
        mappings = [
            m
            for m in await self._read("list_mappings", self.data_source.list_mappings())
            if m.source_framework_id in wanted and m.target_framework_id in wanted
        ]
        control_lists = await self._gather(
            "list_controls",
            [self.data_source.list_controls(fid) for fid in framework_ids],
        )
        controls = [c for batch in control_lists for c in batch]
        graph = MappingGraph(mappings, known_control_ids=[c.id for c in controls])

        return project_mappings(frameworks, graph.edges, controls)

    async def list_mappings(
        self,
        framework_ids: Optional[list[str]] = None,
        confidence: Optional[ConfidenceLevel] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> MappingPage:
        """Curated mappings touching the given frameworks, paged.

        Without framework ids every mapping is listed. Strongest confidence
        comes first, newest first within a level.
        """
        query = MappingQuery(
            framework_ids=self._require_ids(framework_ids) if framework_ids else None,
            confidence=confidence,
            page=page,
            page_size=page_size,
        )
        query.validate(self.settings.gap_page_size_max)
        if query.framework_ids:
            await self._resolve_frameworks(query.framework_ids)

        mappings = [
            m
            for m in await self._read("list_mappings", self.data_source.list_mappings())
            if query.matches(m)
        ]
        involved = list(
            dict.fromkeys(
                fid
                for m in mappings
                for fid in (m.source_framework_id, m.target_framework_id)
            )
        )
        control_lists = await self._gather(
            "list_controls", [self.data_source.list_controls(fid) for fid in involved]
        )
        frameworks = (
            await self._read(
                "list_frameworks", self.data_source.list_frameworks(involved)
            )
            if involved
            else []
        )
        controls = [c for batch in control_lists for c in batch]
        graph = MappingGraph(mappings, known_control_ids=[c.id for c in controls])

        result = list_mapping_page(
            graph, controls, frameworks, query, self.settings.gap_page_size_max
        )
        self.logger.debug(
            "mappings_listed",
            framework_ids=query.framework_ids,
            confidence=confidence.value if confidence else None,
            total=result.total,
        )
        return result

    async def project_chain_flow(
        self,
        organization_id: str,
        framework_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> GraphProjection:
        """Requirement -> control -> evidence flow of the newest chains."""
        limit = self._bounded(limit, self.settings.default_max_chains, "limit")

        if framework_id:
            await self._resolve_frameworks([framework_id])
        chains = await self._read(
            "list_compliance_chains",
            self.data_source.list_compliance_chains(
                organization_id, framework_id=framework_id
            ),
        )
        chains = sorted(chains, key=lambda c: c.created_at, reverse=True)[:limit]

        control_ids = list(dict.fromkeys(c.control_id for c in chains if c.control_id))
        controls = [
            c
            for c in await self._gather(
                "get_control",
                [self.data_source.get_control(cid) for cid in control_ids],
            )
            if c is not None
        ]
        evidence_by_chain = await self._evidence_by_chain(organization_id, chains)

        return project_chain_flow(chains, controls, evidence_by_chain, framework_id)

    async def get_control_status(
        self, organization_id: str, control_id: str
    ) -> ControlStatus:
        """Compliance status of a single control with its deciding signal."""
        control = await self._read(
            "get_control", self.data_source.get_control(control_id)
        )
        if control is None:
            raise ValidationError(f"Unknown control: {control_id}", field="control_id")

        analysis, has_assessment = await asyncio.gather(
            self._analyse(organization_id, [control.framework_id]),
            self._read(
                "has_org_assessment",
                self.data_source.has_org_assessment(organization_id, control_id),
            ),
        )
        status = analysis.statuses[control_id]
        return dataclasses.replace(
            status, has_assessment=status.has_assessment or has_assessment
        )

    async def invalidate_organization(self, organization_id: str) -> None:
        """Drop cached coverage for one organisation."""
        if self.cache:
            await self.cache.invalidate_prefix(coverage_prefix(organization_id))

    async def invalidate_framework(self, framework_id: str) -> None:
        """Drop the framework's tree and every cached coverage aggregate."""
        if self.cache:
            await self.cache.invalidate(control_tree_key(framework_id))
            await self.cache.invalidate_prefix(coverage_prefix())

    # Loading

    @asynccontextmanager
    async def _loading_service(self) -> AsyncIterator["CrosswalkService"]:
        """Service a cached load reads through, on its own data source if possible."""
        if self.source_factory is None:
            yield self
            return
        async with self.source_factory() as source:
            yield CrosswalkService(source, settings=self.settings)

    async def _load_control_tree(self, framework_id: str) -> list[ControlNode]:
        await self._resolve_frameworks([framework_id])
        controls = await self._read(
            "list_controls", self.data_source.list_controls(framework_id)
        )
        return build_control_tree(controls, framework_id)

    async def _load_coverage(
        self, organization_id: str, framework_ids: list[str]
    ) -> FrameworkCoverage:
        analysis = await self._analyse(organization_id, framework_ids)
        coverage = framework_coverage(
            analysis.frameworks, analysis.controls_by_framework, analysis.statuses
        )
        self.logger.info(
            "framework_coverage_computed",
            organization_id=organization_id,
            framework_count=len(coverage.frameworks),
            coverage_percentage=coverage.overall.coverage_percentage,
        )
        return coverage

    async def _analyse(
        self, organization_id: str, framework_ids: list[str]
    ) -> _Analysis:
        """Load frameworks, controls, mappings and org records, then derive statuses.

        Mapped controls in frameworks outside ``framework_ids`` are loaded too,
        so chains there can carry status across by inference.
        """
        frameworks = await self._resolve_frameworks(framework_ids)
        ids = [f.id for f in frameworks]

        control_lists, outgoing, incoming = await asyncio.gather(
            self._gather(
                "list_controls", [self.data_source.list_controls(fid) for fid in ids]
            ),
            self._gather(
                "list_mappings",
                [self.data_source.list_mappings(source_framework_id=fid) for fid in ids],
            ),
            self._gather(
                "list_mappings",
                [self.data_source.list_mappings(target_framework_id=fid) for fid in ids],
            ),
        )
        controls_by_framework = dict(zip(ids, control_lists))

        mappings: dict[str, MappingRecord] = {}
        for batch in list(outgoing) + list(incoming):
            for mapping in batch:
                mappings.setdefault(mapping.id, mapping)

        peer_ids = list(
            dict.fromkeys(
                fid
                for m in mappings.values()
                for fid in (m.source_framework_id, m.target_framework_id)
                if fid not in controls_by_framework
            )
        )
        peer_control_lists = await self._gather(
            "list_controls", [self.data_source.list_controls(fid) for fid in peer_ids]
        )
        peer_frameworks = (
            await self._read(
                "list_frameworks", self.data_source.list_frameworks(peer_ids)
            )
            if peer_ids
            else []
        )

        controls_by_id: dict[str, ControlRecord] = {}
        for batch in list(control_lists) + list(peer_control_lists):
            for control in batch:
                controls_by_id[control.id] = control

        graph = MappingGraph(mappings.values(), known_control_ids=controls_by_id)

        chain_lists, assessments = await asyncio.gather(
            self._gather(
                "list_compliance_chains",
                [
                    self.data_source.list_compliance_chains(
                        organization_id, framework_id=fid
                    )
                    for fid in ids + peer_ids
                ],
            ),
            self._read(
                "list_assessments",
                self.data_source.list_assessments(organization_id, ids),
            ),
        )
        chains: dict[str, ChainRecord] = {}
        for batch in chain_lists:
            for chain in batch:
                chains.setdefault(chain.id, chain)

        calculator = ComplianceStatusCalculator(
            graph,
            chains.values(),
            assessments,
            inference_confidences=self.settings.inference_confidences,
            negative_threshold=self.settings.assessment_negative_threshold,
        )
        statuses = calculator.calculate(
            c for fid in ids for c in controls_by_framework[fid]
        )

        return _Analysis(
            frameworks=frameworks,
            controls_by_framework=controls_by_framework,
            controls_by_id=controls_by_id,
            peer_frameworks=peer_frameworks,
            graph=graph,
            chains=list(chains.values()),
            statuses=statuses,
        )

    async def _active_framework_ids(self) -> list[str]:
        frameworks = await self._read(
            "list_frameworks", self.data_source.list_frameworks()
        )
        return [f.id for f in frameworks]

    async def _resolve_frameworks(self, framework_ids: list[str]) -> list[FrameworkRecord]:
        """Frameworks in requested order; any unknown id is a ValidationError."""
        framework_ids = self._require_ids(framework_ids)
        found = await self._read(
            "list_frameworks", self.data_source.list_frameworks(framework_ids)
        )
        by_id = {f.id: f for f in found}
        missing = [fid for fid in framework_ids if fid not in by_id]
        if missing:
            raise ValidationError(
                f"Unknown framework(s): {', '.join(missing)}", field="framework_ids"
            )
        return [by_id[fid] for fid in framework_ids]

    async def _evidence_by_chain(
        self, organization_id: str, chains: list[ChainRecord]
    ) -> dict[str, list[EvidenceRecord]]:
        evidence_ids = list(
            dict.fromkeys(eid for chain in chains for eid in chain.evidence_ids)
        )
        if not evidence_ids:
            return {}
        evidence = await self._read(
            "list_evidence",
            self.data_source.list_evidence(evidence_ids, organization_id),
        )
        by_id = {e.id: e for e in evidence}
        return {
            chain.id: [by_id[eid] for eid in chain.evidence_ids if eid in by_id]
            for chain in chains
        }

    # Helpers

    async def _cached(self, key: str, loader, codec: Codec[T]) -> T:
        if self.cache is None:
            return await loader()
        return await self.cache.get_or_load(key, loader, codec)

    async def _read(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Await a data source call, reporting failures as UpstreamUnavailable."""
        try:
            return await awaitable
        except CrosswalkError:
            raise
        except Exception as e:
            self.logger.error(
                "upstream_read_failed",
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise UpstreamUnavailable(operation) from e

    async def _gather(self, operation: str, awaitables: list[Awaitable[T]]) -> list[T]:
        if not awaitables:
            return []
        return list(
            await asyncio.gather(*(self._read(operation, a) for a in awaitables))
        )

    @staticmethod
    def _require_ids(framework_ids: list[str]) -> list[str]:
        ids = list(dict.fromkeys(fid for fid in framework_ids if fid))
        if not ids:
            raise ValidationError(
                "At least one framework id is required", field="framework_ids"
            )
        return ids

    def _bounded(self, value: Optional[int], default: int, name: str) -> int:
        if value is None:
            return default
        if not 1 <= value <= self.settings.max_chains_limit:
            raise ValidationError(
                f"{name} must be between 1 and {self.settings.max_chains_limit}",
                field=name,
            )
        return value
