"""SQLAlchemy-backed data source.

Reads the reference tables and organisation records through an
``AsyncSession``. Database errors are raised as ``UpstreamUnavailable`` so the
engine can tell a failed read apart from an empty one.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crosswalk.core.database import get_db_session
from crosswalk.core.exceptions import UpstreamUnavailable
from crosswalk.models.compliance import (
    ChainStatus,
    ComplianceChain,
    Control,
    ControlAssessment,
    ControlMapping,
    Evidence,
    Framework,
)
from crosswalk.schemas.records import (
    AssessmentRecord,
    ChainRecord,
    ControlRecord,
    EvidenceRecord,
    FrameworkRecord,
    MappingRecord,
)

logger = structlog.get_logger()


class SqlDataSource:
    """DataSource over the crosswalk tables."""

    def __init__(self, db: AsyncSession):
        self.db = db
        # An AsyncSession runs one statement at a time; the engine gathers reads
        self._lock = asyncio.Lock()
        self.logger = logger.bind(service="SqlDataSource")

    async def _scalars(self, operation: str, query) -> list:
        try:
            async with self._lock:
                result = await self.db.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error("upstream_read_failed", operation=operation, error=str(e))
            raise UpstreamUnavailable(operation) from e

    async def list_frameworks(
        self, framework_ids: Optional[list[str]] = None
    ) -> list[FrameworkRecord]:
        query = select(Framework)
        if framework_ids is None:
            query = query.where(Framework.is_active.is_(True))
        else:
            query = query.where(Framework.id.in_(framework_ids))
        query = query.order_by(Framework.name)

        rows = await self._scalars("list_frameworks", query)
        return [FrameworkRecord.model_validate(row) for row in rows]

    async def list_controls(self, framework_id: str) -> list[ControlRecord]:
        rows = await self._scalars(
            "list_controls",
            select(Control)
            .where(Control.framework_id == framework_id)
            .order_by(Control.sort_order, Control.code),
        )
        return [ControlRecord.model_validate(row) for row in rows]

    async def get_control(self, control_id: str) -> Optional[ControlRecord]:
        rows = await self._scalars(
            "get_control", select(Control).where(Control.id == control_id)
        )
        return ControlRecord.model_validate(rows[0]) if rows else None

    async def list_mappings(
        self,
        source_framework_id: Optional[str] = None,
        target_framework_id: Optional[str] = None,
    ) -> list[MappingRecord]:
        query = select(ControlMapping)
        if source_framework_id is not None:
            query = query.where(ControlMapping.source_framework_id == source_framework_id)
        if target_framework_id is not None:
            query = query.where(ControlMapping.target_framework_id == target_framework_id)
        query = query.order_by(ControlMapping.created_at, ControlMapping.id)

        rows = await self._scalars("list_mappings", query)
        return [MappingRecord.model_validate(row) for row in rows]

    async def list_compliance_chains(
        self,
        organization_id: str,
        framework_id: Optional[str] = None,
        control_id: Optional[str] = None,
        status: Optional[ChainStatus] = None,
    ) -> list[ChainRecord]:
        query = select(ComplianceChain).where(
            ComplianceChain.organization_id == organization_id
        )
        if framework_id is not None:
            query = query.join(Control, ComplianceChain.control_id == Control.id).where(
                Control.framework_id == framework_id
            )
        if control_id is not None:
            query = query.where(ComplianceChain.control_id == control_id)
        if status is not None:
            query = query.where(ComplianceChain.status == status)
        query = query.order_by(ComplianceChain.created_at.desc())

        rows = await self._scalars("list_compliance_chains", query)
        return [ChainRecord.model_validate(row) for row in rows]

    async def list_evidence(
        self, ids: list[str], organization_id: str
    ) -> list[EvidenceRecord]:
        if not ids:
            return []
        rows = await self._scalars(
            "list_evidence",
            select(Evidence).where(
                Evidence.id.in_(ids),
                # Scoped by organisation: never resolve another tenant's files
                Evidence.organization_id == organization_id,
            ),
        )
        return [EvidenceRecord.model_validate(row) for row in rows]

    async def has_org_assessment(self, organization_id: str, control_id: str) -> bool:
        rows = await self._scalars(
            "has_org_assessment",
            select(ControlAssessment.id)
            .where(
                ControlAssessment.organization_id == organization_id,
                ControlAssessment.control_id == control_id,
            )
            .limit(1),
        )
        return bool(rows)

    async def list_assessments(
        self, organization_id: str, framework_ids: list[str]
    ) -> list[AssessmentRecord]:
        if not framework_ids:
            return []
        rows = await self._scalars(
            "list_assessments",
            select(ControlAssessment).where(
                ControlAssessment.organization_id == organization_id,
                ControlAssessment.framework_id.in_(framework_ids),
            ),
        )
        return [AssessmentRecord.model_validate(row) for row in rows]


@asynccontextmanager
async def open_sql_data_source(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncIterator[SqlDataSource]:
    """Data source over its own session, closed when the block exits.

    Cached loads use this instead of the request's session: a background
    refresh outlives the request that triggered it.
    """
    if session_factory is None:
        async with get_db_session() as session:
            yield SqlDataSource(session)
    else:
        async with session_factory() as session:
            yield SqlDataSource(session)
