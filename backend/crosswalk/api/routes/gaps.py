"""Gap listing endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from crosswalk.analyzers.coverage_aggregator import DEFAULT_PAGE_SIZE, GapQuery
from crosswalk.api.deps import get_organization_id, get_service
from crosswalk.models.compliance import ChainStatus, ComplianceStatus
from crosswalk.schemas.analysis import GapPageResponse
from crosswalk.services.crosswalk_service import CrosswalkService

router = APIRouter(tags=["gaps"])


@router.get("/gaps", response_model=GapPageResponse)
async def list_gaps(
    framework_id: Optional[str] = None,
    control_id: Optional[str] = None,
    status: Optional[ComplianceStatus] = None,
    chain_status: Optional[ChainStatus] = None,
    search: Optional[str] = Query(None, max_length=200),
    include_compliant: bool = False,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    sort_field: str = "control_code",
    sort_dir: str = "asc",
    organization_id: str = Depends(get_organization_id),
    service: CrosswalkService = Depends(get_service),
):
    """List compliance gaps with filtering, search, sorting and paging.

    Compliant controls are left out unless a status filter or
    include_compliant asks for them.
    """
    query = GapQuery(
        framework_id=framework_id,
        control_id=control_id,
        status=status,
        chain_status=chain_status,
        search=search,
        include_compliant=include_compliant,
        page=page,
        page_size=page_size,
        sort_field=sort_field,
        sort_dir=sort_dir,
    )
    return await service.list_gaps(organization_id, query)
