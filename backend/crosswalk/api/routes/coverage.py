"""Framework coverage endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from crosswalk.api.deps import get_organization_id, get_service, split_ids
from crosswalk.schemas.analysis import FrameworkCoverageResponse
from crosswalk.services.crosswalk_service import CrosswalkService

router = APIRouter(tags=["coverage"])


@router.get("/coverage", response_model=FrameworkCoverageResponse)
async def get_framework_coverage(
    framework_ids: Optional[str] = Query(
        None, description="Comma-separated framework ids; all active when omitted"
    ),
    organization_id: str = Depends(get_organization_id),
    service: CrosswalkService = Depends(get_service),
):
    """Coverage per framework plus the overall aggregate."""
    return await service.compute_framework_coverage(
        organization_id, split_ids(framework_ids) if framework_ids else None
    )


@router.post("/coverage/invalidate", status_code=204)
async def invalidate_coverage(
    organization_id: str = Depends(get_organization_id),
    service: CrosswalkService = Depends(get_service),
) -> None:
    """Drop the organisation's cached coverage after its records change."""
    await service.invalidate_organization(organization_id)
