"""Framework comparison endpoints."""

from fastapi import APIRouter, Depends, Query

from crosswalk.api.deps import get_organization_id, get_service, split_ids
from crosswalk.schemas.analysis import (
    MultiFrameworkComparisonResponse,
    PairwiseComparisonResponse,
)
from crosswalk.services.crosswalk_service import CrosswalkService

router = APIRouter(prefix="/gap-analysis", tags=["gap-analysis"])


@router.get("/pairwise", response_model=PairwiseComparisonResponse)
async def compare_pairwise(
    source: str,
    target: str,
    organization_id: str = Depends(get_organization_id),
    service: CrosswalkService = Depends(get_service),
):
    """Coverage of each framework by the other, per direction."""
    return await service.compare_pairwise(organization_id, source, target)


@router.get("/multi", response_model=MultiFrameworkComparisonResponse)
async def compare_multi(
    frameworks: str = Query(..., description="Comma-separated framework ids (2-5)"),
    organization_id: str = Depends(get_organization_id),
    service: CrosswalkService = Depends(get_service),
):
    """Coverage, open gaps and overlap matrix across several frameworks."""
    return await service.compare_multi(organization_id, split_ids(frameworks))
