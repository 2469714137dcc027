"""Graph projection endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from crosswalk.api.deps import get_organization_id, get_service, split_ids
from crosswalk.schemas.analysis import GraphProjectionResponse
from crosswalk.services.crosswalk_service import CrosswalkService

router = APIRouter(tags=["graphs"])


@router.get("/compliance-graph/graph", response_model=GraphProjectionResponse)
async def get_compliance_graph(
    framework_id: Optional[str] = None,
    max_chains: Optional[int] = None,
    organization_id: str = Depends(get_organization_id),
    service: CrosswalkService = Depends(get_service),
):
    """Mapping graph with the organisation's chain evidence attached."""
    return await service.project_graph(organization_id, framework_id, max_chains)


@router.get("/compliance-graph/flow", response_model=GraphProjectionResponse)
async def get_chain_flow(
    framework_id: Optional[str] = None,
    limit: Optional[int] = None,
    organization_id: str = Depends(get_organization_id),
    service: CrosswalkService = Depends(get_service),
):
    """Requirement to control to evidence flow of the newest chains."""
    return await service.project_chain_flow(organization_id, framework_id, limit)


@router.get("/framework-overlap/graph", response_model=GraphProjectionResponse)
async def get_overlap_graph(
    framework_ids: str = Query(..., description="Comma-separated framework ids"),
    service: CrosswalkService = Depends(get_service),
):
    """Mapping edges between a handful of frameworks."""
    return await service.project_overlap_graph(split_ids(framework_ids))
