"""Framework structure and per-control status endpoints."""

from fastapi import APIRouter, Depends

from crosswalk.api.deps import get_organization_id, get_service
from crosswalk.schemas.analysis import ControlNodeResponse, ControlStatusResponse
from crosswalk.services.crosswalk_service import CrosswalkService

router = APIRouter(tags=["frameworks"])


@router.get(
    "/frameworks/{framework_id}/tree", response_model=list[ControlNodeResponse]
)
async def get_control_tree(
    framework_id: str,
    service: CrosswalkService = Depends(get_service),
):
    """Controls of a framework as an ordered tree."""
    return await service.build_control_tree(framework_id)


@router.get("/controls/{control_id}/status", response_model=ControlStatusResponse)
async def get_control_status(
    control_id: str,
    organization_id: str = Depends(get_organization_id),
    service: CrosswalkService = Depends(get_service),
):
    """Compliance status of one control and the signal that decided it."""
    return await service.get_control_status(organization_id, control_id)


@router.post("/frameworks/{framework_id}/invalidate", status_code=204)
async def invalidate_framework(
    framework_id: str,
    service: CrosswalkService = Depends(get_service),
) -> None:
    """Drop cached results that depend on a framework's reference data."""
    await service.invalidate_framework(framework_id)
