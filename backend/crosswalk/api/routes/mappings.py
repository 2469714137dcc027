"""Mapping listing endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from crosswalk.analyzers.coverage_aggregator import DEFAULT_PAGE_SIZE
from crosswalk.api.deps import get_service, split_ids
from crosswalk.models.compliance import ConfidenceLevel
from crosswalk.schemas.analysis import MappingPageResponse
from crosswalk.services.crosswalk_service import CrosswalkService

router = APIRouter(tags=["mappings"])


@router.get("/framework-overlap/mappings", response_model=MappingPageResponse)
async def list_mappings(
    framework_ids: Optional[str] = Query(
        None, description="Comma-separated framework ids; either end may match"
    ),
    confidence: Optional[ConfidenceLevel] = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    service: CrosswalkService = Depends(get_service),
):
    """Browse curated mappings, strongest confidence first."""
    return await service.list_mappings(
        split_ids(framework_ids) if framework_ids else None,
        confidence=confidence,
        page=page,
        page_size=page_size,
    )
