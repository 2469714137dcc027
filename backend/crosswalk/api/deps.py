"""API dependencies."""

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from crosswalk.core.cache import get_cache
from crosswalk.core.config import get_settings
from crosswalk.core.database import get_db
from crosswalk.services.crosswalk_service import CrosswalkService
from crosswalk.services.data_source import DataSource
from crosswalk.services.sql_data_source import SqlDataSource, open_sql_data_source


async def get_data_source(db: AsyncSession = Depends(get_db)) -> DataSource:
    """Data source over the request's database session."""
    return SqlDataSource(db)


async def get_service(
    data_source: DataSource = Depends(get_data_source),
) -> CrosswalkService:
    """Service for one request; cached loads open their own sessions."""
    return CrosswalkService(
        data_source,
        cache=get_cache(),
        settings=get_settings(),
        source_factory=open_sql_data_source,
    )


async def get_organization_id(
    x_organization_id: str = Header(..., alias="X-Organization-ID"),
) -> str:
    """Organisation the request acts for.

    Authentication happens upstream; the gateway forwards the caller's
    organisation in the X-Organization-ID header.
    """
    organization_id = x_organization_id.strip()
    if not organization_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Organization-ID header is required",
        )
    return organization_id


def split_ids(value: str) -> list[str]:
    """Split a comma-separated id list, dropping blanks."""
    return [part.strip() for part in value.split(",") if part.strip()]
