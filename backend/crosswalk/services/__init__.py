"""Service layer."""

from crosswalk.services.crosswalk_service import (
    CrosswalkService,
    MultiFrameworkComparison,
)
from crosswalk.services.data_source import DataSource, InMemoryDataSource

__all__ = [
    "CrosswalkService",
    "DataSource",
    "InMemoryDataSource",
    "MultiFrameworkComparison",
]
