"""Detail sub-graph for one focused entity."""

from hub_mirror.expansion.controller import DetailExpansionController, ExpansionState
from hub_mirror.expansion.detail import (
    DetailBundle,
    DetailFetchError,
    DetailFetcher,
    DetailStats,
    HttpDetailFetcher,
    MemoryPreview,
    WorkspaceEntry,
)
from hub_mirror.expansion.satellites import (
    DEFAULT_SATELLITE_FOOTPRINTS,
    Satellite,
    build_satellites,
    stack_columns,
)

__all__ = [
    "DEFAULT_SATELLITE_FOOTPRINTS",
    "DetailBundle",
    "DetailExpansionController",
    "DetailFetchError",
    "DetailFetcher",
    "DetailStats",
    "ExpansionState",
    "HttpDetailFetcher",
    "MemoryPreview",
    "Satellite",
    "WorkspaceEntry",
    "build_satellites",
    "stack_columns",
]
