"""2D placement of mirrored entities."""

from hub_mirror.layout.engine import LayoutEngine
from hub_mirror.layout.geometry import (
    DEFAULT_FOOTPRINT,
    Box,
    Footprint,
    LayoutPosition,
    overlapping_pairs,
    resolve_overlaps,
)
from hub_mirror.layout.persistence import InMemoryPositionStore, JsonFilePositionStore, PositionStore

__all__ = [
    "DEFAULT_FOOTPRINT",
    "Box",
    "Footprint",
    "InMemoryPositionStore",
    "JsonFilePositionStore",
    "LayoutEngine",
    "LayoutPosition",
    "PositionStore",
    "overlapping_pairs",
    "resolve_overlaps",
]
