"""Entity store and record models."""

from hub_mirror.store.base import EntityStore
from hub_mirror.store.memory import InMemoryEntityStore
from hub_mirror.store.models import (
    Agent,
    AgentPatch,
    Connection,
    ConnectionPatch,
    FanCounts,
    HubStats,
    Task,
    TaskPatch,
)

__all__ = [
    "Agent",
    "AgentPatch",
    "Connection",
    "ConnectionPatch",
    "EntityStore",
    "FanCounts",
    "HubStats",
    "InMemoryEntityStore",
    "Task",
    "TaskPatch",
]
