"""Storage interface for mirrored hub entities."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

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


class EntityStore(Protocol):
    @property
    def connected(self) -> bool: ...

    @property
    def messages_total(self) -> int: ...

    def upsert_agent(self, patch: AgentPatch | Mapping[str, Any]) -> Agent: ...

    def upsert_task(self, patch: TaskPatch | Mapping[str, Any]) -> Task: ...

    def upsert_connection(self, patch: ConnectionPatch | Mapping[str, Any]) -> Connection: ...

    def set_connected(self, connected: bool) -> None: ...

    def increment_messages(self, amount: int = 1) -> int: ...

    def get_agent(self, agent_id: str) -> Agent | None: ...

    def get_task(self, task_id: str) -> Task | None: ...

    def agents(self) -> list[Agent]: ...

    def agent_ids(self) -> list[str]: ...

    def tasks(self, *, status: str | None = None, type: str | None = None) -> list[Task]: ...

    def connections(self) -> list[Connection]: ...

    def connections_for(self, agent_id: str) -> list[Connection]: ...

    def fan_counts(self, agent_id: str) -> FanCounts: ...

    def stats(self) -> HubStats: ...
