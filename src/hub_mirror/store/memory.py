"""In-memory entity store: the single source of truth for mirrored hub state."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from hub_mirror.store.models import (
    AGENT_STATUSES,
    FINISHED_TASK_STATUSES,
    Agent,
    AgentPatch,
    Connection,
    ConnectionPatch,
    FanCounts,
    HubStats,
    Task,
    TaskPatch,
)

logger = logging.getLogger(__name__)

PatchT = TypeVar("PatchT", AgentPatch, TaskPatch, ConnectionPatch)


class InMemoryEntityStore:
    """Normalized agent, task and connection tables keyed by id.

    Writes are per-field merges: provided fields win, omitted fields keep
    their stored value, and replaying the same patch is a no-op. Records are
    immutable models, so anything returned by a read is a safe snapshot.
    Entities are never evicted during a session.
    """

    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        self._agents: dict[str, Agent] = {}
        self._tasks: dict[str, Task] = {}
        self._connections: dict[str, Connection] = {}
        self._connected = False
        self._messages_total = 0
        # Epoch milliseconds, matching Task.start_time.
        self._clock = clock or _now_ms

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def messages_total(self) -> int:
        return self._messages_total

    def upsert_agent(self, patch: AgentPatch | Mapping[str, Any]) -> Agent:
        parsed = _coerce(AgentPatch, patch)
        changes = parsed.changes()
        current = self._agents.get(parsed.id)
        if current is None:
            changes.setdefault("label", parsed.id)
            record = Agent(id=parsed.id, **changes)
            logger.debug("store event=agent_created id=%s", parsed.id)
        else:
            record = current.model_copy(update=changes)
        if "status" in changes and record.status not in AGENT_STATUSES:
            logger.debug("store event=unknown_status id=%s status=%s", record.id, record.status)
        self._agents[parsed.id] = record
        return record

    def upsert_task(self, patch: TaskPatch | Mapping[str, Any]) -> Task:
        parsed = _coerce(TaskPatch, patch)
        changes = parsed.changes()
        current = self._tasks.get(parsed.id)
        if current is None:
            changes.setdefault("label", parsed.id)
            record = Task(id=parsed.id, **changes)
        else:
            finishing = (
                current.is_running
                and current.start_time is not None
                and changes.get("status") in FINISHED_TASK_STATUSES
            )
            # Final duration is derived once, on the running -> finished edge.
            if finishing and "elapsed" not in changes:
                changes["elapsed"] = current.duration_seconds(self._clock())
            record = current.model_copy(update=changes)
        if record.is_running and record.start_time is None:
            record = record.model_copy(update={"start_time": self._clock()})
        self._tasks[parsed.id] = record
        return record

    def upsert_connection(self, patch: ConnectionPatch | Mapping[str, Any]) -> Connection:
        parsed = _coerce(ConnectionPatch, patch)
        changes = parsed.changes()
        current = self._connections.get(parsed.id)
        if current is None:
            record = Connection(id=parsed.id, **changes)
        else:
            record = current.model_copy(update=changes)
        self._connections[parsed.id] = record
        return record

    def set_connected(self, connected: bool) -> None:
        self._connected = bool(connected)

    def increment_messages(self, amount: int = 1) -> int:
        if amount < 0:
            raise ValueError("message counter only moves forward")
        self._messages_total += amount
        return self._messages_total

    def get_agent(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def get_connection(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def agents(self) -> list[Agent]:
        return list(self._agents.values())

    def agent_ids(self) -> list[str]:
        return list(self._agents)

    def tasks(self, *, status: str | None = None, type: str | None = None) -> list[Task]:
        return [
            task
            for task in self._tasks.values()
            if (status is None or task.status == status) and (type is None or task.type == type)
        ]

    def connections(self) -> list[Connection]:
        return list(self._connections.values())

    def connections_for(self, agent_id: str) -> list[Connection]:
        return [
            conn
            for conn in self._connections.values()
            if conn.source == agent_id or conn.target == agent_id
        ]

    def fan_counts(self, agent_id: str) -> FanCounts:
        fan_in = sum(1 for conn in self._connections.values() if conn.target == agent_id)
        fan_out = sum(1 for conn in self._connections.values() if conn.source == agent_id)
        return FanCounts(fan_in=fan_in, fan_out=fan_out)

    def stats(self) -> HubStats:
        connections = self._connections.values()
        return HubStats(
            total_agents=len(self._agents),
            active_agents=sum(1 for agent in self._agents.values() if agent.is_busy),
            messages_total=self._messages_total,
            running_tasks=sum(1 for task in self._tasks.values() if task.is_running),
            total_connections=len(self._connections),
            active_connections=sum(1 for conn in connections if conn.active),
        )


def _coerce(patch_type: type[PatchT], patch: PatchT | Mapping[str, Any]) -> PatchT:
    if isinstance(patch, patch_type):
        return patch
    return patch_type.from_partial(patch)  # type: ignore[return-value]


def _now_ms() -> float:
    return time.time() * 1000.0
