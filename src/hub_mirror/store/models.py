"""Entity records and partial updates mirrored from the remote hub.

Terms used in this file:
- Record: the complete, merged view of one entity held by the store.
- Patch: a partial record as delivered by a transport; only `id` is required.
- Alias: the camelCase wire name of a snake_case field (`messageCount` for
  `message_count`). Records and patches accept either spelling.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

AgentStatus = Literal["active", "idle", "thinking", "error"]
TaskStatus = Literal["running", "completed", "failed"]
TaskType = Literal["cron", "spawn"]

AGENT_STATUSES: frozenset[str] = frozenset({"active", "idle", "thinking", "error"})
TASK_STATUSES: frozenset[str] = frozenset({"running", "completed", "failed"})
FINISHED_TASK_STATUSES: frozenset[str] = frozenset({"completed", "failed"})
BUSY_AGENT_STATUSES: frozenset[str] = frozenset({"active", "thinking"})

# Unknown statuses are stored verbatim but rendered with this one.
DEFAULT_AGENT_STATUS: AgentStatus = "idle"
DEFAULT_TASK_STATUS: TaskStatus = "completed"

_RECORD_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    extra="ignore",
    frozen=True,
)


class Agent(BaseModel):
    """One persistent or ephemeral reasoning worker."""

    model_config = _RECORD_CONFIG

    id: str = Field(min_length=1)
    label: str = ""
    # Model identifier reported by the hub, for example "claude-sonnet-4-6".
    model: str = "unknown"
    # Kept as a plain string so values added by newer hubs survive a merge.
    status: str = DEFAULT_AGENT_STATUS
    message_count: int = Field(default=0, ge=0)
    last_activity: str = "never"
    session_count: int = Field(default=0, ge=0)
    active_sessions: int = Field(default=0, ge=0)
    context_tokens: int | None = Field(default=None, ge=0)
    description: str | None = None
    session_key: str | None = None
    last_activity_ms: int | None = None
    reasoning_level: str | None = None

    @property
    def display_status(self) -> AgentStatus:
        if self.status in AGENT_STATUSES:
            return self.status  # type: ignore[return-value]
        return DEFAULT_AGENT_STATUS

    @property
    def is_busy(self) -> bool:
        return self.status in BUSY_AGENT_STATUSES

    def context_fraction(self, window_tokens: int) -> float:
        """Share of the context window in use, capped at 1.0."""
        if not self.context_tokens or window_tokens <= 0:
            return 0.0
        return min(self.context_tokens / window_tokens, 1.0)


class Task(BaseModel):
    """A recurring (cron) or one-off (spawn) unit of work."""

    model_config = _RECORD_CONFIG

    id: str = Field(min_length=1)
    label: str = ""
    status: str = DEFAULT_TASK_STATUS
    type: str | None = None
    model: str = "unknown"
    # Epoch milliseconds; authoritative while the task is running.
    start_time: float | None = None
    # Seconds; authoritative once the task is no longer running.
    elapsed: float = Field(default=0.0, ge=0.0)
    last_message: str | None = None
    parent_agent: str | None = None
    agent_id: str | None = None
    key: str | None = None
    last_activity_ms: int | None = None
    target_agent: str | None = None

    @property
    def is_running(self) -> bool:
        return self.status == "running"

    @property
    def owner(self) -> str | None:
        return self.agent_id or self.parent_agent

    def duration_seconds(self, now_ms: float) -> float:
        if self.is_running and self.start_time is not None:
            return max((now_ms - self.start_time) / 1000.0, 0.0)
        return self.elapsed


class Connection(BaseModel):
    """Directed link between two agents. Endpoints are soft references."""

    model_config = _RECORD_CONFIG

    id: str = Field(min_length=1)
    source: str | None = Field(default=None, alias="from")
    target: str | None = Field(default=None, alias="to")
    active: bool = False
    label: str | None = None
    task_count: int = Field(default=0, ge=0)
    # "hierarchy", "task" or "cron" on current hubs.
    type: str | None = None
    strength: float | None = None
    running_count: int = Field(default=0, ge=0)


class _Patch(BaseModel):
    """Shared parsing for partial records."""

    model_config = _RECORD_CONFIG

    @classmethod
    def from_partial(cls, data: Mapping[str, Any]) -> _Patch:
        """Validate a raw mapping, dropping individual fields that do not validate.

        A missing or unusable `id` is a caller error and raises ValueError.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"{cls.__name__} expects a mapping, got {type(data).__name__}")
        payload = dict(data)
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            rejected = {str(err["loc"][0]) for err in exc.errors() if err["loc"]}
            if "id" in rejected:
                raise ValueError(f"{cls.__name__} requires a non-empty string id") from exc
            dropped = [key for key in payload if _field_key(cls, key) in _expand(cls, rejected)]
            logger.warning(
                "store event=fields_dropped patch=%s id=%s fields=%s",
                cls.__name__,
                payload.get("id"),
                sorted(dropped),
            )
            for key in dropped:
                payload.pop(key, None)
            return cls.model_validate(payload)

    def changes(self) -> dict[str, Any]:
        """Fields explicitly provided by the sender, excluding `id` and nulls."""
        provided = self.model_dump(exclude_unset=True)
        provided.pop("id", None)
        return {name: value for name, value in provided.items() if value is not None}


class AgentPatch(_Patch):
    id: str = Field(min_length=1)
    label: str | None = None
    model: str | None = None
    status: str | None = None
    message_count: int | None = Field(default=None, ge=0)
    last_activity: str | None = None
    session_count: int | None = Field(default=None, ge=0)
    active_sessions: int | None = Field(default=None, ge=0)
    context_tokens: int | None = Field(default=None, ge=0)
    description: str | None = None
    session_key: str | None = None
    last_activity_ms: int | None = None
    reasoning_level: str | None = None


class TaskPatch(_Patch):
    id: str = Field(min_length=1)
    label: str | None = None
    status: str | None = None
    type: str | None = None
    model: str | None = None
    start_time: float | None = None
    elapsed: float | None = Field(default=None, ge=0.0)
    last_message: str | None = None
    parent_agent: str | None = None
    agent_id: str | None = None
    key: str | None = None
    last_activity_ms: int | None = None
    target_agent: str | None = None


class ConnectionPatch(_Patch):
    id: str = Field(min_length=1)
    source: str | None = Field(default=None, alias="from")
    target: str | None = Field(default=None, alias="to")
    active: bool | None = None
    label: str | None = None
    task_count: int | None = Field(default=None, ge=0)
    type: str | None = None
    strength: float | None = None
    running_count: int | None = Field(default=None, ge=0)


class HubStats(BaseModel):
    """Aggregate counters shown in the top bar."""

    total_agents: int = 0
    active_agents: int = 0
    messages_total: int = 0
    running_tasks: int = 0
    total_connections: int = 0
    active_connections: int = 0


@dataclass(frozen=True)
class FanCounts:
    fan_in: int = 0
    fan_out: int = 0


def _field_key(model: type[BaseModel], key: str) -> str:
    """Map a wire key (alias or field name) to the field name."""
    for name, info in model.model_fields.items():
        if key == name or key == info.alias:
            return name
    return key


def _expand(model: type[BaseModel], locs: set[str]) -> set[str]:
    return {_field_key(model, loc) for loc in locs}
