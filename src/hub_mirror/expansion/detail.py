"""On-demand detail bundle for one focused agent."""

from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

_BUNDLE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class DetailFetchError(RuntimeError):
    """Detail bundle could not be fetched or did not validate."""


class MemoryPreview(BaseModel):
    model_config = _BUNDLE_CONFIG

    name: str
    date: str | None = None
    preview: str = ""


class WorkspaceEntry(BaseModel):
    model_config = _BUNDLE_CONFIG

    name: str
    type: str = "file"


class DetailStats(BaseModel):
    model_config = _BUNDLE_CONFIG

    total_sessions: int = 0
    active_sessions: int = 0
    cron_count: int = 0
    spawn_count: int = 0
    file_count: int = 0


class DetailBundle(BaseModel):
    """Every category is optional; an absent or empty one simply yields no satellite."""

    model_config = _BUNDLE_CONFIG

    id: str | None = None
    workspace: str | None = None
    # Keyed by file role: soul, memory, identity, tools, heartbeat, agents, user.
    files: dict[str, str | None] = Field(default_factory=dict)
    recent_memories: list[MemoryPreview] = Field(default_factory=list)
    sessions: list[dict[str, Any]] = Field(default_factory=list)
    connections: list[dict[str, Any]] = Field(default_factory=list)
    crons: list[dict[str, Any]] = Field(default_factory=list)
    spawns: list[dict[str, Any]] = Field(default_factory=list)
    workspace_files: list[WorkspaceEntry] = Field(default_factory=list)
    stats: DetailStats | None = None

    def present_files(self) -> dict[str, str]:
        return {key: content for key, content in self.files.items() if content}


class DetailFetcher(Protocol):
    async def __call__(self, agent_id: str) -> DetailBundle: ...


class HttpDetailFetcher:
    """GET the detail bundle from a URL template containing `{agent_id}`."""

    def __init__(self, client: httpx.AsyncClient, url_template: str) -> None:
        self.client = client
        self.url_template = url_template

    def url_for(self, agent_id: str) -> str:
        return self.url_template.format(agent_id=quote(agent_id, safe=""))

    async def __call__(self, agent_id: str) -> DetailBundle:
        url = self.url_for(agent_id)
        try:
            response = await self.client.get(url)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise DetailFetchError(f"detail fetch failed for {agent_id}: {exc}") from exc
        except ValueError as exc:
            raise DetailFetchError(f"detail for {agent_id} is not JSON") from exc
        try:
            return DetailBundle.model_validate(data)
        except ValidationError as exc:
            raise DetailFetchError(f"detail for {agent_id} has an unexpected shape") from exc
