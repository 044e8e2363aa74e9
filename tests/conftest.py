from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
import pytest
from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from websockets.exceptions import ConnectionClosedOK

from hub_mirror.config.settings import Settings
from hub_mirror.transport.channels import TransportError

HUB_STATE: dict[str, Any] = {
    "agents": [
        {"id": "main", "label": "Main", "status": "active", "messageCount": 12},
        {"id": "psych", "label": "Psych", "status": "idle"},
        {"id": "ops", "label": "Ops", "status": "thinking"},
    ],
    "sessions": [
        {"id": "cron-1", "type": "cron", "status": "completed", "elapsed": 42, "agentId": "ops"},
    ],
    "connections": [
        {"id": "main->ops", "from": "main", "to": "ops", "active": True, "taskCount": 1},
    ],
}

HUB_EVENTS: list[dict[str, Any]] = [
    {"type": "connected"},
    {"type": "agent_update", "agent": {"id": "spawn-1", "label": "Spawn", "status": "active"}},
    {"type": "message_event", "count": 2},
]

MAIN_DETAIL: dict[str, Any] = {
    "id": "main",
    "workspace": "/srv/agents/main",
    "files": {"soul": "be kind", "memory": None, "identity": "main agent"},
    "recentMemories": [{"name": "2026-10-17.md", "date": "2026-10-17", "preview": "shipped"}],
    "sessions": [{"key": "agent:main:main", "label": "main"}],
    "workspaceFiles": [{"name": "notes", "type": "dir"}],
    "stats": {"totalSessions": 1, "activeSessions": 1, "cronCount": 0, "spawnCount": 0, "fileCount": 2},
}


def build_fake_hub_app() -> FastAPI:
    app = FastAPI(title="fake-hub")

    @app.get("/api/state")
    def state() -> dict[str, Any]:
        return HUB_STATE

    @app.get("/api/agents/{agent_id}/detail")
    def detail(agent_id: str) -> dict[str, Any]:
        if agent_id != "main":
            raise HTTPException(status_code=404, detail="Agent not found")
        return MAIN_DETAIL

    @app.get("/api/events")
    def events() -> StreamingResponse:
        def frames():
            for event in HUB_EVENTS:
                yield f"data: {json.dumps(event)}\n\n"

        return StreamingResponse(frames(), media_type="text/event-stream")

    return app


@pytest.fixture
def hub_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=build_fake_hub_app()),
        base_url="http://hub.test",
    )


@pytest.fixture
def fast_settings(tmp_path) -> Settings:
    return Settings(
        api_base_url="http://hub.test/api",
        push_url="ws://hub.test:18789",
        poll_interval_s=0.02,
        backoff_base_s=0.01,
        backoff_factor=1.5,
        backoff_max_s=0.05,
        heartbeat_timeout_s=1.0,
        detail_timeout_s=1.0,
        layout_store_path=tmp_path / "layout.json",
    )


class FakeSocket:
    """Stands in for a websockets client connection."""

    def __init__(self, frames: list[str | bytes], *, hang: bool = False) -> None:
        self.frames = list(frames)
        self.hang = hang
        self.closed = False

    async def recv(self) -> str | bytes:
        if self.frames:
            return self.frames.pop(0)
        if self.hang:
            await asyncio.Event().wait()
        raise ConnectionClosedOK(None, None)

    async def close(self) -> None:
        self.closed = True


class ScriptedTransport:
    """Push transport whose open() outcomes are scripted per attempt."""

    def __init__(
        self,
        name: str,
        outcomes: list[bool] | None = None,
        *,
        default: bool = False,
        frames: list[str] | None = None,
        hold: bool = True,
    ) -> None:
        self.name = name
        self.outcomes = list(outcomes or [])
        self.default = default
        self.frames = list(frames or [])
        self.hold = hold
        self.open_calls = 0
        self.close_calls = 0
        self.is_active = False
        self.opened_while_active = False

    async def open(self) -> None:
        self.open_calls += 1
        if self.is_active:
            self.opened_while_active = True
        ok = self.outcomes.pop(0) if self.outcomes else self.default
        if not ok:
            raise TransportError(f"{self.name} refused")
        self.is_active = True

    async def messages(self) -> AsyncIterator[str]:
        for frame in self.frames:
            yield frame
        if self.hold:
            await asyncio.Event().wait()

    async def close(self) -> None:
        self.close_calls += 1
        self.is_active = False


class CountingFetch:
    def __init__(self, payload: Any = None, *, fail: bool = False) -> None:
        self.payload = payload if payload is not None else {"agents": []}
        self.fail = fail
        self.calls = 0

    async def __call__(self) -> Any:
        self.calls += 1
        if self.fail:
            raise TransportError("state endpoint down")
        return self.payload


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
