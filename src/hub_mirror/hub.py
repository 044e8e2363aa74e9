"""Composition root for the hub mirror.

Beginner terms used in this file:
- Composition root: the one place that builds every component and wires
  them together. Nothing else constructs a store or a transport manager.
- Read API: pure accessors a renderer may call at any cadence.
- Subscription: handle returned when wiring the manager's event channels;
  every handle is closed on `stop()` so reconnects never leak handlers.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from hub_mirror.config.settings import Settings, get_settings
from hub_mirror.expansion.controller import DetailExpansionController
from hub_mirror.expansion.detail import DetailFetcher, HttpDetailFetcher
from hub_mirror.expansion.satellites import Satellite
from hub_mirror.layout.engine import LayoutEngine
from hub_mirror.layout.geometry import LayoutPosition
from hub_mirror.layout.persistence import InMemoryPositionStore, JsonFilePositionStore, PositionStore
from hub_mirror.store.base import EntityStore
from hub_mirror.store.memory import InMemoryEntityStore
from hub_mirror.store.models import Agent, Connection, HubStats, Task
from hub_mirror.transport.backoff import Backoff
from hub_mirror.transport.channels import EventStreamTransport, StateFetcher, WebSocketTransport
from hub_mirror.transport.events import Subscription
from hub_mirror.transport.manager import TransportManager, TransportState
from hub_mirror.transport.normalize import (
    AgentUpdate,
    ConnectionUpdate,
    CounterIncrement,
    NormalizedUpdate,
    TaskUpdate,
)

logger = logging.getLogger(__name__)


class HubMirror:
    """Store, layout, transport and expansion wired into one live mirror."""

    def __init__(
        self,
        *,
        store: EntityStore,
        layout: LayoutEngine,
        manager: TransportManager,
        expansion: DetailExpansionController,
        client: httpx.AsyncClient | None = None,
        context_window_tokens: int = 200_000,
    ) -> None:
        self.store = store
        self.layout = layout
        self.manager = manager
        self.expansion = expansion
        self.context_window_tokens = context_window_tokens
        self._client = client
        self._subscriptions: list[Subscription] = []

    async def start(self) -> None:
        if not self._subscriptions:
            self._subscriptions = [
                self.manager.messages.subscribe(self.apply),
                self.manager.connectivity.subscribe(self.store.set_connected),
            ]
        await self.manager.start()

    async def stop(self) -> None:
        # The manager's final offline transition still reaches the store.
        await self.manager.stop()
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions = []
        self.expansion.unfocus()
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HubMirror:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        _ = (exc_type, exc, tb)
        await self.stop()

    def apply(self, update: NormalizedUpdate) -> None:
        """Merge one normalized update into the store and keep agents laid out."""
        if isinstance(update, AgentUpdate):
            self.store.upsert_agent(update.patch)
            self.layout.place(self.store.agent_ids())
        elif isinstance(update, TaskUpdate):
            self.store.upsert_task(update.patch)
        elif isinstance(update, ConnectionUpdate):
            self.store.upsert_connection(update.patch)
        elif isinstance(update, CounterIncrement):
            self.store.increment_messages(update.amount)
        else:
            logger.warning("hub event=unknown_update kind=%s", type(update).__name__)

    async def focus(self, agent_id: str) -> list[Satellite] | None:
        return await self.expansion.focus(agent_id)

    def unfocus(self) -> None:
        self.expansion.unfocus()

    def drag(self, entity_id: str, x: float, y: float, z: float | None = None) -> LayoutPosition:
        return self.layout.drag(entity_id, x, y, z)

    def reset_layout(self) -> dict[str, LayoutPosition]:
        return self.layout.reset(self.store.agent_ids())

    def agents(self) -> list[Agent]:
        return self.store.agents()

    def tasks(self, *, status: str | None = None, type: str | None = None) -> list[Task]:
        return self.store.tasks(status=status, type=type)

    def connections(self) -> list[Connection]:
        return self.store.connections()

    def position(self, entity_id: str) -> LayoutPosition | None:
        return self.layout.position(entity_id)

    def context_fraction(self, agent_id: str) -> float | None:
        """Share of the configured context window the agent uses, or None if unknown."""
        agent = self.store.get_agent(agent_id)
        if agent is None:
            return None
        return agent.context_fraction(self.context_window_tokens)

    def connected(self) -> bool:
        return self.store.connected

    def transport_state(self) -> TransportState:
        return self.manager.state

    def stats(self) -> HubStats:
        return self.store.stats()


def create_hub(
    settings: Settings | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    websocket_connect: Callable[..., Awaitable[Any]] | None = None,
    position_store: PositionStore | None = None,
    fetch_detail: DetailFetcher | None = None,
) -> HubMirror:
    """Build a `HubMirror` from settings.

    The mirror owns `client` and closes it on `stop()`. Pass a client with a
    mock or ASGI transport in tests.
    """
    settings = settings or get_settings()
    client = client or httpx.AsyncClient(timeout=settings.request_timeout_s)

    if position_store is None:
        position_store = (
            JsonFilePositionStore(settings.layout_store_path)
            if settings.layout_store_path is not None
            else InMemoryPositionStore()
        )

    store = InMemoryEntityStore()
    layout = LayoutEngine(
        store=position_store,
        min_radius=settings.layout_min_radius,
        spacing_factor=settings.layout_spacing_factor,
        padding_x=settings.layout_padding_x,
        padding_y=settings.layout_padding_y,
        passes=settings.layout_passes,
    )

    ws_kwargs: dict[str, Any] = {}
    if websocket_connect is not None:
        ws_kwargs["connect"] = websocket_connect
    primary = WebSocketTransport(
        settings.push_url,
        open_timeout=settings.request_timeout_s,
        heartbeat_timeout_s=settings.heartbeat_timeout_s,
        **ws_kwargs,
    )
    secondary = EventStreamTransport(client, settings.api_url(settings.events_path))
    manager = TransportManager(
        primary=primary,
        secondary=secondary,
        fetch_state=StateFetcher(client, settings.api_url(settings.state_path)),
        backoff=Backoff(
            base_s=settings.backoff_base_s,
            factor=settings.backoff_factor,
            max_s=max(settings.backoff_max_s, settings.backoff_base_s),
        ),
        poll_interval_s=settings.poll_interval_s,
        primary_attempts=settings.primary_attempts,
    )

    expansion = DetailExpansionController(
        store=store,
        layout=layout,
        fetch_detail=fetch_detail or HttpDetailFetcher(client, settings.api_url(settings.detail_path)),
        detail_timeout_s=settings.detail_timeout_s,
        column_gap=settings.expansion_column_gap,
        min_column_gap=settings.expansion_min_column_gap,
        stack_gap=settings.expansion_stack_gap,
    )
    logger.info(
        "hub event=created api=%s push=%s",
        settings.api_base_url,
        settings.push_url,
    )
    return HubMirror(
        store=store,
        layout=layout,
        manager=manager,
        expansion=expansion,
        client=client,
        context_window_tokens=settings.context_window_tokens,
    )
