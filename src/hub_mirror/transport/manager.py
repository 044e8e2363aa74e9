"""Transport manager: one logical live feed over push, fallback push and polling.

Beginner terms:
- Cycle: one pass of connection attempts. The primary push transport is
  tried `primary_attempts` times, then the secondary push transport once.
- Polling: when a whole cycle fails, the full state is fetched on a fixed
  interval while the primary is retried in the background after backoff
  delays. A successful primary reconnect cancels polling.
- Handle: the one push transport currently streaming. It is always closed
  before another one is opened, so a lingering handle can never deliver
  duplicates.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from enum import Enum
from typing import Any

from hub_mirror.transport.backoff import Backoff
from hub_mirror.transport.channels import FetchState, PushTransport, TransportError
from hub_mirror.transport.events import EventChannel
from hub_mirror.transport.normalize import NormalizedUpdate, PayloadError, decode_frame, normalize_payload

logger = logging.getLogger(__name__)


class TransportState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED_PRIMARY = "connected-primary"
    CONNECTED_FALLBACK = "connected-fallback"
    POLLING = "polling"
    BACKOFF_WAIT = "backoff-wait"


class TransportManager:
    """Keep a live feed open and publish normalized updates.

    Subscribe to `messages` for `NormalizedUpdate` values, `connectivity`
    for connected-flag changes and `transitions` for state changes. Transport
    and payload errors are absorbed here and only show up through state.
    """

    def __init__(
        self,
        *,
        primary: PushTransport,
        secondary: PushTransport | None,
        fetch_state: FetchState,
        backoff: Backoff | None = None,
        poll_interval_s: float = 5.0,
        primary_attempts: int = 2,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if primary_attempts < 1:
            raise ValueError("primary_attempts must be >= 1")
        if poll_interval_s <= 0:
            raise ValueError("poll_interval_s must be positive")
        self.primary = primary
        self.secondary = secondary
        self.poll_interval_s = poll_interval_s
        self.primary_attempts = primary_attempts
        self.backoff = backoff or Backoff()
        self.messages: EventChannel[NormalizedUpdate] = EventChannel("messages")
        self.connectivity: EventChannel[bool] = EventChannel("connectivity")
        self.transitions: EventChannel[TransportState] = EventChannel("transitions")
        self._fetch_state = fetch_state
        self._sleep = sleep
        self._state = TransportState.DISCONNECTED
        self._connected = False
        self._attempts = 0
        self._active: PushTransport | None = None
        self._task: asyncio.Task[None] | None = None
        self._poll_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def attempts(self) -> int:
        """Push connect attempts made since `start`."""
        return self._attempts

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._attempts = 0
        self._task = asyncio.create_task(self._run(), name="hub-mirror-transport")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:  # noqa: BLE001
                logger.exception("transport event=loop_failed")
        await self._cancel_polling()
        await self._teardown()
        self._set_connected(False)
        self._set_state(TransportState.DISCONNECTED)

    async def refresh(self) -> bool:
        """Fetch and publish the full state once. Returns False on failure."""
        return await self._fetch_once()

    async def _run(self) -> None:
        # The UI should not stay empty while a socket negotiates.
        await self._fetch_once()
        while True:
            self._set_state(TransportState.CONNECTING)
            transport = await self._connect_cycle()
            if transport is None:
                transport = await self._poll_until_primary()
            await self._stream(transport)
            await self._teardown()
            self._set_connected(False)
            self._set_state(TransportState.BACKOFF_WAIT)
            await self._sleep(self.backoff.next_delay())

    async def _connect_cycle(self) -> PushTransport | None:
        for _ in range(self.primary_attempts):
            if await self._open(self.primary):
                self._set_state(TransportState.CONNECTED_PRIMARY)
                return self.primary
        if self.secondary is not None and await self._open(self.secondary):
            self._set_state(TransportState.CONNECTED_FALLBACK)
            return self.secondary
        return None

    async def _poll_until_primary(self) -> PushTransport:
        self._set_state(TransportState.POLLING)
        self._poll_task = asyncio.create_task(self._poll_loop(), name="hub-mirror-poll")
        try:
            while True:
                await self._sleep(self.backoff.next_delay())
                if await self._open(self.primary):
                    break
        finally:
            await self._cancel_polling()
        self._set_state(TransportState.CONNECTED_PRIMARY)
        return self.primary

    async def _poll_loop(self) -> None:
        while True:
            await self._fetch_once()
            await asyncio.sleep(self.poll_interval_s)

    async def _cancel_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _open(self, transport: PushTransport) -> bool:
        await self._teardown()
        self._attempts += 1
        try:
            await transport.open()
        except TransportError as exc:
            logger.warning(
                "transport event=open_failed name=%s attempt=%s error=%s",
                transport.name,
                self._attempts,
                exc,
            )
            return False
        self._active = transport
        self.backoff.reset()
        self._set_connected(True)
        return True

    async def _teardown(self) -> None:
        active, self._active = self._active, None
        if active is not None:
            await active.close()

    async def _stream(self, transport: PushTransport) -> None:
        try:
            async for raw in transport.messages():
                try:
                    payload = decode_frame(raw)
                except PayloadError as exc:
                    logger.warning("transport event=payload_dropped name=%s reason=%s", transport.name, exc)
                    continue
                self._dispatch(payload)
        except TransportError as exc:
            logger.warning("transport event=stream_failed name=%s error=%s", transport.name, exc)
        except Exception:  # noqa: BLE001
            logger.exception("transport event=stream_failed name=%s", transport.name)
        else:
            logger.info("transport event=stream_ended name=%s", transport.name)

    async def _fetch_once(self) -> bool:
        try:
            payload = await self._fetch_state()
        except TransportError as exc:
            logger.warning("transport event=fetch_failed error=%s", exc)
            if self._state is TransportState.POLLING:
                self._set_connected(False)
            return False
        self._dispatch(payload)
        if self._state is TransportState.POLLING:
            self._set_connected(True)
        return True

    def _dispatch(self, payload: Any) -> None:
        try:
            updates = normalize_payload(payload)
        except PayloadError as exc:
            logger.warning("transport event=payload_dropped reason=%s", exc)
            return
        except Exception:  # noqa: BLE001
            logger.exception("transport event=payload_dropped")
            return
        for update in updates:
            self.messages.emit(update)

    def _set_state(self, state: TransportState) -> None:
        if state is self._state:
            return
        logger.info("transport event=state from=%s to=%s", self._state.value, state.value)
        self._state = state
        self.transitions.emit(state)

    def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        self.connectivity.emit(connected)
