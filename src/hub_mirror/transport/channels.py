"""Concrete transports: WebSocket push, server-sent-event push and state fetch.

Beginner terms:
- Push transport: the server sends frames whenever something changes. We
  open it once and iterate raw text frames until it closes.
- Heartbeat: the gateway sends a `tick` frame at a fixed interval. Silence
  for longer than the heartbeat timeout means the link is dead even if the
  socket has not noticed yet.
- SSE (server-sent events): plain HTTP response that never ends; each event
  is one or more `data:` lines followed by a blank line.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Protocol

import httpx
from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import ConnectionClosedOK, WebSocketException

logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """Transport could not open, or failed while streaming."""


class PushTransport(Protocol):
    name: str

    async def open(self) -> None: ...

    def messages(self) -> AsyncIterator[str | bytes]: ...

    async def close(self) -> None: ...


FetchState = Callable[[], Awaitable[Any]]


class WebSocketTransport:
    """Primary push transport over a WebSocket."""

    name = "websocket"

    def __init__(
        self,
        url: str,
        *,
        open_timeout: float = 10.0,
        heartbeat_timeout_s: float = 65.0,
        connect: Callable[..., Awaitable[Any]] = websocket_connect,
    ) -> None:
        self.url = url
        self.open_timeout = open_timeout
        self.heartbeat_timeout_s = heartbeat_timeout_s
        self._connect = connect
        self._ws: Any | None = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    async def open(self) -> None:
        await self.close()
        try:
            self._ws = await self._connect(self.url, open_timeout=self.open_timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise TransportError(f"websocket open failed: {exc}") from exc
        logger.info("transport event=open name=%s url=%s", self.name, self.url)

    async def messages(self) -> AsyncIterator[str | bytes]:
        if self._ws is None:
            raise TransportError("websocket is not open")
        ws = self._ws
        while True:
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=self._recv_timeout)
            except asyncio.TimeoutError as exc:
                raise TransportError(
                    f"no frame within heartbeat timeout {self.heartbeat_timeout_s}s"
                ) from exc
            except ConnectionClosedOK:
                logger.info("transport event=closed_by_peer name=%s", self.name)
                return
            except WebSocketException as exc:
                raise TransportError(f"websocket stream failed: {exc}") from exc
            # Binary frames are left for decode_frame.
            yield raw

    @property
    def _recv_timeout(self) -> float | None:
        return self.heartbeat_timeout_s if self.heartbeat_timeout_s > 0 else None

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except (OSError, WebSocketException) as exc:
            logger.debug("transport event=close_failed name=%s error=%s", self.name, exc)


class EventStreamTransport:
    """Fallback push transport over server-sent events."""

    name = "event-stream"

    def __init__(self, client: httpx.AsyncClient, url: str) -> None:
        self.client = client
        self.url = url
        self._response: httpx.Response | None = None

    @property
    def is_open(self) -> bool:
        return self._response is not None

    async def open(self) -> None:
        await self.close()
        request = self.client.build_request(
            "GET",
            self.url,
            headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
            timeout=httpx.Timeout(10.0, read=None),
        )
        try:
            response = await self.client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise TransportError(f"event stream open failed: {exc}") from exc
        if response.status_code != 200:
            await response.aclose()
            raise TransportError(f"event stream open failed: HTTP {response.status_code}")
        self._response = response
        logger.info("transport event=open name=%s url=%s", self.name, self.url)

    async def messages(self) -> AsyncIterator[str]:
        if self._response is None:
            raise TransportError("event stream is not open")
        data: list[str] = []
        try:
            async for line in self._response.aiter_lines():
                if not line:
                    if data:
                        yield "\n".join(data)
                        data = []
                    continue
                if line.startswith(":"):
                    continue
                field, _, value = line.partition(":")
                if field == "data":
                    data.append(value[1:] if value.startswith(" ") else value)
        except httpx.HTTPError as exc:
            raise TransportError(f"event stream failed: {exc}") from exc
        if data:
            yield "\n".join(data)
        logger.info("transport event=closed_by_peer name=%s", self.name)

    async def close(self) -> None:
        response, self._response = self._response, None
        if response is not None:
            await response.aclose()


class StateFetcher:
    """Full-state snapshot over one HTTP GET."""

    def __init__(self, client: httpx.AsyncClient, url: str) -> None:
        self.client = client
        self.url = url

    async def __call__(self) -> Any:
        try:
            response = await self.client.get(self.url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise TransportError(f"state fetch failed: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError("state fetch returned a non-JSON body") from exc
