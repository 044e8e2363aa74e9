"""Typed subscription channels used to publish transport events."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    """Handle returned by `EventChannel.subscribe`; closing it is idempotent."""

    def __init__(self, detach: Callable[[], None]) -> None:
        self._detach: Callable[[], None] | None = detach

    @property
    def active(self) -> bool:
        return self._detach is not None

    def close(self) -> None:
        if self._detach is not None:
            self._detach()
            self._detach = None

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        _ = (exc_type, exc, tb)
        self.close()


class EventChannel(Generic[T]):
    """Synchronous fan-out to subscribers, in subscription order.

    A failing subscriber is logged and skipped so one bad consumer cannot
    stall delivery to the others or kill the transport loop.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Callable[[T], None]] = []

    def __len__(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: Callable[[T], None]) -> Subscription:
        self._handlers.append(handler)
        return Subscription(lambda: self._remove(handler))

    def emit(self, value: T) -> None:
        for handler in list(self._handlers):
            try:
                handler(value)
            except Exception:  # noqa: BLE001
                logger.exception("events event=subscriber_failed channel=%s", self.name)

    def clear(self) -> None:
        self._handlers.clear()

    def _remove(self, handler: Callable[[T], None]) -> None:
        try:
            self._handlers.remove(handler)
        except ValueError:
            pass
