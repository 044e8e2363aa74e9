"""Reconnect delay policy."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Backoff:
    """Multiplicative backoff with a ceiling, reset on every successful connect.

    Delays are non-decreasing between resets and never exceed `max_s`.
    """

    base_s: float = 2.0
    factor: float = 1.5
    max_s: float = 30.0
    _next_s: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.base_s <= 0:
            raise ValueError("base_s must be positive")
        if self.factor < 1.0:
            raise ValueError("factor must be >= 1.0")
        if self.max_s < self.base_s:
            raise ValueError("max_s must be >= base_s")
        self._next_s = self.base_s

    @property
    def peek(self) -> float:
        return self._next_s

    def next_delay(self) -> float:
        delay = self._next_s
        self._next_s = min(self._next_s * self.factor, self.max_s)
        return delay

    def reset(self) -> None:
        self._next_s = self.base_s
