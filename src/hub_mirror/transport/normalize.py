"""Translate transport payloads into normalized updates.

Terms used in this file:
- Frame: one decoded JSON value from a push transport or a full-state fetch.
- Normalized update: the transport-independent union the rest of the system
  consumes. No transport-specific shape is allowed past this module.
- State bundle: an object holding `agents`, `sessions`/`tasks` and
  `connections` arrays (full-state fetch or a batched push frame).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from hub_mirror.store.models import TASK_STATUSES, AgentPatch, ConnectionPatch, TaskPatch

logger = logging.getLogger(__name__)


class PayloadError(ValueError):
    """Frame is malformed or of an unrecognised shape."""


@dataclass(frozen=True)
class AgentUpdate:
    patch: AgentPatch


@dataclass(frozen=True)
class TaskUpdate:
    patch: TaskPatch


@dataclass(frozen=True)
class ConnectionUpdate:
    patch: ConnectionPatch


@dataclass(frozen=True)
class CounterIncrement:
    amount: int = 1


NormalizedUpdate = AgentUpdate | TaskUpdate | ConnectionUpdate | CounterIncrement

# Frames that carry no entity data (stream greeting, gateway heartbeat).
_NO_OP_TYPES = frozenset({"connected", "tick", "heartbeat", "pong"})
_TASK_FRAME_TYPES = frozenset({"session_update", "task_update"})
_TASK_TYPES = frozenset({"cron", "spawn"})


def decode_frame(raw: str | bytes) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise PayloadError("frame is not valid JSON") from exc


def normalize_payload(payload: Any) -> list[NormalizedUpdate]:
    """Return the updates carried by one frame, in frame order.

    Raises PayloadError for frames that cannot be interpreted at all.
    Individual records without a usable id are dropped and logged so that
    one bad record does not discard its siblings.
    """
    if isinstance(payload, list):
        return _records(payload, _classified)
    if not isinstance(payload, dict):
        raise PayloadError(f"unsupported payload shape: {type(payload).__name__}")

    kind = payload.get("type")
    if kind is None:
        if _is_state_bundle(payload):
            return _state_bundle(payload)
        raise PayloadError("payload has no type discriminator")
    if not isinstance(kind, str):
        raise PayloadError(f"payload type must be a string, got {type(kind).__name__}")
    if kind in _NO_OP_TYPES:
        return []
    if kind == "update":
        return _state_bundle(payload)
    if kind == "agent_update":
        return _collect(payload, ("agent", "agents"), _agent)
    if kind in _TASK_FRAME_TYPES:
        return _collect(payload, ("session", "sessions", "task", "tasks"), _task)
    if kind == "connection_update":
        return _collect(payload, ("connection", "connections"), _connection)
    if kind == "message_event":
        return [CounterIncrement(amount=_increment_amount(payload))]
    raise PayloadError(f"unrecognised payload type: {kind!r}")


def _is_state_bundle(payload: dict[str, Any]) -> bool:
    return any(key in payload for key in ("agents", "sessions", "tasks", "connections"))


def _state_bundle(payload: dict[str, Any]) -> list[NormalizedUpdate]:
    updates: list[NormalizedUpdate] = []
    for key, builder in (
        ("agents", _agent),
        ("sessions", _task),
        ("tasks", _task),
        ("connections", _connection),
    ):
        items = payload.get(key)
        if items is None:
            continue
        if not isinstance(items, list):
            raise PayloadError(f"state bundle field {key!r} must be an array")
        updates.extend(_records(items, builder))
    return updates


def _collect(
    payload: dict[str, Any],
    keys: tuple[str, ...],
    builder: Callable[[Any], NormalizedUpdate],
) -> list[NormalizedUpdate]:
    items: list[Any] = []
    found = False
    for key in keys:
        if key not in payload:
            continue
        found = True
        value = payload[key]
        items.extend(value if isinstance(value, list) else [value])
    if not found:
        # Fields sent inline next to the discriminator.
        items = [{k: v for k, v in payload.items() if k != "type"}]
    return _records(items, builder)


def _records(
    items: Iterable[Any],
    builder: Callable[[Any], NormalizedUpdate],
) -> list[NormalizedUpdate]:
    updates: list[NormalizedUpdate] = []
    for item in items:
        try:
            updates.append(builder(item))
        except (TypeError, ValueError) as exc:
            logger.warning("normalize event=record_dropped reason=%s", _first_line(exc))
    return updates


def _agent(record: Any) -> AgentUpdate:
    return AgentUpdate(patch=AgentPatch.from_partial(record))


def _task(record: Any) -> TaskUpdate:
    return TaskUpdate(patch=TaskPatch.from_partial(record))


def _connection(record: Any) -> ConnectionUpdate:
    return ConnectionUpdate(patch=ConnectionPatch.from_partial(record))


def _classified(record: Any) -> NormalizedUpdate:
    """Pick the entity kind of a record from a bare full-state array."""
    if not isinstance(record, dict):
        raise ValueError(f"record must be an object, got {type(record).__name__}")
    if "from" in record or "to" in record:
        return _connection(record)
    if (
        "startTime" in record
        or "elapsed" in record
        or _is_one_of(record.get("type"), _TASK_TYPES)
        or _is_one_of(record.get("status"), TASK_STATUSES)
    ):
        return _task(record)
    return _agent(record)


def _is_one_of(value: Any, choices: frozenset[str]) -> bool:
    return isinstance(value, str) and value in choices


def _increment_amount(payload: dict[str, Any]) -> int:
    amount = payload.get("count", 1)
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise PayloadError(f"message_event count must be a non-negative integer, got {amount!r}")
    return amount


def _first_line(exc: Exception) -> str:
    return str(exc).splitlines()[0] if str(exc) else type(exc).__name__
