"""Live feed transports, payload normalization and failover."""

from hub_mirror.transport.backoff import Backoff
from hub_mirror.transport.channels import (
    EventStreamTransport,
    PushTransport,
    StateFetcher,
    TransportError,
    WebSocketTransport,
)
from hub_mirror.transport.events import EventChannel, Subscription
from hub_mirror.transport.manager import TransportManager, TransportState
from hub_mirror.transport.normalize import (
    AgentUpdate,
    ConnectionUpdate,
    CounterIncrement,
    NormalizedUpdate,
    PayloadError,
    TaskUpdate,
    decode_frame,
    normalize_payload,
)

__all__ = [
    "AgentUpdate",
    "Backoff",
    "ConnectionUpdate",
    "CounterIncrement",
    "EventChannel",
    "EventStreamTransport",
    "NormalizedUpdate",
    "PayloadError",
    "PushTransport",
    "StateFetcher",
    "Subscription",
    "TaskUpdate",
    "TransportError",
    "TransportManager",
    "TransportState",
    "WebSocketTransport",
    "decode_frame",
    "normalize_payload",
]
