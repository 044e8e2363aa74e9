from __future__ import annotations

import asyncio
import json

import pytest

from hub_mirror.transport import (
    AgentUpdate,
    Backoff,
    TransportManager,
    TransportState,
    WebSocketTransport,
)

from conftest import CountingFetch, FakeSocket, ScriptedTransport, wait_until


def make_manager(primary, secondary, fetch, **kwargs) -> TransportManager:
    kwargs.setdefault("backoff", Backoff(base_s=0.01, factor=1.5, max_s=0.05))
    kwargs.setdefault("poll_interval_s", 0.02)
    return TransportManager(primary=primary, secondary=secondary, fetch_state=fetch, **kwargs)


def test_backoff_grows_to_ceiling_and_resets() -> None:
    backoff = Backoff(base_s=2.0, factor=1.5, max_s=30.0)

    delays = [backoff.next_delay() for _ in range(12)]

    assert delays[:3] == [2.0, 3.0, 4.5]
    assert all(later >= earlier for earlier, later in zip(delays, delays[1:]))
    assert max(delays) == 30.0
    backoff.reset()
    assert backoff.next_delay() == 2.0


def test_backoff_rejects_bad_settings() -> None:
    with pytest.raises(ValueError):
        Backoff(base_s=0.0)
    with pytest.raises(ValueError):
        Backoff(base_s=5.0, max_s=1.0)


@pytest.mark.asyncio
async def test_start_fetches_state_once_immediately() -> None:
    fetch = CountingFetch({"agents": [{"id": "main"}]})
    manager = make_manager(ScriptedTransport("ws", default=True), None, fetch)
    received = []
    manager.messages.subscribe(received.append)

    await manager.start()
    await wait_until(lambda: manager.state is TransportState.CONNECTED_PRIMARY)
    await manager.stop()

    assert fetch.calls == 1
    assert isinstance(received[0], AgentUpdate)
    assert received[0].patch.id == "main"


@pytest.mark.asyncio
async def test_fails_over_to_secondary_on_third_attempt() -> None:
    primary = ScriptedTransport("ws", [False, False])
    secondary = ScriptedTransport("sse", [True])
    manager = make_manager(primary, secondary, CountingFetch())
    states: list[TransportState] = []
    manager.transitions.subscribe(states.append)

    await manager.start()
    await wait_until(lambda: manager.state is TransportState.CONNECTED_FALLBACK)

    assert primary.open_calls == 2
    assert secondary.open_calls == 1
    assert manager.attempts == 3
    assert manager.connected is True
    assert TransportState.POLLING not in states
    await manager.stop()


@pytest.mark.asyncio
async def test_polls_when_both_push_transports_fail() -> None:
    fetch = CountingFetch({"agents": [{"id": "main"}]})
    manager = make_manager(
        ScriptedTransport("ws"),
        ScriptedTransport("sse"),
        fetch,
        backoff=Backoff(base_s=5.0, max_s=5.0),
        poll_interval_s=0.02,
    )

    await manager.start()
    await wait_until(lambda: manager.state is TransportState.POLLING)
    # One startup fetch, then polling fetches within one interval.
    await wait_until(lambda: fetch.calls >= 3, timeout=0.5)

    assert manager.connected is True
    await manager.stop()
    assert manager.state is TransportState.DISCONNECTED
    assert manager.connected is False


@pytest.mark.asyncio
async def test_polling_failures_report_offline() -> None:
    manager = make_manager(
        ScriptedTransport("ws"),
        ScriptedTransport("sse"),
        CountingFetch(fail=True),
        backoff=Backoff(base_s=5.0, max_s=5.0),
    )
    changes: list[bool] = []
    manager.connectivity.subscribe(changes.append)

    await manager.start()
    await wait_until(lambda: manager.state is TransportState.POLLING)
    await asyncio.sleep(0.05)

    assert manager.connected is False
    assert changes == []
    await manager.stop()


@pytest.mark.asyncio
async def test_primary_reconnect_cancels_polling() -> None:
    primary = ScriptedTransport("ws", [False, False, False, True])
    fetch = CountingFetch()
    manager = make_manager(primary, ScriptedTransport("sse"), fetch)
    states: list[TransportState] = []
    manager.transitions.subscribe(states.append)

    await manager.start()
    await wait_until(lambda: manager.state is TransportState.CONNECTED_PRIMARY)
    settled = fetch.calls
    await asyncio.sleep(0.1)

    assert TransportState.POLLING in states
    assert fetch.calls == settled
    await manager.stop()


@pytest.mark.asyncio
async def test_backoff_delays_are_bounded_while_primary_keeps_failing() -> None:
    delays: list[float] = []

    async def record_sleep(seconds: float) -> None:
        delays.append(seconds)
        await asyncio.sleep(0)

    manager = make_manager(
        ScriptedTransport("ws"),
        ScriptedTransport("sse"),
        CountingFetch(),
        backoff=Backoff(base_s=2.0, factor=1.5, max_s=30.0),
        poll_interval_s=1.0,
        sleep=record_sleep,
    )

    await manager.start()
    await wait_until(lambda: len(delays) >= 8)
    await manager.stop()

    assert all(delay <= 30.0 for delay in delays)
    assert all(later >= earlier for earlier, later in zip(delays, delays[1:]))


@pytest.mark.asyncio
async def test_malformed_frames_are_dropped_without_breaking_the_link() -> None:
    frames = [
        "{not json",
        json.dumps({"type": "bogus"}),
        json.dumps({"type": "agent_update", "agent": {"id": "main", "status": "active"}}),
    ]
    primary = ScriptedTransport("ws", default=True, frames=frames)
    manager = make_manager(primary, None, CountingFetch())
    received = []
    manager.messages.subscribe(received.append)

    await manager.start()
    await wait_until(lambda: len(received) == 1)

    assert received[0].patch.id == "main"
    assert manager.state is TransportState.CONNECTED_PRIMARY
    assert primary.open_calls == 1
    await manager.stop()


@pytest.mark.asyncio
async def test_frames_with_non_string_type_are_dropped() -> None:
    frames = [
        json.dumps({"type": ["x"]}),
        json.dumps({"type": {"kind": "agent_update"}}),
        json.dumps({"type": "agent_update", "agent": {"id": "main"}}),
    ]
    primary = ScriptedTransport("ws", default=True, frames=frames)
    manager = make_manager(primary, None, CountingFetch())
    received = []
    manager.messages.subscribe(received.append)

    await manager.start()
    await wait_until(lambda: len(received) == 1)

    assert received[0].patch.id == "main"
    assert manager.running is True
    assert manager.state is TransportState.CONNECTED_PRIMARY
    assert primary.open_calls == 1
    await manager.stop()


@pytest.mark.asyncio
async def test_undecodable_binary_frame_is_dropped() -> None:
    socket = FakeSocket(
        [b"\xff\xfe", json.dumps({"type": "agent_update", "agent": {"id": "main"}}).encode()],
        hang=True,
    )

    async def connect(url: str, **kwargs):
        return socket

    manager = make_manager(WebSocketTransport("ws://hub.test:18789", connect=connect), None, CountingFetch())
    received = []
    manager.messages.subscribe(received.append)

    await manager.start()
    await wait_until(lambda: len(received) == 1)

    assert received[0].patch.id == "main"
    assert manager.running is True
    assert manager.state is TransportState.CONNECTED_PRIMARY
    await manager.stop()
    assert socket.closed is True


class BrokenStreamTransport(ScriptedTransport):
    async def messages(self):
        for frame in self.frames:
            yield frame
        raise RuntimeError("decoder bug")


@pytest.mark.asyncio
async def test_unexpected_stream_error_reconnects() -> None:
    primary = BrokenStreamTransport("ws", default=True)
    manager = make_manager(primary, None, CountingFetch())

    await manager.start()
    await wait_until(lambda: primary.open_calls >= 2)

    assert manager.running is True
    await manager.stop()
    assert manager.state is TransportState.DISCONNECTED


@pytest.mark.asyncio
async def test_stop_after_loop_failure_does_not_raise() -> None:
    async def broken_fetch():
        raise RuntimeError("state decoder bug")

    manager = make_manager(ScriptedTransport("ws"), None, broken_fetch)

    await manager.start()
    await wait_until(lambda: not manager.running)
    await manager.stop()

    assert manager.state is TransportState.DISCONNECTED
    assert manager.connected is False


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_stop_delivery() -> None:
    frames = [json.dumps({"type": "agent_update", "agent": {"id": n}}) for n in ("a", "b")]
    manager = make_manager(ScriptedTransport("ws", default=True, frames=frames), None, CountingFetch())
    received = []

    def explode(_update) -> None:
        raise RuntimeError("renderer bug")

    manager.messages.subscribe(explode)
    manager.messages.subscribe(received.append)

    await manager.start()
    await wait_until(lambda: len(received) == 2)
    await manager.stop()

    assert [u.patch.id for u in received] == ["a", "b"]


@pytest.mark.asyncio
async def test_stream_end_tears_down_before_reconnecting() -> None:
    primary = ScriptedTransport("ws", default=True, frames=[json.dumps({"type": "tick"})], hold=False)
    manager = make_manager(primary, None, CountingFetch())
    states: list[TransportState] = []
    manager.transitions.subscribe(states.append)

    await manager.start()
    await wait_until(lambda: primary.open_calls >= 3)
    await manager.stop()

    assert primary.opened_while_active is False
    assert primary.close_calls >= primary.open_calls
    assert TransportState.BACKOFF_WAIT in states


@pytest.mark.asyncio
async def test_stop_removes_the_active_handle() -> None:
    primary = ScriptedTransport("ws", default=True)
    manager = make_manager(primary, None, CountingFetch())

    await manager.start()
    await wait_until(lambda: manager.connected)
    await manager.stop()

    assert primary.is_active is False
    assert manager.running is False
    assert manager.state is TransportState.DISCONNECTED
