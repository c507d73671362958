import asyncio
import json

from mcp_tool_gateway.constants import PROTOCOL_VERSION
from mcp_tool_gateway.sse_session_manager import StreamingSessionManager, StreamState


async def never_disconnected():
    return False


def only_session(manager):
    sessions = list(manager.sessions.values())
    assert len(sessions) == 1
    return sessions[0]


def test_handshake_then_heartbeats_until_disconnect():
    manager = StreamingSessionManager(heartbeat_interval=0.01)
    seen = []

    async def disconnect_after_three():
        seen.append(only_session(manager))
        return len(seen) > 3

    async def collect():
        return [event async for event in manager.event_stream(disconnect_after_three, {"client": "pytest"})]

    events = asyncio.run(collect())

    assert [e["event"] for e in events] == ["endpoint", "message", "heartbeat", "heartbeat", "heartbeat"]
    assert events[0]["data"] == "/messages"

    initialized = json.loads(events[1]["data"])
    assert initialized["method"] == "notifications/initialized"
    assert initialized["params"]["protocolVersion"] == PROTOCOL_VERSION

    counts = [json.loads(e["data"])["count"] for e in events[2:]]
    assert counts == [1, 2, 3]
    assert all("timestamp" in json.loads(e["data"]) for e in events[2:])

    session = seen[0]
    assert session.metadata == {"client": "pytest"}
    assert session.state == StreamState.CLOSED
    assert manager.sessions == {}


def test_stop_ends_stream_promptly():
    manager = StreamingSessionManager(heartbeat_interval=60)

    async def scenario():
        stream = manager.event_stream(never_disconnected)
        first = [await stream.__anext__(), await stream.__anext__()]
        session = only_session(manager)
        consumer = asyncio.ensure_future(_drain(stream))
        await asyncio.sleep(0.05)
        await manager.stop()
        rest = await asyncio.wait_for(consumer, timeout=5)
        return first, rest, session

    first, rest, session = asyncio.run(scenario())

    assert [e["event"] for e in first] == ["endpoint", "message"]
    assert rest == []
    assert session.state == StreamState.CLOSED


async def _drain(stream):
    return [event async for event in stream]


def test_failed_write_closes_session_exactly_once():
    manager = StreamingSessionManager(heartbeat_interval=60)

    async def scenario():
        stream = manager.event_stream(never_disconnected)
        await stream.__anext__()
        session = only_session(manager)
        # The response closes the generator when a write to the peer fails
        await stream.aclose()
        return session

    session = asyncio.run(scenario())

    assert session.state == StreamState.CLOSED
    assert manager.close_session(session) is False
    assert manager.sessions == {}


def test_stream_never_started_leaves_no_session():
    manager = StreamingSessionManager(heartbeat_interval=60)

    async def scenario():
        stream = manager.event_stream(never_disconnected)
        assert manager.sessions == {}
        # Client went away before the response began iterating
        await stream.aclose()

    asyncio.run(scenario())

    assert manager.sessions == {}


def test_request_stop_threadsafe_before_any_stream():
    manager = StreamingSessionManager()
    manager.request_stop_threadsafe()
    assert manager.listening is False
