import logging
import socket
import threading

import httpx
import pytest

from conftest import RecordingExecutor, echo_definition

from mcp_tool_gateway.config import ConfigManager, GatewayConfig
from mcp_tool_gateway.server import (
    GatewayServer,
    ServerAlreadyRunningError,
    ServerRegistry,
    ServerState,
    bind_listener,
)


def config_manager(**overrides) -> ConfigManager:
    values = dict(port=0, tools=[echo_definition()], heartbeat_interval_seconds=0.1, graceful_shutdown_seconds=1)
    values.update(overrides)
    return ConfigManager(GatewayConfig(**values))


@pytest.fixture
def registry():
    registry = ServerRegistry()
    yield registry
    registry.stop_all()


def test_stop_without_server_logs_and_returns(caplog):
    server = GatewayServer(ConfigManager(GatewayConfig(port=2175)))

    with caplog.at_level(logging.INFO, logger="mcp_tool_gateway.server"):
        assert server.stop() is False

    assert server.state == ServerState.STOPPED
    assert any("No server running on port 2175" in record.getMessage() for record in caplog.records)


def test_registry_stop_unknown_port(registry, caplog):
    with caplog.at_level(logging.INFO, logger="mcp_tool_gateway.server"):
        assert registry.stop(2175) is False

    assert any("No server running on port 2175" in record.getMessage() for record in caplog.records)


def test_start_serve_and_stop_twice():
    executor = RecordingExecutor()
    server = GatewayServer(config_manager(), executor)

    session = server.start()
    try:
        assert server.state == ServerState.LISTENING
        assert session.port != 0

        with httpx.Client(base_url=session.url, trust_env=False, timeout=5) as http:
            listing = http.get("/mcp")
            called = http.post("/mcp/call-tool", json={"name": "Echo", "arguments": {"text": "over the wire"}})

        assert [tool["name"] for tool in listing.json()["tools"]] == ["Echo"]
        assert called.json()["content"][0]["text"] == "over the wire"
        assert executor.calls[0]["arguments"] == {"text": "over the wire"}
    finally:
        assert server.stop() is True

    assert server.stop() is False
    assert server.state == ServerState.STOPPED
    assert not session.thread.is_alive()


def test_start_while_running_is_rejected():
    server = GatewayServer(config_manager(), RecordingExecutor())
    server.start()
    try:
        with pytest.raises(ServerAlreadyRunningError):
            server.start()
    finally:
        server.stop()


def test_stop_ends_open_sse_stream():
    server = GatewayServer(config_manager(), RecordingExecutor())
    session = server.start()
    events = []

    def consume():
        with httpx.Client(base_url=session.url, trust_env=False, timeout=10) as http:
            with http.stream("GET", "/sse") as response:
                for line in response.iter_lines():
                    if line.startswith("event:"):
                        events.append(line.split(":", 1)[1].strip())

    reader = threading.Thread(target=consume, daemon=True)
    reader.start()
    pause = threading.Event()
    for _ in range(50):
        if "heartbeat" in events:
            break
        pause.wait(0.1)

    server.stop()
    reader.join(10)

    assert events[:2] == ["endpoint", "message"]
    assert "heartbeat" in events
    assert not reader.is_alive()
    assert session.mcp_gateway.stream_manager.sessions == {}


def test_registry_refuses_second_server_on_same_port(registry):
    first = registry.start(config_manager(), RecordingExecutor())
    port = first.port

    with pytest.raises(ServerAlreadyRunningError):
        registry.start(config_manager(port=port), RecordingExecutor())

    assert registry.get(port) is first
    assert first.is_running


def test_registry_replaces_server_when_asked(registry):
    first = registry.start(config_manager(), RecordingExecutor())
    port = first.port

    second = registry.start(config_manager(port=port), RecordingExecutor(), stop_existing=True)

    assert first.state == ServerState.STOPPED
    assert second.is_running
    assert second.port == port
    assert registry.get(port) is second


def _occupy_port():
    holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    holder.bind(("127.0.0.1", 0))
    holder.listen(1)
    return holder, holder.getsockname()[1]


def test_bind_listener_gives_up_after_attempts(caplog):
    holder, port = _occupy_port()
    try:
        with caplog.at_level(logging.WARNING, logger="mcp_tool_gateway.server"):
            with pytest.raises(OSError):
                bind_listener("127.0.0.1", port, attempts=2, delay_seconds=0.01)
    finally:
        holder.close()

    assert any("retrying" in record.getMessage() for record in caplog.records)


def test_bind_listener_succeeds_once_port_is_released():
    holder, port = _occupy_port()
    threading.Timer(0.2, holder.close).start()

    listener = bind_listener("127.0.0.1", port, attempts=20, delay_seconds=0.1)
    try:
        assert listener.getsockname()[1] == port
    finally:
        listener.close()
