"""
SSE Session Manager
Manages legacy Server-Sent-Events connections: endpoint handshake, initialized
notification, then periodic heartbeats until the peer goes away or the
listener stops.
"""
import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Any, AsyncIterator, Awaitable, Callable

from .constants import PROTOCOL_VERSION, SERVER_INFO, DEFAULT_HEARTBEAT_INTERVAL

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    CONNECTING = "connecting"
    ESTABLISHED = "established"
    CLOSED = "closed"


@dataclass
class StreamingSession:
    """Represents one SSE connection."""
    session_id: str
    created_at: datetime
    state: StreamState = StreamState.CONNECTING
    heartbeat_count: int = 0
    closed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def close(self) -> bool:
        """Move to CLOSED. Returns False if the session was already closed."""
        if self.state == StreamState.CLOSED:
            return False
        self.state = StreamState.CLOSED
        self.closed_at = datetime.now()
        return True


class StreamingSessionManager:
    """Manages SSE sessions for the gateway."""

    def __init__(self, heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL, message_endpoint: str = "/messages"):
        self.heartbeat_interval = heartbeat_interval
        self.message_endpoint = message_endpoint
        self.sessions: Dict[str, StreamingSession] = {}
        self.listening = True
        self._stop_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _bind_loop(self) -> asyncio.Event:
        loop = asyncio.get_running_loop()
        if self._stop_event is None or self._loop is not loop:
            self._loop = loop
            self._stop_event = asyncio.Event()
            if not self.listening:
                self._stop_event.set()
        return self._stop_event

    def open_session(self, metadata: Optional[Dict[str, Any]] = None) -> StreamingSession:
        session = StreamingSession(
            session_id=str(uuid.uuid4()),
            created_at=datetime.now(),
            metadata=metadata or {}
        )
        self.sessions[session.session_id] = session
        logger.info(f"Created SSE session: {session.session_id}")
        return session

    def close_session(self, session: StreamingSession) -> bool:
        if not session.close():
            return False
        self.sessions.pop(session.session_id, None)
        logger.info(f"SSE session {session.session_id} closed after {session.heartbeat_count} heartbeats")
        return True

    async def stop(self) -> None:
        """Stop all heartbeat loops from inside the serving event loop."""
        self.listening = False
        self._bind_loop().set()

    def request_stop_threadsafe(self) -> None:
        """Stop all heartbeat loops from another thread (used by the server lifecycle)."""
        self.listening = False
        loop, event = self._loop, self._stop_event
        if loop is not None and event is not None and not loop.is_closed():
            try:
                loop.call_soon_threadsafe(event.set)
            except RuntimeError:
                # Loop closed between the check and the call
                pass

    def initialized_notification(self) -> Dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "method": "notifications/initialized",
            "params": {
                "protocolVersion": PROTOCOL_VERSION,
                "serverInfo": SERVER_INFO
            }
        }

    async def _stop_requested(self, timeout: float) -> bool:
        stop_event = self._bind_loop()
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def event_stream(self, is_disconnected: Callable[[], Awaitable[bool]],
                           metadata: Optional[Dict[str, Any]] = None) -> AsyncIterator[Dict[str, str]]:
        """
        Generate SSE events for a new session.

        The session is registered only once the response starts iterating,
        and is closed exactly once whichever way the loop ends: peer
        disconnect, failed write (generator closed by the response),
        listener stop, or an unexpected exception.
        """
        self._bind_loop()
        session = self.open_session(metadata)
        try:
            session.state = StreamState.ESTABLISHED
            yield {"event": "endpoint", "data": self.message_endpoint}
            yield {"event": "message", "data": json.dumps(self.initialized_notification())}
            logger.info(f"SSE session {session.session_id} established, streaming heartbeats")

            while self.listening:
                if await self._stop_requested(self.heartbeat_interval):
                    logger.info(f"SSE session {session.session_id} ending: listener stopped")
                    break
                if await is_disconnected():
                    logger.info(f"SSE session {session.session_id} ending: client disconnected")
                    break

                session.heartbeat_count += 1
                yield {
                    "event": "heartbeat",
                    "data": json.dumps({
                        "count": session.heartbeat_count,
                        "timestamp": datetime.now().isoformat()
                    })
                }

        except asyncio.CancelledError:
            logger.info(f"SSE session {session.session_id} cancelled")
            raise
        except Exception as e:
            logger.error(f"Error in SSE event generator for session {session.session_id}: {e}")
        finally:
            self.close_session(session)
