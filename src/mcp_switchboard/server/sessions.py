"""
SSE session registry.

Each ``GET /sse`` connection owns a session: an id and a bounded outbound
channel. Requests POSTed for a session are processed by the protocol handler
and the serialized response is pushed into that session's channel only, so
one session never observes another's traffic.
"""
import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from ..exceptions import MCPNotFoundError
from .handler import McpServerHandler

logger = structlog.get_logger(__name__)


@dataclass
class Session:
    id: str
    channel: asyncio.Queue[str]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    closed: asyncio.Event = field(default_factory=asyncio.Event)

    async def next_event(self, timeout: float) -> str | None:
        """
        Waits for the next outbound message. Returns None once the session is closed
        and "" when ``timeout`` elapses with nothing to send (the caller writes a keepalive).
        """
        if self.closed.is_set() and self.channel.empty():
            return None
        get_task = asyncio.ensure_future(self.channel.get())
        closed_task = asyncio.ensure_future(self.closed.wait())
        try:
            done, _ = await asyncio.wait({get_task, closed_task}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed_task.cancel()
            if not get_task.done():
                get_task.cancel()
        if get_task in done:
            return get_task.result()
        if closed_task in done:
            return None
        return ""

    async def deliver(self, frame: str) -> bool:
        """
        Queues an outbound message, waiting while the channel is full. Returns False when
        the session closes first; the message is then dropped.
        """
        if self.closed.is_set():
            return False
        put_task = asyncio.ensure_future(self.channel.put(frame))
        closed_task = asyncio.ensure_future(self.closed.wait())
        try:
            await asyncio.wait({put_task, closed_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed_task.cancel()
            if not put_task.done():
                put_task.cancel()
        return put_task.done() and not put_task.cancelled()


class SseSessionRegistry:
    def __init__(self, handler: McpServerHandler, queue_size: int = 100):
        self.handler = handler
        self.queue_size = queue_size
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def open_session(self) -> Session:
        session = Session(id=str(uuid.uuid4()), channel=asyncio.Queue(maxsize=self.queue_size))
        async with self._lock:
            self._sessions[session.id] = session
        logger.info("SSE session opened.", session_id=session.id, active_sessions=len(self._sessions))
        return session

    async def get(self, session_id: str) -> Session:
        async with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise MCPNotFoundError("session not found")
        return session

    async def submit(self, session_id: str, body: str | bytes) -> None:
        """
        Processes one JSON-RPC message for a session. The response (if any) is delivered
        on that session's SSE stream; the caller only acknowledges receipt.
        """
        session = await self.get(session_id)
        log = logger.bind(session_id=session_id)
        response = await self.handler.handle(body)
        if response is None:
            log.debug("Submitted notification produced no response.")
            return
        if not await session.deliver(response):
            log.warning("Session closed before its response could be delivered.")
            return
        log.debug("Response queued for session.", queued=session.channel.qsize())

    async def close_session(self, session_id: str) -> None:
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return
        session.closed.set()
        logger.info("SSE session closed.", session_id=session_id, active_sessions=len(self._sessions))

    async def broadcast(self, message: dict[str, Any] | str) -> int:
        """Pushes a message to every live session without blocking. Returns the number of sessions reached."""
        frame = message if isinstance(message, str) else json.dumps(message, separators=(",", ":"))
        async with self._lock:
            sessions = list(self._sessions.values())
        delivered = 0
        for session in sessions:
            try:
                session.channel.put_nowait(frame)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Session channel full; dropping broadcast.", session_id=session.id)
        logger.debug("Broadcast sent.", delivered=delivered, sessions=len(sessions))
        return delivered

    async def session_ids(self) -> list[str]:
        async with self._lock:
            return list(self._sessions)

    async def shutdown(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.closed.set()
        logger.info("SSE session registry shut down.", closed_sessions=len(sessions))

    def __len__(self) -> int:
        return len(self._sessions)
