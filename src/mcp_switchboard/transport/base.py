"""
Base Transport Abstract Class.

A transport moves JSON-RPC frames between an McpClient and one tool provider.
Outbound frames go through ``send``; inbound frames (responses and server
notifications) are published to a bounded queue and consumed with
``receive``. When the queue is full the producer waits, so a slow consumer
throttles the provider instead of growing memory without bound.
"""
import abc
import asyncio
from typing import Any

import structlog

from ..config import MCPClientConfig
from ..exceptions import MCPTransportError, TransportErrorKind
from ..models.common import TransportKind
from ..protocol.codec import JsonRpcMessage, encode

# An inbound frame is raw text for serialising transports, or an already
# decoded dict for the in-process transport.
InboundFrame = str | dict[str, Any]


class Transport(abc.ABC):
    """
    Abstract Base Class for an MCP transport adapter.
    Subclasses implement ``_start``, ``_send`` and ``_close``; the base class owns
    the inbound queue and the terminal-error bookkeeping.
    """

    kind: TransportKind
    # True when send() hands back the response itself instead of publishing it inbound.
    returns_responses = False

    def __init__(self, client_config: MCPClientConfig, name: str):
        self.client_config = client_config
        self.name = name
        self._inbound: asyncio.Queue[InboundFrame] = asyncio.Queue(maxsize=client_config.inbound_queue_size)
        self._dead = asyncio.Event()
        self._terminal_error: MCPTransportError | None = None
        self._started = False
        self._closed = False

        self.logger = structlog.get_logger(__name__).bind(server_id=name, transport=self.kind.value)

    @property
    def is_open(self) -> bool:
        return self._started and not self._closed and self._terminal_error is None

    async def start(self) -> None:
        """Starts the transport. Raises MCPTransportError (CONNECT_FAILED) if the provider is unreachable."""
        if self._closed:
            raise MCPTransportError("Transport is closed", kind=TransportErrorKind.CLOSED)
        if self._started:
            return
        self.logger.debug("Starting transport.")
        try:
            await self._start()
        except Exception:
            await self.close()
            raise
        self._started = True
        self.logger.info("Transport started.")

    async def send(self, frame: str) -> Any:
        """
        Sends one encoded frame. The return value is a transport-level acknowledgement:
        None for stdio, the POST acknowledgement for HTTP+SSE, and the decoded response
        for the in-process transport. It never signals request success.
        """
        self._check_sendable()
        return await self._send(frame)

    async def send_message(self, message: JsonRpcMessage) -> Any:
        """Sends a message model; serialising transports encode it, the in-process one does not."""
        self._check_sendable()
        return await self._send_message(message)

    def _check_sendable(self) -> None:
        if self._terminal_error is not None:
            raise self._terminal_error
        if not self._started:
            raise MCPTransportError("Transport not started", kind=TransportErrorKind.DISCONNECTED)

    async def _send_message(self, message: JsonRpcMessage) -> Any:
        return await self._send(encode(message))

    async def receive(self) -> InboundFrame:
        """
        Returns the next inbound frame. Frames already queued are still delivered after
        the transport dies; once the queue is empty the terminal error is raised.
        """
        while True:
            if not self._inbound.empty():
                return self._inbound.get_nowait()
            if self._terminal_error is not None:
                raise self._terminal_error

            getter = asyncio.ensure_future(self._inbound.get())
            dead_waiter = asyncio.ensure_future(self._dead.wait())
            try:
                await asyncio.wait({getter, dead_waiter}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                dead_waiter.cancel()
                if not getter.done():
                    getter.cancel()
            if getter.done() and not getter.cancelled():
                return getter.result()

    async def close(self) -> None:
        """Closes the transport. Idempotent, and safe on a transport that never started."""
        if self._closed:
            return
        self._closed = True
        self._fail(MCPTransportError("Transport closed", kind=TransportErrorKind.CLOSED))
        try:
            await self._close()
        finally:
            self.logger.info("Transport closed.")

    async def _publish(self, frame: InboundFrame) -> None:
        # Waits for free space when the queue is full.
        await self._inbound.put(frame)

    def _fail(self, error: MCPTransportError) -> None:
        """Records the first terminal error and wakes any waiting receiver."""
        if self._terminal_error is None:
            self._terminal_error = error
            if error.kind != TransportErrorKind.CLOSED:
                self.logger.warning("Transport failed.", error=str(error), kind=error.kind.value)
        self._dead.set()

    @abc.abstractmethod
    async def _start(self) -> None:
        pass

    @abc.abstractmethod
    async def _send(self, frame: str) -> Any:
        pass

    async def _close(self) -> None:
        pass

    async def __aenter__(self) -> "Transport":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
