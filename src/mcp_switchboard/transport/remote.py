"""
Transport to a remote MCP server over HTTP + Server-Sent Events.

``GET {base_url}/sse`` opens a long-lived event stream whose first event carries
the session id. Frames are POSTed to ``{base_url}/message`` with an
``X-Session-Id`` header; the POST only acknowledges receipt and the JSON-RPC
response arrives later on the event stream.
"""
import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import aiohttp

from ..config import MCPClientConfig
from ..exceptions import (
    MCPConnectionError,
    MCPProtocolError,
    MCPTransportError,
    ProtocolErrorKind,
    TransportErrorKind,
)
from ..models.common import TransportKind
from ..models.mcp import RemoteConnection
from .base import Transport
from .sse import SseEvent, SseEventParser

SESSION_HEADER = "X-Session-Id"


class RemoteTransport(Transport):
    """
    HTTP+SSE transport. It uses aiohttp.ClientSession; a session can be shared by
    passing it in, otherwise the transport creates and owns one.
    """

    kind = TransportKind.REMOTE

    def __init__(
        self,
        connection: RemoteConnection,
        client_config: MCPClientConfig,
        name: str,
        aiohttp_session: aiohttp.ClientSession | None = None,
    ):
        super().__init__(client_config, name)
        self.connection = connection
        self.base_url = connection.base_url.rstrip("/")
        self.session_id: str | None = None
        self._session = aiohttp_session
        self._owns_session = aiohttp_session is None
        self._sse_response: aiohttp.ClientResponse | None = None
        self._events: AsyncIterator[SseEvent] | None = None
        self._reader_task: asyncio.Task | None = None
        self.logger = self.logger.bind(base_url=self.base_url)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self.logger.debug("Creating aiohttp session.")
            self._session = aiohttp.ClientSession(headers=self.connection.headers)
            self._owns_session = True
        return self._session

    async def _start(self) -> None:
        session = self._get_session()
        connect_timeout = self.client_config.connect_timeout_seconds
        # The event stream is long-lived; only the connect phase is bounded.
        timeout = aiohttp.ClientTimeout(total=None, connect=connect_timeout, sock_connect=connect_timeout)
        sse_url = f"{self.base_url}/sse"

        try:
            self._sse_response = await session.get(
                sse_url,
                headers={"Accept": "text/event-stream", **self.connection.headers},
                timeout=timeout,
            )
        except aiohttp.ClientConnectorError as e:
            self.logger.error("Client connector error", error_os_error=e.os_error, error_str=str(e))
            raise MCPConnectionError(f"Connection failed to {sse_url}: {e.os_error or str(e)}") from e
        except TimeoutError as e:
            raise MCPConnectionError(f"Connecting to {sse_url} timed out after {connect_timeout}s") from e
        except aiohttp.ClientError as e:
            self.logger.error("AIOHTTP client error", error_type=type(e).__name__, error_message=str(e))
            raise MCPConnectionError(f"HTTP client error for {sse_url}: {e}") from e

        if self._sse_response.status != 200:
            status = self._sse_response.status
            self._sse_response.release()
            raise MCPConnectionError(f"SSE endpoint {sse_url} returned HTTP {status}")

        self._events = self._iter_events(self._sse_response)
        try:
            first = await asyncio.wait_for(anext(self._events), timeout=connect_timeout)
        except StopAsyncIteration as e:
            raise MCPProtocolError("SSE stream ended before the session event", kind=ProtocolErrorKind.HANDSHAKE_MISMATCH) from e
        except TimeoutError as e:
            raise MCPConnectionError(f"No session event from {sse_url} within {connect_timeout}s") from e
        except aiohttp.ClientError as e:
            raise MCPConnectionError(f"SSE stream from {sse_url} failed: {e}") from e

        self.session_id = self._parse_session_event(first)
        self.logger = self.logger.bind(session_id=self.session_id)
        self._reader_task = asyncio.create_task(self._read_events(), name=f"mcp-sse-{self.name}")

    @staticmethod
    def _parse_session_event(event: SseEvent) -> str:
        try:
            payload = json.loads(event.data)
        except json.JSONDecodeError as e:
            raise MCPProtocolError(f"Session event is not JSON: {event.data[:200]!r}", kind=ProtocolErrorKind.HANDSHAKE_MISMATCH) from e
        if not isinstance(payload, dict) or payload.get("type") != "session" or not isinstance(payload.get("sessionId"), str):
            raise MCPProtocolError(f"Expected a session event first, got {event.data[:200]!r}", kind=ProtocolErrorKind.HANDSHAKE_MISMATCH)
        return payload["sessionId"]

    @staticmethod
    async def _iter_events(response: aiohttp.ClientResponse) -> AsyncIterator[SseEvent]:
        parser = SseEventParser()
        async for chunk in response.content.iter_any():
            for event in parser.feed(chunk):
                yield event

    async def _read_events(self) -> None:
        assert self._events is not None
        try:
            async for event in self._events:
                if event.data.strip():
                    await self._publish(event.data)
        except aiohttp.ClientError as e:
            self._fail(MCPTransportError(f"SSE stream dropped: {e}", kind=TransportErrorKind.DISCONNECTED))
            return
        except Exception as e:
            self.logger.exception("SSE reader failed.")
            self._fail(MCPTransportError(f"SSE reader failed: {e}", kind=TransportErrorKind.DISCONNECTED))
            return
        self._fail(MCPTransportError("SSE stream closed by server", kind=TransportErrorKind.DISCONNECTED))

    async def _send(self, frame: str) -> Any:
        session = self._get_session()
        message_url = f"{self.base_url}/message"
        timeout = aiohttp.ClientTimeout(
            total=self.client_config.request_timeout_seconds,
            connect=self.client_config.connect_timeout_seconds,
        )
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            SESSION_HEADER: self.session_id or "",
        }

        try:
            async with session.post(message_url, data=frame.encode("utf-8"), headers=headers, timeout=timeout) as response:
                response_text = await response.text()
                if response.status == 404:
                    self.logger.warning("Server does not know this session.", response_body=response_text[:200])
                    error = MCPTransportError(f"Session {self.session_id} not found on {self.base_url}", kind=TransportErrorKind.DISCONNECTED)
                    self._fail(error)
                    raise error
                if response.status >= 300:
                    self.logger.error("HTTP error status received", status=response.status, reason=response.reason, response_body=response_text[:500])
                    raise MCPConnectionError(f"HTTP error {response.status} {response.reason} from {message_url}")
                try:
                    return json.loads(response_text) if response_text else None
                except json.JSONDecodeError:
                    return response_text
        except aiohttp.ClientConnectorError as e:
            self.logger.error("Client connector error", error_os_error=e.os_error, error_str=str(e))
            raise MCPConnectionError(f"Connection failed to {message_url}: {e.os_error or str(e)}") from e
        except TimeoutError as e:
            raise MCPTransportError(f"POST to {message_url} timed out", kind=TransportErrorKind.TIMEOUT) from e
        except aiohttp.ClientError as e:
            self.logger.error("AIOHTTP client error", error_type=type(e).__name__, error_message=str(e))
            raise MCPTransportError(f"HTTP client error for {message_url}: {e}", kind=TransportErrorKind.DISCONNECTED) from e

    async def _close(self) -> None:
        if self._reader_task is not None and self._reader_task is not asyncio.current_task():
            self._reader_task.cancel()
            await asyncio.gather(self._reader_task, return_exceptions=True)
        if self._sse_response is not None:
            self._sse_response.close()
            self._sse_response = None
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
