"""
MCP client: the JSON-RPC request/response layer on top of a transport.

One client owns one transport. Requests get strictly increasing integer ids and
wait on a future keyed by that id; a background reader resolves futures as
responses arrive, in whatever order the server produces them.
"""
import asyncio
import inspect
import itertools
import json
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, JsonValue, ValidationError

from ..config import MCPClientConfig
from ..exceptions import (
    MCPProtocolError,
    MCPStateError,
    MCPTimeoutError,
    MCPTransportError,
    ProtocolErrorKind,
    TransportErrorKind,
)
from ..models.mcp import (
    CallToolResult,
    ClientCapabilities,
    Implementation,
    InitializeResult,
    McpPrompt,
    McpResource,
    McpTool,
)
from ..protocol import methods
from ..protocol.codec import (
    ErrorCode,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    RequestId,
    decode,
    error_response,
    make_notification,
    make_request,
    success_response,
)
from ..transport.base import InboundFrame, Transport

NotificationListener = Callable[[JsonRpcNotification], Awaitable[None] | None]
ModelT = TypeVar("ModelT", bound=BaseModel)


class McpClient:
    """
    Speaks MCP to one server. ``initialize()`` must succeed before any other
    operation; ``close()`` fails whatever is still pending and releases the transport.
    """

    def __init__(self, transport: Transport, client_config: MCPClientConfig, server_id: str | None = None):
        self.transport = transport
        self.client_config = client_config
        self.server_id = server_id or transport.name

        self._ids = itertools.count(1)
        self._pending: dict[RequestId, asyncio.Future[JsonRpcResponse]] = {}
        self._reader_task: asyncio.Task | None = None
        self._exchanges: set[asyncio.Task] = set()
        self._init_lock = asyncio.Lock()
        self._initialize_result: InitializeResult | None = None
        self._transport_error: MCPTransportError | None = None
        self._closed = False
        self._notification_listeners: list[NotificationListener] = []

        self.logger = structlog.get_logger(__name__).bind(server_id=self.server_id, transport=transport.kind.value)

    @property
    def is_initialized(self) -> bool:
        return self._initialize_result is not None

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def initialize_result(self) -> InitializeResult | None:
        return self._initialize_result

    @property
    def server_info(self) -> Implementation | None:
        return self._initialize_result.server_info if self._initialize_result else None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def add_notification_listener(self, listener: NotificationListener) -> None:
        self._notification_listeners.append(listener)

    def remove_notification_listener(self, listener: NotificationListener) -> None:
        if listener in self._notification_listeners:
            self._notification_listeners.remove(listener)

    async def initialize(self) -> InitializeResult:
        """
        Performs the MCP handshake once. Concurrent callers share the same handshake and
        later calls return the cached result.
        Raises:
            MCPTransportError: the transport could not be started.
            MCPProtocolError: HANDSHAKE_MISMATCH if the server rejects the handshake or
                answers with an unsupported protocol version.
        """
        if self._initialize_result is not None:
            return self._initialize_result

        async with self._init_lock:
            if self._initialize_result is not None:
                return self._initialize_result
            self._ensure_open()

            await self.transport.start()
            if self._reader_task is None:
                self._reader_task = asyncio.create_task(self._read_loop(), name=f"mcp-client-{self.server_id}")

            params: dict[str, JsonValue] = {
                "protocolVersion": methods.PROTOCOL_VERSION,
                "capabilities": ClientCapabilities().model_dump(by_alias=True, exclude_none=True),
                "clientInfo": {"name": self.client_config.client_name, "version": self.client_config.client_version},
            }
            try:
                raw_result = await self._request(methods.INITIALIZE, params)
            except MCPProtocolError as e:
                if e.kind != ProtocolErrorKind.RPC_ERROR:
                    raise
                raise MCPProtocolError(
                    f"Server rejected initialize: {e}",
                    kind=ProtocolErrorKind.HANDSHAKE_MISMATCH,
                    error_code=e.error_code,
                    error_data=e.error_data,
                ) from e

            try:
                result = InitializeResult.model_validate(raw_result)
            except ValidationError as e:
                raise MCPProtocolError(
                    f"Malformed initialize result: {e.errors(include_url=False)}",
                    kind=ProtocolErrorKind.HANDSHAKE_MISMATCH,
                ) from e

            if result.protocol_version not in methods.SUPPORTED_PROTOCOL_VERSIONS:
                self.logger.error("Unsupported protocol version.", server_version=result.protocol_version, supported=methods.SUPPORTED_PROTOCOL_VERSIONS)
                raise MCPProtocolError(
                    f"Server speaks protocol version {result.protocol_version!r}, expected {methods.PROTOCOL_VERSION!r}",
                    kind=ProtocolErrorKind.HANDSHAKE_MISMATCH,
                )

            await self.transport.send_message(make_notification(methods.INITIALIZED))
            self._initialize_result = result
            self.logger.info(
                "MCP session initialized.",
                server_name=result.server_info.name,
                server_version=result.server_info.version,
                protocol_version=result.protocol_version,
            )
            return result

    async def list_tools(self) -> list[McpTool]:
        return await self._list_paginated(methods.TOOLS_LIST, "tools", McpTool)

    async def list_resources(self) -> list[McpResource]:
        return await self._list_paginated(methods.RESOURCES_LIST, "resources", McpResource)

    async def list_prompts(self) -> list[McpPrompt]:
        return await self._list_paginated(methods.PROMPTS_LIST, "prompts", McpPrompt)

    async def call_tool(
        self,
        name: str,
        arguments: Mapping[str, JsonValue] | None = None,
        timeout: float | None = None,
    ) -> CallToolResult:
        """
        Invokes a tool. A tool that fails still returns normally with ``is_error`` set;
        only transport and protocol failures raise.
        """
        self._ensure_initialized()
        params: dict[str, JsonValue] = {"name": name, "arguments": dict(arguments or {})}
        raw_result = await self._request(methods.TOOLS_CALL, params, timeout=timeout)
        try:
            result = CallToolResult.model_validate(raw_result)
        except ValidationError as e:
            raise MCPProtocolError(f"Malformed tools/call result for '{name}': {e.errors(include_url=False)}") from e
        self.logger.debug("Tool call completed.", tool_name=name, is_error=result.is_error)
        return result

    async def ping(self) -> None:
        self._ensure_initialized()
        await self._request(methods.PING)

    async def close(self) -> None:
        """Fails every pending request with CLOSED and releases the transport. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._fail_pending(MCPTransportError("Client closed", kind=TransportErrorKind.CLOSED))

        exchanges = list(self._exchanges)
        for exchange in exchanges:
            exchange.cancel()
        await asyncio.gather(*exchanges, return_exceptions=True)

        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            await asyncio.gather(self._reader_task, return_exceptions=True)
        await self.transport.close()
        self.logger.info("MCP client closed.")

    async def _list_paginated(self, method: str, key: str, model: type[ModelT]) -> list[ModelT]:
        self._ensure_initialized()
        items: list[ModelT] = []
        cursor: str | None = None
        while True:
            params: dict[str, JsonValue] | None = {"cursor": cursor} if cursor else None
            raw_result = await self._request(method, params)
            if not isinstance(raw_result, dict) or not isinstance(raw_result.get(key, []), list):
                raise MCPProtocolError(f"Malformed {method} result: expected an object with a '{key}' list")
            try:
                items.extend(model.model_validate(item) for item in raw_result.get(key, []))
            except ValidationError as e:
                raise MCPProtocolError(f"Malformed {method} result: {e.errors(include_url=False)}") from e
            cursor = raw_result.get("nextCursor")
            if not cursor:
                return items

    async def _request(self, method: str, params: dict[str, JsonValue] | None = None, timeout: float | None = None) -> JsonValue:
        self._ensure_open()
        request_id = next(self._ids)
        request = make_request(request_id, method, params)
        future: asyncio.Future[JsonRpcResponse] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        timeout = timeout if timeout is not None else self.client_config.request_timeout_seconds
        log = self.logger.bind(method=method, request_id=request_id)

        exchange: asyncio.Task | None = None
        try:
            log.debug("Sending request.")
            if self.transport.returns_responses:
                # The send returns the response; it runs under the timeout and close() cancels it.
                exchange = asyncio.create_task(self._exchange(request, future), name=f"mcp-exchange-{self.server_id}-{request_id}")
                self._exchanges.add(exchange)
                exchange.add_done_callback(self._exchanges.discard)
            else:
                await self.transport.send_message(request)
            response = await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError as e:
            log.warning("Request timed out.", timeout_seconds=timeout)
            raise MCPTimeoutError(f"Request '{method}' (id={request_id}) timed out after {timeout}s") from e
        finally:
            self._pending.pop(request_id, None)
            if exchange is not None and not exchange.done():
                exchange.cancel()

        if response.error is not None:
            log.warning("JSONRPC error response received.", code=response.error.code, msg=response.error.message)
            raise MCPProtocolError(
                response.error.message,
                kind=ProtocolErrorKind.RPC_ERROR,
                error_code=response.error.code,
                error_data=response.error.data,
            )
        return response.result

    async def _exchange(self, request: JsonRpcRequest, future: asyncio.Future[JsonRpcResponse]) -> None:
        try:
            ack = await self.transport.send_message(request)
        except MCPTransportError as e:
            if not future.done():
                future.set_exception(e)
            return
        if ack is not None:
            await self._handle_frame(ack)

    async def _read_loop(self) -> None:
        try:
            while True:
                frame = await self.transport.receive()
                await self._handle_frame(frame)
        except MCPTransportError as e:
            if self._closed:
                return
            self.logger.warning("Transport lost; failing pending requests.", error=str(e), kind=e.kind.value, pending=len(self._pending))
            self._transport_error = e
            self._fail_pending(e)
            await self.transport.close()

    async def _handle_frame(self, frame: InboundFrame) -> None:
        try:
            message = decode(frame)
        except MCPProtocolError as e:
            request_id = _peek_id(frame)
            future = self._pending.get(request_id) if request_id is not None else None
            if future is not None and not future.done():
                future.set_exception(e)
            else:
                self.logger.warning("Dropping undecodable frame.", error=str(e), frame=str(frame)[:200])
            return

        if isinstance(message, JsonRpcResponse):
            future = self._pending.get(message.id) if message.id is not None else None
            if future is None or future.done():
                self.logger.warning("Response for unknown request id; dropping.", response_id=message.id)
                return
            future.set_result(message)
        elif isinstance(message, JsonRpcNotification):
            await self._dispatch_notification(message)
        else:
            await self._answer_server_request(message)

    async def _dispatch_notification(self, notification: JsonRpcNotification) -> None:
        self.logger.debug("Server notification.", method=notification.method)
        for listener in list(self._notification_listeners):
            try:
                outcome = listener(notification)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                self.logger.exception("Notification listener failed.", method=notification.method)

    async def _answer_server_request(self, request: JsonRpcRequest) -> None:
        if request.method == methods.PING:
            response = success_response(request.id, {})
        else:
            response = error_response(request.id, ErrorCode.METHOD_NOT_FOUND, f"Method not found: {request.method}")
        try:
            await self.transport.send_message(response)
        except MCPTransportError as e:
            self.logger.warning("Could not answer server request.", method=request.method, error=str(e))

    def _fail_pending(self, error: MCPTransportError) -> None:
        for future in list(self._pending.values()):
            if not future.done():
                future.set_exception(error)

    def _ensure_open(self) -> None:
        if self._closed:
            raise MCPTransportError("Client closed", kind=TransportErrorKind.CLOSED)
        if self._transport_error is not None:
            raise self._transport_error

    def _ensure_initialized(self) -> None:
        self._ensure_open()
        if self._initialize_result is None:
            raise MCPStateError()

    async def __aenter__(self) -> "McpClient":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def _peek_id(frame: InboundFrame) -> Any:
    if isinstance(frame, dict):
        return frame.get("id")
    try:
        obj = json.loads(frame)
    except ValueError:
        return None
    return obj.get("id") if isinstance(obj, dict) else None
