"""
In-process transport: frames are handed straight to an McpServerHandler living
in the same event loop, with no serialisation boundary.
"""
from typing import TYPE_CHECKING, Any

from ..config import MCPClientConfig
from ..models.common import TransportKind
from ..protocol.codec import JsonRpcMessage, JsonRpcResponse, decode, to_payload
from .base import Transport

if TYPE_CHECKING:
    from ..server.handler import McpServerHandler


class LocalTransport(Transport):
    """
    ``send`` returns the handler's response (decoded, as a dict) or None for
    notifications. Nothing is ever published inbound, so ``receive`` simply waits
    until the transport is closed.
    """

    kind = TransportKind.LOCAL
    returns_responses = True

    def __init__(self, handler: "McpServerHandler", client_config: MCPClientConfig, name: str, owns_handler: bool = True):
        super().__init__(client_config, name)
        self.handler = handler
        self._owns_handler = owns_handler

    async def _start(self) -> None:
        pass

    async def _send_message(self, message: JsonRpcMessage) -> dict[str, Any] | None:
        response = await self.handler.handle_message(message)
        return self._as_payload(response)

    async def _send(self, frame: str) -> dict[str, Any] | None:
        response = await self.handler.handle_message(decode(frame))
        return self._as_payload(response)

    @staticmethod
    def _as_payload(response: JsonRpcResponse | None) -> dict[str, Any] | None:
        return to_payload(response) if response is not None else None

    async def _close(self) -> None:
        if self._owns_handler:
            await self.handler.close()
