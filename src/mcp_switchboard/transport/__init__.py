"""
Transport adapters carrying JSON-RPC frames between an McpClient and a tool
provider: spawned subprocess (stdio), remote HTTP+SSE, and in-process.
"""
from .base import InboundFrame, Transport
from .factory import LocalProviderFactory, create_transport
from .local import LocalTransport
from .remote import RemoteTransport
from .sse import SseEvent, SseEventParser, format_sse_event
from .subprocess import SubprocessTransport

__all__ = [
    "InboundFrame",
    "LocalProviderFactory",
    "LocalTransport",
    "RemoteTransport",
    "SseEvent",
    "SseEventParser",
    "SubprocessTransport",
    "Transport",
    "create_transport",
    "format_sse_event",
]
