"""Model-side of the orchestration: Anthropic streaming client and the tool call loop."""
from ..exceptions import ModelAPIError
from .anthropic import AnthropicClient
from .stream import StreamAccumulator, TextDelta, ToolUseReady
from .tool_loop import (
    DoneEvent,
    LoopEvent,
    LoopOutcome,
    LoopState,
    ModelClient,
    RoundCompletedEvent,
    TextDeltaEvent,
    ToolCallLoop,
    ToolResultEvent,
    ToolUseEvent,
)
from .types import ContentBlock, Message, TextBlock, ToolResultBlock, ToolUseBlock, Usage

__all__ = [
    "AnthropicClient",
    "ContentBlock",
    "DoneEvent",
    "LoopEvent",
    "LoopOutcome",
    "LoopState",
    "Message",
    "ModelAPIError",
    "ModelClient",
    "RoundCompletedEvent",
    "StreamAccumulator",
    "TextBlock",
    "TextDelta",
    "TextDeltaEvent",
    "ToolCallLoop",
    "ToolResultBlock",
    "ToolResultEvent",
    "ToolUseBlock",
    "ToolUseEvent",
    "ToolUseReady",
    "Usage",
]
