"""
Accumulates Anthropic Messages streaming events into an assistant turn.

Text arrives as ``text_delta`` fragments and tool input as ``input_json_delta``
fragments of a JSON document; a tool-use block is only usable once its
``content_block_stop`` arrives.
"""
import json
from dataclasses import dataclass, field
from typing import Any

import structlog

from ..exceptions import ModelAPIError
from .types import ContentBlock, Message, TextBlock, ToolUseBlock, Usage

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolUseReady:
    block: ToolUseBlock


StreamOutput = TextDelta | ToolUseReady


@dataclass
class _PartialBlock:
    type: str
    text: str = ""
    tool_id: str = ""
    tool_name: str = ""
    json_parts: list[str] = field(default_factory=list)
    initial_input: dict[str, Any] = field(default_factory=dict)


class StreamAccumulator:
    def __init__(self) -> None:
        self.message_id: str | None = None
        self.model: str | None = None
        self.stop_reason: str | None = None
        self.usage = Usage()
        self.done = False
        self._partials: dict[int, _PartialBlock] = {}
        self._blocks: dict[int, ContentBlock] = {}

    def feed(self, event: dict[str, Any]) -> list[StreamOutput]:
        """Applies one decoded stream event and returns what it made available."""
        event_type = event.get("type")
        if event_type == "message_start":
            message = event.get("message") or {}
            self.message_id = message.get("id")
            self.model = message.get("model")
            if message.get("usage"):
                self.usage = Usage.model_validate(message["usage"])
            return []
        if event_type == "content_block_start":
            return self._start_block(event.get("index", len(self._partials)), event.get("content_block") or {})
        if event_type == "content_block_delta":
            return self._apply_delta(event.get("index", 0), event.get("delta") or {})
        if event_type == "content_block_stop":
            return self._finish_block(event.get("index", 0))
        if event_type == "message_delta":
            delta = event.get("delta") or {}
            if delta.get("stop_reason"):
                self.stop_reason = delta["stop_reason"]
            usage = event.get("usage") or {}
            if "output_tokens" in usage:
                self.usage = self.usage.model_copy(update={"output_tokens": usage["output_tokens"]})
            return []
        if event_type == "message_stop":
            self.done = True
            return []
        if event_type == "error":
            error = event.get("error") or {}
            raise ModelAPIError(error.get("message") or "Streaming error occurred")
        if event_type != "ping":
            logger.debug("Ignoring stream event.", event_type=event_type)
        return []

    def _start_block(self, index: int, block: dict[str, Any]) -> list[StreamOutput]:
        block_type = block.get("type", "text")
        partial = _PartialBlock(type=block_type)
        if block_type == "text":
            partial.text = block.get("text", "")
        elif block_type == "tool_use":
            partial.tool_id = block.get("id", "")
            partial.tool_name = block.get("name", "")
            partial.initial_input = block.get("input") or {}
        self._partials[index] = partial
        if partial.text:
            return [TextDelta(partial.text)]
        return []

    def _apply_delta(self, index: int, delta: dict[str, Any]) -> list[StreamOutput]:
        partial = self._partials.get(index)
        if partial is None:
            # Some streams omit content_block_start for the first text block.
            partial = self._partials.setdefault(index, _PartialBlock(type="text"))
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            text = delta.get("text", "")
            partial.text += text
            return [TextDelta(text)] if text else []
        if delta_type == "input_json_delta":
            partial.json_parts.append(delta.get("partial_json", ""))
        return []

    def _finish_block(self, index: int) -> list[StreamOutput]:
        partial = self._partials.pop(index, None)
        if partial is None:
            return []
        if partial.type == "tool_use":
            block = ToolUseBlock(id=partial.tool_id, name=partial.tool_name, input=self._tool_input(partial))
            self._blocks[index] = block
            return [ToolUseReady(block)]
        if partial.type == "text":
            self._blocks[index] = TextBlock(text=partial.text)
        else:
            logger.debug("Dropping unsupported content block.", block_type=partial.type)
        return []

    @staticmethod
    def _tool_input(partial: _PartialBlock) -> dict[str, Any]:
        raw = "".join(partial.json_parts).strip()
        if not raw:
            return dict(partial.initial_input)
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ModelAPIError(f"Invalid input JSON for tool '{partial.tool_name}': {e}") from e
        if not isinstance(value, dict):
            raise ModelAPIError(f"Tool input for '{partial.tool_name}' is not a JSON object")
        return value

    @property
    def text(self) -> str:
        return "".join(block.text for _, block in sorted(self._blocks.items()) if isinstance(block, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for _, block in sorted(self._blocks.items()) if isinstance(block, ToolUseBlock)]

    def to_message(self) -> Message:
        """The assistant turn as it should be appended to the conversation."""
        blocks = [block for _, block in sorted(self._blocks.items()) if not isinstance(block, TextBlock) or block.text]
        return Message(role="assistant", content=blocks)
