"""
Multi-round tool call loop.

Each round streams one assistant turn. When it stops for ``tool_use``, every
requested tool runs in order through the manager and a single user message
with all ``tool_result`` blocks is appended before the next round. Tool
failures are fed back to the model as error results; only model API failures
end the loop early.
"""
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Protocol

import structlog

from ..config import ToolLoopConfig
from ..exceptions import MCPClientError
from ..manager import McpManager
from ..models.mcp import CallToolResult, ToolCallRecord
from .stream import StreamAccumulator, TextDelta, ToolUseReady
from .types import Message, ToolResultBlock, ToolUseBlock

logger = structlog.get_logger(__name__)


class LoopState(str, Enum):
    STREAMING = "streaming"
    AWAITING_TOOL = "awaiting_tool"
    DONE = "done"


class ModelClient(Protocol):
    def stream(
        self,
        *,
        model: str,
        messages: Sequence[Message],
        max_tokens: int,
        tools: Sequence[dict[str, Any]] | None = None,
        system: str | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[dict[str, Any]]: ...


@dataclass
class LoopOutcome:
    messages: list[Message]
    text: str
    records: list[ToolCallRecord] = field(default_factory=list)
    rounds: int = 0
    stop_reason: str | None = None
    round_cap_reached: bool = False


@dataclass(frozen=True)
class TextDeltaEvent:
    round: int
    text: str
    state: ClassVar[LoopState] = LoopState.STREAMING


@dataclass(frozen=True)
class ToolUseEvent:
    round: int
    block: ToolUseBlock
    state: ClassVar[LoopState] = LoopState.STREAMING


@dataclass(frozen=True)
class ToolResultEvent:
    round: int
    block: ToolResultBlock
    record: ToolCallRecord
    state: ClassVar[LoopState] = LoopState.AWAITING_TOOL


@dataclass(frozen=True)
class RoundCompletedEvent:
    round: int
    stop_reason: str | None
    # STREAMING when another round follows, DONE otherwise.
    state: LoopState = LoopState.DONE


@dataclass(frozen=True)
class DoneEvent:
    outcome: LoopOutcome
    state: ClassVar[LoopState] = LoopState.DONE


LoopEvent = TextDeltaEvent | ToolUseEvent | ToolResultEvent | RoundCompletedEvent | DoneEvent


class ToolCallLoop:
    """
    Drives model rounds against the manager's catalog. Run state lives in each
    ``run_stream`` call and is reported on its events, so one loop can serve
    concurrent conversations.
    """

    def __init__(self, manager: McpManager, model_client: ModelClient, config: ToolLoopConfig | None = None):
        self.manager = manager
        self.model_client = model_client
        self.config = config or ToolLoopConfig()

    async def run(self, messages: Sequence[Message] | str) -> LoopOutcome:
        outcome: LoopOutcome | None = None
        async for event in self.run_stream(messages):
            if isinstance(event, DoneEvent):
                outcome = event.outcome
        assert outcome is not None
        return outcome

    async def run_stream(self, messages: Sequence[Message] | str) -> AsyncIterator[LoopEvent]:
        conversation = [Message.user(messages)] if isinstance(messages, str) else list(messages)
        records: list[ToolCallRecord] = []
        rounds = 0
        text = ""
        stop_reason: str | None = None
        round_cap_reached = False
        log = logger.bind(model=self.config.model, max_rounds=self.config.max_rounds)

        while True:
            rounds += 1
            accumulator = StreamAccumulator()
            stream = self.model_client.stream(
                model=self.config.model,
                messages=conversation,
                max_tokens=self.config.max_tokens,
                tools=self.manager.to_model_tools(),
                system=self.config.system_prompt,
                temperature=self.config.temperature,
            )
            async for raw_event in stream:
                for output in accumulator.feed(raw_event):
                    if isinstance(output, TextDelta):
                        yield TextDeltaEvent(rounds, output.text)
                    elif isinstance(output, ToolUseReady):
                        yield ToolUseEvent(rounds, output.block)

            stop_reason = accumulator.stop_reason
            text = accumulator.text
            assistant = accumulator.to_message()
            tool_uses = accumulator.tool_uses
            log.debug("Model round finished.", round=rounds, stop_reason=stop_reason, tool_uses=len(tool_uses))

            if stop_reason != "tool_use" or not tool_uses:
                if assistant.content:
                    conversation.append(assistant)
                yield RoundCompletedEvent(rounds, stop_reason)
                break

            conversation.append(assistant)
            results: list[ToolResultBlock] = []
            for block in tool_uses:
                result_block, record = await self._execute(block)
                results.append(result_block)
                records.append(record)
                yield ToolResultEvent(rounds, result_block, record)
            conversation.append(Message(role="user", content=results))

            if rounds >= self.config.max_rounds:
                round_cap_reached = True
                log.warning("Tool loop stopped at the round cap.", rounds=rounds)
                yield RoundCompletedEvent(rounds, stop_reason)
                break
            yield RoundCompletedEvent(rounds, stop_reason, LoopState.STREAMING)

        log.info("Tool loop finished.", rounds=rounds, tool_calls=len(records), round_cap_reached=round_cap_reached)
        yield DoneEvent(LoopOutcome(
            messages=conversation,
            text=text,
            records=records,
            rounds=rounds,
            stop_reason=stop_reason,
            round_cap_reached=round_cap_reached,
        ))

    async def _execute(self, block: ToolUseBlock) -> tuple[ToolResultBlock, ToolCallRecord]:
        log = logger.bind(tool_name=block.name, tool_use_id=block.id)
        try:
            result = await self.manager.call_tool(block.name, block.input)
        except MCPClientError as e:
            log.warning("Tool call failed.", error=str(e), error_type=type(e).__name__)
            result = CallToolResult.from_text(f"Error: {e}", is_error=True)
        log.info("Tool executed.", is_error=result.is_error)
        record = ToolCallRecord(tool_name=block.name, arguments=block.input, result=result, is_error=result.is_error)
        return ToolResultBlock(tool_use_id=block.id, content=result.text, is_error=result.is_error), record
