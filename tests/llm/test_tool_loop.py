"""
Tests for the multi-round tool call loop with a scripted model.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from mcp_switchboard.config import ToolLoopConfig
from mcp_switchboard.exceptions import MCPTransportError, ModelAPIError, TransportErrorKind
from mcp_switchboard.llm import (
    DoneEvent,
    LoopState,
    Message,
    RoundCompletedEvent,
    TextDeltaEvent,
    ToolCallLoop,
    ToolResultBlock,
    ToolResultEvent,
    ToolUseBlock,
    ToolUseEvent,
)
from mcp_switchboard.manager import McpManager


def text_round(text: str) -> list[dict]:
    return [
        {"type": "message_start", "message": {"id": "msg", "model": "claude-test"}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}},
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}},
        {"type": "message_stop"},
    ]


def tool_round(*calls: tuple[str, str, dict], preamble: str = "") -> list[dict]:
    events = [{"type": "message_start", "message": {"id": "msg", "model": "claude-test"}}]
    index = 0
    if preamble:
        events += [
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": preamble}},
            {"type": "content_block_stop", "index": 0},
        ]
        index = 1
    for tool_id, name, arguments in calls:
        encoded = json.dumps(arguments)
        events += [
            {"type": "content_block_start", "index": index, "content_block": {"type": "tool_use", "id": tool_id, "name": name, "input": {}}},
            {"type": "content_block_delta", "index": index, "delta": {"type": "input_json_delta", "partial_json": encoded[:5]}},
            {"type": "content_block_delta", "index": index, "delta": {"type": "input_json_delta", "partial_json": encoded[5:]}},
            {"type": "content_block_stop", "index": index},
        ]
        index += 1
    events += [{"type": "message_delta", "delta": {"stop_reason": "tool_use"}}, {"type": "message_stop"}]
    return events


class ScriptedModel:
    """Replays one scripted event list per round and records what each round was sent."""

    def __init__(self, rounds: list[list[dict]]):
        self.rounds = list(rounds)
        self.calls: list[dict] = []

    async def stream(self, *, model, messages, max_tokens, tools=None, system=None, temperature=None):
        self.calls.append({
            "messages": [message.to_api() for message in messages],
            "tools": [tool["name"] for tool in tools or []],
            "system": system,
        })
        for event in self.rounds.pop(0):
            yield event


@pytest.fixture
async def manager(client_config):
    manager = McpManager(client_config=client_config)
    await manager.add_server({"id": "weather", "name": "Weather", "transport_kind": "local"})
    yield manager
    await manager.close()


async def test_two_sequential_tools_then_answer(manager):
    model = ScriptedModel([
        tool_round(("toolu_1", "get_current_weather", {"city": "London"}), preamble="Checking."),
        tool_round(("toolu_2", "get_weather_forecast", {"city": "London", "days": 2})),
        text_round("London is mild today and tomorrow."),
    ])
    loop = ToolCallLoop(manager, model, ToolLoopConfig(system_prompt="You are helpful."))
    outcome = await loop.run("What's the weather in London?")

    assert outcome.rounds == 3
    assert outcome.text == "London is mild today and tomorrow."
    assert outcome.stop_reason == "end_turn"
    assert not outcome.round_cap_reached
    assert [record.tool_name for record in outcome.records] == ["get_current_weather", "get_weather_forecast"]
    assert all(not record.is_error for record in outcome.records)

    # user, assistant(tool_use), user(tool_result), assistant(tool_use), user(tool_result), assistant(text)
    roles = [message.role for message in outcome.messages]
    assert roles == ["user", "assistant", "user", "assistant", "user", "assistant"]
    first_results = outcome.messages[2].content
    assert isinstance(first_results[0], ToolResultBlock)
    assert first_results[0].tool_use_id == "toolu_1"
    assert "Weather in London" in first_results[0].content

    # Every round offers the catalog and the system prompt; later rounds carry the history.
    assert all("get_current_weather" in call["tools"] for call in model.calls)
    assert model.calls[0]["system"] == "You are helpful."
    assert len(model.calls[2]["messages"]) == 5
    assert model.calls[1]["messages"][1]["content"][0] == {"type": "text", "text": "Checking."}


async def test_parallel_tool_uses_share_one_result_message(manager):
    model = ScriptedModel([
        tool_round(
            ("a", "add_task", {"title": "Buy milk"}),
            ("b", "list_tasks", {}),
        ),
        text_round("Done."),
    ])
    outcome = await ToolCallLoop(manager, model).run([Message.user("Add a task and list them")])

    results = outcome.messages[2].content
    assert [block.tool_use_id for block in results] == ["a", "b"]
    # Executed in order: the listing already sees the new task.
    assert "Buy milk" in results[1].content


async def test_tool_errors_are_fed_back(manager):
    model = ScriptedModel([
        tool_round(
            ("bad", "get_weather_forecast", {"city": "Oslo", "days": 42}),
            ("missing", "no_such_tool", {}),
        ),
        text_round("Sorry."),
    ])
    outcome = await ToolCallLoop(manager, model).run("forecast please")

    results = outcome.messages[2].content
    assert [block.is_error for block in results] == [True, True]
    assert results[0].content.startswith("Invalid arguments for tool 'get_weather_forecast'")
    assert "no_such_tool" in results[1].content
    assert [record.is_error for record in outcome.records] == [True, True]
    assert outcome.text == "Sorry."


async def test_round_cap_stops_the_loop(manager):
    rounds = [tool_round((f"t{n}", "get_current_weather", {"city": "Rome"})) for n in range(5)]
    model = ScriptedModel(rounds)
    outcome = await ToolCallLoop(manager, model, ToolLoopConfig(max_rounds=2)).run("loop forever")

    assert outcome.rounds == 2
    assert outcome.round_cap_reached
    assert len(model.calls) == 2
    # The last message is the tool results of the final round.
    assert outcome.messages[-1].role == "user"


async def test_stream_events_in_order(manager):
    model = ScriptedModel([
        tool_round(("toolu_1", "get_current_weather", {"city": "Paris"}), preamble="One moment."),
        text_round("Sunny."),
    ])
    events = [event async for event in ToolCallLoop(manager, model).run_stream("Paris?")]
    kinds = [type(event) for event in events]

    assert kinds == [
        TextDeltaEvent,
        ToolUseEvent,
        ToolResultEvent,
        RoundCompletedEvent,
        TextDeltaEvent,
        RoundCompletedEvent,
        DoneEvent,
    ]
    assert events[1].block == ToolUseBlock(id="toolu_1", name="get_current_weather", input={"city": "Paris"})
    assert events[3].round == 1 and events[3].stop_reason == "tool_use"
    assert [event.state for event in events] == [
        LoopState.STREAMING,
        LoopState.STREAMING,
        LoopState.AWAITING_TOOL,
        LoopState.STREAMING,
        LoopState.STREAMING,
        LoopState.DONE,
        LoopState.DONE,
    ]
    assert events[-1].outcome.text == "Sunny."


async def test_model_errors_propagate(manager):
    model = ScriptedModel([[{"type": "error", "error": {"message": "Overloaded"}}]])
    with pytest.raises(ModelAPIError, match="Overloaded"):
        await ToolCallLoop(manager, model).run("hi")


async def test_transport_failure_becomes_error_result():
    manager = MagicMock()
    manager.to_model_tools.return_value = [{"name": "get_current_weather", "description": "", "input_schema": {"type": "object"}}]
    manager.call_tool = AsyncMock(side_effect=MCPTransportError("pipe closed", kind=TransportErrorKind.PROCESS_TERMINATED))
    model = ScriptedModel([
        tool_round(("t1", "get_current_weather", {"city": "Lima"})),
        text_round("The weather server is down."),
    ])

    outcome = await ToolCallLoop(manager, model).run("Lima?")

    manager.call_tool.assert_awaited_once_with("get_current_weather", {"city": "Lima"})
    result = outcome.messages[2].content[0]
    assert result.is_error
    assert result.content == "Error: pipe closed"
    assert outcome.text == "The weather server is down."


class PerPromptModel:
    """Scripts rounds per conversation, keyed by the first user message."""

    def __init__(self, scripts: dict[str, list[list[dict]]]):
        self.scripts = {prompt: list(rounds) for prompt, rounds in scripts.items()}

    async def stream(self, *, model, messages, max_tokens, tools=None, system=None, temperature=None):
        prompt = messages[0].content
        for event in self.scripts[prompt].pop(0):
            await asyncio.sleep(0)
            yield event


async def test_concurrent_runs_keep_separate_state(manager):
    model = PerPromptModel({
        "Paris?": [tool_round(("p1", "get_current_weather", {"city": "Paris"})), text_round("Paris is fine.")],
        "Hi": [text_round("Hello.")],
    })
    loop = ToolCallLoop(manager, model)

    async def collect(prompt):
        return [event async for event in loop.run_stream(prompt)]

    paris, hello = await asyncio.gather(collect("Paris?"), collect("Hi"))

    assert [event.state for event in hello] == [LoopState.STREAMING, LoopState.DONE, LoopState.DONE]
    assert hello[-1].outcome.text == "Hello."
    assert [event.state for event in paris] == [
        LoopState.STREAMING,
        LoopState.AWAITING_TOOL,
        LoopState.STREAMING,
        LoopState.STREAMING,
        LoopState.DONE,
        LoopState.DONE,
    ]
    assert paris[-1].outcome.text == "Paris is fine."
