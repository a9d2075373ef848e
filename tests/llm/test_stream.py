"""
Tests for accumulating Messages API stream events.
"""
import pytest

from mcp_switchboard.exceptions import ModelAPIError
from mcp_switchboard.llm import Message, StreamAccumulator, TextBlock, TextDelta, ToolUseBlock, ToolUseReady


def feed_all(accumulator: StreamAccumulator, events: list[dict]) -> list:
    outputs = []
    for event in events:
        outputs.extend(accumulator.feed(event))
    return outputs


TEXT_THEN_TOOL = [
    {"type": "message_start", "message": {"id": "msg_1", "model": "claude-test", "usage": {"input_tokens": 12, "output_tokens": 1}}},
    {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    {"type": "ping"},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Let me "}},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "check."}},
    {"type": "content_block_stop", "index": 0},
    {"type": "content_block_start", "index": 1, "content_block": {"type": "tool_use", "id": "toolu_1", "name": "get_current_weather", "input": {}}},
    {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": '{"ci'}},
    {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": 'ty": "London"}'}},
    {"type": "content_block_stop", "index": 1},
    {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 42}},
    {"type": "message_stop"},
]


def test_text_and_tool_use_are_accumulated():
    accumulator = StreamAccumulator()
    outputs = feed_all(accumulator, TEXT_THEN_TOOL)

    assert outputs[:2] == [TextDelta("Let me "), TextDelta("check.")]
    assert outputs[2] == ToolUseReady(ToolUseBlock(id="toolu_1", name="get_current_weather", input={"city": "London"}))
    assert accumulator.text == "Let me check."
    assert accumulator.stop_reason == "tool_use"
    assert accumulator.message_id == "msg_1"
    assert accumulator.usage.input_tokens == 12
    assert accumulator.usage.output_tokens == 42
    assert accumulator.done


def test_tool_use_is_only_ready_at_block_stop():
    accumulator = StreamAccumulator()
    outputs = feed_all(accumulator, TEXT_THEN_TOOL[:9])
    assert not any(isinstance(output, ToolUseReady) for output in outputs)
    assert accumulator.tool_uses == []


def test_to_message_keeps_block_order():
    accumulator = StreamAccumulator()
    feed_all(accumulator, TEXT_THEN_TOOL)
    message = accumulator.to_message()

    assert message.role == "assistant"
    assert isinstance(message.content[0], TextBlock)
    assert isinstance(message.content[1], ToolUseBlock)
    assert message.to_api()["content"][1] == {
        "type": "tool_use",
        "id": "toolu_1",
        "name": "get_current_weather",
        "input": {"city": "London"},
    }


def test_empty_text_blocks_are_dropped():
    accumulator = StreamAccumulator()
    feed_all(accumulator, [
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_stop", "index": 0},
        {"type": "content_block_start", "index": 1, "content_block": {"type": "tool_use", "id": "t", "name": "list_tasks", "input": {}}},
        {"type": "content_block_stop", "index": 1},
    ])
    message = accumulator.to_message()
    assert [block.type for block in message.content] == ["tool_use"]
    # No input deltas: the block's initial input is used.
    assert message.content[0].input == {}


def test_initial_text_in_block_start_is_emitted():
    accumulator = StreamAccumulator()
    outputs = accumulator.feed({"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": "Hi"}})
    assert outputs == [TextDelta("Hi")]


@pytest.mark.parametrize("partial_json", ['{"city": ', '["London"]'])
def test_bad_tool_input_raises(partial_json):
    accumulator = StreamAccumulator()
    accumulator.feed({"type": "content_block_start", "index": 0, "content_block": {"type": "tool_use", "id": "t", "name": "x"}})
    accumulator.feed({"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": partial_json}})
    with pytest.raises(ModelAPIError):
        accumulator.feed({"type": "content_block_stop", "index": 0})


def test_error_event_raises():
    accumulator = StreamAccumulator()
    with pytest.raises(ModelAPIError, match="Overloaded"):
        accumulator.feed({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})
    with pytest.raises(ModelAPIError, match="Streaming error occurred"):
        accumulator.feed({"type": "error"})


def test_message_helpers():
    message = Message.user("hello")
    assert message.text == "hello"
    assert message.tool_uses == []
    assert message.to_api() == {"role": "user", "content": "hello"}
