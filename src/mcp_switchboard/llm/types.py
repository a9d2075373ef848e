"""Conversation types for the Anthropic Messages API."""
from typing import Annotated, Any, Literal, Union

from pydantic import Field, JsonValue

from ..models.common import BasePydanticModel, WireModel


class TextBlock(BasePydanticModel):
    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BasePydanticModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, JsonValue] = Field(default_factory=dict)


class ToolResultBlock(BasePydanticModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str
    is_error: bool = False


ContentBlock = Annotated[Union[TextBlock, ToolUseBlock, ToolResultBlock], Field(discriminator="type")]


class Message(BasePydanticModel):
    role: Literal["user", "assistant"]
    content: str | list[ContentBlock]

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role="user", content=text)

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(block.text for block in self.content if isinstance(block, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        if isinstance(self.content, str):
            return []
        return [block for block in self.content if isinstance(block, ToolUseBlock)]

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class Usage(WireModel):
    input_tokens: int = 0
    output_tokens: int = 0
