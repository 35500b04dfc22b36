"""Internal transport models."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ThinkingBlock(BaseModel):
    type: Literal["thinking"] = "thinking"
    thinking: str
    signature: str | None = None


class RedactedThinkingBlock(BaseModel):
    type: Literal["redacted_thinking"] = "redacted_thinking"
    data: str


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str = ""


ContentBlock = Annotated[
    Union[TextBlock, ThinkingBlock, RedactedThinkingBlock, ToolUseBlock, ToolResultBlock],
    Field(discriminator="type"),
]

REASONING_BLOCK_TYPES = (ThinkingBlock, RedactedThinkingBlock)


class InternalMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: list[ContentBlock] = Field(default_factory=list)


class ToolDefinition(BaseModel):
    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class InternalRequest(BaseModel):
    messages: list[InternalMessage] = Field(default_factory=list)
    tools: list[ToolDefinition] | None = None
    model: str
    max_tokens: int = 4096
    system: str | None = None
    stream: bool = False
    temperature: float | None = None
    max_thinking_tokens: int | None = None

    @property
    def thinking_enabled(self) -> bool:
        return self.max_thinking_tokens is not None


class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int | None = None
    cache_read_input_tokens: int | None = None

    @property
    def prompt_tokens(self) -> int:
        return self.input_tokens + (self.cache_creation_input_tokens or 0) + (self.cache_read_input_tokens or 0)


StopReason = Literal["end_turn", "tool_use", "max_tokens"]


class InternalResponse(BaseModel):
    id: str
    content: list[ContentBlock] = Field(default_factory=list)
    model: str | None = None
    stop_reason: StopReason | None = None
    usage: Usage = Field(default_factory=Usage)


class TextDelta(BaseModel):
    type: Literal["text_delta"] = "text_delta"
    text: str


class ThinkingStart(BaseModel):
    type: Literal["thinking_start"] = "thinking_start"


class ThinkingDelta(BaseModel):
    type: Literal["thinking_delta"] = "thinking_delta"
    thinking: str


class ThinkingStop(BaseModel):
    type: Literal["thinking_stop"] = "thinking_stop"
    signature: str | None = None


class ToolUseStart(BaseModel):
    type: Literal["tool_use_start"] = "tool_use_start"
    id: str
    name: str


class ToolUseDelta(BaseModel):
    type: Literal["tool_use_delta"] = "tool_use_delta"
    arguments: str


class ToolUseStop(BaseModel):
    type: Literal["tool_use_stop"] = "tool_use_stop"


class MessageStop(BaseModel):
    type: Literal["message_stop"] = "message_stop"
    stop_reason: StopReason | None
    usage: Usage = Field(default_factory=Usage)


StreamEvent = Annotated[
    Union[
        TextDelta,
        ThinkingStart,
        ThinkingDelta,
        ThinkingStop,
        ToolUseStart,
        ToolUseDelta,
        ToolUseStop,
        MessageStop,
    ],
    Field(discriminator="type"),
]
