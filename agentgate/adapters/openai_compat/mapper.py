"""Chat-completions request dialects <-> internal model mapping.

Two request shapes arrive on the same endpoint: the plain OpenAI chat format and the
Anthropic-flavoured variant some IDE clients send (top-level ``system``, tools with
``input_schema``, ``tool_use``/``tool_result`` content blocks).
"""

from __future__ import annotations

import json
import time
from typing import Any

from agentgate.config.models import resolve_model
from agentgate.core.content import extract_text
from agentgate.core.context import RequestContext
from agentgate.core.errors import InvalidRequestError, ToolArgumentsError
from agentgate.core.models import (
    ContentBlock,
    InternalMessage,
    InternalRequest,
    InternalResponse,
    RedactedThinkingBlock,
    TextBlock,
    ThinkingBlock,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
)
from agentgate.core.thinking import encode_thinking_block, parse_embedded_thinking
from agentgate.filters.thinking_consistency import ThinkingConsistencyFilter
from agentgate.util.logger import get_logger


logger = get_logger("mapper")

_DEFAULT_PARAMETERS: dict[str, Any] = {"type": "object", "properties": {}}
_FINISH_REASONS = {"end_turn": "stop", "max_tokens": "length", "tool_use": "tool_calls"}


def is_anthropic_format(payload: dict[str, Any]) -> bool:
    if "system" in payload:
        return True

    tools = payload.get("tools")
    if isinstance(tools, list) and tools:
        first = tools[0]
        if isinstance(first, dict) and "input_schema" in first:
            return True

    messages = payload.get("messages")
    if not isinstance(messages, list):
        return False
    for msg in messages:
        if not isinstance(msg, dict):
            continue
        content = msg.get("content")
        if not isinstance(content, list):
            continue
        for block in content:
            if isinstance(block, dict) and block.get("type") in {"tool_use", "tool_result"}:
                return True
    return False


def _append_system(current: str | None, text: str) -> str:
    if current:
        return f"{current}\n\n{text}"
    return text


def _check_unique_tools(tools: list[ToolDefinition] | None) -> None:
    if not tools:
        return
    seen: set[str] = set()
    for tool in tools:
        if tool.name in seen:
            raise InvalidRequestError(f"duplicate tool name: {tool.name}", code="duplicate_tool_name")
        seen.add(tool.name)


def _finish_request(
    payload: dict[str, Any],
    messages: list[InternalMessage],
    tools: list[ToolDefinition] | None,
    system: str | None,
    ctx: RequestContext,
    source: str,
) -> InternalRequest:
    _check_unique_tools(tools)
    route = resolve_model(str(payload.get("model") or ""))

    req = InternalRequest(
        messages=messages,
        tools=tools,
        model=route.model,
        max_tokens=payload.get("max_tokens") or ctx.settings.default_max_tokens,
        system=system or None,
        stream=bool(payload.get("stream") or False),
        temperature=payload.get("temperature"),
        max_thinking_tokens=ctx.settings.thinking_budget_tokens if route.enable_thinking else None,
    )
    return ThinkingConsistencyFilter(source=source).apply(req, ctx)


def _anthropic_user_blocks(content: Any) -> list[ContentBlock]:
    if not isinstance(content, list):
        text = extract_text(content)
        return [TextBlock(text=text)] if text else []

    blocks: list[ContentBlock] = []
    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text" and isinstance(block.get("text"), str):
            blocks.append(TextBlock(text=block["text"]))
        elif block_type == "tool_result":
            blocks.append(
                ToolResultBlock(
                    tool_use_id=str(block.get("tool_use_id", "")),
                    content=extract_text(block.get("content")),
                )
            )
        else:
            logger.debug("anthropic user block skipped type=%s", block_type)
    return blocks


def _anthropic_assistant_blocks(content: Any) -> list[ContentBlock]:
    if not isinstance(content, list):
        text = extract_text(content)
        return parse_embedded_thinking(text) if text else []

    blocks: list[ContentBlock] = []
    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text" and isinstance(block.get("text"), str):
            blocks.extend(parse_embedded_thinking(block["text"]))
        elif block_type == "thinking":
            # native thinking keeps its signature so the runtime can verify it
            blocks.append(ThinkingBlock(thinking=str(block.get("thinking", "")), signature=block.get("signature") or None))
        elif block_type == "redacted_thinking":
            blocks.append(RedactedThinkingBlock(data=str(block.get("data", ""))))
        elif block_type == "tool_use":
            blocks.append(
                ToolUseBlock(
                    id=str(block.get("id", "")),
                    name=str(block.get("name", "")),
                    input=block.get("input") or {},
                )
            )
        else:
            logger.debug("anthropic assistant block skipped type=%s", block_type)
    return blocks


def anthropic_to_internal(payload: dict[str, Any], ctx: RequestContext) -> InternalRequest:
    system: str | None = None
    raw_system = payload.get("system")
    if isinstance(raw_system, str):
        system = raw_system
    elif isinstance(raw_system, list):
        system = extract_text(raw_system)

    messages: list[InternalMessage] = []
    for msg in payload.get("messages", []):
        if not isinstance(msg, dict):
            continue
        role = msg.get("role")
        content = msg.get("content")
        if role == "system":
            system = _append_system(system, extract_text(content))
            continue
        if role == "user":
            blocks = _anthropic_user_blocks(content)
        elif role == "assistant":
            blocks = _anthropic_assistant_blocks(content)
        else:
            ctx.logger.debug("anthropic_to_internal: skipping message with role=%s", role)
            continue
        if blocks:
            messages.append(InternalMessage(role=role, content=blocks))

    tools = None
    if isinstance(payload.get("tools"), list):
        tools = [
            ToolDefinition(
                name=str(tool.get("name", "")),
                description=tool.get("description") or "",
                parameters=tool.get("input_schema") or dict(_DEFAULT_PARAMETERS),
            )
            for tool in payload["tools"]
            if isinstance(tool, dict)
        ]

    return _finish_request(payload, messages, tools, system, ctx, source="anthropic_to_internal")


def _parse_tool_arguments(call_id: str, raw: Any) -> dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ToolArgumentsError(f"tool call {call_id} has malformed arguments: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ToolArgumentsError(f"tool call {call_id} arguments must be a JSON object")
    return parsed


def openai_to_internal(payload: dict[str, Any], ctx: RequestContext) -> InternalRequest:
    system: str | None = None
    messages: list[InternalMessage] = []

    for msg in payload.get("messages", []):
        if not isinstance(msg, dict):
            continue
        role = msg.get("role")
        content = msg.get("content")

        if role == "system":
            system = _append_system(system, extract_text(content))
        elif role == "user":
            text = extract_text(content)
            if text:
                messages.append(InternalMessage(role="user", content=[TextBlock(text=text)]))
        elif role == "assistant":
            blocks: list[ContentBlock] = []
            text = extract_text(content)
            if text:
                blocks.extend(parse_embedded_thinking(text))
            for call in msg.get("tool_calls") or []:
                if not isinstance(call, dict):
                    continue
                function = call.get("function") or {}
                call_id = str(call.get("id", ""))
                blocks.append(
                    ToolUseBlock(
                        id=call_id,
                        name=str(function.get("name", "")),
                        input=_parse_tool_arguments(call_id, function.get("arguments")),
                    )
                )
            if blocks:
                messages.append(InternalMessage(role="assistant", content=blocks))
        elif role == "tool":
            call_id = msg.get("tool_call_id")
            if call_id:
                messages.append(
                    InternalMessage(
                        role="user",
                        content=[ToolResultBlock(tool_use_id=str(call_id), content=extract_text(content))],
                    )
                )
        else:
            ctx.logger.debug("openai_to_internal: skipping message with role=%s", role)

    tools = None
    if isinstance(payload.get("tools"), list):
        tools = []
        for tool in payload["tools"]:
            function = tool.get("function") if isinstance(tool, dict) else None
            if not isinstance(function, dict):
                continue
            tools.append(
                ToolDefinition(
                    name=str(function.get("name", "")),
                    description=function.get("description") or "",
                    parameters=function.get("parameters") or dict(_DEFAULT_PARAMETERS),
                )
            )

    return _finish_request(payload, messages, tools, system, ctx, source="openai_to_internal")


def to_internal_chat(payload: dict[str, Any], ctx: RequestContext) -> InternalRequest:
    if is_anthropic_format(payload):
        ctx.logger.debug("request format detected: anthropic")
        return anthropic_to_internal(payload, ctx)
    ctx.logger.debug("request format detected: openai")
    return openai_to_internal(payload, ctx)


def finish_reason(stop_reason: str | None) -> str | None:
    return _FINISH_REASONS.get(stop_reason or "")


def to_chat_response(resp: InternalResponse, request_model: str) -> dict:
    text_parts: list[str] = []
    tool_calls: list[dict[str, Any]] = []

    for block in resp.content:
        if isinstance(block, TextBlock):
            text_parts.append(block.text)
        elif isinstance(block, ToolUseBlock):
            tool_calls.append(
                {
                    "id": block.id,
                    "type": "function",
                    "function": {"name": block.name, "arguments": json.dumps(block.input, ensure_ascii=False)},
                }
            )
        elif isinstance(block, ThinkingBlock):
            text_parts.append(encode_thinking_block(block.thinking, block.signature))
        elif isinstance(block, RedactedThinkingBlock):
            # opaque reasoning has no signature, the envelope is written unsigned
            text_parts.append(encode_thinking_block(block.data))
        else:
            logger.debug("to_chat_response: skipping %s block", block.type)

    message: dict[str, Any] = {"role": "assistant", "content": "".join(text_parts) if text_parts else None}
    if tool_calls:
        message["tool_calls"] = tool_calls

    prompt_tokens = resp.usage.prompt_tokens
    return {
        "id": f"chatcmpl-{resp.id}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": request_model,
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason(resp.stop_reason)}],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": resp.usage.output_tokens,
            "total_tokens": prompt_tokens + resp.usage.output_tokens,
        },
    }
