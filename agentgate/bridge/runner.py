"""Runs one normalized request against the agent runtime."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator

from agentgate.bridge.demux import StreamDemultiplexer, parse_usage
from agentgate.bridge.interface import RESUME_NO_USER_MSG, AgentBridge, BridgeSubmission, CancellationToken
from agentgate.bridge.transcript import build_transcript, strip_tool_prefix
from agentgate.core.context import RequestContext
from agentgate.core.errors import BridgeCancelledError, BridgeError, InvalidRequestError
from agentgate.core.models import (
    ContentBlock,
    InternalRequest,
    InternalResponse,
    RedactedThinkingBlock,
    StreamEvent,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)
from agentgate.storage.kv import TranscriptStore


@dataclass
class RunResult:
    response: InternalResponse | None = None
    events: AsyncIterator[StreamEvent] | None = None


def needs_resume(request: InternalRequest) -> bool:
    """Anything beyond a single fresh user message goes through a transcript."""

    if len(request.messages) > 1:
        return True
    for msg in request.messages:
        if msg.role == "assistant":
            return True
        if any(isinstance(block, ToolResultBlock) for block in msg.content):
            return True
    return False


def _last_user_prompt(request: InternalRequest) -> str:
    for msg in reversed(request.messages):
        if msg.role != "user":
            continue
        texts = [block.text for block in msg.content if isinstance(block, TextBlock)]
        if texts:
            return "\n".join(texts)
    raise InvalidRequestError("no user message found", code="missing_user_message")


async def prepare_submission(request: InternalRequest, ctx: RequestContext, store: TranscriptStore) -> BridgeSubmission:
    settings = ctx.settings
    submission = BridgeSubmission(
        session_id=ctx.session_id,
        prompt=RESUME_NO_USER_MSG,
        tools=list(request.tools or []),
        tool_prefix=settings.bridge_tool_prefix,
        disallowed_tools=list(settings.bridge_disallowed_tools),
        model=request.model,
        system_prompt=request.system,
        max_thinking_tokens=request.max_thinking_tokens,
        stream=request.stream,
    )

    if needs_resume(request):
        transcript = build_transcript(request.messages, request.model, ctx, session_id=ctx.session_id)
        try:
            # 文件或 redis 写入不占用事件循环
            submission.resume = await asyncio.to_thread(store.save, transcript)
            ctx.logger.debug("transcript persisted handle=%s records=%d", submission.resume, len(transcript.records))
        except Exception as exc:
            ctx.logger.warning("transcript persistence failed, sending records inline: %s", exc)
            submission.transcript = transcript.records
    else:
        submission.prompt = _last_user_prompt(request)

    ctx.logger.info(
        "bridge request model=%s messages=%d tools=%d resume=%s stream=%s thinking=%s",
        request.model,
        len(request.messages),
        len(submission.tools),
        submission.prompt == RESUME_NO_USER_MSG,
        request.stream,
        request.thinking_enabled,
    )
    ctx.sink.on_bridge_submit(ctx.session_id, submission)
    return submission


def _response_block(block: dict[str, Any], tool_prefix: str, ctx: RequestContext) -> ContentBlock | None:
    block_type = block.get("type")
    if block_type == "text":
        return TextBlock(text=str(block.get("text", "")))
    if block_type == "thinking":
        return ThinkingBlock(thinking=str(block.get("thinking", "")), signature=block.get("signature") or None)
    if block_type == "redacted_thinking":
        return RedactedThinkingBlock(data=str(block.get("data", "")))
    if block_type == "tool_use":
        return ToolUseBlock(
            id=str(block.get("id", "")),
            name=strip_tool_prefix(str(block.get("name", "")), tool_prefix),
            input=block.get("input") or {},
        )
    ctx.logger.debug("response block ignored type=%s", block_type)
    return None


async def collect_response(
    bridge: AgentBridge,
    submission: BridgeSubmission,
    *,
    has_tools: bool,
    ctx: RequestContext,
) -> InternalResponse:
    token = CancellationToken()
    content: list[ContentBlock] = []
    usage = Usage()
    stop_reason = None
    message_id = uuid.uuid4().hex
    has_tool_use = False

    stream = bridge.stream(submission, token)
    try:
        async for msg in stream:
            msg_type = msg.get("type")
            if msg_type == "assistant":
                message = msg.get("message") or {}
                message_id = str(message.get("id") or message_id)
                if message.get("usage"):
                    usage = parse_usage(message["usage"])
                for raw in message.get("content") or []:
                    if not isinstance(raw, dict):
                        continue
                    block = _response_block(raw, submission.tool_prefix, ctx)
                    if block is None:
                        continue
                    has_tool_use = has_tool_use or isinstance(block, ToolUseBlock)
                    content.append(block)
                if message.get("stop_reason") == "max_tokens":
                    stop_reason = "max_tokens"
                if has_tool_use and has_tools:
                    # 客户端自己执行工具，runtime 到此为止
                    ctx.logger.debug("tool_use received, cancelling runtime before tool execution")
                    token.cancel()
                    break
            elif msg_type == "result":
                if msg.get("usage"):
                    usage = parse_usage(msg["usage"])
                if stop_reason is None and msg.get("subtype") == "success":
                    stop_reason = "end_turn"
                ctx.logger.debug("runtime result subtype=%s", msg.get("subtype"))
                break
    except BridgeCancelledError as exc:
        if not token.cancelled:
            raise BridgeError(f"runtime cancelled the turn: {exc}") from exc
    finally:
        token.cancel()
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()

    if has_tool_use:
        stop_reason = "tool_use"

    ctx.logger.info(
        "response collected blocks=%d stop_reason=%s input_tokens=%d output_tokens=%d",
        len(content),
        stop_reason,
        usage.input_tokens,
        usage.output_tokens,
    )
    return InternalResponse(id=message_id, content=content, model=submission.model, stop_reason=stop_reason, usage=usage)


async def process_request(
    request: InternalRequest,
    ctx: RequestContext,
    *,
    bridge: AgentBridge,
    store: TranscriptStore,
) -> RunResult:
    submission = await prepare_submission(request, ctx, store)
    has_tools = bool(request.tools)
    if request.stream:
        demux = StreamDemultiplexer(bridge, submission, has_tools=has_tools, ctx=ctx)
        return RunResult(events=demux.events())
    return RunResult(response=await collect_response(bridge, submission, has_tools=has_tools, ctx=ctx))
