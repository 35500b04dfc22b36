"""Runtime partial events -> internal stream events.

``DemuxState`` is the pure state machine. ``StreamDemultiplexer`` drives it from a
producer task that pulls the bridge's messages into a one-slot channel, so at most
one runtime message is in flight, and cancels the bridge as soon as a tool call
completes: tool execution belongs to the API client, not the runtime.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, AsyncIterator

from agentgate.bridge.interface import AgentBridge, BridgeSubmission, CancellationToken
from agentgate.bridge.transcript import strip_tool_prefix
from agentgate.core.context import RequestContext
from agentgate.core.errors import BridgeCancelledError, BridgeError
from agentgate.core.models import (
    MessageStop,
    StreamEvent,
    TextDelta,
    ThinkingDelta,
    ThinkingStart,
    ThinkingStop,
    ToolUseDelta,
    ToolUseStart,
    ToolUseStop,
    Usage,
)


_END = object()


def parse_usage(payload: dict[str, Any]) -> Usage:
    return Usage(
        input_tokens=int(payload.get("input_tokens") or 0),
        output_tokens=int(payload.get("output_tokens") or 0),
        cache_creation_input_tokens=int(payload.get("cache_creation_input_tokens") or 0),
        cache_read_input_tokens=int(payload.get("cache_read_input_tokens") or 0),
    )


class DemuxState:
    def __init__(self, *, has_tools: bool, tool_prefix: str, ctx: RequestContext) -> None:
        self.has_tools = has_tools
        self.tool_prefix = tool_prefix
        self.ctx = ctx

        self.seen_tool_use = False
        self.current_tool_id: str | None = None
        self.in_thinking = False
        self.signature = ""
        self.usage = Usage()
        self.stop_sent = False
        self.cancel_requested = False

        self.msg_count = 0
        self.text_chars = 0
        self.thinking_chars = 0
        self.tool_json_chars = 0

    def _stop(self, stop_reason: str) -> list[StreamEvent]:
        if self.stop_sent:
            return []
        self.stop_sent = True
        self.ctx.logger.debug(
            "stream done: %s msgs=%d text=%dc thinking=%dc tool_json=%dc",
            stop_reason,
            self.msg_count,
            self.text_chars,
            self.thinking_chars,
            self.tool_json_chars,
        )
        return [MessageStop(stop_reason=stop_reason, usage=self.usage.model_copy())]

    def _block_start(self, block: dict[str, Any]) -> list[StreamEvent]:
        block_type = block.get("type")
        if block_type == "tool_use":
            self.seen_tool_use = True
            self.current_tool_id = str(block.get("id", ""))
            return [ToolUseStart(id=self.current_tool_id, name=strip_tool_prefix(str(block.get("name", "")), self.tool_prefix))]
        if block_type == "thinking":
            self.in_thinking = True
            self.signature = ""
            return [ThinkingStart()]
        return []

    def _block_delta(self, delta: dict[str, Any]) -> list[StreamEvent]:
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            text = str(delta.get("text", ""))
            self.text_chars += len(text)
            return [TextDelta(text=text)]
        if delta_type == "input_json_delta":
            partial = str(delta.get("partial_json", ""))
            self.tool_json_chars += len(partial)
            return [ToolUseDelta(arguments=partial)]
        if delta_type == "thinking_delta":
            thinking = str(delta.get("thinking", ""))
            self.thinking_chars += len(thinking)
            return [ThinkingDelta(thinking=thinking)]
        if delta_type == "signature_delta":
            self.signature += str(delta.get("signature", ""))
            return []
        self.ctx.logger.debug("stream delta ignored type=%s", delta_type)
        return []

    def _block_stop(self) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        if self.current_tool_id is not None:
            events.append(ToolUseStop())
            self.current_tool_id = None
        if self.in_thinking:
            events.append(ThinkingStop(signature=self.signature or None))
            self.in_thinking = False
            self.signature = ""
        return events

    def _update_usage(self, payload: dict[str, Any]) -> None:
        for field in ("input_tokens", "output_tokens", "cache_creation_input_tokens", "cache_read_input_tokens"):
            if payload.get(field) is not None:
                setattr(self.usage, field, int(payload[field]))

    def _stream_event(self, event: dict[str, Any]) -> list[StreamEvent]:
        event_type = event.get("type")
        if event_type == "content_block_start":
            return self._block_start(event.get("content_block") or {})
        if event_type == "content_block_delta":
            return self._block_delta(event.get("delta") or {})
        if event_type == "content_block_stop":
            return self._block_stop()
        if event_type == "message_start":
            usage = (event.get("message") or {}).get("usage")
            if usage:
                self.usage = parse_usage(usage)
            return []
        if event_type == "message_delta":
            if event.get("usage"):
                self._update_usage(event["usage"])
            return []
        if event_type == "message_stop":
            if self.seen_tool_use and self.has_tools and not self.stop_sent:
                self.ctx.logger.debug("message_stop after tool_use, cancelling runtime before tool execution")
                self.cancel_requested = True
                return self._stop("tool_use")
            return []
        return []

    def feed(self, message: dict[str, Any]) -> list[StreamEvent]:
        self.msg_count += 1
        msg_type = message.get("type")
        if msg_type == "stream_event":
            return self._stream_event(message.get("event") or {})
        if msg_type == "result":
            self.ctx.logger.debug("runtime result subtype=%s", message.get("subtype"))
            if message.get("usage"):
                self.usage = parse_usage(message["usage"])
            return self._stop("tool_use" if self.seen_tool_use else "end_turn")
        return []

    def finish(self) -> list[StreamEvent]:
        return self._stop("tool_use" if self.seen_tool_use else "end_turn")


class StreamDemultiplexer:
    def __init__(
        self,
        bridge: AgentBridge,
        submission: BridgeSubmission,
        *,
        has_tools: bool,
        ctx: RequestContext,
    ) -> None:
        self.bridge = bridge
        self.submission = submission
        self.ctx = ctx
        self.token = CancellationToken()
        self.state = DemuxState(has_tools=has_tools, tool_prefix=submission.tool_prefix, ctx=ctx)

    async def _produce(self, channel: asyncio.Queue) -> None:
        try:
            async for message in self.bridge.stream(self.submission, self.token):
                if self.token.cancelled:
                    break
                await channel.put(message)
        except BridgeCancelledError as exc:
            if not self.token.cancelled:
                await channel.put(BridgeError(f"runtime cancelled the turn: {exc}"))
                return
            self.ctx.logger.debug("bridge cancelled after tool_use (expected)")
        except Exception as exc:
            if self.token.cancelled:
                self.ctx.logger.debug("bridge error after cancellation ignored: %s", exc)
            else:
                await channel.put(exc)
                return
        await channel.put(_END)

    async def events(self) -> AsyncIterator[StreamEvent]:
        channel: asyncio.Queue = asyncio.Queue(maxsize=1)
        producer = asyncio.create_task(self._produce(channel))
        self.ctx.logger.debug("stream started")
        try:
            while True:
                item = await channel.get()
                if item is _END:
                    break
                if isinstance(item, BaseException):
                    raise item
                events = self.state.feed(item)
                if self.state.cancel_requested:
                    self.token.cancel()
                for event in events:
                    yield event
                if self.state.cancel_requested:
                    break
            for event in self.state.finish():
                yield event
        finally:
            self.token.cancel()
            producer.cancel()
            with contextlib.suppress(asyncio.CancelledError, BridgeCancelledError):
                await producer
