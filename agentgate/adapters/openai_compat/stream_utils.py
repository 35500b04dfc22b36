"""
流式 SSE 与 chunk 构建。从 router 拆出，便于维护与单测。
"""

from __future__ import annotations

import json
import time
from typing import Any, AsyncIterable, Iterable

from fastapi.responses import StreamingResponse

from agentgate.adapters.openai_compat.mapper import finish_reason
from agentgate.core.models import (
    MessageStop,
    StreamEvent,
    TextDelta,
    ThinkingDelta,
    ThinkingStart,
    ThinkingStop,
    ToolUseDelta,
    ToolUseStart,
)
from agentgate.core.thinking import THINKING_FOOTER, THINKING_HEADER, escape_backticks, signature_trailer


class StreamChunkEncoder:
    """Internal stream events -> ``chat.completion.chunk`` payloads.

    Reasoning is streamed inside the same fenced envelope the terminal encoder
    writes, so the concatenated ``content`` of all chunks equals
    ``to_chat_response`` output for the same blocks.
    """

    def __init__(self, response_id: str, model: str, created: int | None = None) -> None:
        self.response_id = response_id
        self.model = model
        self.created = created if created is not None else int(time.time())
        self.role_sent = False
        self.tool_index = -1
        self._thinking: list[str] = []

    def _chunk(self, delta: dict[str, Any], finish: str | None = None, usage: dict[str, int] | None = None) -> dict[str, Any]:
        if not self.role_sent:
            delta = {"role": "assistant", **delta}
            self.role_sent = True
        chunk: dict[str, Any] = {
            "id": self.response_id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish}],
        }
        if usage is not None:
            chunk["usage"] = usage
        return chunk

    def encode(self, event: StreamEvent) -> dict[str, Any] | None:
        if isinstance(event, TextDelta):
            return self._chunk({"content": event.text})

        if isinstance(event, ThinkingStart):
            self._thinking = []
            return self._chunk({"content": THINKING_HEADER})

        if isinstance(event, ThinkingDelta):
            escaped = escape_backticks(event.thinking)
            self._thinking.append(escaped)
            return self._chunk({"content": escaped})

        if isinstance(event, ThinkingStop):
            trailer = signature_trailer("".join(self._thinking), event.signature)
            self._thinking = []
            return self._chunk({"content": f"{trailer}{THINKING_FOOTER}"})

        if isinstance(event, ToolUseStart):
            self.tool_index += 1
            return self._chunk(
                {
                    "tool_calls": [
                        {
                            "index": self.tool_index,
                            "id": event.id,
                            "type": "function",
                            "function": {"name": event.name, "arguments": ""},
                        }
                    ]
                }
            )

        if isinstance(event, ToolUseDelta):
            return self._chunk({"tool_calls": [{"index": max(self.tool_index, 0), "function": {"arguments": event.arguments}}]})

        if isinstance(event, MessageStop):
            prompt_tokens = event.usage.prompt_tokens
            usage = {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": event.usage.output_tokens,
                "total_tokens": prompt_tokens + event.usage.output_tokens,
            }
            return self._chunk({}, finish=finish_reason(event.stop_reason), usage=usage)

        # tool_use_stop carries nothing on the wire
        return None


def _sse_data(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def _stream_connected_sse_chunk() -> bytes:
    return b": stream connected\n\n"


def _stream_keepalive_sse_chunk() -> bytes:
    return b": keep-alive\n\n"


def _stream_error_sse_chunk(message: str, code: str | None = None) -> bytes:
    """SSE chunk 携带失败原因，兼容 error.message / error.code 解析。"""
    detail = (message or "stream_error").strip() or "stream_error"
    payload: dict[str, Any] = {
        "error": {
            "message": detail,
            "type": "stream_error",
            "code": (code or "internal_error").strip() or "internal_error",
        }
    }
    return _sse_data(payload)


def _stream_done_sse_chunk() -> bytes:
    return b"data: [DONE]\n\n"


def _build_streaming_response(generator: Iterable[bytes] | AsyncIterable[bytes]) -> StreamingResponse:
    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
