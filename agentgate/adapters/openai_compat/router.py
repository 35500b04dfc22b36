"""OpenAI-compatible routes."""

from __future__ import annotations

import asyncio
import contextlib
import traceback
from typing import Any, AsyncGenerator, AsyncIterator

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from agentgate.adapters.openai_compat.mapper import to_chat_response, to_internal_chat
from agentgate.adapters.openai_compat.stream_utils import (
    StreamChunkEncoder,
    _build_streaming_response,
    _sse_data,
    _stream_connected_sse_chunk,
    _stream_done_sse_chunk,
    _stream_error_sse_chunk,
    _stream_keepalive_sse_chunk,
)
from agentgate.bridge.runner import process_request
from agentgate.core.context import RequestContext
from agentgate.core.errors import AgentGateError, InvalidRequestError
from agentgate.core.models import MessageStop, StreamEvent


router = APIRouter()
_STREAM_END = object()


def error_body(message: str, error_type: str, code: str, stack: str | None = None) -> dict[str, Any]:
    error: dict[str, Any] = {"message": message, "type": error_type, "code": code}
    if stack:
        error["stack"] = stack
    return {"error": error}


def _error_response(exc: AgentGateError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc) or exc.code, exc.error_type, exc.code),
    )


def _internal_error_response(exc: Exception, ctx: RequestContext) -> JSONResponse:
    stack = traceback.format_exc() if ctx.settings.expose_error_stack else None
    return JSONResponse(
        status_code=500,
        content=error_body(str(exc) or "Internal server error", "api_error", "internal_error", stack),
    )


def _build_context(request: Request) -> RequestContext:
    state = request.app.state
    return RequestContext(settings=state.settings, sink=state.sink)


async def _read_payload(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise InvalidRequestError(f"request body is not valid JSON: {exc}", code="invalid_json") from exc
    if not isinstance(payload, dict):
        raise InvalidRequestError("request body must be a JSON object", code="invalid_json")
    return payload


def _validate_payload(payload: dict[str, Any]) -> None:
    messages = payload.get("messages")
    if not payload.get("model") or not isinstance(messages, list) or not messages:
        raise InvalidRequestError("model and messages are required", code="missing_required_parameter")


async def _next_event(iterator: AsyncIterator[StreamEvent]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _STREAM_END


async def _stream_chat(
    events: AsyncIterator[StreamEvent],
    encoder: StreamChunkEncoder,
    ctx: RequestContext,
) -> AsyncGenerator[bytes, None]:
    heartbeat = ctx.settings.stream_heartbeat_seconds
    pending: asyncio.Task | None = None
    chunk_count = 0
    yield _stream_connected_sse_chunk()
    try:
        while True:
            if pending is None:
                pending = asyncio.create_task(_next_event(events))
            done, _ = await asyncio.wait({pending}, timeout=heartbeat)
            if not done:
                # 等待 runtime 期间保持连接
                yield _stream_keepalive_sse_chunk()
                continue
            task, pending = pending, None
            event = task.result()
            if event is _STREAM_END:
                break
            chunk = encoder.encode(event)
            if chunk is not None:
                chunk_count += 1
                yield _sse_data(chunk)
            if isinstance(event, MessageStop):
                # 终止 chunk 之后不再等 runtime 收尾
                break
        ctx.logger.info("chat stream finished chunks=%d", chunk_count)
        yield _stream_done_sse_chunk()
    except AgentGateError as exc:
        ctx.logger.error("chat stream failed code=%s error=%s", exc.code, exc)
        yield _stream_error_sse_chunk(str(exc), code=exc.code)
        yield _stream_done_sse_chunk()
    except Exception as exc:
        ctx.logger.exception("chat stream failed: %s", exc)
        yield _stream_error_sse_chunk(str(exc), code="internal_error")
        yield _stream_done_sse_chunk()
    finally:
        if pending is not None and not pending.done():
            pending.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pending
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()


@router.post("/chat/completions")
async def chat_completions(request: Request):
    ctx = _build_context(request)
    state = request.app.state
    try:
        payload = await _read_payload(request)
        ctx.sink.on_raw_request(ctx.session_id, payload)
        _validate_payload(payload)
        request_model = str(payload["model"])
        ctx.logger.info(
            "chat request model=%s stream=%s messages=%d tools=%d",
            request_model,
            bool(payload.get("stream")),
            len(payload["messages"]),
            len(payload.get("tools") or []),
        )

        req = to_internal_chat(payload, ctx)
        ctx.sink.on_normalized(ctx.session_id, req)
        result = await process_request(req, ctx, bridge=state.bridge, store=state.store)
    except AgentGateError as exc:
        ctx.logger.warning("chat request rejected status=%s code=%s error=%s", exc.status_code, exc.code, exc)
        return _error_response(exc)
    except Exception as exc:
        ctx.logger.exception("chat request failed: %s", exc)
        return _internal_error_response(exc, ctx)

    if result.events is not None:
        encoder = StreamChunkEncoder(f"chatcmpl-{ctx.request_id}", request_model)
        return _build_streaming_response(_stream_chat(result.events, encoder, ctx))
    return JSONResponse(content=to_chat_response(result.response, request_model))
