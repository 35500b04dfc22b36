import asyncio
import json
import time
from pathlib import Path

import pytest

from agentgate.bridge.interface import RESUME_NO_USER_MSG
from agentgate.bridge.runner import collect_response, needs_resume, prepare_submission, process_request
from agentgate.core.context import RequestContext
from agentgate.core.debug_sink import DebugSink
from agentgate.core.errors import InvalidRequestError
from agentgate.core.models import (
    InternalMessage,
    InternalRequest,
    TextBlock,
    ThinkingBlock,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
)
from agentgate.storage.file_store import FileTranscriptStore
from agentgate.storage.kv import TranscriptStore

from conftest import FakeBridge


class RecordingSink(DebugSink):
    def __init__(self) -> None:
        self.submissions = []

    def on_bridge_submit(self, session_id, submission) -> None:
        self.submissions.append((session_id, submission))


class BrokenStore(TranscriptStore):
    def save(self, transcript):
        raise OSError("disk full")


class SlowStore(TranscriptStore):
    def save(self, transcript):
        time.sleep(0.3)
        return "slow://handle"


def _user(text):
    return InternalMessage(role="user", content=[TextBlock(text=text)])


def _req(messages, **kwargs):
    return InternalRequest(model="claude-opus-4-5-20251101", messages=messages, **kwargs)


def test_needs_resume():
    assert needs_resume(_req([_user("hi")])) is False
    assert needs_resume(_req([_user("a"), _user("b")])) is True
    assert needs_resume(_req([InternalMessage(role="user", content=[ToolResultBlock(tool_use_id="x")])])) is True
    assert needs_resume(_req([_user("hi"), InternalMessage(role="assistant", content=[TextBlock(text="yo")])])) is True


@pytest.mark.asyncio
async def test_fresh_turn_sends_prompt_directly(settings, tmp_path):
    sink = RecordingSink()
    ctx = RequestContext(settings=settings, sink=sink)
    tools = [ToolDefinition(name="search")]

    submission = await prepare_submission(
        _req([_user("hello there")], tools=tools, system="be brief", max_thinking_tokens=10000),
        ctx,
        FileTranscriptStore(str(tmp_path)),
    )

    assert submission.prompt == "hello there"
    assert submission.resume is None
    assert submission.transcript is None
    assert submission.session_id == ctx.session_id
    assert submission.tool_prefix == "mcp__api-tools__"
    assert "Bash" in submission.disallowed_tools
    assert submission.tools == tools
    assert submission.system_prompt == "be brief"
    assert submission.max_thinking_tokens == 10000
    assert sink.submissions == [(ctx.session_id, submission)]
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_resume_turn_persists_transcript(ctx, tmp_path):
    messages = [
        _user("q"),
        InternalMessage(role="assistant", content=[ThinkingBlock(thinking="t", signature="s"), TextBlock(text="a")]),
        _user("q2"),
    ]

    submission = await prepare_submission(_req(messages), ctx, FileTranscriptStore(str(tmp_path)))

    assert submission.prompt == RESUME_NO_USER_MSG
    assert submission.transcript is None
    path = Path(submission.resume)
    assert path.exists()
    records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [r["type"] for r in records] == ["user", "assistant", "user"]
    assert {r["sessionId"] for r in records} == {ctx.session_id}


@pytest.mark.asyncio
async def test_resume_falls_back_to_inline_records_when_store_fails(ctx):
    messages = [_user("q"), InternalMessage(role="assistant", content=[TextBlock(text="a")]), _user("q2")]

    submission = await prepare_submission(_req(messages), ctx, BrokenStore())

    assert submission.resume is None
    assert submission.prompt == RESUME_NO_USER_MSG
    assert len(submission.transcript) == 3


@pytest.mark.asyncio
async def test_transcript_save_runs_off_the_event_loop(ctx):
    messages = [_user("q"), InternalMessage(role="assistant", content=[TextBlock(text="a")]), _user("q2")]
    ticks = 0

    async def ticker():
        nonlocal ticks
        while True:
            await asyncio.sleep(0.01)
            ticks += 1

    task = asyncio.create_task(ticker())
    try:
        submission = await prepare_submission(_req(messages), ctx, SlowStore())
    finally:
        task.cancel()

    assert submission.resume == "slow://handle"
    assert ticks > 5


@pytest.mark.asyncio
async def test_missing_user_message_is_rejected(ctx, tmp_path):
    with pytest.raises(InvalidRequestError) as exc_info:
        await prepare_submission(_req([]), ctx, FileTranscriptStore(str(tmp_path)))
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_collect_response_aggregates_until_result(ctx, tmp_path):
    bridge = FakeBridge(
        [
            {"type": "system", "subtype": "init"},
            {
                "type": "assistant",
                "message": {
                    "id": "msg_01",
                    "content": [
                        {"type": "thinking", "thinking": "hmm", "signature": "sig"},
                        {"type": "text", "text": "hello"},
                    ],
                    "usage": {"input_tokens": 3, "output_tokens": 4},
                },
            },
            {"type": "result", "subtype": "success", "usage": {"input_tokens": 12, "output_tokens": 8}},
        ]
    )
    submission = await prepare_submission(_req([_user("hi")]), ctx, FileTranscriptStore(str(tmp_path)))

    resp = await collect_response(bridge, submission, has_tools=False, ctx=ctx)

    assert resp.id == "msg_01"
    assert resp.content == [ThinkingBlock(thinking="hmm", signature="sig"), TextBlock(text="hello")]
    assert resp.stop_reason == "end_turn"
    assert (resp.usage.input_tokens, resp.usage.output_tokens) == (12, 8)
    assert resp.model == "claude-opus-4-5-20251101"


@pytest.mark.asyncio
async def test_collect_response_stops_at_first_tool_use(ctx, tmp_path):
    bridge = FakeBridge(
        [
            {
                "type": "assistant",
                "message": {
                    "id": "msg_02",
                    "content": [
                        {"type": "text", "text": "calling"},
                        {"type": "tool_use", "id": "toolu_1", "name": "mcp__api-tools__search", "input": {"q": "x"}},
                    ],
                    "usage": {"input_tokens": 20, "output_tokens": 6},
                },
            },
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "never read"}]}},
            {"type": "result", "subtype": "success"},
        ]
    )
    submission = await prepare_submission(
        _req([_user("hi")], tools=[ToolDefinition(name="search")]), ctx, FileTranscriptStore(str(tmp_path))
    )

    resp = await collect_response(bridge, submission, has_tools=True, ctx=ctx)

    assert bridge.yielded == 1
    assert resp.stop_reason == "tool_use"
    assert resp.content[1] == ToolUseBlock(id="toolu_1", name="search", input={"q": "x"})
    assert resp.usage.input_tokens == 20


@pytest.mark.asyncio
async def test_collect_response_keeps_max_tokens(ctx, tmp_path):
    bridge = FakeBridge(
        [
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "cut"}], "stop_reason": "max_tokens"}},
            {"type": "result", "subtype": "success"},
        ]
    )
    submission = await prepare_submission(_req([_user("hi")]), ctx, FileTranscriptStore(str(tmp_path)))

    resp = await collect_response(bridge, submission, has_tools=False, ctx=ctx)

    assert resp.stop_reason == "max_tokens"


@pytest.mark.asyncio
async def test_process_request_picks_stream_or_response(ctx, tmp_path):
    store = FileTranscriptStore(str(tmp_path))
    messages = [{"type": "assistant", "message": {"content": [{"type": "text", "text": "ok"}]}}, {"type": "result", "subtype": "success"}]

    plain = await process_request(_req([_user("hi")]), ctx, bridge=FakeBridge(messages), store=store)
    assert plain.events is None
    assert plain.response.content == [TextBlock(text="ok")]

    streamed = await process_request(_req([_user("hi")], stream=True), ctx, bridge=FakeBridge(messages), store=store)
    assert streamed.response is None
    events = [event async for event in streamed.events]
    assert [e.type for e in events] == ["message_stop"]
