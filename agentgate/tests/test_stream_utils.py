import json

from agentgate.adapters.openai_compat.mapper import to_chat_response
from agentgate.adapters.openai_compat.stream_utils import (
    StreamChunkEncoder,
    _sse_data,
    _stream_done_sse_chunk,
    _stream_error_sse_chunk,
)
from agentgate.core.models import (
    InternalResponse,
    MessageStop,
    TextBlock,
    TextDelta,
    ThinkingBlock,
    ThinkingDelta,
    ThinkingStart,
    ThinkingStop,
    ToolUseDelta,
    ToolUseStart,
    ToolUseStop,
    Usage,
)
from agentgate.core.thinking import encode_thinking_block


def _content(chunks):
    return "".join(c["choices"][0]["delta"].get("content") or "" for c in chunks if c is not None)


def test_streamed_thinking_concatenates_to_terminal_encoding():
    encoder = StreamChunkEncoder("chatcmpl-1", "m", created=1)
    events = [
        ThinkingStart(),
        ThinkingDelta(thinking="use `grep`"),
        ThinkingDelta(thinking=" then ```sed```"),
        ThinkingStop(signature="sig-xyz"),
        TextDelta(text="Answer"),
    ]

    chunks = [encoder.encode(e) for e in events]

    thinking = "use `grep` then ```sed```"
    assert _content(chunks) == encode_thinking_block(thinking, "sig-xyz") + "Answer"
    terminal = to_chat_response(
        InternalResponse(id="x", content=[ThinkingBlock(thinking=thinking, signature="sig-xyz"), TextBlock(text="Answer")]),
        "m",
    )
    assert _content(chunks) == terminal["choices"][0]["message"]["content"]


def test_unsigned_streamed_thinking_has_no_trailer():
    encoder = StreamChunkEncoder("chatcmpl-1", "m")
    chunks = [encoder.encode(e) for e in (ThinkingStart(), ThinkingDelta(thinking="x"), ThinkingStop())]

    assert _content(chunks) == encode_thinking_block("x")


def test_role_only_on_first_chunk_and_chunk_envelope():
    encoder = StreamChunkEncoder("chatcmpl-7", "claude-4.5-opus", created=123)

    first = encoder.encode(TextDelta(text="a"))
    second = encoder.encode(TextDelta(text="b"))

    assert first["choices"][0]["delta"] == {"role": "assistant", "content": "a"}
    assert second["choices"][0]["delta"] == {"content": "b"}
    assert first["object"] == "chat.completion.chunk"
    assert (first["id"], first["model"], first["created"]) == ("chatcmpl-7", "claude-4.5-opus", 123)
    assert first["choices"][0]["finish_reason"] is None


def test_tool_calls_get_sequential_indices():
    encoder = StreamChunkEncoder("chatcmpl-1", "m")
    events = [
        ToolUseStart(id="call_a", name="search"),
        ToolUseDelta(arguments='{"q":1}'),
        ToolUseStop(),
        ToolUseStart(id="call_b", name="read"),
        ToolUseDelta(arguments="{}"),
        ToolUseStop(),
    ]

    chunks = [encoder.encode(e) for e in events]

    assert chunks[2] is None and chunks[5] is None
    start_a = chunks[0]["choices"][0]["delta"]["tool_calls"][0]
    assert start_a == {"index": 0, "id": "call_a", "type": "function", "function": {"name": "search", "arguments": ""}}
    assert chunks[1]["choices"][0]["delta"]["tool_calls"][0] == {"index": 0, "function": {"arguments": '{"q":1}'}}
    assert chunks[3]["choices"][0]["delta"]["tool_calls"][0]["index"] == 1
    assert chunks[4]["choices"][0]["delta"]["tool_calls"][0]["index"] == 1


def test_message_stop_carries_finish_reason_and_usage():
    encoder = StreamChunkEncoder("chatcmpl-1", "m")
    encoder.encode(TextDelta(text="x"))

    chunk = encoder.encode(
        MessageStop(stop_reason="tool_use", usage=Usage(input_tokens=10, output_tokens=4, cache_read_input_tokens=6))
    )

    assert chunk["choices"][0]["delta"] == {}
    assert chunk["choices"][0]["finish_reason"] == "tool_calls"
    assert chunk["usage"] == {"prompt_tokens": 16, "completion_tokens": 4, "total_tokens": 20}


def test_sse_frames():
    assert _sse_data({"a": "ü"}) == 'data: {"a": "ü"}\n\n'.encode("utf-8")
    assert _stream_done_sse_chunk() == b"data: [DONE]\n\n"
    frame = _stream_error_sse_chunk("bridge_unreachable: refused", code="bridge_error").decode("utf-8")
    assert frame.startswith("data: ")
    payload = json.loads(frame[len("data: ") :].strip())
    assert payload == {"error": {"message": "bridge_unreachable: refused", "type": "stream_error", "code": "bridge_error"}}
