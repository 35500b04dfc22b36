import json
import logging

from agentgate.bridge.interface import BridgeSubmission
from agentgate.core.context import RequestContext
from agentgate.core.debug_sink import DebugSink, FileDebugSink
from agentgate.core.models import InternalMessage, InternalRequest, TextBlock


def test_file_debug_sink_writes_artifacts(tmp_path):
    sink = FileDebugSink(tmp_path)
    session_id = "0123456789abcdef"

    sink.on_raw_request(session_id, {"model": "m", "messages": [{"role": "user", "content": "你好"}]})
    sink.on_normalized(session_id, InternalRequest(model="m", messages=[InternalMessage(role="user", content=[TextBlock(text="hi")])]))
    sink.on_bridge_submit(session_id, BridgeSubmission(session_id=session_id, prompt="hi"))
    sink.close()

    names = sorted(p.name for p in tmp_path.iterdir())
    assert [n.split("-")[0] for n in names] == ["raw", "request", "submit"]
    assert all(n.endswith("-01234567.json") for n in names)
    raw = next(p for p in tmp_path.iterdir() if p.name.startswith("raw-"))
    assert json.loads(raw.read_text(encoding="utf-8"))["messages"][0]["content"] == "你好"


def test_default_sink_is_noop(tmp_path):
    sink = DebugSink()

    assert sink.on_raw_request("s", {"a": 1}) is None
    sink.close()
    assert list(tmp_path.iterdir()) == []


def test_request_logger_prefixes_request_id(caplog):
    ctx = RequestContext(request_id="abcdef0123456789")
    logger = logging.getLogger("agentgate")
    previous = logger.propagate
    logger.propagate = True
    try:
        with caplog.at_level(logging.INFO, logger="agentgate"):
            ctx.logger.info("hello %s", "world")
    finally:
        logger.propagate = previous

    assert "[abcdef01] hello world" in caplog.text
