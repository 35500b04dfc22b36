import asyncio
from typing import Any

import pytest

from agentgate.bridge.interface import AgentBridge
from agentgate.config.settings import Settings
from agentgate.core.context import RequestContext
from agentgate.core.errors import BridgeCancelledError


class FakeBridge(AgentBridge):
    """Replays canned runtime messages; honours cooperative cancellation."""

    def __init__(self, messages: list[Any], delay: float = 0.0, linger: float = 0.0) -> None:
        self.messages = messages
        self.delay = delay
        self.linger = linger
        self.submissions = []
        self.yielded = 0
        self.closed = False

    async def stream(self, submission, token):
        self.submissions.append(submission)
        for item in self.messages:
            if token.cancelled:
                raise BridgeCancelledError("cancelled")
            if self.delay:
                await asyncio.sleep(self.delay)
            if isinstance(item, Exception):
                raise item
            self.yielded += 1
            yield item
        # runtime keeps the process alive after its final message
        if self.linger:
            await asyncio.sleep(self.linger)

    async def aclose(self) -> None:
        self.closed = True


def stream_event(event: dict) -> dict:
    return {"type": "stream_event", "event": event}


def block_start(block: dict) -> dict:
    return stream_event({"type": "content_block_start", "content_block": block})


def block_delta(delta: dict) -> dict:
    return stream_event({"type": "content_block_delta", "delta": delta})


def block_stop() -> dict:
    return stream_event({"type": "content_block_stop"})


@pytest.fixture
def settings() -> Settings:
    return Settings(log_file="", debug=False, expose_error_stack=False, thinking_repair_mode="drop_turn")


@pytest.fixture
def ctx(settings) -> RequestContext:
    return RequestContext(request_id="req-test-0001", session_id="sess-test-0001", settings=settings)
