"""Agent runtime bridge contract."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

from pydantic import BaseModel, Field

from agentgate.core.models import ToolDefinition


# prompt sent when the turn resumes from a transcript instead of a live user message
RESUME_NO_USER_MSG = "__RESUME_NO_USER_MSG__"


class CancellationToken:
    """One-way cancellation flag shared between a consumer and a bridge."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class BridgeSubmission(BaseModel):
    session_id: str
    prompt: str
    resume: str | None = None
    transcript: list[dict[str, Any]] | None = None
    tools: list[ToolDefinition] = Field(default_factory=list)
    tool_prefix: str = ""
    disallowed_tools: list[str] = Field(default_factory=list)
    model: str | None = None
    system_prompt: str | None = None
    max_thinking_tokens: int | None = None
    stream: bool = False


class AgentBridge(ABC):
    """Yields runtime messages in generation order.

    Messages are plain dicts as the runtime emits them:
    ``{"type": "stream_event", "event": {...}}`` partial events (streaming only),
    ``{"type": "assistant", "message": {...}}`` complete assistant messages and a
    final ``{"type": "result", ...}``. Implementations must stop producing once
    ``token`` is cancelled and may raise ``BridgeCancelledError`` when they do.
    """

    @abstractmethod
    def stream(self, submission: BridgeSubmission, token: CancellationToken) -> AsyncIterator[dict[str, Any]]:
        pass

    async def aclose(self) -> None:
        return None
