"""Synthetic transcript for resuming the agent runtime.

The runtime resumes a session from a JSONL transcript of prior turns. Every record
links to its predecessor through ``parentUuid`` so the history forms one chain.
"""

from __future__ import annotations

import json
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from agentgate.core.context import RequestContext
from agentgate.core.models import (
    REASONING_BLOCK_TYPES,
    ContentBlock,
    InternalMessage,
    TextBlock,
    ThinkingBlock,
    ToolUseBlock,
)


_SPLIT_TEXT_USAGE = {"input_tokens": 50, "output_tokens": 20}
_SPLIT_TOOL_USAGE = {"input_tokens": 50, "output_tokens": 30}
_ASSISTANT_USAGE = {"input_tokens": 100, "output_tokens": 50}


def add_tool_prefix(name: str, prefix: str) -> str:
    return f"{prefix}{name}"


def strip_tool_prefix(name: str, prefix: str) -> str:
    if prefix and name.startswith(prefix):
        return name[len(prefix) :]
    return name


def _reasoning_first(blocks: list[ContentBlock]) -> list[ContentBlock]:
    reasoning = [b for b in blocks if isinstance(b, REASONING_BLOCK_TYPES)]
    others = [b for b in blocks if not isinstance(b, REASONING_BLOCK_TYPES)]
    return reasoning + others


def _short_id(id_factory: Callable[[], uuid.UUID]) -> str:
    return id_factory().hex[:24]


@dataclass
class Transcript:
    session_id: str
    records: list[dict[str, Any]] = field(default_factory=list)

    def to_jsonl(self) -> str:
        return "\n".join(json.dumps(record, ensure_ascii=False) for record in self.records)

    def summary(self) -> list[str]:
        lines = []
        for idx, record in enumerate(self.records):
            content = record["message"].get("content")
            types = ", ".join(block.get("type", "?") for block in content) if isinstance(content, list) else ""
            lines.append(f"[{idx}] type={record['type']} content=[{types}]")
        return lines


class TranscriptBuilder:
    def __init__(
        self,
        model: str | None,
        ctx: RequestContext,
        *,
        session_id: str | None = None,
        id_factory: Callable[[], uuid.UUID] = uuid.uuid4,
        now: datetime | None = None,
    ) -> None:
        self.model = model
        self.tool_prefix = ctx.settings.bridge_tool_prefix
        self.version = ctx.settings.transcript_runtime_version
        self.id_factory = id_factory
        self.transcript = Transcript(session_id=session_id or str(id_factory()))
        self.timestamp = (now or datetime.now(tz=timezone.utc)).isoformat().replace("+00:00", "Z")
        self.cwd = os.getcwd()
        self._parent: str | None = None

    def _dump_block(self, block: ContentBlock) -> dict[str, Any]:
        payload = block.model_dump()
        if isinstance(block, ThinkingBlock) and block.signature is None:
            payload.pop("signature")
        if isinstance(block, ToolUseBlock):
            payload["name"] = add_tool_prefix(block.name, self.tool_prefix)
        return payload

    def _append(self, role: str, message: dict[str, Any]) -> None:
        record_id = str(self.id_factory())
        record: dict[str, Any] = {
            "parentUuid": self._parent,
            "isSidechain": False,
            "userType": "external",
            "cwd": self.cwd,
            "sessionId": self.transcript.session_id,
            "version": self.version,
            "gitBranch": "",
            "type": role,
            "message": message,
            "uuid": record_id,
            "timestamp": self.timestamp,
        }
        if role == "assistant":
            record["requestId"] = f"req_{_short_id(self.id_factory)}"
        self.transcript.records.append(record)
        self._parent = record_id

    def _assistant_message(self, blocks: list[ContentBlock], stop_reason: str | None, usage: dict[str, int]) -> dict[str, Any]:
        return {
            "model": self.model,
            "id": f"msg_{_short_id(self.id_factory)}",
            "type": "message",
            "role": "assistant",
            "content": [self._dump_block(b) for b in _reasoning_first(blocks)],
            "stop_reason": stop_reason,
            "stop_sequence": None,
            "usage": dict(usage),
        }

    def _split_index(self, content: list[ContentBlock]) -> int | None:
        """Index the tool part starts at, or None when the turn stays whole."""

        has_tool = any(isinstance(b, ToolUseBlock) for b in content)
        has_lead = any(isinstance(b, (TextBlock, *REASONING_BLOCK_TYPES)) for b in content)
        if not (has_tool and has_lead):
            return None

        first_tool = next(i for i, b in enumerate(content) if isinstance(b, ToolUseBlock))
        split = first_tool
        # reasoning stays next to the tool call it led to
        if first_tool > 0 and isinstance(content[first_tool - 1], REASONING_BLOCK_TYPES):
            split = first_tool - 1
        return split

    def add(self, msg: InternalMessage) -> None:
        if msg.role == "user":
            self._append("user", {"role": "user", "content": [self._dump_block(b) for b in msg.content]})
            return

        split = self._split_index(msg.content)
        if split is not None and split > 0:
            self._append("assistant", self._assistant_message(msg.content[:split], None, _SPLIT_TEXT_USAGE))
            self._append("assistant", self._assistant_message(msg.content[split:], "tool_use", _SPLIT_TOOL_USAGE))
            return
        if split == 0:
            self._append("assistant", self._assistant_message(msg.content, "tool_use", _SPLIT_TOOL_USAGE))
            return

        has_tool = any(isinstance(b, ToolUseBlock) for b in msg.content)
        stop_reason = "tool_use" if has_tool else "end_turn"
        self._append("assistant", self._assistant_message(msg.content, stop_reason, _ASSISTANT_USAGE))


def build_transcript(
    messages: list[InternalMessage],
    model: str | None,
    ctx: RequestContext,
    *,
    session_id: str | None = None,
    id_factory: Callable[[], uuid.UUID] = uuid.uuid4,
    now: datetime | None = None,
) -> Transcript:
    builder = TranscriptBuilder(model, ctx, session_id=session_id, id_factory=id_factory, now=now)
    for msg in messages:
        builder.add(msg)
    for line in builder.transcript.summary():
        ctx.logger.debug("transcript %s", line)
    return builder.transcript
