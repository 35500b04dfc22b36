"""Keep reasoning-enabled conversations acceptable to the runtime.

With extended thinking on, the runtime rejects any history whose assistant turns do
not start with a thinking or redacted_thinking block. Some clients drop native
thinking blocks when they replay history, so such turns are repaired locally: the
turn is removed together with the tool results that answered its tool calls.
"""

from __future__ import annotations

from agentgate.core.context import RequestContext
from agentgate.core.models import (
    REASONING_BLOCK_TYPES,
    InternalMessage,
    InternalRequest,
    ToolResultBlock,
    ToolUseBlock,
)
from agentgate.filters.base import BaseFilter


REPAIR_DROP_TURN = "drop_turn"
REPAIR_HOIST = "hoist"


def _starts_with_reasoning(msg: InternalMessage) -> bool:
    return bool(msg.content) and isinstance(msg.content[0], REASONING_BLOCK_TYPES)


def _hoist_reasoning(msg: InternalMessage) -> InternalMessage | None:
    reasoning = [b for b in msg.content if isinstance(b, REASONING_BLOCK_TYPES)]
    if not reasoning:
        return None
    others = [b for b in msg.content if not isinstance(b, REASONING_BLOCK_TYPES)]
    return msg.model_copy(update={"content": reasoning + others})


class ThinkingConsistencyFilter(BaseFilter):
    name = "thinking_consistency"

    def __init__(self, source: str = "request") -> None:
        self.source = source
        self._report = {"filter": self.name, "hit": False, "removed_turns": 0, "removed_tool_results": 0}

    def enabled(self, req: InternalRequest, ctx: RequestContext) -> bool:
        return req.thinking_enabled

    def report(self) -> dict:
        return dict(self._report)

    def filter_messages(self, messages: list[InternalMessage], ctx: RequestContext) -> list[InternalMessage]:
        mode = ctx.settings.thinking_repair_mode.strip().lower()
        removed_tool_ids: set[str] = set()
        removed_turns = 0
        kept: list[InternalMessage] = []

        for idx, msg in enumerate(messages):
            if msg.role != "assistant" or _starts_with_reasoning(msg):
                kept.append(msg)
                continue

            if mode == REPAIR_HOIST:
                hoisted = _hoist_reasoning(msg)
                if hoisted is not None:
                    ctx.logger.info("%s: moved thinking to the front of assistant message[%d]", self.source, idx)
                    kept.append(hoisted)
                    continue

            removed_tool_ids.update(b.id for b in msg.content if isinstance(b, ToolUseBlock))
            removed_turns += 1
            ctx.logger.warning(
                "%s: removing assistant message[%d] without leading thinking block (%s)",
                self.source,
                idx,
                ", ".join(b.type for b in msg.content),
            )

        removed_results = 0
        if removed_tool_ids:
            repaired: list[InternalMessage] = []
            for msg in kept:
                if msg.role != "user":
                    repaired.append(msg)
                    continue
                content = []
                for block in msg.content:
                    if isinstance(block, ToolResultBlock) and block.tool_use_id in removed_tool_ids:
                        ctx.logger.warning("removing orphaned tool_result for tool_use_id=%s", block.tool_use_id)
                        removed_results += 1
                        continue
                    content.append(block)
                if content:
                    repaired.append(msg.model_copy(update={"content": content}))
            kept = repaired

        self._report = {
            "filter": self.name,
            "hit": bool(removed_turns or removed_results),
            "removed_turns": removed_turns,
            "removed_tool_results": removed_results,
        }
        return kept

    def process_request(self, req: InternalRequest, ctx: RequestContext) -> InternalRequest:
        return req.model_copy(update={"messages": self.filter_messages(req.messages, ctx)})
