"""Thinking block <-> chat text codec.

Reasoning blocks travel through the chat-completions channel as fenced text::

    ```thinking
    [Thinking]
    <content, every backtick escaped>
    [SIG=<signature>,CRC=<crc32>]
    ```

The trailer only exists when the runtime supplied a signature. The CRC is computed
over the escaped content and guards against truncation or edits in clients that
echo the text back; it is not an authenticity check, the signature is.
"""

from __future__ import annotations

import re
import zlib
from typing import NamedTuple

from agentgate.core.models import ContentBlock, TextBlock, ThinkingBlock
from agentgate.util.logger import get_logger


logger = get_logger("thinking")

THINKING_HEADER = "```thinking\n[Thinking]\n"
THINKING_FOOTER = "\n```\n\n"

_DECODE_RE = re.compile(
    r"```thinking\n\[Thinking\]\n([\s\S]*?)(?:\n\[SIG=([^,\]]+),CRC=([^\]]+)\])?\n```\n*"
)
_SCAN_RE = re.compile(
    r"```thinking\n\[Thinking\]\n[\s\S]*?(?:\n\[SIG=[^,\]]+,CRC=[^\]]+\])?\n```"
)


class DecodedThinking(NamedTuple):
    thinking: str
    signature: str


def crc32_hex(text: str) -> str:
    return format(zlib.crc32(text.encode("utf-8")) & 0xFFFFFFFF, "08x")


def escape_backticks(text: str) -> str:
    return text.replace("`", "\\`")


def unescape_backticks(text: str) -> str:
    return text.replace("\\`", "`")


def signature_trailer(escaped: str, signature: str | None) -> str:
    if not signature:
        return ""
    return f"\n[SIG={signature},CRC={crc32_hex(escaped)}]"


def encode_thinking_block(thinking: str, signature: str | None = None) -> str:
    escaped = escape_backticks(thinking)
    return f"{THINKING_HEADER}{escaped}{signature_trailer(escaped, signature)}{THINKING_FOOTER}"


def decode_thinking_block(text: str) -> DecodedThinking | None:
    """Decode one envelope; None when it is malformed, unsigned or fails the CRC."""

    match = _DECODE_RE.fullmatch(text)
    if match is None:
        return None

    escaped, signature, crc = match.group(1), match.group(2), match.group(3)
    if not escaped.strip() or not signature or not crc:
        logger.debug("decode_thinking_block: missing content, signature or crc")
        return None

    calculated = crc32_hex(escaped)
    if calculated != crc:
        logger.debug("decode_thinking_block: crc mismatch expected=%s got=%s", crc, calculated)
        return None

    return DecodedThinking(unescape_backticks(escaped), signature)


def parse_embedded_thinking(text: str) -> list[ContentBlock]:
    """Split chat text into text and thinking blocks; undecodable envelopes are dropped."""

    blocks: list[ContentBlock] = []
    last_index = 0

    for match in _SCAN_RE.finditer(text):
        before = text[last_index : match.start()].strip()
        if before:
            blocks.append(TextBlock(text=before))

        decoded = decode_thinking_block(match.group(0))
        if decoded is not None:
            blocks.append(ThinkingBlock(thinking=decoded.thinking, signature=decoded.signature))
        else:
            logger.debug("parse_embedded_thinking: dropping undecodable thinking block at offset=%d", match.start())

        last_index = match.end()

    after = text[last_index:].strip()
    if after:
        blocks.append(TextBlock(text=after))

    return blocks
