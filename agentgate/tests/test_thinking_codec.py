from agentgate.core.content import extract_text
from agentgate.core.models import TextBlock, ThinkingBlock
from agentgate.core.thinking import (
    THINKING_FOOTER,
    THINKING_HEADER,
    crc32_hex,
    decode_thinking_block,
    encode_thinking_block,
    parse_embedded_thinking,
)


def test_encode_decode_round_trip_keeps_backticks_and_signature():
    thinking = "Check `foo()` first.\n```python\nprint(1)\n```\ndone"
    encoded = encode_thinking_block(thinking, "sig-abc123")

    decoded = decode_thinking_block(encoded)

    assert decoded is not None
    assert decoded.thinking == thinking
    assert decoded.signature == "sig-abc123"


def test_encoded_envelope_layout():
    encoded = encode_thinking_block("a`b", "s1")

    assert encoded.startswith(THINKING_HEADER)
    assert encoded.endswith(THINKING_FOOTER)
    assert "a\\`b" in encoded
    assert f"[SIG=s1,CRC={crc32_hex('a' + chr(92) + '`b')}]" in encoded
    # no raw fence may appear inside the payload
    assert encoded[len(THINKING_HEADER) : -len(THINKING_FOOTER)].count("```") == 0


def test_crc32_hex_is_eight_lowercase_hex_digits():
    assert crc32_hex("") == "00000000"
    assert crc32_hex("hello") == "3610a686"


def test_unsigned_block_is_not_decodable():
    encoded = encode_thinking_block("no signature here")

    assert "[SIG=" not in encoded
    assert decode_thinking_block(encoded) is None


def test_single_character_tamper_is_rejected():
    encoded = encode_thinking_block("I should think about this", "sig")
    tampered = encoded.replace("think about", "thunk about")

    assert decode_thinking_block(encoded) is not None
    assert decode_thinking_block(tampered) is None


def test_decode_rejects_blank_content_and_garbage():
    assert decode_thinking_block(encode_thinking_block("   ", "sig")) is None
    assert decode_thinking_block("just some text") is None
    assert decode_thinking_block("```python\nprint(1)\n```") is None


def test_parse_embedded_thinking_splits_text_and_thinking():
    text = "Intro line\n" + encode_thinking_block("step one", "sig-1") + "Final answer"

    blocks = parse_embedded_thinking(text)

    assert blocks == [
        TextBlock(text="Intro line"),
        ThinkingBlock(thinking="step one", signature="sig-1"),
        TextBlock(text="Final answer"),
    ]


def test_parse_embedded_thinking_drops_undecodable_envelopes():
    text = "Hi " + encode_thinking_block("unsigned reasoning") + "bye"

    blocks = parse_embedded_thinking(text)

    assert blocks == [TextBlock(text="Hi"), TextBlock(text="bye")]


def test_parse_embedded_thinking_plain_text_and_empty():
    assert parse_embedded_thinking("  hello  ") == [TextBlock(text="hello")]
    assert parse_embedded_thinking("   ") == []


def test_parse_embedded_thinking_handles_consecutive_blocks():
    text = encode_thinking_block("first", "a") + encode_thinking_block("second", "b")

    blocks = parse_embedded_thinking(text)

    assert [b.thinking for b in blocks] == ["first", "second"]
    assert [b.signature for b in blocks] == ["a", "b"]


def test_extract_text_variants():
    assert extract_text("plain") == "plain"
    assert extract_text(
        [
            {"type": "text", "text": "a"},
            {"type": "image_url", "image_url": {"url": "x"}},
            {"type": "text", "text": "b"},
        ]
    ) == "a\nb"
    assert extract_text(None) == ""
    assert extract_text(42) == ""
    assert extract_text([{"type": "text", "text": 3}]) == ""
