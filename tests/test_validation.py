from __future__ import annotations

import pytest

from safesend.core.errors import ValidationError
from safesend.core.validation import mask_recipient, parse_recipient_id, sanitize_body


def test_parse_recipient_id_accepts_supported_forms() -> None:
    assert parse_recipient_id(" @Class_Treasurer ").normalized == "@class_treasurer"
    assert parse_recipient_id("chat_id:-100123").normalized == "chat_id:-100123"
    phone = parse_recipient_id("+49 151-2345 6789")
    assert phone.normalized == "+4915123456789"
    assert phone.kind == "phone"


@pytest.mark.parametrize(
    "value",
    ["", "alice", "@ab", "@1abc", "chat_id:abc", "+123", "+12345678901234567"],
)
def test_parse_recipient_id_rejects_malformed_values(value: str) -> None:
    with pytest.raises(ValidationError):
        parse_recipient_id(value)


def test_sanitize_body_strips_control_characters() -> None:
    assert sanitize_body("  Fee\x00 due\x07\n", 4000) == "Fee due"
    assert sanitize_body("Line one\nLine two\tend", 4000) == "Line one\nLine two\tend"


def test_sanitize_body_rejects_empty_long_and_spammy_text() -> None:
    with pytest.raises(ValidationError):
        sanitize_body("\x00\x01  ", 4000)
    with pytest.raises(ValidationError):
        sanitize_body("x" * 4001, 4000)
    with pytest.raises(ValidationError):
        sanitize_body("Pay now" + "w" * 12, 4000)
    with pytest.raises(ValidationError):
        sanitize_body("Pay here !!!!!", 4000)
    with pytest.raises(ValidationError):
        sanitize_body("https://example.com/" + "a" * 60, 4000)


def test_mask_recipient() -> None:
    assert mask_recipient("@alice_smith") == "@alice..."
    assert mask_recipient("@bob") == "@bob"
