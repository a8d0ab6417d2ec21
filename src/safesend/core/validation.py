"""Recipient id and message body validation."""

from __future__ import annotations

import re
from dataclasses import dataclass

from safesend.core.errors import ValidationError

_USERNAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]{3,31}$")
_PHONE_RE = re.compile(r"^\+\d{7,15}$")
_CONTROL_CHARS_RE = re.compile(r"[\u0000-\u0008\u000B\u000C\u000E-\u001F\u007F-\u009F]")

SPAM_PATTERNS = (
    re.compile(r"(.)\1{10,}"),
    re.compile(r"https?://\S{50,}"),
    re.compile(r"[!@#$%^&*()]{5,}"),
)


@dataclass(frozen=True)
class RecipientInfo:
    normalized: str
    kind: str


def parse_recipient_id(raw_value: str) -> RecipientInfo:
    """Normalize a recipient id or raise ValidationError.

    Accepted forms: ``@username``, ``chat_id:<int>`` and ``+<digits>``.
    """

    if not isinstance(raw_value, str):
        raise ValidationError("recipient id must be a string")
    raw_value = raw_value.strip()
    if not raw_value:
        raise ValidationError("recipient id is required")

    if raw_value.startswith("@"):
        username = raw_value[1:]
        if not _USERNAME_RE.match(username):
            raise ValidationError(f"username is invalid: {raw_value}")
        return RecipientInfo(f"@{username.lower()}", "username")

    if raw_value.startswith("chat_id:"):
        chat_value = raw_value[len("chat_id:") :]
        try:
            chat_id = int(chat_value)
        except ValueError:
            raise ValidationError("chat_id must be numeric") from None
        return RecipientInfo(f"chat_id:{chat_id}", "chat_id")

    if raw_value.startswith("+"):
        phone = re.sub(r"[\s-]", "", raw_value)
        if not _PHONE_RE.match(phone):
            raise ValidationError(f"phone number is invalid: {raw_value}")
        return RecipientInfo(phone, "phone")

    raise ValidationError("recipient id must start with @, chat_id: or +")


def sanitize_body(body: str, max_chars: int) -> str:
    """Strip control characters, trim, and reject empty, oversized or spammy text."""

    if not isinstance(body, str):
        raise ValidationError("message body must be a string")
    if len(body) > max_chars:
        raise ValidationError(f"message is too long (max {max_chars} characters)")

    sanitized = _CONTROL_CHARS_RE.sub("", body).strip()
    if not sanitized:
        raise ValidationError("message is empty after sanitization")

    for pattern in SPAM_PATTERNS:
        if pattern.search(sanitized):
            raise ValidationError("message matches a spam pattern")
    return sanitized


def mask_recipient(recipient_id: str) -> str:
    """Shorten a recipient id for log lines."""

    if len(recipient_id) <= 6:
        return recipient_id
    return f"{recipient_id[:6]}..."
