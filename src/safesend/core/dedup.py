"""Deduplication helpers and the time-bounded dedup store (core domain)."""

from __future__ import annotations

import hashlib
import re
from typing import Dict

from safesend.core.clock import Clock


def _collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def normalize_for_fingerprint(text: str) -> str:
    """Normalize text for deterministic fingerprinting."""

    return _collapse_whitespace(text).lower()


def compute_fingerprint(recipient_id: str, body: str) -> str:
    """Return a stable hash of the (recipient, body) pair."""

    payload = f"{recipient_id}\n{normalize_for_fingerprint(body)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class DedupStore:
    """Fingerprint -> last-sent timestamp, expiring after the block window.

    Expiry is evaluated on every access, callers never sweep the store.
    """

    def __init__(self, clock: Clock, block_window: float) -> None:
        self._clock = clock
        self._block_window = block_window
        self._sent: Dict[str, float] = {}

    def is_duplicate(self, recipient_id: str, body: str) -> bool:
        return self.is_seen(compute_fingerprint(recipient_id, body))

    def is_seen(self, fingerprint: str) -> bool:
        sent_at = self._sent.get(fingerprint)
        if sent_at is None:
            return False
        if self._clock.now() - sent_at >= self._block_window:
            del self._sent[fingerprint]
            return False
        return True

    def mark_sent(self, recipient_id: str, body: str) -> None:
        self.mark_seen(compute_fingerprint(recipient_id, body))

    def mark_seen(self, fingerprint: str) -> None:
        self._purge()
        self._sent[fingerprint] = self._clock.now()

    def clear(self) -> None:
        self._sent.clear()

    def __len__(self) -> int:
        self._purge()
        return len(self._sent)

    def _purge(self) -> None:
        cutoff = self._clock.now() - self._block_window
        expired = [key for key, sent_at in self._sent.items() if sent_at <= cutoff]
        for key in expired:
            del self._sent[key]
