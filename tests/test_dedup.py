from __future__ import annotations

from fakes import FakeClock

from safesend.core.dedup import DedupStore, compute_fingerprint, normalize_for_fingerprint


def test_normalize_for_fingerprint_collapses_whitespace_and_case() -> None:
    assert normalize_for_fingerprint("  Fee   due\n\tFriday ") == "fee due friday"


def test_fingerprint_depends_on_recipient() -> None:
    assert compute_fingerprint("@alice", "Pay 10") == compute_fingerprint("@alice", "pay  10")
    assert compute_fingerprint("@alice", "Pay 10") != compute_fingerprint("@bob", "Pay 10")


def test_duplicate_blocked_inside_window_only() -> None:
    clock = FakeClock()
    store = DedupStore(clock, block_window=3600.0)
    store.mark_sent("@alice", "Reminder")

    clock._now += 3599.0
    assert store.is_duplicate("@alice", "Reminder")
    assert not store.is_duplicate("@bob", "Reminder")

    clock._now += 1.0
    assert not store.is_duplicate("@alice", "Reminder")
    assert len(store) == 0


def test_len_purges_expired_entries() -> None:
    clock = FakeClock()
    store = DedupStore(clock, block_window=10.0)
    store.mark_sent("@alice", "one")
    clock._now += 5.0
    store.mark_sent("@alice", "two")
    assert len(store) == 2

    clock._now += 5.0
    assert len(store) == 1
    store.clear()
    assert len(store) == 0
