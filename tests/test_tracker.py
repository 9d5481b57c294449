from __future__ import annotations

import pytest

from studyhub.presence import PresenceTracker


@pytest.fixture
def tracker() -> PresenceTracker:
    return PresenceTracker("me")


@pytest.mark.parametrize("announced_at", [0, 1, 2600, 1_700_000_000_000])
def test_sweep_evicts_exactly_at_expiry(tracker: PresenceTracker, announced_at: int) -> None:
    tracker.on_remote_announcement("ana", announced_at)

    assert tracker.sweep(announced_at + 4999) == []
    assert tracker.current_typists() == ["ana"]

    assert tracker.sweep(announced_at + 5000) == ["ana"]
    assert tracker.current_typists() == []


def test_sweep_after_expiry_keeps_fresh_peers(tracker: PresenceTracker) -> None:
    tracker.on_remote_announcement("ana", 0)
    tracker.on_remote_announcement("ben", 3000)

    assert tracker.sweep(6000) == ["ana"]
    assert tracker.current_typists() == ["ben"]


def test_local_participant_is_never_reflected(tracker: PresenceTracker) -> None:
    assert tracker.on_remote_announcement("me", 100) is False

    assert tracker.current_typists() == []
    assert tracker.last_seen("me") is None


def test_duplicate_announcement_is_idempotent(tracker: PresenceTracker) -> None:
    assert tracker.on_remote_announcement("ana", 1000) is True
    assert tracker.on_remote_announcement("ana", 1000) is False

    assert tracker.current_typists() == ["ana"]
    assert tracker.last_seen("ana") == 1000
    assert len(tracker) == 1


def test_late_out_of_order_announcement_does_not_regress(tracker: PresenceTracker) -> None:
    tracker.on_remote_announcement("ana", 1000)
    tracker.on_remote_announcement("ana", 500)

    assert tracker.last_seen("ana") == 1000
    assert tracker.sweep(5500) == []
    assert tracker.sweep(6000) == ["ana"]


def test_refresh_moves_expiry_forward(tracker: PresenceTracker) -> None:
    tracker.on_remote_announcement("ana", 0)
    tracker.on_remote_announcement("ana", 2600)

    assert tracker.sweep(7000) == []
    assert tracker.sweep(7600) == ["ana"]


def test_typists_keep_first_seen_order(tracker: PresenceTracker) -> None:
    tracker.on_remote_announcement("cy", 10)
    tracker.on_remote_announcement("ana", 20)
    tracker.on_remote_announcement("ben", 30)
    tracker.on_remote_announcement("cy", 40)

    assert tracker.current_typists() == ["cy", "ana", "ben"]


@pytest.mark.parametrize("participant_id, timestamp", [(None, 10), ("", 10), ("ana", None)])
def test_malformed_announcements_are_dropped(
    tracker: PresenceTracker, participant_id, timestamp
) -> None:
    assert tracker.on_remote_announcement(participant_id, timestamp) is False
    assert tracker.current_typists() == []


def test_current_typists_with_clock_hides_unswept_records(tracker: PresenceTracker) -> None:
    tracker.on_remote_announcement("ana", 0)
    tracker.on_remote_announcement("ben", 4000)

    assert tracker.current_typists(now_ms=5200) == ["ben"]
    # Reading never mutates; the record is still there until the next sweep.
    assert tracker.current_typists() == ["ana", "ben"]


def test_clear_discards_everything(tracker: PresenceTracker) -> None:
    tracker.on_remote_announcement("ana", 0)
    tracker.clear()

    assert tracker.current_typists() == []
    assert tracker.sweep(10_000) == []


def test_custom_expiry_window() -> None:
    tracker = PresenceTracker("me", expiry_ms=1000)
    tracker.on_remote_announcement("ana", 0)

    assert tracker.expiry_ms == 1000
    assert tracker.sweep(999) == []
    assert tracker.sweep(1000) == ["ana"]
