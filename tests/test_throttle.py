from __future__ import annotations

import pytest

from studyhub.presence import AnnounceDecision, ThrottledEmitter


@pytest.mark.parametrize("first_at", [0, 1, 2499, 1_700_000_000_000, -5])
def test_first_request_always_sends(first_at: int) -> None:
    emitter = ThrottledEmitter()

    assert emitter.request_announce(first_at) is AnnounceDecision.SEND_NOW
    assert emitter.last_sent_ms == first_at


@pytest.mark.parametrize("gap", [0, 1, 1000, 2499])
def test_requests_inside_window_are_skipped(gap: int) -> None:
    emitter = ThrottledEmitter()

    assert emitter.request_announce(10_000) is AnnounceDecision.SEND_NOW
    assert emitter.request_announce(10_000 + gap) is AnnounceDecision.SKIP
    assert emitter.last_sent_ms == 10_000


def test_request_at_window_boundary_sends() -> None:
    emitter = ThrottledEmitter()

    emitter.request_announce(10_000)
    assert emitter.request_announce(12_500) is AnnounceDecision.SEND_NOW
    assert emitter.last_sent_ms == 12_500


def test_skipped_requests_do_not_extend_window() -> None:
    emitter = ThrottledEmitter()
    decisions = [emitter.request_announce(at) for at in (0, 1000, 2000, 2500, 3000, 5000)]

    assert decisions == [
        AnnounceDecision.SEND_NOW,
        AnnounceDecision.SKIP,
        AnnounceDecision.SKIP,
        AnnounceDecision.SEND_NOW,
        AnnounceDecision.SKIP,
        AnnounceDecision.SEND_NOW,
    ]


def test_reset_restores_first_call_exemption() -> None:
    emitter = ThrottledEmitter(throttle_ms=2500)
    emitter.request_announce(0)
    emitter.reset()

    assert emitter.last_sent_ms is None
    assert emitter.request_announce(1) is AnnounceDecision.SEND_NOW


def test_custom_throttle_interval() -> None:
    emitter = ThrottledEmitter(throttle_ms=100)

    assert emitter.throttle_ms == 100
    emitter.request_announce(0)
    assert emitter.request_announce(99) is AnnounceDecision.SKIP
    assert emitter.request_announce(100) is AnnounceDecision.SEND_NOW
