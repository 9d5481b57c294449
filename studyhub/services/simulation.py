"""Replay a scripted typing exchange against the in-memory transport."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Iterable, List, Literal, Optional, Tuple

from ..config import PresenceSettings
from ..presence import InMemoryTransport, TypingSession, format_typing_summary
from .naming import direct_context_key


StepKind = Literal["keystroke", "sweep"]


class VirtualClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 0) -> None:
        self.now_ms = int(start_ms)

    def __call__(self) -> int:
        return self.now_ms

    def advance_to(self, at_ms: int) -> None:
        self.now_ms = max(self.now_ms, int(at_ms))


@dataclass(frozen=True)
class SimulationStep:
    at_ms: int
    kind: StepKind
    sent: Optional[bool]
    typists: Tuple[str, ...]

    @property
    def summary(self) -> str:
        return format_typing_summary(self.typists)


def _build_timeline(
    keystrokes: Iterable[int], *, sweep_interval_ms: int, until_ms: int
) -> List[Tuple[int, StepKind]]:
    timeline: List[Tuple[int, StepKind]] = [(int(at), "keystroke") for at in keystrokes]
    timeline.extend(
        (tick, "sweep") for tick in range(sweep_interval_ms, until_ms + 1, sweep_interval_ms)
    )
    # Keystrokes land before a sweep scheduled for the same instant.
    timeline.sort(key=lambda item: (item[0], item[1] != "keystroke"))
    return timeline


async def _run_exchange(
    keystrokes: List[int],
    *,
    settings: PresenceSettings,
    until_ms: int,
    typist: str,
    observer: str,
) -> List[SimulationStep]:
    transport = InMemoryTransport()
    clock = VirtualClock()
    context_key = direct_context_key(typist, observer)
    steps: List[SimulationStep] = []
    sender = TypingSession(transport, context_key, typist, settings=settings, clock=clock)
    receiver = TypingSession(transport, context_key, observer, settings=settings, clock=clock)
    async with sender, receiver:
        timeline = _build_timeline(
            keystrokes, sweep_interval_ms=settings.sweep_interval_ms, until_ms=until_ms
        )
        for at_ms, kind in timeline:
            clock.advance_to(at_ms)
            sent: Optional[bool] = None
            if kind == "keystroke":
                sent = sender.notify_typing()
            else:
                receiver.sweep()
            steps.append(
                SimulationStep(
                    at_ms=at_ms,
                    kind=kind,
                    sent=sent,
                    typists=tuple(receiver.tracker.current_typists()),
                )
            )
    return steps


def simulate_exchange(
    keystrokes: Iterable[int],
    *,
    settings: Optional[PresenceSettings] = None,
    until_ms: Optional[int] = None,
    typist: str = "A",
    observer: str = "B",
) -> List[SimulationStep]:
    """Type at each of *keystrokes* (ms) as *typist* and record what *observer* sees.

    The observer's sweep runs on virtual ticks of the configured interval, so
    the result is deterministic and independent of wall-clock time.
    """

    presence = settings or PresenceSettings()
    ordered = sorted(int(at) for at in keystrokes)
    if until_ms is None:
        last = ordered[-1] if ordered else 0
        until_ms = last + presence.expiry_ms + 2 * presence.sweep_interval_ms
    return asyncio.run(
        _run_exchange(
            ordered,
            settings=presence,
            until_ms=int(until_ms),
            typist=typist,
            observer=observer,
        )
    )


__all__ = ["SimulationStep", "VirtualClock", "simulate_exchange"]
