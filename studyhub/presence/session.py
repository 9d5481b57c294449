"""Lifecycle of one participant's typing state inside one conversation context."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, Callable, Dict, List, Literal, Optional

from ..config import PresenceSettings
from ..services.events import emit_presence_event, emit_session_event
from ..services.naming import TYPING_EVENT, channel_name_for, parse_context_key
from .announcement import ContextMode, TypingAnnouncement, epoch_ms
from .throttle import AnnounceDecision, ThrottledEmitter
from .tracker import PresenceTracker
from .transport import ChannelTransport, SubscriptionHandle, TransportError


LOGGER = logging.getLogger(__name__)

SessionState = Literal["idle", "open", "closed"]
ChangeCallback = Callable[[List[str]], None]


class TypingSession:
    """Own the tracker, emitter, subscription and sweep timer of one context.

    ``open()`` subscribes to the context's channel and starts the periodic
    sweep on the running event loop; ``close()`` cancels the sweep, leaves the
    channel and discards all state. Everything in between runs synchronously
    on the loop thread, so tracker and emitter need no locking.
    """

    def __init__(
        self,
        transport: ChannelTransport,
        context_key: str,
        participant_id: str,
        *,
        mode: ContextMode | str | None = None,
        settings: Optional[PresenceSettings] = None,
        clock: Callable[[], int] = epoch_ms,
        on_change: Optional[ChangeCallback] = None,
    ) -> None:
        if not participant_id:
            raise ValueError("participant id must not be empty")
        self._transport = transport
        self._context_key = context_key
        self._channel = channel_name_for(context_key)
        self._participant_id = participant_id
        self._mode = ContextMode.coerce(mode if mode else parse_context_key(context_key))
        self._settings = settings or PresenceSettings()
        self._clock = clock
        self._on_change = on_change
        self._tracker = PresenceTracker(participant_id, expiry_ms=self._settings.expiry_ms)
        self._emitter = ThrottledEmitter(throttle_ms=self._settings.throttle_ms)
        self._handle: Optional[SubscriptionHandle] = None
        self._sweeper: Optional[asyncio.Task[None]] = None
        self._visible: List[str] = []
        self._state: SessionState = "idle"

    @property
    def context_key(self) -> str:
        return self._context_key

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def participant_id(self) -> str:
        return self._participant_id

    @property
    def mode(self) -> ContextMode:
        return self._mode

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == "open"

    @property
    def is_attached(self) -> bool:
        return self._handle is not None

    @property
    def tracker(self) -> PresenceTracker:
        return self._tracker

    @property
    def emitter(self) -> ThrottledEmitter:
        return self._emitter

    @property
    def sweeper(self) -> Optional[asyncio.Task[None]]:
        return self._sweeper

    async def open(self) -> "TypingSession":
        if self._state != "idle":
            raise RuntimeError(f"Typing session for {self._context_key} is already {self._state}")
        loop = asyncio.get_running_loop()
        self._state = "open"
        self._attach()
        self._sweeper = loop.create_task(
            self._run_sweeper(), name=f"typing-sweep:{self._context_key}"
        )
        emit_session_event(
            "opened",
            context_key=self._context_key,
            participant_id=self._participant_id,
            payload={"mode": self._mode.value, "attached": self.is_attached},
        )
        return self

    async def close(self) -> None:
        if self._state == "closed":
            return
        started = time.perf_counter()
        self._state = "closed"
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
        self._detach()
        self._tracker.clear()
        self._emitter.reset()
        self._visible = []
        emit_session_event(
            "closed",
            context_key=self._context_key,
            participant_id=self._participant_id,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )

    async def __aenter__(self) -> "TypingSession":
        return await self.open()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def notify_typing(self) -> bool:
        """Handle one local keystroke; return ``True`` when an announcement went out.

        Dropped announcements are not retried. The next keystroke after the
        throttle window makes a fresh attempt, re-subscribing first if the
        transport was unavailable when the session opened.
        """

        if self._state != "open":
            return False
        now_ms = self._clock()
        if self._emitter.request_announce(now_ms) is AnnounceDecision.SKIP:
            return False
        if self._handle is None and not self._attach():
            LOGGER.debug("Dropping typing announcement for %s; channel detached", self._channel)
            return False
        announcement = TypingAnnouncement(
            participant_id=self._participant_id,
            timestamp_ms=now_ms,
            context_mode=self._mode,
        )
        try:
            self._transport.publish(self._handle, TYPING_EVENT, announcement.to_payload())
        except TransportError as error:
            LOGGER.debug("Dropping typing announcement for %s: %s", self._channel, error)
            return False
        return True

    def sweep(self) -> List[str]:
        """Evict stale typists now; the sweep task calls this on every tick."""

        if self._state != "open":
            return []
        now_ms = self._clock()
        evicted = self._tracker.sweep(now_ms)
        if evicted:
            emit_presence_event(
                "typing expired",
                context_key=self._context_key,
                payload={"participants": evicted},
            )
        self._publish_if_changed(now_ms)
        return evicted

    def current_typists(self) -> List[str]:
        if self._state != "open":
            return []
        return self._tracker.current_typists(self._clock())

    def _attach(self) -> bool:
        try:
            handle = self._transport.subscribe(self._channel)
        except TransportError as error:
            LOGGER.warning("Could not subscribe to %s: %s", self._channel, error)
            emit_session_event(
                "detached",
                context_key=self._context_key,
                participant_id=self._participant_id,
                payload={"error": str(error)},
                level=logging.WARNING,
            )
            return False
        try:
            self._transport.on_event(handle, TYPING_EVENT, self._handle_typing_event)
        except TransportError as error:
            LOGGER.warning("Could not listen on %s: %s", self._channel, error)
            with contextlib.suppress(TransportError):
                self._transport.unsubscribe(handle)
            return False
        self._handle = handle
        return True

    def _detach(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            self._transport.unsubscribe(handle)
        except TransportError as error:
            LOGGER.warning("Could not unsubscribe from %s: %s", self._channel, error)

    def _handle_typing_event(self, payload: Dict[str, Any]) -> None:
        if self._state != "open":
            return
        announcement = TypingAnnouncement.from_payload(payload)
        if announcement is None:
            LOGGER.debug("Ignoring malformed typing payload on %s", self._channel)
            return
        if self._tracker.on_remote_announcement(announcement.participant_id, announcement.timestamp_ms):
            emit_presence_event(
                "typing started",
                context_key=self._context_key,
                payload={"participant": announcement.participant_id},
            )
        self._publish_if_changed(self._clock())

    def _publish_if_changed(self, now_ms: int) -> None:
        visible = self._tracker.current_typists(now_ms)
        if visible == self._visible:
            return
        self._visible = visible
        if self._on_change is None:
            return
        try:
            self._on_change(list(visible))
        except Exception:  # noqa: BLE001 - a broken surface must not stop the sweep
            LOGGER.exception("Typing change callback for %s raised an error", self._context_key)

    async def _run_sweeper(self) -> None:
        interval = self._settings.sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            self.sweep()


__all__ = ["ChangeCallback", "TypingSession"]
