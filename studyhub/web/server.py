"""FastAPI application exposing typing indicators over websockets."""

from __future__ import annotations

import asyncio
import contextlib
import contextvars
import json
import logging
import threading
import uuid
from collections import deque
from collections.abc import Mapping, Sequence, Set as AbstractSet
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple

from fastapi import FastAPI, HTTPException, Query, Response, WebSocket, WebSocketDisconnect
from fastapi import status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.types import ASGIApp, Receive, Scope, Send

from ..config import AppConfig
from ..logging_utils import DEFAULT_LOG_FORMAT
from ..presence import (
    ContextMode,
    InMemoryTransport,
    TypingSession,
    epoch_ms,
    format_typing_summary,
    resolve_display_names,
)
from ..presence.transport import ChannelTransport
from ..services.events import (
    PRESENCE_EVENT,
    SESSION_EVENT,
    TRANSPORT_EVENT,
    emit_structured_event,
    normalize_context as _normalize_event_context,
    sanitize_context_value as _sanitize_context_value,
)
from ..services.naming import (
    channel_name_for,
    direct_context_key,
    group_context_key,
    parse_context_key,
)
from ..services.settings import SettingsStore, UISettings, normalize_summary_limit


_SERVER_LOGGER_PREFIXES: Tuple[str, ...] = ("uvicorn", "gunicorn", "hypercorn", "werkzeug")
_PRESENCE_EVENT_TYPES: Set[str] = {PRESENCE_EVENT, SESSION_EVENT}


_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "studyhub_request_id",
    default=None,
)
_ACTOR_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "studyhub_actor",
    default=None,
)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _format_actor_label(role: str, detail: Optional[str] = None) -> str:
    base = role.strip() if role else "actor"
    if detail is None:
        return base
    suffix = str(detail).strip()
    return f"{base}:{suffix}" if suffix else base


def _collect_correlation_context() -> Dict[str, str]:
    context: Dict[str, str] = {}
    request_id = _REQUEST_ID_VAR.get()
    if request_id:
        context["request_id"] = str(request_id)
    actor = _ACTOR_VAR.get()
    if actor:
        context["actor"] = str(actor)
    return context


class RequestContextMiddleware:
    """Assign a correlation identifier to each request or websocket connection."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        scope_type = scope.get("type")
        if scope_type not in {"http", "websocket"}:
            await self.app(scope, receive, send)
            return

        request_id = _new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        if scope_type == "websocket":
            actor_hint = _format_actor_label("socket")
        else:
            method = scope.get("method")
            actor_hint = _format_actor_label(
                "request", method.upper() if isinstance(method, str) else None
            )
        request_token = _REQUEST_ID_VAR.set(request_id)
        actor_token = _ACTOR_VAR.set(actor_hint)

        try:
            await self.app(scope, receive, send)
        finally:
            _ACTOR_VAR.reset(actor_token)
            _REQUEST_ID_VAR.reset(request_token)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects correlation context into records."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple[Any, Dict[str, Any]]:  # type: ignore[override]
        extra: Dict[str, Any] = dict(self.extra)
        provided = kwargs.get("extra")
        if isinstance(provided, dict):
            extra.update(provided)
        correlation = _collect_correlation_context()
        for key, value in correlation.items():
            extra.setdefault(key, value)
        kwargs["extra"] = extra
        return msg, kwargs


LOGGER = ContextualLoggerAdapter(logging.getLogger(__name__), {})
EVENT_LOGGER = ContextualLoggerAdapter(logging.getLogger("studyhub.events"), {})


def _log_event(message: str, **context: Any) -> None:
    emit_structured_event(
        "APP_EVENT",
        message,
        context=context,
        correlation=_collect_correlation_context(),
        logger=EVENT_LOGGER,
    )


class DebugLogHandler(logging.Handler):
    """In-memory log handler backing ``/api/debug/logs``.

    Repeated events with the same type, message and metadata are folded into
    one entry whose ``count`` grows, so a chatty typist does not flush the
    buffer.
    """

    _IGNORED_FIELDS: Set[str] = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "process",
        "processName",
        "taskName",
        "getMessage",
    }
    _DEBUG_FIELDS: Set[str] = {
        "debug_context",
        "debug_event",
        "debug_event_type",
        "debug_payload",
        "debug_correlation",
        "debug_duration_ms",
        "request_id",
        "actor",
    }

    def __init__(self, capacity: int = 500) -> None:
        super().__init__(level=logging.DEBUG)
        self._capacity = max(1, capacity)
        self._entries: Deque[Dict[str, Any]] = deque()
        self._entry_index: Dict[Tuple[Any, ...], Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._last_id = 0
        self.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        self._started_at = datetime.now(timezone.utc)

    def _extract_context(self, record: logging.LogRecord) -> Dict[str, Any]:
        context = getattr(record, "debug_context", None)
        if isinstance(context, dict):
            return dict(_normalize_event_context(context))
        return {}

    def _extract_payload(self, record: logging.LogRecord) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        raw_payload = getattr(record, "debug_payload", None)
        if isinstance(raw_payload, dict):
            payload.update(_normalize_event_context(raw_payload))
        for key, value in record.__dict__.items():
            if key in self._IGNORED_FIELDS or key in self._DEBUG_FIELDS or key.startswith("_"):
                continue
            sanitized = _sanitize_context_value(value)
            if sanitized is None:
                continue
            payload[str(key)] = sanitized
        return payload

    def _extract_correlation(self, record: logging.LogRecord) -> Dict[str, str]:
        correlation: Dict[str, str] = {}
        stored = getattr(record, "debug_correlation", None)
        if isinstance(stored, dict):
            for key, value in stored.items():
                sanitized = _sanitize_context_value(value)
                if sanitized is not None:
                    correlation[str(key)] = str(sanitized)
        for field_name in ("request_id", "actor"):
            value = getattr(record, field_name, None)
            if value is None:
                continue
            correlation.setdefault(field_name, str(value))
        return correlation

    def _categorize(self, record: logging.LogRecord, event_type: str) -> str:
        if any(record.name.startswith(prefix) for prefix in _SERVER_LOGGER_PREFIXES):
            return "server"
        if event_type == TRANSPORT_EVENT:
            return "transport"
        if event_type in _PRESENCE_EVENT_TYPES:
            return "presence"
        return "application"

    def _freeze_value(self, value: Any) -> Any:
        """Return a hashable representation of *value* for key construction."""

        if isinstance(value, Mapping):
            return tuple(
                (str(key), self._freeze_value(item))
                for key, item in sorted(value.items(), key=lambda pair: str(pair[0]))
            )
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
            return tuple(self._freeze_value(item) for item in value)
        if isinstance(value, AbstractSet):
            return tuple(sorted((self._freeze_value(item) for item in value), key=repr))
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, Path):
            return str(value)
        try:
            hash(value)
        except TypeError:
            return str(value)
        return value

    def _build_key(
        self,
        event_type: str,
        message: str,
        context: Dict[str, Any],
        payload: Dict[str, Any],
    ) -> Tuple[Any, ...]:
        return (
            event_type,
            message,
            self._freeze_value(context or {}),
            self._freeze_value(payload or {}),
        )

    def _serialize_entry(self, entry: Dict[str, Any]) -> Dict[str, Any]:
        exported = {key: value for key, value in entry.items() if key != "_key"}
        exported.setdefault("timestamp", exported.get("last_seen"))
        return exported

    def emit(self, record: logging.LogRecord) -> None:  # noqa: D401 - inherited documentation
        rendered_message = record.getMessage()
        if record.exc_info:
            formatter = self.formatter or logging.Formatter()
            rendered_message = f"{rendered_message}\n{formatter.formatException(record.exc_info)}"

        base_message = getattr(record, "debug_event", None)
        base_message = rendered_message if base_message is None else str(base_message)
        event_type = str(getattr(record, "debug_event_type", "") or record.name)
        context = self._extract_context(record)
        payload = self._extract_payload(record)
        correlation = self._extract_correlation(record)
        category = self._categorize(record, event_type)
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        key = self._build_key(event_type, base_message, context, payload)

        with self._lock:
            self._last_id += 1
            existing = self._entry_index.get(key)
            if existing is not None:
                with contextlib.suppress(ValueError):
                    self._entries.remove(existing)
                existing["id"] = self._last_id
                existing["last_seen"] = timestamp
                existing["count"] = existing.get("count", 1) + 1
                existing["level"] = record.levelname
                if rendered_message != base_message:
                    existing["rendered"] = rendered_message
                existing.update(correlation)
                self._entries.append(existing)
                return

            entry: Dict[str, Any] = {
                "id": self._last_id,
                "message": base_message,
                "event_type": event_type,
                "level": record.levelname,
                "logger": record.name,
                "category": category,
                "count": 1,
                "first_seen": timestamp,
                "last_seen": timestamp,
                "_key": key,
            }
            if context:
                entry["context"] = context
            if payload:
                entry["payload"] = payload
            if rendered_message != base_message:
                entry["rendered"] = rendered_message
            entry.update(correlation)
            self._entries.append(entry)
            self._entry_index[key] = entry
            while len(self._entries) > self._capacity:
                oldest = self._entries.popleft()
                old_key = oldest.pop("_key", None)
                if old_key is not None:
                    self._entry_index.pop(old_key, None)

    def collect(self, after: Optional[int] = None, limit: int = 200) -> List[Dict[str, Any]]:
        with self._lock:
            if after is None or after <= 0:
                data = list(self._entries)
            else:
                data = [entry for entry in self._entries if entry.get("id", 0) > after]
        return [self._serialize_entry(entry) for entry in data[-limit:]]

    def export_text(self) -> str:
        entries = self.collect(limit=self._capacity)
        if not entries:
            return "# Debug log is currently empty.\n"
        lines: List[str] = []
        for entry in entries:
            line = (
                f"[{entry.get('timestamp', '')}] {str(entry.get('level', '')):<7} "
                f"{entry.get('event_type', '')}: {entry.get('message', '')}"
            )
            details = []
            if entry.get("count", 1) > 1:
                details.append(f"count={entry['count']}")
            for section in ("context", "payload"):
                if entry.get(section):
                    details.append(
                        f"{section}=" + json.dumps(entry[section], ensure_ascii=False, sort_keys=True)
                    )
            if details:
                line = f"{line} | " + " | ".join(details)
            lines.append(line)
        return "\n".join(lines) + "\n"

    @property
    def started_at(self) -> datetime:
        return self._started_at

    @property
    def last_id(self) -> int:
        with self._lock:
            return self._last_id


class TypingHub:
    """Registry of the typing sessions currently attached to websockets."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: Dict[str, Dict[str, TypingSession]] = {}
        self._names: Dict[str, Dict[str, str]] = {}

    def register(self, session: TypingSession, display_name: Optional[str]) -> str:
        connection_id = _new_correlation_id()
        with self._lock:
            self._sessions.setdefault(session.context_key, {})[connection_id] = session
            if display_name and display_name.strip():
                self._names.setdefault(session.context_key, {})[
                    session.participant_id
                ] = display_name.strip()
        return connection_id

    def unregister(self, context_key: str, connection_id: str) -> None:
        with self._lock:
            sessions = self._sessions.get(context_key)
            if sessions is None:
                return
            session = sessions.pop(connection_id, None)
            if not sessions:
                self._sessions.pop(context_key, None)
                self._names.pop(context_key, None)
            elif session is not None and all(
                other.participant_id != session.participant_id for other in sessions.values()
            ):
                self._names.get(context_key, {}).pop(session.participant_id, None)

    def display_names(self, context_key: str) -> Dict[str, str]:
        with self._lock:
            return dict(self._names.get(context_key, {}))

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return {key: len(sessions) for key, sessions in self._sessions.items()}


class UISettingsPayload(BaseModel):
    debug_enabled: bool = False
    summary_limit: int = Field(default=3, ge=1, le=20)


def _normalize_root_path(value: Optional[str]) -> str:
    if value is None:
        return ""
    normalized = value.strip()
    if not normalized or normalized == "/":
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


def create_app(
    config: AppConfig,
    *,
    transport: Optional[ChannelTransport] = None,
    clock: Callable[[], int] = epoch_ms,
    root_path: str | None = None,
) -> FastAPI:
    """Return a configured FastAPI application."""

    normalized_root = _normalize_root_path(root_path)
    app = FastAPI(
        title="StudyHub Presence",
        description="Typing indicators for StudyHub conversations",
        root_path=normalized_root,
    )
    app.state.server = None
    root_logger = logging.getLogger()
    debug_handler = next(
        (handler for handler in root_logger.handlers if isinstance(handler, DebugLogHandler)),
        None,
    )
    if debug_handler is None:
        debug_handler = DebugLogHandler()
        root_logger.addHandler(debug_handler)
    app.state.debug_log_handler = debug_handler
    app.state.debug_enabled = False
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    settings_store = SettingsStore(config)
    hub = TypingHub()
    channel_transport: ChannelTransport = transport if transport is not None else InMemoryTransport()
    app.state.transport = channel_transport
    app.state.typing_hub = hub
    app.state.settings_store = settings_store

    # Debug mode lowers the root level; switching it off restores the level set at startup.
    configured_level = root_logger.level

    def _update_debug_state(enabled: bool) -> None:
        target_level = logging.DEBUG if enabled else configured_level
        if root_logger.level != target_level:
            root_logger.setLevel(target_level)
        previously_enabled = getattr(app.state, "debug_enabled", False)
        app.state.debug_enabled = bool(enabled)
        if previously_enabled != app.state.debug_enabled:
            state_text = "enabled" if app.state.debug_enabled else "disabled"
            logging.getLogger("studyhub.debug").info("Debug mode %s", state_text)

    def _load_ui_settings() -> UISettings:
        settings = settings_store.load()
        settings.summary_limit = normalize_summary_limit(settings.summary_limit)
        return settings

    app.state.ui_settings = _load_ui_settings()

    def _typists_frame(context_key: str, participants: List[str]) -> Dict[str, Any]:
        names = resolve_display_names(participants, hub.display_names(context_key))
        return {
            "type": "typists",
            "context": context_key,
            "participants": list(participants),
            "summary": format_typing_summary(names, limit=app.state.ui_settings.summary_limit),
        }

    def _resolve_mode(context_key: str, requested: Optional[str]) -> ContextMode:
        if requested:
            return ContextMode.coerce(requested)
        return ContextMode.coerce(parse_context_key(context_key))

    @app.get("/api/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "transport": type(channel_transport).__name__}

    @app.get("/api/contexts/direct")
    async def direct_context(
        a: str = Query(..., description="First participant id"),
        b: str = Query(..., description="Second participant id"),
    ) -> Dict[str, Any]:
        try:
            key = direct_context_key(a, b)
        except ValueError as error:
            raise HTTPException(status_code=400, detail=str(error)) from error
        return {"context": key, "channel": channel_name_for(key), "mode": ContextMode.DIRECT.value}

    @app.get("/api/contexts/group/{group_id}")
    async def group_context(group_id: str) -> Dict[str, Any]:
        try:
            key = group_context_key(group_id)
        except ValueError as error:
            raise HTTPException(status_code=400, detail=str(error)) from error
        return {"context": key, "channel": channel_name_for(key), "mode": ContextMode.GROUP.value}

    @app.get("/api/presence/settings")
    async def presence_settings() -> Dict[str, Any]:
        return {"presence": asdict(config.presence)}

    @app.get("/api/presence/contexts")
    async def active_contexts() -> Dict[str, Any]:
        return {"contexts": hub.snapshot()}

    @app.get("/api/settings")
    async def get_settings() -> Dict[str, Any]:
        return {"settings": asdict(app.state.ui_settings)}

    @app.put("/api/settings")
    async def update_settings(payload: UISettingsPayload) -> Dict[str, Any]:
        settings = UISettings(
            debug_enabled=bool(payload.debug_enabled),
            summary_limit=normalize_summary_limit(payload.summary_limit),
        )
        settings_store.save(settings)
        app.state.ui_settings = settings
        _update_debug_state(settings.debug_enabled)
        _log_event(
            "Persisted settings",
            debug_enabled=settings.debug_enabled,
            summary_limit=settings.summary_limit,
        )
        return {"settings": asdict(settings)}

    @app.get("/api/debug/logs")
    async def get_debug_logs(after: Optional[int] = None) -> Dict[str, Any]:
        enabled = bool(getattr(app.state, "debug_enabled", False))
        entries = debug_handler.collect(after)
        next_marker = debug_handler.last_id if entries else (after or debug_handler.last_id)
        return {"logs": entries, "next": next_marker, "enabled": enabled}

    @app.get("/api/debug/logs/download")
    async def download_debug_logs() -> Response:
        body = debug_handler.export_text()
        started = debug_handler.started_at.strftime("%Y%m%d-%H%M%S")
        finished = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        filename = f"typing_{started}_to_{finished}.log"
        LOGGER.debug(
            "Preparing debug log download (%s bytes, filename=%s)",
            len(body.encode("utf-8")),
            filename,
        )
        return Response(
            content=body,
            media_type="text/plain; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.websocket("/ws/typing/{context_key}")
    async def typing_socket(
        websocket: WebSocket,
        context_key: str,
        participant_id: str = Query(""),
        mode: Optional[str] = Query(None),
        name: Optional[str] = Query(None),
    ) -> None:
        participant = participant_id.strip()
        if not participant or parse_context_key(context_key) is None:
            LOGGER.info("Rejecting typing socket for %r (participant %r)", context_key, participant)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        outbox: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()

        def _on_change(participants: List[str]) -> None:
            outbox.put_nowait(_typists_frame(context_key, participants))

        session = TypingSession(
            channel_transport,
            context_key,
            participant,
            mode=_resolve_mode(context_key, mode),
            settings=config.presence,
            clock=clock,
            on_change=_on_change,
        )
        connection_id = hub.register(session, name)

        async def _pump() -> None:
            while True:
                frame = await outbox.get()
                await websocket.send_json(frame)

        await session.open()
        outbox.put_nowait(_typists_frame(context_key, session.current_typists()))
        sender = asyncio.get_running_loop().create_task(_pump(), name=f"typing-socket:{connection_id}")
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    outbox.put_nowait({"type": "error", "detail": "Frames must be JSON objects"})
                    continue
                kind = message.get("type") if isinstance(message, dict) else None
                if kind == "typing":
                    outbox.put_nowait({"type": "ack", "sent": session.notify_typing()})
                elif kind == "snapshot":
                    outbox.put_nowait(_typists_frame(context_key, session.current_typists()))
                else:
                    outbox.put_nowait({"type": "error", "detail": f"Unsupported frame type: {kind!r}"})
        except WebSocketDisconnect:
            LOGGER.debug("Typing socket for %s disconnected (%s)", context_key, participant)
        finally:
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
            except Exception:  # noqa: BLE001 - the peer may already be gone
                LOGGER.debug("Typing socket sender for %s stopped early", context_key, exc_info=True)
            await session.close()
            hub.unregister(context_key, connection_id)

    _update_debug_state(app.state.ui_settings.debug_enabled)

    return app


__all__ = ["DebugLogHandler", "TypingHub", "create_app"]
