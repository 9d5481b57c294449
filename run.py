"""Entry-point for the StudyHub presence service."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import List, Optional

import uvicorn
import typer

from studyhub.bootstrap import BootstrapError, initialize_app
from studyhub.logging_utils import build_default_handlers, configure_logging, resolve_log_level
from studyhub.services.naming import channel_name_for, direct_context_key, group_context_key
from studyhub.services.simulation import simulate_exchange
from studyhub.web import create_app


LOGGER = logging.getLogger("studyhub.cli")


cli = typer.Typer(add_completion=False, help="StudyHub presence management commands")


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


def _prepare_logging(storage_root: Optional[Path], level: Optional[str] = None) -> None:
    configure_logging(resolve_log_level(level), handlers=build_default_handlers(storage_root))


class ContextKind(str, Enum):
    DIRECT = "direct"
    GROUP = "group"


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None, log_level="info")


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="STUDYHUB_ROOT_PATH",
    ),
    log_level: str = typer.Option("info", help="Root log level (debug, info, warning)"),
) -> None:
    """Run the FastAPI-powered typing indicator service."""

    try:
        app_config = initialize_app()
    except BootstrapError as error:
        typer.echo(f"Startup failed: {error}")
        raise typer.Exit(code=1) from error
    _prepare_logging(app_config.storage_root, log_level)

    normalized_root = _normalize_root_path(root_path)
    app = create_app(app_config, root_path=normalized_root)

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server
    LOGGER.info("Serving typing indicators on http://%s:%s%s/", host, port, normalized_root)
    server.run()


@cli.command()
def channel(
    kind: ContextKind = typer.Argument(..., help="Conversation kind: direct or group"),
    ids: List[str] = typer.Argument(..., help="Two participant ids, or one group id"),
) -> None:
    """Print the context key and channel name peers derive for a conversation."""

    try:
        if kind is ContextKind.DIRECT:
            if len(ids) != 2:
                raise typer.BadParameter("A direct chat needs exactly two participant ids.", param_hint="IDS")
            key = direct_context_key(ids[0], ids[1])
        else:
            if len(ids) != 1:
                raise typer.BadParameter("A group chat needs exactly one group id.", param_hint="IDS")
            key = group_context_key(ids[0])
    except ValueError as error:
        raise typer.BadParameter(str(error), param_hint="IDS") from error

    typer.echo(f"Context: {key}")
    typer.echo(f"Channel: {channel_name_for(key)}")


def _parse_keystrokes(raw: str) -> List[int]:
    values: List[int] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            value = int(chunk)
        except ValueError as error:
            raise typer.BadParameter(
                f"Keystroke times must be integers in milliseconds (got {chunk!r}).",
                param_hint="--keystrokes",
            ) from error
        if value < 0:
            raise typer.BadParameter("Keystroke times must not be negative.", param_hint="--keystrokes")
        values.append(value)
    if not values:
        raise typer.BadParameter("Provide at least one keystroke time.", param_hint="--keystrokes")
    return values


@cli.command()
def simulate(
    keystrokes: str = typer.Option(
        "0,1000,2600",
        "--keystrokes",
        "-k",
        help="Comma separated times (ms) at which participant A types.",
    ),
    until: Optional[int] = typer.Option(None, help="Stop the replay at this time (ms)."),
) -> None:
    """Replay A typing to B over the in-memory transport and print B's indicator."""

    times = _parse_keystrokes(keystrokes)
    try:
        app_config = initialize_app()
        presence = app_config.presence
    except (BootstrapError, OSError) as error:
        LOGGER.debug("Falling back to default presence timings: %s", error)
        presence = None

    steps = simulate_exchange(times, settings=presence, until_ms=until)
    for step in steps:
        if step.kind == "keystroke":
            action = "A types -> " + ("announce" if step.sent else "throttled")
        else:
            action = "B sweeps"
        indicator = step.summary or "(nobody typing)"
        typer.echo(f"t={step.at_ms:>6}ms  {action:<24} {indicator}")


if __name__ == "__main__":
    cli()
