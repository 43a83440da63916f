"""Entry-point for the Marker Editor application."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
import uvicorn

from marker_editor.bootstrap import BootstrapError, initialize_app
from marker_editor.config import AppConfig
from marker_editor.logging_utils import DEFAULT_LOG_FORMAT, configure_logging, get_log_file_path
from marker_editor.services.backup import MarkerActionLog
from marker_editor.services.storage import MarkerRepository
from marker_editor.shifting import MarkerEditorError, MarkerFilter, ShiftEngine, ShiftResult
from marker_editor.ui import MarkerOverview
from marker_editor.web import create_app


LOGGER = logging.getLogger("marker_editor.cli")


cli = typer.Typer(add_completion=False, help="Marker Editor management commands")


def _prepare_logging(storage_root: Path, *, verbose: bool = False) -> None:
    log_file = get_log_file_path(storage_root)
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    configure_logging(
        logging.DEBUG if verbose else logging.INFO,
        handlers=[file_handler, stream_handler],
    )


def _load(config_path: Optional[Path], *, verbose: bool = False) -> AppConfig:
    try:
        app_config = initialize_app(config_path)
    except (BootstrapError, OSError, ValueError) as error:
        typer.echo(f"Initialization failed: {error}", err=True)
        raise typer.Exit(code=1) from error
    _prepare_logging(app_config.storage_root, verbose=verbose)
    return app_config


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


def _parse_filter(apply_to: int) -> MarkerFilter:
    try:
        return MarkerFilter.parse(apply_to)
    except ValueError as error:
        raise typer.BadParameter(str(error), param_hint="--apply-to") from error


def _echo_result(result: ShiftResult, *, as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        return

    status = "applied" if result.applied else "not applied"
    typer.echo(f"Shift {status} (conflict={result.conflict}, overflow={result.overflow})")
    for candidate in result.candidates:
        marker = candidate.marker
        flag = "" if candidate.enabled else " [ignored]"
        typer.echo(
            f"  marker {marker.id} ({marker.marker_type.value}) on item {marker.parent_id}: "
            f"{marker.start}-{marker.end} -> {candidate.new_start}-{candidate.new_end} "
            f"{candidate.classification.value}{flag}"
        )
    if result.applied:
        for marker in result.all_markers:
            typer.echo(f"  marker {marker.id} #{marker.index}: {marker.start}-{marker.end}")


config_option = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to a JSON configuration file",
    envvar="MARKER_EDITOR_CONFIG",
)
apply_to_option = typer.Option(
    int(MarkerFilter.ALL),
    "--apply-to",
    help="Marker types to target: 1=intro, 2=credits, 4=ads (OR-able)",
)


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=None, port=None, root_path=None, config=None)


@cli.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host interface for the web server"),
    port: Optional[int] = typer.Option(None, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="MARKER_EDITOR_ROOT_PATH",
    ),
    config: Optional[Path] = config_option,
) -> None:
    """Run the FastAPI-powered web server."""

    app_config = _load(config)

    repository = MarkerRepository(app_config)
    action_log = MarkerActionLog(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(
        repository,
        config=app_config,
        action_log=action_log,
        root_path=normalized_root,
    )

    server_config = uvicorn.Config(
        app,
        host=host or app_config.host,
        port=port or app_config.port,
        log_config=None,
        root_path=normalized_root,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server
    LOGGER.info("Serving marker editor on %s:%s", server_config.host, server_config.port)
    server.run()


@cli.command("markers")
def list_markers(
    metadata_id: int = typer.Argument(..., help="Show, season, episode, or movie id"),
    config: Optional[Path] = config_option,
) -> None:
    """Print the markers stored under an item."""

    app_config = _load(config)
    overview = MarkerOverview(MarkerRepository(app_config))
    try:
        overview.render(metadata_id)
    except MarkerEditorError as error:
        typer.echo(f"Lookup failed: {error}", err=True)
        raise typer.Exit(code=1) from error


@cli.command("check-shift")
def check_shift(
    metadata_id: int = typer.Argument(..., help="Show, season, episode, or movie id"),
    apply_to: int = apply_to_option,
    as_json: bool = typer.Option(False, "--json", help="Print the raw result"),
    config: Optional[Path] = config_option,
) -> None:
    """Report which markers a shift would touch and whether they conflict."""

    marker_filter = _parse_filter(apply_to)
    app_config = _load(config)
    engine = ShiftEngine(MarkerRepository(app_config))
    try:
        result = asyncio.run(engine.check_shift(metadata_id, marker_filter))
    except MarkerEditorError as error:
        typer.echo(f"Check failed: {error}", err=True)
        raise typer.Exit(code=1) from error
    _echo_result(result, as_json=as_json)


@cli.command()
def shift(
    metadata_id: int = typer.Argument(..., help="Show, season, episode, or movie id"),
    start_shift: int = typer.Option(..., "--start", help="Milliseconds to move marker starts"),
    end_shift: Optional[int] = typer.Option(
        None, "--end", help="Milliseconds to move marker ends (defaults to --start)"
    ),
    apply_to: int = apply_to_option,
    force: bool = typer.Option(False, "--force", help="Drop invalid markers and apply anyway"),
    ignore: List[int] = typer.Option([], "--ignore", help="Marker id to leave untouched"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result"),
    config: Optional[Path] = config_option,
) -> None:
    """Shift markers, exiting with code 2 when conflicts need resolution."""

    marker_filter = _parse_filter(apply_to)
    app_config = _load(config)
    repository = MarkerRepository(app_config)
    engine = ShiftEngine(repository, action_log=MarkerActionLog(app_config))
    try:
        result = asyncio.run(
            engine.shift(
                metadata_id,
                start_shift,
                end_shift,
                marker_filter,
                force=force,
                ignored_marker_ids=ignore,
            )
        )
    except MarkerEditorError as error:
        typer.echo(f"Shift failed: {error}", err=True)
        raise typer.Exit(code=1) from error

    _echo_result(result, as_json=as_json)
    if not result.applied:
        raise typer.Exit(code=2)


if __name__ == "__main__":
    cli()
