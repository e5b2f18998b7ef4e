from __future__ import annotations

import asyncio
import json
import mimetypes
import sys
from pathlib import Path
from typing import Any

import click

from media_pipeline.config import get_safe_config_report
from media_pipeline.jobs.pipeline import MediaPipeline, ReprocessRejected
from media_pipeline.jobs.store import MediaNotFound, MediaStore, media_db_path, register_media
from media_pipeline.realtime.broadcaster import ProgressBroadcaster
from media_pipeline.utils.log import logger, set_log_level


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=True, default=str))


def _store() -> MediaStore:
    return MediaStore(media_db_path())


def _process(store: MediaStore, media_id: str) -> dict[str, Any]:
    async def _go() -> dict[str, Any]:
        pipeline = MediaPipeline(store=store, broadcaster=ProgressBroadcaster())
        item = await pipeline.run(media_id)
        if item is None:
            item = store.require(media_id)
        return item.to_dict()

    return asyncio.run(_go())


@click.group(name="media-pipeline", help="Media processing pipeline (serve + offline tools).")
@click.option("--log-level", default=None, help="Override LOG_LEVEL for this invocation.")
def cli(log_level: str | None) -> None:
    if log_level:
        set_log_level(log_level)


@cli.command("serve", help="Run the HTTP/WebSocket server.")
@click.option("--host", default=None, help="Bind address (default: HOST).")
@click.option("--port", type=int, default=None, help="Bind port (default: PORT).")
def serve(host: str | None, port: int | None) -> None:
    from media_pipeline.web.run import main as run_server

    run_server(host=host, port=port)


@cli.command("ingest", help="Register a file and process it in-process.")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--owner", "owner_id", default="", help="Owner user id.")
@click.option("--title", default="", help="Display title (default: file name).")
@click.option("--mime", "mime_type", default=None, help="MIME type (guessed from extension).")
@click.option("--no-process", is_flag=True, default=False, help="Only register the record.")
def ingest(
    file: Path, owner_id: str, title: str, mime_type: str | None, no_process: bool
) -> None:
    file = Path(file).resolve()
    if not mime_type:
        mime_type = mimetypes.guess_type(file.name)[0] or "application/octet-stream"
    store = _store()
    item = register_media(store, file_path=file, mime_type=mime_type, owner_id=owner_id, title=title)
    if no_process:
        _echo_json(item.to_dict())
        return
    out = _process(store, item.id)
    _echo_json(out)
    if out.get("status") == "failed":
        sys.exit(1)


@cli.command("reprocess", help="Reset a completed/failed item and process it again.")
@click.argument("media_id")
def reprocess(media_id: str) -> None:
    store = _store()
    pipeline = MediaPipeline(store=store, broadcaster=ProgressBroadcaster())
    try:
        pipeline.reset_for_reprocess(media_id)
    except MediaNotFound as ex:
        raise click.ClickException(f"media not found: {media_id}") from ex
    except ReprocessRejected as ex:
        raise click.ClickException(str(ex)) from ex
    _echo_json(_process(store, media_id))


@cli.command("info", help="Print a stored media record.")
@click.argument("media_id")
def info(media_id: str) -> None:
    item = _store().get(media_id)
    if item is None:
        raise click.ClickException(f"media not found: {media_id}")
    _echo_json(item.to_dict())


@cli.command("list", help="List stored media records, newest first.")
@click.option("--status", default=None, help="Filter by status.")
@click.option("--limit", type=int, default=50, show_default=True)
def list_cmd(status: str | None, limit: int) -> None:
    for item in _store().list(limit=limit, status=status):
        click.echo(
            f"{item.id}\t{item.status.value}\t{item.stage.value}\t{item.progress}\t{item.title}"
        )


@cli.command("config", help="Print the effective configuration (secrets redacted).")
def config_cmd() -> None:
    _echo_json(get_safe_config_report())


def main() -> None:
    try:
        cli()
    except KeyboardInterrupt:  # pragma: no cover
        logger.warning("cli_interrupted")
        sys.exit(130)


if __name__ == "__main__":  # pragma: no cover
    main()
