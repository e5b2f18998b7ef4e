from __future__ import annotations

from pathlib import Path
from typing import Any

from fastapi.testclient import TestClient

from media_pipeline.jobs.models import MediaItem, MediaStatus, Stage
from media_pipeline.jobs.store import register_media
from media_pipeline.server import create_app
from tests._helpers.fakes import FakeAnalyzer, FakeExtractor, FakeThumbnailer
from tests._helpers.media import write_bytes_file


def make_client(tmp_path: Path, **kw: Any) -> TestClient:
    kw.setdefault("extractor", FakeExtractor())
    kw.setdefault("thumbnailer", FakeThumbnailer(tmp_path / "thumbs"))
    kw.setdefault("analyzer", FakeAnalyzer())
    return TestClient(create_app(**kw))


def add_item(
    c: TestClient,
    tmp_path: Path,
    *,
    name: str = "movie.mp4",
    size: int = 1000,
    owner_id: str = "",
    status: MediaStatus = MediaStatus.completed,
) -> MediaItem:
    """Register a file straight into the store, bypassing the scheduler."""
    store = c.app.state.media_store
    f = write_bytes_file(tmp_path / name, size)
    item = register_media(store, file_path=f, mime_type="video/mp4", owner_id=owner_id)
    if status != MediaStatus.pending:
        stage = Stage.done if status == MediaStatus.completed else Stage.error
        item = store.update(item.id, status=status, stage=stage, progress=100)
    return item
