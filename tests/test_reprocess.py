from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from media_pipeline.jobs.models import Classification, MediaStatus, Stage
from media_pipeline.jobs.pipeline import MediaPipeline, ReprocessRejected
from media_pipeline.jobs.store import MediaNotFound, register_media
from tests._helpers.fakes import (
    ExplodingExtractor,
    FakeAnalyzer,
    FakeExtractor,
    FakeThumbnailer,
    RecordingBroadcaster,
    new_store,
)
from tests._helpers.media import write_bytes_file


def test_reprocess_failed_item_runs_full_sequence(tmp_path: Path) -> None:
    store = new_store(tmp_path)
    b = RecordingBroadcaster()
    bad = MediaPipeline(
        store=store,
        broadcaster=b,
        extractor=ExplodingExtractor(),
        thumbnailer=FakeThumbnailer(None),
        analyzer=FakeAnalyzer(),
    )
    f = write_bytes_file(tmp_path / "a.mp4", 1000)
    item = register_media(store, file_path=f, mime_type="video/mp4")
    asyncio.run(bad.run(item.id))
    assert store.require(item.id).status == MediaStatus.failed

    good = MediaPipeline(
        store=store,
        broadcaster=b,
        extractor=FakeExtractor(),
        thumbnailer=FakeThumbnailer(None),
        analyzer=FakeAnalyzer(classification=Classification.flagged),
    )
    reset = good.reset_for_reprocess(item.id)
    assert reset.status == MediaStatus.pending
    assert reset.stage == Stage.queued
    assert reset.progress == 0
    assert reset.processing_error is None
    assert reset.sensitivity.classification == Classification.pending

    b.events.clear()
    out = asyncio.run(good.run(item.id))
    assert out is not None
    assert out.status == MediaStatus.completed
    assert out.sensitivity.flags == ["violence"]
    stages = []
    for e in b.for_item(item.id):
        if e["type"] == "progress" and (not stages or stages[-1] != e["stage"]):
            stages.append(e["stage"])
    assert stages == [
        "extracting_metadata",
        "generating_thumbnail",
        "analyzing_content",
        "finalizing",
        "done",
    ]


def test_reprocess_rejected_while_pending(tmp_path: Path) -> None:
    store = new_store(tmp_path)
    pipeline = MediaPipeline(
        store=store,
        broadcaster=RecordingBroadcaster(),
        extractor=FakeExtractor(),
        thumbnailer=FakeThumbnailer(None),
        analyzer=FakeAnalyzer(),
    )
    f = write_bytes_file(tmp_path / "a.mp4", 10)
    item = register_media(store, file_path=f, mime_type="video/mp4")
    with pytest.raises(ReprocessRejected):
        pipeline.reset_for_reprocess(item.id)
    with pytest.raises(MediaNotFound):
        pipeline.reset_for_reprocess("missing")
