"""
Per-item processing state machine.

    queued(0) -> extracting_metadata(10) -> generating_thumbnail(30)
      -> analyzing_content(50) -> finalizing(90) -> done(100)

Any stage may jump to `error`. Each transition persists the merged record first and
then publishes a progress event, so observers never see a stage the store has not.
Metadata/thumbnail collaborators return fallbacks instead of raising; the analyzer
absorbs its own errors. Anything else that escapes fails the item without retry.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from pathlib import Path
from typing import Any

from media_pipeline.jobs.models import (
    STAGE_PROGRESS,
    MediaItem,
    MediaStatus,
    SensitivityResult,
    Stage,
    is_forward,
)
from media_pipeline.jobs.store import MediaNotFound, MediaStore
from media_pipeline.ops.metrics import items_finished, stage_seconds, time_hist
from media_pipeline.realtime.broadcaster import (
    ProgressBroadcaster,
    complete_event,
    error_event,
)
from media_pipeline.stages.metadata import FFprobeMetadataExtractor, MetadataExtractor
from media_pipeline.stages.sensitivity import ContentAnalyzer, MockSensitivityAnalyzer
from media_pipeline.stages.thumbnail import FFmpegThumbnailGenerator, ThumbnailGenerator
from media_pipeline.utils.log import logger


class ReprocessRejected(RuntimeError):
    pass


class _Run:
    """Mutable cursor for one execution: current stage and last emitted progress."""

    def __init__(self, pipeline: MediaPipeline, item: MediaItem) -> None:
        self.pipeline = pipeline
        self.item = item
        self.stage = item.stage
        self.progress = int(item.progress)

    async def transition(self, stage: Stage, message: str, **fields: Any) -> MediaItem:
        if not is_forward(self.stage, stage):
            raise RuntimeError(f"illegal stage transition {self.stage.value} -> {stage.value}")
        progress = max(self.progress, STAGE_PROGRESS[stage])
        item = await asyncio.to_thread(
            self.pipeline.store.update,
            self.item.id,
            stage=stage,
            progress=progress,
            message=message,
            **fields,
        )
        if item is None:
            raise MediaNotFound(self.item.id)
        self.item = item
        self.stage = stage
        self.progress = progress
        logger.info(
            "pipeline_stage",
            media_id=item.id,
            stage=stage.value,
            progress=progress,
            status=item.status.value,
        )
        self.pipeline.emit(item, item.progress_event())
        return item

    def analyzer_progress(self, pct: int, message: str) -> None:
        # Broadcast-only; clamped inside the analyzing_content window.
        lo = STAGE_PROGRESS[Stage.analyzing_content]
        hi = STAGE_PROGRESS[Stage.finalizing] - 1
        pct = max(self.progress, min(hi, max(lo, int(pct))))
        self.progress = pct
        ev = self.item.progress_event()
        ev.update(progress=pct, message=str(message))
        self.pipeline.emit(self.item, ev)


class MediaPipeline:
    def __init__(
        self,
        *,
        store: MediaStore,
        broadcaster: ProgressBroadcaster,
        extractor: MetadataExtractor | None = None,
        thumbnailer: ThumbnailGenerator | None = None,
        analyzer: ContentAnalyzer | None = None,
    ) -> None:
        self.store = store
        self.broadcaster = broadcaster
        self.extractor = extractor or FFprobeMetadataExtractor()
        self.thumbnailer = thumbnailer or FFmpegThumbnailGenerator()
        self.analyzer = analyzer or MockSensitivityAnalyzer()

    def emit(self, item: MediaItem, event: dict[str, Any]) -> None:
        self.broadcaster.publish_item_event(item.id, item.owner_id, event)

    async def run(self, media_id: str) -> MediaItem | None:
        """
        Drive one item from `queued` to a terminal stage.

        Only a `pending` item is claimed; anything else (duplicate admission, item
        already finished or deleted) is skipped without side effects.
        """
        try:
            item = await asyncio.to_thread(
                self.store.update_if,
                media_id,
                expect={MediaStatus.pending},
                status=MediaStatus.processing,
            )
        except MediaNotFound:
            logger.warning("pipeline_item_missing", media_id=media_id)
            return None
        if item is None:
            logger.warning("pipeline_skip_not_pending", media_id=media_id)
            return None

        run = _Run(self, item)
        try:
            return await self._drive(run)
        except Exception as ex:
            return await self._fail(run, ex)

    async def _drive(self, run: _Run) -> MediaItem:
        path = Path(run.item.file_path)

        await run.transition(
            Stage.extracting_metadata,
            "Extracting video metadata...",
            processing_error=None,
        )
        with time_hist(stage_seconds.labels(stage=Stage.extracting_metadata.value)):
            meta = await asyncio.to_thread(self.extractor.extract, path)

        await run.transition(
            Stage.generating_thumbnail,
            "Generating thumbnail...",
            duration_s=float(meta.duration_s),
            width=int(meta.width),
            height=int(meta.height),
            metadata={**run.item.metadata, "codec": meta.codec, "bitrate": int(meta.bitrate)},
        )
        with time_hist(stage_seconds.labels(stage=Stage.generating_thumbnail.value)):
            thumb = await asyncio.to_thread(self.thumbnailer.generate, path, run.item.id)

        await run.transition(
            Stage.analyzing_content,
            "Analyzing content for sensitivity...",
            thumbnail_path=str(thumb) if thumb is not None else None,
        )
        with time_hist(stage_seconds.labels(stage=Stage.analyzing_content.value)):
            result = await self.analyzer.analyze(path, on_progress=run.analyzer_progress)
        if not isinstance(result, SensitivityResult):
            result = SensitivityResult.from_dict(result)

        await run.transition(Stage.finalizing, "Finalizing...", sensitivity=result)

        item = await run.transition(
            Stage.done,
            "Processing complete!",
            status=MediaStatus.completed,
        )
        self.emit(item, complete_event(item.id, item.sensitivity))
        items_finished.labels(status=MediaStatus.completed.value).inc()
        logger.info(
            "pipeline_completed",
            media_id=item.id,
            classification=item.sensitivity.classification.value,
            duration_s=item.duration_s,
        )
        return item

    async def _fail(self, run: _Run, ex: Exception) -> MediaItem | None:
        reason = str(ex) or ex.__class__.__name__
        logger.error(
            "pipeline_failed",
            media_id=run.item.id,
            stage=run.stage.value,
            error=reason,
            exc_info=ex,
        )
        items_finished.labels(status=MediaStatus.failed.value).inc()
        item: MediaItem | None = None
        try:
            item = await asyncio.to_thread(
                self.store.update,
                run.item.id,
                status=MediaStatus.failed,
                stage=Stage.error,
                processing_error=reason,
                message=reason,
            )
        except Exception as store_ex:
            logger.error("pipeline_fail_persist_failed", media_id=run.item.id, error=str(store_ex))
        final = item or run.item
        with suppress(Exception):
            ev = final.progress_event()
            ev.update(status=MediaStatus.failed.value, stage=Stage.error.value, message=reason)
            self.emit(final, ev)
        self.emit(final, error_event(final.id, reason))
        return item

    def reset_for_reprocess(self, media_id: str) -> MediaItem:
        """
        Reset a terminal item to (pending, queued, 0%, no error).

        Raises MediaNotFound, or ReprocessRejected while the item is pending/processing.
        """
        item = self.store.update_if(
            media_id,
            expect={MediaStatus.completed, MediaStatus.failed},
            status=MediaStatus.pending,
            stage=Stage.queued,
            progress=0,
            processing_error=None,
            message="Queued for reprocessing",
            sensitivity=SensitivityResult(),
        )
        if item is None:
            current = self.store.require(media_id)
            raise ReprocessRejected(
                f"media {media_id} is {current.status.value}; only completed or failed items can be reprocessed"
            )
        logger.info("media_reprocess_reset", media_id=media_id)
        self.emit(item, item.progress_event())
        return item
