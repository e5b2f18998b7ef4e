from __future__ import annotations

import asyncio
from collections import deque
from typing import Any

from media_pipeline.config import get_settings
from media_pipeline.jobs.models import MediaItem, MediaStatus, Stage
from media_pipeline.jobs.pipeline import MediaPipeline
from media_pipeline.ops.metrics import active_workers, items_queued
from media_pipeline.utils.log import logger


class Scheduler:
    """
    In-process bounded-concurrency admission queue.

    - submit() appends the id to an unbounded FIFO and immediately tries admission
    - at most `max_concurrency` pipeline runs execute at once (asyncio tasks)
    - a finished run (success or failure) frees its slot and admits the next id
    - no priority, no dedup, no persistence: queued/in-flight work is lost on restart

    Lifecycle: construct, `await start()` on the serving loop, `await stop()` on shutdown.
    """

    def __init__(self, *, pipeline: MediaPipeline, max_concurrency: int | None = None) -> None:
        self.pipeline = pipeline
        self.max_concurrency = max(1, int(max_concurrency or get_settings().max_concurrency))
        self._queue: deque[str] = deque()
        self._active = 0
        self._peak_active = 0
        self._tasks: set[asyncio.Task[None]] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._accepting = False
        self._idle: asyncio.Event | None = None

    async def start(self) -> None:
        if self._loop is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._idle = asyncio.Event()
        self._idle.set()
        self._accepting = True
        logger.info("scheduler_started", max_concurrency=self.max_concurrency)

    async def stop(self, *, timeout_s: float | None = None) -> None:
        """
        Stop admitting, let in-flight runs finish until the drain deadline, then cancel.
        Queued ids that never started are dropped (logged).
        """
        if timeout_s is None:
            timeout_s = float(get_settings().drain_timeout_sec)
        self._accepting = False
        dropped = list(self._queue)
        self._queue.clear()
        if dropped:
            logger.warning("scheduler_dropped_queued", count=len(dropped), media_ids=dropped)
        pending = set(self._tasks)
        if pending:
            _done, still = await asyncio.wait(pending, timeout=float(timeout_s))
            for t in still:
                t.cancel()
            if still:
                await asyncio.gather(*still, return_exceptions=True)
                logger.warning("scheduler_cancelled_inflight", count=len(still))
        self._loop = None
        logger.info("scheduler_stopped")

    def submit(self, media_id: str) -> None:
        """Fire-and-forget admission. Safe to call from any thread."""
        loop = self._loop
        if loop is None or not self._accepting:
            logger.warning("scheduler_submit_dropped", media_id=str(media_id), reason="not running")
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._enqueue(str(media_id))
        else:
            loop.call_soon_threadsafe(self._enqueue, str(media_id))

    def reprocess(self, media_id: str) -> MediaItem:
        """Reset a completed/failed item and re-admit it. Raises ReprocessRejected otherwise."""
        item = self.pipeline.reset_for_reprocess(media_id)
        self.submit(item.id)
        return item

    def _enqueue(self, media_id: str) -> None:
        if not self._accepting:
            logger.warning("scheduler_submit_dropped", media_id=media_id, reason="draining")
            return
        self._queue.append(media_id)
        items_queued.inc()
        if self._idle is not None:
            self._idle.clear()
        logger.info("scheduler_enqueued", media_id=media_id, queue_len=len(self._queue))
        self._admit()

    def _admit(self) -> None:
        loop = self._loop
        while (
            loop is not None
            and self._accepting
            and self._active < self.max_concurrency
            and self._queue
        ):
            media_id = self._queue.popleft()
            self._active += 1
            self._peak_active = max(self._peak_active, self._active)
            active_workers.set(self._active)
            logger.info("scheduler_admit", media_id=media_id, active=self._active)
            task = loop.create_task(self._run_one(media_id), name=f"media-pipeline:{media_id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run_one(self, media_id: str) -> None:
        try:
            await self.pipeline.run(media_id)
        except Exception:
            logger.exception("scheduler_run_crashed", media_id=media_id)
        finally:
            self._active -= 1
            active_workers.set(self._active)
            if self._active == 0 and not self._queue and self._idle is not None:
                self._idle.set()
            self._admit()

    async def join(self, *, timeout_s: float | None = None) -> None:
        """Wait until the queue is empty and no run is active."""
        if self._idle is None:
            return
        await asyncio.wait_for(self._idle.wait(), timeout=timeout_s)

    def state(self) -> dict[str, Any]:
        return {
            "queue_len": len(self._queue),
            "active": int(self._active),
            "peak_active": int(self._peak_active),
            "max_concurrency": int(self.max_concurrency),
            "accepting": bool(self._accepting),
        }

    def fail_abandoned(self) -> list[str]:
        """
        Items left in `processing` by a previous process are abandoned. They are marked
        failed (never re-queued) so an explicit reprocess can pick them up.
        """
        store = self.pipeline.store
        abandoned: list[str] = []
        for item in store.list(limit=10_000, status=MediaStatus.processing.value):
            updated = store.update_if(
                item.id,
                expect={MediaStatus.processing},
                status=MediaStatus.failed,
                stage=Stage.error,
                processing_error="Interrupted by restart",
                message="Interrupted by restart",
            )
            if updated is not None:
                abandoned.append(item.id)
                logger.warning("media_abandoned", media_id=item.id, stage=item.stage.value)
        return abandoned
